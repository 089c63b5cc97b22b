"""
Tests for the History Reconciler

Tests cover:
- Time window boundaries and the unbounded window
- Deduplication between centralized and legacy records
- Ordering, filtering, stats and paging
- Identity resolution, renamed users and deleted users
- Graceful degradation on resolver failures and unreadable payloads
"""
import pytest
from datetime import datetime, timedelta
from sqlalchemy.ext.asyncio import AsyncSession

from audittrail.models.audit import AuditCategory, TargetType
from audittrail.models.user import User, UserRole
from audittrail.schemas.audit import Actor
from audittrail.schemas.history import (
    HistoryFilters,
    RoleChangeDisplay,
    AccountDeletionDisplay,
    BlockStatusDisplay,
    ContentDeletionDisplay,
)
from audittrail.services.audit_writer import AuditWriter
from audittrail.services.history_reconciler import (
    HistoryReconciler,
    normalize_days_window,
    normalize_action,
    deduplicate,
)
from audittrail.services.identity_resolver import IdentityResolver, ResolvedIdentity
from audittrail.services.legacy_log import LegacyAuditLog
from tests.conftest import UserFactory, ToolFactory, AuditEntryFactory, legacy_record


NOW = datetime(2026, 3, 31, 12, 0, 0)


class FakeResolver(IdentityResolver):
    """In-memory resolver that records every batch it receives."""

    def __init__(self, identities=None):
        self.identities = identities or {}
        self.calls = []

    async def resolve(self, ids):
        wanted = set(ids)
        self.calls.append(wanted)
        return {i: self.identities[i] for i in wanted if i in self.identities}


class FailingResolver(IdentityResolver):
    async def resolve(self, ids):
        raise ConnectionError("identity store unreachable")


def reconciler(db: AsyncSession, **kwargs) -> HistoryReconciler:
    return HistoryReconciler(db, clock=lambda: NOW, **kwargs)


# -----------------------------------------------------------------------------
# Filter Normalization
# -----------------------------------------------------------------------------

class TestFilterNormalization:
    """Tests for malformed filter handling."""

    def test_days_window_all(self):
        assert normalize_days_window("all") == ("all", None)

    def test_days_window_numeric(self):
        assert normalize_days_window("7") == ("7", 7)

    def test_days_window_falls_back_to_default(self):
        """Test that garbage and non-positive windows use the default."""
        assert normalize_days_window("soon") == ("30", 30)
        assert normalize_days_window("-4") == ("30", 30)
        assert normalize_days_window(None) == ("30", 30)

    def test_unknown_action_means_no_filter(self):
        assert normalize_action("explode") is None
        assert normalize_action("all") is None
        assert normalize_action("blocked") == "blocked"


# -----------------------------------------------------------------------------
# Time Window
# -----------------------------------------------------------------------------

class TestTimeWindow:
    """Tests for the days window."""

    @pytest.mark.asyncio
    async def test_boundary_is_inclusive(
        self,
        db_session: AsyncSession,
        admin_user: User,
        regular_user: User
    ):
        """Test that an entry exactly at the window start is included and one a day older is not."""
        await AuditEntryFactory.create(
            db_session, "blocked", regular_user.id, admin_user, timestamp=NOW - timedelta(days=30)
        )
        await AuditEntryFactory.create(
            db_session, "unblocked", regular_user.id, admin_user, timestamp=NOW - timedelta(days=31)
        )

        result = await reconciler(db_session).query(HistoryFilters(days_window="30"))

        assert [e.action for e in result.entries] == ["blocked"]
        assert result.stats.time_range == "30"

    @pytest.mark.asyncio
    async def test_all_has_no_lower_bound(
        self,
        db_session: AsyncSession,
        admin_user: User,
        regular_user: User
    ):
        """Test that 'all' returns entries of any age."""
        await AuditEntryFactory.create(
            db_session, "blocked", regular_user.id, admin_user, timestamp=NOW - timedelta(days=30)
        )
        await AuditEntryFactory.create(
            db_session, "unblocked", regular_user.id, admin_user, timestamp=NOW - timedelta(days=900)
        )

        result = await reconciler(db_session).query(HistoryFilters(days_window="all"))

        assert len(result.entries) == 2
        assert result.stats.time_range == "all"

    @pytest.mark.asyncio
    async def test_unparsable_window_uses_default(
        self,
        db_session: AsyncSession,
        admin_user: User,
        regular_user: User
    ):
        """Test that a bad window behaves like the default one."""
        await AuditEntryFactory.create(
            db_session, "blocked", regular_user.id, admin_user, timestamp=NOW - timedelta(days=10)
        )
        await AuditEntryFactory.create(
            db_session, "unblocked", regular_user.id, admin_user, timestamp=NOW - timedelta(days=45)
        )

        result = await reconciler(db_session).query(HistoryFilters(days_window="lots"))

        assert [e.action for e in result.entries] == ["blocked"]
        assert result.stats.time_range == "30"

    @pytest.mark.asyncio
    async def test_legacy_records_respect_window(self, db_session: AsyncSession, admin_user: User):
        """Test that legacy records outside the window are ignored."""
        await UserFactory.create(
            db_session,
            name="Legacy Lee",
            audit_log=[
                legacy_record("blocked", admin_user, NOW - timedelta(days=2)),
                legacy_record("unblocked", admin_user, NOW - timedelta(days=60)),
                {"action": "blocked", "performed_by": admin_user.id},
            ]
        )

        result = await reconciler(db_session).query(HistoryFilters(days_window="30"))

        assert [(e.action, e.source) for e in result.entries] == [("blocked", "legacy_audit")]

    @pytest.mark.asyncio
    async def test_users_without_legacy_records_are_not_loaded(self, db_session: AsyncSession, admin_user: User):
        """Test that only users with a non-empty embedded log are read."""
        quiet = await UserFactory.create(db_session, name="Quiet Quinn")
        busy = await UserFactory.create(
            db_session,
            name="Busy Bo",
            audit_log=[legacy_record("blocked", admin_user, datetime.utcnow() - timedelta(days=1))],
        )
        quiet_id, busy_id = quiet.id, busy.id
        db_session.expunge_all()

        rows = await LegacyAuditLog(db_session).read_window(None)

        assert [user.id for user, _, _, _ in rows] == [busy_id]
        loaded = {obj.id for obj in db_session.identity_map.values()}
        assert busy_id in loaded
        assert quiet_id not in loaded


# -----------------------------------------------------------------------------
# Deduplication
# -----------------------------------------------------------------------------

class TestDeduplication:
    """Tests for merging the two stores."""

    @pytest.mark.asyncio
    async def test_mirrored_write_appears_once(
        self,
        db_session: AsyncSession,
        admin_user: User,
        regular_user: User
    ):
        """Test that a dual-written action is reported only from the centralized store."""
        writer = AuditWriter(db_session, clock=lambda: NOW - timedelta(hours=1))
        await writer.log_user_block(regular_user.id, Actor.from_user(admin_user), reason="spam")

        result = await reconciler(db_session).query(HistoryFilters())

        assert len(result.entries) == 1
        assert result.entries[0].source == "centralized_audit"
        assert result.entries[0].id.startswith("central-")

    @pytest.mark.asyncio
    async def test_tolerance_is_strict(self, db_session: AsyncSession, admin_user: User):
        """Test that records 3s apart merge and records 5s or 6s apart do not."""
        base = NOW - timedelta(hours=1)
        target = await UserFactory.create(
            db_session,
            name="Tolerance Tess",
            audit_log=[
                legacy_record("blocked", admin_user, base + timedelta(seconds=3)),
                legacy_record("blocked", admin_user, base + timedelta(seconds=5)),
                legacy_record("blocked", admin_user, base + timedelta(seconds=6)),
            ]
        )
        await AuditEntryFactory.create(db_session, "blocked", target.id, admin_user, timestamp=base)

        result = await reconciler(db_session).query(HistoryFilters())

        assert len(result.entries) == 3
        legacy_ids = sorted(e.id for e in result.entries if e.source == "legacy_audit")
        assert legacy_ids == [f"legacy-{target.id}-1", f"legacy-{target.id}-2"]

    @pytest.mark.asyncio
    async def test_different_action_is_not_a_duplicate(self, db_session: AsyncSession, admin_user: User):
        """Test that only same-target same-action records are merged."""
        base = NOW - timedelta(hours=1)
        target = await UserFactory.create(
            db_session,
            audit_log=[legacy_record("unblocked", admin_user, base)]
        )
        await AuditEntryFactory.create(db_session, "blocked", target.id, admin_user, timestamp=base)

        result = await reconciler(db_session).query(HistoryFilters())

        assert sorted(e.action for e in result.entries) == ["blocked", "unblocked"]

    def test_deduplicate_with_configured_tolerance(self):
        """Test that the tolerance is a parameter."""
        assert deduplicate([], [], 5.0) == []


# -----------------------------------------------------------------------------
# Ordering, Filters, Stats and Paging
# -----------------------------------------------------------------------------

class TestQueryShape:
    """Tests for ordering, filters, stats and paging."""

    async def seed(self, db: AsyncSession, admin_user: User, manager_user: User, regular_user: User):
        await AuditEntryFactory.create(
            db, "blocked", regular_user.id, admin_user,
            target_name="Dana", timestamp=NOW - timedelta(days=3), reason="spam"
        )
        await AuditEntryFactory.create(
            db, "unblocked", regular_user.id, manager_user,
            target_name="Dana", timestamp=NOW - timedelta(days=1), reason="appeal accepted"
        )
        await UserFactory.create(
            db,
            name="Legacy Lee",
            audit_log=[legacy_record(
                "role_changed", admin_user, NOW - timedelta(days=2),
                changes=[{"field": "role", "old_value": "user", "new_value": "writer"}]
            )]
        )

    @pytest.mark.asyncio
    async def test_sorted_newest_first(
        self,
        db_session: AsyncSession,
        admin_user: User,
        manager_user: User,
        regular_user: User
    ):
        """Test that both stores are interleaved by timestamp."""
        await self.seed(db_session, admin_user, manager_user, regular_user)

        result = await reconciler(db_session).query(HistoryFilters())

        assert [e.action for e in result.entries] == ["unblocked", "role_changed", "blocked"]
        timestamps = [e.timestamp for e in result.entries]
        assert timestamps == sorted(timestamps, reverse=True)

    @pytest.mark.asyncio
    async def test_search_is_case_insensitive(
        self,
        db_session: AsyncSession,
        admin_user: User,
        manager_user: User,
        regular_user: User
    ):
        """Test text search over names, reason and description."""
        await self.seed(db_session, admin_user, manager_user, regular_user)

        by_name = await reconciler(db_session).query(HistoryFilters(search_text="DANA"))
        by_reason = await reconciler(db_session).query(HistoryFilters(search_text="Appeal"))
        by_description = await reconciler(db_session).query(HistoryFilters(search_text="role changed from user"))

        assert {e.action for e in by_name.entries} == {"blocked", "unblocked"}
        assert [e.action for e in by_reason.entries] == ["unblocked"]
        assert [e.action for e in by_description.entries] == ["role_changed"]

    @pytest.mark.asyncio
    async def test_action_and_performer_filters(
        self,
        db_session: AsyncSession,
        admin_user: User,
        manager_user: User,
        regular_user: User
    ):
        """Test exact action and performer filters."""
        await self.seed(db_session, admin_user, manager_user, regular_user)

        by_action = await reconciler(db_session).query(HistoryFilters(action="blocked"))
        by_performer = await reconciler(db_session).query(HistoryFilters(performer_id=manager_user.id))
        unknown_action = await reconciler(db_session).query(HistoryFilters(action="explode"))

        assert [e.action for e in by_action.entries] == ["blocked"]
        assert [e.action for e in by_performer.entries] == ["unblocked"]
        assert len(unknown_action.entries) == 3

    @pytest.mark.asyncio
    async def test_stats_cover_full_filtered_set(
        self,
        db_session: AsyncSession,
        admin_user: User,
        manager_user: User,
        regular_user: User
    ):
        """Test that stats ignore paging."""
        await self.seed(db_session, admin_user, manager_user, regular_user)

        result = await reconciler(db_session).query(HistoryFilters(skip=1, limit=1))

        assert [e.action for e in result.entries] == ["role_changed"]
        assert result.stats.total_activities == 3
        assert result.stats.action_breakdown == {"blocked": 1, "unblocked": 1, "role_changed": 1}
        assert result.stats.staff_breakdown == {"Alice Admin": 2, "Morgan Manager": 1}

    @pytest.mark.asyncio
    async def test_limit_is_capped(
        self,
        db_session: AsyncSession,
        admin_user: User,
        manager_user: User,
        regular_user: User
    ):
        """Test that the page size never exceeds the configured maximum."""
        await self.seed(db_session, admin_user, manager_user, regular_user)

        result = await reconciler(db_session, max_results=2).query(HistoryFilters(limit=50))

        assert len(result.entries) == 2
        assert result.stats.total_activities == 3

    @pytest.mark.asyncio
    async def test_staff_list(
        self,
        db_session: AsyncSession,
        admin_user: User,
        manager_user: User,
        writer_user: User,
        regular_user: User
    ):
        """Test that only staff roles are offered as performer filters."""
        result = await reconciler(db_session).query(HistoryFilters())

        staff_ids = {s.id for s in result.staff_list}
        assert staff_ids == {admin_user.id, manager_user.id, writer_user.id}


# -----------------------------------------------------------------------------
# Identity Resolution
# -----------------------------------------------------------------------------

class TestIdentityResolution:
    """Tests for current identities and snapshot fallbacks."""

    @pytest.mark.asyncio
    async def test_role_change_scenario(
        self,
        db_session: AsyncSession,
        admin_user: User,
        regular_user: User
    ):
        """Test the view of a role change from user to writer."""
        writer = AuditWriter(db_session, clock=lambda: NOW - timedelta(minutes=5))
        await writer.log_role_change(
            regular_user.id, Actor.from_user(admin_user), UserRole.USER, UserRole.WRITER, reason="promotion"
        )

        result = await reconciler(db_session).query(HistoryFilters())

        assert len(result.entries) == 1
        view = result.entries[0]
        assert [c.model_dump() for c in view.changes] == [
            {"field": "role", "old_value": "user", "new_value": "writer"}
        ]
        assert isinstance(view.details, RoleChangeDisplay)
        assert "user" in view.description and "writer" in view.description
        assert view.target.email == "dana@test.com"
        assert view.performed_by.name == "Alice Admin"

    @pytest.mark.asyncio
    async def test_deleted_user_keeps_snapshot(
        self,
        db_session: AsyncSession,
        admin_user: User,
        regular_user: User
    ):
        """Test that history still names a user after the account is deleted."""
        user_id = regular_user.id
        writer = AuditWriter(db_session, clock=lambda: NOW - timedelta(hours=2))
        actor = Actor.from_user(admin_user)
        await writer.log_user_block(user_id, actor, reason="spam")
        writer = AuditWriter(db_session, clock=lambda: NOW - timedelta(hours=1))
        await writer.log_account_deletion(user_id, actor, reason="requested")

        await db_session.delete(regular_user)
        await db_session.commit()

        result = await reconciler(db_session).query(HistoryFilters())

        assert [e.action for e in result.entries] == ["account_deleted", "blocked"]
        assert all(e.source == "centralized_audit" for e in result.entries)

        deletion, block = result.entries
        assert deletion.target.name == "Dana"
        assert deletion.target.email == "dana@test.com"
        assert deletion.target.role == "user"
        assert deletion.original_names.target == "Dana"
        assert deletion.current_names.target is None
        assert isinstance(deletion.details, AccountDeletionDisplay)
        assert deletion.details.deleted_user.name == "Dana"
        assert deletion.description == "User account permanently deleted"

        assert block.target.name == "Dana"
        assert block.target.email == "unknown@email.com"
        assert block.target.role == "unknown"
        assert isinstance(block.details, BlockStatusDisplay)

    @pytest.mark.asyncio
    async def test_renamed_performer_shows_current_name(
        self,
        db_session: AsyncSession,
        admin_user: User,
        regular_user: User
    ):
        """Test that current names win while original names are kept."""
        await AuditEntryFactory.create(
            db_session, "blocked", regular_user.id, admin_user,
            target_name="Dana", timestamp=NOW - timedelta(days=1)
        )
        admin_user.name = "Alice Renamed"
        await db_session.commit()

        view = (await reconciler(db_session).query(HistoryFilters())).entries[0]

        assert view.performed_by.name == "Alice Renamed"
        assert view.original_names.performed_by == "Alice Admin"
        assert view.current_names.performed_by == "Alice Renamed"

    @pytest.mark.asyncio
    async def test_resolution_is_batched(
        self,
        db_session: AsyncSession,
        admin_user: User,
        manager_user: User,
        regular_user: User
    ):
        """Test that identities are resolved in one batch per store."""
        for days in range(1, 6):
            await AuditEntryFactory.create(
                db_session, "blocked", regular_user.id, admin_user, timestamp=NOW - timedelta(days=days)
            )
        resolver = FakeResolver({
            admin_user.id: ResolvedIdentity(id=admin_user.id, name="Alice Admin", email="admin@test.com", role="admin"),
        })

        result = await reconciler(db_session, resolver=resolver).query(HistoryFilters())

        assert len(result.entries) == 5
        assert len(resolver.calls) == 2
        assert resolver.calls[0] == {admin_user.id, regular_user.id}

    @pytest.mark.asyncio
    async def test_resolver_failure_falls_back_to_snapshots(
        self,
        db_session: AsyncSession,
        admin_user: User,
        regular_user: User
    ):
        """Test that an unreachable identity store never fails the query."""
        await AuditEntryFactory.create(
            db_session, "blocked", regular_user.id, admin_user,
            target_name="Dana", timestamp=NOW - timedelta(days=1)
        )

        result = await reconciler(db_session, resolver=FailingResolver()).query(HistoryFilters())

        view = result.entries[0]
        assert view.target.name == "Dana"
        assert view.performed_by.name == "Alice Admin"
        assert view.current_names.performed_by is None

    @pytest.mark.asyncio
    async def test_unreadable_details_are_ignored(
        self,
        db_session: AsyncSession,
        admin_user: User,
        regular_user: User
    ):
        """Test that an unknown details payload does not break the view."""
        await AuditEntryFactory.create(
            db_session, "account_deleted", "gone-user", admin_user,
            target_name="Ghost", timestamp=NOW - timedelta(days=1), details={"kind": "mystery"}
        )

        view = (await reconciler(db_session).query(HistoryFilters())).entries[0]

        assert view.target.name == "Ghost"
        assert view.target.email == "unknown@email.com"
        assert isinstance(view.details, AccountDeletionDisplay)


# -----------------------------------------------------------------------------
# Other Categories
# -----------------------------------------------------------------------------

class TestOtherCategories:
    """Tests for categories without a legacy store."""

    @pytest.mark.asyncio
    async def test_tool_history_uses_snapshots(self, db_session: AsyncSession, admin_user: User):
        """Test that a deleted tool is still described after removal."""
        tool = await ToolFactory.create(db_session, name="Summarizer")
        writer = AuditWriter(db_session, clock=lambda: NOW - timedelta(hours=1))
        await writer.log_tool_action(tool.id, "deleted", Actor.from_user(admin_user), reason="duplicate")
        await db_session.delete(tool)
        await db_session.commit()

        result = await reconciler(db_session).query(HistoryFilters(), category=AuditCategory.TOOL_MANAGEMENT)

        assert len(result.entries) == 1
        view = result.entries[0]
        assert view.category == "tool_management"
        assert view.target.type == TargetType.TOOL.value
        assert view.target.name == "Summarizer"
        assert view.current_names.target is None
        assert isinstance(view.details, ContentDeletionDisplay)
        assert view.description == "Tool 'Summarizer' deleted"

    @pytest.mark.asyncio
    async def test_categories_are_separate(
        self,
        db_session: AsyncSession,
        admin_user: User,
        regular_user: User
    ):
        """Test that user management history excludes content entries."""
        tool = await ToolFactory.create(db_session)
        writer = AuditWriter(db_session, clock=lambda: NOW - timedelta(hours=1))
        actor = Actor.from_user(admin_user)
        await writer.log_tool_action(tool.id, "updated", actor)
        await writer.log_user_block(regular_user.id, actor)

        users = await reconciler(db_session).query(HistoryFilters())
        tools = await reconciler(db_session).query(HistoryFilters(), category="tool_management")

        assert [e.action for e in users.entries] == ["blocked"]
        assert [e.action for e in tools.entries] == ["updated"]
