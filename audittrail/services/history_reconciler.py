"""
History Reconciler Service

Rebuilds a single activity timeline from the centralized audit store and the
legacy embedded logs:

1. Resolve the time window
2. Read centralized entries and batch-resolve current identities
3. Read legacy records from users that still exist
4. Drop legacy records already covered by a centralized entry
5. Filter, sort, compute stats over the full filtered set, then page
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Dict, Iterable, List, Optional, Tuple, Union
import logging

from pydantic import ValidationError
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from audittrail.core.config import settings
from audittrail.models.audit import AuditEntry, AuditAction, AuditCategory, TargetType
from audittrail.models.user import User, STAFF_ROLES
from audittrail.schemas.audit import (
    FieldChange,
    RequestMetadata,
    UserDeletionDetails,
    parse_details,
    snapshot_name,
)
from audittrail.schemas.history import (
    ActivityIdentity,
    ActivityView,
    HistoryFilters,
    HistoryStats,
    NamePair,
    StaffMember,
)
from audittrail.services.activity_details import build_activity_details, UNKNOWN_EMAIL, UNKNOWN_ROLE
from audittrail.services.identity_resolver import (
    IdentityResolver,
    ResolvedIdentity,
    SqlUserIdentityResolver,
)
from audittrail.services.legacy_log import LegacyAuditLog

logger = logging.getLogger(__name__)

ALL = "all"
SOURCE_CENTRALIZED = "centralized_audit"
SOURCE_LEGACY = "legacy_audit"

_KNOWN_ACTIONS = {a.value for a in AuditAction}


@dataclass
class HistoryResult:
    entries: List[ActivityView]
    staff_list: List[StaffMember]
    stats: HistoryStats


def normalize_days_window(raw: Optional[str]) -> Tuple[str, Optional[int]]:
    """
    Parse a days-window filter.

    Returns the label to report and the number of days, None meaning unbounded.
    Unparsable or non-positive values fall back to the configured default.
    """
    value = (raw or "").strip().lower()
    if value == ALL:
        return ALL, None
    try:
        days = int(value)
    except ValueError:
        days = 0
    if days <= 0:
        days = settings.default_days_window
    return str(days), days


def normalize_action(raw: Optional[str]) -> Optional[str]:
    """Exact action filter, or None when absent, 'all' or unrecognized."""
    value = (raw or "").strip()
    if not value or value == ALL or value not in _KNOWN_ACTIONS:
        return None
    return value


def normalize_performer(raw: Optional[str]) -> Optional[str]:
    value = (raw or "").strip()
    if not value or value == ALL:
        return None
    return value


def _parse_changes(raw: Optional[Iterable[dict]]) -> List[FieldChange]:
    changes = []
    for item in raw or []:
        try:
            changes.append(FieldChange.model_validate(item))
        except ValidationError:
            logger.debug(f"Skipping malformed change record: {item!r}")
    return changes


def _parse_metadata(raw: Optional[dict]) -> RequestMetadata:
    try:
        return RequestMetadata.model_validate(raw or {})
    except ValidationError:
        return RequestMetadata()


def _identity(resolved: ResolvedIdentity, type_: Optional[str] = None) -> ActivityIdentity:
    return ActivityIdentity(id=resolved.id, name=resolved.name, email=resolved.email, role=resolved.role, type=type_)


def deduplicate(
    centralized: List[ActivityView],
    legacy: List[ActivityView],
    tolerance_seconds: float,
) -> List[ActivityView]:
    """
    Legacy views not already represented in the centralized set.

    A legacy view is a duplicate when a centralized view has the same target,
    the same action and a timestamp less than ``tolerance_seconds`` away.
    """
    seen: Dict[Tuple[Optional[str], str], List[datetime]] = {}
    for view in centralized:
        seen.setdefault((view.target.id, view.action), []).append(view.timestamp)

    survivors = []
    for view in legacy:
        timestamps = seen.get((view.target.id, view.action), [])
        if any(abs((view.timestamp - ts).total_seconds()) < tolerance_seconds for ts in timestamps):
            continue
        survivors.append(view)
    return survivors


def matches_search(view: ActivityView, needle: str) -> bool:
    haystack = (
        view.target.name,
        view.target.email,
        view.performed_by.name,
        view.reason,
        view.description,
    )
    return any(value and needle in value.lower() for value in haystack)


def compute_stats(views: List[ActivityView], time_range: str) -> HistoryStats:
    action_breakdown: Dict[str, int] = {}
    staff_breakdown: Dict[str, int] = {}
    for view in views:
        action_breakdown[view.action] = action_breakdown.get(view.action, 0) + 1
        staff_name = view.performed_by.name or "Unknown"
        staff_breakdown[staff_name] = staff_breakdown.get(staff_name, 0) + 1
    return HistoryStats(
        total_activities=len(views),
        action_breakdown=action_breakdown,
        staff_breakdown=staff_breakdown,
        time_range=time_range,
    )


class HistoryReconciler:
    """
    Read path of the audit trail.

    The identity resolver is injected so the reconciler can be exercised
    with a fake; it defaults to a SQL lookup on the same session.
    """

    def __init__(
        self,
        db: AsyncSession,
        resolver: Optional[IdentityResolver] = None,
        legacy_log: Optional[LegacyAuditLog] = None,
        clock: Optional[Callable[[], datetime]] = None,
        dedup_tolerance_seconds: Optional[float] = None,
        max_results: Optional[int] = None,
    ):
        self.db = db
        self.resolver = resolver or SqlUserIdentityResolver(db)
        self.legacy_log = legacy_log or LegacyAuditLog(db)
        self._now = clock or datetime.utcnow
        self.dedup_tolerance_seconds = (
            dedup_tolerance_seconds
            if dedup_tolerance_seconds is not None
            else settings.AUDIT_DEDUP_TOLERANCE_SECONDS
        )
        self.max_results = max_results or settings.AUDIT_HISTORY_MAX_RESULTS

    async def query(
        self,
        filters: HistoryFilters,
        category: Union[AuditCategory, str] = AuditCategory.USER_MANAGEMENT,
    ) -> HistoryResult:
        """
        Reconstruct the filtered activity history for a category.

        Args:
            filters: Search, action, performer, window and paging filters
            category: Audit category to read

        Returns:
            HistoryResult with the requested page, staff list and stats
        """
        category = AuditCategory(category)
        time_range, days = normalize_days_window(filters.days_window)
        start = self._now() - timedelta(days=days) if days is not None else None

        centralized = await self._centralized_views(category, start)

        legacy: List[ActivityView] = []
        if category == AuditCategory.USER_MANAGEMENT:
            legacy = await self._legacy_views(start)

        merged = centralized + deduplicate(centralized, legacy, self.dedup_tolerance_seconds)
        filtered = self._apply_filters(merged, filters)
        filtered.sort(key=lambda v: v.timestamp, reverse=True)

        stats = compute_stats(filtered, time_range)

        skip = max(filters.skip or 0, 0)
        limit = min(filters.limit or self.max_results, self.max_results)
        page = filtered[skip:skip + limit]

        logger.debug(
            f"History query category={category.value} window={time_range}: "
            f"{len(centralized)} centralized, {len(legacy)} legacy, "
            f"{len(filtered)} after filters, {len(page)} returned"
        )

        return HistoryResult(entries=page, staff_list=await self.staff_list(), stats=stats)

    async def staff_list(self) -> List[StaffMember]:
        """Staff members available as performer filters."""
        try:
            result = await self.db.execute(
                select(User.id, User.name, User.email, User.role)
                .where(User.role.in_(STAFF_ROLES))
                .order_by(User.name)
            )
            return [
                StaffMember(id=row.id, name=row.name, email=row.email, role=row.role.value)
                for row in result.all()
            ]
        except Exception as e:
            logger.warning(f"Error fetching staff members: {e}")
            return []

    async def _resolve(self, ids: Iterable[str]) -> Dict[str, ResolvedIdentity]:
        try:
            return await self.resolver.resolve(ids)
        except Exception as e:
            logger.warning(f"Identity resolution failed, using snapshot identities: {e}")
            return {}

    def _apply_filters(self, views: List[ActivityView], filters: HistoryFilters) -> List[ActivityView]:
        needle = (filters.search_text or "").strip().lower()
        action = normalize_action(filters.action)
        performer = normalize_performer(filters.performer_id)

        filtered = views
        if needle:
            filtered = [v for v in filtered if matches_search(v, needle)]
        if action:
            filtered = [v for v in filtered if v.action == action]
        if performer:
            filtered = [v for v in filtered if v.performed_by.id == performer]
        return list(filtered)

    async def _centralized_views(self, category: AuditCategory, start: Optional[datetime]) -> List[ActivityView]:
        query = select(AuditEntry).where(AuditEntry.category == category.value)
        if start is not None:
            query = query.where(AuditEntry.timestamp >= start)
        query = query.order_by(AuditEntry.timestamp.desc())

        try:
            result = await self.db.execute(query)
            entries = result.scalars().all()
        except Exception as e:
            logger.error(f"Error fetching centralized audit entries: {e}", exc_info=True)
            await self.db.rollback()
            return []

        ids = set()
        for entry in entries:
            ids.add(entry.performed_by_id)
            if entry.target_type == TargetType.USER.value:
                ids.add(entry.target_id)
        identities = await self._resolve(ids)

        return [self._view_from_entry(entry, identities) for entry in entries]

    def _view_from_entry(self, entry: AuditEntry, identities: Dict[str, ResolvedIdentity]) -> ActivityView:
        stored = parse_details(entry.details)
        changes = _parse_changes(entry.changes)
        is_user_target = entry.target_type == TargetType.USER.value

        if is_user_target:
            deleted_info = stored.deleted_user_info if isinstance(stored, UserDeletionDetails) else None
            snapshot_target = ActivityIdentity(
                id=entry.target_id,
                name=entry.target_name or snapshot_name(stored) or "Deleted User",
                email=deleted_info.email if deleted_info and deleted_info.email else UNKNOWN_EMAIL,
                role=deleted_info.role if deleted_info and deleted_info.role else UNKNOWN_ROLE,
                type=entry.target_type,
            )
        else:
            snapshot_target = ActivityIdentity(
                id=entry.target_id,
                name=entry.target_name or snapshot_name(stored) or f"Deleted {entry.target_type}",
                type=entry.target_type,
            )

        current_target = identities.get(entry.target_id) if is_user_target else None
        current_performer = identities.get(entry.performed_by_id)

        target = _identity(current_target, entry.target_type) if current_target else snapshot_target
        performed_by = _identity(current_performer) if current_performer else ActivityIdentity(
            id=entry.performed_by_id,
            name=entry.performed_by_name or "Unknown User",
            role=entry.performed_by_role or UNKNOWN_ROLE,
        )

        return ActivityView(
            id=f"central-{entry.id}",
            category=entry.category,
            action=entry.action,
            timestamp=entry.timestamp,
            target=target,
            performed_by=performed_by,
            reason=entry.reason,
            changes=changes,
            metadata=RequestMetadata(
                ip_address=entry.ip_address or "unknown",
                user_agent=entry.user_agent or "unknown",
                session_id=entry.session_id,
            ),
            source=SOURCE_CENTRALIZED,
            original_names=NamePair(target=entry.target_name, performed_by=entry.performed_by_name),
            current_names=NamePair(
                target=current_target.name if current_target else None,
                performed_by=current_performer.name if current_performer else None,
            ),
            details=build_activity_details(entry.action, changes, stored, target),
        )

    async def _legacy_views(self, start: Optional[datetime]) -> List[ActivityView]:
        try:
            rows = await self.legacy_log.read_window(start)
        except Exception as e:
            logger.warning(f"Error fetching legacy audit logs, continuing with centralized only: {e}")
            await self.db.rollback()
            return []

        ids = set()
        for user, _, record, _ in rows:
            ids.add(user.id)
            if record.get("performed_by"):
                ids.add(str(record["performed_by"]))
        identities = await self._resolve(ids)

        views = []
        for user, index, record, timestamp in rows:
            performer_id = str(record["performed_by"]) if record.get("performed_by") else None
            current_target = identities.get(user.id)
            current_performer = identities.get(performer_id) if performer_id else None

            target = _identity(current_target, TargetType.USER.value) if current_target else ActivityIdentity(
                id=user.id,
                name=user.name,
                email=user.email,
                role=user.role.value if user.role else None,
                type=TargetType.USER.value,
            )
            performed_by = _identity(current_performer) if current_performer else ActivityIdentity(
                id=performer_id,
                name=record.get("performed_by_name") or "Unknown User",
                role=record.get("performed_by_role") or UNKNOWN_ROLE,
            )
            action = record.get("action") or "unknown"
            changes = _parse_changes(record.get("changes"))

            views.append(ActivityView(
                id=f"legacy-{user.id}-{index}",
                category=AuditCategory.USER_MANAGEMENT.value,
                action=action,
                timestamp=timestamp,
                target=target,
                performed_by=performed_by,
                reason=record.get("reason"),
                changes=changes,
                metadata=_parse_metadata(record.get("metadata")),
                source=SOURCE_LEGACY,
                original_names=NamePair(target=user.name, performed_by=record.get("performed_by_name")),
                current_names=NamePair(
                    target=current_target.name if current_target else None,
                    performed_by=current_performer.name if current_performer else None,
                ),
                details=build_activity_details(action, changes, None, target),
            ))
        return views
