"""
Audit Writer Service

The single write path for privileged actions. Every call writes an immutable
entry to the centralized audit store first; that write is authoritative and
its outcome is returned to the caller. User-targeted actions are then mirrored
into the user's legacy embedded log on a best-effort basis: mirror failures
are logged and never reach the caller.

Destructive actions snapshot the target inside the writer call, so callers
must record them before deleting the entity.

A failed centralized write rolls the whole session back. Callers record the
action before staging their own changes and reload whatever they keep using.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Callable, List, Optional, Union
import logging

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from audittrail.core.config import settings
from audittrail.middleware.audit import get_request_metadata
from audittrail.models.audit import (
    AuditEntry,
    AuditCategory,
    AuditAction,
    TargetType,
    CATEGORY_ACTIONS,
    CATEGORY_TARGET_TYPES,
    DESTRUCTIVE_ACTIONS,
)
from audittrail.models.blog import Blog
from audittrail.models.review import Review
from audittrail.models.tool import Tool
from audittrail.models.user import User
from audittrail.schemas.audit import (
    Actor,
    AuditDetails,
    FieldChange,
    RequestMetadata,
    UserDeletionDetails,
    UserCreationDetails,
    ToolDeletionDetails,
    ReviewDeletionDetails,
    BlogDeletionDetails,
    DeletedUserInfo,
    CreatedUserInfo,
    DeletedToolInfo,
    DeletedReviewInfo,
    DeletedBlogInfo,
    dump_details,
)
from audittrail.services.legacy_log import LegacyAuditLog, build_legacy_record

logger = logging.getLogger(__name__)


@dataclass
class AuditWriteResult:
    """Outcome of an audit write. Truthy only when the centralized write succeeded."""
    success: bool
    entry_id: Optional[str] = None
    legacy_mirrored: bool = False
    error: Optional[str] = None

    def __bool__(self) -> bool:
        return self.success


class AuditWriteError(Exception):
    """Raised when policy requires an authoritative audit trail and the write failed."""

    def __init__(self, action: str, error: Optional[str] = None):
        self.action = action
        self.error = error
        super().__init__(f"Audit trail for '{action}' could not be written: {error or 'unknown error'}")


def require_authoritative(result: AuditWriteResult, action: str) -> None:
    """
    Apply the deployment's policy to a failed authoritative write.

    With AUDIT_REQUIRE_AUTHORITATIVE_WRITE enabled the failure aborts the
    caller; otherwise it is only logged.
    """
    if result.success:
        return
    if settings.AUDIT_REQUIRE_AUTHORITATIVE_WRITE:
        raise AuditWriteError(action, result.error)
    logger.warning(f"Proceeding with '{action}' without a centralized audit entry: {result.error}")


def _enum_value(value) -> Optional[str]:
    if value is None:
        return None
    return value.value if hasattr(value, "value") else str(value)


class AuditWriter:
    """
    Records privileged actions.

    Provides:
    - A general ``record`` operation
    - Specialized entry points for user management actions
    - Tool, review and blog variants that snapshot deleted content
    """

    def __init__(
        self,
        db: AsyncSession,
        legacy_log: Optional[LegacyAuditLog] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        """
        Initialize the writer.

        Args:
            db: Async database session, committed by the writer
            legacy_log: Legacy embedded log store (defaults to one on ``db``)
            clock: Source of timestamps, ``datetime.utcnow`` by default
        """
        self.db = db
        self.legacy_log = legacy_log or LegacyAuditLog(db)
        self._now = clock or datetime.utcnow

    async def record(
        self,
        category: Union[AuditCategory, str],
        action: Union[AuditAction, str],
        target_id: str,
        performed_by: Actor,
        reason: Optional[str] = None,
        changes: Optional[List[FieldChange]] = None,
        metadata: Optional[RequestMetadata] = None,
        details: Optional[AuditDetails] = None,
        target_type: Optional[Union[TargetType, str]] = None,
        target_name: Optional[str] = None,
    ) -> AuditWriteResult:
        """
        Record an action in the centralized store and mirror it to the legacy log.

        Args:
            category: Domain of the action
            action: Action, which must belong to the category
            target_id: ID of the affected entity
            performed_by: Actor snapshot
            reason: Free-text justification
            changes: Field-level deltas, in order
            metadata: Request metadata; the current request's when omitted
            details: Action-specific payload
            target_type: Kind of target; derived from the category when omitted
            target_name: Display-name snapshot; looked up when omitted

        Returns:
            AuditWriteResult describing the centralized write

        Raises:
            ValueError: If the action does not belong to the category
        """
        category = AuditCategory(category)
        action = AuditAction(action)
        if action not in CATEGORY_ACTIONS[category]:
            raise ValueError(f"Action '{action.value}' is not valid for category '{category.value}'")

        target_type = TargetType(target_type) if target_type else CATEGORY_TARGET_TYPES[category]
        changes = list(changes or [])
        metadata = metadata or get_request_metadata()

        if target_name is None:
            target_name = await self._lookup_target_name(target_type, target_id)
            if target_name is None:
                error = f"{target_type.value} {target_id} not found for audit logging"
                logger.error(error)
                return AuditWriteResult(success=False, error=error)

        timestamp = self._now()
        entry = AuditEntry(
            category=category.value,
            action=action.value,
            performed_by_id=performed_by.id,
            performed_by_name=performed_by.name,
            performed_by_role=performed_by.role,
            target_id=target_id,
            target_type=target_type.value,
            target_name=target_name,
            changes=[c.model_dump(mode="json") for c in changes],
            reason=reason,
            details=dump_details(details),
            ip_address=metadata.ip_address,
            user_agent=metadata.user_agent,
            session_id=metadata.session_id,
            timestamp=timestamp,
        )

        # Authoritative write
        try:
            self.db.add(entry)
            await self.db.commit()
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.error(
                f"Failed to write audit entry {category.value}/{action.value} for {target_type.value} {target_id}: {e}",
                exc_info=True
            )
            return AuditWriteResult(success=False, error=str(e))

        entry_id = entry.id
        logger.info(
            f"Audit entry {entry_id}: {action.value} on {target_type.value} {target_id} "
            f"by {performed_by.name} ({performed_by.role})"
        )

        legacy_mirrored = False
        if target_type == TargetType.USER:
            legacy_mirrored = await self._mirror_to_legacy(
                target_id,
                build_legacy_record(action.value, performed_by, reason, changes, metadata, timestamp),
            )

        return AuditWriteResult(success=True, entry_id=entry_id, legacy_mirrored=legacy_mirrored)

    async def _mirror_to_legacy(self, user_id: str, record: dict) -> bool:
        """Best-effort legacy write. Never raises."""
        try:
            async with self.db.begin_nested():
                mirrored = await self.legacy_log.append(user_id, record)
        except Exception as e:
            logger.warning(f"Legacy audit log write failed for user {user_id}: {e}")
            return False

        try:
            await self.db.commit()
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.warning(f"Legacy audit log commit failed for user {user_id}: {e}")
            return False

        if not mirrored:
            logger.warning(f"Legacy audit log skipped: user {user_id} no longer exists")
        return mirrored

    async def _lookup_target_name(self, target_type: TargetType, target_id: str) -> Optional[str]:
        if target_type == TargetType.USER:
            user = await self._get(User, target_id)
            return user.name if user else None
        if target_type == TargetType.TOOL:
            tool = await self._get(Tool, target_id)
            return tool.name if tool else None
        if target_type == TargetType.BLOG:
            blog = await self._get(Blog, target_id)
            return blog.title if blog else None
        if target_type == TargetType.REVIEW:
            review = await self._get(Review, target_id)
            if not review:
                return None
            tool = await self._get(Tool, review.tool_id) if review.tool_id else None
            return f"Review on {tool.name if tool else 'Unknown Tool'}"
        return None

    async def _get(self, model, entity_id: Optional[str]):
        if not entity_id:
            return None
        result = await self.db.execute(select(model).where(model.id == entity_id))
        return result.scalar_one_or_none()

    # ------------------------------------------------------------------
    # User management
    # ------------------------------------------------------------------

    async def log_role_change(
        self,
        target_user_id: str,
        performed_by: Actor,
        from_role,
        to_role,
        reason: Optional[str] = None,
        metadata: Optional[RequestMetadata] = None,
    ) -> AuditWriteResult:
        return await self.record(
            AuditCategory.USER_MANAGEMENT,
            AuditAction.ROLE_CHANGED,
            target_user_id,
            performed_by,
            reason=reason,
            changes=[FieldChange(field="role", old_value=_enum_value(from_role), new_value=_enum_value(to_role))],
            metadata=metadata,
        )

    async def log_user_block(
        self,
        target_user_id: str,
        performed_by: Actor,
        reason: Optional[str] = None,
        metadata: Optional[RequestMetadata] = None,
    ) -> AuditWriteResult:
        return await self.record(
            AuditCategory.USER_MANAGEMENT,
            AuditAction.BLOCKED,
            target_user_id,
            performed_by,
            reason=reason,
            changes=[FieldChange(field="isBlocked", old_value=False, new_value=True)],
            metadata=metadata,
        )

    async def log_user_unblock(
        self,
        target_user_id: str,
        performed_by: Actor,
        reason: Optional[str] = None,
        metadata: Optional[RequestMetadata] = None,
    ) -> AuditWriteResult:
        return await self.record(
            AuditCategory.USER_MANAGEMENT,
            AuditAction.UNBLOCKED,
            target_user_id,
            performed_by,
            reason=reason,
            changes=[FieldChange(field="isBlocked", old_value=True, new_value=False)],
            metadata=metadata,
        )

    async def log_data_modification(
        self,
        target_user_id: str,
        performed_by: Actor,
        changes: List[FieldChange],
        reason: Optional[str] = None,
        metadata: Optional[RequestMetadata] = None,
    ) -> AuditWriteResult:
        return await self.record(
            AuditCategory.USER_MANAGEMENT,
            AuditAction.DATA_MODIFIED,
            target_user_id,
            performed_by,
            reason=reason,
            changes=changes,
            metadata=metadata,
        )

    async def log_profile_update(
        self,
        target_user_id: str,
        performed_by: Actor,
        changes: List[FieldChange],
        reason: Optional[str] = None,
        metadata: Optional[RequestMetadata] = None,
    ) -> AuditWriteResult:
        return await self.record(
            AuditCategory.USER_MANAGEMENT,
            AuditAction.PROFILE_UPDATED,
            target_user_id,
            performed_by,
            reason=reason,
            changes=changes,
            metadata=metadata,
        )

    async def log_account_deletion(
        self,
        target_user_id: str,
        performed_by: Actor,
        reason: Optional[str] = None,
        metadata: Optional[RequestMetadata] = None,
    ) -> AuditWriteResult:
        """
        Record an account deletion with a full identity snapshot.

        Must be called before the user row is deleted.
        """
        user = await self._get(User, target_user_id)
        if not user:
            error = f"User {target_user_id} not found for audit logging"
            logger.error(error)
            return AuditWriteResult(success=False, error=error)

        details = UserDeletionDetails(
            deleted_user_info=DeletedUserInfo(
                id=user.id,
                name=user.name,
                email=user.email,
                role=_enum_value(user.role),
                image=user.image,
                profession=user.profession,
                created_at=user.created_at,
                updated_at=user.updated_at,
            ),
            deletion_time=self._now(),
            deleted_by=performed_by,
        )
        return await self.record(
            AuditCategory.USER_MANAGEMENT,
            AuditAction.ACCOUNT_DELETED,
            target_user_id,
            performed_by,
            reason=reason,
            changes=[FieldChange(field="status", old_value="active", new_value="deleted")],
            metadata=metadata,
            details=details,
            target_name=user.name,
        )

    async def log_account_creation(
        self,
        user: User,
        performed_by: Optional[Actor] = None,
        reason: Optional[str] = "Account created",
        metadata: Optional[RequestMetadata] = None,
    ) -> AuditWriteResult:
        """Record a new account. Self-registrations are performed by the new user."""
        role = _enum_value(user.role)
        performed_by = performed_by or Actor(id=user.id, name=user.name, role=role)
        details = UserCreationDetails(
            created_user_info=CreatedUserInfo(id=user.id, name=user.name, email=user.email, role=role),
            creation_time=self._now(),
        )
        return await self.record(
            AuditCategory.USER_MANAGEMENT,
            AuditAction.ACCOUNT_CREATED,
            user.id,
            performed_by,
            reason=reason,
            changes=[FieldChange(field="status", old_value=None, new_value="active")],
            metadata=metadata,
            details=details,
            target_name=user.name,
        )

    # ------------------------------------------------------------------
    # Content management
    # ------------------------------------------------------------------

    async def log_tool_action(
        self,
        tool_id: str,
        action: Union[AuditAction, str],
        performed_by: Actor,
        changes: Optional[List[FieldChange]] = None,
        reason: Optional[str] = None,
        metadata: Optional[RequestMetadata] = None,
    ) -> AuditWriteResult:
        tool = await self._get(Tool, tool_id)
        if not tool:
            error = f"Tool {tool_id} not found for audit logging"
            logger.error(error)
            return AuditWriteResult(success=False, error=error)

        details = None
        if AuditAction(action) in DESTRUCTIVE_ACTIONS:
            details = ToolDeletionDetails(
                deleted_tool_info=DeletedToolInfo(
                    id=tool.id,
                    name=tool.name,
                    slug=tool.slug,
                    description=tool.description,
                    category=tool.category,
                    url=tool.url,
                    rating=tool.rating,
                    review_count=tool.review_count,
                    price=tool.price,
                    created_at=tool.created_at,
                    updated_at=tool.updated_at,
                ),
                deletion_time=self._now(),
                deleted_by=performed_by,
            )

        return await self.record(
            AuditCategory.TOOL_MANAGEMENT,
            action,
            tool_id,
            performed_by,
            reason=reason,
            changes=changes,
            metadata=metadata,
            details=details,
            target_name=tool.name,
        )

    async def log_review_action(
        self,
        review_id: str,
        action: Union[AuditAction, str],
        performed_by: Actor,
        changes: Optional[List[FieldChange]] = None,
        reason: Optional[str] = None,
        metadata: Optional[RequestMetadata] = None,
    ) -> AuditWriteResult:
        review = await self._get(Review, review_id)
        if not review:
            error = f"Review {review_id} not found for audit logging"
            logger.error(error)
            return AuditWriteResult(success=False, error=error)

        tool = await self._get(Tool, review.tool_id)
        tool_name = tool.name if tool else None

        details = None
        if AuditAction(action) in DESTRUCTIVE_ACTIONS:
            author = await self._get(User, review.user_id)
            details = ReviewDeletionDetails(
                deleted_review_info=DeletedReviewInfo(
                    id=review.id,
                    user_id=review.user_id,
                    user_name=author.name if author else None,
                    user_email=author.email if author else None,
                    tool_id=review.tool_id,
                    tool_name=tool_name,
                    rating=review.rating,
                    comment=review.comment,
                    reply=review.reply,
                    status=_enum_value(review.status),
                    created_at=review.created_at,
                    updated_at=review.updated_at,
                ),
                deletion_time=self._now(),
                deleted_by=performed_by,
            )

        return await self.record(
            AuditCategory.REVIEW_MANAGEMENT,
            action,
            review_id,
            performed_by,
            reason=reason,
            changes=changes,
            metadata=metadata,
            details=details,
            target_name=f"Review on {tool_name or 'Unknown Tool'}",
        )

    async def log_blog_action(
        self,
        blog_id: str,
        action: Union[AuditAction, str],
        performed_by: Actor,
        changes: Optional[List[FieldChange]] = None,
        reason: Optional[str] = None,
        metadata: Optional[RequestMetadata] = None,
        category: Union[AuditCategory, str] = AuditCategory.BLOG_MODERATION,
    ) -> AuditWriteResult:
        blog = await self._get(Blog, blog_id)
        if not blog:
            error = f"Blog {blog_id} not found for audit logging"
            logger.error(error)
            return AuditWriteResult(success=False, error=error)

        details = None
        if AuditAction(action) in DESTRUCTIVE_ACTIONS:
            author = await self._get(User, blog.author_id)
            limit = settings.AUDIT_BLOG_CONTENT_SNAPSHOT_CHARS
            content = blog.content
            if content and len(content) > limit:
                content = content[:limit] + "..."
            details = BlogDeletionDetails(
                deleted_blog_info=DeletedBlogInfo(
                    id=blog.id,
                    title=blog.title,
                    slug=blog.slug,
                    content=content,
                    excerpt=blog.excerpt,
                    author_id=blog.author_id,
                    author_name=author.name if author else None,
                    author_email=author.email if author else None,
                    status=_enum_value(blog.status),
                    tags=list(blog.tags or []),
                    views=blog.views,
                    published_at=blog.published_at,
                    created_at=blog.created_at,
                    updated_at=blog.updated_at,
                ),
                deletion_time=self._now(),
                deleted_by=performed_by,
            )

        return await self.record(
            category,
            action,
            blog_id,
            performed_by,
            reason=reason,
            changes=changes,
            metadata=metadata,
            details=details,
            target_name=blog.title,
        )
