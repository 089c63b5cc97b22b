from sqlalchemy import Column, String, DateTime, JSON, Text, event
from datetime import datetime
import uuid
import enum
from audittrail.core.database import Base


class AuditCategory(str, enum.Enum):
    USER_MANAGEMENT = "user_management"
    TOOL_MANAGEMENT = "tool_management"
    REVIEW_MANAGEMENT = "review_management"
    BLOG_MODERATION = "blog_moderation"
    BLOG_CREATION = "blog_creation"


class AuditAction(str, enum.Enum):
    # User management
    ROLE_CHANGED = "role_changed"
    BLOCKED = "blocked"
    UNBLOCKED = "unblocked"
    PROFILE_UPDATED = "profile_updated"
    DATA_MODIFIED = "data_modified"
    ACCOUNT_CREATED = "account_created"
    ACCOUNT_DELETED = "account_deleted"

    # Content
    CREATED = "created"
    UPDATED = "updated"
    DELETED = "deleted"
    APPROVED = "approved"
    REJECTED = "rejected"
    REPOSTED = "reposted"
    MOVED_TO_TRASH = "moved_to_trash"
    HIDDEN = "hidden"
    RESTORED = "restored"
    REPLIED = "replied"
    SOFT_DELETED = "soft_deleted"
    PERMANENTLY_DELETED = "permanently_deleted"


class TargetType(str, enum.Enum):
    USER = "User"
    TOOL = "Tool"
    REVIEW = "Review"
    BLOG = "Blog"


CATEGORY_ACTIONS = {
    AuditCategory.USER_MANAGEMENT: frozenset({
        AuditAction.ROLE_CHANGED,
        AuditAction.BLOCKED,
        AuditAction.UNBLOCKED,
        AuditAction.PROFILE_UPDATED,
        AuditAction.DATA_MODIFIED,
        AuditAction.ACCOUNT_CREATED,
        AuditAction.ACCOUNT_DELETED,
    }),
    AuditCategory.TOOL_MANAGEMENT: frozenset({
        AuditAction.CREATED,
        AuditAction.UPDATED,
        AuditAction.DELETED,
    }),
    AuditCategory.REVIEW_MANAGEMENT: frozenset({
        AuditAction.UPDATED,
        AuditAction.HIDDEN,
        AuditAction.RESTORED,
        AuditAction.REPLIED,
        AuditAction.DELETED,
    }),
    AuditCategory.BLOG_MODERATION: frozenset({
        AuditAction.APPROVED,
        AuditAction.REJECTED,
        AuditAction.REPOSTED,
        AuditAction.MOVED_TO_TRASH,
        AuditAction.RESTORED,
        AuditAction.UPDATED,
        AuditAction.SOFT_DELETED,
        AuditAction.PERMANENTLY_DELETED,
        AuditAction.DELETED,
    }),
    AuditCategory.BLOG_CREATION: frozenset({
        AuditAction.CREATED,
    }),
}

CATEGORY_TARGET_TYPES = {
    AuditCategory.USER_MANAGEMENT: TargetType.USER,
    AuditCategory.TOOL_MANAGEMENT: TargetType.TOOL,
    AuditCategory.REVIEW_MANAGEMENT: TargetType.REVIEW,
    AuditCategory.BLOG_MODERATION: TargetType.BLOG,
    AuditCategory.BLOG_CREATION: TargetType.BLOG,
}

# Actions that remove the target from its live store
DESTRUCTIVE_ACTIONS = frozenset({
    AuditAction.ACCOUNT_DELETED,
    AuditAction.DELETED,
    AuditAction.PERMANENTLY_DELETED,
})


class ImmutableAuditEntryError(Exception):
    """Raised when something tries to update or delete a stored audit entry."""


class AuditEntry(Base):
    """Append-only audit record, independent of the lifecycle of its target."""
    __tablename__ = "audit_entries"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    category = Column(String, nullable=False, index=True)
    action = Column(String, nullable=False, index=True)

    # Actor snapshot at the time of the action. No foreign keys: actor and
    # target may be deleted later
    performed_by_id = Column(String, nullable=False, index=True)
    performed_by_name = Column(String, nullable=False)
    performed_by_role = Column(String, nullable=False)

    # Target snapshot
    target_id = Column(String, nullable=False, index=True)
    target_type = Column(String, nullable=False)
    target_name = Column(String, nullable=False)

    # [{"field": ..., "old_value": ..., "new_value": ...}]
    changes = Column(JSON, default=list, nullable=False)
    reason = Column(Text)

    # Tagged payload, see audittrail.schemas.audit.AuditDetails
    details = Column(JSON)

    # Request metadata
    ip_address = Column(String)
    user_agent = Column(String)
    session_id = Column(String)

    timestamp = Column(DateTime, default=datetime.utcnow, nullable=False, index=True)


@event.listens_for(AuditEntry, "before_update")
def _reject_audit_update(mapper, connection, target):
    raise ImmutableAuditEntryError(f"Audit entry {target.id} is immutable")


@event.listens_for(AuditEntry, "before_delete")
def _reject_audit_delete(mapper, connection, target):
    raise ImmutableAuditEntryError(f"Audit entry {target.id} cannot be deleted")
