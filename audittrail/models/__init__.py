from audittrail.core.database import Base
from audittrail.models.user import User, UserRole
from audittrail.models.tool import Tool
from audittrail.models.review import Review, ReviewStatus
from audittrail.models.blog import Blog, BlogStatus
from audittrail.models.audit import (
    AuditEntry,
    AuditCategory,
    AuditAction,
    TargetType,
    ImmutableAuditEntryError,
)

__all__ = [
    "Base",
    "User",
    "UserRole",
    "Tool",
    "Review",
    "ReviewStatus",
    "Blog",
    "BlogStatus",
    "AuditEntry",
    "AuditCategory",
    "AuditAction",
    "TargetType",
    "ImmutableAuditEntryError",
]
