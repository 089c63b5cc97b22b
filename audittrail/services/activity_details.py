from typing import List, Optional

from audittrail.models.audit import AuditAction
from audittrail.schemas.audit import (
    AuditDetails,
    FieldChange,
    UserDeletionDetails,
    UserCreationDetails,
    ToolDeletionDetails,
    ReviewDeletionDetails,
    BlogDeletionDetails,
)
from audittrail.schemas.history import (
    ActivityDetails,
    ActivityIdentity,
    RoleChangeDisplay,
    BlockStatusDisplay,
    FieldEditDisplay,
    AccountDeletionDisplay,
    AccountCreationDisplay,
    ContentDeletionDisplay,
)

UNKNOWN_EMAIL = "unknown@email.com"
UNKNOWN_ROLE = "unknown"


def describe_role_change(changes: List[FieldChange]) -> Optional[RoleChangeDisplay]:
    role_change = next((c for c in changes if c.field == "role"), None)
    if role_change is None:
        return None
    return RoleChangeDisplay(
        from_role=role_change.old_value,
        to_role=role_change.new_value,
        description=f"Role changed from {role_change.old_value} to {role_change.new_value}",
    )


def describe_block_status(action: str) -> BlockStatusDisplay:
    blocked = action == AuditAction.BLOCKED.value
    return BlockStatusDisplay(
        previous_status="active" if blocked else "blocked",
        new_status="blocked" if blocked else "active",
        description=f"User account {action}",
    )


def describe_field_edit(changes: List[FieldChange]) -> FieldEditDisplay:
    fields = [c.field for c in changes]
    return FieldEditDisplay(
        fields_changed=fields,
        changes_count=len(fields),
        description=f"{len(fields)} field(s) modified: {', '.join(fields) or 'Unknown'}",
    )


def build_activity_details(
    action: str,
    changes: List[FieldChange],
    stored: Optional[AuditDetails],
    target: ActivityIdentity,
) -> Optional[ActivityDetails]:
    """
    Derive the display details block for an activity.

    Args:
        action: Recorded action
        changes: Recorded field changes
        stored: Details payload saved with the record, if any
        target: Identity used when the payload holds no snapshot

    Returns:
        Display details, or None for actions without a summary
    """
    if action == AuditAction.ROLE_CHANGED.value:
        return describe_role_change(changes)

    if action in (AuditAction.BLOCKED.value, AuditAction.UNBLOCKED.value):
        return describe_block_status(action)

    if action in (AuditAction.PROFILE_UPDATED.value, AuditAction.DATA_MODIFIED.value):
        return describe_field_edit(changes)

    if action == AuditAction.ACCOUNT_DELETED.value:
        if isinstance(stored, UserDeletionDetails):
            info = stored.deleted_user_info
            deleted_user = ActivityIdentity(id=info.id, name=info.name, email=info.email, role=info.role, type="User")
        else:
            deleted_user = ActivityIdentity(
                id=target.id,
                name=target.name,
                email=target.email or UNKNOWN_EMAIL,
                role=target.role or UNKNOWN_ROLE,
                type="User",
            )
        return AccountDeletionDisplay(description="User account permanently deleted", deleted_user=deleted_user)

    if action == AuditAction.ACCOUNT_CREATED.value:
        if isinstance(stored, UserCreationDetails):
            info = stored.created_user_info
            created_user = ActivityIdentity(id=info.id, name=info.name, email=info.email, role=info.role, type="User")
        else:
            created_user = target
        return AccountCreationDisplay(description="User account created", created_user=created_user)

    if isinstance(stored, ToolDeletionDetails):
        return ContentDeletionDisplay(
            description=f"Tool '{stored.deleted_tool_info.name}' deleted",
            snapshot=stored.deleted_tool_info.model_dump(mode="json"),
        )
    if isinstance(stored, ReviewDeletionDetails):
        info = stored.deleted_review_info
        return ContentDeletionDisplay(
            description=f"Review on {info.tool_name or 'Unknown Tool'} deleted",
            snapshot=info.model_dump(mode="json"),
        )
    if isinstance(stored, BlogDeletionDetails):
        return ContentDeletionDisplay(
            description=f"Blog post '{stored.deleted_blog_info.title}' deleted",
            snapshot=stored.deleted_blog_info.model_dump(mode="json"),
        )

    return None
