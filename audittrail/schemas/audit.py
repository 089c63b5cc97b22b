"""
Write-side audit schemas.

``AuditDetails`` is the per-action payload stored on an entry. It is a tagged
union discriminated by ``kind`` so every branch has a fixed shape.
"""
from pydantic import BaseModel, Field, TypeAdapter, ValidationError
from typing import Annotated, Any, Dict, List, Literal, Optional, Union
from datetime import datetime
import logging

logger = logging.getLogger(__name__)


class Actor(BaseModel):
    """Snapshot of whoever performed an action."""
    id: str
    name: str
    role: str

    @classmethod
    def from_user(cls, user) -> "Actor":
        role = user.role.value if hasattr(user.role, "value") else str(user.role)
        return cls(id=user.id, name=user.name, role=role)


class FieldChange(BaseModel):
    """A single field-level delta."""
    field: str
    old_value: Any = None
    new_value: Any = None


class RequestMetadata(BaseModel):
    """Request context captured when the action was triggered."""
    ip_address: str = "unknown"
    user_agent: str = "unknown"
    session_id: Optional[str] = None


# Point-in-time entity snapshots

class DeletedUserInfo(BaseModel):
    id: str
    name: str
    email: Optional[str] = None
    role: Optional[str] = None
    image: Optional[str] = None
    profession: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class CreatedUserInfo(BaseModel):
    id: str
    name: str
    email: Optional[str] = None
    role: Optional[str] = None


class DeletedToolInfo(BaseModel):
    id: str
    name: str
    slug: Optional[str] = None
    description: Optional[str] = None
    category: Optional[str] = None
    url: Optional[str] = None
    rating: Optional[float] = None
    review_count: Optional[int] = None
    price: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class DeletedReviewInfo(BaseModel):
    id: str
    user_id: Optional[str] = None
    user_name: Optional[str] = None
    user_email: Optional[str] = None
    tool_id: Optional[str] = None
    tool_name: Optional[str] = None
    rating: Optional[int] = None
    comment: Optional[str] = None
    reply: Optional[str] = None
    status: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class DeletedBlogInfo(BaseModel):
    id: str
    title: str
    slug: Optional[str] = None
    content: Optional[str] = None  # Truncated excerpt of the body
    excerpt: Optional[str] = None
    author_id: Optional[str] = None
    author_name: Optional[str] = None
    author_email: Optional[str] = None
    status: Optional[str] = None
    tags: List[str] = Field(default_factory=list)
    views: Optional[int] = None
    published_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


# Details variants

class UserDeletionDetails(BaseModel):
    kind: Literal["user_deletion"] = "user_deletion"
    deleted_user_info: DeletedUserInfo
    deletion_time: datetime
    deleted_by: Actor


class UserCreationDetails(BaseModel):
    kind: Literal["user_creation"] = "user_creation"
    created_user_info: CreatedUserInfo
    creation_time: datetime


class ToolDeletionDetails(BaseModel):
    kind: Literal["tool_deletion"] = "tool_deletion"
    deleted_tool_info: DeletedToolInfo
    deletion_time: datetime
    deleted_by: Actor


class ReviewDeletionDetails(BaseModel):
    kind: Literal["review_deletion"] = "review_deletion"
    deleted_review_info: DeletedReviewInfo
    deletion_time: datetime
    deleted_by: Actor


class BlogDeletionDetails(BaseModel):
    kind: Literal["blog_deletion"] = "blog_deletion"
    deleted_blog_info: DeletedBlogInfo
    deletion_time: datetime
    deleted_by: Actor


AuditDetails = Annotated[
    Union[
        UserDeletionDetails,
        UserCreationDetails,
        ToolDeletionDetails,
        ReviewDeletionDetails,
        BlogDeletionDetails,
    ],
    Field(discriminator="kind"),
]

_details_adapter = TypeAdapter(AuditDetails)


def dump_details(details: Optional[AuditDetails]) -> Optional[Dict[str, Any]]:
    """Serialize a details payload for the JSON column."""
    if details is None:
        return None
    return details.model_dump(mode="json")


def parse_details(raw: Optional[Dict[str, Any]]) -> Optional[AuditDetails]:
    """Parse a stored details payload, returning None for empty or unknown shapes."""
    if not raw:
        return None
    try:
        return _details_adapter.validate_python(raw)
    except ValidationError as e:
        logger.warning(f"Unreadable audit details payload (kind={raw.get('kind')}): {e}")
        return None


def snapshot_name(details: Optional[AuditDetails]) -> Optional[str]:
    """Display name preserved in a details payload, if any."""
    if isinstance(details, UserDeletionDetails):
        return details.deleted_user_info.name
    if isinstance(details, UserCreationDetails):
        return details.created_user_info.name
    if isinstance(details, ToolDeletionDetails):
        return details.deleted_tool_info.name
    if isinstance(details, BlogDeletionDetails):
        return details.deleted_blog_info.title
    if isinstance(details, ReviewDeletionDetails):
        return f"Review on {details.deleted_review_info.tool_name or 'Unknown Tool'}"
    return None
