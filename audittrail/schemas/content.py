from pydantic import BaseModel, ConfigDict, Field
from datetime import datetime
from typing import List, Literal, Optional
from audittrail.models.review import ReviewStatus
from audittrail.models.blog import BlogStatus


# Tool schemas
class ToolUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=200)
    description: Optional[str] = None
    category: Optional[str] = None
    url: Optional[str] = None
    price: Optional[str] = None
    reason: Optional[str] = None


class ToolResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    name: str
    slug: str
    description: Optional[str] = None
    category: Optional[str] = None
    url: Optional[str] = None
    price: Optional[str] = None
    rating: float
    review_count: int
    updated_at: datetime


# Review schemas
class ReviewModeration(BaseModel):
    reason: Optional[str] = None


class ReviewResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    tool_id: str
    user_id: Optional[str] = None
    rating: int
    comment: Optional[str] = None
    status: ReviewStatus
    updated_at: datetime


# Blog schemas
class BlogStatusChange(BaseModel):
    decision: Literal["approved", "rejected"]
    reason: Optional[str] = None


class BlogResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    title: str
    slug: str
    author_id: Optional[str] = None
    status: BlogStatus
    tags: Optional[List[str]] = None
    rejection_reason: Optional[str] = None
    published_at: Optional[datetime] = None
    updated_at: datetime
