from sqlalchemy import Column, String, DateTime, Integer, Text, JSON, ForeignKey, Enum as SQLEnum
from datetime import datetime
import uuid
import enum
from audittrail.core.database import Base


class BlogStatus(str, enum.Enum):
    DRAFT = "draft"
    PENDING_APPROVAL = "pending_approval"
    PUBLISHED = "published"
    REJECTED = "rejected"
    UNPUBLISHED = "unpublished"


class Blog(Base):
    __tablename__ = "blogs"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    author_id = Column(String, ForeignKey("users.id", ondelete="SET NULL"), index=True)

    title = Column(String, nullable=False)
    slug = Column(String, unique=True, nullable=False, index=True)
    content = Column(Text)
    excerpt = Column(Text)
    tags = Column(JSON, default=list)
    status = Column(SQLEnum(BlogStatus), nullable=False, default=BlogStatus.DRAFT, index=True)
    views = Column(Integer, default=0, nullable=False)

    rejection_reason = Column(Text)
    published_at = Column(DateTime)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)
