from sqlalchemy import Column, String, DateTime, Integer, Text, ForeignKey, Enum as SQLEnum
from datetime import datetime
import uuid
import enum
from audittrail.core.database import Base


class ReviewStatus(str, enum.Enum):
    VISIBLE = "visible"
    HIDDEN = "hidden"
    FLAGGED = "flagged"


class Review(Base):
    __tablename__ = "reviews"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    tool_id = Column(String, ForeignKey("tools.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(String, ForeignKey("users.id", ondelete="SET NULL"), index=True)

    rating = Column(Integer, nullable=False)
    comment = Column(Text)
    reply = Column(Text)  # Staff reply
    status = Column(SQLEnum(ReviewStatus), nullable=False, default=ReviewStatus.VISIBLE)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)
