from sqlalchemy import Column, String, Boolean, DateTime, Text, JSON, Enum as SQLEnum
from datetime import datetime
import uuid
import enum
from audittrail.core.database import Base


class UserRole(str, enum.Enum):
    ADMIN = "admin"  # Full console access
    MANAGER = "manager"  # Moderation and user management
    WRITER = "writer"  # Blog author
    USER = "user"  # Regular member


STAFF_ROLES = (UserRole.ADMIN, UserRole.MANAGER, UserRole.WRITER)
PRIVILEGED_ROLES = (UserRole.ADMIN, UserRole.MANAGER)


class User(Base):
    __tablename__ = "users"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))

    # Identity
    email = Column(String, unique=True, nullable=False, index=True)
    name = Column(String, nullable=False)
    role = Column(SQLEnum(UserRole), nullable=False, default=UserRole.USER)

    # Profile
    image = Column(String)
    profession = Column(String)
    bio = Column(Text)

    # Status
    is_blocked = Column(Boolean, default=False, nullable=False)

    # Legacy embedded audit log, bounded and lost with the row.
    # Each item: {action, performed_by, performed_by_name, performed_by_role,
    #             timestamp, reason, changes, metadata}
    audit_log = Column(JSON, default=list, nullable=False)

    # Timestamps
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)
