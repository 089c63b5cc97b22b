from pydantic import BaseModel, ConfigDict, EmailStr, Field
from datetime import datetime
from typing import Optional
from audittrail.models.user import UserRole


class UserResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    email: EmailStr
    name: str
    role: UserRole
    image: Optional[str] = None
    profession: Optional[str] = None
    bio: Optional[str] = None
    is_blocked: bool
    created_at: datetime


class UserCreate(BaseModel):
    email: EmailStr
    name: str = Field(..., min_length=1, max_length=200)
    role: UserRole = UserRole.USER
    profession: Optional[str] = None
    image: Optional[str] = None
    reason: Optional[str] = None


class RoleChangeRequest(BaseModel):
    role: UserRole
    reason: Optional[str] = None


class BlockRequest(BaseModel):
    reason: Optional[str] = None


class UserDataUpdate(BaseModel):
    """Fields an administrator may edit on another account."""
    name: Optional[str] = Field(None, min_length=1, max_length=200)
    email: Optional[EmailStr] = None
    profession: Optional[str] = None
    bio: Optional[str] = None
    image: Optional[str] = None


class UserDataUpdateRequest(BaseModel):
    updates: UserDataUpdate
    reason: Optional[str] = None


class ProfileUpdate(BaseModel):
    """Fields a user may edit on their own profile."""
    name: Optional[str] = Field(None, min_length=1, max_length=200)
    profession: Optional[str] = None
    bio: Optional[str] = None
    image: Optional[str] = None


class ActionResponse(BaseModel):
    success: bool = True
    message: str
    audit_logged: bool
