from fastapi import APIRouter, Depends, HTTPException, status, Query
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select
from typing import Optional
import logging

from audittrail.core.config import settings
from audittrail.core.database import get_db
from audittrail.api.v1.auth import get_current_user, require_privileged
from audittrail.api.v1.common import (
    get_audit_writer,
    enforce_audit_policy,
    reload_after_failed_write,
    diff_changes,
    apply_changes,
)
from audittrail.models.user import User, UserRole
from audittrail.models.audit import AuditAction
from audittrail.schemas.audit import Actor
from audittrail.schemas.user import (
    UserCreate,
    UserResponse,
    RoleChangeRequest,
    BlockRequest,
    UserDataUpdateRequest,
    ProfileUpdate,
    ActionResponse,
)
from audittrail.services.audit_writer import AuditWriter


logger = logging.getLogger(__name__)

router = APIRouter()


async def get_user_or_404(db: AsyncSession, user_id: str) -> User:
    result = await db.execute(select(User).where(User.id == user_id))
    user = result.scalar_one_or_none()
    if not user:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="User not found"
        )
    return user


@router.post("/admin/users", response_model=UserResponse, status_code=status.HTTP_201_CREATED)
async def create_user(
    user_data: UserCreate,
    current_user: User = Depends(require_privileged),
    db: AsyncSession = Depends(get_db),
    writer: AuditWriter = Depends(get_audit_writer)
):
    """Create an account on behalf of someone else."""
    if user_data.role in (UserRole.ADMIN, UserRole.MANAGER) and current_user.role != UserRole.ADMIN:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Only administrators can create admin or manager accounts"
        )

    existing = await db.execute(select(User).where(User.email == user_data.email))
    if existing.scalar_one_or_none():
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Email already registered"
        )

    user = User(**user_data.model_dump(exclude={"reason"}))
    db.add(user)
    await db.commit()
    await db.refresh(user)

    result = await writer.log_account_creation(
        user,
        performed_by=Actor.from_user(current_user),
        reason=user_data.reason or f"Account created by {current_user.name}",
    )
    await reload_after_failed_write(db, result, user)
    if not result.success and settings.AUDIT_REQUIRE_AUTHORITATIVE_WRITE:
        # The entry needs the row to exist, so creation is undone instead
        await db.delete(user)
        await db.commit()
    enforce_audit_policy(result, AuditAction.ACCOUNT_CREATED.value)

    await db.refresh(user)
    return user


@router.patch("/admin/users/{user_id}/role", response_model=UserResponse)
async def change_user_role(
    user_id: str,
    role_change: RoleChangeRequest,
    current_user: User = Depends(require_privileged),
    db: AsyncSession = Depends(get_db),
    writer: AuditWriter = Depends(get_audit_writer)
):
    """Change a user's role."""
    if user_id == current_user.id:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Cannot change your own role"
        )

    user = await get_user_or_404(db, user_id)

    if user.role == role_change.role:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"User already has role '{role_change.role.value}'"
        )

    if current_user.role != UserRole.ADMIN and UserRole.ADMIN in (user.role, role_change.role):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Only administrators can grant or revoke the admin role"
        )

    old_role = user.role
    result = await writer.log_role_change(
        user.id,
        Actor.from_user(current_user),
        from_role=old_role,
        to_role=role_change.role,
        reason=role_change.reason or f"Role changed from {old_role.value} to {role_change.role.value}",
    )
    enforce_audit_policy(result, AuditAction.ROLE_CHANGED.value)
    await reload_after_failed_write(db, result, user)

    user.role = role_change.role
    await db.commit()
    await db.refresh(user)
    return user


async def _set_blocked(
    user_id: str,
    blocked: bool,
    request: BlockRequest,
    current_user: User,
    db: AsyncSession,
    writer: AuditWriter
) -> User:
    if user_id == current_user.id:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Cannot change your own block status"
        )

    user = await get_user_or_404(db, user_id)

    if user.is_blocked == blocked:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"User is already {'blocked' if blocked else 'active'}"
        )

    if user.role == UserRole.ADMIN and current_user.role != UserRole.ADMIN:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Only administrators can block or unblock administrators"
        )

    actor = Actor.from_user(current_user)
    if blocked:
        result = await writer.log_user_block(user.id, actor, reason=request.reason)
        enforce_audit_policy(result, AuditAction.BLOCKED.value)
    else:
        result = await writer.log_user_unblock(user.id, actor, reason=request.reason)
        enforce_audit_policy(result, AuditAction.UNBLOCKED.value)
    await reload_after_failed_write(db, result, user)

    user.is_blocked = blocked
    await db.commit()
    await db.refresh(user)
    return user


@router.post("/admin/users/{user_id}/block", response_model=UserResponse)
async def block_user(
    user_id: str,
    request: BlockRequest,
    current_user: User = Depends(require_privileged),
    db: AsyncSession = Depends(get_db),
    writer: AuditWriter = Depends(get_audit_writer)
):
    """Block a user account."""
    return await _set_blocked(user_id, True, request, current_user, db, writer)


@router.post("/admin/users/{user_id}/unblock", response_model=UserResponse)
async def unblock_user(
    user_id: str,
    request: BlockRequest,
    current_user: User = Depends(require_privileged),
    db: AsyncSession = Depends(get_db),
    writer: AuditWriter = Depends(get_audit_writer)
):
    """Unblock a user account."""
    return await _set_blocked(user_id, False, request, current_user, db, writer)


@router.patch("/admin/users/{user_id}", response_model=UserResponse)
async def update_user_data(
    user_id: str,
    update_request: UserDataUpdateRequest,
    current_user: User = Depends(require_privileged),
    db: AsyncSession = Depends(get_db),
    writer: AuditWriter = Depends(get_audit_writer)
):
    """Edit another user's account data."""
    user = await get_user_or_404(db, user_id)

    updates = update_request.updates.model_dump(exclude_unset=True)
    if "email" in updates and updates["email"] != user.email:
        existing = await db.execute(select(User).where(User.email == updates["email"]))
        if existing.scalar_one_or_none():
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Email already registered"
            )

    changes = diff_changes(user, updates)
    if not changes:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="No changes detected"
        )

    result = await writer.log_data_modification(
        user.id,
        Actor.from_user(current_user),
        changes,
        reason=update_request.reason,
    )
    enforce_audit_policy(result, AuditAction.DATA_MODIFIED.value)
    await reload_after_failed_write(db, result, user)

    apply_changes(user, changes)
    await db.commit()
    await db.refresh(user)
    return user


@router.delete("/admin/users/{user_id}", response_model=ActionResponse)
async def delete_user(
    user_id: str,
    reason: Optional[str] = Query(None, description="Why the account is being deleted"),
    current_user: User = Depends(require_privileged),
    db: AsyncSession = Depends(get_db),
    writer: AuditWriter = Depends(get_audit_writer)
):
    """
    Permanently delete a user account.

    The audit entry is written first so it can snapshot the account.
    """
    if user_id == current_user.id:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Cannot delete your own account"
        )

    user = await get_user_or_404(db, user_id)

    if user.role == UserRole.ADMIN and current_user.role != UserRole.ADMIN:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Only administrators can delete admin accounts"
        )
    if user.role == UserRole.MANAGER and current_user.role == UserRole.MANAGER:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Managers cannot delete other managers"
        )

    name, email = user.name, user.email

    result = await writer.log_account_deletion(
        user.id,
        Actor.from_user(current_user),
        reason=reason or f"Account deleted by {current_user.name}",
    )
    enforce_audit_policy(result, AuditAction.ACCOUNT_DELETED.value)
    await reload_after_failed_write(db, result, user, current_user)

    await db.delete(user)
    await db.commit()

    logger.info(f"User {user_id} deleted by {current_user.id}")

    return ActionResponse(
        message=f"User {name} ({email}) deleted successfully",
        audit_logged=result.success
    )


@router.patch("/users/me", response_model=UserResponse)
async def update_own_profile(
    profile: ProfileUpdate,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    writer: AuditWriter = Depends(get_audit_writer)
):
    """Update the authenticated user's own profile."""
    changes = diff_changes(current_user, profile.model_dump(exclude_unset=True))
    if not changes:
        return current_user

    result = await writer.log_profile_update(
        current_user.id,
        Actor.from_user(current_user),
        changes,
        reason="Profile updated by user",
    )
    enforce_audit_policy(result, AuditAction.PROFILE_UPDATED.value)
    await reload_after_failed_write(db, result, current_user)

    apply_changes(current_user, changes)
    await db.commit()
    await db.refresh(current_user)
    return current_user
