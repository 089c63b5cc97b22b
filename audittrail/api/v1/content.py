from fastapi import APIRouter, Depends, HTTPException, status, Query
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, delete
from typing import Optional
from datetime import datetime
import logging

from audittrail.core.database import get_db
from audittrail.api.v1.auth import require_privileged
from audittrail.api.v1.common import (
    get_audit_writer,
    enforce_audit_policy,
    reload_after_failed_write,
    diff_changes,
    apply_changes,
)
from audittrail.models.user import User
from audittrail.models.tool import Tool
from audittrail.models.review import Review, ReviewStatus
from audittrail.models.blog import Blog, BlogStatus
from audittrail.models.audit import AuditAction
from audittrail.schemas.audit import Actor, FieldChange
from audittrail.schemas.content import (
    ToolUpdate,
    ToolResponse,
    ReviewModeration,
    ReviewResponse,
    BlogStatusChange,
    BlogResponse,
)
from audittrail.schemas.user import ActionResponse
from audittrail.services.audit_writer import AuditWriter


logger = logging.getLogger(__name__)

router = APIRouter()


async def get_or_404(db: AsyncSession, model, entity_id: str, label: str):
    result = await db.execute(select(model).where(model.id == entity_id))
    entity = result.scalar_one_or_none()
    if not entity:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"{label} not found"
        )
    return entity


# ============================================================================
# Tools
# ============================================================================

@router.patch("/tools/{tool_id}", response_model=ToolResponse)
async def update_tool(
    tool_id: str,
    tool_update: ToolUpdate,
    current_user: User = Depends(require_privileged),
    db: AsyncSession = Depends(get_db),
    writer: AuditWriter = Depends(get_audit_writer)
):
    """Edit a tool listing."""
    tool = await get_or_404(db, Tool, tool_id, "Tool")

    changes = diff_changes(tool, tool_update.model_dump(exclude_unset=True, exclude={"reason"}))
    if not changes:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="No changes detected"
        )

    result = await writer.log_tool_action(
        tool.id,
        AuditAction.UPDATED,
        Actor.from_user(current_user),
        changes=changes,
        reason=tool_update.reason,
    )
    enforce_audit_policy(result, f"tool {AuditAction.UPDATED.value}")
    await reload_after_failed_write(db, result, tool)

    apply_changes(tool, changes)
    await db.commit()
    await db.refresh(tool)
    return tool


@router.delete("/tools/{tool_id}", response_model=ActionResponse)
async def delete_tool(
    tool_id: str,
    reason: Optional[str] = Query(None),
    current_user: User = Depends(require_privileged),
    db: AsyncSession = Depends(get_db),
    writer: AuditWriter = Depends(get_audit_writer)
):
    """Delete a tool and its reviews. The snapshot is recorded first."""
    tool = await get_or_404(db, Tool, tool_id, "Tool")
    name = tool.name

    result = await writer.log_tool_action(
        tool.id,
        AuditAction.DELETED,
        Actor.from_user(current_user),
        reason=reason,
    )
    enforce_audit_policy(result, f"tool {AuditAction.DELETED.value}")
    await reload_after_failed_write(db, result, tool, current_user)

    await db.execute(delete(Review).where(Review.tool_id == tool_id))
    await db.delete(tool)
    await db.commit()

    logger.info(f"Tool {tool_id} deleted by {current_user.id}")

    return ActionResponse(message=f"Tool '{name}' deleted successfully", audit_logged=result.success)


# ============================================================================
# Reviews
# ============================================================================

async def _set_review_status(
    review_id: str,
    new_status: ReviewStatus,
    action: AuditAction,
    moderation: ReviewModeration,
    current_user: User,
    db: AsyncSession,
    writer: AuditWriter
) -> Review:
    review = await get_or_404(db, Review, review_id, "Review")

    if review.status == new_status:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Review is already {new_status.value}"
        )

    result = await writer.log_review_action(
        review.id,
        action,
        Actor.from_user(current_user),
        changes=[FieldChange(field="status", old_value=review.status.value, new_value=new_status.value)],
        reason=moderation.reason,
    )
    enforce_audit_policy(result, f"review {action.value}")
    await reload_after_failed_write(db, result, review)

    review.status = new_status
    await db.commit()
    await db.refresh(review)
    return review


@router.post("/reviews/{review_id}/hide", response_model=ReviewResponse)
async def hide_review(
    review_id: str,
    moderation: ReviewModeration,
    current_user: User = Depends(require_privileged),
    db: AsyncSession = Depends(get_db),
    writer: AuditWriter = Depends(get_audit_writer)
):
    """Hide a review from the public listing."""
    return await _set_review_status(
        review_id, ReviewStatus.HIDDEN, AuditAction.HIDDEN, moderation, current_user, db, writer
    )


@router.post("/reviews/{review_id}/restore", response_model=ReviewResponse)
async def restore_review(
    review_id: str,
    moderation: ReviewModeration,
    current_user: User = Depends(require_privileged),
    db: AsyncSession = Depends(get_db),
    writer: AuditWriter = Depends(get_audit_writer)
):
    """Make a hidden review visible again."""
    return await _set_review_status(
        review_id, ReviewStatus.VISIBLE, AuditAction.RESTORED, moderation, current_user, db, writer
    )


@router.delete("/reviews/{review_id}", response_model=ActionResponse)
async def delete_review(
    review_id: str,
    reason: Optional[str] = Query(None),
    current_user: User = Depends(require_privileged),
    db: AsyncSession = Depends(get_db),
    writer: AuditWriter = Depends(get_audit_writer)
):
    """Delete a review permanently."""
    review = await get_or_404(db, Review, review_id, "Review")

    result = await writer.log_review_action(
        review.id,
        AuditAction.DELETED,
        Actor.from_user(current_user),
        reason=reason,
    )
    enforce_audit_policy(result, f"review {AuditAction.DELETED.value}")
    await reload_after_failed_write(db, result, review)

    await db.delete(review)
    await db.commit()

    return ActionResponse(message="Review deleted successfully", audit_logged=result.success)


# ============================================================================
# Blogs
# ============================================================================

@router.patch("/blogs/{blog_id}/status", response_model=BlogResponse)
async def moderate_blog(
    blog_id: str,
    status_change: BlogStatusChange,
    current_user: User = Depends(require_privileged),
    db: AsyncSession = Depends(get_db),
    writer: AuditWriter = Depends(get_audit_writer)
):
    """Approve or reject a blog post awaiting moderation."""
    blog = await get_or_404(db, Blog, blog_id, "Blog")

    if status_change.decision == "rejected" and not status_change.reason:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="A reason is required when rejecting a blog post"
        )

    old_status = blog.status
    if status_change.decision == "approved":
        new_status, action = BlogStatus.PUBLISHED, AuditAction.APPROVED
    else:
        new_status, action = BlogStatus.REJECTED, AuditAction.REJECTED

    if old_status == new_status:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Blog is already {new_status.value}"
        )

    result = await writer.log_blog_action(
        blog.id,
        action,
        Actor.from_user(current_user),
        changes=[FieldChange(field="status", old_value=old_status.value, new_value=new_status.value)],
        reason=status_change.reason,
    )
    enforce_audit_policy(result, f"blog {action.value}")
    await reload_after_failed_write(db, result, blog)

    blog.status = new_status
    if new_status == BlogStatus.PUBLISHED:
        blog.published_at = blog.published_at or datetime.utcnow()
        blog.rejection_reason = None
    else:
        blog.rejection_reason = status_change.reason
    await db.commit()
    await db.refresh(blog)
    return blog


@router.delete("/blogs/{blog_id}", response_model=ActionResponse)
async def delete_blog(
    blog_id: str,
    reason: Optional[str] = Query(None),
    current_user: User = Depends(require_privileged),
    db: AsyncSession = Depends(get_db),
    writer: AuditWriter = Depends(get_audit_writer)
):
    """Delete a blog post permanently."""
    blog = await get_or_404(db, Blog, blog_id, "Blog")
    title = blog.title

    result = await writer.log_blog_action(
        blog.id,
        AuditAction.PERMANENTLY_DELETED,
        Actor.from_user(current_user),
        reason=reason,
    )
    enforce_audit_policy(result, f"blog {AuditAction.PERMANENTLY_DELETED.value}")
    await reload_after_failed_write(db, result, blog)

    await db.delete(blog)
    await db.commit()

    return ActionResponse(message=f"Blog post '{title}' deleted successfully", audit_logged=result.success)
