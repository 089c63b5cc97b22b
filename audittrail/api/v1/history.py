from fastapi import APIRouter, Depends, HTTPException, status, Query, Response
from fastapi.responses import StreamingResponse
from sqlalchemy.ext.asyncio import AsyncSession
from typing import Optional
from datetime import datetime
import logging

from audittrail.core.config import settings
from audittrail.core.database import get_db
from audittrail.api.v1.auth import require_privileged
from audittrail.models.audit import AuditCategory
from audittrail.models.user import User
from audittrail.schemas.history import HistoryFilters, HistoryResponse
from audittrail.services.audit_export import AuditExporter
from audittrail.services.history_reconciler import HistoryReconciler


logger = logging.getLogger(__name__)

router = APIRouter()


def history_filters(
    search: str = Query("", description="Case-insensitive text search"),
    action: str = Query("all", description="Exact action, or 'all'"),
    staff: str = Query("all", description="Performer id, or 'all'"),
    days: Optional[str] = Query(None, description="Window in days, or 'all'"),
    skip: int = Query(0, ge=0),
    limit: Optional[int] = Query(None, ge=1),
) -> HistoryFilters:
    return HistoryFilters(
        search_text=search,
        action=action,
        performer_id=staff,
        days_window=days or settings.AUDIT_DEFAULT_DAYS_WINDOW,
        skip=skip,
        limit=limit,
    )


@router.get("/users/history", response_model=HistoryResponse)
async def get_user_management_history(
    filters: HistoryFilters = Depends(history_filters),
    current_user: User = Depends(require_privileged),
    db: AsyncSession = Depends(get_db)
):
    """
    Reconciled user management history.

    Merges centralized audit entries with the legacy per-user logs, with
    current identities where they still exist and snapshots where they don't.
    """
    try:
        result = await HistoryReconciler(db).query(filters)
    except Exception as e:
        logger.error(f"Error fetching user management history: {e}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to fetch user management history"
        )

    return HistoryResponse(
        activities=result.entries,
        staff_members=result.staff_list,
        stats=result.stats,
        message="User management history loaded successfully"
    )


@router.get("/users/history/export")
async def export_user_management_history(
    filters: HistoryFilters = Depends(history_filters),
    current_user: User = Depends(require_privileged),
    db: AsyncSession = Depends(get_db)
):
    """Export the filtered history as CSV. Returns 204 when nothing matches."""
    result = await HistoryReconciler(db).query(filters)

    exporter = AuditExporter()
    content = exporter.to_table(result.entries)
    if content is None:
        return Response(status_code=status.HTTP_204_NO_CONTENT)

    filename = exporter.filename(datetime.utcnow().date(), filters.action, filters.days_window)
    logger.info(f"User {current_user.id} exported {len(result.entries)} history entries")

    return StreamingResponse(
        iter([content]),
        media_type="text/csv; charset=utf-8",
        headers={"Content-Disposition": f"attachment; filename={filename}"}
    )


@router.get("/audit-logs", response_model=HistoryResponse)
async def get_audit_logs(
    category: AuditCategory = Query(AuditCategory.USER_MANAGEMENT),
    filters: HistoryFilters = Depends(history_filters),
    current_user: User = Depends(require_privileged),
    db: AsyncSession = Depends(get_db)
):
    """Reconciled history for any audit category."""
    try:
        result = await HistoryReconciler(db).query(filters, category=category)
    except Exception as e:
        logger.error(f"Error fetching {category.value} audit logs: {e}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to fetch audit logs"
        )

    return HistoryResponse(
        activities=result.entries,
        staff_members=result.staff_list,
        stats=result.stats,
        message=f"{category.value.replace('_', ' ').capitalize()} history loaded successfully"
    )
