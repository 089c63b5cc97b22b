from fastapi import Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession
from typing import Any, Dict, List
import logging

from audittrail.core.database import get_db
from audittrail.schemas.audit import FieldChange
from audittrail.services.audit_writer import (
    AuditWriter,
    AuditWriteResult,
    AuditWriteError,
    require_authoritative,
)


logger = logging.getLogger(__name__)


async def get_audit_writer(db: AsyncSession = Depends(get_db)) -> AuditWriter:
    return AuditWriter(db)


def enforce_audit_policy(result: AuditWriteResult, action: str) -> None:
    """Turn a refused audit write into a 500 when policy demands it."""
    try:
        require_authoritative(result, action)
    except AuditWriteError as e:
        logger.error(str(e))
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=str(e)
        )


async def reload_after_failed_write(db: AsyncSession, result: AuditWriteResult, *entities: Any) -> None:
    """
    Reload ``entities`` after a failed audit write.

    The writer rolls the session back when the centralized commit fails, which
    expires every loaded object. Handlers that carry on with the action must
    reload what they still use.
    """
    if result.success:
        return
    for entity in entities:
        await db.refresh(entity)


def diff_changes(entity: Any, updates: Dict[str, Any]) -> List[FieldChange]:
    """Deltas ``updates`` would make to ``entity``. Equal values are skipped."""
    changes = []
    for field, new_value in updates.items():
        old_value = getattr(entity, field)
        if old_value == new_value:
            continue
        changes.append(FieldChange(field=field, old_value=old_value, new_value=new_value))
    return changes


def apply_changes(entity: Any, changes: List[FieldChange]) -> None:
    for change in changes:
        setattr(entity, change.field, change.new_value)
