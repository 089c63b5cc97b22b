"""
Legacy embedded audit log.

Kept for backward compatibility: a bounded list of audit records stored on the
user row itself. Appends evict the oldest records beyond the configured
capacity and the whole list disappears when the user is deleted, so nothing
here is authoritative.
"""
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple
import logging

from sqlalchemy import String, cast, select, update
from sqlalchemy.orm.attributes import set_committed_value
from sqlalchemy.ext.asyncio import AsyncSession

from audittrail.core.config import settings
from audittrail.models.user import User
from audittrail.schemas.audit import Actor, FieldChange, RequestMetadata

logger = logging.getLogger(__name__)

# Serialized forms of a log with nothing in it
EMPTY_LOGS = ("[]", "null")


def build_legacy_record(
    action: str,
    performed_by: Actor,
    reason: Optional[str],
    changes: List[FieldChange],
    metadata: RequestMetadata,
    timestamp: datetime,
) -> Dict[str, Any]:
    """Shape a legacy record for the JSON column."""
    return {
        "action": action,
        "performed_by": performed_by.id,
        "performed_by_name": performed_by.name,
        "performed_by_role": performed_by.role,
        "timestamp": timestamp.isoformat(),
        "reason": reason,
        "changes": [c.model_dump(mode="json") for c in changes],
        "metadata": metadata.model_dump(mode="json"),
    }


def append_bounded(records: Optional[List[Dict[str, Any]]], record: Dict[str, Any], capacity: int) -> List[Dict[str, Any]]:
    """Return a new list with ``record`` appended and the oldest entries evicted."""
    updated = list(records or [])
    updated.append(record)
    if capacity > 0 and len(updated) > capacity:
        updated = updated[-capacity:]
    return updated


def parse_record_timestamp(record: Dict[str, Any]) -> Optional[datetime]:
    """Record timestamp as naive UTC, or None when missing or unreadable."""
    raw = record.get("timestamp")
    if isinstance(raw, datetime):
        parsed = raw
    elif not raw:
        return None
    else:
        try:
            parsed = datetime.fromisoformat(str(raw).replace("Z", "+00:00"))
        except ValueError:
            return None
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


class LegacyAuditLog:
    """Reads and writes the per-user embedded audit log."""

    def __init__(self, db: AsyncSession, capacity: Optional[int] = None):
        self.db = db
        self.capacity = capacity if capacity is not None else settings.AUDIT_LEGACY_LOG_CAPACITY

    async def append(self, user_id: str, record: Dict[str, Any]) -> bool:
        """
        Append a record to a user's embedded log.

        Returns False when the user no longer exists. Store errors propagate;
        committing and error handling are left to the caller.
        """
        result = await self.db.execute(select(User).where(User.id == user_id))
        user = result.scalar_one_or_none()
        if not user:
            return False

        records = append_bounded(user.audit_log, record, self.capacity)
        # updated_at tracks account edits, so it is pinned to its current value
        await self.db.execute(
            update(User)
            .where(User.id == user_id)
            .values(audit_log=records, updated_at=User.updated_at)
            .execution_options(synchronize_session=False)
        )
        set_committed_value(user, "audit_log", records)
        return True

    async def read_window(self, start: Optional[datetime]) -> List[Tuple[User, int, Dict[str, Any], datetime]]:
        """
        Collect embedded records at or after ``start``.

        Only users whose log is not empty are read. Returns (user, index,
        record, timestamp) tuples; records without a readable timestamp are
        skipped.
        """
        result = await self.db.execute(
            select(User).where(
                User.audit_log.isnot(None),
                cast(User.audit_log, String).notin_(EMPTY_LOGS),
            )
        )
        users = result.scalars().all()

        rows = []
        for user in users:
            for index, record in enumerate(user.audit_log or []):
                timestamp = parse_record_timestamp(record) if isinstance(record, dict) else None
                if timestamp is None:
                    logger.debug(f"Skipping legacy record {index} of user {user.id}: no timestamp")
                    continue
                if start is not None and timestamp < start:
                    continue
                rows.append((user, index, record, timestamp))
        return rows
