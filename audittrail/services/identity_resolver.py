"""
Identity resolution for history queries.

The reconciler asks for the current name, email and role of every id it
references in a single batch. Ids missing from the result are treated as
deleted and fall back to the snapshot stored with the audit record.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Dict, Iterable, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from audittrail.models.user import User


@dataclass(frozen=True)
class ResolvedIdentity:
    id: str
    name: str
    email: Optional[str] = None
    role: Optional[str] = None


class IdentityResolver(ABC):
    """Batch lookup of current identities by id."""

    @abstractmethod
    async def resolve(self, ids: Iterable[str]) -> Dict[str, ResolvedIdentity]:
        """Return identities for the ids that still exist, keyed by id."""


class SqlUserIdentityResolver(IdentityResolver):
    """Resolves user ids against the live user table in one query."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def resolve(self, ids: Iterable[str]) -> Dict[str, ResolvedIdentity]:
        wanted = {i for i in ids if i}
        if not wanted:
            return {}

        result = await self.db.execute(
            select(User.id, User.name, User.email, User.role).where(User.id.in_(wanted))
        )
        return {
            row.id: ResolvedIdentity(
                id=row.id,
                name=row.name,
                email=row.email,
                role=row.role.value if row.role is not None else None,
            )
            for row in result.all()
        }
