"""
Member repository: data-access layer for the ``members`` table.
"""

from typing import Iterable, Optional, Set
from uuid import UUID

from sqlalchemy.future import select

from clubfund.models.member import Member
from clubfund.repositories.base import BaseRepository


class MemberRepository(BaseRepository[Member]):
    """Concrete repository for :class:`Member` entities."""

    async def get_by_email(self, email: str) -> Optional[Member]:
        """
        Look up a member by email address.

        Used to reject duplicates before hitting the unique constraint, which
        yields a friendlier error message.
        """

        async def _get_by_email() -> Optional[Member]:
            stmt = select(self.model).where(self.model.email == email)
            result = await self.db.execute(stmt)
            return result.scalars().first()

        return await self._execute_with_circuit_breaker(_get_by_email)

    async def existing_ids(self, ids: Iterable[UUID]) -> Set[UUID]:
        """Return the subset of ``ids`` that belong to registered members."""
        wanted = set(ids)
        if not wanted:
            return set()

        async def _existing_ids() -> Set[UUID]:
            stmt = select(self.model.id).where(self.model.id.in_(wanted))
            result = await self.db.execute(stmt)
            return set(result.scalars().all())

        return await self._execute_with_circuit_breaker(_existing_ids)
