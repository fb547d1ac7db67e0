"""
Fund repository: data-access layer for the ``funds`` table.

Row locking for ledger mutations lives in :mod:`ledger_repo`.
"""

from typing import Optional

from sqlalchemy.future import select

from clubfund.models.fund import Fund
from clubfund.repositories.base import BaseRepository


class FundRepository(BaseRepository[Fund]):
    """Concrete repository for :class:`Fund` entities."""

    async def get_by_name(self, name: str) -> Optional[Fund]:
        """Look up a fund by its unique name."""

        async def _get_by_name() -> Optional[Fund]:
            stmt = select(self.model).where(self.model.name == name)
            result = await self.db.execute(stmt)
            return result.scalars().first()

        return await self._execute_with_circuit_breaker(_get_by_name)
