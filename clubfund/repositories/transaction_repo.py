"""
Ledger transaction repository: read side of ``ledger_transactions``.

Rows are inserted by :class:`~clubfund.repositories.ledger_repo.LedgerRepository`
in the same commit as the fund totals they produced.
"""

from typing import List, Optional
from uuid import UUID

from sqlalchemy.future import select

from clubfund.models.transaction import LedgerTransaction
from clubfund.repositories.base import BaseRepository


class TransactionRepository(BaseRepository[LedgerTransaction]):
    """Concrete repository for :class:`LedgerTransaction` entities."""

    async def get_by_fund(
        self,
        fund_id: UUID,
        member_id: Optional[UUID] = None,
        skip: int = 0,
        limit: int = 100,
    ) -> List[LedgerTransaction]:
        """
        Return a fund's transactions in the order they were applied.

        Ordered by ``sequence``, served by the unique ``(fund_id, sequence)``
        index.
        """

        async def _get_by_fund() -> List[LedgerTransaction]:
            stmt = select(self.model).where(self.model.fund_id == fund_id)
            if member_id is not None:
                stmt = stmt.where(self.model.member_id == member_id)
            stmt = stmt.order_by(self.model.sequence).offset(skip).limit(limit)
            result = await self.db.execute(stmt)
            return list(result.scalars().all())

        return await self._execute_with_circuit_breaker(_get_by_fund)

    async def get_history(
        self, fund_id: UUID, member_id: Optional[UUID] = None
    ) -> List[LedgerTransaction]:
        """Every transaction of a fund (or one member in it), unpaginated."""

        async def _get_history() -> List[LedgerTransaction]:
            stmt = select(self.model).where(self.model.fund_id == fund_id)
            if member_id is not None:
                stmt = stmt.where(self.model.member_id == member_id)
            result = await self.db.execute(stmt.order_by(self.model.sequence))
            return list(result.scalars().all())

        return await self._execute_with_circuit_breaker(_get_history)
