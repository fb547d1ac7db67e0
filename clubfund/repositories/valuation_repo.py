"""
Unit valuation repository: data-access layer for ``unit_valuations``.
"""

from datetime import date
from typing import List, Optional
from uuid import UUID

from sqlalchemy.future import select

from clubfund.models.valuation import UnitValuation
from clubfund.repositories.base import BaseRepository


class ValuationRepository(BaseRepository[UnitValuation]):
    """Concrete repository for :class:`UnitValuation` entities."""

    async def get_by_fund(
        self,
        fund_id: UUID,
        start: Optional[date] = None,
        end: Optional[date] = None,
    ) -> List[UnitValuation]:
        """Return a fund's valuation history in date order, optionally bounded."""

        async def _get_by_fund() -> List[UnitValuation]:
            stmt = select(self.model).where(self.model.fund_id == fund_id)
            if start is not None:
                stmt = stmt.where(self.model.valuation_date >= start)
            if end is not None:
                stmt = stmt.where(self.model.valuation_date <= end)
            stmt = stmt.order_by(self.model.valuation_date)
            result = await self.db.execute(stmt)
            return list(result.scalars().all())

        return await self._execute_with_circuit_breaker(_get_by_fund)
