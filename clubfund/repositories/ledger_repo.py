"""
Ledger repository: the persistence collaborator of the unit accounting engine.

A mutation on a fund is one database transaction:

1. :meth:`LedgerRepository.load` reads the fund row ``FOR UPDATE`` together
   with every member position of that fund.
2. The service rebuilds an engine from the snapshot and runs one operation.
3. :meth:`LedgerRepository.save` writes the new fund totals, the positions
   the operation touched, the new transaction rows and (optionally) a dated
   valuation, then commits once.

If anything fails between 1 and 3, :meth:`LedgerRepository.rollback` releases
the row lock without writing.
"""

import logging
import uuid
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Dict, List, Optional

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from clubfund.core.resilience import db_circuit_breaker
from clubfund.engine import UnitAccountingEngine
from clubfund.models.fund import Fund
from clubfund.models.position import MemberPositionRecord
from clubfund.models.transaction import LedgerTransaction
from clubfund.models.valuation import UnitValuation

logger = logging.getLogger(__name__)


@dataclass
class LedgerSnapshot:
    """A locked fund row and its position rows, keyed by member id."""

    fund: Fund
    positions: Dict[uuid.UUID, MemberPositionRecord] = field(default_factory=dict)

    def restore(self) -> UnitAccountingEngine:
        """Rebuild an engine, failing with ``InvariantViolation`` if the rows disagree."""
        return UnitAccountingEngine.restore(
            self.fund.to_state(),
            [record.to_position() for record in self.positions.values()],
        )


@dataclass
class SavedLedger:
    """Rows written by :meth:`LedgerRepository.save`."""

    transactions: List[LedgerTransaction]
    valuation: Optional[UnitValuation] = None


@dataclass(frozen=True)
class ValuationSnapshot:
    """A dated unit price to upsert alongside a ledger write."""

    valuation_date: date
    total_value: Decimal
    total_units_outstanding: Decimal
    unit_value: Decimal
    notes: str = ""


class LedgerRepository:
    """Loads and commits fund snapshots for the ledger service."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def load(
        self, fund_id: uuid.UUID, for_update: bool = True
    ) -> Optional[LedgerSnapshot]:
        """
        Read the fund row and its positions, locking the fund row unless
        ``for_update`` is false (read-only views).

        Returns ``None`` if the fund does not exist.  ``populate_existing``
        refreshes any instance already in the session's identity map, so the
        snapshot always reflects the committed row.
        """

        async def _load() -> Optional[LedgerSnapshot]:
            stmt = (
                select(Fund)
                .where(Fund.id == fund_id)
                .execution_options(populate_existing=True)
            )
            if for_update:
                stmt = stmt.with_for_update()
            result = await self.db.execute(stmt)
            fund = result.scalars().first()
            if fund is None:
                return None
            stmt = (
                select(MemberPositionRecord)
                .where(MemberPositionRecord.fund_id == fund_id)
                .execution_options(populate_existing=True)
            )
            result = await self.db.execute(stmt)
            records = {record.member_id: record for record in result.scalars().all()}
            return LedgerSnapshot(fund=fund, positions=records)

        return await db_circuit_breaker.call(_load)

    async def save(
        self,
        snapshot: LedgerSnapshot,
        engine: UnitAccountingEngine,
        valuation: Optional[ValuationSnapshot] = None,
    ) -> SavedLedger:
        """
        Persist the engine's state and new transactions in one commit.

        Only positions whose units or cost basis changed are written.
        """

        async def _save() -> SavedLedger:
            fund = snapshot.fund
            fund.apply_state(engine.state)

            for position in engine.positions():
                record = snapshot.positions.get(position.member_id)
                if record is None:
                    record = MemberPositionRecord(fund_id=fund.id, member_id=position.member_id)
                    snapshot.positions[position.member_id] = record
                elif (
                    record.units_owned == position.units_owned
                    and record.total_contributed == position.total_contributed
                ):
                    continue
                record.apply_position(position)
                self.db.add(record)

            rows = []
            for tx in engine.transactions:
                fund.transaction_count += 1
                row = LedgerTransaction.from_engine(fund.id, fund.transaction_count, tx)
                self.db.add(row)
                rows.append(row)
            self.db.add(fund)

            valuation_row = None
            if valuation is not None:
                valuation_row = await self._upsert_valuation(fund.id, valuation)

            try:
                await self.db.commit()
            except Exception:
                await self.db.rollback()
                logger.error(
                    "Ledger commit failed for fund %s; rolled back",
                    fund.id,
                    extra={"fund_id": str(fund.id)},
                )
                raise
            return SavedLedger(transactions=rows, valuation=valuation_row)

        return await db_circuit_breaker.call(_save)

    async def rollback(self) -> None:
        """Abandon the current transaction and release the row lock."""
        await self.db.rollback()

    async def _upsert_valuation(
        self, fund_id: uuid.UUID, valuation: ValuationSnapshot
    ) -> UnitValuation:
        stmt = select(UnitValuation).where(
            UnitValuation.fund_id == fund_id,
            UnitValuation.valuation_date == valuation.valuation_date,
        )
        result = await self.db.execute(stmt)
        row = result.scalars().first()
        if row is None:
            row = UnitValuation(fund_id=fund_id, valuation_date=valuation.valuation_date)
        row.total_value = valuation.total_value
        row.total_units_outstanding = valuation.total_units_outstanding
        row.unit_value = valuation.unit_value
        row.notes = valuation.notes
        self.db.add(row)
        return row
