"""
Ledger transaction model.

Append-only record of every operation applied to a fund through the unit
accounting engine.  Rows are never updated or deleted.
"""

import uuid
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional

from sqlalchemy import CheckConstraint, DateTime, UniqueConstraint
from sqlmodel import Field, SQLModel

from clubfund.engine import Transaction, TransactionType


class LedgerTransaction(SQLModel, table=True):
    """
    SQLModel / SQLAlchemy table definition for ledger transactions.

    - ``member_id`` is NULL for revaluations, which affect every member.
    - ``cash_amount`` is the cash moved for deposits and withdrawals, the cash
      equivalent for unit adjustments and NULL for revaluations.
    - ``unit_price_at_transaction`` is the price *before* the transaction.
    - ``sequence`` numbers a fund's transactions from 1 in the order they
      were applied; the unique ``(fund_id, sequence)`` constraint serves the
      history listing and rejects a second writer that skipped the row lock.
    """

    __tablename__ = "ledger_transactions"  # type: ignore[assignment]

    __table_args__ = (
        UniqueConstraint("fund_id", "sequence", name="uq_ledger_transactions_fund_sequence"),
        CheckConstraint("sequence > 0", name="ck_ledger_transactions_sequence_positive"),
    )

    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    fund_id: uuid.UUID = Field(foreign_key="funds.id", index=True, ondelete="RESTRICT")
    sequence: int
    member_id: Optional[uuid.UUID] = Field(
        default=None, foreign_key="members.id", index=True, ondelete="RESTRICT"
    )
    tx_type: TransactionType
    cash_amount: Optional[Decimal] = Field(default=None, max_digits=28, decimal_places=12)
    units_delta: Decimal = Field(max_digits=28, decimal_places=12)
    unit_price_at_transaction: Optional[Decimal] = Field(
        default=None, max_digits=20, decimal_places=8
    )
    value_after: Decimal = Field(max_digits=28, decimal_places=12)
    units_after: Decimal = Field(max_digits=28, decimal_places=12)
    notes: str = Field(default="", max_length=1000)
    created_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        nullable=False,
        sa_type=DateTime(timezone=True),  # type: ignore[arg-type]
    )

    @classmethod
    def from_engine(
        cls, fund_id: uuid.UUID, sequence: int, tx: Transaction
    ) -> "LedgerTransaction":
        """Build a row from a transaction produced by the engine."""
        return cls(
            fund_id=fund_id,
            sequence=sequence,
            member_id=tx.member_id,
            tx_type=tx.tx_type,
            cash_amount=tx.cash_amount,
            units_delta=tx.units_delta,
            unit_price_at_transaction=tx.unit_price_at_transaction,
            value_after=tx.value_after,
            units_after=tx.units_after,
            notes=tx.notes,
            created_at=tx.timestamp,
        )

    @property
    def contribution_delta(self) -> Decimal:
        """Change this transaction made to the member's net cash contributed."""
        if self.cash_amount is None:
            return Decimal("0")
        if self.tx_type == TransactionType.WITHDRAWAL:
            return -self.cash_amount
        return self.cash_amount

    def __repr__(self) -> str:
        return (
            f"<LedgerTransaction id={self.id} fund={self.fund_id} "
            f"type={self.tx_type.value} units={self.units_delta}>"
        )
