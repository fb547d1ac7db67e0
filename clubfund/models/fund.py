"""
Fund model.

One row per pooled club fund, holding the aggregate state the unit
accounting engine works on.  The unit price is never stored here: it is
always derived as ``total_value / total_units``.
"""

import uuid
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional

from sqlalchemy import CheckConstraint, DateTime
from sqlmodel import Field, SQLModel

from clubfund.engine import FundState, to_price


class Fund(SQLModel, table=True):
    """
    SQLModel / SQLAlchemy table definition for funds.

    - ``total_value`` uses NUMERIC(28,12) so direct unit adjustments can be
      stored without moving the price.
    - ``total_units`` uses NUMERIC(28,12), the unit precision of the ledger.
    - ``seed_price`` is the price at which the first units are issued; it is
      NULL until an administrator seeds the fund.
    """

    __tablename__ = "funds"  # type: ignore[assignment]

    __table_args__ = (
        CheckConstraint("total_value >= 0", name="ck_funds_total_value_non_negative"),
        CheckConstraint("total_units >= 0", name="ck_funds_total_units_non_negative"),
        CheckConstraint(
            "seed_price IS NULL OR seed_price > 0", name="ck_funds_seed_price_positive"
        ),
        CheckConstraint("length(name) > 0", name="ck_funds_name_not_empty"),
        CheckConstraint("transaction_count >= 0", name="ck_funds_transaction_count_non_negative"),
    )

    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    name: str = Field(index=True, unique=True, max_length=255)
    total_value: Decimal = Field(default=Decimal("0"), max_digits=28, decimal_places=12)
    total_units: Decimal = Field(default=Decimal("0"), max_digits=28, decimal_places=12)
    seed_price: Optional[Decimal] = Field(default=None, max_digits=20, decimal_places=8)
    # Number of ledger transactions applied; the next one gets this + 1.
    transaction_count: int = Field(default=0)
    created_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        nullable=False,
        sa_type=DateTime(timezone=True),  # type: ignore[arg-type]
    )
    updated_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        nullable=False,
        sa_type=DateTime(timezone=True),  # type: ignore[arg-type]
    )

    @property
    def unit_price(self) -> Optional[Decimal]:
        """Current unit price at 8 decimal places, the seed price when no units
        are outstanding, or ``None`` if the fund was never capitalised."""
        price = self.to_state().unit_price
        if price is None:
            return self.seed_price
        return to_price(price)

    def to_state(self) -> FundState:
        return FundState(
            total_value=self.total_value,
            total_units=self.total_units,
            seed_price=self.seed_price,
        )

    def apply_state(self, state: FundState) -> None:
        self.total_value = state.total_value
        self.total_units = state.total_units
        self.seed_price = state.seed_price
        self.updated_at = datetime.now(timezone.utc)

    def __repr__(self) -> str:
        return f"<Fund id={self.id} name='{self.name}' units={self.total_units}>"
