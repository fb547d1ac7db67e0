"""
Unit valuation model.

Dated snapshot of a fund's unit price, used for the valuation history chart.
One row per fund per day; recording a second valuation on the same day
replaces the first.
"""

import uuid
from datetime import date, datetime, timezone
from decimal import Decimal

from sqlalchemy import CheckConstraint, DateTime, UniqueConstraint
from sqlmodel import Field, SQLModel


class UnitValuation(SQLModel, table=True):
    """SQLModel / SQLAlchemy table definition for unit valuations."""

    __tablename__ = "unit_valuations"  # type: ignore[assignment]

    __table_args__ = (
        UniqueConstraint("fund_id", "valuation_date", name="uq_unit_valuations_fund_date"),
        CheckConstraint("total_units_outstanding > 0", name="ck_unit_valuations_units_positive"),
        CheckConstraint("unit_value >= 0", name="ck_unit_valuations_unit_value_non_negative"),
    )

    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    fund_id: uuid.UUID = Field(foreign_key="funds.id", index=True, ondelete="RESTRICT")
    valuation_date: date = Field(index=True)
    total_value: Decimal = Field(max_digits=28, decimal_places=12)
    total_units_outstanding: Decimal = Field(max_digits=28, decimal_places=12)
    unit_value: Decimal = Field(max_digits=20, decimal_places=8)
    notes: str = Field(default="", max_length=1000)
    created_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        nullable=False,
        sa_type=DateTime(timezone=True),  # type: ignore[arg-type]
    )

    def __repr__(self) -> str:
        return (
            f"<UnitValuation fund={self.fund_id} date={self.valuation_date} "
            f"unit_value={self.unit_value}>"
        )
