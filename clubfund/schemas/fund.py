"""
Pydantic schemas for Fund API request / response serialisation.

Decimal fields are serialised as JSON strings (Pydantic's default for
``Decimal``) so no precision is lost on the wire.
"""

from datetime import date, datetime
from decimal import Decimal
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator


class FundCreate(BaseModel):
    """Schema for ``POST /funds``."""

    name: str = Field(
        ...,
        min_length=1,
        max_length=255,
        description="Human-readable name of the fund",
        examples=["Main Club Portfolio"],
    )
    seed_price: Optional[Decimal] = Field(
        default=None,
        description="Price at which the first units will be issued",
        examples=["10.00"],
    )

    @field_validator("name")
    @classmethod
    def validate_name_not_blank(cls, v: str) -> str:
        """Reject whitespace-only names."""
        if not v.strip():
            raise ValueError("name must not be blank")
        return v.strip()


class FundResponse(BaseModel):
    """Schema returned by all fund endpoints."""

    id: UUID
    name: str
    total_value: Decimal
    total_units: Decimal
    unit_price: Optional[Decimal] = Field(
        default=None,
        description="Current unit price; null until the fund is capitalised",
    )
    seed_price: Optional[Decimal] = None
    transaction_count: int
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


_NET_CASH = (
    "Net cash the member has put in: deposits and the cash equivalent of unit "
    "grants, minus withdrawals.  Negative once the member has taken out more "
    "than they paid in, for example after closing a position at a gain."
)


class MemberHolding(BaseModel):
    """One member's position within a fund summary."""

    member_id: UUID
    units_owned: Decimal
    total_contributed: Decimal = Field(..., description=_NET_CASH)
    current_value: Decimal
    ownership_pct: Decimal = Field(..., description="Share of units outstanding, in percent")


class FundSummary(FundResponse):
    """Schema for ``GET /funds/{fund_id}/summary``."""

    as_of: Optional[date] = Field(
        default=None, description="Day the summary was rebuilt for; null for the live ledger"
    )
    holdings: List[MemberHolding] = Field(default_factory=list)


class ReconciliationResponse(BaseModel):
    """Result of comparing member holdings against units outstanding."""

    fund_id: UUID
    total_units: Decimal
    member_units: Decimal
    difference: Decimal
    balanced: bool
    negative_positions: List[UUID] = Field(default_factory=list)


class TimelinePoint(BaseModel):
    """A member's holding at one recorded unit valuation."""

    valuation_date: date
    units_owned: Decimal
    unit_value: Decimal
    current_value: Decimal
    total_contributed: Decimal = Field(..., description=_NET_CASH)
