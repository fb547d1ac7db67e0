"""
Pydantic schemas for ledger operations (deposits, withdrawals, adjustments,
revaluations, imports) and the transaction history.

Amounts are accepted as JSON numbers or strings.  Positivity and precision
rules are enforced by the unit accounting engine so that every rejected
amount produces the same error envelope regardless of entry point.
"""

from datetime import date, datetime
from decimal import Decimal
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from clubfund.engine import TransactionType, to_price

_NOTES = Field(default="", max_length=1000, description="Free-text note stored with the transaction")


# ────────────────────────────────────────────────────────────────────────────
# Requests
# ────────────────────────────────────────────────────────────────────────────


class SeedPriceRequest(BaseModel):
    """Schema for ``POST /funds/{fund_id}/seed-price``."""

    price: Decimal = Field(..., description="Bootstrap unit price", examples=["10.00"])


class DepositRequest(BaseModel):
    """Schema for ``POST /funds/{fund_id}/deposits``."""

    member_id: UUID
    cash_amount: Decimal = Field(..., description="Cash paid in", examples=["5000.00"])
    notes: str = _NOTES


class WithdrawalRequest(BaseModel):
    """
    Schema for ``POST /funds/{fund_id}/withdrawals``.

    Either ``cash_amount`` or ``full=true`` (redeem every unit the member
    holds) must be given, but not both.
    """

    member_id: UUID
    cash_amount: Optional[Decimal] = Field(default=None, examples=["3000.00"])
    full: bool = Field(default=False, description="Close the member's position")
    notes: str = _NOTES

    @model_validator(mode="after")
    def _amount_or_full(self) -> "WithdrawalRequest":
        if self.full == (self.cash_amount is not None):
            raise ValueError("provide either cash_amount or full=true, not both")
        return self


class AdjustmentRequest(BaseModel):
    """Schema for ``POST /funds/{fund_id}/adjustments``."""

    member_id: UUID
    units_delta: Decimal = Field(
        ..., description="Units to grant (positive) or remove (negative)", examples=["25.5"]
    )
    notes: str = _NOTES


class RevaluationRequest(BaseModel):
    """Schema for ``POST /funds/{fund_id}/revaluations``."""

    new_total_value: Decimal = Field(..., examples=["925000.00"])
    valuation_date: Optional[date] = Field(
        default=None, description="Date of the valuation snapshot; defaults to today"
    )
    notes: str = _NOTES


class ValuationCreate(BaseModel):
    """Schema for ``POST /funds/{fund_id}/valuations``."""

    valuation_date: date
    notes: str = _NOTES


class ImportEntry(BaseModel):
    """One row of a transaction log replayed through the engine."""

    tx_type: TransactionType
    amount: Decimal = Field(
        ...,
        description=(
            "Cash for deposits and withdrawals, units for adjustments, "
            "new total value for revaluations"
        ),
    )
    member_id: Optional[UUID] = None
    notes: str = _NOTES
    timestamp: Optional[datetime] = None


class ImportRequest(BaseModel):
    """Schema for ``POST /funds/{fund_id}/imports``."""

    entries: List[ImportEntry] = Field(..., min_length=1)


# ────────────────────────────────────────────────────────────────────────────
# Responses
# ────────────────────────────────────────────────────────────────────────────


class TransactionResponse(BaseModel):
    """A ledger transaction row."""

    id: UUID
    fund_id: UUID
    sequence: int
    member_id: Optional[UUID] = None
    tx_type: TransactionType
    cash_amount: Optional[Decimal] = None
    units_delta: Decimal
    unit_price_at_transaction: Optional[Decimal] = None
    value_after: Decimal
    units_after: Decimal
    notes: str
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class _OperationResponse(BaseModel):
    """Base for operation results; reports the new price at 8 decimal places."""

    @field_validator("new_unit_price", check_fields=False)
    @classmethod
    def round_new_unit_price(cls, v: Optional[Decimal]) -> Optional[Decimal]:
        return None if v is None else to_price(v)


class DepositResponse(_OperationResponse):
    units_issued: Decimal
    new_unit_price: Decimal
    transaction: TransactionResponse


class WithdrawalResponse(_OperationResponse):
    units_removed: Decimal
    cash_paid: Decimal
    new_unit_price: Optional[Decimal] = None
    transaction: TransactionResponse


class AdjustmentResponse(_OperationResponse):
    cash_equivalent: Decimal
    new_unit_price: Optional[Decimal] = None
    transaction: TransactionResponse


class RevaluationResponse(BaseModel):
    old_price: Decimal
    new_price: Decimal
    pct_change: Optional[Decimal] = Field(
        default=None, description="Price change in percent; null when the old price was zero"
    )
    transaction: TransactionResponse


class ValuationResponse(BaseModel):
    """A dated unit valuation."""

    id: UUID
    fund_id: UUID
    valuation_date: date
    total_value: Decimal
    total_units_outstanding: Decimal
    unit_value: Decimal
    notes: str
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class ImportResponse(BaseModel):
    """Outcome of a replayed import."""

    imported: int
    fund_id: UUID
    total_value: Decimal
    total_units: Decimal
    unit_price: Optional[Decimal] = None
