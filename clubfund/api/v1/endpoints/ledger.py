"""
Ledger API endpoints.

- POST   /funds/{fund_id}/deposits       Issue units for cash paid in
- POST   /funds/{fund_id}/withdrawals    Redeem units for cash paid out
- POST   /funds/{fund_id}/adjustments    Grant or remove units directly
- POST   /funds/{fund_id}/revaluations   Record a new total fund value
- POST   /funds/{fund_id}/imports        Replay an imported transaction log
- GET    /funds/{fund_id}/transactions   Transaction history

Rejected operations return a :class:`LedgerErrorResponse`.  Validation
problems with the amount are 422 with ``field`` set; a fund without an
established price is 409 with a "contact an administrator" message.
"""

from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query

from clubfund.api.v1.deps import get_ledger_service
from clubfund.schemas.common import ErrorResponse, LedgerErrorResponse
from clubfund.schemas.ledger import (
    AdjustmentRequest,
    AdjustmentResponse,
    DepositRequest,
    DepositResponse,
    ImportRequest,
    ImportResponse,
    RevaluationRequest,
    RevaluationResponse,
    TransactionResponse,
    WithdrawalRequest,
    WithdrawalResponse,
)
from clubfund.services.ledger_service import LedgerService

router = APIRouter()

_LEDGER_ERRORS = {
    404: {"model": ErrorResponse, "description": "Fund or member not found"},
    409: {"model": LedgerErrorResponse, "description": "No unit price established"},
    422: {"model": LedgerErrorResponse, "description": "Operation rejected"},
    503: {"model": ErrorResponse, "description": "Fund busy or database unavailable"},
}


@router.post(
    "/funds/{fund_id}/deposits",
    response_model=DepositResponse,
    status_code=201,
    summary="Deposit cash",
    description="Issues units at the current price for the cash deposited.",
    responses=_LEDGER_ERRORS,
)
async def create_deposit(
    fund_id: UUID,
    body: DepositRequest,
    service: LedgerService = Depends(get_ledger_service),
) -> DepositResponse:
    outcome = await service.deposit(fund_id, body)
    return DepositResponse(
        units_issued=outcome.result.units_issued,
        new_unit_price=outcome.result.new_unit_price,
        transaction=TransactionResponse.model_validate(outcome.transaction),
    )


@router.post(
    "/funds/{fund_id}/withdrawals",
    response_model=WithdrawalResponse,
    status_code=201,
    summary="Withdraw cash",
    description=(
        "Redeems units worth ``cash_amount`` at the current price, or every unit "
        "the member holds when ``full`` is true."
    ),
    responses=_LEDGER_ERRORS,
)
async def create_withdrawal(
    fund_id: UUID,
    body: WithdrawalRequest,
    service: LedgerService = Depends(get_ledger_service),
) -> WithdrawalResponse:
    outcome = await service.withdraw(fund_id, body)
    return WithdrawalResponse(
        units_removed=outcome.result.units_removed,
        cash_paid=outcome.result.cash_paid,
        new_unit_price=outcome.result.new_unit_price,
        transaction=TransactionResponse.model_validate(outcome.transaction),
    )


@router.post(
    "/funds/{fund_id}/adjustments",
    response_model=AdjustmentResponse,
    status_code=201,
    summary="Adjust units directly",
    description=(
        "Grants (positive) or removes (negative) units without moving cash.  The "
        "fund value moves by the units' worth so the price is unchanged."
    ),
    responses=_LEDGER_ERRORS,
)
async def create_adjustment(
    fund_id: UUID,
    body: AdjustmentRequest,
    service: LedgerService = Depends(get_ledger_service),
) -> AdjustmentResponse:
    outcome = await service.adjust_units(fund_id, body)
    return AdjustmentResponse(
        cash_equivalent=outcome.result.cash_equivalent,
        new_unit_price=outcome.result.new_unit_price,
        transaction=TransactionResponse.model_validate(outcome.transaction),
    )


@router.post(
    "/funds/{fund_id}/revaluations",
    response_model=RevaluationResponse,
    status_code=201,
    summary="Revalue the fund",
    description=(
        "Sets the market value of the pooled assets.  Units are unchanged, so "
        "the unit price moves and every member's value moves proportionally.  "
        "The new price is also recorded as the valuation for ``valuation_date``."
    ),
    responses=_LEDGER_ERRORS,
)
async def create_revaluation(
    fund_id: UUID,
    body: RevaluationRequest,
    service: LedgerService = Depends(get_ledger_service),
) -> RevaluationResponse:
    outcome = await service.revalue(fund_id, body)
    return RevaluationResponse(
        old_price=outcome.result.old_price,
        new_price=outcome.result.new_price,
        pct_change=outcome.result.pct_change,
        transaction=TransactionResponse.model_validate(outcome.transaction),
    )


@router.post(
    "/funds/{fund_id}/imports",
    response_model=ImportResponse,
    status_code=201,
    summary="Import a transaction log",
    description=(
        "Replays the entries in order through the same rules as live "
        "transactions.  If any entry is rejected nothing is imported and the "
        "error's ``entry_index`` identifies the entry."
    ),
    responses=_LEDGER_ERRORS,
)
async def import_ledger(
    fund_id: UUID,
    body: ImportRequest,
    service: LedgerService = Depends(get_ledger_service),
) -> ImportResponse:
    outcome = await service.import_ledger(fund_id, body)
    fund = outcome.fund
    return ImportResponse(
        imported=len(outcome.transactions),
        fund_id=fund.id,
        total_value=fund.total_value,
        total_units=fund.total_units,
        unit_price=fund.unit_price,
    )


@router.get(
    "/funds/{fund_id}/transactions",
    response_model=List[TransactionResponse],
    summary="Transaction history",
    description="Transactions in the order they were applied, optionally for one member.",
    responses={404: {"model": ErrorResponse, "description": "Fund not found"}},
)
async def list_transactions(
    fund_id: UUID,
    member_id: Optional[UUID] = Query(None, description="Only this member's transactions"),
    skip: int = Query(0, ge=0, description="Number of records to skip"),
    limit: int = Query(100, ge=1, le=1000, description="Max records to return"),
    service: LedgerService = Depends(get_ledger_service),
) -> List[TransactionResponse]:
    return await service.list_transactions(
        fund_id, member_id=member_id, skip=skip, limit=limit
    )
