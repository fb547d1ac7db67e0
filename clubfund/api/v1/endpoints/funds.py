"""
Fund API endpoints.

- GET    /funds                             List funds
- POST   /funds                             Create a fund
- GET    /funds/{fund_id}                   Retrieve a fund
- GET    /funds/{fund_id}/summary           Totals and per-member holdings
- GET    /funds/{fund_id}/members/{member_id}/timeline
                                            A member's holding at each valuation
- POST   /funds/{fund_id}/seed-price        Set the bootstrap unit price
- GET    /funds/{fund_id}/reconciliation    Member units vs units outstanding
"""

from datetime import date
from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query

from clubfund.api.v1.deps import get_ledger_service
from clubfund.schemas.common import (
    ErrorResponse,
    LedgerErrorResponse,
    ValidationErrorResponse,
)
from clubfund.schemas.fund import (
    FundCreate,
    FundResponse,
    FundSummary,
    ReconciliationResponse,
    TimelinePoint,
)
from clubfund.schemas.ledger import SeedPriceRequest
from clubfund.services.ledger_service import LedgerService

router = APIRouter()


@router.get(
    "",
    response_model=List[FundResponse],
    summary="List all funds",
)
async def list_funds(
    skip: int = Query(0, ge=0, description="Number of records to skip"),
    limit: int = Query(100, ge=1, le=1000, description="Max records to return"),
    service: LedgerService = Depends(get_ledger_service),
) -> List[FundResponse]:
    return await service.list_funds(skip=skip, limit=limit)


@router.post(
    "",
    response_model=FundResponse,
    status_code=201,
    summary="Create a new fund",
    description="Creates an empty fund, optionally with the price of its first units.",
    responses={
        409: {"model": ErrorResponse, "description": "Fund name already taken"},
        422: {"model": LedgerErrorResponse, "description": "Invalid seed price"},
    },
)
async def create_fund(
    fund: FundCreate,
    service: LedgerService = Depends(get_ledger_service),
) -> FundResponse:
    return await service.create_fund(fund)


@router.get(
    "/{fund_id}",
    response_model=FundResponse,
    summary="Get a specific fund",
    responses={404: {"model": ErrorResponse, "description": "Fund not found"}},
)
async def get_fund(
    fund_id: UUID,
    service: LedgerService = Depends(get_ledger_service),
) -> FundResponse:
    return await service.get_fund(fund_id)


@router.get(
    "/{fund_id}/summary",
    response_model=FundSummary,
    summary="Fund totals and member holdings",
    description=(
        "Unit price, totals and, for every member, units owned, current value "
        "and ownership percentage.  Pass ``as_of`` to see the fund as it stood "
        "at the end of an earlier day."
    ),
    responses={
        404: {"model": ErrorResponse, "description": "Fund not found"},
        500: {"model": LedgerErrorResponse, "description": "Ledger does not reconcile"},
    },
)
async def get_fund_summary(
    fund_id: UUID,
    as_of: Optional[date] = Query(None, description="Rebuild the summary for this day"),
    service: LedgerService = Depends(get_ledger_service),
) -> FundSummary:
    return await service.get_summary(fund_id, as_of=as_of)


@router.get(
    "/{fund_id}/members/{member_id}/timeline",
    response_model=List[TimelinePoint],
    summary="A member's holding over time",
    description=(
        "Units, net cash contributed and value of one member at every recorded "
        "unit valuation since they joined the fund."
    ),
    responses={404: {"model": ErrorResponse, "description": "Fund or member not found"}},
)
async def get_member_timeline(
    fund_id: UUID,
    member_id: UUID,
    service: LedgerService = Depends(get_ledger_service),
) -> List[TimelinePoint]:
    return await service.member_timeline(fund_id, member_id)


@router.post(
    "/{fund_id}/seed-price",
    response_model=FundResponse,
    summary="Seed the unit price",
    description="Sets the price of the first units.  Only allowed while no units are outstanding.",
    responses={
        404: {"model": ErrorResponse, "description": "Fund not found"},
        422: {"model": LedgerErrorResponse, "description": "Invalid or already established price"},
    },
)
async def seed_price(
    fund_id: UUID,
    body: SeedPriceRequest,
    service: LedgerService = Depends(get_ledger_service),
) -> FundResponse:
    return await service.seed_price(fund_id, body.price)


@router.get(
    "/{fund_id}/reconciliation",
    response_model=ReconciliationResponse,
    summary="Reconcile member units",
    description="Compares the sum of member units with the fund's units outstanding.",
    responses={404: {"model": ErrorResponse, "description": "Fund not found"}},
)
async def reconcile_fund(
    fund_id: UUID,
    service: LedgerService = Depends(get_ledger_service),
) -> ReconciliationResponse:
    report = await service.reconcile(fund_id)
    return ReconciliationResponse(
        fund_id=fund_id,
        total_units=report.total_units,
        member_units=report.member_units,
        difference=report.difference,
        balanced=report.balanced,
        negative_positions=list(report.negative_positions),
    )
