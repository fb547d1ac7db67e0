"""
Valuation history endpoints.

- GET    /funds/{fund_id}/valuations   Dated unit prices, oldest first
- POST   /funds/{fund_id}/valuations   Record today's (or a given date's) price
"""

from datetime import date
from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query

from clubfund.api.v1.deps import get_ledger_service
from clubfund.schemas.common import ErrorResponse, LedgerErrorResponse
from clubfund.schemas.ledger import ValuationCreate, ValuationResponse
from clubfund.services.ledger_service import LedgerService

router = APIRouter()


@router.get(
    "/funds/{fund_id}/valuations",
    response_model=List[ValuationResponse],
    summary="Valuation history",
    responses={404: {"model": ErrorResponse, "description": "Fund not found"}},
)
async def list_valuations(
    fund_id: UUID,
    start: Optional[date] = Query(None, description="Earliest valuation date"),
    end: Optional[date] = Query(None, description="Latest valuation date"),
    service: LedgerService = Depends(get_ledger_service),
) -> List[ValuationResponse]:
    return await service.list_valuations(fund_id, start=start, end=end)


@router.post(
    "/funds/{fund_id}/valuations",
    response_model=ValuationResponse,
    status_code=201,
    summary="Record a valuation",
    description=(
        "Stores the fund's current unit price under ``valuation_date``, "
        "replacing any valuation already recorded for that date."
    ),
    responses={
        404: {"model": ErrorResponse, "description": "Fund not found"},
        409: {"model": LedgerErrorResponse, "description": "No units outstanding"},
    },
)
async def record_valuation(
    fund_id: UUID,
    body: ValuationCreate,
    service: LedgerService = Depends(get_ledger_service),
) -> ValuationResponse:
    return await service.record_valuation(fund_id, body)
