"""
V1 API router aggregation.

The top-level ``main.py`` mounts this router at ``/api/v1``.
"""

from fastapi import APIRouter

from clubfund.api.v1.endpoints import funds, ledger, members, valuations

api_router = APIRouter()

api_router.include_router(funds.router, prefix="/funds", tags=["Funds"])
api_router.include_router(members.router, prefix="/members", tags=["Members"])

# Ledger and valuation routers define full paths (/funds/{fund_id}/...) and are
# mounted at the root of the v1 prefix.
api_router.include_router(ledger.router, tags=["Ledger"])
api_router.include_router(valuations.router, tags=["Valuations"])
