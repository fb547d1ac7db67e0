"""
Member API endpoints.

- GET    /members              List members
- POST   /members              Register a member
- GET    /members/{member_id}  Retrieve a member
"""

from typing import List
from uuid import UUID

from fastapi import APIRouter, Depends, Query

from clubfund.api.v1.deps import get_member_service
from clubfund.schemas.common import ErrorResponse, ValidationErrorResponse
from clubfund.schemas.member import MemberCreate, MemberResponse
from clubfund.services.member_service import MemberService

router = APIRouter()


@router.get(
    "",
    response_model=List[MemberResponse],
    summary="List all members",
)
async def list_members(
    skip: int = Query(0, ge=0, description="Number of records to skip"),
    limit: int = Query(100, ge=1, le=1000, description="Max records to return"),
    service: MemberService = Depends(get_member_service),
) -> List[MemberResponse]:
    return await service.list_members(skip=skip, limit=limit)


@router.post(
    "",
    response_model=MemberResponse,
    status_code=201,
    summary="Register a new member",
    responses={
        409: {"model": ErrorResponse, "description": "Email already registered"},
        422: {"model": ValidationErrorResponse, "description": "Validation error"},
    },
)
async def create_member(
    member: MemberCreate,
    service: MemberService = Depends(get_member_service),
) -> MemberResponse:
    return await service.create_member(member)


@router.get(
    "/{member_id}",
    response_model=MemberResponse,
    summary="Get a specific member",
    responses={404: {"model": ErrorResponse, "description": "Member not found"}},
)
async def get_member(
    member_id: UUID,
    service: MemberService = Depends(get_member_service),
) -> MemberResponse:
    return await service.get_member(member_id)
