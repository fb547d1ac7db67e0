"""
Pydantic schemas for Member API request / response serialisation.
"""

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator


class MemberBase(BaseModel):
    """Fields common to member creation payloads."""

    name: str = Field(
        ...,
        min_length=1,
        max_length=255,
        description="Full name of the club member",
        examples=["Ada Lovelace"],
    )
    email: EmailStr = Field(
        ...,
        description="Contact email address (must be unique across members)",
        examples=["ada@example.com"],
    )

    @field_validator("name")
    @classmethod
    def validate_name_not_blank(cls, v: str) -> str:
        """Reject whitespace-only names."""
        if not v.strip():
            raise ValueError("name must not be blank")
        return v.strip()


class MemberCreate(MemberBase):
    """Schema for ``POST /members``."""

    pass


class MemberResponse(MemberBase):
    """Schema returned by all member endpoints."""

    id: UUID
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)
