"""
Common Pydantic schemas shared across endpoints.

Defines the error envelopes so the OpenAPI documentation describes the error
contract as well as the happy path.
"""

from typing import List, Optional

from pydantic import BaseModel, Field


class ErrorResponse(BaseModel):
    """Standard error envelope returned by all non-validation error handlers."""

    error: bool = Field(default=True, description="Always ``true`` for errors")
    message: str = Field(
        ..., description="Human-readable error description", examples=["Fund not found"]
    )


class LedgerErrorResponse(ErrorResponse):
    """
    Error envelope for a rejected ledger operation.

    Systemic errors (``UndefinedPrice``, ``InvariantViolation``) carry a
    generic "contact a club administrator" message.
    """

    code: str = Field(
        ..., description="Name of the ledger error", examples=["InsufficientUnits"]
    )
    field: Optional[str] = Field(
        default=None,
        description="Request field that caused the error, for field-level display",
        examples=["cash_amount"],
    )
    entry_index: Optional[int] = Field(
        default=None, description="Index of the failing entry in an import batch"
    )


class ValidationErrorDetail(BaseModel):
    """Single field-level validation failure."""

    field: str = Field(
        ...,
        description="Dot-separated path to the invalid field",
        examples=["body -> member_id"],
    )
    message: str = Field(
        ...,
        description="Explanation of the validation failure",
        examples=["Input should be a valid UUID"],
    )


class ValidationErrorResponse(BaseModel):
    """Response body for 422 Unprocessable Entity (validation failure)."""

    error: bool = Field(default=True, description="Always ``true`` for errors")
    message: str = Field(
        default="Validation failed",
        description="Summary message",
    )
    details: List[ValidationErrorDetail] = Field(..., description="Per-field validation failures")
