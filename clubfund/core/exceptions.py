"""
Global exception handlers for the FastAPI application.

Centralises error formatting so every error response follows a consistent
JSON structure::

    {
        "error": true,
        "message": "<human-readable description>"
    }

Ledger errors additionally carry ``code`` (the engine error name) and, where
known, ``field`` and ``entry_index`` so a form can put the message next to
the input that caused it.

This module also defines application exceptions that the service layer can
raise without importing FastAPI's HTTPException.
"""

import logging
import math
from typing import Any, Dict

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from clubfund.core.resilience import CircuitBreakerError
from clubfund.engine.errors import (
    InvalidAmount,
    InvariantViolation,
    LedgerError,
    UndefinedPrice,
)

logger = logging.getLogger(__name__)


# ────────────────────────────────────────────────────────────────────────────
# Application exceptions  (raised by service layer, caught by handlers below)
# ────────────────────────────────────────────────────────────────────────────


class AppException(Exception):
    """Base exception for all application-level errors."""

    def __init__(self, status_code: int, message: str, details: Any = None):
        self.status_code = status_code
        self.message = message
        self.details = details
        super().__init__(message)


class NotFoundException(AppException):
    """Resource not found (404)."""

    def __init__(self, resource: str, identifier: Any):
        super().__init__(
            status_code=404,
            message=f"{resource} with id '{identifier}' not found",
        )


class ConflictException(AppException):
    """Resource already exists / unique-constraint violation (409)."""

    def __init__(self, message: str):
        super().__init__(status_code=409, message=message)


class BusinessRuleViolation(AppException):
    """Business rule was violated (422)."""

    def __init__(self, message: str):
        super().__init__(status_code=422, message=message)


class LedgerBusy(AppException):
    """Another operation on the same fund held the ledger lock too long (503)."""

    def __init__(self, fund_id: Any, waited: float):
        self.retry_after = waited
        super().__init__(
            status_code=503,
            message=(
                f"Fund '{fund_id}' is busy processing another transaction. "
                f"Please retry shortly."
            ),
        )


# ────────────────────────────────────────────────────────────────────────────
# Ledger error mapping
# ────────────────────────────────────────────────────────────────────────────


def ledger_error_status(exc: LedgerError) -> int:
    """HTTP status for an engine error."""
    if isinstance(exc, InvariantViolation):
        return 500
    if isinstance(exc, UndefinedPrice):
        return 409
    return 422


def ledger_error_body(exc: LedgerError) -> Dict[str, Any]:
    """Response body for an engine error, using the user-facing message."""
    body: Dict[str, Any] = {
        "error": True,
        "code": exc.code,
        "message": exc.user_message,
    }
    if isinstance(exc, InvalidAmount):
        body["field"] = exc.field
    if exc.entry_index is not None:
        body["entry_index"] = exc.entry_index
    return body


# ────────────────────────────────────────────────────────────────────────────
# FastAPI exception handler registration
# ────────────────────────────────────────────────────────────────────────────


def add_exception_handlers(app: FastAPI) -> None:
    """Register global exception handlers on the FastAPI application instance."""

    @app.exception_handler(AppException)
    async def app_exception_handler(
        request: Request, exc: AppException
    ) -> JSONResponse:
        """Handle application exceptions raised by the service layer."""
        headers = None
        if isinstance(exc, LedgerBusy):
            headers = {"Retry-After": str(max(1, math.ceil(exc.retry_after)))}
        content: Dict[str, Any] = {"error": True, "message": exc.message}
        if exc.details is not None:
            content["details"] = exc.details
        return JSONResponse(
            status_code=exc.status_code, content=content, headers=headers
        )

    @app.exception_handler(LedgerError)
    async def ledger_error_handler(
        request: Request, exc: LedgerError
    ) -> JSONResponse:
        """
        Handle errors raised by the unit accounting engine.

        Systemic errors are reported to the caller as "contact an
        administrator" and logged with the full detail for the operator.
        """
        status_code = ledger_error_status(exc)
        if isinstance(exc, InvariantViolation):
            logger.error(
                "Ledger invariant violated on %s %s: %s",
                request.method,
                request.url.path,
                exc.message,
            )
        elif exc.systemic:
            logger.warning(
                "Systemic ledger error on %s %s: %s",
                request.method,
                request.url.path,
                exc.message,
            )
        return JSONResponse(status_code=status_code, content=ledger_error_body(exc))

    @app.exception_handler(CircuitBreakerError)
    async def circuit_breaker_handler(
        request: Request, exc: CircuitBreakerError
    ) -> JSONResponse:
        """Fail fast with 503 while the database circuit is open."""
        retry_after = max(1, math.ceil(exc.retry_after))
        return JSONResponse(
            status_code=503,
            content={
                "error": True,
                "message": (
                    f"Service temporarily unavailable: the {exc.name} circuit "
                    f"is open. Retry after {retry_after}s."
                ),
            },
            headers={"Retry-After": str(retry_after)},
        )

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(
        request: Request, exc: StarletteHTTPException
    ) -> JSONResponse:
        """Handle standard HTTP exceptions (e.g. 404 from path-not-found)."""
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": True, "message": exc.detail},
        )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        """
        Handle Pydantic / FastAPI request-validation errors.

        Returns a 422 with a concise list of validation issues so the caller
        knows exactly which fields failed and why.
        """
        errors = []
        for err in exc.errors():
            loc = " -> ".join(str(part) for part in err["loc"])
            errors.append({"field": loc, "message": err["msg"]})
        return JSONResponse(
            status_code=422,
            content={"error": True, "message": "Validation failed", "details": errors},
        )

    @app.exception_handler(Exception)
    async def global_exception_handler(
        request: Request, exc: Exception
    ) -> JSONResponse:
        """Catch-all for unexpected exceptions."""
        logger.exception(
            "Unhandled exception on %s %s", request.method, request.url.path
        )
        return JSONResponse(
            status_code=500,
            content={
                "error": True,
                "message": "Internal Server Error. Please contact a club administrator.",
            },
        )
