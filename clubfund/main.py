"""
Club Fund Ledger API: application entry-point.

Initializes the FastAPI application, registers middleware, exception handlers,
routers, and manages the application lifecycle (DB table creation on startup).
"""

import asyncio
import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.openapi.docs import get_redoc_html
from sqlalchemy import text
from sqlmodel import SQLModel

from clubfund.api.v1.api import api_router
from clubfund.core.config import settings
from clubfund.core.exceptions import add_exception_handlers
from clubfund.core.logging import setup_logging
from clubfund.core.resilience import db_circuit_breaker
from clubfund.db.session import AsyncSessionLocal, engine
from clubfund.middleware import RequestIDMiddleware, RequestTimingMiddleware

# ── Initialise logging (console + rotating JSON files) ──
setup_logging()
logger = logging.getLogger(__name__)


# ────────────────────────────────────────────────────────────────────────────
# Application lifespan  (replaces deprecated @app.on_event)
# ────────────────────────────────────────────────────────────────────────────


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """
    Manages startup / shutdown lifecycle events.

    Startup:
      - Registers all SQLModel table models and creates missing tables,
        retrying with back-off while the database comes up.
      - If the database is still unreachable, the app starts in degraded
        mode (health check reports ``database: false``).

    Shutdown:
      - Disposes of the connection pool.
    """
    # Table classes register with SQLModel.metadata on import.
    import clubfund.db.base  # noqa: F401

    max_retries = 5
    retry_delay = 2  # seconds (doubles each attempt)

    for attempt in range(1, max_retries + 1):
        try:
            logger.info("Connecting to database (attempt %d/%d)…", attempt, max_retries)
            async with engine.begin() as conn:
                await conn.run_sync(SQLModel.metadata.create_all)
            logger.info("Database tables ready")
            break
        except Exception as exc:
            if attempt < max_retries:
                logger.warning(
                    "Database connection failed (attempt %d/%d): %s; retrying in %ds",
                    attempt,
                    max_retries,
                    exc,
                    retry_delay,
                )
                await asyncio.sleep(retry_delay)
                retry_delay *= 2  # exponential back-off
            else:
                logger.error(
                    "Could not connect to database after %d attempts. "
                    "The application will start in DEGRADED mode; all "
                    "database-dependent endpoints will fail "
                    "until the database becomes available. Last error: %s",
                    max_retries,
                    exc,
                )

    yield

    logger.info("Shutting down, disposing connection pool")
    await engine.dispose()


# ────────────────────────────────────────────────────────────────────────────
# FastAPI application instance
# ────────────────────────────────────────────────────────────────────────────

app = FastAPI(
    title=settings.PROJECT_NAME,
    version="1.0.0",
    description=(
        "Unit accounting for an investment club: members, pooled funds, "
        "deposits, withdrawals, unit adjustments and revaluations."
    ),
    openapi_url=f"{settings.API_V1_STR}/openapi.json",
    redoc_url=None,  # served by the custom route below
    lifespan=lifespan,
)


# ── Custom ReDoc route served from the unpkg CDN ──
@app.get("/redoc", include_in_schema=False)
async def custom_redoc_html():
    """Serve ReDoc using the unpkg CDN which has proper CORS headers."""
    return get_redoc_html(
        openapi_url=app.openapi_url or f"{settings.API_V1_STR}/openapi.json",
        title=f"{settings.PROJECT_NAME} ReDoc",
        redoc_js_url="https://unpkg.com/redoc@latest/bundles/redoc.standalone.js",
    )


# ── Middleware (order matters: outermost = first to execute) ──
# GZip compresses responses > 500 bytes (transaction history, summaries).
app.add_middleware(GZipMiddleware, minimum_size=500)

# Request ID: propagates X-Request-ID and tags log records with it
app.add_middleware(RequestIDMiddleware)

# Request timing: logs duration and adds X-Process-Time header
app.add_middleware(RequestTimingMiddleware)

# CORS: allows cross-origin requests from configured origins
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS.split(","),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# ── Global error handlers ──
add_exception_handlers(app)

# ── API routers ──
app.include_router(api_router, prefix=settings.API_V1_STR)


# ── Health check ──


@app.get("/health", tags=["Health"])
async def health_check():
    """
    Liveness / readiness check.

    Runs ``SELECT 1`` against the database and reports the circuit breaker
    state.
    """
    db_healthy = True
    try:
        async with AsyncSessionLocal() as session:
            await session.execute(text("SELECT 1"))
    except Exception:
        db_healthy = False

    status = "ok" if db_healthy else "degraded"
    return {
        "status": status,
        "version": "1.0.0",
        "database": db_healthy,
        "circuit_breaker": db_circuit_breaker.get_status(),
    }
