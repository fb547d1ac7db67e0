"""
Database session management.

Provides the async SQLAlchemy engine and the per-request session dependency.
"""

from collections.abc import AsyncGenerator

from sqlalchemy import event
from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from clubfund.core.config import settings

# ── Engine creation (PostgreSQL or SQLite) ──
if settings.USE_SQLITE:
    # In-memory SQLite for development and demos.  StaticPool makes every
    # connection share the same in-memory database.  SQLite stores NUMERIC as
    # REAL, so amounts are only exact on PostgreSQL.
    from sqlalchemy.pool import StaticPool

    engine = create_async_engine(
        settings.DATABASE_URL,
        echo=settings.DEBUG,
        future=True,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    # SQLite leaves foreign keys unenforced unless asked; aiosqlite fires
    # "connect" on the sync engine.
    @event.listens_for(engine.sync_engine, "connect")
    def _set_sqlite_pragma(dbapi_conn, connection_record):
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

else:
    engine = create_async_engine(
        settings.DATABASE_URL,
        echo=settings.DEBUG,
        future=True,
        pool_size=settings.DB_POOL_SIZE,
        max_overflow=settings.DB_MAX_OVERFLOW,
        pool_timeout=settings.DB_POOL_TIMEOUT,
        pool_recycle=settings.DB_POOL_RECYCLE,
        pool_pre_ping=True,
    )

# expire_on_commit=False: attributes stay readable after commit without an
# implicit (and, under asyncio, illegal) lazy refresh.
AsyncSessionLocal = async_sessionmaker(
    bind=engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """
    FastAPI dependency that yields an async database session.

    The session is closed when the request finishes, rolling back anything
    left uncommitted (and releasing any row locks).
    """
    async with AsyncSessionLocal() as session:
        yield session
