"""
Shared pytest fixtures for unit tests.

All tests run with ``USE_SQLITE=true`` and mocked dependencies so that
no real database or network I/O is needed.  This ensures tests are
fast, deterministic, and fully isolated.
"""

import os

# Settings are read at import time; these must be set before any clubfund import.
os.environ.setdefault("USE_SQLITE", "true")
os.environ.setdefault("LOG_TO_FILE", "false")

import uuid  # noqa: E402
from datetime import date, datetime, timezone  # noqa: E402
from decimal import Decimal  # noqa: E402
from typing import Optional  # noqa: E402
from unittest.mock import AsyncMock, MagicMock  # noqa: E402

import pytest  # noqa: E402

from clubfund.engine import TransactionType  # noqa: E402
from clubfund.models.fund import Fund  # noqa: E402
from clubfund.models.member import Member  # noqa: E402
from clubfund.models.position import MemberPositionRecord  # noqa: E402
from clubfund.models.transaction import LedgerTransaction  # noqa: E402
from clubfund.models.valuation import UnitValuation  # noqa: E402

# ────────────────────────────────────────────────────────────────────────────
# Factory helpers: create domain objects with sensible defaults
# ────────────────────────────────────────────────────────────────────────────

FUND_ID = uuid.UUID("11111111-1111-1111-1111-111111111111")
MEMBER_ID = uuid.UUID("22222222-2222-2222-2222-222222222222")
TRANSACTION_ID = uuid.UUID("33333333-3333-3333-3333-333333333333")
FUND_ID_2 = uuid.UUID("44444444-4444-4444-4444-444444444444")
MEMBER_ID_2 = uuid.UUID("55555555-5555-5555-5555-555555555555")
VALUATION_ID = uuid.UUID("66666666-6666-6666-6666-666666666666")


def make_fund(
    *,
    id: uuid.UUID = FUND_ID,
    name: str = "Club Portfolio",
    total_value: Decimal = Decimal("0"),
    total_units: Decimal = Decimal("0"),
    seed_price: Optional[Decimal] = Decimal("10.00000000"),
    transaction_count: int = 0,
    created_at: datetime | None = None,
) -> Fund:
    """Create a Fund domain object with sensible test defaults."""
    return Fund(
        id=id,
        name=name,
        total_value=total_value,
        total_units=total_units,
        seed_price=seed_price,
        transaction_count=transaction_count,
        created_at=created_at or datetime.now(timezone.utc),
    )


def make_member(
    *,
    id: uuid.UUID = MEMBER_ID,
    name: str = "Test Member",
    email: str = "member@example.com",
    created_at: datetime | None = None,
) -> Member:
    """Create a Member domain object with sensible test defaults."""
    return Member(
        id=id,
        name=name,
        email=email,
        created_at=created_at or datetime.now(timezone.utc),
    )


def make_position(
    *,
    fund_id: uuid.UUID = FUND_ID,
    member_id: uuid.UUID = MEMBER_ID,
    units_owned: Decimal = Decimal("0"),
    total_contributed: Decimal = Decimal("0"),
) -> MemberPositionRecord:
    """Create a MemberPositionRecord with sensible test defaults."""
    return MemberPositionRecord(
        fund_id=fund_id,
        member_id=member_id,
        units_owned=units_owned,
        total_contributed=total_contributed,
    )


def make_transaction(
    *,
    id: uuid.UUID = TRANSACTION_ID,
    fund_id: uuid.UUID = FUND_ID,
    sequence: int = 1,
    member_id: Optional[uuid.UUID] = MEMBER_ID,
    tx_type: TransactionType = TransactionType.DEPOSIT,
    cash_amount: Optional[Decimal] = Decimal("1000.00"),
    units_delta: Decimal = Decimal("100.00000000"),
    unit_price_at_transaction: Optional[Decimal] = Decimal("10.00000000"),
    value_after: Decimal = Decimal("1000.00"),
    units_after: Decimal = Decimal("100.00000000"),
    notes: str = "",
    created_at: Optional[datetime] = None,
) -> LedgerTransaction:
    """Create a LedgerTransaction row with sensible test defaults."""
    return LedgerTransaction(
        id=id,
        fund_id=fund_id,
        sequence=sequence,
        member_id=member_id,
        tx_type=tx_type,
        cash_amount=cash_amount,
        units_delta=units_delta,
        unit_price_at_transaction=unit_price_at_transaction,
        value_after=value_after,
        units_after=units_after,
        notes=notes,
        created_at=created_at or datetime.now(timezone.utc),
    )


def make_valuation(
    *,
    id: uuid.UUID = VALUATION_ID,
    fund_id: uuid.UUID = FUND_ID,
    valuation_date: date = date(2025, 6, 30),
    total_value: Decimal = Decimal("1200.00"),
    total_units_outstanding: Decimal = Decimal("100.00000000"),
    unit_value: Decimal = Decimal("12.00000000"),
    notes: str = "",
) -> UnitValuation:
    """Create a UnitValuation row with sensible test defaults."""
    return UnitValuation(
        id=id,
        fund_id=fund_id,
        valuation_date=valuation_date,
        total_value=total_value,
        total_units_outstanding=total_units_outstanding,
        unit_value=unit_value,
        notes=notes,
        created_at=datetime.now(timezone.utc),
    )


def query_result(*, first=None, all=None) -> MagicMock:
    """A mocked ``AsyncSession.execute`` result for ``scalars().first()/.all()``."""
    result = MagicMock()
    result.scalars.return_value.first.return_value = first
    result.scalars.return_value.all.return_value = list(all or [])
    return result


def snapshot_results(fund: Fund, positions: Optional[list] = None) -> list[MagicMock]:
    """The two ``execute`` results a ledger snapshot load reads: fund, then positions."""
    return [query_result(first=fund), query_result(all=positions or [])]


# ────────────────────────────────────────────────────────────────────────────
# Pytest fixtures
# ────────────────────────────────────────────────────────────────────────────


@pytest.fixture()
def mock_db():
    """A mocked AsyncSession that tracks add/commit/refresh/rollback calls."""
    session = AsyncMock()
    session.add = MagicMock()
    session.commit = AsyncMock()
    session.refresh = AsyncMock()
    session.rollback = AsyncMock()
    session.execute = AsyncMock()
    session.get = AsyncMock()
    return session


@pytest.fixture(autouse=True)
def _reset_circuit_breaker():
    """
    Close the global database circuit before each test.

    Tests that drive failures through repositories would otherwise leave the
    breaker open for the tests that follow.
    """
    from clubfund.core.resilience import CircuitState, db_circuit_breaker

    db_circuit_breaker._state = CircuitState.CLOSED
    db_circuit_breaker._failure_count = 0
    db_circuit_breaker._trial_in_flight = False
    yield
