"""
Tests for the database circuit breaker and ledger write retries.

Only database trouble counts against the breaker: OperationalError and
connection failures trip it, while IntegrityError (a conflicting sequence
number) and ledger rejections pass through untouched.  Once the cool-down
has elapsed a single trial call is let through; concurrent callers keep
failing fast until it finishes.  Ledger writes are retried as a whole
load / apply / commit cycle.
"""

import asyncio
import time
from unittest.mock import AsyncMock, patch

import pytest
from sqlalchemy.exc import IntegrityError, OperationalError

from clubfund.core.config import settings
from clubfund.core.exceptions import ConflictException
from clubfund.core.resilience import (
    TRANSIENT_DB_ERRORS,
    CircuitBreaker,
    CircuitBreakerError,
    CircuitState,
    db_circuit_breaker,
    retry_with_backoff,
)
from clubfund.engine import InsufficientUnits
from clubfund.repositories.ledger_repo import LedgerRepository
from clubfund.schemas.ledger import DepositRequest, WithdrawalRequest
from clubfund.services.fund_locks import FundLockRegistry
from clubfund.services.ledger_service import LedgerService

from .conftest import FUND_ID, MEMBER_ID, make_fund, snapshot_results


def _dropped() -> OperationalError:
    return OperationalError("SELECT", {}, Exception("server closed the connection"))


def _duplicate() -> IntegrityError:
    return IntegrityError("INSERT", {}, Exception("duplicate sequence"))


@pytest.fixture()
def breaker():
    return CircuitBreaker(
        name="ledger-db",
        failure_threshold=2,
        recovery_timeout=60.0,
        expected_exceptions=TRANSIENT_DB_ERRORS,
    )


def _trip(breaker: CircuitBreaker, *, cooled_down: bool = False) -> None:
    breaker._state = CircuitState.OPEN
    breaker._failure_count = breaker.failure_threshold
    breaker._last_failure_time = time.monotonic() - (
        breaker.recovery_timeout + 1 if cooled_down else 0
    )


# ────────────────────────────────────────────────────────────────────────────
# Which errors count
# ────────────────────────────────────────────────────────────────────────────


class TestTransientErrors:
    @pytest.mark.parametrize(
        "exc",
        [_dropped(), ConnectionResetError("reset"), TimeoutError(), OSError("io")],
    )
    def test_database_trouble_is_transient(self, exc):
        assert isinstance(exc, TRANSIENT_DB_ERRORS)

    @pytest.mark.parametrize(
        "exc",
        [_duplicate(), InsufficientUnits("felecia", 10, 5), ValueError("bad")],
    )
    def test_request_errors_are_not(self, exc):
        assert not isinstance(exc, TRANSIENT_DB_ERRORS)

    def test_shared_breaker_uses_settings(self):
        assert db_circuit_breaker.name == "database"
        assert db_circuit_breaker.failure_threshold == settings.CB_FAILURE_THRESHOLD
        assert db_circuit_breaker.recovery_timeout == settings.CB_RECOVERY_TIMEOUT
        assert db_circuit_breaker.expected_exceptions == TRANSIENT_DB_ERRORS


# ────────────────────────────────────────────────────────────────────────────
# Breaker transitions
# ────────────────────────────────────────────────────────────────────────────


class TestBreakerTransitions:
    @pytest.mark.asyncio
    async def test_opens_on_repeated_dropped_connections(self, breaker):
        for _ in range(2):
            with pytest.raises(OperationalError):
                await breaker.call(AsyncMock(side_effect=_dropped()))

        assert breaker.state is CircuitState.OPEN
        untouched = AsyncMock()
        with pytest.raises(CircuitBreakerError) as exc_info:
            await breaker.call(untouched)
        untouched.assert_not_awaited()
        assert 0 < exc_info.value.retry_after <= 60.0

    @pytest.mark.asyncio
    async def test_integrity_errors_never_trip(self, breaker):
        for _ in range(5):
            with pytest.raises(IntegrityError):
                await breaker.call(AsyncMock(side_effect=_duplicate()))

        assert breaker.state is CircuitState.CLOSED
        assert breaker.get_status()["failure_count"] == 0

    @pytest.mark.asyncio
    async def test_success_resets_failure_count(self, breaker):
        with pytest.raises(OperationalError):
            await breaker.call(AsyncMock(side_effect=_dropped()))
        await breaker.call(AsyncMock(return_value="ok"))
        with pytest.raises(OperationalError):
            await breaker.call(AsyncMock(side_effect=_dropped()))

        assert breaker.state is CircuitState.CLOSED

    def test_status_reports_half_open_after_cool_down(self, breaker):
        _trip(breaker, cooled_down=True)

        status = breaker.get_status()

        assert status["state"] == "half_open"
        assert status["failure_count"] == 2


class TestSingleTrialCall:
    @pytest.mark.asyncio
    async def test_concurrent_caller_fails_fast_during_trial(self, breaker):
        _trip(breaker, cooled_down=True)
        release = asyncio.Event()

        async def slow_query():
            await release.wait()
            return "row"

        trial = asyncio.create_task(breaker.call(slow_query))
        await asyncio.sleep(0)

        with pytest.raises(CircuitBreakerError):
            await breaker.call(AsyncMock(return_value="other"))

        release.set()
        assert await trial == "row"
        assert breaker.state is CircuitState.CLOSED

    @pytest.mark.asyncio
    async def test_failed_trial_reopens_and_frees_slot(self, breaker):
        _trip(breaker, cooled_down=True)

        with pytest.raises(OperationalError):
            await breaker.call(AsyncMock(side_effect=_dropped()))

        assert breaker.state is CircuitState.OPEN
        assert breaker._trial_in_flight is False

    @pytest.mark.asyncio
    async def test_ledger_rejection_leaves_trial_pending(self, breaker):
        _trip(breaker, cooled_down=True)

        with pytest.raises(InsufficientUnits):
            await breaker.call(AsyncMock(side_effect=InsufficientUnits("felecia", 10, 5)))

        # Rejections neither close nor re-open the circuit.
        assert breaker.state is CircuitState.HALF_OPEN
        assert breaker._trial_in_flight is False
        await breaker.call(AsyncMock(return_value="ok"))
        assert breaker.state is CircuitState.CLOSED


# ────────────────────────────────────────────────────────────────────────────
# Retries
# ────────────────────────────────────────────────────────────────────────────


class TestRetryWithBackoff:
    @pytest.mark.asyncio
    async def test_delays_double_without_jitter(self):
        outcomes = [_dropped(), _dropped(), "committed"]

        @retry_with_backoff(max_retries=2, base_delay=0.2, jitter=False)
        async def commit():
            outcome = outcomes.pop(0)
            if isinstance(outcome, Exception):
                raise outcome
            return outcome

        with patch("clubfund.core.resilience.asyncio.sleep", new_callable=AsyncMock) as sleep:
            assert await commit() == "committed"

        assert [c.args[0] for c in sleep.await_args_list] == [0.2, 0.4]

    @pytest.mark.asyncio
    async def test_conflicts_are_not_retried(self):
        calls = []

        @retry_with_backoff(max_retries=3, base_delay=0)
        async def commit():
            calls.append(1)
            raise _duplicate()

        with pytest.raises(IntegrityError):
            await commit()
        assert len(calls) == 1


class TestLedgerWriteRetries:
    @pytest.fixture()
    def service(self, mock_db):
        members = AsyncMock()
        members.existing_ids.return_value = {MEMBER_ID}
        return LedgerService(
            ledger_repo=LedgerRepository(mock_db),
            fund_repo=AsyncMock(),
            member_repo=members,
            transaction_repo=AsyncMock(),
            valuation_repo=AsyncMock(),
            locks=FundLockRegistry(timeout=0.05),
        )

    @pytest.mark.asyncio
    async def test_gives_up_after_configured_retries(self, service, mock_db):
        attempts = settings.LEDGER_WRITE_RETRIES + 1
        mock_db.execute.side_effect = [
            result for _ in range(attempts) for result in snapshot_results(make_fund())
        ]
        mock_db.commit.side_effect = _dropped()

        with patch("clubfund.core.resilience.asyncio.sleep", new_callable=AsyncMock):
            with pytest.raises(OperationalError):
                await service.deposit(
                    FUND_ID, DepositRequest(member_id=MEMBER_ID, cash_amount="100")
                )

        assert mock_db.commit.await_count == attempts
        assert db_circuit_breaker.get_status()["failure_count"] == 1
        assert db_circuit_breaker.state is CircuitState.CLOSED

    @pytest.mark.asyncio
    async def test_rejection_is_not_retried(self, service, mock_db):
        mock_db.execute.side_effect = snapshot_results(make_fund())

        with patch("clubfund.core.resilience.asyncio.sleep", new_callable=AsyncMock) as sleep:
            with pytest.raises(InsufficientUnits):
                await service.withdraw(
                    FUND_ID, WithdrawalRequest(member_id=MEMBER_ID, full=True)
                )

        sleep.assert_not_awaited()
        mock_db.commit.assert_not_awaited()
        assert db_circuit_breaker.get_status()["failure_count"] == 0

    @pytest.mark.asyncio
    async def test_duplicate_sequence_becomes_conflict(self, service, mock_db):
        mock_db.execute.side_effect = snapshot_results(make_fund())
        mock_db.commit.side_effect = _duplicate()

        with pytest.raises(ConflictException):
            await service.deposit(
                FUND_ID, DepositRequest(member_id=MEMBER_ID, cash_amount="100")
            )
        assert db_circuit_breaker.state is CircuitState.CLOSED

    @pytest.mark.asyncio
    async def test_open_breaker_skips_the_database(self, service, mock_db):
        _trip(db_circuit_breaker)

        with pytest.raises(CircuitBreakerError):
            await service.deposit(
                FUND_ID, DepositRequest(member_id=MEMBER_ID, cash_amount="100")
            )
        mock_db.execute.assert_not_awaited()
