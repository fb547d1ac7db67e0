"""
Resilience patterns for the database dependency.

1. **Circuit Breaker**: after a threshold of consecutive failures, calls to
   the database fail fast for a cool-down period.  Afterwards exactly one
   trial call is let through to test recovery.

   States:
   - CLOSED    : normal operation; failures are counted.
   - OPEN      : all calls fail immediately with :class:`CircuitBreakerError`.
   - HALF_OPEN : a single trial call is allowed; success closes the circuit,
                 failure re-opens it.

2. **Retry with Exponential Backoff**: retries transient failures (dropped
   connections, serialization failures) with increasing delays and jitter.
   Ledger writes are retried as a whole (load, apply, commit), never
   half-way through.
"""

import asyncio
import functools
import logging
import random
import time
from enum import Enum
from typing import Any, Callable, Optional, Tuple, Type

from sqlalchemy.exc import OperationalError

from clubfund.core.config import settings

logger = logging.getLogger(__name__)

# Errors that indicate the database, not the request, is at fault.
TRANSIENT_DB_ERRORS: Tuple[Type[Exception], ...] = (
    ConnectionError,
    OSError,
    TimeoutError,
    OperationalError,
)


# ────────────────────────────────────────────────────────────────────────────
# Circuit Breaker
# ────────────────────────────────────────────────────────────────────────────


class CircuitState(str, Enum):
    """Possible states of a circuit breaker."""

    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitBreakerError(Exception):
    """Raised when a call is rejected because the circuit is open."""

    def __init__(self, name: str, retry_after: float):
        self.name = name
        self.retry_after = retry_after
        super().__init__(
            f"Circuit breaker '{name}' is OPEN, failing fast. "
            f"Retry after {retry_after:.1f}s."
        )


class CircuitBreaker:
    """
    Async circuit breaker.

    Parameters
    ----------
    name : str
        Human-readable identifier (e.g. ``"database"``).
    failure_threshold : int
        Number of consecutive failures before the circuit opens.
    recovery_timeout : float
        Seconds to wait in OPEN state before allowing a trial call (HALF_OPEN).
    expected_exceptions : tuple
        Exception types that count as failures. All others pass through
        without affecting the circuit state.
    """

    def __init__(
        self,
        name: str,
        failure_threshold: int = 5,
        recovery_timeout: float = 30.0,
        expected_exceptions: Tuple[Type[Exception], ...] = (Exception,),
    ):
        self.name = name
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self.expected_exceptions = expected_exceptions

        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._last_failure_time: float = 0.0
        self._success_count = 0
        self._trial_in_flight = False

    @property
    def state(self) -> CircuitState:
        """Current circuit state, with automatic OPEN → HALF_OPEN transition."""
        if self._state == CircuitState.OPEN:
            elapsed = time.monotonic() - self._last_failure_time
            if elapsed >= self.recovery_timeout:
                self._state = CircuitState.HALF_OPEN
                logger.info(
                    "Circuit '%s' → HALF_OPEN (recovery timeout elapsed after %.1fs)",
                    self.name,
                    elapsed,
                )
        return self._state

    def _retry_after(self) -> float:
        return max(
            self.recovery_timeout - (time.monotonic() - self._last_failure_time), 0
        )

    def _record_success(self) -> None:
        if self._state != CircuitState.CLOSED:
            logger.info(
                "Circuit '%s' → CLOSED (successful trial call after %d failures)",
                self.name,
                self._failure_count,
            )
        self._failure_count = 0
        self._success_count += 1
        self._state = CircuitState.CLOSED

    def _record_failure(self) -> None:
        self._failure_count += 1
        self._last_failure_time = time.monotonic()

        if self._state == CircuitState.HALF_OPEN or self._failure_count >= self.failure_threshold:
            self._state = CircuitState.OPEN
            logger.error(
                "Circuit '%s' → OPEN (failure #%d, threshold %d). "
                "Calls will fast-fail for %.1fs.",
                self.name,
                self._failure_count,
                self.failure_threshold,
                self.recovery_timeout,
            )
        else:
            logger.warning(
                "Circuit '%s' failure #%d/%d",
                self.name,
                self._failure_count,
                self.failure_threshold,
            )

    async def call(self, func: Callable, *args: Any, **kwargs: Any) -> Any:
        """
        Execute ``func`` through the circuit breaker.

        Raises :class:`CircuitBreakerError` if the circuit is OPEN, or if it
        is HALF_OPEN and another caller already holds the trial slot.
        """
        state = self.state

        if state == CircuitState.OPEN:
            raise CircuitBreakerError(self.name, self._retry_after())

        is_trial = state == CircuitState.HALF_OPEN
        if is_trial:
            if self._trial_in_flight:
                raise CircuitBreakerError(self.name, self.recovery_timeout)
            self._trial_in_flight = True

        try:
            result = await func(*args, **kwargs)
        except self.expected_exceptions:
            self._record_failure()
            raise
        finally:
            if is_trial:
                self._trial_in_flight = False
        self._record_success()
        return result

    def get_status(self) -> dict:
        """Return a dict suitable for the health-check endpoint."""
        return {
            "name": self.name,
            "state": self.state.value,
            "failure_count": self._failure_count,
            "failure_threshold": self.failure_threshold,
            "success_count": self._success_count,
            "recovery_timeout_s": self.recovery_timeout,
        }


# ── Global circuit breaker instance for database operations ──
db_circuit_breaker = CircuitBreaker(
    name="database",
    failure_threshold=settings.CB_FAILURE_THRESHOLD,
    recovery_timeout=settings.CB_RECOVERY_TIMEOUT,
    expected_exceptions=TRANSIENT_DB_ERRORS,
)


# ────────────────────────────────────────────────────────────────────────────
# Retry with Exponential Backoff
# ────────────────────────────────────────────────────────────────────────────


def retry_with_backoff(
    max_retries: int = 3,
    base_delay: float = 0.5,
    max_delay: float = 10.0,
    jitter: bool = True,
    retryable_exceptions: Tuple[Type[Exception], ...] = TRANSIENT_DB_ERRORS,
) -> Callable:
    """
    Decorator: retry an async function with exponential backoff.

    Parameters
    ----------
    max_retries : int
        Maximum number of retry attempts (0 = no retries, just the initial call).
    base_delay : float
        Initial delay in seconds before the first retry. Doubles each attempt.
    max_delay : float
        Cap on the delay between retries.
    jitter : bool
        If True, adds random jitter (0-50% of delay).
    retryable_exceptions : tuple
        Only these exception types trigger a retry. All others propagate immediately.

    Example::

        @retry_with_backoff(max_retries=2, base_delay=0.2)
        async def commit_deposit():
            ...
    """

    def decorator(func: Callable) -> Callable:
        @functools.wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> Any:
            last_exception: Optional[Exception] = None
            delay = base_delay

            for attempt in range(max_retries + 1):
                try:
                    return await func(*args, **kwargs)
                except retryable_exceptions as exc:
                    last_exception = exc
                    if attempt < max_retries:
                        actual_delay = min(delay, max_delay)
                        if jitter:
                            actual_delay += random.uniform(0, actual_delay * 0.5)
                        logger.warning(
                            "Retry %d/%d for %s after %.2fs (%s: %s)",
                            attempt + 1,
                            max_retries,
                            func.__qualname__,
                            actual_delay,
                            type(exc).__name__,
                            exc,
                        )
                        await asyncio.sleep(actual_delay)
                        delay *= 2
                    else:
                        logger.error(
                            "All %d retries exhausted for %s (%s: %s)",
                            max_retries,
                            func.__qualname__,
                            type(exc).__name__,
                            exc,
                        )

            raise last_exception  # type: ignore[misc]

        return wrapper

    return decorator
