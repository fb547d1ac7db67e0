"""
Per-fund mutual exclusion for ledger mutations.

Every mutation of a fund runs inside :meth:`FundLockRegistry.hold`, so within
one process operations on the same fund are applied strictly one after the
other while different funds proceed concurrently.  Across processes the
``SELECT ... FOR UPDATE`` row lock taken by the ledger repository provides the
same guarantee; the in-process lock keeps requests from queueing on database
connections.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict, Hashable

from clubfund.core.config import settings
from clubfund.core.exceptions import LedgerBusy

logger = logging.getLogger(__name__)


class FundLockRegistry:
    """
    Lazily created ``asyncio.Lock`` per fund.

    Parameters
    ----------
    timeout : float
        Seconds to wait for the lock before failing with :class:`LedgerBusy`.
    """

    def __init__(self, timeout: float = 10.0):
        self.timeout = timeout
        self._locks: Dict[Hashable, asyncio.Lock] = {}

    def lock_for(self, fund_id: Hashable) -> asyncio.Lock:
        lock = self._locks.get(fund_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[fund_id] = lock
        return lock

    def is_locked(self, fund_id: Hashable) -> bool:
        lock = self._locks.get(fund_id)
        return lock is not None and lock.locked()

    @asynccontextmanager
    async def hold(self, fund_id: Hashable) -> AsyncIterator[None]:
        """Hold the fund's lock for the duration of the ``async with`` block."""
        lock = self.lock_for(fund_id)
        try:
            await asyncio.wait_for(lock.acquire(), timeout=self.timeout)
        except asyncio.TimeoutError:
            logger.warning(
                "Timed out after %.1fs waiting for the ledger lock of fund %s",
                self.timeout,
                fund_id,
                extra={"fund_id": str(fund_id)},
            )
            raise LedgerBusy(fund_id, self.timeout)
        try:
            yield
        finally:
            lock.release()


# ── Process-wide registry used by the API ──
fund_locks = FundLockRegistry(timeout=settings.LEDGER_LOCK_TIMEOUT)
