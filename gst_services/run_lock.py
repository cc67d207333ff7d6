"""
Run serialization.

A reconciliation run holds the lock for its (business_id, period) key from
load to last write.  A second request for the same key either fails
immediately with ``ReconciliationInProgressError`` or waits up to a timeout
and then fails the same way.  Different periods never block each other
while loading and matching.

Runs for different periods of one business still share that business's
ledger (forward propagation rewrites every later open period) and its
alert set.  The read-compute-write of those is serialized by a per-business
section lock, always taken after the run lock and held only for the commit.
"""

from __future__ import annotations

import threading
from collections.abc import Generator
from contextlib import contextmanager

from gst_kernel.domain.period import Period
from gst_kernel.exceptions import ReconciliationInProgressError
from gst_kernel.logging_config import get_logger

logger = get_logger("services.run_lock")


class RunLockRegistry:
    """Process-local registry of run locks and per-business section locks."""

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: dict[tuple[str, Period], threading.Lock] = {}
        self._sections: dict[str, threading.Lock] = {}

    def _lock_for(self, key: tuple[str, Period]) -> threading.Lock:
        with self._guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = threading.Lock()
                self._locks[key] = lock
            return lock

    def _section_for(self, business_id: str) -> threading.Lock:
        with self._guard:
            return self._sections.setdefault(business_id, threading.Lock())

    def is_locked(self, business_id: str, period: Period) -> bool:
        return self._lock_for((business_id, period)).locked()

    def is_section_held(self, business_id: str) -> bool:
        return self._section_for(business_id).locked()

    @contextmanager
    def hold(
        self,
        business_id: str,
        period: Period,
        timeout: float | None = None,
    ) -> Generator[None, None, None]:
        """
        Hold the run lock for the key for the duration of the block.

        ``timeout`` None fails fast; a number waits up to that many seconds.

        Raises:
            ReconciliationInProgressError: the lock could not be acquired.
        """
        lock = self._lock_for((business_id, period))
        if timeout is None:
            acquired = lock.acquire(blocking=False)
        else:
            acquired = lock.acquire(timeout=timeout)
        if not acquired:
            logger.warning("reconciliation_lock_busy", extra={
                "business_id": business_id,
                "period": period.code,
                "timeout": timeout,
            })
            raise ReconciliationInProgressError(business_id, period.code)
        try:
            yield
        finally:
            lock.release()

    @contextmanager
    def section(self, business_id: str) -> Generator[None, None, None]:
        """
        Hold the business's ledger and alert section, waiting as long as needed.

        Not reentrant.  Holders never take a run lock inside it.
        """
        lock = self._section_for(business_id)
        if not lock.acquire(blocking=False):
            logger.debug("business_section_waiting", extra={"business_id": business_id})
            lock.acquire()
        try:
            yield
        finally:
            lock.release()
