"""Cycle Locks — per-cycle mutual exclusion with bounded wait and jittered backoff.

Invariants:
    - One asyncio.Lock per cycle; cycles never contend with each other
    - Acquisition never waits indefinitely: each attempt is bounded by acquire_timeout_ms,
      at most max_retries + 1 attempts, then TransientContentionError
    - The lock is always released, including when the guarded block raises or is cancelled
    - Locks of completed or cancelled cycles are discarded, so the registry only
      grows with active cycles

Design Decisions:
    - Exponential backoff with ±25% jitter between attempts: prevents thundering herd
      when many triggers (declines, sweeps, rollout) hit one cycle at once
    - Process-local: multi-process deployments additionally rely on the SQL store's
      row locks; this lock keeps one process from claiming concurrently with itself
"""

import asyncio
import logging
import random
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from waterfall.core.domain_types import CycleId
from waterfall.core.errors import TransientContentionError

logger = logging.getLogger(__name__)


class CycleLockRegistry:
    """Hands out the per-cycle lock and enforces the retry budget."""

    def __init__(
        self,
        acquire_timeout_ms: int = 250,
        max_retries: int = 3,
        base_delay_ms: int = 50,
        max_delay_ms: int = 1000,
    ):
        self.acquire_timeout_ms = acquire_timeout_ms
        self.max_retries = max_retries
        self.base_delay_ms = base_delay_ms
        self.max_delay_ms = max_delay_ms
        self._locks: dict[CycleId, asyncio.Lock] = {}

    def lock_for(self, cycle_id: CycleId) -> asyncio.Lock:
        lock = self._locks.get(cycle_id)
        if lock is None:
            lock = self._locks[cycle_id] = asyncio.Lock()
        return lock

    def discard(self, cycle_id: CycleId) -> bool:
        """Drop a finished cycle's lock. A held lock is kept until a later call."""
        lock = self._locks.get(cycle_id)
        if lock is None or lock.locked():
            return False
        del self._locks[cycle_id]
        return True

    def __contains__(self, cycle_id: object) -> bool:
        return cycle_id in self._locks

    def __len__(self) -> int:
        return len(self._locks)

    @asynccontextmanager
    async def hold(self, cycle_id: CycleId) -> AsyncGenerator[None, None]:
        """Hold the cycle's lock for the duration of the block."""
        lock = self.lock_for(cycle_id)
        await self._acquire(lock, cycle_id)
        try:
            yield
        finally:
            lock.release()

    async def _acquire(self, lock: asyncio.Lock, cycle_id: CycleId) -> None:
        attempts = self.max_retries + 1
        for attempt in range(attempts):
            try:
                await asyncio.wait_for(
                    lock.acquire(), timeout=self.acquire_timeout_ms / 1000,
                )
                return
            except asyncio.TimeoutError:
                if attempt == attempts - 1:
                    break
                delay_ms = self._backoff_ms(attempt)
                logger.warning(
                    f"Cycle lock busy, retrying in {delay_ms}ms",
                    extra={"cycle_id": str(cycle_id), "attempt": attempt + 1},
                )
                await asyncio.sleep(delay_ms / 1000)
        raise TransientContentionError(
            str(cycle_id), attempts, retry_after_ms=self._backoff_ms(attempts),
        )

    def _backoff_ms(self, attempt: int) -> int:
        """Exponential backoff with ±25% jitter, capped at max_delay_ms."""
        delay = min(self.base_delay_ms * (2 ** attempt), self.max_delay_ms)
        jitter = delay * 0.25 * (2 * random.random() - 1)
        return max(int(delay + jitter), 1)
