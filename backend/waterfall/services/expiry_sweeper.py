"""Expiry Sweeper — recurring scan that expires elapsed invitations and backfills their seats.

Invariants:
    - Only ROLLED_OUT cycles with automation enabled are swept; kill switch and
      cutoff are checked once per cycle per tick
    - Before cutoff, each expiry goes through the state machine and triggers exactly
      one backfill
    - Past cutoff, only invitations whose deadline fell strictly before cutoff are
      expired, and no backfill follows. Deadlines clamped to the cutoff itself stay
      invited: those registrants are still holding their seat at the boundary
    - Idempotent: a registrant that already left INVITED is skipped, not an error
    - Cycles are swept concurrently and independently; a slow or failing cycle is
      logged and never blocks the others (per-cycle timeout)
    - An expire+backfill unit, once started, completes even if its cycle times out;
      its outcome is logged when it finishes and drain() awaits stragglers
    - Owed backfills from the VacancyBacklog are retried first on every tick

Design Decisions:
    - Poll loop (run_forever) over per-invitation timers: restarts lose nothing because
      the next tick finds every overdue invitation in the store
    - asyncio.shield around each unit: the per-cycle timeout may stop the scan between
      registrants but never between an expiry and its backfill
"""

import asyncio
import logging
from collections.abc import Callable
from datetime import datetime

from waterfall.core.domain_types import CycleStatus, Trigger, EventKind
from waterfall.core.entities import Cycle, Registrant, utc_now
from waterfall.core.errors import (
    InvalidTransitionError, ResourceNotFoundError, WaitlistError,
)
from waterfall.core.lifecycle_events import build_event
from waterfall.core.repository_protocols import WaitlistStore, NotificationDispatcher
from waterfall.core.state_machine import transition
from waterfall.core.window_policy import is_past_cutoff
from waterfall.services.promotion_engine import PromotionEngine
from waterfall.services.vacancy_backlog import VacancyBacklog

logger = logging.getLogger(__name__)


class ExpirySweeper:
    """Expires overdue invitations across cycles and feeds vacancies to the engine."""

    def __init__(
        self,
        store: WaitlistStore,
        engine: PromotionEngine,
        dispatcher: NotificationDispatcher,
        backlog: VacancyBacklog,
        cycle_timeout_seconds: float = 20.0,
        clock: Callable[[], datetime] = utc_now,
    ):
        self._store = store
        self._engine = engine
        self._dispatcher = dispatcher
        self._backlog = backlog
        self._cycle_timeout = cycle_timeout_seconds
        self._clock = clock
        self._running = False
        self._inflight: set[asyncio.Future] = set()

    async def run_forever(self, interval_seconds: float) -> None:
        self._running = True
        logger.info(f"Expiry sweeper started (every {interval_seconds}s)")
        while self._running:
            try:
                await self.sweep()
            except WaitlistError as e:
                # store outage: nothing was half-applied, the next tick rescans
                logger.error(
                    f"Sweep tick failed: {e.message}",
                    extra={"error_code": e.code},
                )
            await asyncio.sleep(interval_seconds)

    def stop(self) -> None:
        self._running = False

    @property
    def inflight(self) -> int:
        return len(self._inflight)

    async def drain(self, timeout: float | None = None) -> None:
        """Wait for expire+backfill units left running by a timed-out cycle sweep."""
        if not self._inflight:
            return
        logger.info(f"Draining {len(self._inflight)} in-flight expiry unit(s)")
        await asyncio.wait(set(self._inflight), timeout=timeout)

    async def sweep(self, now: datetime | None = None) -> list[Registrant]:
        """One tick: retry owed backfills, then expire overdue invitations per cycle."""
        now = now or self._clock()
        await self._retry_backlog(now)
        cycles = await self._store.list_cycles([CycleStatus.ROLLED_OUT])
        eligible = [c for c in cycles if c.automation_enabled]
        batches = await asyncio.gather(
            *(self._sweep_isolated(cycle, now) for cycle in eligible),
        )
        expired = [r for batch in batches for r in batch]
        if expired:
            logger.info(
                f"Sweep expired {len(expired)} invitation(s)",
                extra={"count": len(expired)},
            )
        return expired

    async def sweep_cycle(
        self, cycle: Cycle, now: datetime, collected: list[Registrant],
    ) -> list[Registrant]:
        past_cutoff = is_past_cutoff(now, cycle)
        overdue = await self._store.list_overdue_invitations(cycle.id, now)
        if past_cutoff:
            overdue = [r for r in overdue if r.response_deadline < cycle.cutoff_at]
        for registrant in overdue:
            unit = asyncio.ensure_future(
                self._expire_and_backfill(cycle, registrant, now, not past_cutoff),
            )
            try:
                expired = await asyncio.shield(unit)
            except asyncio.CancelledError:
                self._adopt(unit)
                raise
            if expired is not None:
                collected.append(expired)
        return collected

    def _adopt(self, unit: asyncio.Future) -> None:
        """Keep a unit whose sweep was cut short; its outcome is logged on completion."""
        self._inflight.add(unit)
        unit.add_done_callback(self._unit_done)

    def _unit_done(self, unit: asyncio.Future) -> None:
        self._inflight.discard(unit)
        if unit.cancelled():
            return
        error = unit.exception()
        if error is not None:
            logger.error(
                f"Expiry unit failed: {error}",
                exc_info=(type(error), error, error.__traceback__),
            )

    async def _sweep_isolated(self, cycle: Cycle, now: datetime) -> list[Registrant]:
        collected: list[Registrant] = []
        extra = {"cycle_id": str(cycle.id)}
        try:
            await asyncio.wait_for(
                self.sweep_cycle(cycle, now, collected), timeout=self._cycle_timeout,
            )
        except asyncio.TimeoutError:
            logger.error(
                f"Sweep timed out after {self._cycle_timeout}s; resuming next tick",
                extra=extra,
            )
        except WaitlistError as e:
            logger.error(
                f"Sweep failed: {e.message}", extra={**extra, "error_code": e.code},
            )
        except Exception as e:
            logger.error(f"Unexpected sweep failure: {e}", exc_info=True, extra=extra)
        return collected

    async def _expire_and_backfill(
        self, cycle: Cycle, registrant: Registrant, now: datetime, backfill: bool = True,
    ) -> Registrant | None:
        try:
            result = await self._store.update_registrant(
                registrant.id,
                lambda current: transition(current, Trigger.EXPIRE, now, cycle),
            )
        except InvalidTransitionError:
            logger.debug(
                "Registrant left invited before sweep; skipped",
                extra={"registrant_id": str(registrant.id)},
            )
            return None
        if not result.changed:
            return None
        logger.info(
            "Invitation expired",
            extra={
                "cycle_id": str(cycle.id),
                "registrant_id": str(registrant.id),
                "trigger": Trigger.EXPIRE.value,
            },
        )
        self._dispatcher.publish(
            build_event(EventKind.EXPIRED, result.registrant, cycle, now),
        )
        if backfill:
            await self._engine.backfill(cycle.id, now)
        return result.registrant

    async def _retry_backlog(self, now: datetime) -> None:
        for cycle_id, owed in self._backlog.take_all().items():
            logger.info(
                f"Retrying {owed} deferred backfill(s)",
                extra={"cycle_id": str(cycle_id), "count": owed},
            )
            for _ in range(owed):
                try:
                    await self._engine.backfill(cycle_id, now)
                except ResourceNotFoundError:
                    logger.warning(
                        "Dropping deferred backfill for a deleted cycle",
                        extra={"cycle_id": str(cycle_id)},
                    )
                    break
