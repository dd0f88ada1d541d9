"""Cycle Controller — orchestrates one cycle: open, roll out, kill switch, close.

Invariants:
    - Cycle status moves draft -> open -> rolled_out -> completed; any active status
      may move to cancelled. Every move is a compare-and-set inside update_cycle
    - rollout is idempotent: the open -> rolled_out flip happens once; a second call
      raises AlreadyRolledOutError and invites nobody
    - A rollout whose fill fails (contention, store outage) flips the cycle back to
      open before re-raising: the caller retries, no capacity is stranded
    - rollout fills capacity minus seats already held (e.g. priority registrants
      invited earlier), counted under the promotion lock
    - set_automation never touches existing registrants or their deadlines;
      re-enabling a rolled-out cycle fills seats vacated while it was off
    - Closing or cancelling a cycle drops its promotion lock
    - After close_cycle, registrant mutations raise CycleNotActiveError (state machine)

Design Decisions:
    - Cycle id passed explicitly to every call: there is no ambient "current cycle"
    - Repeating open/close/cancel on a cycle already in that status returns it unchanged
"""

import logging
from collections.abc import Callable
from dataclasses import replace
from datetime import datetime

from waterfall.core.domain_types import CycleId, CycleStatus, ACTIVE_CYCLE_STATUSES
from waterfall.core.entities import Cycle, Registrant, new_cycle_id, utc_now
from waterfall.core.errors import (
    AlreadyRolledOutError, AutomationDisabledError, CycleNotActiveError,
    CycleValidationError, DatabaseError, PastCutoffError, ResourceNotFoundError,
    TransientContentionError,
)
from waterfall.core.repository_protocols import WaitlistStore
from waterfall.core.venue import Venue
from waterfall.core.window_policy import is_past_cutoff, validate_timezone
from waterfall.services.promotion_engine import PromotionEngine

logger = logging.getLogger(__name__)


class CycleController:
    """Owns every mutation of Cycle records."""

    def __init__(
        self,
        store: WaitlistStore,
        engine: PromotionEngine,
        clock: Callable[[], datetime] = utc_now,
    ):
        self._store = store
        self._engine = engine
        self._clock = clock

    async def create_cycle(
        self,
        name: str,
        event_at: datetime,
        window_opens_at: datetime,
        cutoff_at: datetime,
        capacity: int,
        timezone: str = "UTC",
        venue: Venue | None = None,
    ) -> Cycle:
        _validate_schedule(event_at, window_opens_at, cutoff_at, capacity, timezone)
        cycle = Cycle(
            id=new_cycle_id(),
            name=name,
            event_at=event_at,
            window_opens_at=window_opens_at,
            cutoff_at=cutoff_at,
            capacity=capacity,
            timezone=timezone,
            venue=venue,
            created_at=self._clock(),
        )
        await self._store.create_cycle(cycle)
        logger.info(f"Cycle '{name}' created", extra={"cycle_id": str(cycle.id)})
        return cycle

    async def get_cycle(self, cycle_id: CycleId) -> Cycle:
        cycle = await self._store.get_cycle(cycle_id)
        if cycle is None:
            raise ResourceNotFoundError("Cycle", str(cycle_id))
        return cycle

    async def open_registration(self, cycle_id: CycleId) -> Cycle:
        def open_(cycle: Cycle) -> Cycle:
            if cycle.status is CycleStatus.OPEN:
                return cycle
            if cycle.status is not CycleStatus.DRAFT:
                raise CycleNotActiveError(
                    str(cycle_id), cycle.status.value, "open registration",
                )
            return cycle.with_status(CycleStatus.OPEN)

        cycle = await self._store.update_cycle(cycle_id, open_)
        logger.info("Registration opened", extra={"cycle_id": str(cycle_id)})
        return cycle

    async def rollout(
        self,
        cycle_id: CycleId,
        capacity: int | None = None,
        now: datetime | None = None,
    ) -> list[Registrant]:
        """Bulk initial promotion. Runs once per cycle."""
        now = now or self._clock()
        cycle = await self.get_cycle(cycle_id)
        if cycle.status is CycleStatus.ROLLED_OUT:
            raise AlreadyRolledOutError(str(cycle_id))
        if is_past_cutoff(now, cycle):
            raise PastCutoffError(str(cycle_id))
        if not cycle.automation_enabled:
            raise AutomationDisabledError(str(cycle_id))

        def mark_rolled_out(current: Cycle) -> Cycle:
            if current.status is CycleStatus.ROLLED_OUT:
                raise AlreadyRolledOutError(str(cycle_id))
            if current.status is not CycleStatus.OPEN:
                raise CycleNotActiveError(
                    str(cycle_id), current.status.value, "roll out",
                )
            return current.with_status(CycleStatus.ROLLED_OUT)

        cycle = await self._store.update_cycle(cycle_id, mark_rolled_out)
        seats = cycle.capacity if capacity is None else capacity
        try:
            promoted = await self._engine.fill_to_capacity(cycle_id, seats, now)
        except (TransientContentionError, DatabaseError) as e:
            await self._revert_rollout(cycle_id)
            logger.warning(
                f"Rollout aborted ({e.code}); cycle reopened for retry",
                extra={"cycle_id": str(cycle_id), "error_code": e.code},
            )
            raise
        logger.info(
            f"Rollout invited {len(promoted)} registrant(s)",
            extra={"cycle_id": str(cycle_id), "count": len(promoted)},
        )
        return promoted

    async def set_automation(
        self, cycle_id: CycleId, enabled: bool, now: datetime | None = None,
    ) -> Cycle:
        """Kill switch. Takes effect at the start of the next promotion or sweep.

        Re-enabling a rolled-out cycle tops held seats back up to capacity, so
        vacancies opened while the switch was engaged are not lost. A failed
        top-up propagates; the toggle itself is committed and repeating the call
        retries the fill.
        """
        now = now or self._clock()

        def toggle(cycle: Cycle) -> Cycle:
            if cycle.status not in ACTIVE_CYCLE_STATUSES:
                raise CycleNotActiveError(
                    str(cycle_id), cycle.status.value, "change automation",
                )
            return replace(cycle, automation_enabled=enabled)

        cycle = await self._store.update_cycle(cycle_id, toggle)
        if not enabled:
            logger.warning(
                "Automation disabled (kill switch)", extra={"cycle_id": str(cycle_id)},
            )
            return cycle
        logger.info("Automation enabled", extra={"cycle_id": str(cycle_id)})
        if cycle.status is CycleStatus.ROLLED_OUT:
            await self._engine.fill_to_capacity(cycle_id, cycle.capacity, now)
        return cycle

    async def close_cycle(self, cycle_id: CycleId) -> Cycle:
        return await self._finish(cycle_id, CycleStatus.COMPLETED, "close")

    async def cancel_cycle(self, cycle_id: CycleId) -> Cycle:
        return await self._finish(cycle_id, CycleStatus.CANCELLED, "cancel")

    async def _finish(
        self, cycle_id: CycleId, target: CycleStatus, operation: str,
    ) -> Cycle:
        def finish(cycle: Cycle) -> Cycle:
            if cycle.status is target:
                return cycle
            if cycle.status not in ACTIVE_CYCLE_STATUSES:
                raise CycleNotActiveError(str(cycle_id), cycle.status.value, operation)
            return cycle.with_status(target)

        cycle = await self._store.update_cycle(cycle_id, finish)
        self._engine.forget_cycle(cycle_id)
        logger.info(f"Cycle {target.value}", extra={"cycle_id": str(cycle_id)})
        return cycle

    async def _revert_rollout(self, cycle_id: CycleId) -> None:
        def reopen(cycle: Cycle) -> Cycle:
            if cycle.status is not CycleStatus.ROLLED_OUT:
                return cycle
            return cycle.with_status(CycleStatus.OPEN)

        await self._store.update_cycle(cycle_id, reopen)


def _validate_schedule(
    event_at: datetime,
    window_opens_at: datetime,
    cutoff_at: datetime,
    capacity: int,
    timezone: str,
) -> None:
    for field_name, value in (
        ("event_at", event_at),
        ("window_opens_at", window_opens_at),
        ("cutoff_at", cutoff_at),
    ):
        if value.tzinfo is None:
            raise CycleValidationError(f"{field_name} must be timezone-aware", field_name)
    if capacity < 1:
        raise CycleValidationError("capacity must be at least 1", "capacity")
    if not window_opens_at < cutoff_at:
        raise CycleValidationError(
            "cutoff_at must be after window_opens_at", "cutoff_at",
        )
    if cutoff_at > event_at:
        raise CycleValidationError(
            "cutoff_at cannot be after the event", "cutoff_at",
        )
    try:
        validate_timezone(timezone)
    except ValueError as e:
        raise CycleValidationError(str(e), "timezone") from e
