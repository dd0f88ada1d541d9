"""Promotion Engine — atomic select-and-invite of the next eligible registrant per cycle.

Invariants:
    - Select + transition is one atomic unit per cycle: the per-cycle lock is held
      across the store claim, and the store claim itself is atomic (SKIP LOCKED /
      await-free section), so no registrant is invited twice or skipped
    - Selection order is the ranking key (priority class first, then position)
    - Kill switch, cutoff and cycle status are checked ONCE, at the start: an
      in-flight promotion completes even if the switch flips mid-way
    - No event is published on a no-op call
    - backfill() never loses a vacancy: contention or a store outage is recorded
      in the VacancyBacklog and retried by the sweeper
    - Manual overrides bypass the queue and capacity accounting entirely

Design Decisions:
    - Vacancy accounting is by trigger: each decline/expiry produces exactly one
      backfill call; promote_one itself does not recount seats
    - fill_to_capacity counts held seats under the same lock as the batch claim,
      so a concurrent backfill cannot slip in between count and claim
    - Events published after the store commit, never before
"""

import logging
from collections.abc import Callable
from datetime import datetime, timedelta

from waterfall.core.domain_types import (
    CycleId, IdentityRef, CycleStatus, PriorityClass, Trigger, EventKind,
    ACTIVE_CYCLE_STATUSES,
)
from waterfall.core.entities import Cycle, Registrant, utc_now
from waterfall.core.errors import (
    CycleNotActiveError, DatabaseError, PastCutoffError, ResourceNotFoundError,
    TransientContentionError,
)
from waterfall.core.lifecycle_events import build_event
from waterfall.core.repository_protocols import WaitlistStore, NotificationDispatcher
from waterfall.core.state_machine import Transition, transition
from waterfall.core.window_policy import DEFAULT_RESPONSE_WINDOW, is_past_cutoff
from waterfall.infrastructure.cycle_locks import CycleLockRegistry
from waterfall.services.vacancy_backlog import VacancyBacklog

logger = logging.getLogger(__name__)

# promote_one only runs after rollout; batches also run during rollout itself
_SINGLE_PROMOTION_STATUSES = frozenset({CycleStatus.ROLLED_OUT})
_BATCH_PROMOTION_STATUSES = frozenset({CycleStatus.OPEN, CycleStatus.ROLLED_OUT})


class PromotionEngine:
    """Promotes waiting registrants to invited, one cycle-serialized claim at a time."""

    def __init__(
        self,
        store: WaitlistStore,
        dispatcher: NotificationDispatcher,
        locks: CycleLockRegistry,
        backlog: VacancyBacklog,
        response_window: timedelta = DEFAULT_RESPONSE_WINDOW,
        clock: Callable[[], datetime] = utc_now,
    ):
        self._store = store
        self._dispatcher = dispatcher
        self._locks = locks
        self._backlog = backlog
        self._response_window = response_window
        self._clock = clock

    async def promote_one(
        self, cycle_id: CycleId, now: datetime | None = None,
    ) -> Registrant | None:
        """Invite the next waiting registrant, or return None on a no-op."""
        now = now or self._clock()
        cycle = await self._require_cycle(cycle_id)
        if not self._can_promote(cycle, now, _SINGLE_PROMOTION_STATUSES):
            return None
        async with self._locks.hold(cycle_id):
            promoted = await self._store.claim_next_eligible(
                cycle_id, self._claim(cycle, now),
            )
        if promoted is None:
            logger.info(
                "No waiting registrant to promote",
                extra={"cycle_id": str(cycle_id)},
            )
            return None
        self._announce(promoted, cycle, now)
        return promoted

    async def promote_batch(
        self, cycle_id: CycleId, n: int, now: datetime | None = None,
    ) -> list[Registrant]:
        """Invite up to n registrants in ranking order, in one transaction."""
        now = now or self._clock()
        cycle = await self._require_cycle(cycle_id)
        if n <= 0 or not self._can_promote(cycle, now, _BATCH_PROMOTION_STATUSES):
            return []
        async with self._locks.hold(cycle_id):
            promoted = await self._store.claim_batch(
                cycle_id, self._claim(cycle, now), n,
            )
        for registrant in promoted:
            self._announce(registrant, cycle, now)
        return promoted

    async def fill_to_capacity(
        self, cycle_id: CycleId, capacity: int, now: datetime | None = None,
    ) -> list[Registrant]:
        """Invite enough registrants to bring held seats up to capacity."""
        now = now or self._clock()
        cycle = await self._require_cycle(cycle_id)
        if not self._can_promote(cycle, now, _BATCH_PROMOTION_STATUSES):
            return []
        async with self._locks.hold(cycle_id):
            held = await self._store.count_held_seats(cycle_id)
            seats = capacity - held
            promoted = (
                await self._store.claim_batch(
                    cycle_id, self._claim(cycle, now), seats,
                )
                if seats > 0 else []
            )
        for registrant in promoted:
            self._announce(registrant, cycle, now)
        logger.info(
            f"Filled {len(promoted)} seat(s) ({held} already held, capacity {capacity})",
            extra={"cycle_id": str(cycle_id), "count": len(promoted)},
        )
        return promoted

    async def backfill(
        self, cycle_id: CycleId, now: datetime | None = None,
    ) -> Registrant | None:
        """The single promotion attempt owed to one vacancy."""
        try:
            return await self.promote_one(cycle_id, now)
        except (TransientContentionError, DatabaseError) as e:
            self._backlog.record(cycle_id)
            logger.warning(
                f"Backfill deferred ({e.code}); queued for next sweep",
                extra={"cycle_id": str(cycle_id), "error_code": e.code},
            )
            return None

    def forget_cycle(self, cycle_id: CycleId) -> None:
        """Release per-cycle process state once a cycle is completed or cancelled."""
        self._locks.discard(cycle_id)
        dropped = self._backlog.discard(cycle_id)
        if dropped:
            logger.info(
                f"Dropped {dropped} owed backfill(s) for finished cycle",
                extra={"cycle_id": str(cycle_id), "count": dropped},
            )

    async def add_manual_override(
        self,
        cycle_id: CycleId,
        identity: IdentityRef,
        now: datetime | None = None,
    ) -> Registrant:
        """Admin insert straight to INVITED, outside queue order and capacity."""
        now = now or self._clock()
        cycle = await self._require_cycle(cycle_id)
        if cycle.status not in ACTIVE_CYCLE_STATUSES:
            raise CycleNotActiveError(
                str(cycle_id), cycle.status.value, "add a manual override",
            )
        if is_past_cutoff(now, cycle):
            raise PastCutoffError(str(cycle_id))

        def override(registrant: Registrant) -> Transition:
            return transition(
                registrant, Trigger.OVERRIDE, now, cycle, self._response_window,
            )

        existing = await self._store.find_registrant(cycle_id, identity)
        if existing is None:
            invited = await self._store.enroll(
                cycle_id, identity, PriorityClass.NORMAL, now,
                prepare=lambda r: override(r).registrant,
            )
        else:
            invited = (
                await self._store.update_registrant(existing.id, override)
            ).registrant
        self._announce(invited, cycle, now, Trigger.OVERRIDE)
        return invited

    # ─── Helpers ─────────────────────────────────────────────────

    def _claim(
        self, cycle: Cycle, now: datetime,
    ) -> Callable[[Registrant], Transition]:
        def claim(registrant: Registrant) -> Transition:
            return transition(
                registrant, Trigger.PROMOTE, now, cycle, self._response_window,
            )
        return claim

    def _can_promote(
        self, cycle: Cycle, now: datetime, statuses: frozenset[CycleStatus],
    ) -> bool:
        extra = {"cycle_id": str(cycle.id), "status": cycle.status.value}
        if cycle.status not in statuses:
            logger.debug("Cycle not promotable in current status", extra=extra)
            return False
        if not cycle.automation_enabled:
            logger.info("Promotion skipped: kill switch engaged", extra=extra)
            return False
        if is_past_cutoff(now, cycle):
            logger.info("Promotion skipped: past cutoff", extra=extra)
            return False
        return True

    def _announce(
        self,
        registrant: Registrant,
        cycle: Cycle,
        now: datetime,
        trigger: Trigger = Trigger.PROMOTE,
    ) -> None:
        logger.info(
            f"Invited registrant at position {registrant.position}",
            extra={
                "cycle_id": str(cycle.id),
                "registrant_id": str(registrant.id),
                "trigger": trigger.value,
            },
        )
        self._dispatcher.publish(
            build_event(EventKind.INVITED, registrant, cycle, now),
        )

    async def _require_cycle(self, cycle_id: CycleId) -> Cycle:
        cycle = await self._store.get_cycle(cycle_id)
        if cycle is None:
            raise ResourceNotFoundError("Cycle", str(cycle_id))
        return cycle
