"""Waitlist Service — facade the API (and scripts) call; wires store, engine, controller, sweeper.

Invariants:
    - Every registrant mutation goes through the state machine inside store.update_registrant
    - Events are published only after the store committed a changing transition
    - A transition that opens a vacancy is followed by exactly one engine.backfill()
    - Registration requires an OPEN cycle and an open registration window
    - Reads never mutate

Design Decisions:
    - Thin facade over CycleController + PromotionEngine: routes stay free of wiring
      (ADR: impureim sandwich, shell composes the pure core)
    - create_waitlist_service() is the single composition root shared by main.py and tests
"""

import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta

from waterfall.config import Settings
from waterfall.core.cycle_stats import compute_cycle_stats
from waterfall.core.domain_types import (
    CycleId, RegistrantId, IdentityRef, CycleStatus, Decision, PriorityClass, Trigger,
)
from waterfall.core.entities import Cycle, Registrant, utc_now
from waterfall.core.errors import (
    RegistrationClosedError, ResourceNotFoundError, ErrorContext,
)
from waterfall.core.lifecycle_events import build_event
from waterfall.core.repository_protocols import WaitlistStore, NotificationDispatcher
from waterfall.core.state_machine import Transition, transition
from waterfall.core.venue import Venue
from waterfall.core.window_policy import is_registration_open
from waterfall.infrastructure.cycle_locks import CycleLockRegistry
from waterfall.services.cycle_controller import CycleController
from waterfall.services.expiry_sweeper import ExpirySweeper
from waterfall.services.promotion_engine import PromotionEngine
from waterfall.services.vacancy_backlog import VacancyBacklog

logger = logging.getLogger(__name__)


@dataclass
class WaitlistService:
    store: WaitlistStore
    dispatcher: NotificationDispatcher
    engine: PromotionEngine
    controller: CycleController
    sweeper: ExpirySweeper
    clock: Callable[[], datetime] = utc_now

    # ─── Cycles ──────────────────────────────────────────────────

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
        return await self.controller.create_cycle(
            name, event_at, window_opens_at, cutoff_at, capacity, timezone, venue,
        )

    async def get_cycle(self, cycle_id: CycleId) -> Cycle:
        return await self.controller.get_cycle(cycle_id)

    async def open_registration(self, cycle_id: CycleId) -> Cycle:
        return await self.controller.open_registration(cycle_id)

    async def rollout(
        self,
        cycle_id: CycleId,
        capacity: int | None = None,
        now: datetime | None = None,
    ) -> list[Registrant]:
        return await self.controller.rollout(cycle_id, capacity, now)

    async def set_automation(
        self, cycle_id: CycleId, enabled: bool, now: datetime | None = None,
    ) -> Cycle:
        return await self.controller.set_automation(cycle_id, enabled, now)

    async def close_cycle(self, cycle_id: CycleId) -> Cycle:
        return await self.controller.close_cycle(cycle_id)

    async def cancel_cycle(self, cycle_id: CycleId) -> Cycle:
        return await self.controller.cancel_cycle(cycle_id)

    async def get_stats(self, cycle_id: CycleId) -> dict:
        cycle = await self.controller.get_cycle(cycle_id)
        return compute_cycle_stats(
            cycle,
            await self.store.count_by_status(cycle_id),
            await self.store.count_held_seats(cycle_id),
            await self.store.count_overrides(cycle_id),
        )

    async def add_manual_override(
        self, cycle_id: CycleId, identity: IdentityRef, now: datetime | None = None,
    ) -> Registrant:
        return await self.engine.add_manual_override(cycle_id, identity, now)

    # ─── Registrants ─────────────────────────────────────────────

    async def register(
        self,
        cycle_id: CycleId,
        identity: IdentityRef,
        priority_class: PriorityClass = PriorityClass.NORMAL,
        now: datetime | None = None,
    ) -> Registrant:
        """Append an identity to the back of the cycle's queue."""
        now = now or self.clock()
        cycle = await self.controller.get_cycle(cycle_id)
        if cycle.status is not CycleStatus.OPEN or not is_registration_open(now, cycle):
            raise RegistrationClosedError(
                str(cycle_id), ErrorContext(identity=identity),
            )
        registrant = await self.store.enroll(cycle_id, identity, priority_class, now)
        logger.info(
            f"Registered at position {registrant.position}",
            extra={"cycle_id": str(cycle_id), "registrant_id": str(registrant.id)},
        )
        return registrant

    async def get_registrant(self, registrant_id: RegistrantId) -> Registrant:
        registrant = await self.store.get_registrant(registrant_id)
        if registrant is None:
            raise ResourceNotFoundError("Registrant", str(registrant_id))
        return registrant

    async def respond(
        self,
        registrant_id: RegistrantId,
        decision: Decision,
        now: datetime | None = None,
    ) -> Registrant:
        """Accept or decline an invitation; declining a confirmed seat releases it."""
        return await self._apply(registrant_id, decision.trigger, now)

    async def check_in(
        self, registrant_id: RegistrantId, now: datetime | None = None,
    ) -> Registrant:
        return await self._apply(registrant_id, Trigger.CHECK_IN, now)

    async def _apply(
        self, registrant_id: RegistrantId, trigger: Trigger, now: datetime | None,
    ) -> Registrant:
        now = now or self.clock()
        registrant = await self.get_registrant(registrant_id)
        cycle = await self.controller.get_cycle(registrant.cycle_id)

        def apply(current: Registrant) -> Transition:
            return transition(current, trigger, now, cycle)

        result = await self.store.update_registrant(registrant_id, apply)
        if not result.changed:
            return result.registrant
        logger.info(
            f"Registrant now {result.registrant.status.value}",
            extra={
                "cycle_id": str(cycle.id),
                "registrant_id": str(registrant_id),
                "trigger": trigger.value,
            },
        )
        if result.event is not None:
            self.dispatcher.publish(
                build_event(result.event, result.registrant, cycle, now),
            )
        if result.opens_vacancy:
            await self.engine.backfill(cycle.id, now)
        return result.registrant


def create_waitlist_service(
    store: WaitlistStore,
    dispatcher: NotificationDispatcher,
    settings: Settings,
    clock: Callable[[], datetime] = utc_now,
) -> WaitlistService:
    """Compose the service graph from settings."""
    locks = CycleLockRegistry(
        acquire_timeout_ms=settings.promotion_lock_timeout_ms,
        max_retries=settings.promotion_lock_max_retries,
        base_delay_ms=settings.promotion_lock_base_delay_ms,
        max_delay_ms=settings.promotion_lock_max_delay_ms,
    )
    backlog = VacancyBacklog()
    engine = PromotionEngine(
        store, dispatcher, locks, backlog,
        response_window=timedelta(hours=settings.response_window_hours),
        clock=clock,
    )
    return WaitlistService(
        store=store,
        dispatcher=dispatcher,
        engine=engine,
        controller=CycleController(store, engine, clock),
        sweeper=ExpirySweeper(
            store, engine, dispatcher, backlog,
            cycle_timeout_seconds=settings.sweeper_cycle_timeout_seconds,
            clock=clock,
        ),
        clock=clock,
    )
