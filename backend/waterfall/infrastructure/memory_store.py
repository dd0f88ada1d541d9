"""In-Memory Waitlist Store — WaitlistStore for single-process deployments and tests.

Invariants:
    - Every method body is await-free: on one event loop each call is atomic,
      which is the single-writer serialization point for this backend
    - Positions per cycle are max + 1 at enroll time (dense, never reused)
    - A raising callback leaves stored entities untouched (entities are frozen;
      the new value is only written after the callback returns)

Design Decisions:
    - Async signatures kept for Protocol parity with the SQL store
    - Not suitable for multi-worker uvicorn: state is per-process and lost on restart
      (ADR: single-process deployments trade durability for zero setup)
"""

import logging
from collections import Counter
from collections.abc import Callable, Iterable
from datetime import datetime

from waterfall.core.domain_types import (
    CycleId, RegistrantId, IdentityRef,
    CycleStatus, RegistrantStatus, PriorityClass, SEAT_HOLDING_STATUSES,
)
from waterfall.core.entities import Cycle, Registrant, new_registrant_id
from waterfall.core.errors import DuplicateRegistrationError, ResourceNotFoundError
from waterfall.core.queue_ranking import rank_waiting, select_next, next_position
from waterfall.core.state_machine import Transition

logger = logging.getLogger(__name__)


class InMemoryWaitlistStore:
    """Dict-backed store. Cycle -> registrants index keeps scans per cycle."""

    def __init__(self):
        self._cycles: dict[CycleId, Cycle] = {}
        self._registrants: dict[RegistrantId, Registrant] = {}
        self._by_cycle: dict[CycleId, list[RegistrantId]] = {}

    # ─── Cycles ──────────────────────────────────────────────────

    async def create_cycle(self, cycle: Cycle) -> Cycle:
        self._cycles[cycle.id] = cycle
        self._by_cycle.setdefault(cycle.id, [])
        return cycle

    async def get_cycle(self, cycle_id: CycleId) -> Cycle | None:
        return self._cycles.get(cycle_id)

    async def update_cycle(
        self, cycle_id: CycleId, mutate: Callable[[Cycle], Cycle],
    ) -> Cycle:
        cycle = self._require_cycle(cycle_id)
        updated = mutate(cycle)
        self._cycles[cycle_id] = updated
        return updated

    async def list_cycles(self, statuses: Iterable[CycleStatus]) -> list[Cycle]:
        wanted = set(statuses)
        return [c for c in self._cycles.values() if c.status in wanted]

    # ─── Queue ───────────────────────────────────────────────────

    async def enroll(
        self,
        cycle_id: CycleId,
        identity: IdentityRef,
        priority_class: PriorityClass,
        now: datetime,
        prepare: Callable[[Registrant], Registrant] | None = None,
    ) -> Registrant:
        self._require_cycle(cycle_id)
        members = self._members(cycle_id)
        if any(r.identity == identity for r in members):
            raise DuplicateRegistrationError(identity, str(cycle_id))
        registrant = Registrant(
            id=new_registrant_id(),
            cycle_id=cycle_id,
            identity=identity,
            position=next_position(r.position for r in members),
            priority_class=priority_class,
            created_at=now,
        )
        if prepare:
            registrant = prepare(registrant)
        self._registrants[registrant.id] = registrant
        self._by_cycle[cycle_id].append(registrant.id)
        return registrant

    async def get_registrant(self, registrant_id: RegistrantId) -> Registrant | None:
        return self._registrants.get(registrant_id)

    async def find_registrant(
        self, cycle_id: CycleId, identity: IdentityRef,
    ) -> Registrant | None:
        for r in self._members(cycle_id):
            if r.identity == identity:
                return r
        return None

    async def next_waiting(
        self, cycle_id: CycleId, exclude_priority: bool = False,
    ) -> Registrant | None:
        return select_next(self._members(cycle_id), exclude_priority)

    async def claim_next_eligible(
        self, cycle_id: CycleId, claim: Callable[[Registrant], Transition],
    ) -> Registrant | None:
        candidate = select_next(self._members(cycle_id))
        if candidate is None:
            return None
        result = claim(candidate)
        self._registrants[candidate.id] = result.registrant
        return result.registrant

    async def claim_batch(
        self,
        cycle_id: CycleId,
        claim: Callable[[Registrant], Transition],
        limit: int,
    ) -> list[Registrant]:
        if limit <= 0:
            return []
        candidates = rank_waiting(self._members(cycle_id))[:limit]
        # all-or-nothing: apply every claim before writing any of them
        claimed = [claim(c).registrant for c in candidates]
        for r in claimed:
            self._registrants[r.id] = r
        return claimed

    async def update_registrant(
        self,
        registrant_id: RegistrantId,
        mutate: Callable[[Registrant], Transition],
    ) -> Transition:
        current = self._registrants.get(registrant_id)
        if current is None:
            raise ResourceNotFoundError("Registrant", str(registrant_id))
        result = mutate(current)
        if result.changed:
            self._registrants[registrant_id] = result.registrant
        return result

    async def list_overdue_invitations(
        self, cycle_id: CycleId, now: datetime,
    ) -> list[Registrant]:
        overdue = [
            r for r in self._members(cycle_id)
            if r.status is RegistrantStatus.INVITED
            and r.response_deadline is not None
            and r.response_deadline <= now
        ]
        return sorted(overdue, key=lambda r: (r.response_deadline, r.position))

    async def count_by_status(
        self, cycle_id: CycleId,
    ) -> dict[RegistrantStatus, int]:
        return dict(Counter(r.status for r in self._members(cycle_id)))

    async def count_held_seats(self, cycle_id: CycleId) -> int:
        return sum(
            1 for r in self._members(cycle_id)
            if r.status in SEAT_HOLDING_STATUSES and not r.manual_override
        )

    async def count_overrides(self, cycle_id: CycleId) -> int:
        return sum(1 for r in self._members(cycle_id) if r.manual_override)

    # ─── Helpers ─────────────────────────────────────────────────

    def _require_cycle(self, cycle_id: CycleId) -> Cycle:
        cycle = self._cycles.get(cycle_id)
        if cycle is None:
            raise ResourceNotFoundError("Cycle", str(cycle_id))
        return cycle

    def _members(self, cycle_id: CycleId) -> list[Registrant]:
        return [self._registrants[rid] for rid in self._by_cycle.get(cycle_id, [])]
