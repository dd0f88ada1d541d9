"""Boundary Protocols — contracts between core and shell.

Invariants:
    - Core NEVER imports from shell — dependency arrows point inward only
    - All IO operations accessed through Protocol types
    - Store callbacks (prepare/claim/mutate) are pure; if one raises, the store
      persists nothing and re-raises (failed transitions leave prior status intact)
    - claim_next_eligible / claim_batch select by ranking key and never hand the
      same WAITING row to two concurrent callers

Design Decisions:
    - Protocol over ABC: structural subtyping, no inheritance hierarchy (ADR: ExMA anti-pattern)
    - Async in Protocol: boundary methods are async because implementations do IO,
      but core pure functions that USE these protocols are never async themselves
    - Read-modify-write expressed as callbacks so the store chooses the atomicity
      primitive (row lock, SKIP LOCKED claim, or an await-free critical section)
"""

from collections.abc import Callable, Iterable
from datetime import datetime
from typing import Protocol

from waterfall.core.domain_types import (
    CycleId, RegistrantId, IdentityRef,
    CycleStatus, RegistrantStatus, PriorityClass,
)
from waterfall.core.entities import Cycle, Registrant
from waterfall.core.lifecycle_events import LifecycleEvent
from waterfall.core.state_machine import Transition


class CycleRepository(Protocol):
    """Contract for cycle persistence — implemented by shell."""
    async def create_cycle(self, cycle: Cycle) -> Cycle: ...
    async def get_cycle(self, cycle_id: CycleId) -> Cycle | None: ...
    async def update_cycle(
        self, cycle_id: CycleId, mutate: Callable[[Cycle], Cycle],
    ) -> Cycle: ...
    async def list_cycles(self, statuses: Iterable[CycleStatus]) -> list[Cycle]: ...


class QueueStore(Protocol):
    """Contract for the ordered registrant queue — implemented by shell."""
    async def enroll(
        self,
        cycle_id: CycleId,
        identity: IdentityRef,
        priority_class: PriorityClass,
        now: datetime,
        prepare: Callable[[Registrant], Registrant] | None = None,
    ) -> Registrant: ...
    async def get_registrant(self, registrant_id: RegistrantId) -> Registrant | None: ...
    async def find_registrant(
        self, cycle_id: CycleId, identity: IdentityRef,
    ) -> Registrant | None: ...
    async def next_waiting(
        self, cycle_id: CycleId, exclude_priority: bool = False,
    ) -> Registrant | None: ...
    async def claim_next_eligible(
        self, cycle_id: CycleId, claim: Callable[[Registrant], Transition],
    ) -> Registrant | None: ...
    async def claim_batch(
        self,
        cycle_id: CycleId,
        claim: Callable[[Registrant], Transition],
        limit: int,
    ) -> list[Registrant]: ...
    async def update_registrant(
        self,
        registrant_id: RegistrantId,
        mutate: Callable[[Registrant], Transition],
    ) -> Transition: ...
    async def list_overdue_invitations(
        self, cycle_id: CycleId, now: datetime,
    ) -> list[Registrant]: ...
    async def count_by_status(
        self, cycle_id: CycleId,
    ) -> dict[RegistrantStatus, int]: ...
    async def count_held_seats(self, cycle_id: CycleId) -> int: ...
    async def count_overrides(self, cycle_id: CycleId) -> int: ...


class WaitlistStore(CycleRepository, QueueStore, Protocol):
    """Full persistence contract consumed by the services."""


class NotificationDispatcher(Protocol):
    """Contract for lifecycle event fan-out — must never block or raise."""
    def publish(self, event: LifecycleEvent) -> None: ...
