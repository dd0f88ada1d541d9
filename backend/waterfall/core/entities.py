"""Domain Entities — Cycle and Registrant as immutable, storage-agnostic records.

Invariants:
    - Entities are frozen: every change is a new value via dataclasses.replace
    - All timestamps are timezone-aware UTC
    - response_deadline > invited_at whenever both are set (enforced by state_machine)
    - Registrant.position >= 1 and unique within its cycle (enforced by the store)

Design Decisions:
    - Separate from ORM models: transition logic is unit-testable without a database
      (ADR: functional core, imperative shell)
    - Stores convert rows <-> entities at their boundary; services never touch ORM objects
"""

from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from uuid import uuid4

from waterfall.core.domain_types import (
    CycleId, RegistrantId, IdentityRef,
    CycleStatus, RegistrantStatus, PriorityClass,
)
from waterfall.core.venue import Venue


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class Cycle:
    """One instance of the recurring event."""
    id: CycleId
    name: str
    event_at: datetime
    window_opens_at: datetime
    cutoff_at: datetime
    capacity: int
    timezone: str = "UTC"
    status: CycleStatus = CycleStatus.DRAFT
    automation_enabled: bool = True
    venue: Venue | None = None
    created_at: datetime = field(default_factory=utc_now)

    def with_status(self, status: CycleStatus) -> "Cycle":
        return replace(self, status=status)


@dataclass(frozen=True)
class Registrant:
    """One identity's queue entry for one cycle."""
    id: RegistrantId
    cycle_id: CycleId
    identity: IdentityRef
    position: int
    status: RegistrantStatus = RegistrantStatus.WAITING
    priority_class: PriorityClass = PriorityClass.NORMAL
    manual_override: bool = False
    invited_at: datetime | None = None
    response_deadline: datetime | None = None
    responded_at: datetime | None = None
    checked_in_at: datetime | None = None
    created_at: datetime = field(default_factory=utc_now)

    @property
    def ranking_key(self) -> tuple[int, int]:
        return (self.priority_class.rank, self.position)


def new_cycle_id() -> CycleId:
    return CycleId(uuid4())


def new_registrant_id() -> RegistrantId:
    return RegistrantId(uuid4())
