"""Domain Types — rich types that replace bare primitives across the codebase.

Invariants:
    - CycleId, RegistrantId wrap UUIDs — never use bare UUID in domain logic
    - IdentityRef is opaque: the core never parses or validates it
    - All valid states encoded as Enums — no raw string matching

Design Decisions:
    - NewType over dataclass wrappers: zero runtime cost, full type-checker support
    - str Enums: serialize to JSON without custom encoders, map 1:1 to DB `status` columns
"""

from enum import Enum
from typing import NewType
from uuid import UUID


# ─── Identity Types ──────────────────────────────────────────────

CycleId = NewType("CycleId", UUID)
RegistrantId = NewType("RegistrantId", UUID)
IdentityRef = NewType("IdentityRef", str)


# ─── Enums ───────────────────────────────────────────────────────

class CycleStatus(str, Enum):
    """Cycle lifecycle states — maps to DB `cycles.status` column."""
    DRAFT = "draft"
    OPEN = "open"
    ROLLED_OUT = "rolled_out"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class RegistrantStatus(str, Enum):
    """Registrant lifecycle states — maps to DB `registrants.status` column."""
    WAITING = "waiting"
    INVITED = "invited"
    CONFIRMED = "confirmed"
    DECLINED = "declined"
    EXPIRED = "expired"
    ATTENDED = "attended"


class PriorityClass(str, Enum):
    """Selection bias applied at promotion time. PRIORITY drains before NORMAL."""
    NORMAL = "normal"
    PRIORITY = "priority"

    @property
    def rank(self) -> int:
        return 0 if self is PriorityClass.PRIORITY else 1


class Trigger(str, Enum):
    """State machine inputs."""
    PROMOTE = "promote"
    OVERRIDE = "override"
    ACCEPT = "accept"
    DECLINE = "decline"
    EXPIRE = "expire"
    CHECK_IN = "check_in"


class Decision(str, Enum):
    """Registrant answer to an invitation (or a hero cancellation)."""
    ACCEPT = "accept"
    DECLINE = "decline"

    @property
    def trigger(self) -> Trigger:
        return Trigger.ACCEPT if self is Decision.ACCEPT else Trigger.DECLINE


class EventKind(str, Enum):
    """Lifecycle events handed to the notification collaborator."""
    INVITED = "registrant.invited"
    CONFIRMED = "registrant.confirmed"
    DECLINED = "registrant.declined"
    EXPIRED = "registrant.expired"


# Seats counted against capacity (manual overrides excluded by callers)
SEAT_HOLDING_STATUSES = frozenset({
    RegistrantStatus.INVITED,
    RegistrantStatus.CONFIRMED,
    RegistrantStatus.ATTENDED,
})

# Cycles whose registrants may still be mutated
ACTIVE_CYCLE_STATUSES = frozenset({
    CycleStatus.DRAFT, CycleStatus.OPEN, CycleStatus.ROLLED_OUT,
})
