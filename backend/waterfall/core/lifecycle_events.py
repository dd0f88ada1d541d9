"""Lifecycle Events — immutable payloads handed to the notification collaborator.

Invariants:
    - Built from entities only (no IO); one event per successful, changing transition
    - INVITED events always carry response_deadline, event_at and venue details
    - to_payload() is JSON-serializable (ISO timestamps, str ids)
"""

from dataclasses import dataclass
from datetime import datetime

from waterfall.core.domain_types import EventKind
from waterfall.core.entities import Cycle, Registrant
from waterfall.core.venue import Venue


@dataclass(frozen=True)
class LifecycleEvent:
    kind: EventKind
    registrant_id: str
    identity: str
    cycle_id: str
    cycle_name: str
    occurred_at: datetime
    response_deadline: datetime | None = None
    event_at: datetime | None = None
    venue: Venue | None = None

    def to_payload(self) -> dict:
        return {
            "type": self.kind.value,
            "registrant_id": self.registrant_id,
            "identity": self.identity,
            "cycle_id": self.cycle_id,
            "cycle_name": self.cycle_name,
            "occurred_at": self.occurred_at.isoformat(),
            "response_deadline": (
                self.response_deadline.isoformat() if self.response_deadline else None
            ),
            "event_at": self.event_at.isoformat() if self.event_at else None,
            "venue": self.venue.to_dict() if self.venue else None,
        }


def build_event(
    kind: EventKind, registrant: Registrant, cycle: Cycle, now: datetime,
) -> LifecycleEvent:
    """Build the event for a transition; invitations include venue and deadline."""
    invited = kind is EventKind.INVITED
    return LifecycleEvent(
        kind=kind,
        registrant_id=str(registrant.id),
        identity=registrant.identity,
        cycle_id=str(cycle.id),
        cycle_name=cycle.name,
        occurred_at=now,
        response_deadline=registrant.response_deadline if invited else None,
        event_at=cycle.event_at if invited else None,
        venue=cycle.venue if invited else None,
    )
