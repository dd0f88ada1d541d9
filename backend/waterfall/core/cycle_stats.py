"""Cycle Stats — pure computation of per-cycle summary statistics.

Invariants:
    - Inputs are plain counts from the store (no IO, no DB)
    - Every RegistrantStatus appears in by_status, defaulting to 0
    - open_seats never negative (overrides and late rollouts can exceed capacity)

Design Decisions:
    - Pure function, not a store method: the store counts, presentation lives here
"""

from waterfall.core.domain_types import RegistrantStatus
from waterfall.core.entities import Cycle


def compute_cycle_stats(
    cycle: Cycle,
    status_counts: dict[RegistrantStatus, int],
    held_seats: int,
    override_count: int,
) -> dict:
    """Compute summary statistics for a cycle. Pure, no IO."""
    by_status = {s.value: status_counts.get(s, 0) for s in RegistrantStatus}
    return {
        "cycle_id": str(cycle.id),
        "status": cycle.status.value,
        "automation_enabled": cycle.automation_enabled,
        "capacity": cycle.capacity,
        "held_seats": held_seats,
        "open_seats": max(cycle.capacity - held_seats, 0),
        "manual_overrides": override_count,
        "total_registrants": sum(by_status.values()),
        "by_status": by_status,
    }
