"""Queue Ranking — pure ordering rules for selecting who is promoted next.

Invariants:
    - Ranking key is (priority_rank, position) ascending; PRIORITY ranks 0, NORMAL ranks 1
    - Only WAITING registrants are eligible
    - Positions are dense: next_position(existing) == max(existing) + 1, starting at 1

Design Decisions:
    - Shared by the in-memory store and by tests as the reference ordering; the SQL store
      expresses the same key as ORDER BY CASE(priority_class) , position
"""

from collections.abc import Iterable

from waterfall.core.domain_types import RegistrantStatus, PriorityClass
from waterfall.core.entities import Registrant


def ranking_key(registrant: Registrant) -> tuple[int, int]:
    return registrant.ranking_key


def rank_waiting(
    registrants: Iterable[Registrant], exclude_priority: bool = False,
) -> list[Registrant]:
    """Waiting registrants in promotion order."""
    eligible = [
        r for r in registrants
        if r.status is RegistrantStatus.WAITING
        and not (exclude_priority and r.priority_class is PriorityClass.PRIORITY)
    ]
    return sorted(eligible, key=ranking_key)


def select_next(
    registrants: Iterable[Registrant], exclude_priority: bool = False,
) -> Registrant | None:
    ranked = rank_waiting(registrants, exclude_priority)
    return ranked[0] if ranked else None


def next_position(positions: Iterable[int]) -> int:
    return max(positions, default=0) + 1
