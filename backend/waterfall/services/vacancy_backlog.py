"""Vacancy Backlog — promotion attempts owed to vacancies whose backfill hit contention.

Invariants:
    - record() is called only after a vacancy's backfill raised TransientContentionError
    - take_all() hands every owed attempt to exactly one caller (then forgets them)
    - Counts per cycle; cycles are independent

Design Decisions:
    - Process-local Counter: the sweeper drains it every tick, so an owed attempt
      waits at most one sweep interval (ADR: no extra table for a rare path)
"""

from collections import Counter

from waterfall.core.domain_types import CycleId


class VacancyBacklog:

    def __init__(self):
        self._owed: Counter[CycleId] = Counter()

    def record(self, cycle_id: CycleId, count: int = 1) -> None:
        self._owed[cycle_id] += count

    def pending(self, cycle_id: CycleId) -> int:
        return self._owed[cycle_id]

    def discard(self, cycle_id: CycleId) -> int:
        return self._owed.pop(cycle_id, 0)

    def take_all(self) -> dict[CycleId, int]:
        owed = {cid: n for cid, n in self._owed.items() if n > 0}
        self._owed.clear()
        return owed

    def __len__(self) -> int:
        return sum(self._owed.values())
