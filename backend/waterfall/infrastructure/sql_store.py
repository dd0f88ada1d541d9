"""SQL Waitlist Store — WaitlistStore over SQLAlchemy async sessions.

Invariants:
    - Each public method is one transaction (commit on success, rollback on any raise)
    - Claims use SELECT ... FOR UPDATE SKIP LOCKED ordered by (priority rank, position):
      concurrent workers in other processes each claim a distinct next-in-line row
    - update_registrant / update_cycle lock the row (FOR UPDATE) for read-modify-write
    - enroll assigns max(position) + 1; the (cycle_id, position) unique constraint
      backstops concurrent enrollments, which retry a bounded number of times
    - Rows never leave this module: callers receive core entities

Design Decisions:
    - Ranking expressed as CASE over priority_class rather than a stored rank column:
      the ranking rule stays in one place (PriorityClass.rank mirrors it)
    - SQLite (tests) ignores FOR UPDATE; single-process serialization there comes from
      the promotion engine's per-cycle lock
"""

import logging
from collections.abc import Callable, Iterable
from datetime import datetime

from sqlalchemy import select, func, case
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from waterfall.core.domain_types import (
    CycleId, RegistrantId, IdentityRef,
    CycleStatus, RegistrantStatus, PriorityClass, SEAT_HOLDING_STATUSES,
)
from waterfall.core.entities import Cycle, Registrant, new_registrant_id
from waterfall.core.errors import (
    DuplicateRegistrationError, ResourceNotFoundError, TransientContentionError,
)
from waterfall.core.state_machine import Transition
from waterfall.core.venue import Venue
from waterfall.infrastructure.database import DatabaseSessionManager
from waterfall.models.cycle import Cycle as CycleModel
from waterfall.models.registrant import Registrant as RegistrantModel

logger = logging.getLogger(__name__)

_PRIORITY_RANK = case(
    (RegistrantModel.priority_class == PriorityClass.PRIORITY.value, 0),
    else_=1,
)


class SqlWaitlistStore:
    """Transactional store backed by PostgreSQL (SQLite in tests)."""

    def __init__(self, db: DatabaseSessionManager, enroll_retries: int = 5):
        self._db = db
        self._enroll_retries = enroll_retries

    # ─── Cycles ──────────────────────────────────────────────────

    async def create_cycle(self, cycle: Cycle) -> Cycle:
        async with self._db.session("create_cycle") as db:
            row = CycleModel(id=cycle.id)
            _apply_cycle(row, cycle)
            db.add(row)
            await db.commit()
        return cycle

    async def get_cycle(self, cycle_id: CycleId) -> Cycle | None:
        async with self._db.session("get_cycle") as db:
            row = await db.get(CycleModel, cycle_id)
            return _to_cycle(row) if row else None

    async def update_cycle(
        self, cycle_id: CycleId, mutate: Callable[[Cycle], Cycle],
    ) -> Cycle:
        async with self._db.session("update_cycle") as db:
            row = await _lock_cycle(db, cycle_id)
            updated = mutate(_to_cycle(row))
            _apply_cycle(row, updated)
            await db.commit()
        return updated

    async def list_cycles(self, statuses: Iterable[CycleStatus]) -> list[Cycle]:
        wanted = [s.value for s in statuses]
        async with self._db.session("list_cycles") as db:
            result = await db.execute(
                select(CycleModel)
                .where(CycleModel.status.in_(wanted))
                .order_by(CycleModel.cutoff_at),
            )
            return [_to_cycle(row) for row in result.scalars().all()]

    # ─── Queue ───────────────────────────────────────────────────

    async def enroll(
        self,
        cycle_id: CycleId,
        identity: IdentityRef,
        priority_class: PriorityClass,
        now: datetime,
        prepare: Callable[[Registrant], Registrant] | None = None,
    ) -> Registrant:
        for attempt in range(1, self._enroll_retries + 1):
            async with self._db.session("enroll") as db:
                if await db.get(CycleModel, cycle_id) is None:
                    raise ResourceNotFoundError("Cycle", str(cycle_id))
                if await self._identity_exists(db, cycle_id, identity):
                    raise DuplicateRegistrationError(identity, str(cycle_id))
                max_position = await db.scalar(
                    select(func.max(RegistrantModel.position))
                    .where(RegistrantModel.cycle_id == cycle_id),
                )
                registrant = Registrant(
                    id=new_registrant_id(),
                    cycle_id=cycle_id,
                    identity=identity,
                    position=(max_position or 0) + 1,
                    priority_class=priority_class,
                    created_at=now,
                )
                if prepare:
                    registrant = prepare(registrant)
                row = RegistrantModel(id=registrant.id, cycle_id=cycle_id)
                _apply_registrant(row, registrant)
                db.add(row)
                try:
                    await db.commit()
                    return registrant
                except IntegrityError:
                    # lost a race on (cycle, position) or (cycle, identity); re-check
                    await db.rollback()
                    logger.warning(
                        f"Enroll collision for cycle {cycle_id}, retrying",
                        extra={"cycle_id": str(cycle_id), "attempt": attempt},
                    )
        raise TransientContentionError(
            str(cycle_id), self._enroll_retries, retry_after_ms=100,
        )

    async def get_registrant(self, registrant_id: RegistrantId) -> Registrant | None:
        async with self._db.session("get_registrant") as db:
            row = await db.get(RegistrantModel, registrant_id)
            return _to_registrant(row) if row else None

    async def find_registrant(
        self, cycle_id: CycleId, identity: IdentityRef,
    ) -> Registrant | None:
        async with self._db.session("find_registrant") as db:
            row = await db.scalar(
                select(RegistrantModel).where(
                    RegistrantModel.cycle_id == cycle_id,
                    RegistrantModel.identity == identity,
                ),
            )
            return _to_registrant(row) if row else None

    async def next_waiting(
        self, cycle_id: CycleId, exclude_priority: bool = False,
    ) -> Registrant | None:
        async with self._db.session("next_waiting") as db:
            row = await db.scalar(
                _waiting_query(cycle_id, exclude_priority).limit(1),
            )
            return _to_registrant(row) if row else None

    async def claim_next_eligible(
        self, cycle_id: CycleId, claim: Callable[[Registrant], Transition],
    ) -> Registrant | None:
        async with self._db.session("claim_next_eligible") as db:
            row = await db.scalar(
                _waiting_query(cycle_id)
                .limit(1)
                .with_for_update(skip_locked=True),
            )
            if row is None:
                return None
            claimed = claim(_to_registrant(row)).registrant
            _apply_registrant(row, claimed)
            await db.commit()
        return claimed

    async def claim_batch(
        self,
        cycle_id: CycleId,
        claim: Callable[[Registrant], Transition],
        limit: int,
    ) -> list[Registrant]:
        if limit <= 0:
            return []
        async with self._db.session("claim_batch") as db:
            result = await db.execute(
                _waiting_query(cycle_id)
                .limit(limit)
                .with_for_update(skip_locked=True),
            )
            rows = result.scalars().all()
            claimed = [claim(_to_registrant(row)).registrant for row in rows]
            for row, registrant in zip(rows, claimed):
                _apply_registrant(row, registrant)
            await db.commit()
        return claimed

    async def update_registrant(
        self,
        registrant_id: RegistrantId,
        mutate: Callable[[Registrant], Transition],
    ) -> Transition:
        async with self._db.session("update_registrant") as db:
            row = await db.scalar(
                select(RegistrantModel)
                .where(RegistrantModel.id == registrant_id)
                .with_for_update(),
            )
            if row is None:
                raise ResourceNotFoundError("Registrant", str(registrant_id))
            result = mutate(_to_registrant(row))
            if result.changed:
                _apply_registrant(row, result.registrant)
                await db.commit()
        return result

    async def list_overdue_invitations(
        self, cycle_id: CycleId, now: datetime,
    ) -> list[Registrant]:
        async with self._db.session("list_overdue_invitations") as db:
            result = await db.execute(
                select(RegistrantModel)
                .where(
                    RegistrantModel.cycle_id == cycle_id,
                    RegistrantModel.status == RegistrantStatus.INVITED.value,
                    RegistrantModel.response_deadline <= now,
                )
                .order_by(
                    RegistrantModel.response_deadline, RegistrantModel.position,
                ),
            )
            return [_to_registrant(row) for row in result.scalars().all()]

    async def count_by_status(
        self, cycle_id: CycleId,
    ) -> dict[RegistrantStatus, int]:
        async with self._db.session("count_by_status") as db:
            result = await db.execute(
                select(RegistrantModel.status, func.count())
                .where(RegistrantModel.cycle_id == cycle_id)
                .group_by(RegistrantModel.status),
            )
            return {RegistrantStatus(status): n for status, n in result.all()}

    async def count_held_seats(self, cycle_id: CycleId) -> int:
        held = [s.value for s in SEAT_HOLDING_STATUSES]
        async with self._db.session("count_held_seats") as db:
            count = await db.scalar(
                select(func.count())
                .select_from(RegistrantModel)
                .where(
                    RegistrantModel.cycle_id == cycle_id,
                    RegistrantModel.status.in_(held),
                    RegistrantModel.manual_override.is_(False),
                ),
            )
            return count or 0

    async def count_overrides(self, cycle_id: CycleId) -> int:
        async with self._db.session("count_overrides") as db:
            count = await db.scalar(
                select(func.count())
                .select_from(RegistrantModel)
                .where(
                    RegistrantModel.cycle_id == cycle_id,
                    RegistrantModel.manual_override.is_(True),
                ),
            )
            return count or 0

    # ─── Helpers ─────────────────────────────────────────────────

    async def _identity_exists(
        self, db: AsyncSession, cycle_id: CycleId, identity: IdentityRef,
    ) -> bool:
        found = await db.scalar(
            select(RegistrantModel.id).where(
                RegistrantModel.cycle_id == cycle_id,
                RegistrantModel.identity == identity,
            ),
        )
        return found is not None


def _waiting_query(cycle_id: CycleId, exclude_priority: bool = False):
    query = select(RegistrantModel).where(
        RegistrantModel.cycle_id == cycle_id,
        RegistrantModel.status == RegistrantStatus.WAITING.value,
    )
    if exclude_priority:
        query = query.where(
            RegistrantModel.priority_class != PriorityClass.PRIORITY.value,
        )
    return query.order_by(_PRIORITY_RANK, RegistrantModel.position)


async def _lock_cycle(db: AsyncSession, cycle_id: CycleId) -> CycleModel:
    row = await db.scalar(
        select(CycleModel).where(CycleModel.id == cycle_id).with_for_update(),
    )
    if row is None:
        raise ResourceNotFoundError("Cycle", str(cycle_id))
    return row


# ─── Row <-> entity mapping ──────────────────────────────────────

def _to_cycle(row: CycleModel) -> Cycle:
    return Cycle(
        id=CycleId(row.id),
        name=row.name,
        event_at=row.event_at,
        window_opens_at=row.window_opens_at,
        cutoff_at=row.cutoff_at,
        capacity=row.capacity,
        timezone=row.timezone,
        status=CycleStatus(row.status),
        automation_enabled=row.automation_enabled,
        venue=Venue.from_dict(row.venue) if row.venue else None,
        created_at=row.created_at,
    )


def _apply_cycle(row: CycleModel, cycle: Cycle) -> None:
    row.name = cycle.name
    row.event_at = cycle.event_at
    row.window_opens_at = cycle.window_opens_at
    row.cutoff_at = cycle.cutoff_at
    row.capacity = cycle.capacity
    row.timezone = cycle.timezone
    row.status = cycle.status.value
    row.automation_enabled = cycle.automation_enabled
    row.venue = cycle.venue.to_dict() if cycle.venue else None
    row.created_at = cycle.created_at


def _to_registrant(row: RegistrantModel) -> Registrant:
    return Registrant(
        id=RegistrantId(row.id),
        cycle_id=CycleId(row.cycle_id),
        identity=IdentityRef(row.identity),
        position=row.position,
        status=RegistrantStatus(row.status),
        priority_class=PriorityClass(row.priority_class),
        manual_override=row.manual_override,
        invited_at=row.invited_at,
        response_deadline=row.response_deadline,
        responded_at=row.responded_at,
        checked_in_at=row.checked_in_at,
        created_at=row.created_at,
    )


def _apply_registrant(row: RegistrantModel, registrant: Registrant) -> None:
    row.identity = registrant.identity
    row.position = registrant.position
    row.status = registrant.status.value
    row.priority_class = registrant.priority_class.value
    row.manual_override = registrant.manual_override
    row.invited_at = registrant.invited_at
    row.response_deadline = registrant.response_deadline
    row.responded_at = registrant.responded_at
    row.checked_in_at = registrant.checked_in_at
    row.created_at = registrant.created_at
