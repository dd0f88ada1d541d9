"""Queue store tests — run against both the memory and the SQLite-backed SQL store.

Tests cover:
    - Dense, unique positions (sequential on both backends, concurrent on memory)
    - Duplicate identity rejection
    - Ranking order for next_waiting / claim_batch
    - update_registrant persists nothing when the callback raises
    - Held-seat accounting excludes manual overrides
    - Timestamps always come back timezone-aware
"""

import asyncio
from dataclasses import replace
from datetime import datetime, timedelta, timezone
from uuid import uuid4

import pytest

from waterfall.core.domain_types import (
    CycleId, CycleStatus, IdentityRef, PriorityClass, RegistrantStatus, Trigger,
)
from waterfall.core.entities import Cycle
from waterfall.core.errors import (
    DuplicateRegistrationError, InvalidTransitionError, ResourceNotFoundError,
)
from waterfall.core.state_machine import transition
from waterfall.core.venue import Venue

UTC = timezone.utc
WINDOW_OPENS = datetime(2026, 3, 2, 14, 0, tzinfo=UTC)
ROLLOUT_AT = datetime(2026, 3, 3, 15, 0, tzinfo=UTC)
CUTOFF = datetime(2026, 3, 6, 17, 0, tzinfo=UTC)
EVENT_AT = datetime(2026, 3, 6, 23, 30, tzinfo=UTC)


def _cycle() -> Cycle:
    return Cycle(
        id=CycleId(uuid4()),
        name="Thursday reading",
        event_at=EVENT_AT,
        window_opens_at=WINDOW_OPENS,
        cutoff_at=CUTOFF,
        capacity=3,
        timezone="America/New_York",
        status=CycleStatus.ROLLED_OUT,
        venue=Venue("Main Library", "1 Park Row", 40.71, -74.0, 120),
    )


async def _seed(store, count: int, priority: tuple[int, ...] = ()) -> Cycle:
    cycle = await store.create_cycle(_cycle())
    for i in range(1, count + 1):
        await store.enroll(
            cycle.id,
            IdentityRef(f"reader-{i}"),
            PriorityClass.PRIORITY if i in priority else PriorityClass.NORMAL,
            WINDOW_OPENS,
        )
    return cycle


def _promote(cycle: Cycle):
    return lambda r: transition(r, Trigger.PROMOTE, ROLLOUT_AT, cycle)


# --- Enrollment --------------------------------------------------------------

async def test_enroll_assigns_dense_positions(store):
    cycle = await _seed(store, 5)
    positions = [
        (await store.find_registrant(cycle.id, IdentityRef(f"reader-{i}"))).position
        for i in range(1, 6)
    ]
    assert positions == [1, 2, 3, 4, 5]


async def test_enroll_duplicate_identity_rejected(store):
    cycle = await _seed(store, 2)
    with pytest.raises(DuplicateRegistrationError):
        await store.enroll(cycle.id, IdentityRef("reader-1"), PriorityClass.NORMAL, WINDOW_OPENS)
    # the rejected attempt does not consume a position
    third = await store.enroll(cycle.id, IdentityRef("reader-3"), PriorityClass.NORMAL, WINDOW_OPENS)
    assert third.position == 3


async def test_same_identity_allowed_in_another_cycle(store):
    first = await _seed(store, 1)
    second = await store.create_cycle(_cycle())
    r = await store.enroll(second.id, IdentityRef("reader-1"), PriorityClass.NORMAL, WINDOW_OPENS)
    assert r.position == 1
    assert r.cycle_id != first.id


async def test_enroll_unknown_cycle_raises(store):
    with pytest.raises(ResourceNotFoundError):
        await store.enroll(
            CycleId(uuid4()), IdentityRef("reader-1"), PriorityClass.NORMAL, WINDOW_OPENS,
        )


async def test_concurrent_enroll_keeps_positions_dense(memory_store):
    cycle = await memory_store.create_cycle(_cycle())
    registrants = await asyncio.gather(*(
        memory_store.enroll(cycle.id, IdentityRef(f"reader-{i}"), PriorityClass.NORMAL, WINDOW_OPENS)
        for i in range(50)
    ))
    assert sorted(r.position for r in registrants) == list(range(1, 51))


# --- Ranking and claims ------------------------------------------------------

async def test_next_waiting_prefers_priority_class(store):
    cycle = await _seed(store, 4, priority=(3,))
    assert (await store.next_waiting(cycle.id)).position == 3
    assert (await store.next_waiting(cycle.id, exclude_priority=True)).position == 1


async def test_claim_batch_follows_ranking_key(store):
    cycle = await _seed(store, 6, priority=(5,))
    claimed = await store.claim_batch(cycle.id, _promote(cycle), 3)
    assert [r.position for r in claimed] == [5, 1, 2]
    assert all(r.status is RegistrantStatus.INVITED for r in claimed)
    assert (await store.next_waiting(cycle.id)).position == 3


async def test_claim_next_eligible_returns_none_when_empty(store):
    cycle = await _seed(store, 1)
    assert await store.claim_next_eligible(cycle.id, _promote(cycle)) is not None
    assert await store.claim_next_eligible(cycle.id, _promote(cycle)) is None


async def test_claim_batch_zero_limit_claims_nothing(store):
    cycle = await _seed(store, 2)
    assert await store.claim_batch(cycle.id, _promote(cycle), 0) == []


# --- Read-modify-write -------------------------------------------------------

async def test_update_registrant_rolls_back_on_guard_failure(store):
    cycle = await _seed(store, 1)
    waiting = await store.find_registrant(cycle.id, IdentityRef("reader-1"))
    with pytest.raises(InvalidTransitionError):
        await store.update_registrant(
            waiting.id, lambda r: transition(r, Trigger.ACCEPT, ROLLOUT_AT, cycle),
        )
    assert (await store.get_registrant(waiting.id)).status is RegistrantStatus.WAITING


async def test_update_registrant_unknown_id_raises(store):
    await _seed(store, 0)
    with pytest.raises(ResourceNotFoundError):
        await store.update_registrant(uuid4(), lambda r: None)


async def test_update_cycle_applies_mutation(store):
    cycle = await _seed(store, 0)
    updated = await store.update_cycle(
        cycle.id, lambda c: c.with_status(CycleStatus.COMPLETED),
    )
    assert updated.status is CycleStatus.COMPLETED
    assert (await store.get_cycle(cycle.id)).status is CycleStatus.COMPLETED
    assert (await store.get_cycle(cycle.id)).venue == cycle.venue


# --- Counting and scans ------------------------------------------------------

async def test_held_seats_exclude_manual_overrides(store):
    cycle = await _seed(store, 3)
    await store.claim_batch(cycle.id, _promote(cycle), 2)
    await store.enroll(
        cycle.id, IdentityRef("vip"), PriorityClass.NORMAL, ROLLOUT_AT,
        prepare=lambda r: transition(r, Trigger.OVERRIDE, ROLLOUT_AT, cycle).registrant,
    )
    assert await store.count_held_seats(cycle.id) == 2
    assert await store.count_overrides(cycle.id) == 1
    counts = await store.count_by_status(cycle.id)
    assert counts[RegistrantStatus.INVITED] == 3
    assert counts[RegistrantStatus.WAITING] == 1


async def test_list_overdue_invitations_uses_inclusive_deadline(store):
    cycle = await _seed(store, 3)
    await store.claim_batch(cycle.id, _promote(cycle), 2)
    deadline = ROLLOUT_AT + timedelta(hours=24)
    assert await store.list_overdue_invitations(cycle.id, deadline - timedelta(seconds=1)) == []
    overdue = await store.list_overdue_invitations(cycle.id, deadline)
    assert [r.position for r in overdue] == [1, 2]


async def test_list_cycles_filters_by_status(store):
    rolled = await _seed(store, 0)
    await store.create_cycle(replace(_cycle(), status=CycleStatus.DRAFT))
    found = await store.list_cycles([CycleStatus.ROLLED_OUT])
    assert [c.id for c in found] == [rolled.id]


async def test_timestamps_round_trip_timezone_aware(store):
    cycle = await _seed(store, 1)
    claimed = await store.claim_next_eligible(cycle.id, _promote(cycle))
    reloaded = await store.get_registrant(claimed.id)
    assert reloaded.invited_at == ROLLOUT_AT
    assert reloaded.response_deadline.tzinfo is not None
    assert (await store.get_cycle(cycle.id)).cutoff_at == CUTOFF
