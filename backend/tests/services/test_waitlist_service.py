"""Waitlist service tests — registration window, responses, vacancies, check-in.

Tests cover:
    - Registration only while the cycle is OPEN and its local-day window is open
    - Accept/decline inside the response window; late responses change nothing
    - Every decline (invited, confirmed, or override) frees exactly one seat
    - Repeated requests are safe: no second event, no second vacancy
    - Event-day check-in
"""

from datetime import datetime, timedelta, timezone
from uuid import uuid4

import pytest

from waterfall.core.domain_types import (
    Decision, EventKind, IdentityRef, RegistrantId, RegistrantStatus, PriorityClass,
)
from waterfall.core.errors import (
    DuplicateRegistrationError, InvalidTransitionError, RegistrationClosedError,
    ResourceNotFoundError,
)

UTC = timezone.utc
WINDOW_OPENS = datetime(2026, 3, 2, 14, 0, tzinfo=UTC)
REGISTER_AT = WINDOW_OPENS + timedelta(hours=1)
# local midnight in New York after the window opens
REGISTRATION_CLOSES = datetime(2026, 3, 3, 5, 0, tzinfo=UTC)
ROLLOUT_AT = datetime(2026, 3, 3, 15, 0, tzinfo=UTC)
EVENT_AT = datetime(2026, 3, 6, 23, 30, tzinfo=UTC)


async def _invited(svc, make_cycle, capacity=1, registrants=3):
    cycle = await make_cycle(svc, capacity=capacity, registrants=registrants)
    invited = await svc.rollout(cycle.id, now=ROLLOUT_AT)
    return cycle, invited


async def _find(svc, cycle, position):
    return await svc.store.find_registrant(
        cycle.id, IdentityRef(f"reader-{position}@example.com"),
    )


# --- Registration ------------------------------------------------------------

async def test_register_appends_to_queue(service, make_cycle):
    cycle = await make_cycle(service, registrants=2)

    registrant = await service.register(
        cycle.id, IdentityRef("late@example.com"), now=REGISTER_AT + timedelta(hours=2),
    )

    assert registrant.position == 3
    assert registrant.status is RegistrantStatus.WAITING
    assert registrant.priority_class is PriorityClass.NORMAL


@pytest.mark.parametrize("moment", [
    WINDOW_OPENS - timedelta(seconds=1),
    REGISTRATION_CLOSES,
    REGISTRATION_CLOSES + timedelta(hours=3),
])
async def test_register_outside_window_rejected(service, make_cycle, moment):
    cycle = await make_cycle(service)
    with pytest.raises(RegistrationClosedError):
        await service.register(cycle.id, IdentityRef("reader@example.com"), now=moment)


async def test_register_last_instant_of_local_day_accepted(service, make_cycle):
    cycle = await make_cycle(service)
    registrant = await service.register(
        cycle.id, IdentityRef("reader@example.com"),
        now=REGISTRATION_CLOSES - timedelta(seconds=1),
    )
    assert registrant.position == 1


async def test_register_on_draft_cycle_rejected(service, make_cycle):
    cycle = await make_cycle(service, open_registration=False)
    with pytest.raises(RegistrationClosedError):
        await service.register(cycle.id, IdentityRef("reader@example.com"), now=REGISTER_AT)


async def test_register_after_rollout_rejected(service, make_cycle):
    cycle, _ = await _invited(service, make_cycle)
    with pytest.raises(RegistrationClosedError):
        await service.register(cycle.id, IdentityRef("late@example.com"), now=REGISTER_AT)


async def test_duplicate_registration_rejected(service, make_cycle):
    cycle = await make_cycle(service, registrants=1)
    with pytest.raises(DuplicateRegistrationError):
        await service.register(
            cycle.id, IdentityRef("reader-1@example.com"), now=REGISTER_AT,
        )


async def test_get_unknown_registrant_raises(service):
    with pytest.raises(ResourceNotFoundError):
        await service.get_registrant(RegistrantId(uuid4()))


# --- Accept ------------------------------------------------------------------

async def test_accept_confirms_and_publishes(service, make_cycle, dispatcher):
    _, (invited,) = await _invited(service, make_cycle)
    dispatcher.events.clear()

    confirmed = await service.respond(
        invited.id, Decision.ACCEPT, ROLLOUT_AT + timedelta(hours=3),
    )

    assert confirmed.status is RegistrantStatus.CONFIRMED
    assert confirmed.responded_at == ROLLOUT_AT + timedelta(hours=3)
    assert dispatcher.kinds() == [EventKind.CONFIRMED.value]


async def test_repeat_accept_is_noop(service, make_cycle, dispatcher):
    _, (invited,) = await _invited(service, make_cycle)
    await service.respond(invited.id, Decision.ACCEPT, ROLLOUT_AT + timedelta(hours=1))
    dispatcher.events.clear()

    again = await service.respond(
        invited.id, Decision.ACCEPT, ROLLOUT_AT + timedelta(hours=2),
    )

    assert again.status is RegistrantStatus.CONFIRMED
    assert again.responded_at == ROLLOUT_AT + timedelta(hours=1)
    assert dispatcher.events == []


async def test_accept_at_deadline_rejected(service, make_cycle):
    _, (invited,) = await _invited(service, make_cycle)

    with pytest.raises(InvalidTransitionError):
        await service.respond(invited.id, Decision.ACCEPT, invited.response_deadline)

    reloaded = await service.get_registrant(invited.id)
    assert reloaded.status is RegistrantStatus.INVITED


async def test_respond_while_waiting_rejected(service, make_cycle):
    cycle, _ = await _invited(service, make_cycle)
    waiting = await _find(service, cycle, 3)
    with pytest.raises(InvalidTransitionError):
        await service.respond(waiting.id, Decision.ACCEPT, ROLLOUT_AT)


# --- Decline and vacancies ---------------------------------------------------

async def test_decline_promotes_exactly_one(service, make_cycle, dispatcher):
    cycle, (invited,) = await _invited(service, make_cycle)
    dispatcher.events.clear()

    declined = await service.respond(
        invited.id, Decision.DECLINE, ROLLOUT_AT + timedelta(hours=1),
    )

    assert declined.status is RegistrantStatus.DECLINED
    assert dispatcher.kinds() == [EventKind.DECLINED.value, EventKind.INVITED.value]
    assert (await _find(service, cycle, 2)).status is RegistrantStatus.INVITED
    assert (await _find(service, cycle, 3)).status is RegistrantStatus.WAITING


async def test_repeat_decline_opens_no_second_vacancy(service, make_cycle, dispatcher):
    cycle, (invited,) = await _invited(service, make_cycle)
    await service.respond(invited.id, Decision.DECLINE, ROLLOUT_AT + timedelta(hours=1))
    dispatcher.events.clear()

    await service.respond(invited.id, Decision.DECLINE, ROLLOUT_AT + timedelta(hours=2))

    assert dispatcher.events == []
    assert (await _find(service, cycle, 3)).status is RegistrantStatus.WAITING


async def test_hero_cancellation_releases_confirmed_seat(service, make_cycle, dispatcher):
    cycle, (invited,) = await _invited(service, make_cycle)
    await service.respond(invited.id, Decision.ACCEPT, ROLLOUT_AT + timedelta(hours=1))
    dispatcher.events.clear()

    released = await service.respond(
        invited.id, Decision.DECLINE, ROLLOUT_AT + timedelta(days=2),
    )

    assert released.status is RegistrantStatus.DECLINED
    assert dispatcher.kinds() == [EventKind.DECLINED.value, EventKind.INVITED.value]
    assert (await _find(service, cycle, 2)).status is RegistrantStatus.INVITED


async def test_override_decline_triggers_promotion(service, make_cycle):
    cycle, _ = await _invited(service, make_cycle, capacity=1, registrants=3)
    vip = await service.add_manual_override(
        cycle.id, IdentityRef("guest@example.com"), ROLLOUT_AT,
    )

    await service.respond(vip.id, Decision.DECLINE, ROLLOUT_AT + timedelta(hours=1))

    assert (await _find(service, cycle, 2)).status is RegistrantStatus.INVITED


async def test_decline_with_empty_queue_leaves_seat_open(service, make_cycle, dispatcher):
    cycle, (invited,) = await _invited(service, make_cycle, capacity=1, registrants=1)
    dispatcher.events.clear()

    await service.respond(invited.id, Decision.DECLINE, ROLLOUT_AT + timedelta(hours=1))

    assert dispatcher.kinds() == [EventKind.DECLINED.value]
    stats = await service.get_stats(cycle.id)
    assert stats["open_seats"] == 1


# --- Check-in ----------------------------------------------------------------

async def test_check_in_on_event_day(service, make_cycle, dispatcher):
    _, (invited,) = await _invited(service, make_cycle)
    await service.respond(invited.id, Decision.ACCEPT, ROLLOUT_AT + timedelta(hours=1))
    dispatcher.events.clear()

    attended = await service.check_in(invited.id, EVENT_AT - timedelta(hours=1))

    assert attended.status is RegistrantStatus.ATTENDED
    assert attended.checked_in_at == EVENT_AT - timedelta(hours=1)
    assert dispatcher.events == []


async def test_check_in_before_event_day_rejected(service, make_cycle):
    _, (invited,) = await _invited(service, make_cycle)
    await service.respond(invited.id, Decision.ACCEPT, ROLLOUT_AT + timedelta(hours=1))

    with pytest.raises(InvalidTransitionError):
        await service.check_in(invited.id, EVENT_AT - timedelta(days=1))


async def test_check_in_requires_confirmation(service, make_cycle):
    _, (invited,) = await _invited(service, make_cycle)
    with pytest.raises(InvalidTransitionError):
        await service.check_in(invited.id, EVENT_AT)


# --- Stats -------------------------------------------------------------------

async def test_stats_reflect_queue(service, make_cycle):
    cycle, (invited,) = await _invited(service, make_cycle, capacity=1, registrants=3)
    await service.respond(invited.id, Decision.ACCEPT, ROLLOUT_AT + timedelta(hours=1))

    stats = await service.get_stats(cycle.id)

    assert stats["total_registrants"] == 3
    assert stats["by_status"]["confirmed"] == 1
    assert stats["by_status"]["waiting"] == 2
    assert stats["held_seats"] == 1
    assert stats["open_seats"] == 0
