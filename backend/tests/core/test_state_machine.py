"""State machine tests — pure transitions over (registrant, trigger, now, cycle).

Tests cover:
    - Invitation (promote / override) guards and deadline assignment
    - Accept / decline inside and outside the response window
    - Hero cancellation from confirmed until cutoff
    - Expiry and its vacancy
    - Event-day check-in
    - Idempotent repeats and closed cycles
"""

from dataclasses import replace
from datetime import datetime, timedelta, timezone
from uuid import uuid4

import pytest

from waterfall.core.domain_types import (
    CycleId, CycleStatus, EventKind, IdentityRef, RegistrantId, RegistrantStatus,
    Trigger,
)
from waterfall.core.entities import Cycle, Registrant
from waterfall.core.errors import (
    CycleNotActiveError, InvalidTransitionError, PastCutoffError,
)
from waterfall.core.state_machine import transition

UTC = timezone.utc
WINDOW_OPENS = datetime(2026, 3, 2, 14, 0, tzinfo=UTC)
CUTOFF = datetime(2026, 3, 6, 17, 0, tzinfo=UTC)
EVENT_AT = datetime(2026, 3, 6, 23, 30, tzinfo=UTC)
ROLLOUT_AT = datetime(2026, 3, 3, 15, 0, tzinfo=UTC)


def _cycle(**overrides) -> Cycle:
    fields = dict(
        id=CycleId(uuid4()),
        name="Thursday reading",
        event_at=EVENT_AT,
        window_opens_at=WINDOW_OPENS,
        cutoff_at=CUTOFF,
        capacity=100,
        timezone="America/New_York",
        status=CycleStatus.ROLLED_OUT,
    )
    fields.update(overrides)
    return Cycle(**fields)


def _registrant(cycle: Cycle, **overrides) -> Registrant:
    fields = dict(
        id=RegistrantId(uuid4()),
        cycle_id=cycle.id,
        identity=IdentityRef("reader@example.com"),
        position=1,
    )
    fields.update(overrides)
    return Registrant(**fields)


def _invited(cycle: Cycle, at: datetime = ROLLOUT_AT) -> Registrant:
    return transition(_registrant(cycle), Trigger.PROMOTE, at, cycle).registrant


# --- Invitation --------------------------------------------------------------

def test_promote_invites_waiting_with_24h_deadline():
    cycle = _cycle()
    result = transition(_registrant(cycle), Trigger.PROMOTE, ROLLOUT_AT, cycle)
    assert result.changed
    assert result.registrant.status is RegistrantStatus.INVITED
    assert result.registrant.invited_at == ROLLOUT_AT
    assert result.registrant.response_deadline == ROLLOUT_AT + timedelta(hours=24)
    assert result.event is EventKind.INVITED
    assert not result.opens_vacancy
    assert not result.registrant.manual_override


def test_promote_uses_given_response_window():
    cycle = _cycle()
    result = transition(
        _registrant(cycle), Trigger.PROMOTE, ROLLOUT_AT, cycle, timedelta(hours=6),
    )
    assert result.registrant.response_deadline == ROLLOUT_AT + timedelta(hours=6)


def test_promote_near_cutoff_clamps_deadline():
    cycle = _cycle()
    now = CUTOFF - timedelta(hours=2)
    result = transition(_registrant(cycle), Trigger.PROMOTE, now, cycle)
    assert result.registrant.response_deadline == CUTOFF


def test_promote_rejected_when_automation_disabled():
    cycle = _cycle(automation_enabled=False)
    with pytest.raises(InvalidTransitionError):
        transition(_registrant(cycle), Trigger.PROMOTE, ROLLOUT_AT, cycle)


def test_promote_rejected_past_cutoff():
    cycle = _cycle()
    with pytest.raises(PastCutoffError):
        transition(_registrant(cycle), Trigger.PROMOTE, CUTOFF, cycle)


def test_promote_rejected_for_invited_registrant():
    cycle = _cycle()
    with pytest.raises(InvalidTransitionError) as exc_info:
        transition(_invited(cycle), Trigger.PROMOTE, ROLLOUT_AT, cycle)
    assert exc_info.value.current == "invited"
    assert exc_info.value.trigger == "promote"


def test_override_marks_manual_even_with_automation_off():
    cycle = _cycle(automation_enabled=False)
    result = transition(_registrant(cycle), Trigger.OVERRIDE, ROLLOUT_AT, cycle)
    assert result.registrant.status is RegistrantStatus.INVITED
    assert result.registrant.manual_override
    assert result.event is EventKind.INVITED


# --- Accept / decline --------------------------------------------------------

def test_accept_before_deadline_confirms():
    cycle = _cycle()
    invited = _invited(cycle)
    now = ROLLOUT_AT + timedelta(hours=1)
    result = transition(invited, Trigger.ACCEPT, now, cycle)
    assert result.registrant.status is RegistrantStatus.CONFIRMED
    assert result.registrant.responded_at == now
    assert result.event is EventKind.CONFIRMED
    assert not result.opens_vacancy


def test_accept_keeps_response_deadline_for_audit():
    cycle = _cycle()
    invited = _invited(cycle)
    result = transition(invited, Trigger.ACCEPT, ROLLOUT_AT, cycle)
    assert result.registrant.response_deadline == invited.response_deadline


def test_accept_at_deadline_is_rejected():
    cycle = _cycle()
    invited = _invited(cycle)
    with pytest.raises(InvalidTransitionError):
        transition(invited, Trigger.ACCEPT, invited.response_deadline, cycle)


def test_accept_repeated_is_noop():
    cycle = _cycle()
    confirmed = transition(_invited(cycle), Trigger.ACCEPT, ROLLOUT_AT, cycle).registrant
    result = transition(confirmed, Trigger.ACCEPT, ROLLOUT_AT, cycle)
    assert not result.changed
    assert result.event is None
    assert result.registrant == confirmed


def test_accept_waiting_is_rejected():
    cycle = _cycle()
    with pytest.raises(InvalidTransitionError):
        transition(_registrant(cycle), Trigger.ACCEPT, ROLLOUT_AT, cycle)


def test_decline_invited_opens_vacancy():
    cycle = _cycle()
    result = transition(_invited(cycle), Trigger.DECLINE, ROLLOUT_AT, cycle)
    assert result.registrant.status is RegistrantStatus.DECLINED
    assert result.event is EventKind.DECLINED
    assert result.opens_vacancy


def test_decline_after_deadline_is_rejected():
    cycle = _cycle()
    invited = _invited(cycle)
    with pytest.raises(InvalidTransitionError):
        transition(invited, Trigger.DECLINE, invited.response_deadline, cycle)


def test_hero_cancel_from_confirmed_before_cutoff():
    cycle = _cycle()
    confirmed = transition(_invited(cycle), Trigger.ACCEPT, ROLLOUT_AT, cycle).registrant
    result = transition(confirmed, Trigger.DECLINE, CUTOFF - timedelta(minutes=1), cycle)
    assert result.registrant.status is RegistrantStatus.DECLINED
    assert result.opens_vacancy


def test_hero_cancel_rejected_past_cutoff():
    cycle = _cycle()
    confirmed = transition(_invited(cycle), Trigger.ACCEPT, ROLLOUT_AT, cycle).registrant
    with pytest.raises(InvalidTransitionError):
        transition(confirmed, Trigger.DECLINE, CUTOFF, cycle)


def test_decline_repeated_is_noop_without_vacancy():
    cycle = _cycle()
    declined = transition(_invited(cycle), Trigger.DECLINE, ROLLOUT_AT, cycle).registrant
    result = transition(declined, Trigger.DECLINE, ROLLOUT_AT, cycle)
    assert not result.changed
    assert not result.opens_vacancy


def test_decline_waiting_is_rejected():
    cycle = _cycle()
    with pytest.raises(InvalidTransitionError):
        transition(_registrant(cycle), Trigger.DECLINE, ROLLOUT_AT, cycle)


# --- Expiry ------------------------------------------------------------------

def test_expire_at_deadline_opens_vacancy():
    cycle = _cycle()
    invited = _invited(cycle)
    result = transition(invited, Trigger.EXPIRE, invited.response_deadline, cycle)
    assert result.registrant.status is RegistrantStatus.EXPIRED
    assert result.event is EventKind.EXPIRED
    assert result.opens_vacancy


def test_expire_before_deadline_is_rejected():
    cycle = _cycle()
    with pytest.raises(InvalidTransitionError):
        transition(_invited(cycle), Trigger.EXPIRE, ROLLOUT_AT, cycle)


def test_expire_confirmed_is_rejected():
    cycle = _cycle()
    confirmed = transition(_invited(cycle), Trigger.ACCEPT, ROLLOUT_AT, cycle).registrant
    with pytest.raises(InvalidTransitionError):
        transition(confirmed, Trigger.EXPIRE, CUTOFF, cycle)


def test_expire_repeated_is_noop():
    cycle = _cycle()
    invited = _invited(cycle)
    expired = transition(
        invited, Trigger.EXPIRE, invited.response_deadline, cycle,
    ).registrant
    assert not transition(expired, Trigger.EXPIRE, CUTOFF, cycle).changed


# --- Check-in ----------------------------------------------------------------

def test_check_in_on_event_day_marks_attended():
    cycle = _cycle()
    confirmed = transition(_invited(cycle), Trigger.ACCEPT, ROLLOUT_AT, cycle).registrant
    now = datetime(2026, 3, 6, 23, 0, tzinfo=UTC)
    result = transition(confirmed, Trigger.CHECK_IN, now, cycle)
    assert result.registrant.status is RegistrantStatus.ATTENDED
    assert result.registrant.checked_in_at == now
    assert result.event is None


def test_check_in_day_before_is_rejected():
    cycle = _cycle()
    confirmed = transition(_invited(cycle), Trigger.ACCEPT, ROLLOUT_AT, cycle).registrant
    with pytest.raises(InvalidTransitionError):
        transition(confirmed, Trigger.CHECK_IN, datetime(2026, 3, 5, 20, 0, tzinfo=UTC), cycle)


def test_check_in_invited_is_rejected():
    cycle = _cycle()
    with pytest.raises(InvalidTransitionError):
        transition(_invited(cycle), Trigger.CHECK_IN, EVENT_AT, cycle)


# --- Closed cycles -----------------------------------------------------------

@pytest.mark.parametrize("status", [CycleStatus.COMPLETED, CycleStatus.CANCELLED])
def test_closed_cycle_rejects_every_trigger(status):
    cycle = _cycle()
    invited = _invited(cycle)
    closed = replace(cycle, status=status)
    for trigger in (Trigger.ACCEPT, Trigger.DECLINE, Trigger.EXPIRE):
        with pytest.raises(CycleNotActiveError):
            transition(invited, trigger, ROLLOUT_AT, closed)
