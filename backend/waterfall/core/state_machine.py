"""Registrant State Machine — pure transition function over (registrant, trigger, now, cycle).

Invariants:
    - transition() is PURE: returns a Transition descriptor, never persists or emits
    - Legal graph: waiting -> invited -> {confirmed, declined, expired}; confirmed -> {attended, declined}
    - A failed guard raises and produces no side effect (caller persists nothing)
    - Repeating a request whose outcome already holds returns the registrant unchanged,
      with no event and no vacancy (retries are safe)
    - Decline (from invited or confirmed) and expiry open exactly one vacancy
    - Registrants of completed/cancelled cycles are immutable (CycleNotActiveError)

Design Decisions:
    - Guards read time only from the `now` argument: callers own the clock, tests pin it
    - Shell applies the result (store write + dispatcher publish) — impureim sandwich
    - Vacancy (capacity) is a precondition checked by the caller, not a guard here:
      the promotion engine is the only component that knows why it is promoting
"""

from dataclasses import dataclass, replace
from datetime import datetime, timedelta

from waterfall.core.domain_types import (
    RegistrantStatus, Trigger, EventKind, ACTIVE_CYCLE_STATUSES,
)
from waterfall.core.entities import Cycle, Registrant
from waterfall.core.errors import (
    InvalidTransitionError, PastCutoffError, CycleNotActiveError, ErrorContext,
)
from waterfall.core.window_policy import (
    DEFAULT_RESPONSE_WINDOW, compute_response_deadline, is_past_cutoff,
    is_check_in_open,
)


@dataclass(frozen=True)
class Transition:
    """Outcome of applying a trigger. `changed=False` means idempotent no-op."""
    registrant: Registrant
    changed: bool
    event: EventKind | None = None
    opens_vacancy: bool = False


# Trigger -> status that already satisfies it (repeat requests are no-ops)
_SATISFIED_BY = {
    Trigger.ACCEPT: RegistrantStatus.CONFIRMED,
    Trigger.DECLINE: RegistrantStatus.DECLINED,
    Trigger.EXPIRE: RegistrantStatus.EXPIRED,
    Trigger.CHECK_IN: RegistrantStatus.ATTENDED,
}


def _reject(registrant: Registrant, trigger: Trigger, reason: str):
    raise InvalidTransitionError(
        registrant.status.value, trigger.value, reason,
        ErrorContext(
            cycle_id=str(registrant.cycle_id),
            registrant_id=str(registrant.id),
        ),
    )


def _unchanged(registrant: Registrant) -> Transition:
    return Transition(registrant=registrant, changed=False)


def transition(
    registrant: Registrant,
    trigger: Trigger,
    now: datetime,
    cycle: Cycle,
    response_window: timedelta = DEFAULT_RESPONSE_WINDOW,
) -> Transition:
    """Apply `trigger` to `registrant`. Raises on guard failure."""
    if cycle.status not in ACTIVE_CYCLE_STATUSES:
        raise CycleNotActiveError(
            str(cycle.id), cycle.status.value, f"apply '{trigger.value}'",
        )
    if _SATISFIED_BY.get(trigger) == registrant.status:
        return _unchanged(registrant)

    if trigger in (Trigger.PROMOTE, Trigger.OVERRIDE):
        return _invite(registrant, trigger, now, cycle, response_window)
    if trigger is Trigger.ACCEPT:
        return _accept(registrant, now)
    if trigger is Trigger.DECLINE:
        return _decline(registrant, now, cycle)
    if trigger is Trigger.EXPIRE:
        return _expire(registrant, now)
    if trigger is Trigger.CHECK_IN:
        return _check_in(registrant, now, cycle)
    _reject(registrant, trigger, "unknown trigger")


def _invite(
    registrant: Registrant,
    trigger: Trigger,
    now: datetime,
    cycle: Cycle,
    response_window: timedelta,
) -> Transition:
    if registrant.status is not RegistrantStatus.WAITING:
        _reject(registrant, trigger, "only waiting registrants can be invited")
    if trigger is Trigger.PROMOTE and not cycle.automation_enabled:
        _reject(registrant, trigger, "automation is disabled for this cycle")
    if is_past_cutoff(now, cycle):
        raise PastCutoffError(str(cycle.id))
    invited = replace(
        registrant,
        status=RegistrantStatus.INVITED,
        invited_at=now,
        response_deadline=compute_response_deadline(now, cycle, response_window),
        manual_override=registrant.manual_override or trigger is Trigger.OVERRIDE,
    )
    return Transition(invited, changed=True, event=EventKind.INVITED)


def _accept(registrant: Registrant, now: datetime) -> Transition:
    if registrant.status is not RegistrantStatus.INVITED:
        _reject(registrant, Trigger.ACCEPT, "invitation already decided")
    if now >= registrant.response_deadline:
        _reject(registrant, Trigger.ACCEPT, "response deadline has passed")
    confirmed = replace(
        registrant, status=RegistrantStatus.CONFIRMED, responded_at=now,
    )
    return Transition(confirmed, changed=True, event=EventKind.CONFIRMED)


def _decline(registrant: Registrant, now: datetime, cycle: Cycle) -> Transition:
    if registrant.status is RegistrantStatus.INVITED:
        if now >= registrant.response_deadline:
            _reject(registrant, Trigger.DECLINE, "response deadline has passed")
    elif registrant.status is RegistrantStatus.CONFIRMED:
        # hero cancellation: a confirmed seat may be released until cutoff
        if is_past_cutoff(now, cycle):
            _reject(registrant, Trigger.DECLINE, "cutoff has passed")
    else:
        _reject(registrant, Trigger.DECLINE, "nothing to decline")
    declined = replace(
        registrant, status=RegistrantStatus.DECLINED, responded_at=now,
    )
    return Transition(
        declined, changed=True, event=EventKind.DECLINED, opens_vacancy=True,
    )


def _expire(registrant: Registrant, now: datetime) -> Transition:
    if registrant.status is not RegistrantStatus.INVITED:
        _reject(registrant, Trigger.EXPIRE, "registrant is not invited")
    if now < registrant.response_deadline:
        _reject(registrant, Trigger.EXPIRE, "response deadline not reached")
    expired = replace(registrant, status=RegistrantStatus.EXPIRED)
    return Transition(
        expired, changed=True, event=EventKind.EXPIRED, opens_vacancy=True,
    )


def _check_in(registrant: Registrant, now: datetime, cycle: Cycle) -> Transition:
    if registrant.status is not RegistrantStatus.CONFIRMED:
        _reject(registrant, Trigger.CHECK_IN, "only confirmed registrants can check in")
    if not is_check_in_open(now, cycle):
        _reject(registrant, Trigger.CHECK_IN, "outside the event-day window")
    attended = replace(
        registrant, status=RegistrantStatus.ATTENDED, checked_in_at=now,
    )
    return Transition(attended, changed=True)
