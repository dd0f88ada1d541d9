"""Window Policy — pure time-window rules that gate registrant transitions.

Invariants:
    - Pure functions of (now, cycle): no IO, no clock reads, no state
    - Registration open iff window_opens_at <= now < next local midnight after window_opens_at
    - Response deadline = min(now + window, cutoff_at): nobody's window extends past cutoff
    - Past cutoff iff now >= cutoff_at
    - Check-in open iff now falls on the event's local calendar day

Design Decisions:
    - Calendar-day boundaries computed in the cycle's IANA time zone via zoneinfo, so
      a window opening at 09:00 local closes at 00:00 local regardless of DST
    - Unknown time zones raise ValueError at cycle creation (validate_timezone), never here
"""

from datetime import datetime, timedelta, time
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from waterfall.core.entities import Cycle


DEFAULT_RESPONSE_WINDOW = timedelta(hours=24)


def validate_timezone(name: str) -> ZoneInfo:
    """Resolve an IANA zone name, raising ValueError for unknown zones."""
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError) as e:
        raise ValueError(f"Unknown time zone: {name}") from e


def _local_day_end(moment: datetime, tz: ZoneInfo) -> datetime:
    """Next local midnight after `moment`, as an aware datetime."""
    local = moment.astimezone(tz)
    next_day = local.date() + timedelta(days=1)
    return datetime.combine(next_day, time.min, tzinfo=tz)


def registration_closes_at(cycle: Cycle) -> datetime:
    return _local_day_end(cycle.window_opens_at, ZoneInfo(cycle.timezone))


def is_registration_open(now: datetime, cycle: Cycle) -> bool:
    return cycle.window_opens_at <= now < registration_closes_at(cycle)


def compute_response_deadline(
    now: datetime, cycle: Cycle, window: timedelta = DEFAULT_RESPONSE_WINDOW,
) -> datetime:
    """now + window, clamped to the cycle's cutoff."""
    return min(now + window, cycle.cutoff_at)


def is_past_cutoff(now: datetime, cycle: Cycle) -> bool:
    return now >= cycle.cutoff_at


def is_check_in_open(now: datetime, cycle: Cycle) -> bool:
    tz = ZoneInfo(cycle.timezone)
    return now.astimezone(tz).date() == cycle.event_at.astimezone(tz).date()
