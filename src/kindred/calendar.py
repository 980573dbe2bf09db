"""Calendar facts for "today": events and the menstrual-cycle prediction."""

from datetime import date, datetime, timedelta
from typing import Any

ACTIVE = "active"
PREDICTED = "predicted"

DEFAULT_CYCLE_DAYS = 28
DEFAULT_PERIOD_DAYS = 5


def day_key(day: date) -> str:
    """Format a date the way calendar containers are keyed."""
    return day.strftime("%Y-%m-%d")


def _parse_day(value: str) -> date | None:
    try:
        return datetime.strptime(value, "%Y-%m-%d").date()
    except ValueError:
        return None


def period_days(
    events: dict[str, list[dict[str, Any]]],
    horizon: date,
) -> dict[str, str]:
    """Map day keys to ``active`` or ``predicted`` period days.

    Recorded starts mark ``duration`` days (or up to the first recorded end on
    or after the start) as active. From the latest recorded start, future
    starts repeat every ``cycle`` days up to ``horizon``; their days are
    marked predicted unless already active.

    Args:
        events: Calendar container.
        horizon: Last day predictions are generated for.

    Returns:
        Mapping of day key to status.
    """
    starts: list[tuple[date, int, int]] = []
    ends: list[date] = []

    for key, day_events in events.items():
        day = _parse_day(key)
        if day is None:
            continue
        for ev in day_events:
            kind = ev.get("type")
            if kind in ("period_start", "period"):
                starts.append((
                    day,
                    int(ev.get("cycle") or DEFAULT_CYCLE_DAYS),
                    int(ev.get("duration") or DEFAULT_PERIOD_DAYS),
                ))
            elif kind == "period_end":
                ends.append(day)

    starts.sort(key=lambda s: s[0])
    ends.sort()

    status: dict[str, str] = {}
    for start, _cycle, duration in starts:
        end = next((e for e in ends if e >= start), None)
        limit = end if end is not None else start + timedelta(days=duration - 1)
        day = start
        while day <= limit:
            status[day_key(day)] = ACTIVE
            day += timedelta(days=1)

    if not starts:
        return status

    last_start, cycle, duration = starts[-1]
    if cycle <= 0:
        return status

    next_start = last_start + timedelta(days=cycle)
    while next_start <= horizon:
        if day_key(next_start) not in status:
            for offset in range(duration):
                key = day_key(next_start + timedelta(days=offset))
                status.setdefault(key, PREDICTED)
        next_start += timedelta(days=cycle)

    return status


def calendar_notes(
    events: dict[str, list[dict[str, Any]]],
    today: date,
    contact_name: str,
) -> list[str]:
    """Collect the calendar facts relevant to a conversation today."""
    notes: list[str] = []

    for ev in events.get(day_key(today), []):
        kind = ev.get("type")
        title = ev.get("title", "")
        if kind == "anniversary":
            notes.append(f"Today is an anniversary: {title}! Bring it up and celebrate in character.")
        elif kind == "birthday_char" and title == contact_name:
            notes.append("Today is your birthday! Wait for the user's wishes or hint at it.")
        elif kind == "birthday_user":
            notes.append("Today is the user's birthday! Wish them a happy birthday.")
        elif kind == "custom":
            notes.append(f"Today the user has planned: {title}. Mention it when it fits.")

    periods = period_days(events, today + timedelta(days=45))
    today_status = periods.get(day_key(today))
    if today_status == ACTIVE:
        notes.append("[Cycle] The user is on their period. Be caring and attentive to how they feel.")
    elif today_status == PREDICTED:
        notes.append("[Cycle] By prediction the user's period may be today. Keep an eye on how they are doing.")
    elif periods.get(day_key(today + timedelta(days=2))) == PREDICTED:
        notes.append(
            "[Cycle] The user's period is expected in 2 days. Gently remind them to rest and avoid cold food."
        )

    return notes
