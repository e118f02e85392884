"""
Family Week Planner — Week and time-of-day helpers.

Weeks are identified by their Monday (YYYY-MM-DD). Stored weekday numbers
use the calendar convention 0 = Sunday … 6 = Saturday; Python's
date.weekday() is 0 = Monday, so every conversion goes through
calendar_day_of_week().
"""

from __future__ import annotations

import re
from datetime import date, datetime, timedelta

_HHMM_RE = re.compile(r"^([01]?\d|2[0-3]):[0-5]\d$")


def parse_week_start(value: str | date) -> date:
    """Parse a YYYY-MM-DD string (or date) and require it to be a Monday.

    Raises:
        ValueError: malformed date or not a Monday.
    """
    if isinstance(value, date):
        parsed = value
    else:
        try:
            parsed = date.fromisoformat(value.strip())
        except (ValueError, AttributeError) as exc:
            raise ValueError(
                f"Invalid week start date {value!r}. Expected YYYY-MM-DD."
            ) from exc
    if parsed.weekday() != 0:
        raise ValueError(f"Week start date {parsed.isoformat()} must be a Monday.")
    return parsed


def monday_of(day: date) -> date:
    """Return the Monday of the ISO week containing day."""
    return day - timedelta(days=day.weekday())


def week_dates(week_start: date) -> list[date]:
    """The 7 calendar dates of the week, Monday first."""
    return [week_start + timedelta(days=offset) for offset in range(7)]


def is_in_week(day: date, week_start: date) -> bool:
    return week_start <= day <= week_start + timedelta(days=6)


def calendar_day_of_week(day: date) -> int:
    """0 = Sunday … 6 = Saturday (the stored WeekTemplateDay convention)."""
    return (day.weekday() + 1) % 7


def iso_week_number(day: date) -> int:
    return day.isocalendar()[1]


def trailing_weeks(anchor_week: date, count: int) -> list[date]:
    """The `count` Mondays ending with (and including) anchor_week, oldest first."""
    return [anchor_week - timedelta(weeks=back) for back in range(count - 1, -1, -1)]


def is_valid_hhmm(value: str) -> bool:
    return bool(_HHMM_RE.match(value or ""))


def hhmm_to_minutes(value: str) -> int:
    """Convert 'HH:MM' to minutes from midnight."""
    t = datetime.strptime(value, "%H:%M").time()
    return t.hour * 60 + t.minute


def minutes_to_hhmm(minutes: int) -> str:
    """Convert minutes from midnight to 'HH:MM'; values past 24h wrap."""
    minutes %= 24 * 60
    return f"{minutes // 60:02d}:{minutes % 60:02d}"


def format_time_remaining(delta: timedelta) -> str:
    """Human-readable remaining time: '2d 3h', '1h 5m', '45m'."""
    total_minutes = max(0, int(delta.total_seconds() // 60))
    hours, minutes = divmod(total_minutes, 60)
    days, remaining_hours = divmod(hours, 24)

    if days > 0:
        return f"{days}d {remaining_hours}h" if remaining_hours else f"{days}d"
    if hours > 0:
        return f"{hours}h {minutes}m" if minutes else f"{hours}h"
    return f"{minutes}m"
