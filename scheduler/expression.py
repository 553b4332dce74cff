"""Simplified cron-style expressions: validation and next fire time.

Only the subset the scheduler actually produces is interpreted:

    M H * * *      every day at H:M
    M H * * D      every weekday D (0-7, Sunday is 0 or 7) at H:M

Anything else that passes validation (ranges, lists, steps, wildcard
minute or hour) falls back to "one hour from now", which keeps the job
rescheduling without claiming real cron semantics.
"""

from __future__ import annotations

import re
from datetime import datetime, timedelta

from core.errors import ValidationError
from scheduler.models import TIME_OF_DAY_RE, ScheduleType

FALLBACK_DELAY = timedelta(hours=1)

# (name, min, max) for the five fields, in order
_FIELDS = (
    ("minute", 0, 59),
    ("hour", 0, 23),
    ("day_of_month", 1, 31),
    ("month", 1, 12),
    ("day_of_week", 0, 7),
)

_INT_PREFIX = re.compile(r"^-?[0-9]+")
_DIGITS = re.compile(r"[0-9]+")

# Weekly schedules fire on Friday
_WEEKLY_DAY = 5


def _split(expr: str) -> list[str]:
    return expr.split() if isinstance(expr, str) else []


def _valid_field(part: str, low: int, high: int) -> bool:
    if part == "*":
        return True
    m = _INT_PREFIX.match(part)
    if m:
        return low <= int(m.group()) <= high
    # other syntax is accepted without interpretation
    return True


def is_valid_expression(expr: str) -> bool:
    """True when *expr* has five fields and every plain number is in range."""
    parts = _split(expr)
    if len(parts) != len(_FIELDS):
        return False
    return all(
        _valid_field(part, low, high)
        for part, (_, low, high) in zip(parts, _FIELDS)
    )


def _fixed(part: str) -> int | None:
    # ASCII only: str.isdigit also accepts superscripts that int() rejects
    return int(part) if _DIGITS.fullmatch(part) else None


def _cron_weekday(moment: datetime) -> int:
    # datetime: Monday=0 .. Sunday=6; cron: Sunday=0, Monday=1 .. Saturday=6
    return (moment.weekday() + 1) % 7


def next_fire_time(expr: str, now: datetime) -> datetime:
    """Return the next moment strictly after *now* at which *expr* fires.

    The result carries *now*'s tzinfo; wall-clock arithmetic is done in
    that zone.
    """
    parts = _split(expr)
    if len(parts) != len(_FIELDS):
        return now + FALLBACK_DELAY

    minute, hour = _fixed(parts[0]), _fixed(parts[1])
    if minute is None or hour is None or minute > 59 or hour > 23:
        return now + FALLBACK_DELAY

    candidate = now.replace(hour=hour, minute=minute, second=0, microsecond=0)
    if candidate > now:
        return candidate

    weekday = _fixed(parts[4])
    if weekday is not None and weekday <= 7:
        days = weekday % 7 - _cron_weekday(candidate)
        if days <= 0:
            days += 7
        return candidate + timedelta(days=days)
    return candidate + timedelta(days=1)


def is_valid_time_of_day(value: str) -> bool:
    return isinstance(value, str) and bool(TIME_OF_DAY_RE.match(value))


def build_expression(schedule_type: ScheduleType | str, time_of_day: str) -> str:
    """Derive the stored expression from a schedule type and an HH:MM time."""
    if not is_valid_time_of_day(time_of_day):
        raise ValidationError("Invalid time format. Use HH:MM format (24-hour)")
    try:
        schedule_type = ScheduleType(schedule_type)
    except ValueError:
        raise ValidationError(f"Invalid schedule type: {schedule_type!r}") from None

    hours, minutes = (int(p) for p in time_of_day.split(":"))
    if schedule_type == ScheduleType.WEEKLY:
        return f"{minutes} {hours} * * {_WEEKLY_DAY}"
    return f"{minutes} {hours} * * *"
