"""Tests for schedule expression validation and next-fire computation."""

from datetime import datetime, timedelta, timezone
from zoneinfo import ZoneInfo

import pytest

from core.errors import ValidationError
from scheduler.expression import (
    FALLBACK_DELAY,
    build_expression,
    is_valid_expression,
    is_valid_time_of_day,
    next_fire_time,
)
from scheduler.models import ScheduleType

UTC = timezone.utc

# 2025-01-15 is a Wednesday
WED = datetime(2025, 1, 15, tzinfo=UTC)


# ── Validation ───────────────────────────────────────────────────────────────

@pytest.mark.parametrize("expr", [
    "0 23 * * *",
    "30 9 * * 1",
    "59 23 31 12 7",
    "0 0 1 1 0",
    "1-5 0 * * *",       # ranges are accepted without interpretation
    "0,30 9 * * *",
    "*/15 * * * *",
    "  0   23 * *   * ",
])
def test_valid_expressions(expr):
    assert is_valid_expression(expr)


@pytest.mark.parametrize("expr", [
    "* * *",
    "",
    "0 23 * * * *",
    "60 0 * * *",
    "0 24 * * *",
    "0 0 0 * *",
    "0 0 32 * *",
    "0 0 * 13 *",
    "0 0 * * 8",
    "-1 0 * * *",
])
def test_invalid_expressions(expr):
    assert not is_valid_expression(expr)


# ── Fast path ────────────────────────────────────────────────────────────────

def test_daily_later_today():
    now = WED.replace(hour=22)
    assert next_fire_time("0 23 * * *", now) == WED.replace(hour=23)


def test_daily_already_passed_rolls_to_tomorrow():
    now = WED.replace(hour=23, minute=30)
    assert next_fire_time("0 23 * * *", now) == WED.replace(hour=23) + timedelta(days=1)


def test_exact_fire_time_is_not_in_the_future():
    now = WED.replace(hour=23)
    assert next_fire_time("0 23 * * *", now) == WED.replace(hour=23) + timedelta(days=1)


def test_weekly_advances_to_next_monday():
    now = WED.replace(hour=10)
    nxt = next_fire_time("30 9 * * 1", now)
    assert nxt == datetime(2025, 1, 20, 9, 30, tzinfo=UTC)
    assert nxt.weekday() == 0


@pytest.mark.parametrize("dow", ["0", "7"])
def test_sunday_as_zero_or_seven(dow):
    now = WED.replace(hour=10)
    assert next_fire_time(f"0 8 * * {dow}", now) == datetime(2025, 1, 19, 8, 0, tzinfo=UTC)


def test_weekly_same_weekday_already_passed_goes_a_week_ahead():
    now = WED.replace(hour=12)
    assert next_fire_time("0 9 * * 3", now) == datetime(2025, 1, 22, 9, 0, tzinfo=UTC)


def test_seconds_are_zeroed():
    now = WED.replace(hour=1, minute=2, second=3, microsecond=4)
    nxt = next_fire_time("0 5 * * *", now)
    assert (nxt.second, nxt.microsecond) == (0, 0)


def test_keeps_timezone_of_now():
    tz = ZoneInfo("Asia/Kolkata")
    now = datetime(2025, 1, 15, 22, 0, tzinfo=tz)
    nxt = next_fire_time("0 23 * * *", now)
    assert nxt.tzinfo is tz
    assert (nxt.hour, nxt.minute) == (23, 0)


@pytest.mark.parametrize("minute,hour", [(0, 0), (0, 23), (30, 9), (59, 12), (15, 6)])
@pytest.mark.parametrize("offset_hours", [0, 5, 9.5, 12, 23.99])
def test_fast_path_hits_minute_and_hour_in_the_future(minute, hour, offset_hours):
    now = WED + timedelta(hours=offset_hours)
    nxt = next_fire_time(f"{minute} {hour} * * *", now)
    assert nxt.minute == minute
    assert nxt.hour == hour
    assert nxt > now
    assert nxt - now <= timedelta(days=1)


# ── Fallback ─────────────────────────────────────────────────────────────────

@pytest.mark.parametrize("expr", [
    "* * *",
    "30 * * * *",
    "* 9 * * *",
    "*/5 * * * *",
    "0,30 9 * * *",
    "garbage",
])
def test_unsupported_shapes_fall_back_to_one_hour(expr):
    now = WED.replace(hour=10)
    assert next_fire_time(expr, now) == now + FALLBACK_DELAY


@pytest.mark.parametrize("expr", ["² 9 * * *", "0 ² * * *", "٣ 9 * * *"])
def test_non_ascii_digits_are_permissive_and_fall_back(expr):
    now = WED.replace(hour=10)
    assert is_valid_expression(expr)
    assert next_fire_time(expr, now) == now + FALLBACK_DELAY


def test_non_ascii_weekday_advances_one_day():
    now = WED.replace(hour=10)
    assert next_fire_time("0 9 * * ²", now) == WED.replace(hour=9) + timedelta(days=1)


def test_malformed_expression_is_invalid_and_falls_back():
    now = WED.replace(hour=10)
    assert not is_valid_expression("* * *")
    assert next_fire_time("* * *", now) == now + timedelta(hours=1)


# ── build_expression ─────────────────────────────────────────────────────────

def test_build_daily():
    assert build_expression(ScheduleType.DAILY, "23:00") == "0 23 * * *"


def test_build_weekly_is_friday():
    assert build_expression("weekly", "09:30") == "30 9 * * 5"


def test_build_custom_defaults_to_daily():
    assert build_expression("custom", "7:05") == "5 7 * * *"


def test_build_rejects_bad_time():
    with pytest.raises(ValidationError):
        build_expression("daily", "24:00")


def test_build_rejects_unknown_type():
    with pytest.raises(ValidationError):
        build_expression("hourly", "10:00")


@pytest.mark.parametrize("value,ok", [
    ("00:00", True), ("9:15", True), ("23:59", True),
    ("24:00", False), ("12:60", False), ("noon", False), ("", False),
])
def test_time_of_day_format(value, ok):
    assert is_valid_time_of_day(value) is ok
