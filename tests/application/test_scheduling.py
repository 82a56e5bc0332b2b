import time
from datetime import datetime, timedelta, timezone
from pathlib import Path
from zoneinfo import ZoneInfo

import pytest

from increading.application.scheduling import (
    end_of_review_day,
    interval_from_days,
    next_text_review_interval,
    priority_multiplier,
    validate_priority,
)
from increading.domain.constants import MS_PER_DAY
from increading.domain.errors import ValidationError

# A fixed zone keeps the rollover tests independent of the machine's locale.
LOCAL = timezone(timedelta(hours=-5))
NEW_YORK = ZoneInfo("America/New_York")


# --- Priority ---


@pytest.mark.parametrize("priority", [10, 25, 50])
def test_validate_priority_accepts_range(priority):
    assert validate_priority(priority) == priority


@pytest.mark.parametrize("priority", [9, 51, 25.5, "25", None, True])
def test_validate_priority_rejects(priority):
    with pytest.raises(ValidationError):
        validate_priority(priority)


def test_multiplier_grows_with_priority_number():
    assert priority_multiplier(10) == pytest.approx(1.01)
    assert priority_multiplier(25) == pytest.approx(1.235)
    assert priority_multiplier(50) == pytest.approx(1.61)
    multipliers = [priority_multiplier(p) for p in range(10, 51)]
    assert multipliers == sorted(multipliers)
    assert len(set(multipliers)) == len(multipliers)


# --- Interval ---


def test_interval_for_default_priority_from_one_day():
    assert next_text_review_interval(25, MS_PER_DAY) == 106_704_000


def test_interval_without_history_uses_base():
    assert next_text_review_interval(25, None) == next_text_review_interval(25, MS_PER_DAY)
    assert next_text_review_interval(25, 0) == next_text_review_interval(25, MS_PER_DAY)


def test_interval_is_pure():
    first = next_text_review_interval(40, 5 * MS_PER_DAY)
    assert all(next_text_review_interval(40, 5 * MS_PER_DAY) == first for _ in range(5))


def test_higher_priority_resurfaces_sooner():
    assert next_text_review_interval(10, MS_PER_DAY) < next_text_review_interval(50, MS_PER_DAY)


def test_interval_rejects_bad_priority():
    with pytest.raises(ValidationError):
        next_text_review_interval(5, MS_PER_DAY)


def test_interval_from_days():
    assert interval_from_days(3) == timedelta(days=3)
    assert interval_from_days(0.5) == timedelta(hours=12)
    assert interval_from_days(0) == timedelta(0)


@pytest.mark.parametrize("days", [float("nan"), float("inf"), float("-inf"), -1, 1e12, True, "3"])
def test_interval_from_days_rejects(days):
    with pytest.raises(ValidationError):
        interval_from_days(days)


# --- Day rollover ---


def _local(day, hour):
    return datetime(2024, 3, day, hour, 0, tzinfo=LOCAL)


def test_late_night_and_early_morning_share_a_boundary():
    late = end_of_review_day(_local(9, 23), rollover_hours=4, tz=LOCAL)
    early = end_of_review_day(_local(10, 3), rollover_hours=4, tz=LOCAL)
    assert late == early == _local(10, 4).astimezone(timezone.utc)


def test_boundary_moves_after_rollover_hour():
    before = end_of_review_day(_local(10, 3), rollover_hours=4, tz=LOCAL)
    after = end_of_review_day(_local(10, 5), rollover_hours=4, tz=LOCAL)
    assert after - before == timedelta(days=1)


def test_boundary_at_exact_rollover_is_next_day():
    assert end_of_review_day(_local(10, 4), rollover_hours=4, tz=LOCAL) == _local(11, 4)


def test_boundary_is_utc():
    boundary = end_of_review_day(_local(10, 12), tz=LOCAL)
    assert boundary.tzinfo == timezone.utc
    assert boundary == datetime(2024, 3, 11, 9, 0, tzinfo=timezone.utc)


def test_midnight_rollover():
    assert end_of_review_day(_local(10, 12), rollover_hours=0, tz=LOCAL) == _local(11, 0)


@pytest.mark.parametrize("hours", [-1, 24])
def test_rollover_out_of_range(hours):
    with pytest.raises(ValidationError):
        end_of_review_day(_local(10, 12), rollover_hours=hours, tz=LOCAL)


# --- Daylight saving ---


@pytest.fixture
def system_zone(monkeypatch):
    """Point the process's local zone at New York for the duration of a test."""
    if not hasattr(time, "tzset") or not Path("/usr/share/zoneinfo/America/New_York").exists():
        pytest.skip("system time zone database is unavailable")
    monkeypatch.setenv("TZ", "America/New_York")
    time.tzset()
    yield NEW_YORK
    monkeypatch.undo()
    time.tzset()


def test_boundary_keeps_wall_clock_hour_when_clocks_spring_forward():
    # 2024-03-10 02:00 EST jumps to 03:00 EDT
    now = datetime(2024, 3, 9, 12, 0, tzinfo=NEW_YORK)
    boundary = end_of_review_day(now, rollover_hours=4, tz=NEW_YORK)
    assert boundary == datetime(2024, 3, 10, 8, 0, tzinfo=timezone.utc)
    assert boundary.astimezone(NEW_YORK).hour == 4


def test_boundary_keeps_wall_clock_hour_when_clocks_fall_back():
    # 2024-11-03 02:00 EDT falls back to 01:00 EST
    now = datetime(2024, 11, 2, 12, 0, tzinfo=NEW_YORK)
    boundary = end_of_review_day(now, rollover_hours=4, tz=NEW_YORK)
    assert boundary == datetime(2024, 11, 3, 9, 0, tzinfo=timezone.utc)
    assert boundary - now == timedelta(hours=17)


def test_system_zone_boundary_follows_daylight_saving(system_zone):
    now = datetime(2024, 3, 9, 17, 0, tzinfo=timezone.utc)
    assert end_of_review_day(now, rollover_hours=4) == datetime(2024, 3, 10, 8, 0, tzinfo=timezone.utc)

    after_switch = datetime(2024, 3, 10, 12, 0, tzinfo=timezone.utc)
    assert end_of_review_day(after_switch, rollover_hours=4) == datetime(
        2024, 3, 11, 8, 0, tzinfo=timezone.utc
    )
