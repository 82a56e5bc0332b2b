"""
Interval math for snippets and articles, and the review-day boundary.

Text items have no memory model: their interval grows geometrically from the
previous one, with the growth rate set by priority alone.
"""

import math
from datetime import datetime, time, timedelta, timezone, tzinfo

from increading.domain.constants import (
    BASE_MULTIPLIER,
    DEFAULT_ROLLOVER_HOURS,
    MAX_PRIORITY,
    MIN_PRIORITY,
    MULTIPLIER_STEP,
    TEXT_BASE_REVIEW_INTERVAL,
)
from increading.domain.errors import ValidationError
from increading.domain.timestamps import now_utc


def validate_priority(priority: object) -> int:
    """Accept only an integer in the stored range [10, 50]."""
    if isinstance(priority, bool) or not isinstance(priority, int):
        raise ValidationError(f"Priority must be an integer; received {priority!r}")
    if not MIN_PRIORITY <= priority <= MAX_PRIORITY:
        raise ValidationError(
            f"Priority must be between {MIN_PRIORITY} and {MAX_PRIORITY}; received {priority}"
        )
    return priority


def priority_multiplier(priority: int) -> float:
    return BASE_MULTIPLIER + (validate_priority(priority) - MIN_PRIORITY) * MULTIPLIER_STEP


def next_text_review_interval(
    priority: int, last_interval_ms: int | None = None
) -> int:
    """
    Next interval in milliseconds for a snippet or article.

    ``last_interval_ms`` is the interval scheduled at the previous review; items
    with no usable history start from the base interval of one day.
    """
    if last_interval_ms is None or last_interval_ms <= 0:
        last_interval_ms = TEXT_BASE_REVIEW_INTERVAL
    # Round half up, not to even.
    return int(math.floor(last_interval_ms * priority_multiplier(priority) + 0.5))


def interval_from_days(days: float) -> timedelta:
    """Convert a manual interval given in days, rejecting NaN, infinities and negatives."""
    if isinstance(days, bool) or not isinstance(days, (int, float)):
        raise ValidationError(f"Interval must be a number of days; received {days!r}")
    if not math.isfinite(days) or days < 0:
        raise ValidationError(
            f"Interval must be a finite, non-negative number of days; received {days}"
        )
    try:
        return timedelta(days=days)
    except OverflowError as e:
        raise ValidationError(f"Interval of {days} days is out of range") from e


def end_of_review_day(
    now: datetime | None = None,
    rollover_hours: int = DEFAULT_ROLLOVER_HOURS,
    tz: tzinfo | None = None,
) -> datetime:
    """
    End of the current review day as an aware UTC datetime.

    The day ends at ``rollover_hours`` past local midnight instead of at
    midnight itself. Once that moment has passed, the boundary is the same hour
    tomorrow. ``tz`` defaults to the system's local zone.
    """
    if not 0 <= rollover_hours < 24:
        raise ValidationError(f"Rollover must be between 0 and 23 hours; received {rollover_hours}")
    now = now or now_utc()
    if tz is None:
        # Naive local wall time; the boundary is resolved through the system zone below.
        local = now.astimezone().replace(tzinfo=None)
    else:
        local = now.astimezone(tz)
    day = local.date()
    if local.time() >= time(hour=rollover_hours):
        day += timedelta(days=1)
    # Combining on the calendar date keeps the boundary at the same wall-clock hour across DST.
    boundary = datetime.combine(day, time(hour=rollover_hours), tzinfo=tz)
    return boundary.astimezone(timezone.utc)
