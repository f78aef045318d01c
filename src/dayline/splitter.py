"""Clip raw intervals to local calendar days."""

from __future__ import annotations

import logging
from datetime import date, datetime, tzinfo
from typing import Iterable

from dayline.intervals import (
    TimeRange,
    as_utc,
    day_bounds,
    iter_days,
    require_aware,
    require_zone,
)
from dayline.models import DaySegment, RawInterval

logger = logging.getLogger(__name__)


def segment_id(original_id: str, day: date) -> str:
    """ID of the part of a cross-day interval that falls on ``day``."""
    return f"{original_id}@{day.isoformat()}"


def split_for_day(
    intervals: Iterable[RawInterval],
    day: date,
    tz: tzinfo,
    now: datetime,
    *,
    keep_zero_length: bool = False,
) -> list[DaySegment]:
    """Clip each interval to ``day`` in ``tz``.

    Running intervals (no end) are treated as ending at ``now`` for clipping
    only. Intervals with no overlap are dropped, as are corrupt ones whose end
    precedes their start.

    Args:
        intervals: Raw intervals, in any order.
        day: Local calendar day to clip to.
        tz: Viewer's timezone; day boundaries are computed here.
        now: Current instant (timezone-aware).
        keep_zero_length: Keep intervals whose start equals their end,
            as zero-minute segments.

    Returns:
        At most one segment per interval, in input order.

    Raises:
        TypeError: If ``tz`` is not a tzinfo.
        ValueError: If ``now`` is naive.
    """
    require_zone(tz)
    require_aware(now)
    day_start, day_end = day_bounds(day, tz)
    window = TimeRange(day_start, day_end)
    now = as_utc(now)

    segments: list[DaySegment] = []
    for interval in intervals:
        end = interval.end_at if interval.end_at is not None else now
        if end < interval.start_at:
            logger.warning(
                "Dropping interval %s: end %s precedes start %s",
                interval.id,
                end.isoformat(),
                interval.start_at.isoformat(),
            )
            continue

        clipped = interval.span.intersection(window, now=now)
        if clipped is None:
            if not (
                keep_zero_length
                and end == interval.start_at
                and day_start <= interval.start_at < day_end
            ):
                continue
            clipped = TimeRange(interval.start_at, interval.start_at)

        is_cross_day = interval.start_at < day_start or end > day_end
        segments.append(
            DaySegment(
                id=segment_id(interval.id, day) if is_cross_day else interval.id,
                original_id=interval.id,
                start_at=clipped.start,
                end_at=clipped.end,
                is_cross_day=is_cross_day,
                is_running=interval.is_running,
                duration_minutes=clipped.minutes,
                category_id=interval.category_id,
                title=interval.title,
                note=interval.note,
                tags=interval.tags,
            )
        )

    return segments


def split_for_range(
    intervals: Iterable[RawInterval],
    first_day: date,
    last_day: date,
    tz: tzinfo,
    now: datetime,
    *,
    keep_zero_length: bool = False,
) -> dict[date, list[DaySegment]]:
    """Split intervals across every local day from ``first_day`` to ``last_day``.

    Returns:
        Dict mapping each day (inclusive range) to its segments.
    """
    if last_day < first_day:
        raise ValueError(f"last_day {last_day} is before first_day {first_day}")

    intervals = list(intervals)
    return {
        day: split_for_day(intervals, day, tz, now, keep_zero_length=keep_zero_length)
        for day in iter_days(first_day, last_day)
    }
