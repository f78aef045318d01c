"""Run the split, compose and aggregate stages for one day."""

from __future__ import annotations

import logging
from datetime import date, datetime, tzinfo
from typing import Any, Iterable, Mapping

from pydantic import ValidationError

from dayline.aggregator import DEFAULT_TAG_LIMIT, aggregate
from dayline.compositor import compose
from dayline.models import CategoryInfo, DayTimeline, RawInterval
from dayline.splitter import split_for_day

logger = logging.getLogger(__name__)


def load_intervals(rows: Iterable[Mapping[str, Any]]) -> list[RawInterval]:
    """Validate collaborator rows, skipping ones that cannot be read.

    Rows with missing fields or non-parseable timestamps are logged and
    dropped so that one bad record never fails a whole day.
    """
    intervals: list[RawInterval] = []
    for row in rows:
        try:
            intervals.append(RawInterval.model_validate(row))
        except ValidationError as e:
            logger.warning("Skipping interval %s: %s", row.get("id", "<no id>"), e)
    return intervals


def zone_name(tz: tzinfo) -> str:
    """Best display name for a tzinfo (IANA key when there is one)."""
    return getattr(tz, "key", None) or str(tz)


def build_day(
    intervals: Iterable[RawInterval],
    day: date,
    tz: tzinfo,
    now: datetime,
    categories: Mapping[str, CategoryInfo] | None = None,
    *,
    keep_zero_length: bool = False,
    tag_limit: int | None = DEFAULT_TAG_LIMIT,
) -> DayTimeline:
    """Split intervals for ``day``, then compose and aggregate the segments.

    Both the block layout and the statistics come from the same segments.
    """
    segments = split_for_day(intervals, day, tz, now, keep_zero_length=keep_zero_length)
    return DayTimeline(
        day=day,
        timezone=zone_name(tz),
        segments=segments,
        blocks=compose(segments, day, tz, now),
        stats=aggregate(segments, categories or {}, tag_limit=tag_limit),
    )
