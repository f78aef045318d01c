"""Lay out a day's segments as gaps, lanes and the now marker."""

from __future__ import annotations

from datetime import date, datetime, timedelta, tzinfo
from typing import Sequence

from dayline.intervals import as_utc, day_bounds, local_day, require_aware, require_zone, round_minutes
from dayline.models import DaySegment, Gap, NowMarker, SegmentBlock, TimelineBlock


def sort_segments(segments: Sequence[DaySegment]) -> list[DaySegment]:
    """Order segments by start, then original id, then id."""
    return sorted(segments, key=lambda s: (s.start_at, s.original_id, s.id))


def assign_lanes(segments: Sequence[DaySegment]) -> tuple[list[int], int]:
    """Greedy earliest-fit lane packing over start-ordered segments.

    Each segment goes to the lowest lane whose last segment has ended by the
    time it starts; a new lane opens when none has. The resulting lane count
    equals the maximum number of concurrently overlapping segments.

    Segments with identical spans never share a lane, including zero-length
    segments at the same instant.

    Args:
        segments: Segments already sorted by start.

    Returns:
        Tuple of (lane per segment, number of lanes opened).
    """
    lane_spans: list[tuple[datetime, datetime]] = []
    lanes: list[int] = []
    for segment in segments:
        span = (segment.start_at, segment.end_at)
        for index, (lane_start, lane_end) in enumerate(lane_spans):
            if lane_end <= segment.start_at and (lane_start, lane_end) != span:
                lane_spans[index] = span
                lanes.append(index)
                break
        else:
            lane_spans.append(span)
            lanes.append(len(lane_spans) - 1)
    return lanes, len(lane_spans)


def _gap(start: datetime, end: datetime) -> Gap:
    return Gap(start_at=start, end_at=end, minutes=round_minutes(end - start))


def compose(
    segments: Sequence[DaySegment],
    day: date,
    tz: tzinfo,
    now: datetime | None = None,
) -> list[TimelineBlock]:
    """Build the ordered block stream for one local day.

    Gaps fill every span of the day not covered by a segment. A now marker is
    placed only when ``day`` is the current local day in ``tz``.

    Args:
        segments: Segments produced by the splitter for ``day``.
        day: Local calendar day being rendered.
        tz: Viewer's timezone.
        now: Current instant, or None to never place a now marker.

    Returns:
        Blocks ordered by start instant.
    """
    require_zone(tz)
    day_start, day_end = day_bounds(day, tz)

    marker_at: datetime | None = None
    if now is not None and local_day(require_aware(now), tz) == day:
        marker_at = as_utc(now)

    ordered = sort_segments(segments)
    lanes, lane_count = assign_lanes(ordered)

    blocks: list[TimelineBlock] = []
    cursor = day_start

    def place_marker(before: datetime) -> None:
        nonlocal marker_at
        if marker_at is not None and marker_at < before:
            blocks.append(NowMarker(at=marker_at))
            marker_at = None

    for segment, lane in zip(ordered, lanes):
        if segment.start_at > cursor:
            # Now inside an already covered span sorts before the gap
            place_marker(cursor)
            blocks.append(_gap(cursor, segment.start_at))
        place_marker(segment.start_at)

        blocks.append(
            SegmentBlock(
                segment=segment,
                lane=lane,
                lane_count=lane_count,
                top_offset_minutes=round_minutes(segment.start_at - day_start),
                height_minutes=segment.duration_minutes,
            )
        )
        cursor = max(cursor, segment.end_at)

    if cursor < day_end:
        place_marker(cursor)
        blocks.append(_gap(cursor, day_end))
    place_marker(day_end + timedelta(milliseconds=1))

    return blocks
