"""Instants, local days and the half-open range value type."""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone, tzinfo
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

# Last representable instant of a local day (23:59:59.999)
DAY_END_TIME = time(23, 59, 59, 999_000)

_SHORT_OFFSET = re.compile(r"(:\d{2}(?:\.\d+)?[+-]\d{2})$")


class RangeParseError(ValueError):
    """Raised when a range literal cannot be read."""


def parse_timestamp(ts: str) -> datetime:
    """Parse an ISO 8601 timestamp to an aware UTC datetime.

    Accepts a trailing ``Z``, short ``+HH`` offsets as written by Postgres,
    and naive values (interpreted as UTC).

    Raises:
        ValueError: If the text is not a timestamp.
    """
    text = ts.strip().replace("Z", "+00:00")
    text = _SHORT_OFFSET.sub(r"\1:00", text)
    dt = datetime.fromisoformat(text)
    return as_utc(dt)


def format_timestamp(dt: datetime) -> str:
    """Format as fixed-width UTC text (sorts lexicographically)."""
    utc = as_utc(dt)
    return utc.strftime("%Y-%m-%dT%H:%M:%S.") + f"{utc.microsecond // 1000:03d}Z"


def as_utc(dt: datetime) -> datetime:
    """Return ``dt`` in UTC; naive values are taken to be UTC already."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def round_minutes(delta: timedelta) -> int:
    """Whole minutes in ``delta``, rounded half-up, never negative."""
    seconds = delta.total_seconds()
    if seconds <= 0:
        return 0
    return int((seconds + 30) // 60)


def resolve_zone(name: str) -> ZoneInfo:
    """Look up an IANA zone by name.

    Raises:
        ValueError: If the zone is unknown.
    """
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError) as e:
        raise ValueError(f"Unknown timezone: {name!r}") from e


def require_zone(tz: object) -> tzinfo:
    """Check that a caller supplied a resolved zone."""
    if not isinstance(tz, tzinfo):
        raise TypeError(f"tz must be a tzinfo instance, got {type(tz).__name__}")
    return tz


def require_aware(dt: datetime, name: str = "now") -> datetime:
    """Check that ``dt`` carries an offset."""
    if dt.tzinfo is None or dt.utcoffset() is None:
        raise ValueError(f"{name} must be timezone-aware")
    return dt


def day_bounds(day: date, tz: tzinfo) -> tuple[datetime, datetime]:
    """Get local midnight to 23:59:59.999 of ``day`` in ``tz``, as UTC instants.

    On DST transition days the span is 23 or 25 hours long.
    """
    require_zone(tz)
    start = datetime.combine(day, time.min, tzinfo=tz)
    end = datetime.combine(day, DAY_END_TIME, tzinfo=tz)
    return as_utc(start), as_utc(end)


def local_day(instant: datetime, tz: tzinfo) -> date:
    """Calendar day that ``instant`` falls on in ``tz``."""
    require_zone(tz)
    return require_aware(instant, "instant").astimezone(tz).date()


def iter_days(first: date, last: date):
    """Yield every calendar day from ``first`` to ``last`` inclusive."""
    current = first
    while current <= last:
        yield current
        current += timedelta(days=1)


@dataclass(frozen=True)
class TimeRange:
    """Half-open ``[start, end)`` span of time.

    ``end`` is None for a span that has not finished yet.
    """

    start: datetime
    end: datetime | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "start", as_utc(self.start))
        if self.end is not None:
            object.__setattr__(self, "end", as_utc(self.end))

    @classmethod
    def parse(cls, text: str) -> TimeRange:
        """Read a range literal such as ``[2025-09-02T08:00:00Z, 2025-09-02T09:00:00Z)``.

        Both the plain form and the Postgres quoted form are accepted. An empty
        upper bound means the range is still open.

        Raises:
            RangeParseError: On anything but a ``[lower, upper)`` literal.
        """
        literal = text.strip()
        if literal == "empty":
            raise RangeParseError("empty range has no bounds")
        if len(literal) < 3 or literal[0] != "[" or literal[-1] != ")":
            raise RangeParseError(f"expected '[lower,upper)' range literal: {text!r}")

        parts = literal[1:-1].split(",")
        if len(parts) != 2:
            raise RangeParseError(f"expected exactly two bounds: {text!r}")

        lower, upper = (p.strip().strip('"') for p in parts)
        if not lower:
            raise RangeParseError(f"range has no lower bound: {text!r}")
        try:
            start = parse_timestamp(lower)
            end = parse_timestamp(upper) if upper else None
        except ValueError as e:
            raise RangeParseError(f"bad timestamp in range {text!r}: {e}") from e
        return cls(start, end)

    def format(self) -> str:
        upper = format_timestamp(self.end) if self.end is not None else ""
        return f"[{format_timestamp(self.start)},{upper})"

    def resolve_end(self, now: datetime) -> datetime:
        """End of the range, substituting ``now`` while it is still open."""
        return self.end if self.end is not None else as_utc(now)

    def intersection(self, other: TimeRange, *, now: datetime) -> TimeRange | None:
        """Overlap with ``other``, or None when the two do not overlap."""
        start = max(self.start, other.start)
        end = min(self.resolve_end(now), other.resolve_end(now))
        if start >= end:
            return None
        return TimeRange(start, end)

    @property
    def duration(self) -> timedelta:
        if self.end is None:
            raise ValueError("open range has no duration")
        return max(timedelta(0), self.end - self.start)

    @property
    def minutes(self) -> int:
        return round_minutes(self.duration)

    def __str__(self) -> str:
        return self.format()
