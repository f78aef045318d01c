"""Data models for raw intervals, day segments and timeline output."""

from __future__ import annotations

from datetime import date, datetime
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from dayline.intervals import TimeRange, as_utc, parse_timestamp


def _coerce_instant(value: Any) -> Any:
    if isinstance(value, str):
        return parse_timestamp(value)
    if isinstance(value, datetime):
        return as_utc(value)
    return value


class RawInterval(BaseModel):
    """Interval record as fetched from storage.

    ``end_at`` is None while a timer is still running. Memory records may
    arrive with ``happened_range`` (a range literal or ``{start, end}``
    mapping) and ``captured_at`` instead of ``start_at``/``end_at``.
    """

    model_config = ConfigDict(frozen=True)

    id: str
    start_at: datetime
    end_at: datetime | None = None
    item_id: str | None = None
    title: str = ""
    category_id: str | None = None
    note: str | None = None
    tags: tuple[str, ...] = ()
    source: str = "manual"

    @model_validator(mode="before")
    @classmethod
    def _unpack_happened_range(cls, data: Any) -> Any:
        if not isinstance(data, dict) or "start_at" in data:
            return data

        span = data.get("happened_range")
        if span is None:
            if "captured_at" in data:
                # Instant memory: starts and ends when captured
                return {**data, "start_at": data["captured_at"], "end_at": data["captured_at"]}
            return data

        if isinstance(span, str):
            parsed = TimeRange.parse(span)
            start, end = parsed.start, parsed.end
        else:
            start, end = span.get("start"), span.get("end")
        return {**data, "start_at": start, "end_at": end if end is not None else start}

    @field_validator("start_at", "end_at", mode="before")
    @classmethod
    def _normalize_instant(cls, value: Any) -> Any:
        return _coerce_instant(value)

    @field_validator("tags", mode="before")
    @classmethod
    def _none_tags(cls, value: Any) -> Any:
        return () if value is None else value

    @property
    def is_running(self) -> bool:
        return self.end_at is None

    @property
    def span(self) -> TimeRange:
        return TimeRange(self.start_at, self.end_at)


class DaySegment(BaseModel):
    """A raw interval clipped to one local calendar day.

    ``is_cross_day`` and ``is_running`` are independent: a timer started
    yesterday and still running is both.
    """

    model_config = ConfigDict(frozen=True)

    id: str
    original_id: str
    start_at: datetime
    end_at: datetime
    is_cross_day: bool = False
    is_running: bool = False
    duration_minutes: int = Field(ge=0)
    category_id: str | None = None
    title: str = ""
    note: str | None = None
    tags: tuple[str, ...] = ()


class CategoryInfo(BaseModel):
    """Display metadata for a category."""

    model_config = ConfigDict(frozen=True)

    name: str
    color: str = "#C6D2DE"


class Gap(BaseModel):
    """Idle span between segments."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["gap"] = "gap"
    start_at: datetime
    end_at: datetime
    minutes: int


class SegmentBlock(BaseModel):
    """A day segment placed in a concurrency lane."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["segment"] = "segment"
    segment: DaySegment
    lane: int
    lane_count: int
    top_offset_minutes: int
    height_minutes: int

    @property
    def start_at(self) -> datetime:
        return self.segment.start_at

    @property
    def end_at(self) -> datetime:
        return self.segment.end_at


class NowMarker(BaseModel):
    """Current time on today's timeline."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["now"] = "now"
    at: datetime

    @property
    def start_at(self) -> datetime:
        return self.at


TimelineBlock = Annotated[Union[Gap, SegmentBlock, NowMarker], Field(discriminator="kind")]


class CategoryCount(BaseModel):
    id: str
    name: str
    color: str
    count: int


class CategoryMinutes(BaseModel):
    id: str
    name: str
    color: str
    minutes: int


class TagCount(BaseModel):
    name: str
    count: int


class TimelineStats(BaseModel):
    """Summary statistics for a set of day segments."""

    total_duration_minutes: int = 0
    categories: list[CategoryCount] = Field(default_factory=list)
    tags: list[TagCount] = Field(default_factory=list)


class DayTimeline(BaseModel):
    """Everything needed to render one local day."""

    day: date
    timezone: str
    segments: list[DaySegment]
    blocks: list[TimelineBlock]
    stats: TimelineStats
