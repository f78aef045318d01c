"""Summary statistics over day segments."""

from __future__ import annotations

from collections import Counter, defaultdict
from typing import Mapping, Sequence

from dayline.models import CategoryCount, CategoryInfo, CategoryMinutes, DaySegment, TagCount, TimelineStats

DEFAULT_TAG_LIMIT = 20


def aggregate(
    segments: Sequence[DaySegment],
    categories: Mapping[str, CategoryInfo],
    *,
    count_tags: bool = True,
    tag_limit: int | None = DEFAULT_TAG_LIMIT,
) -> TimelineStats:
    """Reduce segments to total duration, category counts and tag counts.

    Lanes play no part here: overlapping segments each contribute their full
    duration. Segments without a category, or whose category is missing from
    ``categories``, are left out of the category counts.

    Args:
        segments: Segments produced by the splitter.
        categories: Category metadata keyed by id.
        count_tags: Whether to count segment tags at all.
        tag_limit: Keep only the most frequent tags (None keeps all).

    Returns:
        TimelineStats with categories and tags sorted by count, descending.
    """
    total = sum(s.duration_minutes for s in segments)

    # Counter preserves first-seen order, so ties stay in encounter order
    category_counts = Counter(
        s.category_id for s in segments if s.category_id is not None and s.category_id in categories
    )
    by_category = [
        CategoryCount(
            id=category_id,
            name=categories[category_id].name,
            color=categories[category_id].color,
            count=count,
        )
        for category_id, count in category_counts.items()
    ]
    by_category.sort(key=lambda c: -c.count)

    tags: list[TagCount] = []
    if count_tags:
        tag_counts = Counter(tag for s in segments for tag in s.tags)
        tags = [TagCount(name=name, count=count) for name, count in tag_counts.items()]
        tags.sort(key=lambda t: -t.count)
        if tag_limit is not None:
            tags = tags[:tag_limit]

    return TimelineStats(total_duration_minutes=total, categories=by_category, tags=tags)


def category_minutes(
    segments: Sequence[DaySegment],
    categories: Mapping[str, CategoryInfo],
) -> list[CategoryMinutes]:
    """Sum segment minutes per known category, largest first."""
    minutes: dict[str, int] = defaultdict(int)
    for segment in segments:
        if segment.category_id is not None and segment.category_id in categories:
            minutes[segment.category_id] += segment.duration_minutes

    result = [
        CategoryMinutes(
            id=category_id,
            name=categories[category_id].name,
            color=categories[category_id].color,
            minutes=total,
        )
        for category_id, total in minutes.items()
    ]
    result.sort(key=lambda c: -c.minutes)
    return result
