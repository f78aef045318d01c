"""Tests for the SQLite interval store."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from dayline.models import RawInterval
from dayline.store import IntervalStore


def utc(*args) -> datetime:
    return datetime(*args, tzinfo=timezone.utc)


def make_interval(interval_id: str, start: datetime, end: datetime | None, **kwargs) -> RawInterval:
    return RawInterval(id=interval_id, start_at=start, end_at=end, **kwargs)


@pytest.fixture
def store():
    with IntervalStore.open_in_memory() as s:
        yield s


class TestInsertAndQuery:
    def test_insert_returns_true_then_false(self, store):
        interval = make_interval("e1", utc(2025, 9, 2, 8), utc(2025, 9, 2, 9))
        assert store.insert_interval(interval) is True
        assert store.insert_interval(interval) is False

    def test_roundtrip_preserves_fields(self, store):
        interval = make_interval(
            "e1",
            utc(2025, 9, 2, 8),
            utc(2025, 9, 2, 9),
            item_id="task-7",
            title="Write report",
            category_id="c2",
            note="first draft",
            tags=("writing", "focus"),
        )
        store.insert_interval(interval)
        loaded = store.get_interval("e1")
        assert loaded.start_at == interval.start_at
        assert loaded.end_at == interval.end_at
        assert loaded.item_id == "task-7"
        assert loaded.title == "Write report"
        assert loaded.category_id == "c2"
        assert loaded.note == "first draft"
        assert loaded.tags == ("focus", "writing")

    def test_get_intervals_returns_overlapping_only(self, store):
        store.insert_interval(make_interval("before", utc(2025, 9, 1, 8), utc(2025, 9, 1, 9)))
        store.insert_interval(make_interval("crossing", utc(2025, 9, 1, 23), utc(2025, 9, 2, 1)))
        store.insert_interval(make_interval("inside", utc(2025, 9, 2, 10), utc(2025, 9, 2, 11)))
        store.insert_interval(make_interval("after", utc(2025, 9, 3, 10), utc(2025, 9, 3, 11)))

        found = store.get_intervals(utc(2025, 9, 2, 0), utc(2025, 9, 2, 23, 59, 59))

        assert [i.id for i in found] == ["crossing", "inside"]

    def test_running_interval_included(self, store):
        store.insert_interval(make_interval("timer", utc(2025, 9, 1, 22), None))
        found = store.get_intervals(utc(2025, 9, 2, 0), utc(2025, 9, 2, 23, 59, 59))
        assert [i.id for i in found] == ["timer"]
        assert found[0].is_running

    def test_missing_interval(self, store):
        assert store.get_interval("nope") is None


class TestPrefixLookup:
    def test_unique_prefix(self, store):
        store.insert_interval(make_interval("abc123", utc(2025, 9, 2, 8), utc(2025, 9, 2, 9)))
        store.insert_interval(make_interval("def456", utc(2025, 9, 2, 8), utc(2025, 9, 2, 9)))
        assert store.get_interval_by_prefix("abc").id == "abc123"

    def test_ambiguous_prefix_raises(self, store):
        store.insert_interval(make_interval("abc123", utc(2025, 9, 2, 8), utc(2025, 9, 2, 9)))
        store.insert_interval(make_interval("abc456", utc(2025, 9, 2, 8), utc(2025, 9, 2, 9)))
        with pytest.raises(ValueError, match="Ambiguous"):
            store.get_interval_by_prefix("abc")

    def test_like_metacharacters_are_literal(self, store):
        store.insert_interval(make_interval("a_1", utc(2025, 9, 2, 8), utc(2025, 9, 2, 9)))
        store.insert_interval(make_interval("ab1", utc(2025, 9, 2, 8), utc(2025, 9, 2, 9)))
        assert store.get_interval_by_prefix("a_").id == "a_1"

    def test_no_match(self, store):
        assert store.get_interval_by_prefix("zzz") is None


class TestCorrections:
    def test_update_bounds_and_note(self, store):
        store.insert_interval(make_interval("e1", utc(2025, 9, 2, 8), utc(2025, 9, 2, 9)))
        assert store.update_interval("e1", end_at=utc(2025, 9, 2, 9, 30), note="ran long") is True
        loaded = store.get_interval("e1")
        assert loaded.end_at == utc(2025, 9, 2, 9, 30)
        assert loaded.note == "ran long"
        assert loaded.start_at == utc(2025, 9, 2, 8)

    def test_update_rejects_end_before_start(self, store):
        store.insert_interval(make_interval("e1", utc(2025, 9, 2, 8), utc(2025, 9, 2, 9)))
        with pytest.raises(ValueError, match="precedes"):
            store.update_interval("e1", end_at=utc(2025, 9, 2, 7))
        assert store.get_interval("e1").end_at == utc(2025, 9, 2, 9)

    def test_update_missing_returns_false(self, store):
        assert store.update_interval("nope", note="x") is False

    def test_delete_cascades_tags(self, store):
        store.insert_interval(make_interval("e1", utc(2025, 9, 2, 8), utc(2025, 9, 2, 9), tags=("a",)))
        assert store.delete_interval("e1") is True
        assert store.get_interval("e1") is None
        assert store.delete_interval("e1") is False
        # Reinserting the same id starts without the old tags
        store.insert_interval(make_interval("e1", utc(2025, 9, 2, 8), utc(2025, 9, 2, 9)))
        assert store.get_interval("e1").tags == ()


class TestTimers:
    def test_start_and_stop(self, store):
        started = store.start_timer(now=utc(2025, 9, 2, 5), title="Planning", category_id="c1")
        assert store.get_running().id == started.id
        assert started.source == "timer"

        stopped = store.stop_timer(utc(2025, 9, 2, 6))

        assert stopped.id == started.id
        assert stopped.end_at == utc(2025, 9, 2, 6)
        assert store.get_running() is None

    def test_start_stops_running_timer(self, store, caplog):
        first = store.start_timer(now=utc(2025, 9, 2, 5), title="First")
        with caplog.at_level("INFO", logger="dayline.store"):
            second = store.start_timer(now=utc(2025, 9, 2, 6), title="Second")

        assert store.get_interval(first.id).end_at == utc(2025, 9, 2, 6)
        assert store.get_running().id == second.id
        assert first.id in caplog.text

    def test_stop_without_timer(self, store):
        assert store.stop_timer(utc(2025, 9, 2, 6)) is None

    def test_stop_before_start_clamps_to_start(self, store):
        started = store.start_timer(now=utc(2025, 9, 2, 5), title="Skewed")
        stopped = store.stop_timer(utc(2025, 9, 2, 5) - timedelta(minutes=3))
        assert stopped.end_at == started.start_at


class TestMetadata:
    def test_categories(self, store):
        store.upsert_category("c1", "ZephyrOS", "#6366F1")
        store.upsert_category("c2", "Work")
        store.upsert_category("c1", "Zephyr", "#000000")

        categories = store.get_categories()

        assert set(categories) == {"c1", "c2"}
        assert categories["c1"].name == "Zephyr"
        assert categories["c1"].color == "#000000"
        assert categories["c2"].color == "#C6D2DE"

    def test_add_and_remove_tag(self, store):
        store.insert_interval(make_interval("e1", utc(2025, 9, 2, 8), utc(2025, 9, 2, 9)))
        assert store.add_tag("e1", "focus") is True
        assert store.add_tag("e1", "focus") is False
        assert store.get_interval("e1").tags == ("focus",)
        assert store.remove_tag("e1", "focus") is True
        assert store.remove_tag("e1", "focus") is False

    def test_tag_unknown_interval_raises(self, store):
        with pytest.raises(ValueError, match="No interval"):
            store.add_tag("nope", "focus")

    def test_interval_with_unknown_category_is_stored(self, store):
        store.insert_interval(
            make_interval("e1", utc(2025, 9, 2, 8), utc(2025, 9, 2, 9), category_id="gone")
        )
        assert store.get_interval("e1").category_id == "gone"


class TestOnDisk:
    def test_persists_between_opens(self, tmp_path):
        db_path = tmp_path / "intervals.db"
        with IntervalStore.open(db_path) as store:
            store.insert_interval(make_interval("e1", utc(2025, 9, 2, 8), utc(2025, 9, 2, 9)))
        with IntervalStore.open(db_path) as store:
            assert store.get_interval("e1") is not None
