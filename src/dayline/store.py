"""SQLite interval store for dayline."""

from __future__ import annotations

import logging
import sqlite3
import uuid
from collections import defaultdict
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from dayline.intervals import format_timestamp, parse_timestamp
from dayline.models import CategoryInfo, RawInterval

SCHEMA = """
CREATE TABLE IF NOT EXISTS categories (
    id TEXT PRIMARY KEY,
    name TEXT NOT NULL,
    color TEXT NOT NULL DEFAULT '#C6D2DE'
);

CREATE TABLE IF NOT EXISTS intervals (
    id TEXT PRIMARY KEY,
    start_at TEXT NOT NULL,
    end_at TEXT,
    item_id TEXT,
    title TEXT NOT NULL DEFAULT '',
    category_id TEXT,
    note TEXT,
    source TEXT NOT NULL DEFAULT 'manual',
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS interval_tags (
    interval_id TEXT NOT NULL,
    tag TEXT NOT NULL,
    PRIMARY KEY (interval_id, tag),
    FOREIGN KEY (interval_id) REFERENCES intervals(id) ON DELETE CASCADE
);

CREATE INDEX IF NOT EXISTS idx_intervals_start ON intervals(start_at);
CREATE INDEX IF NOT EXISTS idx_intervals_end ON intervals(end_at);
CREATE INDEX IF NOT EXISTS idx_interval_tags_tag ON interval_tags(tag);
"""

logger = logging.getLogger(__name__)


def _now_text() -> str:
    return format_timestamp(datetime.now(timezone.utc))


class IntervalStore:
    """SQLite-backed interval store.

    Not thread-safe. Each thread should have its own IntervalStore instance.
    """

    def __init__(self, conn: sqlite3.Connection) -> None:
        self._conn = conn
        self._conn.execute("PRAGMA foreign_keys = ON")
        self._init_schema()

    def __enter__(self) -> "IntervalStore":
        return self

    def __exit__(self, exc_type: type | None, exc_val: Exception | None, exc_tb: object) -> None:
        self.close()

    def close(self) -> None:
        """Close the database connection."""
        self._conn.close()

    def _init_schema(self) -> None:
        self._conn.executescript(SCHEMA)
        self._conn.commit()

    @classmethod
    def open(cls, path: Path) -> IntervalStore:
        """Open or create a database at the given path."""
        conn = sqlite3.connect(path)
        conn.row_factory = sqlite3.Row
        return cls(conn)

    @classmethod
    def open_in_memory(cls) -> IntervalStore:
        """Create an in-memory database for testing."""
        conn = sqlite3.connect(":memory:")
        conn.row_factory = sqlite3.Row
        return cls(conn)

    # Categories

    def upsert_category(self, category_id: str, name: str, color: str = "#C6D2DE") -> None:
        self._conn.execute(
            """
            INSERT INTO categories (id, name, color) VALUES (?, ?, ?)
            ON CONFLICT(id) DO UPDATE SET name = excluded.name, color = excluded.color
            """,
            (category_id, name, color),
        )
        self._conn.commit()

    def get_categories(self) -> dict[str, CategoryInfo]:
        """Get category metadata keyed by id."""
        cursor = self._conn.execute("SELECT id, name, color FROM categories ORDER BY name")
        return {row["id"]: CategoryInfo(name=row["name"], color=row["color"]) for row in cursor}

    # Intervals

    def insert_interval(self, interval: RawInterval) -> bool:
        """Insert an interval with its tags.

        Returns True if the interval was inserted, False if the ID already existed.
        """
        now = _now_text()
        cursor = self._conn.execute(
            """
            INSERT OR IGNORE INTO intervals
            (id, start_at, end_at, item_id, title, category_id, note, source, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                interval.id,
                format_timestamp(interval.start_at),
                format_timestamp(interval.end_at) if interval.end_at is not None else None,
                interval.item_id,
                interval.title,
                interval.category_id,
                interval.note,
                interval.source,
                now,
                now,
            ),
        )
        inserted = cursor.rowcount > 0
        if inserted:
            self._conn.executemany(
                "INSERT OR IGNORE INTO interval_tags (interval_id, tag) VALUES (?, ?)",
                [(interval.id, tag) for tag in interval.tags],
            )
        self._conn.commit()
        return inserted

    def get_intervals(self, start: datetime, end: datetime) -> list[RawInterval]:
        """Get intervals overlapping ``[start, end]``, including running ones.

        Returns:
            Intervals ordered by start ascending.
        """
        cursor = self._conn.execute(
            """
            SELECT * FROM intervals
            WHERE start_at <= ? AND (end_at IS NULL OR end_at >= ?)
            ORDER BY start_at ASC, id ASC
            """,
            (format_timestamp(end), format_timestamp(start)),
        )
        return self._to_intervals(cursor.fetchall())

    def get_interval(self, interval_id: str) -> RawInterval | None:
        cursor = self._conn.execute("SELECT * FROM intervals WHERE id = ?", (interval_id,))
        intervals = self._to_intervals(cursor.fetchall())
        return intervals[0] if intervals else None

    def get_interval_by_prefix(self, prefix: str) -> RawInterval | None:
        """Find an interval by ID prefix.

        Returns:
            The interval if exactly one matches, None if none does.

        Raises:
            ValueError: If prefix matches multiple intervals.
        """
        # Escape LIKE metacharacters to prevent pattern injection
        escaped = prefix.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
        cursor = self._conn.execute(
            "SELECT * FROM intervals WHERE id LIKE ? ESCAPE '\\'",
            (escaped + "%",),
        )
        rows = cursor.fetchall()
        if len(rows) > 1:
            ids = [row["id"][:8] for row in rows]
            raise ValueError(f"Ambiguous prefix '{prefix}' matches: {', '.join(ids)}")
        intervals = self._to_intervals(rows)
        return intervals[0] if intervals else None

    def update_interval(
        self,
        interval_id: str,
        *,
        start_at: datetime | None = None,
        end_at: datetime | None = None,
        note: str | None = None,
    ) -> bool:
        """Correct an interval's bounds or note.

        Returns:
            True if the interval was updated, False if it does not exist.

        Raises:
            ValueError: If the corrected end would precede the start.
        """
        current = self.get_interval(interval_id)
        if current is None:
            return False

        new_start = start_at if start_at is not None else current.start_at
        new_end = end_at if end_at is not None else current.end_at
        if new_end is not None and new_end < new_start:
            raise ValueError(
                f"End {new_end.isoformat()} precedes start {new_start.isoformat()}"
            )

        self._conn.execute(
            """
            UPDATE intervals
            SET start_at = ?, end_at = ?, note = ?, updated_at = ?
            WHERE id = ?
            """,
            (
                format_timestamp(new_start),
                format_timestamp(new_end) if new_end is not None else None,
                note if note is not None else current.note,
                _now_text(),
                interval_id,
            ),
        )
        self._conn.commit()
        return True

    def delete_interval(self, interval_id: str) -> bool:
        cursor = self._conn.execute("DELETE FROM intervals WHERE id = ?", (interval_id,))
        self._conn.commit()
        return cursor.rowcount > 0

    # Timers

    def get_running(self) -> RawInterval | None:
        """Get the running timer, if any (the latest one started)."""
        cursor = self._conn.execute(
            "SELECT * FROM intervals WHERE end_at IS NULL ORDER BY start_at DESC LIMIT 1"
        )
        intervals = self._to_intervals(cursor.fetchall())
        return intervals[0] if intervals else None

    def start_timer(
        self,
        *,
        now: datetime,
        item_id: str | None = None,
        title: str = "",
        category_id: str | None = None,
    ) -> RawInterval:
        """Start a timer, stopping any running one at ``now`` first."""
        running = self.get_running()
        if running is not None:
            logger.info("Stopping running timer %s to start a new one", running.id)
            self.stop_timer(now)

        interval = RawInterval(
            id=str(uuid.uuid4()),
            start_at=now,
            item_id=item_id,
            title=title,
            category_id=category_id,
            source="timer",
        )
        self.insert_interval(interval)
        return interval

    def stop_timer(self, now: datetime) -> RawInterval | None:
        """Stop every running timer at ``now``.

        Returns:
            The most recently started timer after stopping, or None if none ran.
        """
        running = self.get_running()
        if running is None:
            return None
        end_text = format_timestamp(max(now, running.start_at))
        self._conn.execute(
            """
            UPDATE intervals
            SET end_at = MAX(start_at, ?), updated_at = ?
            WHERE end_at IS NULL
            """,
            (end_text, _now_text()),
        )
        self._conn.commit()
        return self.get_interval(running.id)

    # Tags

    def add_tag(self, interval_id: str, tag: str) -> bool:
        """Add a tag to an interval.

        Returns:
            True if tag was added, False if it already existed.

        Raises:
            ValueError: If no interval has the given ID.
        """
        exists = self._conn.execute(
            "SELECT 1 FROM intervals WHERE id = ?", (interval_id,)
        ).fetchone()
        if exists is None:
            raise ValueError(f"No interval with ID '{interval_id}'")
        try:
            self._conn.execute(
                "INSERT INTO interval_tags (interval_id, tag) VALUES (?, ?)",
                (interval_id, tag),
            )
            self._conn.commit()
            return True
        except sqlite3.IntegrityError:
            # Tag already exists (PRIMARY KEY violation)
            return False

    def remove_tag(self, interval_id: str, tag: str) -> bool:
        """Remove a tag from an interval.

        Returns:
            True if tag was removed, False if it didn't exist.
        """
        cursor = self._conn.execute(
            "DELETE FROM interval_tags WHERE interval_id = ? AND tag = ?",
            (interval_id, tag),
        )
        self._conn.commit()
        return cursor.rowcount > 0

    def _load_tags(self, interval_ids: list[str]) -> dict[str, list[str]]:
        result: dict[str, list[str]] = defaultdict(list)
        # Batch queries to stay under SQLite's 999-parameter limit
        batch_size = 500
        for i in range(0, len(interval_ids), batch_size):
            batch = interval_ids[i : i + batch_size]
            placeholders = ",".join("?" * len(batch))
            cursor = self._conn.execute(
                f"SELECT interval_id, tag FROM interval_tags WHERE interval_id IN ({placeholders}) ORDER BY tag",
                batch,
            )
            for row in cursor:
                result[row["interval_id"]].append(row["tag"])
        return dict(result)

    def _to_intervals(self, rows: list[sqlite3.Row]) -> list[RawInterval]:
        tags = self._load_tags([row["id"] for row in rows]) if rows else {}
        return [_row_to_interval(dict(row), tags.get(row["id"], [])) for row in rows]


def _row_to_interval(row: dict[str, Any], tags: list[str]) -> RawInterval:
    return RawInterval(
        id=row["id"],
        start_at=parse_timestamp(row["start_at"]),
        end_at=parse_timestamp(row["end_at"]) if row["end_at"] else None,
        item_id=row["item_id"],
        title=row["title"],
        category_id=row["category_id"],
        note=row["note"],
        tags=tuple(tags),
        source=row["source"],
    )
