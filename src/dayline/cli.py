"""CLI entry point for dayline."""

from __future__ import annotations

import json
import logging
import sys
from datetime import date, datetime, timedelta, timezone, tzinfo
from pathlib import Path

import click
from pydantic import ValidationError

from dayline.aggregator import aggregate, category_minutes
from dayline.intervals import day_bounds, local_day, parse_timestamp, resolve_zone
from dayline.models import CategoryInfo, Gap, NowMarker, RawInterval, SegmentBlock
from dayline.pipeline import build_day, zone_name
from dayline.splitter import split_for_range
from dayline.store import IntervalStore

DEFAULT_DB_PATH = Path.home() / ".local" / "share" / "dayline" / "intervals.db"


def format_duration(minutes: int) -> str:
    """Format minutes as 'Xh Ym' or 'Ym'."""
    if minutes <= 0:
        return "0m"
    hours, mins = divmod(minutes, 60)
    if hours > 0:
        return f"{hours}h {mins:2d}m"
    return f"{mins}m"


def make_share_bar(minutes: int, total_minutes: int, width: int = 20) -> str:
    """Bar and percentage showing ``minutes`` as a share of ``total_minutes``.

    Any nonzero share fills at least one cell.
    """
    if total_minutes <= 0:
        return "░" * width + "   0%"
    share = minutes / total_minutes
    filled = min(width, round(share * width))
    if minutes > 0:
        filled = max(1, filled)
    return f"{'█' * filled}{'░' * (width - filled)} {share:4.0%}"


def get_week_days(day: date) -> tuple[date, date]:
    """Get Monday and Sunday of the week containing ``day``."""
    monday = day - timedelta(days=day.weekday())
    return monday, monday + timedelta(days=6)


def format_date_range(first: date, last: date) -> str:
    """Format a day range for report headers.

    Returns:
        Formatted string like "Jan 20-26, 2025" or "Jan 28, 2025".
    """
    if first == last:
        return first.strftime("%b %d, %Y")
    if first.month == last.month:
        return f"{first.strftime('%b')} {first.day}-{last.day}, {first.year}"
    elif first.year == last.year:
        return f"{first.strftime('%b %d')} - {last.strftime('%b %d')}, {first.year}"
    else:
        return f"{first.strftime('%b %d, %Y')} - {last.strftime('%b %d, %Y')}"


def _resolve_tz(ctx: click.Context, param: click.Parameter, value: str | None) -> tzinfo:
    if not value:
        # System local zone as a fixed offset
        return datetime.now().astimezone().tzinfo
    try:
        return resolve_zone(value)
    except ValueError as e:
        raise click.BadParameter(str(e)) from e


def _resolve_now(ctx: click.Context, param: click.Parameter, value: str | None) -> datetime:
    if not value:
        return datetime.now(timezone.utc)
    try:
        return parse_timestamp(value)
    except ValueError as e:
        raise click.BadParameter(f"Invalid timestamp: {value}") from e


def _parse_day(value: str, tz: tzinfo, now: datetime) -> date:
    if value == "today":
        return local_day(now, tz)
    try:
        return datetime.strptime(value, "%Y-%m-%d").date()
    except ValueError:
        click.echo(f"Invalid date format: {value}. Use YYYY-MM-DD.", err=True)
        sys.exit(1)


def _parse_instant(value: str, tz: tzinfo) -> datetime:
    """Parse a user-supplied timestamp; values without an offset are local."""
    try:
        dt = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        click.echo(f"Invalid timestamp: {value}", err=True)
        sys.exit(1)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=tz)
    return dt.astimezone(timezone.utc)


def _find_interval(store: IntervalStore, prefix: str) -> RawInterval:
    try:
        interval = store.get_interval_by_prefix(prefix)
    except ValueError as e:
        click.echo(str(e), err=True)
        sys.exit(1)
    if interval is None:
        click.echo(f"No interval found matching '{prefix}'", err=True)
        sys.exit(1)
    return interval


def _hm(dt: datetime, tz: tzinfo) -> str:
    return dt.astimezone(tz).strftime("%H:%M")


db_option = click.option(
    "--db",
    type=click.Path(path_type=Path),
    default=DEFAULT_DB_PATH,
    help="Path to SQLite database",
)
tz_option = click.option(
    "--tz",
    envvar="DAYLINE_TZ",
    default=None,
    callback=_resolve_tz,
    help="IANA timezone for day boundaries (default: system local)",
)
now_option = click.option(
    "--now",
    default=None,
    callback=_resolve_now,
    hidden=True,
    help="Override the current time (ISO 8601)",
)
instants_option = click.option(
    "--instants/--no-instants",
    default=True,
    help="Show zero-length intervals such as captured memories (default: show)",
)


@click.group()
@click.option("-v", "--verbose", is_flag=True, help="Log diagnostics to stderr")
def main(verbose: bool) -> None:
    """Day timeline CLI."""
    if verbose:
        logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")


@main.command("import")
@db_option
def import_intervals(db: Path) -> None:
    """Import intervals from stdin (JSONL format).

    Each line is an interval record with id, start_at and optionally end_at,
    item_id, title, category_id, note and tags. Memory records with a
    happened_range are accepted too. Duplicate IDs are silently skipped.

    Example usage:
        cat intervals.jsonl | dayline import
    """
    db.parent.mkdir(parents=True, exist_ok=True)

    imported_count = 0
    valid_count = 0
    has_input = False

    with IntervalStore.open(db) as store:
        for line_number, line in enumerate(sys.stdin, 1):
            stripped = line.strip()
            if not stripped:
                continue

            has_input = True

            try:
                data = json.loads(stripped)
                interval = RawInterval.model_validate(data)
                valid_count += 1
                if store.insert_interval(interval):
                    imported_count += 1
            except json.JSONDecodeError as e:
                click.echo(f"Warning: line {line_number}: invalid JSON: {e}", err=True)
            except ValidationError as e:
                click.echo(f"Warning: line {line_number}: validation error: {e}", err=True)

    click.echo(f"Imported {imported_count} intervals")

    # Exit code 1 if we had input but no valid intervals (all lines were errors)
    if has_input and valid_count == 0:
        sys.exit(1)


@main.command("category")
@click.argument("category_id")
@click.argument("name")
@click.option("--color", default="#C6D2DE", help="Display color (hex)")
@db_option
def category_command(category_id: str, name: str, color: str, db: Path) -> None:
    """Create or rename a category."""
    db.parent.mkdir(parents=True, exist_ok=True)
    with IntervalStore.open(db) as store:
        store.upsert_category(category_id, name, color)
    click.echo(f"Category {category_id}: {name} ({color})")


@main.command("start")
@click.argument("title")
@click.option("--item", "item_id", default=None, help="ID of the task or activity being timed")
@click.option("--category", "category_id", default=None, help="Category ID")
@db_option
@tz_option
@now_option
def start_command(
    title: str,
    item_id: str | None,
    category_id: str | None,
    db: Path,
    tz: tzinfo,
    now: datetime,
) -> None:
    """Start a timer, stopping the running one if any."""
    db.parent.mkdir(parents=True, exist_ok=True)
    with IntervalStore.open(db) as store:
        previous = store.get_running()
        interval = store.start_timer(
            now=now, item_id=item_id, title=title, category_id=category_id
        )

    if previous is not None:
        click.echo(f"Stopped '{previous.title}'")
    click.echo(f"Started '{title}' at {_hm(interval.start_at, tz)} ({interval.id[:8]})")


@main.command("stop")
@click.option("--at", "at", default=None, help="End time (ISO 8601, default: now)")
@db_option
@tz_option
@now_option
def stop_command(at: str | None, db: Path, tz: tzinfo, now: datetime) -> None:
    """Stop the running timer."""
    if not db.exists():
        click.echo("No database found", err=True)
        sys.exit(1)

    end = _parse_instant(at, tz) if at else now
    with IntervalStore.open(db) as store:
        stopped = store.stop_timer(end)

    if stopped is None:
        click.echo("No timer running")
        return
    minutes = stopped.span.minutes
    click.echo(f"Stopped '{stopped.title}' at {_hm(stopped.end_at, tz)} ({format_duration(minutes)})")


@main.command("edit")
@click.argument("interval_id")
@click.option("--start", "start", default=None, help="New start (ISO 8601)")
@click.option("--end", "end", default=None, help="New end (ISO 8601)")
@click.option("--note", default=None, help="New note")
@db_option
@tz_option
def edit_command(
    interval_id: str,
    start: str | None,
    end: str | None,
    note: str | None,
    db: Path,
    tz: tzinfo,
) -> None:
    """Correct an interval.

    INTERVAL_ID may be a prefix; the ID of a cross-day segment's source
    interval is the part before '@'.
    """
    if not db.exists():
        click.echo("No database found", err=True)
        sys.exit(1)

    with IntervalStore.open(db) as store:
        interval = _find_interval(store, interval_id.split("@", 1)[0])
        try:
            store.update_interval(
                interval.id,
                start_at=_parse_instant(start, tz) if start else None,
                end_at=_parse_instant(end, tz) if end else None,
                note=note,
            )
        except ValueError as e:
            click.echo(str(e), err=True)
            sys.exit(1)
        updated = store.get_interval(interval.id)

    click.echo(f"Updated {updated.id[:8]}: {updated.span.format()}")


@main.command("delete")
@click.argument("interval_id")
@db_option
def delete_command(interval_id: str, db: Path) -> None:
    """Delete an interval."""
    if not db.exists():
        click.echo("No database found", err=True)
        sys.exit(1)

    with IntervalStore.open(db) as store:
        interval = _find_interval(store, interval_id.split("@", 1)[0])
        store.delete_interval(interval.id)

    click.echo(f"Deleted {interval.id[:8]} ('{interval.title}')")


@main.command("tag")
@click.argument("interval_id")
@click.argument("tag")
@db_option
def tag_command(interval_id: str, tag: str, db: Path) -> None:
    """Add a tag to an interval."""
    if not db.exists():
        click.echo("No database found", err=True)
        sys.exit(1)

    with IntervalStore.open(db) as store:
        interval = _find_interval(store, interval_id.split("@", 1)[0])
        if store.add_tag(interval.id, tag):
            click.echo(f"Tagged {interval.id[:8]} with '{tag}'")
        else:
            click.echo(f"Interval {interval.id[:8]} already has tag '{tag}'")


@main.command("untag")
@click.argument("interval_id")
@click.argument("tag")
@db_option
def untag_command(interval_id: str, tag: str, db: Path) -> None:
    """Remove a tag from an interval."""
    if not db.exists():
        click.echo("No database found", err=True)
        sys.exit(1)

    with IntervalStore.open(db) as store:
        interval = _find_interval(store, interval_id.split("@", 1)[0])
        if store.remove_tag(interval.id, tag):
            click.echo(f"Removed '{tag}' from {interval.id[:8]}")
        else:
            click.echo(f"Interval {interval.id[:8]} has no tag '{tag}'")


@main.command("timeline")
@click.option("--day", "day_value", default="today", help="Day to show (YYYY-MM-DD, default: today)")
@click.option("--json", "output_json", is_flag=True, help="Output as JSON")
@db_option
@tz_option
@now_option
@instants_option
def timeline_command(
    day_value: str,
    output_json: bool,
    db: Path,
    tz: tzinfo,
    now: datetime,
    instants: bool,
) -> None:
    """Show one day's timeline with idle gaps and overlap lanes."""
    if not db.exists():
        click.echo("No database found", err=True)
        sys.exit(1)

    day = _parse_day(day_value, tz, now)
    start, end = day_bounds(day, tz)
    with IntervalStore.open(db) as store:
        intervals = store.get_intervals(start, end)
        categories = store.get_categories()

    timeline = build_day(intervals, day, tz, now, categories, keep_zero_length=instants)

    if output_json:
        click.echo(json.dumps(timeline.model_dump(mode="json"), indent=2))
        return

    click.echo(f"Timeline: {format_date_range(day, day)} ({timeline.timezone})")
    click.echo()

    for block in timeline.blocks:
        if isinstance(block, Gap):
            click.echo(
                f"  {_hm(block.start_at, tz)}-{_hm(block.end_at, tz)}  ·  idle {format_duration(block.minutes)}"
            )
        elif isinstance(block, NowMarker):
            click.echo(f"  ▶ now {_hm(block.at, tz)}")
        elif isinstance(block, SegmentBlock):
            click.echo(_format_segment_line(block, categories, tz))

    click.echo()
    click.echo(f"Total: {format_duration(timeline.stats.total_duration_minutes)}")


def _format_segment_line(
    block: SegmentBlock, categories: dict[str, CategoryInfo], tz: tzinfo
) -> str:
    segment = block.segment
    title = segment.title or "Time Entry"
    category = categories.get(segment.category_id) if segment.category_id else None
    is_instant = segment.start_at == segment.end_at
    if is_instant:
        line = f"  {_hm(segment.start_at, tz):<11}  ◆  {title}"
    else:
        line = f"  {_hm(segment.start_at, tz)}-{_hm(segment.end_at, tz)}  ■  {title}"
    if category is not None:
        line += f" [{category.name}]"
    if not is_instant:
        line += f"  {format_duration(segment.duration_minutes)}"

    flags = []
    if segment.is_cross_day:
        flags.append("cross-day")
    if segment.is_running:
        flags.append("running")
    if block.lane_count > 1:
        flags.append(f"lane {block.lane + 1}/{block.lane_count}")
    if flags:
        line += f"  ({', '.join(flags)})"
    return line


@main.command("stats")
@click.option(
    "--day",
    "day_value",
    type=str,
    default=None,
    is_flag=False,
    flag_value="today",
    help="Daily stats (YYYY-MM-DD, default: today)",
)
@click.option("--week", "week", is_flag=True, help="Weekly stats (Mon-Sun, the default)")
@click.option("--json", "output_json", is_flag=True, help="Output as JSON")
@db_option
@tz_option
@now_option
@instants_option
def stats_command(
    day_value: str | None,
    week: bool,
    output_json: bool,
    db: Path,
    tz: tzinfo,
    now: datetime,
    instants: bool,
) -> None:
    """Show tracked time by category and tag.

    By default shows the current week (Monday-Sunday). Use --day for a single
    day, optionally with a specific date in YYYY-MM-DD format.
    """
    if not db.exists():
        click.echo("No database found", err=True)
        sys.exit(1)

    if day_value is not None and not week:
        first = last = _parse_day(day_value, tz, now)
    else:
        first, last = get_week_days(local_day(now, tz))

    start, _ = day_bounds(first, tz)
    _, end = day_bounds(last, tz)
    with IntervalStore.open(db) as store:
        intervals = store.get_intervals(start, end)
        categories = store.get_categories()

    by_day = split_for_range(intervals, first, last, tz, now, keep_zero_length=instants)
    segments = [segment for day_segments in by_day.values() for segment in day_segments]
    stats = aggregate(segments, categories)
    minutes = category_minutes(segments, categories)
    days_with_data = sum(1 for day_segments in by_day.values() if day_segments)

    if output_json:
        output = {
            "period": {
                "start": first.isoformat(),
                "end": last.isoformat(),
                "days_with_data": days_with_data,
            },
            "timezone": zone_name(tz),
            **stats.model_dump(mode="json"),
            "category_minutes": [c.model_dump(mode="json") for c in minutes],
        }
        click.echo(json.dumps(output, indent=2))
        return

    header = format_date_range(first, last)
    if first != last and days_with_data < 7:
        header += f" ({days_with_data} days with data)"
    click.echo(f"Time Report: {header}")
    click.echo()

    if stats.total_duration_minutes == 0:
        click.echo("No time tracked for this period.")
        return

    click.echo(f"Total: {format_duration(stats.total_duration_minutes)}")
    click.echo()

    click.echo("By Category:")
    for entry in minutes:
        # Truncate long names
        name = entry.name if len(entry.name) <= 20 else entry.name[:17] + "..."
        bar = make_share_bar(entry.minutes, stats.total_duration_minutes)
        click.echo(f"  {name:<20} {format_duration(entry.minutes):>9}   {bar}")
    uncategorized = stats.total_duration_minutes - sum(c.minutes for c in minutes)
    if uncategorized > 0:
        bar = make_share_bar(uncategorized, stats.total_duration_minutes)
        click.echo(f"  {'(uncategorized)':<20} {format_duration(uncategorized):>9}   {bar}")

    if stats.tags:
        click.echo()
        click.echo("Top Tags:")
        for tag in stats.tags:
            click.echo(f"  {tag.name:<20} {tag.count:>3}")


if __name__ == "__main__":
    main()
