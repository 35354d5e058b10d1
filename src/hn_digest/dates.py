# src/hn_digest/dates.py

from __future__ import annotations

from datetime import UTC, date, datetime, time, timedelta


def parse_task_date(raw: str) -> date:
    """Validate a YYYY-MM-DD task date."""
    try:
        return date.fromisoformat(raw.strip())
    except ValueError as e:
        raise ValueError(f"Invalid task date {raw!r}, expected YYYY-MM-DD") from e


def today_str(now: datetime | None = None) -> str:
    now = now or datetime.now(UTC)
    return now.astimezone(UTC).date().isoformat()


def previous_day_boundaries(task_date: str) -> tuple[int, int]:
    """
    UTC boundaries of the calendar day before task_date, in unix seconds.

    The digest published on D covers stories posted during D-1:
    start = D-1 00:00:00, end = D-1 23:59:59.
    """
    day = parse_task_date(task_date) - timedelta(days=1)
    start = datetime.combine(day, time.min, tzinfo=UTC)
    end = datetime.combine(day, time(23, 59, 59), tzinfo=UTC)
    return int(start.timestamp()), int(end.timestamp())


def format_timestamp(unix_time: int | float, include_seconds: bool = False) -> str:
    """
    Format a unix timestamp as UTC "YYYY-MM-DD HH:MM" (or with seconds + " UTC").

    Values >= 1e10 are treated as milliseconds.
    """
    ts = float(unix_time)
    if ts >= 10_000_000_000:
        ts /= 1000.0
    dt = datetime.fromtimestamp(ts, tz=UTC)
    if include_seconds:
        return dt.strftime("%Y-%m-%d %H:%M:%S UTC")
    return dt.strftime("%Y-%m-%d %H:%M")
