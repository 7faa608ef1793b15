"""Epoch-millisecond helpers shared by the normalizer, policies and adapters."""

from __future__ import annotations

from datetime import date, datetime, timedelta, timezone

SECOND_MS = 1000
MINUTE_MS = 60 * SECOND_MS
HOUR_MS = 60 * MINUTE_MS
DAY_MS = 24 * HOUR_MS
WEEK_MS = 7 * DAY_MS

# Earliest day any of the tracked assets has meaningful data for
START_OF_CRYPTO = date(2009, 1, 1)


def to_iso(ts_ms: int) -> str:
    """Render epoch milliseconds as ``YYYY-MM-DDTHH:MM:SS.mmmZ`` (UTC)."""
    dt = datetime.fromtimestamp(ts_ms // 1000, tz=timezone.utc)
    return dt.strftime("%Y-%m-%dT%H:%M:%S") + f".{ts_ms % 1000:03d}Z"


def floor_to(ts_ms: int, width_ms: int) -> int:
    """Return the left edge of the ``width_ms`` bucket containing ``ts_ms``."""
    return (ts_ms // width_ms) * width_ms


def to_date_iso(ts_ms: int, days_ago: int = 0) -> str:
    """Return the UTC calendar date ``days_ago`` days before ``ts_ms``."""
    dt = datetime.fromtimestamp(ts_ms / 1000, tz=timezone.utc) - timedelta(days=days_ago)
    return dt.date().isoformat()


def date_to_ms(day: date) -> int:
    """Midnight UTC of ``day`` in epoch milliseconds."""
    dt = datetime(day.year, day.month, day.day, tzinfo=timezone.utc)
    return int(dt.timestamp()) * SECOND_MS


def next_day(day_iso: str) -> str:
    return (date.fromisoformat(day_iso) + timedelta(days=1)).isoformat()
