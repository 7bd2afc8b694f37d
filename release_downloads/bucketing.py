"""
Daily bucketing helpers
A run is attributed to a calendar "bucket day" by a UTC cutoff time, not by
the wall-clock date: runs before the cutoff belong to the previous day.
"""

import re
from datetime import date, datetime, time, timedelta, timezone
from typing import List, Optional

from .exceptions import ConfigError

_CUTOFF_PATTERN = re.compile(r"^([01]?\d|2[0-3]):([0-5]\d)$")


def parse_cutoff_minutes(value: str) -> int:
    """Parse an 'HH:MM' cutoff into minutes after midnight UTC"""
    match = _CUTOFF_PATTERN.match(str(value).strip())
    if not match:
        raise ConfigError(f"Invalid DAILY_CUTOFF_UTC: {value}")
    return int(match.group(1)) * 60 + int(match.group(2))


def _as_utc(now: Optional[datetime]) -> datetime:
    if now is None:
        return datetime.now(timezone.utc)
    if now.tzinfo is None:
        return now.replace(tzinfo=timezone.utc)
    return now.astimezone(timezone.utc)


def get_bucket_date(cutoff_utc: str, now: Optional[datetime] = None) -> date:
    """Return the bucket day the given instant is attributed to"""
    cutoff_minutes = parse_cutoff_minutes(cutoff_utc)
    now = _as_utc(now)
    bucket = now.date()
    if now.hour * 60 + now.minute < cutoff_minutes:
        bucket -= timedelta(days=1)
    return bucket


def next_update_time(cutoff_utc: str, now: Optional[datetime] = None) -> datetime:
    """Next instant (UTC) at the daily cutoff, strictly after now"""
    cutoff_minutes = parse_cutoff_minutes(cutoff_utc)
    now = _as_utc(now)
    target = datetime.combine(
        now.date(),
        time(cutoff_minutes // 60, cutoff_minutes % 60),
        tzinfo=timezone.utc,
    )
    if now >= target:
        target += timedelta(days=1)
    return target


def parse_date(value: str) -> date:
    try:
        return date.fromisoformat(value)
    except (TypeError, ValueError):
        raise ValueError(f"Invalid date (expected YYYY-MM-DD): {value!r}")


def days_between(start: date, end: date) -> int:
    """Whole days from start (exclusive) to end (inclusive)"""
    return (end - start).days


def dates_after(start: date, count: int) -> List[date]:
    """The `count` consecutive days following start"""
    return [start + timedelta(days=i + 1) for i in range(count)]
