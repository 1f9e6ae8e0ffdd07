from __future__ import annotations

import datetime as dt
from typing import Optional, Tuple
from zoneinfo import ZoneInfo

UTC = dt.timezone.utc


def utcnow() -> dt.datetime:
    return dt.datetime.now(UTC)


def ensure_utc(value: dt.datetime) -> dt.datetime:
    """Return ``value`` as an aware UTC timestamp; naive values are taken as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def round_hours(value: float) -> float:
    return round(value, 2)


def elapsed_hours(start: Optional[dt.datetime], end: dt.datetime) -> float:
    if start is None:
        return 0.0
    delta = ensure_utc(end) - ensure_utc(start)
    return max(delta.total_seconds(), 0.0) / 3600


def local_hour_minute(value: dt.datetime, tz: ZoneInfo) -> Tuple[int, int]:
    local = ensure_utc(value).astimezone(tz)
    return local.hour, local.minute


def split_minutes(total_minutes: int) -> Tuple[int, int]:
    return total_minutes // 60, total_minutes % 60
