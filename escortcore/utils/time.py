"""Time utilities (UTC now, schedule minute ranges, daily boundaries)."""
from __future__ import annotations
from datetime import datetime, timezone, timedelta

def utc_now() -> datetime:
    return datetime.now(timezone.utc)

def ensure_aware(value: datetime) -> datetime:
    """SQLite hands back naive datetimes; treat them as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value

def parse_hhmm(value: str) -> int:
    """'09:30' -> 570 minutes after midnight."""
    hours, _, minutes = value.strip().partition(":")
    total = int(hours) * 60 + int(minutes or 0)
    if not 0 <= total < 24 * 60:
        raise ValueError(f"Invalid time of day: {value!r}")
    return total

def minute_range(start_hhmm: str, duration_minutes: int) -> tuple[int, int]:
    """Half-open [start, end) range in minutes for a scheduled slot."""
    start = parse_hhmm(start_hhmm)
    return start, start + max(0, int(duration_minutes))

def ranges_overlap(a: tuple[int, int], b: tuple[int, int]) -> bool:
    return a[0] < b[1] and b[0] < a[1]

def next_daily_boundary(now: datetime, hour: int) -> datetime:
    """Next occurrence of ``hour``:00 strictly after ``now`` (same tz as now)."""
    candidate = now.replace(hour=hour, minute=0, second=0, microsecond=0)
    if candidate <= now:
        candidate += timedelta(days=1)
    return candidate


__all__ = [
    "utc_now",
    "ensure_aware",
    "parse_hhmm",
    "minute_range",
    "ranges_overlap",
    "next_daily_boundary",
]
