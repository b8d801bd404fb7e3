"""Date manipulation utilities"""

from datetime import datetime, timedelta, timezone


def utcnow() -> datetime:
    """Timezone-aware current UTC time"""
    return datetime.now(timezone.utc)


def ensure_utc(value: datetime) -> datetime:
    """Treat naive datetimes (as returned by SQLite) as UTC"""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def elapsed_whole_days(start: datetime, end: datetime) -> int:
    """Whole days between two instants, regardless of order"""
    delta = abs(ensure_utc(end) - ensure_utc(start))
    return delta // timedelta(days=1)


def add_days(from_time: datetime, days: int) -> datetime:
    """Add calendar days to a timestamp (no business-day adjustment)"""
    return from_time + timedelta(days=days)
