"""Datetime helpers."""

from datetime import UTC, datetime


def utc_now() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(UTC)


def ensure_utc(value: datetime | None) -> datetime | None:
    """Attach UTC to naive datetimes (SQLite drops tzinfo on read)."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def from_unix(timestamp: int | float | None) -> datetime | None:
    """Convert a Unix timestamp (as sent by Stripe) to a UTC datetime."""
    if timestamp is None:
        return None
    return datetime.fromtimestamp(timestamp, UTC)


def start_of_month(now: datetime | None = None) -> datetime:
    """First instant of the calendar month containing ``now``."""
    now = now or utc_now()
    return now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)
