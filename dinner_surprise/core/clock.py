"""UTC time helpers.

SQLite drops tzinfo on round trip while Postgres keeps it, so every
comparison goes through ``ensure_utc``.
"""

from datetime import datetime, timezone


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def ensure_utc(value: datetime | None) -> datetime | None:
    """Attach UTC to naive datetimes and convert aware ones to UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def from_timestamp(value: int | float | None) -> datetime | None:
    """Convert a Unix timestamp (Stripe's format) to an aware datetime."""
    if value is None:
        return None
    return datetime.fromtimestamp(value, tz=timezone.utc)


def month_start(moment: datetime) -> datetime:
    """First instant of the UTC calendar month containing ``moment``."""
    moment = ensure_utc(moment)
    return moment.replace(day=1, hour=0, minute=0, second=0, microsecond=0)
