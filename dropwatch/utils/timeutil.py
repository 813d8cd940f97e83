"""Time helpers.

All timestamps stored by the service are naive UTC datetimes.
"""

from datetime import datetime, timedelta, timezone


def utcnow() -> datetime:
    """Current time as a naive UTC datetime."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_naive_utc(value: datetime) -> datetime:
    """Normalize an aware datetime to naive UTC. Naive values are assumed UTC."""
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def next_hour_occurrence(now: datetime, hour: int) -> datetime:
    """Start of the next occurrence of ``hour`` (UTC).

    Today if the current hour is strictly before ``hour``, otherwise tomorrow.
    """
    start = now.replace(hour=hour, minute=0, second=0, microsecond=0)
    if now.hour >= hour:
        start += timedelta(days=1)
    return start
