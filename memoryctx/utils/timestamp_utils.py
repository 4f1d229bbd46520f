"""
Timestamp utilities for consistent time handling across the system.

All datetimes handled by the engine are timezone-aware UTC.
"""

from datetime import datetime, timezone
from typing import Optional, Union

SECONDS_PER_DAY = 86400.0


def utc_now() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def ensure_utc(value: datetime) -> datetime:
    """Attach UTC to naive datetimes and convert aware ones to UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def parse_timestamp(value: Union[datetime, str, int, float, None], default: Optional[datetime] = None) -> datetime:
    """Parse a stored timestamp into an aware UTC datetime.

    Accepts datetimes, ISO-8601 strings (with or without ``Z``) and Unix
    seconds as numbers or numeric strings.

    Args:
        value: Raw timestamp value
        default: Returned when value is empty (epoch if None)

    Returns:
        Aware UTC datetime

    Raises:
        ValueError: If the value cannot be parsed
    """
    if value is None or value == '':
        return default if default is not None else datetime.fromtimestamp(0, timezone.utc)
    if isinstance(value, datetime):
        return ensure_utc(value)
    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(value, timezone.utc)

    text = value.strip()
    if text.lstrip('-').replace('.', '', 1).isdigit():
        return datetime.fromtimestamp(float(text), timezone.utc)
    if text.endswith('Z'):
        text = text[:-1] + '+00:00'
    return ensure_utc(datetime.fromisoformat(text))


def to_iso(value: datetime) -> str:
    """Serialize a datetime as an ISO-8601 UTC string."""
    return ensure_utc(value).isoformat()


def age_in_days(created_at: datetime, now: datetime) -> float:
    """Age of a timestamp in fractional days; negative for future timestamps."""
    return (ensure_utc(now) - ensure_utc(created_at)).total_seconds() / SECONDS_PER_DAY
