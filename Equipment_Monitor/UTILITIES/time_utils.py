"""Datetime helpers: all persisted and compared timestamps are naive UTC."""

from datetime import datetime, timezone
from typing import Optional, Union


def as_utc_naive(value: datetime) -> datetime:
    """Convert an aware datetime to naive UTC; naive values are assumed UTC."""
    if value.tzinfo is not None:
        return value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def parse_timestamp(value: Union[str, datetime, int, float, None]) -> Optional[datetime]:
    """
    Parse ISO-8601 strings (``Z`` suffix allowed), datetimes, or epoch
    milliseconds into naive UTC datetimes.
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        return as_utc_naive(value)
    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(value / 1000.0, tz=timezone.utc).replace(tzinfo=None)
    text = str(value).strip()
    if text.lstrip('-').isdigit():
        return parse_timestamp(int(text))
    if text.endswith('Z'):
        text = text[:-1] + '+00:00'
    return as_utc_naive(datetime.fromisoformat(text))


def utc_now() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_iso(value: Optional[datetime]) -> Optional[str]:
    """ISO-8601 with a ``Z`` suffix for naive UTC datetimes."""
    if value is None:
        return None
    return as_utc_naive(value).isoformat() + 'Z'
