"""Human readable rendering of appointment timestamps."""
from __future__ import annotations

from datetime import datetime, timezone

from app.config import DEFAULT_DATE_PATTERN


def to_utc(value: datetime) -> datetime:
    """Return ``value`` as an aware UTC datetime; naive values are taken as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def start_of_hour(value: datetime) -> datetime:
    """Move to UTC, then truncate to the start of the hour."""
    return to_utc(value).replace(minute=0, second=0, microsecond=0)


def parse_timestamp(value: str | datetime) -> datetime:
    if isinstance(value, datetime):
        return to_utc(value)
    normalized = value.strip().replace("Z", "+00:00")
    return to_utc(datetime.fromisoformat(normalized))


def format_human_date(timestamp: str | datetime, pattern: str = DEFAULT_DATE_PATTERN) -> str:
    """Format ``timestamp`` with a strftime ``pattern``, e.g. "October 21, at 14:00h"."""
    value = parse_timestamp(timestamp)
    return f"{value.strftime(pattern)}h"
