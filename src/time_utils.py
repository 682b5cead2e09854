"""Time zone helpers for UTC storage and household-local wall clock times."""

from __future__ import annotations

from datetime import date, datetime, time, timezone
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from config import settings


def get_local_timezone() -> ZoneInfo:
    """Return the configured local timezone."""
    timezone_name = settings.user.timezone
    try:
        return ZoneInfo(timezone_name)
    except ZoneInfoNotFoundError as exc:
        raise ValueError(f"Invalid timezone: {timezone_name}") from exc


def to_local(value: datetime) -> datetime:
    """Convert a datetime to the configured local timezone."""
    local_tz = get_local_timezone()
    if value.tzinfo is None:
        return value.replace(tzinfo=local_tz)
    return value.astimezone(local_tz)


def to_utc(value: datetime) -> datetime:
    """Convert a datetime to UTC."""
    local_value = to_local(value)
    return local_value.astimezone(timezone.utc)


def local_date(value: datetime) -> date:
    """Return the household calendar date an instant falls on."""
    return to_local(value).date()


def combine_local(day: date, time_of_day: time) -> datetime:
    """Combine a calendar date and wall-clock time into a UTC instant."""
    return datetime.combine(day, time_of_day, tzinfo=get_local_timezone()).astimezone(
        timezone.utc
    )


def parse_time_of_day(value: str) -> time:
    """Parse an ``HH:MM`` wall-clock string."""
    try:
        return datetime.strptime(value.strip(), "%H:%M").time()
    except ValueError as exc:
        raise ValueError(f"Invalid time of day (expected HH:MM): {value!r}") from exc


def ensure_aware(value: datetime | None) -> datetime | None:
    """Normalize timestamps loaded without tzinfo to UTC."""
    if value is None:
        return None
    if value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)
