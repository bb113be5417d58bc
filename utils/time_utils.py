"""
Calendar helpers for trial windows.

All datetimes handled by the services are timezone-aware UTC. Day boundaries
are taken in the configured trial timezone.
"""
import math
from datetime import datetime, timedelta, timezone, tzinfo
from typing import Optional
from zoneinfo import ZoneInfo

from config.settings import settings

DAY = timedelta(days=1)
DAY_SECONDS = 86_400


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def trial_zone() -> tzinfo:
    name = settings.trial_timezone or "UTC"
    if name.upper() == "UTC":
        return timezone.utc
    return ZoneInfo(name)


def ensure_utc(value: Optional[datetime]) -> Optional[datetime]:
    """
    Normalize a datetime to aware UTC.

    SQLite hands back naive datetimes for timezone-aware columns; those are
    stored as UTC, so a naive value is read as UTC.
    """
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def start_of_day(value: datetime, tz: Optional[tzinfo] = None) -> datetime:
    """Return 00:00:00.000 of value's calendar day in tz, as UTC."""
    tz = tz or trial_zone()
    local = ensure_utc(value).astimezone(tz)
    return local.replace(hour=0, minute=0, second=0, microsecond=0).astimezone(timezone.utc)


def end_of_day(value: datetime, tz: Optional[tzinfo] = None) -> datetime:
    """Return 23:59:59.999 of value's calendar day in tz, as UTC."""
    tz = tz or trial_zone()
    local = ensure_utc(value).astimezone(tz)
    return local.replace(hour=23, minute=59, second=59, microsecond=999000).astimezone(timezone.utc)


def add_calendar_days(value: datetime, days: int, tz: Optional[tzinfo] = None) -> datetime:
    """
    Shift value by whole calendar days, keeping its wall-clock time in tz.
    A DST change inside the window does not move the pinned time of day.
    """
    tz = tz or trial_zone()
    local = ensure_utc(value).astimezone(tz).replace(tzinfo=None)
    shifted = (local + timedelta(days=days)).replace(tzinfo=tz)
    return shifted.astimezone(timezone.utc)


def same_calendar_day(a: datetime, b: datetime, tz: Optional[tzinfo] = None) -> bool:
    tz = tz or trial_zone()
    return ensure_utc(a).astimezone(tz).date() == ensure_utc(b).astimezone(tz).date()


def floor_days(delta: timedelta) -> int:
    return math.floor(delta.total_seconds() / DAY_SECONDS)


def ceil_days(delta: timedelta) -> int:
    return math.ceil(delta.total_seconds() / DAY_SECONDS)
