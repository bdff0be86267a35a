"""Timezone helpers — every calendar computation goes through the goal's IANA zone."""

from __future__ import annotations

from datetime import date, datetime, time, timedelta, timezone
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from app.engine.errors import ValidationError


def zone(tz_name: str) -> ZoneInfo:
    """Resolve an IANA zone name, raising ValidationError when unknown."""
    try:
        return ZoneInfo(tz_name)
    except (ZoneInfoNotFoundError, ValueError, TypeError):
        raise ValidationError(f"Unknown timezone: {tz_name!r}", field="timezone")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def to_utc(dt: datetime) -> datetime:
    """Normalise to an aware UTC datetime. Naive input is taken as UTC."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def localize(day: date, at: time, tz: ZoneInfo) -> datetime:
    """Wall-clock `day at` in `tz`, as a UTC instant.

    Times inside a DST gap resolve with fold=0, i.e. the pre-transition offset.
    """
    return datetime.combine(day, at, tzinfo=tz).astimezone(timezone.utc)


def local_date(ts: datetime, tz: ZoneInfo) -> date:
    return to_utc(ts).astimezone(tz).date()


def day_key(ts: datetime, tz_name: str) -> str:
    """Calendar date of `ts` in the goal's zone, as YYYY-MM-DD."""
    return local_date(ts, zone(tz_name)).isoformat()


def day_bounds_utc(day: date, tz: ZoneInfo) -> tuple[datetime, datetime]:
    """UTC range [start, end) covering local calendar day `day`."""
    return localize(day, time.min, tz), localize(day + timedelta(days=1), time.min, tz)
