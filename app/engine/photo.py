"""Pure photo evidence checks (capture window, freshness, geofence distance)."""

from __future__ import annotations

import math
from datetime import datetime, timedelta

from app.config import settings
from app.engine.models import GeoPoint, PhotoValidation
from app.engine.timezones import to_utc, utcnow

EARTH_RADIUS_M = 6_371_000.0
EXIF_FORMAT = "%Y:%m:%d %H:%M:%S"


def parse_exif_timestamp(value: str | None) -> datetime | None:
    """Parse an EXIF DateTimeOriginal like "2025:09:13 09:07:15". None if unparseable.

    EXIF carries no zone; the result is naive and callers localise it.
    """
    if not value:
        return None
    try:
        return datetime.strptime(value.strip(), EXIF_FORMAT)
    except ValueError:
        return None


def validate_time_window(
    captured: datetime | None,
    window_start: datetime,
    window_end: datetime,
    tolerance_minutes: int | None = None,
) -> bool:
    """Capture time within [window_start - tol, window_end + tol]."""
    if captured is None:
        return False
    tol = timedelta(minutes=settings.time_tolerance_minutes if tolerance_minutes is None else tolerance_minutes)
    ts = to_utc(captured)
    return to_utc(window_start) - tol <= ts <= to_utc(window_end) + tol


def validate_freshness(
    captured: datetime | None,
    now: datetime | None = None,
    max_age_minutes: int | None = None,
) -> bool:
    """0 <= now - captured <= max_age. Future captures are not fresh."""
    if captured is None:
        return False
    max_age = settings.photo_freshness_max_minutes if max_age_minutes is None else max_age_minutes
    age = to_utc(now or utcnow()) - to_utc(captured)
    return timedelta(0) <= age <= timedelta(minutes=max_age)


def distance_meters(a: GeoPoint, b: GeoPoint) -> float:
    """Great-circle (haversine) distance in meters."""
    d_lat = math.radians(b.lat - a.lat)
    d_lng = math.radians(b.lng - a.lng)
    lat1 = math.radians(a.lat)
    lat2 = math.radians(b.lat)
    x = math.sin(d_lat / 2) ** 2 + math.cos(lat1) * math.cos(lat2) * math.sin(d_lng / 2) ** 2
    return 2 * EARTH_RADIUS_M * math.asin(math.sqrt(x))


def validate_geofence(
    location: GeoPoint | None,
    target: GeoPoint,
    radius_m: float | None = None,
) -> bool:
    if location is None:
        return False
    radius = settings.geofence_radius_m if radius_m is None else radius_m
    return distance_meters(location, target) <= radius


def validate_photo(
    captured: datetime | None,
    location: GeoPoint | None = None,
    window: tuple[datetime, datetime] | None = None,
    target: GeoPoint | None = None,
    now: datetime | None = None,
    radius_m: float | None = None,
) -> PhotoValidation:
    """Run every applicable sub-check. Checks without inputs stay None (not supplied)."""
    return PhotoValidation(
        time_valid=validate_time_window(captured, *window) if window is not None else None,
        freshness_valid=validate_freshness(captured, now),
        location_valid=validate_geofence(location, target, radius_m) if target is not None else None,
    )
