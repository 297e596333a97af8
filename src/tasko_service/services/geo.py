"""Great-circle distance helpers for nearby-task matching."""

from __future__ import annotations

import math

EARTH_RADIUS_KM = 6371.0088


def haversine_km(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    """Distance in kilometres between two (lat, lng) points."""
    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    d_phi = math.radians(lat2 - lat1)
    d_lambda = math.radians(lng2 - lng1)
    a = math.sin(d_phi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(d_lambda / 2) ** 2
    return 2 * EARTH_RADIUS_KM * math.asin(min(1.0, math.sqrt(a)))


def parse_coordinate(value: object, *, low: float, high: float) -> float | None:
    """Parse a latitude or longitude given as a number or numeric string."""
    if isinstance(value, bool):
        return None
    if not isinstance(value, (int, float, str)):
        return None
    try:
        number = float(value)
    except (ValueError, OverflowError):
        return None
    if math.isnan(number) or not low <= number <= high:
        return None
    return number


def parse_latitude(value: object) -> float | None:
    """Parse a latitude in [-90, 90]."""
    return parse_coordinate(value, low=-90.0, high=90.0)


def parse_longitude(value: object) -> float | None:
    """Parse a longitude in [-180, 180]."""
    return parse_coordinate(value, low=-180.0, high=180.0)
