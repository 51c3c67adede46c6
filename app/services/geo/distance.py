"""
Distance and delivery fee calculation.

Pure functions: great-circle distance between two points and the tiered
distance-to-fee schedule used for delivery orders.
"""

import math
from typing import Optional

from app.services.geo.base import GeoPoint


EARTH_RADIUS_KM = 6371.0

# Fee schedule, in cents
BASE_FEE_CENTS = 800
BASE_FEE_KM = 8
PER_KM_CENTS = 100


def _usable(point: Optional[GeoPoint]) -> bool:
    if point is None:
        return False
    try:
        return math.isfinite(point.lat) and math.isfinite(point.lon)
    except (AttributeError, TypeError):
        return False


def haversine_km(a: Optional[GeoPoint], b: Optional[GeoPoint]) -> Optional[float]:
    """
    Great-circle distance between two points in kilometres.

    Returns None if either point is missing or has non-finite coordinates.

    Example:
        >>> round(haversine_km(GeoPoint(43.6532, -79.3832), GeoPoint(43.7, -79.4)), 1)
        5.4
    """
    if not (_usable(a) and _usable(b)):
        return None

    lat1 = math.radians(a.lat)
    lat2 = math.radians(b.lat)
    d_lat = math.radians(b.lat - a.lat)
    d_lon = math.radians(b.lon - a.lon)

    sin_d_lat = math.sin(d_lat / 2)
    sin_d_lon = math.sin(d_lon / 2)
    h = sin_d_lat * sin_d_lat + math.cos(lat1) * math.cos(lat2) * sin_d_lon * sin_d_lon
    c = 2 * math.atan2(math.sqrt(h), math.sqrt(1 - h))
    return EARTH_RADIUS_KM * c


def distance_fee_cents(distance_km: Optional[float]) -> int:
    """
    Delivery fee for a distance.

    The base fee covers the first 8 km; every started kilometre beyond that
    adds a dollar. Unknown or non-positive distances get the base fee.

    Example:
        >>> distance_fee_cents(8.1)
        900
    """
    if distance_km is None or isinstance(distance_km, bool):
        return BASE_FEE_CENTS
    try:
        distance = float(distance_km)
    except (TypeError, ValueError):
        return BASE_FEE_CENTS
    if not math.isfinite(distance) or distance <= 0:
        return BASE_FEE_CENTS

    km = math.ceil(distance)
    if km <= BASE_FEE_KM:
        return BASE_FEE_CENTS
    return BASE_FEE_CENTS + (km - BASE_FEE_KM) * PER_KM_CENTS
