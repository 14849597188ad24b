"""
Great-circle distance helpers

Kilometres are the canonical unit. Thresholds that the product expresses in
miles are converted with km_to_miles / miles_to_km at the call site.
"""
import math
from typing import Any, Optional

from ..domain.models import GeoPoint

EARTH_RADIUS_KM = 6371.0
KM_PER_MILE = 1.609344


def km_to_miles(km: float) -> float:
    return km / KM_PER_MILE


def miles_to_km(miles: float) -> float:
    return miles * KM_PER_MILE


def _clamp_latitude(lat: float) -> float:
    return max(-90.0, min(90.0, lat))


def _wrap_longitude(lon: float) -> float:
    if -180.0 <= lon <= 180.0:
        return lon
    return ((lon + 180.0) % 360.0) - 180.0


def distance_km(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """
    Haversine distance between two points in kilometres

    Latitudes outside [-90, 90] are clamped and longitudes outside
    [-180, 180] are wrapped, so the result is defined for every finite input.
    """
    lat1, lat2 = _clamp_latitude(lat1), _clamp_latitude(lat2)
    lon1, lon2 = _wrap_longitude(lon1), _wrap_longitude(lon2)

    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    d_phi = math.radians(lat2 - lat1)
    d_lambda = math.radians(lon2 - lon1)

    a = (
        math.sin(d_phi / 2) ** 2
        + math.cos(phi1) * math.cos(phi2) * math.sin(d_lambda / 2) ** 2
    )
    # Rounding can push a a hair past 1.0 for antipodal points
    a = min(1.0, max(0.0, a))
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))
    return EARTH_RADIUS_KM * c


def is_valid_point(point: Optional[GeoPoint]) -> bool:
    """True when both coordinates are finite and inside geographic ranges"""
    if point is None:
        return False
    lat, lon = point.latitude, point.longitude
    if not (math.isfinite(lat) and math.isfinite(lon)):
        return False
    return -90.0 <= lat <= 90.0 and -180.0 <= lon <= 180.0


def to_geo_point(value: Any) -> Optional[GeoPoint]:
    """
    Build a GeoPoint from a {latitude, longitude} mapping or object

    Returns None for anything missing, non-numeric or out of range.
    """
    if value is None:
        return None
    if isinstance(value, dict):
        lat, lon = value.get("latitude"), value.get("longitude")
    else:
        lat, lon = getattr(value, "latitude", None), getattr(value, "longitude", None)

    if isinstance(lat, bool) or isinstance(lon, bool):
        return None
    try:
        point = GeoPoint(latitude=float(lat), longitude=float(lon))
    except (TypeError, ValueError):
        return None
    return point if is_valid_point(point) else None


def distance_between(a: Optional[GeoPoint], b: Optional[GeoPoint]) -> Optional[float]:
    """Distance in kilometres, or None when either point is missing or invalid"""
    if not (is_valid_point(a) and is_valid_point(b)):
        return None
    return distance_km(a.latitude, a.longitude, b.latitude, b.longitude)


def distance_between_miles(a: Optional[GeoPoint], b: Optional[GeoPoint]) -> Optional[float]:
    km = distance_between(a, b)
    return None if km is None else km_to_miles(km)
