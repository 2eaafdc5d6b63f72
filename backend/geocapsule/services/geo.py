"""Great-circle distance and proximity checks.

Points are any objects exposing ``latitude`` and ``longitude`` in degrees.
"""
import math
from typing import Protocol

EARTH_RADIUS_METERS = 6371e3


class GeoPoint(Protocol):
    latitude: float
    longitude: float


def distance_meters(a: GeoPoint, b: GeoPoint) -> float:
    """Haversine distance between two points on a spherical Earth."""
    phi1 = math.radians(a.latitude)
    phi2 = math.radians(b.latitude)
    d_phi = math.radians(b.latitude - a.latitude)
    d_lambda = math.radians(b.longitude - a.longitude)

    h = (
        math.sin(d_phi / 2) ** 2
        + math.cos(phi1) * math.cos(phi2) * math.sin(d_lambda / 2) ** 2
    )
    # rounding can push h a hair above 1 for antipodal points
    h = min(1.0, h)
    return EARTH_RADIUS_METERS * 2 * math.atan2(math.sqrt(h), math.sqrt(1 - h))


def is_near(a: GeoPoint, b: GeoPoint, threshold_meters: float) -> bool:
    """True when ``b`` is within ``threshold_meters`` of ``a`` (boundary inclusive)."""
    if threshold_meters < 0:
        raise ValueError(f"threshold_meters must be non-negative, got {threshold_meters}")
    return distance_meters(a, b) <= threshold_meters
