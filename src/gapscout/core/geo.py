from __future__ import annotations
from dataclasses import dataclass
from math import acos, asin, cos, isnan, pi, radians, sin, sqrt

"""
Geospatial helpers.

Circle-circle geometry on a spherical earth. Coverage areas are modelled as circles
around a business location, so everything here works on (center, radius) pairs and
stays free of I/O and shared state.
"""

EARTH_RADIUS_M = 6_371_000

# Kept at 1609.34 (not 1609.344) so radii match previously computed values.
METERS_PER_MILE = 1609.34

# 2.5 miles.
DEFAULT_COVERAGE_RADIUS_M = 4023.36


@dataclass(frozen=True)
class GeoPoint:
    """A latitude/longitude pair in decimal degrees."""

    lat: float
    lng: float


def haversine_m(a: GeoPoint, b: GeoPoint) -> float:
    """Compute great-circle distance in meters between two points."""
    lat1 = radians(a.lat)
    lng1 = radians(a.lng)
    lat2 = radians(b.lat)
    lng2 = radians(b.lng)

    dlat = lat2 - lat1
    dlng = lng2 - lng1

    h = sin(dlat / 2) ** 2 + cos(lat1) * cos(lat2) * sin(dlng / 2) ** 2
    return 2 * EARTH_RADIUS_M * asin(sqrt(min(1.0, h)))


def circles_overlap(c1: GeoPoint, r1: float, c2: GeoPoint, r2: float) -> bool:
    """Return True iff the circles overlap (tangent circles do not)."""
    return haversine_m(c1, c2) < r1 + r2


def _clamped_acos(x: float) -> float:
    return acos(max(-1.0, min(1.0, x)))


def circle_intersection_area(c1: GeoPoint, r1: float, c2: GeoPoint, r2: float) -> float:
    """Area in square meters shared by two circles.

    Uses the lens formula for partial overlaps: two circular-segment areas minus the
    kite-shaped triangle area between the centers and the intersection points.
    """
    d = haversine_m(c1, c2)

    if d >= r1 + r2:
        return 0.0

    full = pi * min(r1, r2) ** 2
    if d <= abs(r1 - r2):
        return full

    r1_sq = r1 * r1
    r2_sq = r2 * r2
    d_sq = d * d

    seg1 = r1_sq * _clamped_acos((d_sq + r1_sq - r2_sq) / (2 * d * r1))
    seg2 = r2_sq * _clamped_acos((d_sq + r2_sq - r1_sq) / (2 * d * r2))
    kite = 0.5 * sqrt(max(0.0, (-d + r1 + r2) * (d + r1 - r2) * (d - r1 + r2) * (d + r1 + r2)))

    area = seg1 + seg2 - kite
    if isnan(area):
        # Only reachable at a near-tangent boundary.
        return full
    # Rounding near either tangency can push the lens just outside [0, full].
    return min(full, max(0.0, area))


def miles_to_meters(miles: float) -> float:
    return miles * METERS_PER_MILE


def meters_to_miles(meters: float) -> float:
    return meters / METERS_PER_MILE
