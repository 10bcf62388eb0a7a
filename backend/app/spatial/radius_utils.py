"""
radius_utils.py — Great-circle distance helpers for geo fan-out and scoring.

Provides:
    - Haversine distance between two (lat, lng) points, in metres
    - Inclusive point-in-radius check
    - Bounding-box pre-filter for scanning location tables (antimeridian aware)
    - Human-readable distance formatting

All distances are in **metres** unless the name says otherwise.
Coordinates are in **decimal degrees**.

Mathematical Foundation — Haversine Formula
============================================
Given two points P₁(φ₁, λ₁) and P₂(φ₂, λ₂):

    a = sin²(Δφ / 2) + cos(φ₁) · cos(φ₂) · sin²(Δλ / 2)
    c = 2 · atan2(√a, √(1 − a))
    d = R · c

Where:
    φ  = latitude in radians
    λ  = longitude in radians
    R  = Earth's mean radius ≈ 6 371 000 m

Haversine is accurate to ~0.5 %, plenty for a 10 km notification radius.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Optional, Tuple


# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

EARTH_RADIUS_M: float = 6_371_000.0


# ---------------------------------------------------------------------------
# Core data structures
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Coordinate:
    """A geographic point in decimal degrees."""
    latitude: float
    longitude: float

    def __post_init__(self) -> None:
        if not (-90.0 <= self.latitude <= 90.0):
            raise ValueError(
                f"Latitude must be in [-90, 90], got {self.latitude}"
            )
        if not (-180.0 <= self.longitude <= 180.0):
            raise ValueError(
                f"Longitude must be in [-180, 180], got {self.longitude}"
            )

    @classmethod
    def maybe(cls, latitude: Optional[float], longitude: Optional[float]) -> Optional["Coordinate"]:
        """Build a Coordinate, or None when either value is missing or invalid."""
        if latitude is None or longitude is None:
            return None
        try:
            return cls(float(latitude), float(longitude))
        except (TypeError, ValueError):
            return None


# ---------------------------------------------------------------------------
# Haversine implementation
# ---------------------------------------------------------------------------

def distance_m(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    """
    Great-circle distance between two points in metres.

    Does not validate its input: NaN in, NaN out. Callers that compare the
    result against a threshold therefore fall through to the "far" branch.

    Examples
    --------
    >>> distance_m(0.0, 0.0, 0.0, 0.0)
    0.0
    >>> round(distance_m(-22.5609, 17.0832, -22.5609, 17.0832 + 0.01))
    1027
    """
    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    d_phi = math.radians(lat2 - lat1)
    d_lambda = math.radians(lng2 - lng1)

    a = (
        math.sin(d_phi / 2.0) ** 2
        + math.cos(phi1) * math.cos(phi2) * math.sin(d_lambda / 2.0) ** 2
    )
    # Floating error can push a a hair above 1 for antipodal points
    a = min(max(a, 0.0), 1.0)

    return EARTH_RADIUS_M * 2.0 * math.atan2(math.sqrt(a), math.sqrt(1.0 - a))


def haversine_m(point1: Coordinate, point2: Coordinate) -> float:
    """Distance between two Coordinates in metres."""
    return distance_m(
        point1.latitude, point1.longitude,
        point2.latitude, point2.longitude,
    )


def is_within_radius(center: Coordinate, point: Coordinate, radius_m: float) -> bool:
    """
    Inclusive radius check: a point exactly on the boundary is inside.

    >>> c = Coordinate(0.0, 0.0)
    >>> is_within_radius(c, c, 0.0)
    True
    """
    return haversine_m(center, point) <= radius_m


# ---------------------------------------------------------------------------
# Bounding-box pre-filter (fast rejection before Haversine)
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class BoundingBox:
    """
    Lat/lng box around a circle.

    Longitude is a list of ranges: one normally, two when the circle
    crosses the antimeridian, and the full (-180, 180) when it covers a pole.
    """
    min_lat: float
    max_lat: float
    lng_ranges: Tuple[Tuple[float, float], ...]

    def contains(self, latitude: float, longitude: float) -> bool:
        if not self.min_lat <= latitude <= self.max_lat:
            return False
        return any(lo <= longitude <= hi for lo, hi in self.lng_ranges)


def bounding_box(center: Coordinate, radius_m: float) -> BoundingBox:
    """
    Box that fully contains the circle (center, radius_m).

    Used as a cheap rectangular pre-filter (e.g. a SQL WHERE clause) so that
    Haversine only runs on rows that *might* be inside the radius.
    """
    angular = radius_m / EARTH_RADIUS_M
    delta_lat = math.degrees(angular)

    min_lat = center.latitude - delta_lat
    max_lat = center.latitude + delta_lat
    if min_lat <= -90.0 or max_lat >= 90.0:
        return BoundingBox(max(min_lat, -90.0), min(max_lat, 90.0), ((-180.0, 180.0),))

    # Widest longitude of the cap; grows toward the poles
    ratio = math.sin(angular) / math.cos(math.radians(center.latitude))
    delta_lng = math.degrees(math.asin(min(ratio, 1.0)))

    west = center.longitude - delta_lng
    east = center.longitude + delta_lng
    if west < -180.0:
        ranges = ((west + 360.0, 180.0), (-180.0, east))
    elif east > 180.0:
        ranges = ((west, 180.0), (-180.0, east - 360.0))
    else:
        ranges = ((west, east),)
    return BoundingBox(min_lat, max_lat, ranges)


def format_distance(meters: float) -> str:
    """
    Human-readable distance.

    >>> format_distance(450)
    '450m'
    >>> format_distance(2340)
    '2.3km'
    """
    if meters < 1000:
        return f"{round(meters)}m"
    return f"{meters / 1000:.1f}km"
