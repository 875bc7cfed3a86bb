"""
radius_utils.py — Great-circle distance and radius checks.

Used by:
    - the recipient resolver (which residents are inside an alert's circle?)
    - alert listings (which radius alerts cover a resident's position?)
    - rescue request queries (which requests are near a responder?)

All distances are in **kilometers**. Coordinates are in **decimal degrees**.

Haversine formula
=================
Given two points P₁(φ₁, λ₁) and P₂(φ₂, λ₂):

    a = sin²(Δφ / 2) + cos(φ₁) · cos(φ₂) · sin²(Δλ / 2)
    c = 2 · atan2(√a, √(1 − a))
    d = R · c

Where φ is latitude and λ longitude in radians, R the Earth's mean radius.

For database queries a bounding box is computed first so that only rows in
the enclosing lat/lon rectangle are loaded; the exact haversine check then
runs in Python on that short list.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import List, Tuple


# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

EARTH_RADIUS_KM: float = 6_371.0088  # IAU mean radius


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

    @property
    def lat_rad(self) -> float:
        return math.radians(self.latitude)

    @property
    def lon_rad(self) -> float:
        return math.radians(self.longitude)

    def to_geojson(self) -> dict:
        """GeoJSON Point — note the [longitude, latitude] order."""
        return {"type": "Point", "coordinates": [self.longitude, self.latitude]}


# ---------------------------------------------------------------------------
# Haversine implementation
# ---------------------------------------------------------------------------

def haversine(point1: Coordinate, point2: Coordinate) -> float:
    """
    Great-circle distance between two points in kilometers.

    Not rounded: radius membership is decided on this value, and rounding
    would blur the boundary for small alert circles.

    >>> haversine(Coordinate(9.8063, 123.8014), Coordinate(9.8063, 123.8014))
    0.0
    """
    d_lat = point2.lat_rad - point1.lat_rad
    d_lon = point2.lon_rad - point1.lon_rad

    a = (
        math.sin(d_lat / 2.0) ** 2
        + math.cos(point1.lat_rad)
        * math.cos(point2.lat_rad)
        * math.sin(d_lon / 2.0) ** 2
    )

    c = 2.0 * math.atan2(math.sqrt(a), math.sqrt(1.0 - a))
    return EARTH_RADIUS_KM * c


def destination_point(origin: Coordinate, bearing_deg: float, distance_km: float) -> Coordinate:
    """Point reached by travelling distance_km from origin along a bearing."""
    angular = distance_km / EARTH_RADIUS_KM
    bearing = math.radians(bearing_deg)

    lat2 = math.asin(
        math.sin(origin.lat_rad) * math.cos(angular)
        + math.cos(origin.lat_rad) * math.sin(angular) * math.cos(bearing)
    )
    lon2 = origin.lon_rad + math.atan2(
        math.sin(bearing) * math.sin(angular) * math.cos(origin.lat_rad),
        math.cos(angular) - math.sin(origin.lat_rad) * math.sin(lat2),
    )
    lon_deg = (math.degrees(lon2) + 540.0) % 360.0 - 180.0
    return Coordinate(math.degrees(lat2), lon_deg)


# ---------------------------------------------------------------------------
# Bounding-box pre-filter
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class BoundingBox:
    """
    Lat/lon rectangle enclosing a circle.

    Longitudes are left unwrapped, so min_lon may fall below -180 or max_lon
    rise above 180 when the circle crosses the antimeridian; lon_ranges()
    splits such a box into intervals a database can compare against.
    """
    min_lat: float
    max_lat: float
    min_lon: float
    max_lon: float

    def lon_ranges(self) -> List[Tuple[float, float]]:
        """Longitude intervals within [-180, 180] covered by the box."""
        if self.max_lon - self.min_lon >= 360.0:
            return [(-180.0, 180.0)]
        if self.min_lon < -180.0:
            return [(self.min_lon + 360.0, 180.0), (-180.0, self.max_lon)]
        if self.max_lon > 180.0:
            return [(self.min_lon, 180.0), (-180.0, self.max_lon - 360.0)]
        return [(self.min_lon, self.max_lon)]


def bounding_box(center: Coordinate, radius_km: float) -> BoundingBox:
    """
    Smallest lat/lon rectangle fully containing the circle (center, radius_km).

    The circle's widest longitude is reached at the tangent latitude, not at
    the center's latitude, so the half-width is asin(sin(d) / cos(φ)) rather
    than d / cos(φ).
    """
    angular = radius_km / EARTH_RADIUS_KM

    min_lat = center.latitude - math.degrees(angular)
    max_lat = center.latitude + math.degrees(angular)

    # Circle contains a pole: every longitude is in range
    if min_lat <= -90.0 or max_lat >= 90.0:
        return BoundingBox(max(min_lat, -90.0), min(max_lat, 90.0), -180.0, 180.0)

    ratio = math.sin(angular) / math.cos(center.lat_rad)
    delta_lon = math.degrees(math.asin(min(1.0, ratio)))

    return BoundingBox(
        min_lat,
        max_lat,
        center.longitude - delta_lon,
        center.longitude + delta_lon,
    )


# ---------------------------------------------------------------------------
# Radius checks
# ---------------------------------------------------------------------------

def is_inside_radius(
    center: Coordinate,
    point: Coordinate,
    radius_km: float,
) -> tuple[bool, float]:
    """
    Check whether point lies within radius_km of center (boundary inclusive).

    Returns
    -------
    (inside, distance_km)
    """
    if radius_km <= 0:
        raise ValueError(f"Radius must be positive, got {radius_km}")

    dist = haversine(center, point)
    return (dist <= radius_km, dist)


def format_distance(km: float) -> str:
    """
    Format a distance for display.

    >>> format_distance(0.45)
    '450 m'
    >>> format_distance(3.7266)
    '3.73 km'
    """
    if km < 1.0:
        return f"{int(km * 1000)} m"
    return f"{km:.2f} km"
