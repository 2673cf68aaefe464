"""
Great-circle distance helpers.
"""

from __future__ import annotations

import math
from typing import Protocol

EARTH_RADIUS_METERS = 6_371_000.0


class Coordinate(Protocol):
    latitude: float
    longitude: float


def is_valid_coordinate(latitude: float, longitude: float) -> bool:
    """Whether the pair is a finite, in-range latitude/longitude."""
    try:
        lat = float(latitude)
        lng = float(longitude)
    except (TypeError, ValueError):
        return False
    return (
        math.isfinite(lat)
        and math.isfinite(lng)
        and -90.0 <= lat <= 90.0
        and -180.0 <= lng <= 180.0
    )


def distance_meters(a: Coordinate, b: Coordinate) -> float:
    """
    Haversine distance in meters between two coordinates.

    Out-of-range or NaN coordinates yield NaN; callers filter invalid
    readings before relying on the result.
    """
    if not (
        is_valid_coordinate(a.latitude, a.longitude)
        and is_valid_coordinate(b.latitude, b.longitude)
    ):
        return math.nan

    phi1 = math.radians(a.latitude)
    phi2 = math.radians(b.latitude)
    d_phi = math.radians(b.latitude - a.latitude)
    # sin^2 is periodic in 2*pi, so a raw longitude delta across the date
    # line gives the same result as the wrapped one.
    d_lambda = math.radians(b.longitude - a.longitude)

    h = (
        math.sin(d_phi / 2) ** 2
        + math.cos(phi1) * math.cos(phi2) * math.sin(d_lambda / 2) ** 2
    )
    h = min(1.0, max(0.0, h))  # rounding can push antipodal points past 1
    return 2 * EARTH_RADIUS_METERS * math.asin(math.sqrt(h))
