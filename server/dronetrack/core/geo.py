"""Geographic helpers — great-circle distance and straight-line movement.

The drone flies straight segments between waypoints; there is no routing.
"""

from __future__ import annotations

import math

from dronetrack.core.models import Coordinate

# Earth radius in kilometres (for Haversine).
EARTH_RADIUS_KM = 6371.0


def distance_km(a: Coordinate, b: Coordinate) -> float:
    """Great-circle distance in kilometres between two coordinates."""
    if a == b:
        return 0.0
    rlat1, rlat2 = math.radians(a.latitude), math.radians(b.latitude)
    dlat = math.radians(b.latitude - a.latitude)
    dlon = math.radians(b.longitude - a.longitude)
    h = math.sin(dlat / 2) ** 2 + math.cos(rlat1) * math.cos(rlat2) * math.sin(dlon / 2) ** 2
    return 2 * EARTH_RADIUS_KM * math.asin(min(1.0, math.sqrt(h)))


def distance_m(a: Coordinate, b: Coordinate) -> float:
    return distance_km(a, b) * 1000.0


def planar_distance_deg(a: Coordinate, b: Coordinate) -> float:
    """Euclidean distance in raw degrees. Only good for "is it close" checks."""
    return math.hypot(a.latitude - b.latitude, a.longitude - b.longitude)


def interpolate(start: Coordinate, end: Coordinate, t: float) -> Coordinate:
    """Point at fraction ``t`` of the straight segment start→end.

    Callers clamp ``t`` to [0, 1]. The endpoints are returned as-is so the
    drone lands exactly on a waypoint.
    """
    if t <= 0.0:
        return start
    if t >= 1.0:
        return end
    return Coordinate(
        latitude=start.latitude + (end.latitude - start.latitude) * t,
        longitude=start.longitude + (end.longitude - start.longitude) * t,
    )


def ease_in_out(t: float) -> float:
    """Quadratic ease-in/ease-out on [0, 1]."""
    if t < 0.5:
        return 2 * t * t
    return 1 - 2 * (1 - t) ** 2
