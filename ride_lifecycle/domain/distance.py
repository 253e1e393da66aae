"""
Great-circle distance between ride locations.

The default fare collaborator prices the leg the rider actually travelled:
pickup to dropoff, or pickup to the early-end position.  Haversine stands
in for a routing engine; a deployment with road distances swaps in its own
fare collaborator instead of touching this module.
"""

from __future__ import annotations

import math
from typing import Optional

from .entities import Location

EARTH_RADIUS_KM = 6_371.0


def haversine_km(
    lat1: float, lng1: float, lat2: float, lng2: float
) -> float:
    """Return the great-circle distance in **km** between two points."""
    lat1_r, lat2_r = math.radians(lat1), math.radians(lat2)
    dlat = math.radians(lat2 - lat1)
    dlng = math.radians(lng2 - lng1)

    a = (
        math.sin(dlat / 2) ** 2
        + math.cos(lat1_r) * math.cos(lat2_r) * math.sin(dlng / 2) ** 2
    )
    return 2 * EARTH_RADIUS_KM * math.asin(math.sqrt(a))


def leg_km(start: Location, end: Location) -> Optional[float]:
    """Distance between two locations, or ``None`` without coordinates."""
    if not (start.has_coordinates and end.has_coordinates):
        return None
    return haversine_km(start.latitude, start.longitude, end.latitude, end.longitude)
