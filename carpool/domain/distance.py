"""
Distance and fallback trip-duration estimates.

Assumption
----------
Great-circle (Haversine) distance at an average city speed stands in for a
routing engine.  It is only used when a driver starts a trip without
entering an ETA; a real map lookup would replace ``estimate_trip_duration``.

Complexity: O(1) per call.
"""

from __future__ import annotations

import math
from datetime import timedelta

from .entities import Location

EARTH_RADIUS_KM = 6_371.0


def haversine_km(origin: Location, destination: Location) -> float:
    """Return the great-circle distance in **km** between two locations."""
    lat1_r = math.radians(origin.latitude)
    lat2_r = math.radians(destination.latitude)
    dlat = math.radians(destination.latitude - origin.latitude)
    dlng = math.radians(destination.longitude - origin.longitude)

    a = (
        math.sin(dlat / 2) ** 2
        + math.cos(lat1_r) * math.cos(lat2_r) * math.sin(dlng / 2) ** 2
    )
    return 2 * EARTH_RADIUS_KM * math.asin(math.sqrt(a))


def estimate_trip_duration(
    origin: Location,
    destination: Location,
    average_speed_kmh: float = 30.0,
    min_minutes: int = 15,
) -> timedelta:
    """Drive time at *average_speed_kmh*, never shorter than *min_minutes*."""
    hours = haversine_km(origin, destination) / average_speed_kmh
    return max(timedelta(hours=hours), timedelta(minutes=min_minutes))
