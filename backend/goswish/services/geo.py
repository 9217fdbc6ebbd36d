import math
from typing import Optional, Tuple

EARTH_RADIUS_MILES = 3959.0
ROAD_CURVATURE_FACTOR = 1.3
MINUTES_PER_ROAD_MILE = 2.2


def haversine_miles(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    if lat1 == lat2 and lon1 == lon2:
        return 0.0
    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    dphi = math.radians(lat2 - lat1)
    dlambda = math.radians(lon2 - lon1)
    a = math.sin(dphi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(dlambda / 2) ** 2
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))
    return EARTH_RADIUS_MILES * c


def distance_between(origin: Optional[Tuple[float, float]], target: Optional[Tuple[float, float]]) -> Optional[float]:
    """Great-circle miles between two (lat, lng) pairs, or None when either is unknown."""
    if origin is None or target is None:
        return None
    return haversine_miles(origin[0], origin[1], target[0], target[1])


def estimate_eta_minutes(air_miles: float) -> int:
    if air_miles <= 0:
        return 0
    return math.ceil(air_miles * ROAD_CURVATURE_FACTOR * MINUTES_PER_ROAD_MILE)
