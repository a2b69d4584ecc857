"""
Great-circle distance helpers.
"""
import math
from itertools import combinations
from typing import Iterable, Optional, Sequence, Tuple

EARTH_RADIUS_M = 6371e3


def haversine_m(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Haversine distance between two WGS84 points in meters."""
    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    d_phi = math.radians(lat2 - lat1)
    d_lambda = math.radians(lon2 - lon1)

    a = (
        math.sin(d_phi / 2) ** 2
        + math.cos(phi1) * math.cos(phi2) * math.sin(d_lambda / 2) ** 2
    )
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))
    return EARTH_RADIUS_M * c


def max_pairwise_distance_m(points: Sequence[Tuple[float, float]]) -> Optional[float]:
    """Largest distance between any two points, or None with fewer than two."""
    if len(points) < 2:
        return None
    return max(haversine_m(a[0], a[1], b[0], b[1]) for a, b in combinations(points, 2))


def nearest(
    latitude: float,
    longitude: float,
    candidates: Iterable[Tuple[int, Optional[float], Optional[float]]],
) -> Optional[Tuple[int, float]]:
    """(id, distance_m) of the closest candidate with coordinates."""
    best = None
    for candidate_id, lat, lon in candidates:
        if lat is None or lon is None:
            continue
        distance = haversine_m(latitude, longitude, lat, lon)
        if best is None or distance < best[1]:
            best = (candidate_id, distance)
    return best


def format_distance(meters: float) -> str:
    if meters < 1000:
        return f"{round(meters)} m"
    return f"{meters / 1000:.1f} km"
