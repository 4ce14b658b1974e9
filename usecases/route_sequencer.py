# usecases/route_sequencer.py - Greedy nearest-neighbor route ordering
import logging
import math
from typing import Optional, Sequence, Tuple

from domain.models import Coordinates, RoutePlan, RouteStop
from usecases.scoring import haversine_km

logger = logging.getLogger(__name__)

WALKING_SPEED_KMH = 5

RoutePoint = Tuple[int, Optional[Coordinates]]


def eta_minutes(total_distance_km: float) -> int:
    """Walking time, rounded half-up to whole minutes"""
    return int(math.floor(total_distance_km / WALKING_SPEED_KMH * 60 + 0.5))


def build_route(points: Sequence[RoutePoint], start_id: Optional[int] = None) -> RoutePlan:
    """
    Order ``points`` by always stepping to the closest unvisited one.

    Points without coordinates stay on the route; every distance involving
    them counts as 0, so they sort first among the remaining stops. Ties keep
    the pool's current order (stable sort), which makes the plan reproducible.
    """
    coords = {}
    for location_id, coordinates in points:
        coords.setdefault(location_id, coordinates)
    ids = list(coords)

    if not ids:
        return RoutePlan()

    if start_id is None:
        start = ids[0]
    elif start_id in coords:
        start = start_id
    else:
        logger.warning(f"Start id {start_id} is not part of the route, starting at {ids[0]}")
        start = ids[0]

    pool = [i for i in ids if i != start]
    path = [start]

    while pool:
        current = coords[path[-1]]
        pool.sort(key=lambda i: haversine_km(current, coords[i]))
        path.append(pool.pop(0))

    total = sum(haversine_km(coords[a], coords[b]) for a, b in zip(path, path[1:]))

    return RoutePlan(
        stops=[RouteStop(location_id=i, sequence_number=n) for n, i in enumerate(path, start=1)],
        total_distance_km=total,
        eta_minutes=eta_minutes(total),
    )
