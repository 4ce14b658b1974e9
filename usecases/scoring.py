# usecases/scoring.py - Candidate scoring and weighted selection
import math
from datetime import datetime, timezone
from typing import Callable, List, Optional, Sequence, TypeVar

from domain.models import Coordinates, LocationCandidate, RandomSource, ScoredCandidate

T = TypeVar("T")

EARTH_RADIUS_KM = 6371.0
MIN_WEIGHT = 0.1
RATING_COUNT_CAP = 200
FRESHNESS_CAP_DAYS = 30
PROXIMITY_CAP_KM = 10
PROXIMITY_PENALTY_PER_KM = 0.3

Scorer = Callable[[LocationCandidate, List[ScoredCandidate]], float]


def haversine_km(a: Optional[Coordinates], b: Optional[Coordinates]) -> float:
    """Great circle distance in kilometers; 0 when either point is unknown"""
    if a is None or b is None:
        return 0.0

    lat1, lon1, lat2, lon2 = map(math.radians, [a.latitude, a.longitude, b.latitude, b.longitude])

    dlat = lat2 - lat1
    dlon = lon2 - lon1
    h = math.sin(dlat / 2) ** 2 + math.cos(lat1) * math.cos(lat2) * math.sin(dlon / 2) ** 2
    # min() guards asin against 1.0000000002 from rounding
    return 2 * EARTH_RADIUS_KM * math.asin(min(1.0, math.sqrt(h)))


def freshness_days(candidate: LocationCandidate, now: Optional[datetime] = None) -> float:
    stamp = candidate.recency_timestamp
    if stamp is None:
        return 0.0
    now = now or datetime.now(timezone.utc)
    if stamp.tzinfo is None:
        stamp = stamp.replace(tzinfo=timezone.utc)
    return (now - stamp).total_seconds() / 86400


def base_score(
    candidate: LocationCandidate,
    reference: Optional[Coordinates] = None,
    now: Optional[datetime] = None,
) -> float:
    """Unclamped score: rating, review volume, staleness and optional proximity.

    May be negative; use ``score`` when a selection weight is needed.
    """
    value = (
        candidate.rating_avg * 2
        + min(candidate.rating_count, RATING_COUNT_CAP) / 50
        - min(freshness_days(candidate, now), FRESHNESS_CAP_DAYS) * 0.05
    )
    if reference is not None and candidate.coordinates is not None:
        distance = haversine_km(reference, candidate.coordinates)
        value -= min(distance, PROXIMITY_CAP_KM) * PROXIMITY_PENALTY_PER_KM
    return value


def score(
    candidate: LocationCandidate,
    reference: Optional[Coordinates] = None,
    now: Optional[datetime] = None,
) -> float:
    return max(MIN_WEIGHT, base_score(candidate, reference, now))


def weighted_pick(items: Sequence[T], weights: Sequence[float], rng: RandomSource) -> Optional[T]:
    """Roulette wheel selection: P(item i) = weights[i] / sum(weights)"""
    if len(items) != len(weights):
        raise ValueError(f"items and weights differ in length ({len(items)} != {len(weights)})")
    if not items:
        return None

    total = sum(weights)
    if total <= 0:
        return items[0]

    r = rng.random() * total
    for item, weight in zip(items, weights):
        r -= weight
        if r <= 0:
            return item
    return items[-1]


def pick_many_without_replacement(
    pool: Sequence[LocationCandidate],
    scorer: Scorer,
    count: int,
    rng: RandomSource,
) -> List[ScoredCandidate]:
    """Pick up to ``count`` distinct candidates, re-weighting after every pick.

    ``scorer`` receives the candidate and the picks made so far, so weights
    can follow an evolving reference point.
    """
    remaining: List[LocationCandidate] = []
    seen = set()
    for candidate in pool:
        if candidate.id not in seen:
            seen.add(candidate.id)
            remaining.append(candidate)

    picked: List[ScoredCandidate] = []

    while remaining and len(picked) < count:
        weights = [max(MIN_WEIGHT, scorer(c, picked)) for c in remaining]
        index = weighted_pick(range(len(remaining)), weights, rng)
        picked.append(ScoredCandidate(candidate=remaining.pop(index), weight=weights[index]))

    return picked
