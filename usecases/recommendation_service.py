# usecases/recommendation_service.py - Business logic (Uncle Bob's use cases layer)
import random
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional, Sequence

from domain.models import (
    Coordinates, LocationCandidate, LocationRepository, RandomSource,
    RouteRequest, ScoredCandidate
)
from usecases.route_sequencer import build_route
from usecases.scoring import base_score, pick_many_without_replacement, score, weighted_pick

RECOMMEND_ONE_SIZE = 3
REPLACEMENT_POOL_SIZE = 60


def _clean_tags(values) -> List[str]:
    if values is None:
        return []
    if isinstance(values, str):
        values = [values]
    return list(dict.fromkeys(s for s in (str(v).strip() for v in values) if s))


class RecommendationService:
    def __init__(
        self,
        location_repo: LocationRepository,
        rng: Optional[RandomSource] = None,
        clock: Optional[Callable[[], datetime]] = None,
        candidate_limit: int = 300,
    ):
        self.location_repo = location_repo
        self.rng = rng or random.Random()
        self.clock = clock or (lambda: datetime.now(timezone.utc))
        self.candidate_limit = candidate_limit

    def _static_scorer(self, now: datetime):
        return lambda candidate, _picked: score(candidate, now=now)

    async def recommend_one(self, category: str, keywords=None, moods=None) -> dict:
        """Three weighted picks in a category, narrowed by keywords/moods when given"""
        keywords = _clean_tags(keywords)
        moods = _clean_tags(moods)

        if not keywords and not moods:
            items = await self.location_repo.random_in_category(category, RECOMMEND_ONE_SIZE)
            return {
                "items": [c.to_dict() for c in items],
                "message": (
                    "No keywords or moods given; returning random picks from the category."
                    if items else "No locations in this category."
                ),
                "strategy": "fallback_random_in_category_v2",
            }

        candidates = await self.location_repo.find_candidates(
            categories=[category],
            keywords_all=keywords or None,
            moods_all=moods or None,
            limit=self.candidate_limit,
        )

        if not candidates:
            items = await self.location_repo.random_in_category(category, RECOMMEND_ONE_SIZE)
            return {
                "items": [c.to_dict() for c in items],
                "message": (
                    "Nothing matched the filters; returning random picks from the category."
                    if items else "No locations in this category."
                ),
                "strategy": "no_match_fallback_random_in_category_v2",
            }

        picks = pick_many_without_replacement(
            candidates, self._static_scorer(self.clock()), RECOMMEND_ONE_SIZE, self.rng
        )

        if keywords and moods:
            strategy = "category_keywords_moods_and_v3"
        elif keywords:
            strategy = "category_keywords_only_v3"
        else:
            strategy = "category_moods_only_v3"

        return {"items": [p.candidate.to_dict() for p in picks], "strategy": strategy}

    async def recommend_next(
        self,
        current_route: Sequence[int] = (),
        want_types: Sequence[str] = (),
        count: int = 2,
        center: Optional[Coordinates] = None,
        delta: Optional[float] = 0.02,
    ) -> dict:
        """Suggest stops to append to a route, biased towards the route's end"""
        route_ids = [int(i) for i in current_route]
        exclude = set(route_ids)

        bbox = None
        if center is not None and delta:
            bbox = {
                "min_lat": center.latitude - delta,
                "max_lat": center.latitude + delta,
                "min_lng": center.longitude - delta,
                "max_lng": center.longitude + delta,
            }

        candidates = await self.location_repo.find_candidates(
            categories=list(want_types) or None,
            bbox=bbox,
            limit=self.candidate_limit,
        )
        pool = [c for c in candidates if c.id not in exclude]
        if not pool:
            return {"items": [], "ordering_hint": [str(i) for i in route_ids], "strategy": "route_next_v1"}

        anchor = center
        if route_ids:
            located = {c.id: c.coordinates for c in await self.location_repo.get_locations(route_ids)}
            for location_id in reversed(route_ids):
                if located.get(location_id) is not None:
                    anchor = located[location_id]
                    break

        now = self.clock()

        def scorer(candidate: LocationCandidate, picked: List[ScoredCandidate]) -> float:
            reference = anchor
            for previous in reversed(picked):
                if previous.candidate.coordinates is not None:
                    reference = previous.candidate.coordinates
                    break
            return base_score(candidate, reference, now)

        picks = pick_many_without_replacement(pool, scorer, count, self.rng)
        # Report the raw score at the reference each pick was drawn from, not the clamped weight
        scores = [scorer(p.candidate, picks[:i]) for i, p in enumerate(picks)]

        return {
            "items": [
                {"location_id": p.candidate.id, "type": p.candidate.category, "score": s}
                for p, s in zip(picks, scores)
            ],
            "ordering_hint": [str(i) for i in route_ids] + [str(p.candidate.id) for p in picks],
            "strategy": "route_next_v1",
        }

    async def preview_route(self, selected=(), append=(), start_id: Optional[int] = None) -> dict:
        request = RouteRequest(
            selected_ids=[int(i) for i in selected],
            append_ids=[int(i) for i in append],
            start_id=int(start_id) if start_id is not None else None,
        )
        ids = request.point_ids()
        if not ids:
            return build_route([]).to_dict()

        coords: Dict[int, Optional[Coordinates]] = {
            c.id: c.coordinates for c in await self.location_repo.get_locations(ids)
        }
        points = [(i, coords.get(i)) for i in ids]
        return build_route(points, request.start_id).to_dict()

    async def recommend_two_by_moods_distinct_category(
        self,
        moods,
        exclude_location_ids: Sequence[int] = (),
        exclude_categories: Sequence[str] = (),
        region: Optional[str] = None,
    ) -> dict:
        """One mood-matched pick, then a second one from a different category"""
        mood_list = _clean_tags(moods)
        if not mood_list:
            return {"items": [], "meta": {"reason": "At least one mood is required."}}

        exclude_location_ids = [int(i) for i in exclude_location_ids]
        exclude_categories = list(exclude_categories)

        pool = await self.location_repo.find_candidates(
            tags_any=mood_list,
            exclude_ids=exclude_location_ids,
            exclude_categories=exclude_categories,
            region=region,
            solo_friendly_only=True,
            order_by_rating=True,
            limit=self.candidate_limit,
        )
        meta = {
            "moods": mood_list,
            "exclude_location_ids": exclude_location_ids,
            "exclude_categories": exclude_categories,
        }
        if not pool:
            return {"items": [], "meta": {"reason": "No locations matched.", **meta}}

        now = self.clock()
        first = weighted_pick(pool, [score(c, now=now) for c in pool], self.rng)

        second_pool = [
            c for c in pool
            if c.id != first.id and (c.category or "") != (first.category or "")
        ]
        if second_pool:
            second = weighted_pick(second_pool, [score(c, now=now) for c in second_pool], self.rng)
        else:
            alternatives = await self.location_repo.find_candidates(
                tags_any=mood_list,
                exclude_ids=[*exclude_location_ids, first.id],
                exclude_categories=[*exclude_categories, first.category or ""],
                region=region,
                solo_friendly_only=True,
                order_by_rating=True,
                limit=1,
            )
            second = alternatives[0] if alternatives else None

        items = [c for c in (first, second) if c is not None]
        return {
            "items": [c.to_dict() for c in items],
            "meta": {
                **meta,
                "distinct_category": len(items) == 2 and items[0].category != items[1].category,
                "relaxed_second": second is not None and not second_pool,
            },
        }

    async def suggest_replacement_by_category_one(
        self,
        category: Optional[str],
        exclude_location_ids: Sequence[int] = (),
        region: Optional[str] = None,
    ) -> dict:
        exclude_location_ids = [int(i) for i in exclude_location_ids]
        meta = {"category": category, "exclude_location_ids": exclude_location_ids, "region": region}
        if not category:
            return {"items": [], "meta": {"reason": "category is required"}}

        pool = await self.location_repo.find_candidates(
            categories=[category],
            exclude_ids=exclude_location_ids,
            region=region,
            solo_friendly_only=True,
            order_by_rating=True,
            limit=REPLACEMENT_POOL_SIZE,
        )
        if not pool:
            return {"items": [], "meta": {**meta, "reason": "no candidates"}}

        now = self.clock()
        picked = weighted_pick(pool, [score(c, now=now) for c in pool], self.rng)
        return {"items": [picked.to_dict()], "meta": meta}
