import random
from collections import Counter
from datetime import timedelta

import pytest

from domain.models import Coordinates
from usecases.scoring import (
    MIN_WEIGHT, base_score, haversine_km, pick_many_without_replacement, score, weighted_pick
)

from conftest import NOW, ScriptedRandom, make_location

SEOUL = Coordinates(37.5665, 126.9780)
BUSAN = Coordinates(35.1796, 129.0756)
DAEJEON = Coordinates(36.3504, 127.3845)


class TestHaversine:
    def test_symmetric(self):
        assert haversine_km(SEOUL, BUSAN) == pytest.approx(haversine_km(BUSAN, SEOUL))

    def test_same_point_is_zero(self):
        assert haversine_km(SEOUL, SEOUL) == 0.0

    def test_triangle_inequality(self):
        direct = haversine_km(SEOUL, BUSAN)
        via_daejeon = haversine_km(SEOUL, DAEJEON) + haversine_km(DAEJEON, BUSAN)
        assert direct <= via_daejeon + 1e-9

    def test_one_degree_of_longitude_at_equator(self):
        assert haversine_km(Coordinates(0, 0), Coordinates(0, 1)) == pytest.approx(111.195, abs=0.01)

    def test_missing_point_is_zero(self):
        assert haversine_km(SEOUL, None) == 0.0
        assert haversine_km(None, None) == 0.0


class TestScore:
    def test_example_candidates(self):
        fresh = make_location(1, rating_avg=4.5, rating_count=50, age_days=0)
        stale = make_location(2, rating_avg=3.0, rating_count=5, age_days=40)

        assert base_score(fresh, now=NOW) == pytest.approx(10.0)
        assert base_score(stale, now=NOW) == pytest.approx(4.6)

    def test_rating_count_is_capped(self):
        busy = make_location(1, rating_avg=0, rating_count=10_000)
        assert base_score(busy, now=NOW) == pytest.approx(4.0)

    def test_low_scores_are_clamped(self):
        poor = make_location(1, rating_avg=0, rating_count=0, age_days=90)
        assert base_score(poor, now=NOW) < 0
        assert score(poor, now=NOW) == MIN_WEIGHT

    def test_proximity_penalty_is_capped_at_ten_km(self):
        far = make_location(1, lat=BUSAN.latitude, lng=BUSAN.longitude, rating_avg=4.5, rating_count=50)
        assert base_score(far, SEOUL, now=NOW) == pytest.approx(10.0 - 3.0)

    def test_proximity_penalty_scales_with_distance(self):
        near = make_location(1, lat=0, lng=0.01, rating_avg=4.5, rating_count=50)
        expected = 10.0 - haversine_km(Coordinates(0, 0), Coordinates(0, 0.01)) * 0.3
        assert base_score(near, Coordinates(0, 0), now=NOW) == pytest.approx(expected)

    def test_no_coordinates_means_no_proximity_penalty(self):
        unknown = make_location(1, rating_avg=4.5, rating_count=50)
        assert base_score(unknown, SEOUL, now=NOW) == pytest.approx(10.0)

    def test_missing_timestamps_mean_no_staleness(self):
        undated = make_location(1, rating_avg=1.0, rating_count=0)
        undated.updated_at = None
        assert base_score(undated, now=NOW) == pytest.approx(2.0)

    def test_created_at_used_when_never_updated(self):
        created_only = make_location(1, rating_avg=1.0, rating_count=0)
        created_only.updated_at = None
        created_only.created_at = NOW - timedelta(days=10)
        assert base_score(created_only, now=NOW) == pytest.approx(2.0 - 0.5)


class TestWeightedPick:
    def test_frequencies_follow_weights(self):
        rng = random.Random(1234)
        items = ["a", "b", "c", "d"]
        weights = [1.0, 2.0, 3.0, 4.0]
        trials = 100_000

        counts = Counter(weighted_pick(items, weights, rng) for _ in range(trials))

        for item, weight in zip(items, weights):
            assert counts[item] / trials == pytest.approx(weight / sum(weights), abs=0.01)

    def test_example_candidates_pick_rate(self):
        rng = random.Random(7)
        fresh = make_location(1, rating_avg=4.5, rating_count=50, age_days=0)
        stale = make_location(2, rating_avg=3.0, rating_count=5, age_days=40)
        pool = [fresh, stale]
        weights = [score(c, now=NOW) for c in pool]
        trials = 100_000

        hits = sum(weighted_pick(pool, weights, rng) is fresh for _ in range(trials))

        assert hits / trials == pytest.approx(10.0 / 14.6, abs=0.01)

    def test_walks_the_wheel(self):
        items = ["a", "b", "c"]
        weights = [1.0, 1.0, 2.0]
        assert weighted_pick(items, weights, ScriptedRandom([0.1])) == "a"
        assert weighted_pick(items, weights, ScriptedRandom([0.4])) == "b"
        assert weighted_pick(items, weights, ScriptedRandom([0.9])) == "c"

    def test_zero_total_returns_first_item(self):
        assert weighted_pick(["a", "b"], [0, 0], ScriptedRandom([0.9])) == "a"

    def test_empty_returns_none(self):
        assert weighted_pick([], [], ScriptedRandom([0.5])) is None

    def test_length_mismatch_is_rejected(self):
        with pytest.raises(ValueError):
            weighted_pick(["a"], [1.0, 2.0], ScriptedRandom([0.5]))


class TestPickMany:
    def static(self, candidate, _picked):
        return score(candidate, now=NOW)

    def test_empty_pool(self):
        assert pick_many_without_replacement([], self.static, 3, random.Random(0)) == []

    def test_returns_fewer_when_pool_runs_out(self, locations):
        picks = pick_many_without_replacement(locations[:2], self.static, 5, random.Random(0))
        assert sorted(p.candidate.id for p in picks) == [1, 2]

    def test_picks_are_distinct_and_weights_positive(self, locations):
        picks = pick_many_without_replacement(locations, self.static, 4, random.Random(3))
        ids = [p.candidate.id for p in picks]
        assert len(ids) == len(set(ids)) == 4
        assert all(p.weight > 0 for p in picks)

    def test_duplicate_ids_are_filtered(self, locations):
        pool = [locations[0], locations[0], locations[1]]
        picks = pick_many_without_replacement(pool, self.static, 3, random.Random(0))
        assert sorted(p.candidate.id for p in picks) == [1, 2]

    def test_scorer_sees_previous_picks(self, locations):
        seen = []

        def scorer(candidate, picked):
            seen.append(len(picked))
            return 1.0

        pick_many_without_replacement(locations[:3], scorer, 3, random.Random(0))

        # 3 scored, then 2, then 1
        assert seen == [0, 0, 0, 1, 1, 2]

    def test_negative_scores_still_selectable(self, locations):
        picks = pick_many_without_replacement(locations[:2], lambda c, p: -5.0, 2, random.Random(0))
        assert [p.weight for p in picks] == [MIN_WEIGHT, MIN_WEIGHT]
