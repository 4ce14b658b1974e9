import random

import pytest

from domain.models import Coordinates, RouteRequest
from usecases.route_sequencer import build_route, eta_minutes
from usecases.scoring import haversine_km

A, B, C = 1, 2, 3
LINE = [(A, Coordinates(0, 0)), (B, Coordinates(0, 1)), (C, Coordinates(0, 2))]


def visit_order(plan):
    return [s.location_id for s in plan.stops]


def test_points_on_a_line():
    plan = build_route(LINE, start_id=A)

    assert visit_order(plan) == [A, B, C]
    assert [s.sequence_number for s in plan.stops] == [1, 2, 3]
    assert plan.total_distance_km == pytest.approx(222.39, abs=0.01)
    assert plan.eta_minutes == round(plan.total_distance_km / 5 * 60)


def test_start_from_the_other_end():
    assert visit_order(build_route(LINE, start_id=C)) == [C, B, A]


def test_default_start_is_first_point():
    assert visit_order(build_route([LINE[1], LINE[0], LINE[2]])) == [B, A, C]


def test_empty_route():
    plan = build_route([])
    assert plan.stops == []
    assert plan.total_distance_km == 0
    assert plan.eta_minutes == 0


def test_single_point():
    plan = build_route([(A, Coordinates(37.5, 127.0))])
    assert visit_order(plan) == [A]
    assert plan.total_distance_km == 0
    assert plan.eta_minutes == 0


def test_ties_keep_input_order():
    east, west = (B, Coordinates(0, 1)), (C, Coordinates(0, -1))
    origin = (A, Coordinates(0, 0))

    assert visit_order(build_route([origin, east, west])) == [A, B, C]
    assert visit_order(build_route([origin, west, east])) == [A, C, B]


def test_points_without_coordinates_have_zero_legs():
    points = [
        (1, Coordinates(0, 0)),
        (2, None),
        (3, Coordinates(0, 5)),
        (4, Coordinates(0, 1)),
    ]

    plan = build_route(points, start_id=1)

    # 2 is "0 km" from everything, so it comes first; from 2, 4 and 3 tie
    assert visit_order(plan) == [1, 2, 4, 3]
    assert plan.total_distance_km == pytest.approx(haversine_km(Coordinates(0, 1), Coordinates(0, 5)))


def test_unknown_start_falls_back_to_first_point():
    assert visit_order(build_route(LINE, start_id=99)) == [A, B, C]


def test_duplicate_points_are_visited_once():
    plan = build_route(LINE + [LINE[0]], start_id=A)
    assert visit_order(plan) == [A, B, C]


def test_every_point_appears_exactly_once():
    rng = random.Random(11)
    points = [
        (i, Coordinates(37.5 + rng.uniform(-0.1, 0.1), 127.0 + rng.uniform(-0.1, 0.1)))
        for i in range(1, 41)
    ]

    plan = build_route(points, start_id=17)

    assert sorted(visit_order(plan)) == list(range(1, 41))
    assert [s.sequence_number for s in plan.stops] == list(range(1, 41))
    assert plan.stops[0].location_id == 17


def test_same_input_same_plan():
    rng = random.Random(5)
    points = [(i, Coordinates(rng.uniform(33, 38), rng.uniform(126, 129))) for i in range(25)]

    assert build_route(points, start_id=3) == build_route(points, start_id=3)


def test_eta_rounds_half_up():
    # 0.625 km at 5 km/h is exactly 7.5 minutes
    assert eta_minutes(0.625) == 8
    assert eta_minutes(0.6) == 7
    assert eta_minutes(0.0) == 0


def test_plan_serialization():
    payload = build_route(LINE, start_id=A).to_dict()

    assert payload["route"][0] == {"location_id": A, "sequence_number": 1}
    assert payload["metrics"]["total_distance_km"] == pytest.approx(222.39)
    assert payload["metrics"]["eta_min"] == 2669


def test_route_request_merges_without_duplicates():
    request = RouteRequest(selected_ids=[3, 1, 3], append_ids=[2, 1], start_id=1)
    assert request.point_ids() == [3, 1, 2]
