import threading
import time

import pytest

from rankgrid.core.aggregation import (
    GridSearchCancelled,
    GridSearchError,
    round_half_up,
    run_grid_search,
    summarize_results,
)
from rankgrid.core.grid import generate_grid
from rankgrid.core.models import Coordinate, DistanceUnit, GridConfig, GridSearchResult, PlaceResult, ValidationError

CENTER = Coordinate(40.7128, -74.0060)


def _grid(size=3):
    return generate_grid(CENTER, GridConfig(spacing=500, distance_unit=DistanceUnit.METERS, grid_size=size))


def _result(rank, error=None):
    return GridSearchResult(point_id="x", lat=0.0, lng=0.0, row=0, col=0, rank=rank, error=error)


def _provider_for(ranks_by_point):
    """Provider that ranks example.com at the given position for each (lat, lng)."""

    def provider(lat, lng, keyword):
        rank = ranks_by_point[(lat, lng)]
        if isinstance(rank, Exception):
            raise rank
        places = [PlaceResult(position=i, title=f"P{i}", website=f"https://filler{i}.com") for i in range(1, 21)]
        if rank is not None:
            places[rank - 1] = PlaceResult(position=rank, title="Target", website="https://www.example.com/")
        return places

    return provider


def test_coffee_shop_scenario():
    points = _grid()[:4]
    ranks = [2, None, 15, 4]
    provider = _provider_for({(p.lat, p.lng): r for p, r in zip(points, ranks)})

    response = run_grid_search(points, "coffee shop", "example.com", provider, max_concurrency=2)
    summary = response.summary

    assert response.total_points == 4
    assert [result.rank for result in response.results] == ranks
    assert summary.avg_rank == 7.0
    assert summary.found_count == 3
    assert summary.not_found_count == 1
    assert (summary.top3_count, summary.top3_percent) == (1, 25)
    assert (summary.top10_count, summary.top10_percent) == (2, 50)
    assert (summary.top20_count, summary.top20_percent) == (3, 75)


def test_only_selected_points_are_searched():
    points = _grid()
    points = [point.with_selection(point.row == 0) for point in points]
    seen = []

    def provider(lat, lng, keyword):
        seen.append((lat, lng))
        return []

    response = run_grid_search(points, "pizza", "example.com", provider)

    assert response.total_points == 3
    assert [result.point_id for result in response.results] == ["0_-1", "0_0", "0_1"]
    assert len(seen) == 3


def test_results_keep_input_order_despite_completion_order():
    points = _grid()
    delays = {(p.lat, p.lng): 0.05 * (len(points) - i) for i, p in enumerate(points)}

    def provider(lat, lng, keyword):
        time.sleep(delays[(lat, lng)])
        return []

    response = run_grid_search(points, "pizza", "", provider, max_concurrency=9)
    assert [result.point_id for result in response.results] == [point.id for point in points]


def test_failure_on_one_point_is_isolated():
    points = _grid()
    ranks = {(p.lat, p.lng): 5 for p in points}
    failing = next(p for p in points if p.id == "0_1")
    ranks[(failing.lat, failing.lng)] = RuntimeError("quota exceeded")

    response = run_grid_search(points, "pizza", "example.com", _provider_for(ranks))

    by_id = {result.point_id: result for result in response.results}
    assert by_id["0_1"].error == "quota exceeded"
    assert by_id["0_1"].places == []
    for point_id, result in by_id.items():
        if point_id != "0_1":
            assert result.rank == 5
            assert result.error is None
            assert len(result.places) == 20
    assert response.summary.found_count == 8
    assert response.summary.not_found_count == 1


def test_concurrency_is_bounded():
    points = _grid(size=5)
    lock = threading.Lock()
    state = {"active": 0, "peak": 0}

    def provider(lat, lng, keyword):
        with lock:
            state["active"] += 1
            state["peak"] = max(state["peak"], state["active"])
        time.sleep(0.01)
        with lock:
            state["active"] -= 1
        return []

    run_grid_search(points, "pizza", "", provider, max_concurrency=3)
    assert 1 <= state["peak"] <= 3


def test_total_failure_raises():
    def provider(lat, lng, keyword):
        raise ConnectionError("network down")

    with pytest.raises(GridSearchError, match="network down"):
        run_grid_search(_grid(), "pizza", "example.com", provider)


def test_cancellation_abandons_run():
    cancel = threading.Event()
    started = threading.Event()

    def provider(lat, lng, keyword):
        started.set()
        cancel.set()
        time.sleep(0.05)
        return []

    with pytest.raises(GridSearchCancelled):
        run_grid_search(_grid(size=5), "pizza", "", provider, max_concurrency=1, cancel_event=cancel)
    assert started.is_set()


@pytest.mark.parametrize(
    "keyword, points",
    [
        ("  ", None),
        ("pizza", []),
    ],
)
def test_input_validation_happens_before_dispatch(keyword, points):
    calls = []
    grid = _grid() if points is None else points

    with pytest.raises(ValidationError):
        run_grid_search(grid, keyword, "example.com", lambda *args: calls.append(args) or [])
    assert calls == []


def test_summary_cumulative_consistency():
    results = [_result(rank) for rank in (1, 3, 4, 10, 11, 20, 21, 57, None, None)]
    summary = summarize_results(results)

    assert summary.top3_count <= summary.top10_count <= summary.top20_count <= summary.found_count <= len(results)
    assert (summary.top3_count, summary.top10_count, summary.top20_count) == (2, 4, 6)
    assert 1 <= summary.avg_rank <= 57


def test_summary_without_matches():
    summary = summarize_results([_result(None), _result(None, error="boom")])
    assert summary.avg_rank is None
    assert summary.found_count == 0
    assert summary.not_found_count == 2
    assert summary.top3_percent == 0


def test_summary_of_empty_results():
    summary = summarize_results([])
    assert summary.avg_rank is None
    assert summary.top20_percent == 0


def test_round_half_up():
    assert round_half_up(2.5) == 3
    assert round_half_up(62.5) == 63
    assert round_half_up(6.25, 1) == 6.3
    assert round_half_up(1 / 3 * 100) == 33
