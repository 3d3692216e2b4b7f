"""Tests for route completion aggregation."""

import logging

import pytest

from reward_scout import cache
from reward_scout.aggregator import RouteCompletionAggregator
from reward_scout.models import DayAvailability
from reward_scout.planner import plan_month_requests
from tests.mock_data import JFK_LHR, JULY, JUNE, LHR_JFK


@pytest.fixture(autouse=True)
def tmp_cache(tmp_path, monkeypatch):
    monkeypatch.setattr(cache, "CACHE_DIR", tmp_path / "cache")
    yield


def _day(points=20000):
    return DayAvailability(economy=points, economy_seats=2, currency="GBP")


def _plan(routes, months):
    return plan_month_requests(routes, {r.code: months for r in routes})


def test_route_completes_after_every_slot_resolves():
    plan = _plan([LHR_JFK], (JUNE, JULY))
    agg = RouteCompletionAggregator(plan.route_months)
    assert agg.pending("LHR-JFK") == 4

    finished = []
    for request in reversed(plan.requests):
        month = {f"{request.key.year}-{request.key.month}-01": _day()} if request.key.origin == "LHR" else {}
        finished += agg.resolve(request, month)

    assert finished == ["LHR-JFK"]
    availability = agg.completed["LHR-JFK"]
    assert list(availability.outbound[0]) == ["2025-06-01"]
    assert list(availability.outbound[1]) == ["2025-07-01"]
    assert availability.inbound == ({}, {})
    assert agg.unfinished == []


def test_route_without_any_dates_is_dropped(caplog):
    plan = _plan([LHR_JFK], (JUNE,))
    emitted = []
    agg = RouteCompletionAggregator(plan.route_months, on_route_complete=lambda code, data: emitted.append((code, data)))

    with caplog.at_level(logging.INFO):
        for request in plan.requests:
            agg.resolve(request, {})

    assert agg.completed == {}
    assert agg.dropped == ["LHR-JFK"]
    assert emitted == [("LHR-JFK", None)]
    assert "LHR-JFK: no availability data found" in caplog.text


def test_shared_request_feeds_both_routes():
    plan = _plan([LHR_JFK, JFK_LHR], (JUNE,))
    emitted = []
    agg = RouteCompletionAggregator(plan.route_months, on_route_complete=lambda code, data: emitted.append(code))

    outbound = next(r for r in plan.requests if r.key.origin == "LHR")
    inbound = next(r for r in plan.requests if r.key.origin == "JFK")

    assert agg.resolve(outbound, {"2025-06-10": _day()}) == []
    assert sorted(agg.resolve(inbound, {})) == ["JFK-LHR", "LHR-JFK"]
    assert sorted(emitted) == ["JFK-LHR", "LHR-JFK"]

    # LHR->JFK is the outbound leg of one route and the inbound leg of the other
    assert list(agg.completed["LHR-JFK"].outbound[0]) == ["2025-06-10"]
    assert list(agg.completed["JFK-LHR"].inbound[0]) == ["2025-06-10"]


def test_route_is_emitted_once(caplog):
    plan = _plan([LHR_JFK], (JUNE,))
    emitted = []
    agg = RouteCompletionAggregator(plan.route_months, on_route_complete=lambda code, data: emitted.append(code))

    for request in plan.requests:
        agg.resolve(request, {"2025-06-01": _day()})
    assert agg.resolve(plan.requests[0], {}) == []

    assert emitted == ["LHR-JFK"]
    assert "after the route finished" in caplog.text


def test_unfinished_routes():
    plan = _plan([LHR_JFK], (JUNE,))
    agg = RouteCompletionAggregator(plan.route_months)
    agg.resolve(plan.requests[0], {})
    assert agg.unfinished == ["LHR-JFK"]
    assert agg.pending("LHR-JFK") == 1
