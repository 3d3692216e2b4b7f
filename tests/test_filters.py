"""Tests for route filters."""

from reward_scout.filters import filter_route_data, filter_route_metadata, filter_routes, is_route_code
from reward_scout.models import Route, RouteAvailability
from tests.mock_data import JFK_LHR, LHR_ATL, LHR_JFK, MAN_JFK

ROUTES = [LHR_JFK, JFK_LHR, MAN_JFK, LHR_ATL]


def _codes(routes):
    return [r.code for r in routes]


def test_is_route_code():
    assert is_route_code("LHR-JFK")
    assert not is_route_code("lhr-jfk")
    assert not is_route_code("LHR")
    assert not is_route_code("London Heathrow")


def test_no_filters_keeps_everything():
    assert filter_routes(ROUTES, []) == ROUTES
    assert filter_routes(ROUTES, ["", "  "]) == ROUTES


def test_route_code_filter():
    assert _codes(filter_routes(ROUTES, ["LHR-JFK"])) == ["LHR-JFK"]
    assert _codes(filter_routes(ROUTES, ["lhr-jfk"])) == ["LHR-JFK"]


def test_airport_filter_matches_either_end():
    assert _codes(filter_routes(ROUTES, ["JFK"])) == ["LHR-JFK", "JFK-LHR", "MAN-JFK"]
    assert _codes(filter_routes(ROUTES, ["atl"])) == ["LHR-ATL"]


def test_airport_filter_uses_code_when_endpoints_missing():
    bare = Route(code="LGW-BGI")
    assert filter_routes([bare], ["BGI"]) == [bare]


def test_filters_combine_as_union():
    assert _codes(filter_routes(ROUTES, ["MAN", "LHR-ATL"])) == ["MAN-JFK", "LHR-ATL"]


def test_unknown_filter_matches_nothing():
    assert filter_routes(ROUTES, ["XXX"]) == []
    assert filter_routes(ROUTES, ["LONDON"]) == []


def test_filter_route_data_and_metadata():
    data = {
        "LHR-JFK": RouteAvailability(outbound=({},), inbound=({},)),
        "MAN-JFK": RouteAvailability(outbound=({},), inbound=({},)),
    }
    scoped = filter_route_data(data, [LHR_JFK, LHR_ATL])
    assert list(scoped) == ["LHR-JFK"]
    assert filter_route_data(data, []) == {}
    assert _codes(filter_route_metadata(ROUTES, scoped)) == ["LHR-JFK"]
