"""Restrict routes and route data to what the user asked for on the command line."""

from typing import Iterable

from .models import Route, RouteAvailability
from .planner import route_endpoints
from .validation import ROUTE_CODE_RE


def is_route_code(value: str) -> bool:
    return ROUTE_CODE_RE.match(value) is not None


def _matches_any(route: Route, filters: list[str]) -> bool:
    code = route.code.upper()
    origin, destination = route_endpoints(route)
    for raw in filters:
        token = raw.strip().upper()
        if "-" in token:
            if token == code:
                return True
            continue
        if len(token) == 3 and token in (origin, destination):
            return True
    return False


def filter_routes(routes: Iterable[Route], filters: Iterable[str]) -> list[Route]:
    """Keep routes named by code (``LHR-JFK``) or touching an airport (``JFK``).

    No filters keeps everything.
    """
    filters = [f for f in filters if f and f.strip()]
    routes = list(routes)
    if not filters:
        return routes
    return [r for r in routes if _matches_any(r, filters)]


def filter_route_data(
    route_data: dict[str, RouteAvailability], routes: Iterable[Route]
) -> dict[str, RouteAvailability]:
    allowed = {r.code for r in routes}
    return {code: data for code, data in route_data.items() if code in allowed}


def filter_route_metadata(
    routes: Iterable[Route], route_data: dict[str, RouteAvailability]
) -> list[Route]:
    return [r for r in routes if r.code in route_data]
