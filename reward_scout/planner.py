"""Turn routes x months into a deduplicated queue of month requests.

Every route needs its outbound leg (origin->destination) and its inbound leg
(destination->origin) for each of its months. Two routes that need the same
directed pair in the same month share one request; the request remembers
every (route, direction, month index) slot waiting on it.
"""

import logging
from dataclasses import dataclass, field
from datetime import date
from typing import Iterable, Optional

from . import freshness
from .models import Dependent, Direction, MonthRequest, MonthRequestKey, Route, YearMonth

logger = logging.getLogger(__name__)


@dataclass
class MonthPlan:
    requests: list[MonthRequest]
    route_months: dict[str, tuple[YearMonth, ...]]
    skipped: list[str] = field(default_factory=list)

    @property
    def dependent_count(self) -> int:
        return sum(len(r.dependents) for r in self.requests)


def normalize_year_months(months: Iterable) -> list[YearMonth]:
    """Validate, zero-pad, dedupe and sort month candidates.

    Accepts ``YearMonth`` objects or ``{"year", "month"}`` dicts. Anything
    that is not a real month (1-12) of a year >= 2000 is dropped.
    """
    seen: set[YearMonth] = set()
    result: list[YearMonth] = []
    for m in months:
        year_raw, month_raw = (m.get("year"), m.get("month")) if isinstance(m, dict) else (m.year, m.month)
        try:
            year_num = int(str(year_raw).strip())
            month_num = int(str(month_raw).strip())
        except (TypeError, ValueError):
            continue
        if not 1 <= month_num <= 12 or year_num < 2000:
            continue
        ym = YearMonth(year=str(year_num), month=f"{month_num:02d}")
        if ym in seen:
            continue
        seen.add(ym)
        result.append(ym)
    result.sort()
    return result


def next_12_months(today: Optional[date] = None) -> list[YearMonth]:
    today = today or date.today()
    months = []
    for offset in range(12):
        # Handles Dec->Jan rollover
        total = today.year * 12 + today.month - 1 + offset
        months.append(YearMonth(year=str(total // 12), month=f"{total % 12 + 1:02d}"))
    return months


def route_endpoints(route: Route) -> tuple[Optional[str], Optional[str]]:
    """Origin and destination codes, falling back to the halves of ``route.code``."""
    parts = route.code.split("-")
    fallback_origin = parts[0] if parts else ""
    fallback_destination = parts[1] if len(parts) > 1 else ""
    origin = (route.origin_code or fallback_origin or "").strip().upper()
    destination = (route.destination_code or fallback_destination or "").strip().upper()
    return origin or None, destination or None


def select_route_months(
    routes: Iterable[Route], today: Optional[date] = None
) -> dict[str, tuple[YearMonth, ...]]:
    """Each route's own candidate months, or the next 12 months when it has none."""
    default = tuple(next_12_months(today))
    selected = {}
    for route in routes:
        months = normalize_year_months(route.candidate_months)
        selected[route.code] = tuple(months) if months else default
    return selected


def _interleave(groups: list[list[MonthRequestKey]], window: int) -> list[MonthRequestKey]:
    """Order keys window by window; inside a window, round-robin across routes."""
    ordered: list[MonthRequestKey] = []
    for start in range(0, len(groups), window):
        batch = groups[start:start + window]
        longest = max((len(g) for g in batch), default=0)
        for i in range(longest):
            for group in batch:
                if i < len(group):
                    ordered.append(group[i])
    return ordered


def plan_month_requests(
    routes: Iterable[Route],
    route_months: dict[str, tuple[YearMonth, ...]],
    force_fresh: bool = False,
    route_concurrency: int = 1,
) -> MonthPlan:
    """Build the deduplicated request queue for ``routes``.

    ``route_concurrency`` controls queue order only: routes are taken in
    windows of that size and their requests interleaved, so a window's routes
    finish at about the same time before the next window starts.
    """
    by_key: dict[MonthRequestKey, MonthRequest] = {}
    key_groups: list[list[MonthRequestKey]] = []
    planned_months: dict[str, tuple[YearMonth, ...]] = {}
    skipped: list[str] = []

    for route in routes:
        origin, destination = route_endpoints(route)
        if not origin or not destination:
            logger.warning(f"{route.code}: invalid route definition, skipping")
            skipped.append(route.code)
            continue
        months = route_months.get(route.code) or ()
        if not months:
            logger.warning(f"{route.code}: no months selected, skipping")
            skipped.append(route.code)
            continue
        if route.code in planned_months:
            logger.warning(f"{route.code}: duplicate route in catalog, keeping first")
            continue

        planned_months[route.code] = tuple(months)
        group: list[MonthRequestKey] = []
        for index, ym in enumerate(months):
            for direction, (req_origin, req_destination) in (
                (Direction.OUTBOUND, (origin, destination)),
                (Direction.INBOUND, (destination, origin)),
            ):
                key = MonthRequestKey(req_origin, req_destination, ym.year, ym.month)
                request = by_key.get(key)
                if request is None:
                    request = MonthRequest(key=key)
                    by_key[key] = request
                    group.append(key)
                request.dependents.append(Dependent(route.code, direction, index))
        key_groups.append(group)

    ordered_keys = _interleave(key_groups, max(1, route_concurrency))
    requests = []
    for key in ordered_keys:
        request = by_key[key]
        request.likely_cache_hit = freshness.likely_cache_hit(key, force_fresh=force_fresh)
        requests.append(request)

    if requests:
        shared = sum(1 for r in requests if len(r.dependents) > 1)
        logger.info(
            f"Planned {len(requests)} month requests for {len(planned_months)} routes "
            f"({shared} shared between routes, "
            f"{sum(1 for r in requests if r.likely_cache_hit)} expected from cache)"
        )
    return MonthPlan(requests=requests, route_months=planned_months, skipped=skipped)
