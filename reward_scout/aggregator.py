"""Reassemble per-route availability as month requests resolve.

Requests finish in any order and one request may feed several routes, so
each route keeps a countdown of outstanding slots (two per month: outbound
and inbound). Every slot is written exactly once, and a route is judged the
moment its countdown hits zero.
"""

import logging
from typing import Callable, Optional

from .models import Direction, MonthAvailability, MonthRequest, RouteAvailability, YearMonth

logger = logging.getLogger(__name__)


class RouteCompletionAggregator:
    def __init__(
        self,
        route_months: dict[str, tuple[YearMonth, ...]],
        on_route_complete: Optional[Callable[[str, Optional[RouteAvailability]], None]] = None,
    ):
        self.route_months = route_months
        self.on_route_complete = on_route_complete
        self._pending = {code: 2 * len(months) for code, months in route_months.items()}
        self._outbound: dict[str, list[Optional[MonthAvailability]]] = {
            code: [None] * len(months) for code, months in route_months.items()
        }
        self._inbound: dict[str, list[Optional[MonthAvailability]]] = {
            code: [None] * len(months) for code, months in route_months.items()
        }
        self.completed: dict[str, RouteAvailability] = {}
        self.dropped: list[str] = []

    def pending(self, route_code: str) -> int:
        return self._pending.get(route_code, 0)

    @property
    def unfinished(self) -> list[str]:
        return [code for code, count in self._pending.items() if count > 0]

    def resolve(self, request: MonthRequest, month: MonthAvailability) -> list[str]:
        """Fan ``month`` out to every slot waiting on ``request``.

        Returns the route codes that finished during this call.
        """
        finished = []
        for dep in request.dependents:
            if dep.route_code not in self._pending:
                logger.warning(f"{request.key.label}: result for unknown route {dep.route_code}")
                continue
            if self._pending[dep.route_code] <= 0:
                logger.warning(f"{dep.route_code}: slot resolved after the route finished, ignoring")
                continue
            slots = self._outbound if dep.direction is Direction.OUTBOUND else self._inbound
            slots[dep.route_code][dep.month_index] = month
            self._pending[dep.route_code] -= 1
            if self._pending[dep.route_code] == 0:
                self._finish(dep.route_code)
                finished.append(dep.route_code)
        return finished

    def _finish(self, route_code: str) -> None:
        availability = RouteAvailability(
            outbound=tuple(self._outbound.pop(route_code)),
            inbound=tuple(self._inbound.pop(route_code)),
        )
        if availability.has_data():
            self.completed[route_code] = availability
            logger.info(f"{route_code}: data collected ({availability.dates_found()} dated entries)")
            emitted: Optional[RouteAvailability] = availability
        else:
            self.dropped.append(route_code)
            logger.info(f"{route_code}: no availability data found")
            emitted = None
        if self.on_route_complete is not None:
            self.on_route_complete(route_code, emitted)
