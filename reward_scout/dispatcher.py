"""Drive a month-request plan to completion.

A fixed-size pool of asyncio tasks pulls from the planned queue in order.
Network-bound launches are spaced by a minimum interval plus random jitter;
requests the planner expects to answer from cache launch immediately. A
failed request is retried after a session refresh, and a run of consecutive
failures across all requests trips a breaker that stops new launches.
"""

import asyncio
import logging
import random
import time
from dataclasses import dataclass, field, replace
from typing import Awaitable, Callable, Optional

from .aggregator import RouteCompletionAggregator
from .errors import CircuitBreakerOpen, SessionRefreshError
from .fetch import MonthFetcher
from .models import FetchResult, FetchStatus, MonthRequest, RouteAvailability
from .planner import MonthPlan

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DispatchLimits:
    max_in_flight: int = 4
    interval_ms: int = 350
    jitter_ms: int = 250
    retry_limit: int = 1
    failure_limit: int = 12


@dataclass
class ScrapeStats:
    total: int
    completed: int = 0
    successful: int = 0
    empty: int = 0
    failed: int = 0
    fallback_used: int = 0
    cached: int = 0
    session_refreshes: int = 0
    started_at: float = field(default_factory=time.monotonic)

    @property
    def elapsed(self) -> float:
        return time.monotonic() - self.started_at

    def ms_per_network_success(self) -> Optional[float]:
        network_successes = self.successful - self.cached
        if network_successes <= 0:
            return None
        return self.elapsed * 1000 / network_successes


class DispatchPacer:
    """Enforces a minimum gap, plus jitter, between network-bound launches."""

    def __init__(
        self,
        interval_ms: int,
        jitter_ms: int = 0,
        rng: Optional[random.Random] = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.interval = interval_ms / 1000
        self.jitter = jitter_ms / 1000
        self.rng = rng or random.Random()
        self.clock = clock
        self.sleep = sleep
        self._next_at = 0.0
        self._lock = asyncio.Lock()

    async def wait(self) -> None:
        async with self._lock:
            delay = self._next_at - self.clock()
            if delay > 0:
                await self.sleep(delay)
            jitter = self.rng.uniform(0, self.jitter) if self.jitter > 0 else 0.0
            self._next_at = self.clock() + self.interval + jitter


class ScrapeRun:
    """Mutable state shared by every task in one dispatch.

    Counter updates happen in plain (non-async) methods, so no other task can
    interleave with them.
    """

    def __init__(self, total: int, failure_limit: int):
        self.stats = ScrapeStats(total=total)
        self.failure_limit = failure_limit
        self.consecutive_failures = 0
        self.breaker_tripped = False
        self.tripped_at_failures = 0
        self.refresh_lock = asyncio.Lock()
        self.refresh_generation = 0
        self.last_refresh_ok = True

    def record(self, result: FetchResult) -> ScrapeStats:
        stats = self.stats
        stats.completed += 1
        if result.used_fallback:
            stats.fallback_used += 1
        if result.from_cache:
            stats.cached += 1

        if result.status is FetchStatus.FAILED:
            stats.failed += 1
            self.consecutive_failures += 1
            if self.consecutive_failures >= self.failure_limit and not self.breaker_tripped:
                self.breaker_tripped = True
                self.tripped_at_failures = self.consecutive_failures
                logger.error(
                    f"Circuit breaker tripped after {self.consecutive_failures} consecutive "
                    "failures; no new requests will be started"
                )
        else:
            if result.status is FetchStatus.SUCCESS:
                stats.successful += 1
            else:
                stats.empty += 1
            self.consecutive_failures = 0
        return replace(stats)


class RequestDispatcher:
    def __init__(
        self,
        fetcher: MonthFetcher,
        refresh_session: Callable[[], Awaitable[None]],
        limits: DispatchLimits = DispatchLimits(),
        on_progress: Optional[Callable[[ScrapeStats], None]] = None,
        on_route_complete: Optional[Callable[[str, Optional[RouteAvailability]], None]] = None,
        pacer: Optional[DispatchPacer] = None,
    ):
        self.fetcher = fetcher
        self.refresh_session = refresh_session
        self.limits = limits
        self.on_progress = on_progress
        self.on_route_complete = on_route_complete
        self.pacer = pacer or DispatchPacer(limits.interval_ms, limits.jitter_ms)

    async def dispatch(self, plan: MonthPlan) -> tuple[dict[str, RouteAvailability], ScrapeStats]:
        """Resolve every request in ``plan``.

        Returns the routes that finished with data, and the run statistics.

        Raises:
            CircuitBreakerOpen: too many consecutive failures. In-flight
                requests are allowed to finish first; routes completed by
                then travel on the exception.
        """
        run = ScrapeRun(total=len(plan.requests), failure_limit=self.limits.failure_limit)
        aggregator = RouteCompletionAggregator(plan.route_months, self.on_route_complete)
        in_flight: set[asyncio.Task] = set()
        max_in_flight = max(1, self.limits.max_in_flight)

        for request in plan.requests:
            while len(in_flight) >= max_in_flight:
                _, in_flight = await asyncio.wait(in_flight, return_when=asyncio.FIRST_COMPLETED)
            if run.breaker_tripped:
                break
            if not request.likely_cache_hit:
                await self.pacer.wait()
            if run.breaker_tripped:
                break
            in_flight.add(asyncio.create_task(self._run_request(request, run, aggregator)))

        if in_flight:
            await asyncio.wait(in_flight)

        if run.breaker_tripped:
            not_started = run.stats.total - run.stats.completed
            logger.error(f"Run aborted with {not_started} month requests not started")
            raise CircuitBreakerOpen(run.tripped_at_failures, dict(aggregator.completed), run.stats)

        if aggregator.unfinished:
            logger.warning(f"{len(aggregator.unfinished)} routes did not receive all months")
        return dict(aggregator.completed), run.stats

    async def _run_request(
        self,
        request: MonthRequest,
        run: ScrapeRun,
        aggregator: RouteCompletionAggregator,
    ) -> None:
        result = await self._fetch_with_retries(request, run)
        if not result.ok:
            for dep in request.dependents:
                logger.warning(
                    f"{dep.route_code} {dep.direction.value} {request.key.year}-{request.key.month} "
                    f"({request.key.label}) failed: {result.reason}"
                )
        snapshot = run.record(result)
        aggregator.resolve(request, result.data)
        if self.on_progress is not None:
            self.on_progress(snapshot)

    async def _fetch_with_retries(self, request: MonthRequest, run: ScrapeRun) -> FetchResult:
        attempt = 0
        while True:
            generation = run.refresh_generation
            try:
                result = await self.fetcher.fetch(request.key)
            except Exception as e:  # noqa: BLE001
                logger.exception(f"{request.key.label}: unexpected fetch error")
                result = FetchResult(FetchStatus.FAILED, reason=f"unexpected error: {e}")

            if result.ok or attempt >= self.limits.retry_limit or run.breaker_tripped:
                return result
            attempt += 1
            logger.info(
                f"{request.key.label}: attempt {attempt} failed ({result.reason}); "
                "refreshing session before retry"
            )
            if not await self._refresh(run, generation):
                return result
            await self.pacer.wait()

    async def _refresh(self, run: ScrapeRun, seen_generation: int) -> bool:
        """Refresh the shared session once, however many requests ask at the same time.

        A request that waited while another refresh ran reuses that refresh's
        outcome. Returns False if the refresh failed.
        """
        async with run.refresh_lock:
            if run.refresh_generation != seen_generation:
                return run.last_refresh_ok
            try:
                await self.refresh_session()
            except SessionRefreshError as e:
                logger.warning(f"Session refresh failed: {e}")
                run.last_refresh_ok = False
            except Exception:  # noqa: BLE001
                logger.exception("Session refresh failed unexpectedly")
                run.last_refresh_ok = False
            else:
                run.last_refresh_ok = True
                run.stats.session_refreshes += 1
                logger.info("Session refreshed")
            run.refresh_generation += 1
            return run.last_refresh_ok
