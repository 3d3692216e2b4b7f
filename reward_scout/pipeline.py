"""Scrape, process and build: the three stages behind the CLI commands.

``scrape_to_cache`` is the only stage that touches the network. It leaves
three aggregates in the cache: the per-route dataset and the run manifest,
which ``process`` turns into the report's data files, and the discovered
route catalog, which lets ``process`` reject unknown filters offline.
"""

import logging
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Optional

from . import cache, report
from .config import Settings
from .dispatcher import DispatchLimits, RequestDispatcher, ScrapeStats
from .errors import CircuitBreakerOpen, NoDataError, NoRequestsPlannedError, NoRoutesError
from .fetch import MonthFetcher
from .filters import filter_route_data, filter_route_metadata, filter_routes, is_route_code
from .models import Route, RouteAvailability, RunManifest
from .planner import MonthPlan, normalize_year_months, plan_month_requests, select_route_months
from .progress import ScrapeProgress, format_duration, print_run_summary
from .scrapers import VirginAtlanticAdapter, VirginAtlanticSession
from .validation import is_route_data_by_code, is_route_list, is_scrape_manifest

logger = logging.getLogger(__name__)

SCRAPE_METADATA_KEY = f"{cache.AGGREGATES_PREFIX}scrape-metadata.json"
FLIGHTS_DATASET_KEY = f"{cache.AGGREGATES_PREFIX}flights-dataset.json"
ROUTES_KEY = f"{cache.AGGREGATES_PREFIX}routes.json"


@dataclass
class ScrapeOutcome:
    manifest: RunManifest
    route_data: dict[str, RouteAvailability]
    stats: ScrapeStats


def _limits(settings: Settings) -> DispatchLimits:
    return DispatchLimits(
        max_in_flight=settings.max_in_flight,
        interval_ms=settings.dispatch_interval_ms,
        jitter_ms=settings.dispatch_jitter_ms,
        retry_limit=settings.retry_limit,
        failure_limit=settings.failure_limit,
    )


async def scrape_to_cache(
    settings: Settings,
    requested: list[str],
    force_fresh: bool = False,
    session_factory: Callable = VirginAtlanticSession,
    adapter_factory: Callable = VirginAtlanticAdapter,
) -> ScrapeOutcome:
    """Discover routes, fetch every month both ways, and cache the results.

    Raises:
        NoRoutesError: the filters matched no route in the catalog.
        NoRequestsPlannedError: every selected route was malformed.
        CircuitBreakerOpen: too many consecutive failures. Month files
            fetched so far stay cached, and routes completed before the
            abort are written as an incomplete dataset.
        NoDataError: the run finished but no route had any availability.
    """
    started = time.monotonic()
    cache.ensure_dirs()

    async with session_factory(headless=settings.headless) as session:
        adapter = adapter_factory(session)
        all_routes = await adapter.discover_routes()
        cache.put(ROUTES_KEY, [r.to_dict() for r in all_routes])

        targets = filter_routes(all_routes, requested)
        if not targets:
            raise NoRoutesError(list(requested), all_routes)

        logger.info(f"Searching {len(targets)} routes:")
        for route in targets:
            logger.info(f"  {route.code} - {route.name or '?'}")

        route_months = select_route_months(targets)
        plan = plan_month_requests(
            targets,
            route_months,
            force_fresh=force_fresh,
            route_concurrency=settings.route_concurrency,
        )
        if not plan.requests:
            raise NoRequestsPlannedError("No month requests could be planned for the selected routes")

        unique_months = normalize_year_months(m for months in plan.route_months.values() for m in months)
        logger.info(
            f"Fetching availability for route-specific month ranges "
            f"({len(unique_months)} unique months, {len(plan.requests)} requests)"
        )

        fetcher = MonthFetcher(session, force_fresh=force_fresh)
        with ScrapeProgress(len(plan.requests), enabled=settings.progress_bar) as progress:
            dispatcher = RequestDispatcher(
                fetcher,
                refresh_session=session.refresh,
                limits=_limits(settings),
                on_progress=progress.update,
            )
            try:
                route_data, stats = await dispatcher.dispatch(plan)
            except CircuitBreakerOpen as e:
                if e.completed:
                    _write_aggregates(targets, plan, e.completed, incomplete=True)
                    logger.warning(f"Saved {len(e.completed)} completed routes as an incomplete dataset")
                raise

    print_run_summary(stats)
    if not route_data:
        raise NoDataError("No data found for any route")

    manifest = _write_aggregates(targets, plan, route_data)

    elapsed = time.monotonic() - started
    logger.info(f"Total scrape time: {format_duration(elapsed)} ({elapsed * 1000:.0f}ms)")
    return ScrapeOutcome(manifest=manifest, route_data=route_data, stats=stats)


def _write_aggregates(
    targets: list[Route],
    plan: MonthPlan,
    route_data: dict[str, RouteAvailability],
    incomplete: bool = False,
) -> RunManifest:
    successful = [r for r in targets if r.code in route_data]
    successful_months = {r.code: plan.route_months[r.code] for r in successful}
    manifest = RunManifest(
        routes=tuple(successful),
        route_months=successful_months,
        months=tuple(normalize_year_months(m for months in successful_months.values() for m in months)),
        scraped_at=datetime.now(timezone.utc).isoformat(),
        incomplete=incomplete,
    )
    cache.put(FLIGHTS_DATASET_KEY, {code: data.to_dict() for code, data in route_data.items()})
    cache.put(SCRAPE_METADATA_KEY, manifest.to_dict())
    return manifest


def load_route_catalog() -> Optional[list[Route]]:
    """Routes seen by the last discovery, or None if never cached."""
    raw = cache.get(ROUTES_KEY, validator=is_route_list, description="route catalog")
    if raw is None:
        return None
    return [Route.from_dict(r) for r in raw]


def load_manifest() -> Optional[RunManifest]:
    raw = cache.get(SCRAPE_METADATA_KEY, validator=is_scrape_manifest, description="scrape metadata")
    if raw is None:
        return None
    return RunManifest.from_dict(raw)


def load_route_data(manifest: RunManifest) -> dict[str, RouteAvailability]:
    """Load the cached dataset, stamping days that predate capture times.

    Days without ``scrapedAt`` get the manifest's run time, and the dataset
    is written back so this only happens once.
    """
    raw = cache.get(FLIGHTS_DATASET_KEY, validator=is_route_data_by_code, description="flights dataset cache")
    if not raw:
        return {}

    migrated = False
    for route in raw.values():
        for month in route["outbound"] + route["inbound"]:
            for day in month.values():
                if not day.get("scrapedAt"):
                    day["scrapedAt"] = manifest.scraped_at
                    migrated = True
    if migrated:
        logger.info("Backfilled scrape timestamps in cached dataset")
        cache.put(FLIGHTS_DATASET_KEY, raw)

    return {code: RouteAvailability.from_dict(data) for code, data in raw.items()}


def write_processed(
    manifest: RunManifest,
    route_data: dict[str, RouteAvailability],
    requested: list[str],
) -> int:
    """Write the report data files for the requested routes. Returns the route count."""
    routes = filter_routes(manifest.routes, requested)
    scoped = filter_route_data(route_data, routes)
    if not scoped:
        raise NoDataError("No data available for requested routes")

    report.write_report_data(scoped)
    report.write_route_metadata(filter_route_metadata(routes, scoped))
    report.write_scrape_metadata(manifest.scraped_at)
    return len(scoped)


def _needs_scrape(
    manifest: Optional[RunManifest],
    route_data: dict[str, RouteAvailability],
    requested: list[str],
) -> bool:
    if manifest is None or not route_data:
        return True
    # Left behind by a run the circuit breaker aborted
    if manifest.incomplete:
        return True
    # Manifests from before routes were keyed ORIGIN-DEST
    if any(not is_route_code(r.code) for r in manifest.routes):
        return True
    if requested:
        wanted = filter_routes(manifest.routes, requested)
        if not wanted or any(r.code not in route_data for r in wanted):
            return True
    return False


async def process(settings: Settings, requested: list[str], no_cache: bool = False, **scrape_kwargs) -> int:
    """Build the report data files from cache, scraping first if the cache can't serve them."""
    cache.ensure_dirs()
    if requested and not no_cache:
        catalog = load_route_catalog()
        if catalog and not filter_routes(catalog, requested):
            raise NoRoutesError(list(requested), catalog)

    manifest = load_manifest()
    route_data = load_route_data(manifest) if manifest is not None else {}

    if no_cache or _needs_scrape(manifest, route_data, requested):
        logger.info("Cache missing or incomplete (or --no-cache set), running scrape first")
        outcome = await scrape_to_cache(settings, requested, force_fresh=no_cache, **scrape_kwargs)
        manifest, route_data = outcome.manifest, outcome.route_data
    else:
        logger.info(f"Processing from cache (scraped {manifest.scraped_at})")

    return write_processed(manifest, route_data, requested)


def build():
    cache.ensure_dirs()
    return report.build_report_shell()


async def run_all(settings: Settings, requested: list[str], no_cache: bool = False, **scrape_kwargs) -> int:
    outcome = await scrape_to_cache(settings, requested, force_fresh=no_cache, **scrape_kwargs)
    count = write_processed(outcome.manifest, outcome.route_data, requested)
    build()
    return count
