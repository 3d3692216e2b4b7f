"""Fetch one month of reward availability for a directed route.

Each request walks the same ladder:

1. cache check: a fresh, complete cached month is returned as-is;
2. direct attempt: call the availability API with the session's cookies;
3. direct retry: one more call after a short pause (cookies set by the
   landing page are sometimes not in place yet);
4. browser fallback: open a page on the user-facing month view and capture
   the availability response the page itself requests.

Whatever a successful attempt returns, including an empty month, is written
to the cache.
"""

import asyncio
import json
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Optional

from playwright.async_api import Error as PlaywrightError

from . import cache, freshness
from .errors import CaptureError, PayloadError
from .models import (
    DayAvailability,
    FetchResult,
    FetchStatus,
    MonthAvailability,
    MonthRequestKey,
    month_from_dict,
    month_to_dict,
)
from .scrapers.base import BrowserSession

logger = logging.getLogger(__name__)

DIRECT_TIMEOUT = 20.0  # seconds
DIRECT_RETRY_DELAY = 1.5
CAPTURE_TIMEOUT = 30.0
BODY_SNIPPET_CHARS = 120

# Our cabin name -> key under a day's "seats" object
CABIN_SEAT_KEYS = {
    "economy": "awardEconomy",
    "premium": "awardComfortPlusPremiumEconomy",
    "upper": "awardBusiness",
}


# ---------------------------------------------------------------------------
# Payload decoding
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class MonthPayload:
    """A decoded availability response.

    ``shape`` records which wire format matched:

    * ``month-list``: a JSON array of month objects; the first one is used.
      This is what the API returns today and is tried first.
    * ``month-object``: a bare month object. Older responses looked like this.
    """
    shape: str
    points_days: list


def decode_month_payload(raw: Any) -> MonthPayload:
    if isinstance(raw, list):
        if not raw:
            return MonthPayload("month-list", [])
        first = raw[0]
        if isinstance(first, dict) and "pointsDays" in first:
            return MonthPayload("month-list", _points_days(first))
        raise PayloadError("month list does not start with a month object")
    if isinstance(raw, dict) and "pointsDays" in raw:
        return MonthPayload("month-object", _points_days(raw))
    raise PayloadError(f"unrecognised payload of type {type(raw).__name__}")


def _points_days(month: dict) -> list:
    days = month.get("pointsDays")
    if days is None:
        return []
    if not isinstance(days, list):
        raise PayloadError("pointsDays is not a list")
    return days


def parse_month_payload(raw: Any, scraped_at: str) -> MonthAvailability:
    """Convert an availability response into a date -> DayAvailability map.

    Cabins with a zero (or missing) points value are left off the day, and a
    day with no priced cabin at all is left out of the month. The output
    depends only on ``raw`` and ``scraped_at``.
    """
    payload = decode_month_payload(raw)
    month: MonthAvailability = {}

    for day in payload.points_days:
        if not isinstance(day, dict):
            continue
        seats = day.get("seats")
        date_str = day.get("date")
        if not seats or not isinstance(seats, dict) or not isinstance(date_str, str):
            continue

        record = DayAvailability(
            scraped_at=scraped_at,
            min_price=day.get("minPrice"),
            currency=day.get("currency"),
            min_award_points_total=day.get("minAwardPointsTotal") or 0,
        )
        for cabin, seat_key in CABIN_SEAT_KEYS.items():
            seat = seats.get(seat_key)
            if not isinstance(seat, dict):
                continue
            points = seat.get("cabinPointsValue")
            if not isinstance(points, (int, float)) or isinstance(points, bool) or points <= 0:
                continue
            setattr(record, cabin, points)
            setattr(record, f"{cabin}_seats", seat.get("cabinClassSeatCount"))
            setattr(record, f"{cabin}_seats_display", seat.get("cabinClassSeatCountString"))
            setattr(record, f"{cabin}_is_saver", seat.get("isSaverAward"))

        if record.has_any_cabin():
            month[date_str[:10]] = record

    return month


def _snippet(body: str) -> str:
    text = " ".join((body or "").split())
    if len(text) > BODY_SNIPPET_CHARS:
        return text[:BODY_SNIPPET_CHARS] + "..."
    return text


# ---------------------------------------------------------------------------
# Browser capture
# ---------------------------------------------------------------------------

async def capture_json_response(
    page: Any,
    page_url: str,
    url_fragment: str,
    timeout: float,
) -> Any:
    """Navigate ``page`` to ``page_url`` and return the first matching JSON response.

    The first response whose URL contains ``url_fragment`` settles the
    capture; a non-200 status fails it. The timeout window covers navigation
    and the wait for the response together.

    Raises:
        asyncio.TimeoutError: no matching response inside the window.
        CaptureError: the matching response was not a 200.
        PayloadError: the matching response body was not JSON.
    """
    loop = asyncio.get_running_loop()
    captured: asyncio.Future = loop.create_future()

    async def handle_response(response):
        if captured.done() or url_fragment not in response.url:
            return
        if response.status != 200:
            captured.set_exception(CaptureError(f"intercepted HTTP {response.status}"))
            return
        try:
            body = await response.json()
        except (PlaywrightError, ValueError) as e:
            if not captured.done():
                captured.set_exception(PayloadError(f"unreadable response body: {e}"))
            return
        if not captured.done():
            captured.set_result(body)

    page.on("response", handle_response)
    deadline = loop.time() + timeout
    try:
        try:
            await page.goto(page_url, wait_until="domcontentloaded", timeout=timeout * 1000)
        except PlaywrightError as e:
            # The response we want can still arrive after a navigation error
            logger.debug(f"Navigation to {page_url} did not settle: {e}")
        remaining = max(deadline - loop.time(), 0.0)
        return await asyncio.wait_for(asyncio.shield(captured), timeout=remaining)
    finally:
        page.remove_listener("response", handle_response)
        if not captured.done():
            captured.cancel()


async def _close_page(page: Any) -> None:
    try:
        await page.close()
    except PlaywrightError as e:
        logger.debug(f"Closing fallback page failed: {e}")


# ---------------------------------------------------------------------------
# Fetch protocol
# ---------------------------------------------------------------------------

class MonthFetcher:
    """Runs the cache -> direct -> retry -> browser ladder for month requests."""

    def __init__(
        self,
        session: BrowserSession,
        force_fresh: bool = False,
        direct_timeout: float = DIRECT_TIMEOUT,
        retry_delay: float = DIRECT_RETRY_DELAY,
        capture_timeout: float = CAPTURE_TIMEOUT,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.session = session
        self.force_fresh = force_fresh
        self.direct_timeout = direct_timeout
        self.retry_delay = retry_delay
        self.capture_timeout = capture_timeout
        self.clock = clock or (lambda: datetime.now(timezone.utc))

    async def fetch(self, key: MonthRequestKey) -> FetchResult:
        cached = self._from_cache(key)
        if cached is not None:
            return cached

        month, reason = await self._direct_attempt(key)
        if month is None:
            logger.debug(f"{key.label}: direct attempt failed ({reason}), retrying")
            await asyncio.sleep(self.retry_delay)
            month, reason = await self._direct_attempt(key)

        used_fallback = False
        if month is None:
            logger.info(f"{key.label}: direct API failed twice ({reason}), trying browser capture")
            used_fallback = True
            month, fallback_reason = await self._browser_fallback(key)
            if month is None:
                return FetchResult(
                    FetchStatus.FAILED,
                    used_fallback=True,
                    reason=f"direct: {reason}; browser: {fallback_reason}",
                )

        self._store(key, month)
        status = FetchStatus.SUCCESS if month else FetchStatus.EMPTY
        logger.debug(f"{key.label}: {len(month)} dates with availability")
        return FetchResult(status, data=month, used_fallback=used_fallback)

    def _from_cache(self, key: MonthRequestKey) -> Optional[FetchResult]:
        if self.force_fresh:
            return None
        entry = freshness.read_month_entry(key)
        if entry is None:
            return None
        if not freshness.is_entry_usable(entry, self.clock()):
            logger.debug(f"{key.label}: cached month is stale or incomplete, refetching")
            return None

        # Days cached before capture times were recorded get the file's write time
        written_at = entry.written_at.isoformat()
        backfilled = False
        for day in entry.data.values():
            if not day.get("scrapedAt"):
                day["scrapedAt"] = written_at
                backfilled = True
        if backfilled:
            cache.put(freshness.month_cache_key(key), entry.data, written_at=entry.written_at)

        month = month_from_dict(entry.data)
        status = FetchStatus.SUCCESS if month else FetchStatus.EMPTY
        return FetchResult(status, data=month, from_cache=True)

    async def _direct_attempt(self, key: MonthRequestKey) -> tuple[Optional[MonthAvailability], Optional[str]]:
        url = self.session.month_api_url(key)
        try:
            status, body = await self.session.api_get(url, timeout=self.direct_timeout)
        except asyncio.TimeoutError:
            return None, f"timeout after {self.direct_timeout:g}s"
        except PlaywrightError as e:
            return None, f"request error: {e}"

        if not 200 <= status < 300:
            return None, f"HTTP {status}: {_snippet(body)}"
        try:
            return parse_month_payload(json.loads(body), self.clock().isoformat()), None
        except (ValueError, PayloadError) as e:
            return None, f"malformed payload: {e}"

    async def _browser_fallback(self, key: MonthRequestKey) -> tuple[Optional[MonthAvailability], Optional[str]]:
        try:
            page = await self.session.new_page()
        except PlaywrightError as e:
            return None, f"could not open page: {e}"
        try:
            raw = await capture_json_response(
                page,
                self.session.month_page_url(key),
                self.session.api_url_fragment,
                self.capture_timeout,
            )
            return parse_month_payload(raw, self.clock().isoformat()), None
        except asyncio.TimeoutError:
            return None, f"no availability response within {self.capture_timeout:g}s"
        except (CaptureError, PayloadError) as e:
            return None, str(e)
        except PlaywrightError as e:
            return None, f"browser error: {e}"
        finally:
            await _close_page(page)

    def _store(self, key: MonthRequestKey, month: MonthAvailability) -> None:
        try:
            cache.put(freshness.month_cache_key(key), month_to_dict(month))
        except OSError as e:
            logger.warning(f"{key.label}: could not write month cache: {e}")
