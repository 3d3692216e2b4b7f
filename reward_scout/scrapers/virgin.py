"""Virgin Atlantic reward flight finder, driven with Playwright."""

import logging
import re
from dataclasses import replace
from typing import Any, Optional
from urllib.parse import urlencode

from playwright.async_api import Error as PlaywrightError
from playwright.async_api import async_playwright

from ..errors import SessionRefreshError
from ..models import MonthRequestKey, Route, YearMonth
from ..planner import normalize_year_months
from .base import BrowserSession, SiteAdapter

logger = logging.getLogger(__name__)

BASE_URL = "https://www.virginatlantic.com"
LANDING_URL = f"{BASE_URL}/reward-flight-finder"
MONTH_PAGE_URL = f"{BASE_URL}/reward-flight-finder/results/month"
API_URL_FRAGMENT = "/reward-seat-checker-api/"
MONTH_API_URL = f"{BASE_URL}/travelplus/reward-seat-checker-api/"

CONSENT_BUTTON = "#onetrust-accept-btn-handler"

# URLs to block for faster loading (analytics, ads, tracking)
BLOCK_URLS = [
    "www.googletagmanager.com",
    "www.google-analytics.com",
    "doubleclick.net",
    "facebook.net",
    "facebook.com",
    "bing.com",
    "tiktok.com",
    "demdex.net",
    "cdn.optimizely.com",
    "quantummetric.com",
    "siteintercept.qualtrics.com",
    "collect.tealiumiq.com",
]

NAME_CODE_SUFFIX = re.compile(r"\s*\([A-Z]{3}\)\s*$")

READ_OPTIONS_JS = """
(selector) => {
  const select = document.querySelector(selector);
  if (!select) return [];
  const rows = [];
  const groups = select.querySelectorAll("optgroup");
  if (groups.length > 0) {
    groups.forEach((og) => {
      Array.from(og.children).forEach((opt) => {
        rows.push({value: opt.value, label: (opt.textContent || "").trim(), group: og.label || null});
      });
    });
  } else {
    Array.from(select.options).forEach((opt) => {
      rows.push({value: opt.value, label: (opt.textContent || "").trim(), group: null});
    });
  }
  return rows;
}
"""


def _month_query(key: MonthRequestKey) -> str:
    return urlencode({
        "origin": key.origin,
        "destination": key.destination,
        "month": key.month,
        "year": key.year,
    })


def clean_airport_name(label: Optional[str]) -> Optional[str]:
    """ "Atlanta (ATL)" -> "Atlanta" """
    if not label:
        return None
    return NAME_CODE_SUFFIX.sub("", label).strip() or None


class VirginAtlanticSession(BrowserSession):
    """One Chromium browser with one context, shared by a whole scrape run.

    Use as an async context manager; the landing page is opened (and the
    cookie banner accepted) on entry.
    """

    def __init__(self, headless: bool = True, timeout: float = 30.0):
        self.headless = headless
        self.timeout = timeout
        self._playwright = None
        self.browser = None
        self.context = None
        self.page = None

    async def __aenter__(self) -> "VirginAtlanticSession":
        self._playwright = await async_playwright().start()
        self.browser = await self._playwright.chromium.launch(
            headless=self.headless,
            args=[
                "--no-sandbox",
                "--disable-blink-features=AutomationControlled",
                "--disable-dev-shm-usage",
                "--disable-gpu",
            ],
        )
        self.context = await self.browser.new_context(
            user_agent=(
                "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) "
                "AppleWebKit/537.36 (KHTML, like Gecko) "
                "Chrome/121.0.0.0 Safari/537.36"
            ),
            locale="en-GB",
            viewport={"width": 1280, "height": 800},
        )
        await self.context.route("**/*", self._handle_route)
        self.page = await self.context.new_page()
        await self.open_landing()
        return self

    async def __aexit__(self, *exc_info) -> None:
        if self.browser is not None:
            await self.browser.close()
        if self._playwright is not None:
            await self._playwright.stop()

    @staticmethod
    async def _handle_route(route) -> None:
        url = route.request.url
        if any(pattern in url for pattern in BLOCK_URLS):
            await route.abort()
            return
        await route.continue_()

    async def open_landing(self) -> None:
        logger.info(f"Opening {LANDING_URL}")
        await self.page.goto(LANDING_URL, wait_until="domcontentloaded", timeout=self.timeout * 1000)
        await self.accept_consent(self.page)

    @staticmethod
    async def accept_consent(page) -> None:
        button = page.locator(CONSENT_BUTTON)
        try:
            await button.wait_for(state="visible", timeout=5000)
        except PlaywrightError:
            logger.debug("No cookie banner shown")
            return
        await button.click()
        await page.wait_for_timeout(1000)

    async def refresh(self) -> None:
        try:
            await self.open_landing()
        except PlaywrightError as e:
            raise SessionRefreshError(str(e)) from e

    async def api_get(self, url: str, timeout: float) -> tuple[int, str]:
        response = await self.context.request.get(
            url,
            timeout=timeout * 1000,
            headers={"Accept": "application/json", "Referer": LANDING_URL},
        )
        return response.status, await response.text()

    async def new_page(self) -> Any:
        page = await self.context.new_page()
        page.set_default_timeout(self.timeout * 1000)
        return page

    def month_api_url(self, key: MonthRequestKey) -> str:
        return f"{MONTH_API_URL}?{_month_query(key)}"

    def month_page_url(self, key: MonthRequestKey) -> str:
        return f"{MONTH_PAGE_URL}?{_month_query(key)}"

    @property
    def api_url_fragment(self) -> str:
        return API_URL_FRAGMENT


class VirginAtlanticAdapter(SiteAdapter):
    """Reads routes and their bookable months from the reward flight finder form."""

    def __init__(self, session: VirginAtlanticSession, settle_ms: int = 150):
        self.session = session
        self.settle_ms = settle_ms

    @property
    def carrier_name(self) -> str:
        return "virgin-atlantic"

    @property
    def page(self):
        return self.session.page

    async def _options(self, selector: str) -> list[dict]:
        rows = await self.page.evaluate(READ_OPTIONS_JS, selector)
        return [r for r in rows if r.get("value")]

    async def _select_origin(self, origin_code: str) -> None:
        await self.page.select_option("#origin", origin_code)
        await self.page.wait_for_function(
            "() => { const s = document.querySelector('#destination'); return s && s.options.length > 1; }",
            timeout=10000,
        )

    async def discover_routes(self) -> list[Route]:
        logger.info("Reading routes from the reward flight finder")
        await self.page.wait_for_selector("#origin", timeout=10000)

        origins = [o for o in await self._options("#origin") if len(o["value"]) == 3]
        routes: list[Route] = []
        for origin in origins:
            origin_code = origin["value"].upper()
            try:
                await self._select_origin(origin_code)
            except PlaywrightError as e:
                logger.warning(f"{origin_code}: destinations did not load ({e})")
                continue

            for dest in await self._options("#destination"):
                dest_code = dest["value"].upper()
                if len(dest_code) != 3:
                    continue
                route = Route(
                    code=f"{origin_code}-{dest_code}",
                    origin_code=origin_code,
                    destination_code=dest_code,
                    name=clean_airport_name(dest["label"]),
                    group=dest.get("group"),
                    origin_name=clean_airport_name(origin["label"]),
                    origin_group=origin.get("group"),
                )
                try:
                    months = await self.extract_available_months(route)
                except PlaywrightError as e:
                    logger.warning(f"{route.code}: failed to read month options ({e})")
                    months = []
                if not months:
                    logger.warning(f"{route.code}: no month options found")
                routes.append(replace(route, candidate_months=tuple(months)))

        logger.info(f"Found {len(routes)} routes from {len(origins)} origins")
        return routes

    async def extract_available_months(self, route: Route) -> list[YearMonth]:
        page = self.page
        current_origin = await page.eval_on_selector("#origin", "(s) => s.value")
        if (current_origin or "").upper() != route.origin_code:
            await self._select_origin(route.origin_code)
        await page.select_option("#destination", route.destination_code)
        await page.wait_for_timeout(self.settle_ms)

        has_selects = await page.evaluate(
            "() => !!document.querySelector('#month') && !!document.querySelector('#year')"
        )
        if not has_selects:
            return []

        years = [
            o["value"].strip() for o in await self._options("#year")
            if re.fullmatch(r"\d{4}", o["value"].strip())
        ]
        found = []
        for year in years:
            await page.select_option("#year", year)
            await page.wait_for_timeout(120)
            for option in await self._options("#month"):
                value = option["value"].strip()
                if re.fullmatch(r"\d{1,2}", value):
                    found.append({"year": year, "month": value})
        return normalize_year_months(found)
