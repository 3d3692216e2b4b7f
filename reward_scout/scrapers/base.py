"""Interfaces between the scrape engine and a carrier's website."""

from abc import ABC, abstractmethod
from typing import Any

from ..models import MonthRequestKey, Route, YearMonth


class BrowserSession(ABC):
    """A live browser session against the carrier's site.

    The session owns cookies shared by every request in a run; only
    ``refresh`` mutates them, and callers serialize refreshes.
    """

    @abstractmethod
    async def api_get(self, url: str, timeout: float) -> tuple[int, str]:
        """GET ``url`` with the session's cookies. Returns (status, body text)."""
        ...

    @abstractmethod
    async def new_page(self) -> Any:
        """Open a fresh page in the session's browser context. Caller closes it."""
        ...

    @abstractmethod
    async def refresh(self) -> None:
        """Re-open the landing page and accept consent prompts.

        Raises:
            SessionRefreshError: if the landing page could not be reloaded.
        """
        ...

    @abstractmethod
    def month_api_url(self, key: MonthRequestKey) -> str:
        """Machine API URL returning availability for one directed month."""
        ...

    @abstractmethod
    def month_page_url(self, key: MonthRequestKey) -> str:
        """User-facing page whose load triggers the same availability call."""
        ...

    @property
    @abstractmethod
    def api_url_fragment(self) -> str:
        """Substring identifying availability responses on the wire."""
        ...


class SiteAdapter(ABC):
    """Reads the route catalog from the carrier's route picker."""

    @property
    @abstractmethod
    def carrier_name(self) -> str:
        ...

    @abstractmethod
    async def discover_routes(self) -> list[Route]:
        """Every bookable route, each with the months the picker offers for it."""
        ...

    @abstractmethod
    async def extract_available_months(self, route: Route) -> list[YearMonth]:
        """Months the picker offers for ``route`` (normalized, sorted)."""
        ...
