"""Exceptions raised by the scrape engine."""


class ScrapeError(Exception):
    """Base error for scrape failures."""


class PayloadError(ScrapeError):
    """Raised when an availability payload matches no known shape."""


class CaptureError(ScrapeError):
    """Raised when the browser fallback sees a non-200 availability response."""


class SessionRefreshError(ScrapeError):
    """Raised when the landing page cannot be reloaded to renew the session."""


class NoRoutesError(ScrapeError):
    """Raised when route filters match nothing in the catalog."""

    def __init__(self, filters: list, available: list):
        if filters:
            message = f"No routes match {', '.join(filters)}"
        else:
            message = "The route catalog is empty"
        super().__init__(message)
        self.filters = filters
        self.available = available


class NoRequestsPlannedError(ScrapeError):
    """Raised when every selected route was malformed and nothing can be fetched."""


class NoDataError(ScrapeError):
    """Raised when a run completes but no route has any availability."""


class CircuitBreakerOpen(ScrapeError):
    """Raised when too many consecutive month fetches failed.

    Routes that completed before the breaker tripped are kept on the
    exception so callers can report them.
    """

    def __init__(self, failures: int, completed: dict, stats):
        super().__init__(
            f"Aborted after {failures} consecutive failed month fetches "
            f"({len(completed)} routes completed before the abort)"
        )
        self.failures = failures
        self.completed = completed
        self.stats = stats
