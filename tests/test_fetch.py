"""Tests for payload parsing and the month fetch protocol."""

import asyncio
import json
from datetime import datetime, timedelta, timezone

import pytest

from reward_scout import cache, freshness
from reward_scout.errors import CaptureError, PayloadError
from reward_scout.fetch import MonthFetcher, capture_json_response, decode_month_payload, parse_month_payload
from reward_scout.models import FetchStatus, MonthRequestKey
from reward_scout.scrapers.base import BrowserSession
from tests.mock_data import (
    EMPTY_MONTH_RESPONSE,
    MALFORMED_RESPONSE,
    MONTH_LIST_RESPONSE,
    MONTH_OBJECT_RESPONSE,
    cached_day,
)

KEY = MonthRequestKey("LHR", "JFK", "2025", "06")
NOW = datetime(2025, 5, 20, 12, 0, tzinfo=timezone.utc)
SCRAPED_AT = NOW.isoformat()


@pytest.fixture(autouse=True)
def tmp_cache(tmp_path, monkeypatch):
    monkeypatch.setattr(cache, "CACHE_DIR", tmp_path / "cache")
    yield


# ---------------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------------

class FakeResponse:
    def __init__(self, url, status=200, body=None):
        self.url = url
        self.status = status
        self._body = body

    async def json(self):
        if isinstance(self._body, Exception):
            raise self._body
        return self._body


class FakePage:
    """Emits the scripted responses to its listeners when navigated."""

    def __init__(self, responses=()):
        self.responses = list(responses)
        self.listeners = []
        self.visited = []
        self.closed = False

    def on(self, event, handler):
        self.listeners.append(handler)

    def remove_listener(self, event, handler):
        self.listeners.remove(handler)

    async def goto(self, url, **kwargs):
        self.visited.append(url)
        for response in self.responses:
            for handler in list(self.listeners):
                await handler(response)

    async def close(self):
        self.closed = True


class FakeSession(BrowserSession):
    def __init__(self, api_responses=(), page=None):
        self.api_responses = list(api_responses)
        self.api_calls = []
        self.page = page or FakePage()

    async def api_get(self, url, timeout):
        self.api_calls.append(url)
        outcome = self.api_responses.pop(0)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    async def new_page(self):
        return self.page

    async def refresh(self):
        pass

    def month_api_url(self, key):
        return f"https://example.test/api/seats?o={key.origin}&d={key.destination}"

    def month_page_url(self, key):
        return f"https://example.test/month?o={key.origin}&d={key.destination}"

    @property
    def api_url_fragment(self):
        return "/api/seats"


def _fetcher(session, **kwargs):
    kwargs.setdefault("retry_delay", 0)
    kwargs.setdefault("capture_timeout", 0.2)
    return MonthFetcher(session, clock=lambda: NOW, **kwargs)


# ---------------------------------------------------------------------------
# Payload parsing
# ---------------------------------------------------------------------------

class TestParseMonthPayload:
    def test_all_cabins(self):
        month = parse_month_payload(MONTH_LIST_RESPONSE, SCRAPED_AT)
        day = month["2025-06-01"]
        assert (day.economy, day.premium, day.upper) == (20000, 35000, 67500)
        assert day.economy_seats == 9
        assert day.economy_seats_display == "9"
        assert day.economy_is_saver is True
        assert day.min_price == 123.45
        assert day.currency == "GBP"
        assert day.scraped_at == SCRAPED_AT

    def test_zero_point_cabins_are_omitted(self):
        month = parse_month_payload(MONTH_LIST_RESPONSE, SCRAPED_AT)
        day = month["2025-06-02"]
        assert day.economy is None
        assert day.upper is None
        assert day.premium == 47500
        assert "economy" not in day.to_dict()

    def test_days_without_priced_cabins_or_seats_are_dropped(self):
        month = parse_month_payload(MONTH_LIST_RESPONSE, SCRAPED_AT)
        assert sorted(month) == ["2025-06-01", "2025-06-02"]

    def test_parsing_is_idempotent(self):
        first = parse_month_payload(MONTH_LIST_RESPONSE, SCRAPED_AT)
        second = parse_month_payload(json.loads(json.dumps(MONTH_LIST_RESPONSE)), SCRAPED_AT)
        assert first == second

    def test_month_object_shape(self):
        month = parse_month_payload(MONTH_OBJECT_RESPONSE, SCRAPED_AT)
        assert list(month) == ["2025-06-02"]

    def test_empty_month(self):
        assert parse_month_payload(EMPTY_MONTH_RESPONSE, SCRAPED_AT) == {}
        assert parse_month_payload([], SCRAPED_AT) == {}


class TestDecodeMonthPayload:
    def test_list_shape_takes_precedence(self):
        assert decode_month_payload(MONTH_LIST_RESPONSE).shape == "month-list"
        assert decode_month_payload(MONTH_OBJECT_RESPONSE).shape == "month-object"

    @pytest.mark.parametrize("raw", [MALFORMED_RESPONSE, "text", None, [1, 2], {"pointsDays": "x"}])
    def test_unknown_shapes_raise(self, raw):
        with pytest.raises(PayloadError):
            decode_month_payload(raw)

    def test_null_points_days_is_empty(self):
        assert decode_month_payload({"pointsDays": None}).points_days == []


# ---------------------------------------------------------------------------
# Browser capture
# ---------------------------------------------------------------------------

class TestCaptureJsonResponse:
    def test_first_matching_response_wins(self):
        page = FakePage([
            FakeResponse("https://example.test/static/app.js", body={}),
            FakeResponse("https://example.test/api/seats?x=1", body={"pointsDays": []}),
            FakeResponse("https://example.test/api/seats?x=2", body={"pointsDays": [1]}),
        ])
        body = asyncio.run(capture_json_response(page, "https://example.test/month", "/api/seats", 1.0))
        assert body == {"pointsDays": []}
        assert page.listeners == []

    def test_non_200_fails(self):
        page = FakePage([FakeResponse("https://example.test/api/seats", status=403)])
        with pytest.raises(CaptureError, match="403"):
            asyncio.run(capture_json_response(page, "https://example.test/month", "/api/seats", 1.0))
        assert page.listeners == []

    def test_unreadable_body_fails(self):
        page = FakePage([FakeResponse("https://example.test/api/seats", body=ValueError("bad json"))])
        with pytest.raises(PayloadError):
            asyncio.run(capture_json_response(page, "https://example.test/month", "/api/seats", 1.0))

    def test_times_out_without_a_match(self):
        page = FakePage([])
        with pytest.raises(asyncio.TimeoutError):
            asyncio.run(capture_json_response(page, "https://example.test/month", "/api/seats", 0.05))
        assert page.listeners == []


# ---------------------------------------------------------------------------
# Fetch protocol
# ---------------------------------------------------------------------------

class TestMonthFetcher:
    def test_direct_success_is_cached(self):
        session = FakeSession([(200, json.dumps(MONTH_LIST_RESPONSE))])
        result = asyncio.run(_fetcher(session).fetch(KEY))

        assert result.status is FetchStatus.SUCCESS
        assert not result.from_cache
        assert not result.used_fallback
        assert sorted(result.data) == ["2025-06-01", "2025-06-02"]
        stored = cache.get(freshness.month_cache_key(KEY))
        assert stored["2025-06-01"]["economySeats"] == 9

    def test_empty_month_is_cached(self):
        session = FakeSession([(200, json.dumps(EMPTY_MONTH_RESPONSE))])
        result = asyncio.run(_fetcher(session).fetch(KEY))
        assert result.status is FetchStatus.EMPTY
        assert cache.get(freshness.month_cache_key(KEY)) == {}

    def test_retry_after_failed_direct_attempt(self):
        session = FakeSession([
            (503, "<html>Service Unavailable</html>"),
            (200, json.dumps(MONTH_OBJECT_RESPONSE)),
        ])
        result = asyncio.run(_fetcher(session).fetch(KEY))
        assert result.status is FetchStatus.SUCCESS
        assert not result.used_fallback
        assert len(session.api_calls) == 2

    def test_browser_fallback_after_two_direct_failures(self):
        page = FakePage([FakeResponse("https://example.test/api/seats?o=LHR", body=MONTH_OBJECT_RESPONSE)])
        session = FakeSession([(500, "oops"), (200, "not json")], page=page)
        result = asyncio.run(_fetcher(session).fetch(KEY))

        assert result.status is FetchStatus.SUCCESS
        assert result.used_fallback
        assert list(result.data) == ["2025-06-02"]
        assert page.closed
        assert page.visited == ["https://example.test/month?o=LHR&d=JFK"]

    def test_everything_fails(self):
        session = FakeSession([asyncio.TimeoutError(), (403, "Forbidden " * 50)])
        result = asyncio.run(_fetcher(session, capture_timeout=0.05).fetch(KEY))

        assert result.status is FetchStatus.FAILED
        assert result.used_fallback
        assert result.reason.startswith("direct: HTTP 403: Forbidden")
        assert "browser: no availability response within 0.05s" in result.reason
        assert not cache.exists(freshness.month_cache_key(KEY))

    def test_first_direct_timeout_reason(self):
        session = FakeSession([asyncio.TimeoutError(), asyncio.TimeoutError()])
        result = asyncio.run(_fetcher(session, capture_timeout=0.05, direct_timeout=20).fetch(KEY))
        assert "direct: timeout after 20s" in result.reason

    def test_fresh_cache_hit_skips_network_and_backfills(self):
        written = NOW - timedelta(minutes=10)
        cache.put(
            freshness.month_cache_key(KEY),
            {"2025-06-01": cached_day(scraped_at=None)},
            written_at=written,
        )
        session = FakeSession([])
        result = asyncio.run(_fetcher(session).fetch(KEY))

        assert result.from_cache
        assert result.status is FetchStatus.SUCCESS
        assert result.data["2025-06-01"].scraped_at == written.isoformat()
        assert session.api_calls == []
        entry = cache.read_entry(freshness.month_cache_key(KEY))
        assert entry.data["2025-06-01"]["scrapedAt"] == written.isoformat()
        assert entry.written_at == written

    def test_stale_cache_is_refetched(self):
        cache.put(
            freshness.month_cache_key(KEY),
            {"2025-06-01": cached_day()},
            written_at=NOW - timedelta(minutes=61),
        )
        session = FakeSession([(200, json.dumps(EMPTY_MONTH_RESPONSE))])
        result = asyncio.run(_fetcher(session).fetch(KEY))
        assert not result.from_cache
        assert result.status is FetchStatus.EMPTY
        assert len(session.api_calls) == 1

    def test_force_fresh_ignores_cache(self):
        cache.put(freshness.month_cache_key(KEY), {"2025-06-01": cached_day()}, written_at=NOW)
        session = FakeSession([(200, json.dumps(EMPTY_MONTH_RESPONSE))])
        result = asyncio.run(_fetcher(session, force_fresh=True).fetch(KEY))
        assert not result.from_cache
