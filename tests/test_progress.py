"""Tests for progress reporting and the Virgin Atlantic helpers."""

import logging

from reward_scout.dispatcher import ScrapeStats
from reward_scout.models import MonthRequestKey
from reward_scout.progress import ScrapeProgress, format_duration, print_run_summary
from reward_scout.scrapers.virgin import VirginAtlanticSession, clean_airport_name


def test_format_duration():
    assert format_duration(0) == "0s"
    assert format_duration(59.9) == "59s"
    assert format_duration(61) == "1m 1s"
    assert format_duration(-5) == "0s"


def test_progress_without_terminal_logs_lines(caplog):
    stats = ScrapeStats(total=4, completed=2, successful=1, empty=1, cached=1)
    with caplog.at_level(logging.INFO):
        with ScrapeProgress(4, enabled=False) as progress:
            progress.update(stats)
    assert "Progress 2/4 (50%)" in caplog.text
    assert "cache:1" in caplog.text
    assert "ok_avg:--" in caplog.text


def test_run_summary_renders():
    print_run_summary(ScrapeStats(total=3, completed=3, successful=2, failed=1))


def test_clean_airport_name():
    assert clean_airport_name("Atlanta (ATL)") == "Atlanta"
    assert clean_airport_name("London Heathrow") == "London Heathrow"
    assert clean_airport_name("") is None
    assert clean_airport_name(None) is None


def test_month_urls():
    session = VirginAtlanticSession()
    key = MonthRequestKey("LHR", "JFK", "2025", "06")
    api_url = session.month_api_url(key)
    assert session.api_url_fragment in api_url
    assert "origin=LHR" in api_url and "destination=JFK" in api_url
    assert "month=06" in api_url and "year=2025" in api_url
    assert session.month_page_url(key).startswith("https://www.virginatlantic.com/reward-flight-finder/results/month?")
