"""Decide whether a cached month can be served without touching the network.

The same rule backs two callers: the planner asks once per request so the
dispatcher can skip rate limiting for expected cache hits, and the fetch
protocol asks again right before fetching. The two answers can differ if the
entry changes in between; the fetch protocol's answer is the one that counts.
"""

from datetime import datetime, timedelta, timezone
from typing import Optional

from . import cache
from .models import CABINS, MonthRequestKey
from .validation import is_month_data

FRESHNESS_WINDOW = timedelta(hours=1)


def month_cache_key(key: MonthRequestKey) -> str:
    return cache.make_month_key(key.origin, key.destination, key.year, key.month)


def has_missing_seat_counts(month: dict) -> bool:
    """True if any cabin carries a price but no seat count.

    Entries written before seat counts were captured look like this and must
    be refetched.
    """
    for day in month.values():
        for cabin in CABINS:
            if day.get(cabin) is not None and day.get(f"{cabin}Seats") is None:
                return True
    return False


def is_entry_usable(entry: Optional[cache.CacheEntry], now: Optional[datetime] = None) -> bool:
    if entry is None:
        return False
    if has_missing_seat_counts(entry.data):
        return False
    now = now or datetime.now(timezone.utc)
    return now - entry.written_at <= FRESHNESS_WINDOW


def read_month_entry(key: MonthRequestKey) -> Optional[cache.CacheEntry]:
    return cache.read_entry(
        month_cache_key(key),
        validator=is_month_data,
        description=f"month {key.label}",
    )


def likely_cache_hit(
    key: MonthRequestKey,
    force_fresh: bool = False,
    now: Optional[datetime] = None,
) -> bool:
    if force_fresh:
        return False
    return is_entry_usable(read_month_entry(key), now)
