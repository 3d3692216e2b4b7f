"""Runtime settings.

Tuning knobs come from the environment (a local ``.env`` is loaded once on
import). An unset or invalid value silently falls back to its default so a
typo never aborts a long scrape.
"""

import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

load_dotenv()

ENV_PREFIX = "REWARD_SCOUT_"


def get_positive_int_env(name: str, fallback: int) -> int:
    raw = os.getenv(name)
    if not raw:
        return fallback
    try:
        parsed = int(raw)
    except ValueError:
        return fallback
    return parsed if parsed >= 1 else fallback


def get_non_negative_int_env(name: str, fallback: int) -> int:
    raw = os.getenv(name)
    if not raw:
        return fallback
    try:
        parsed = int(raw)
    except ValueError:
        return fallback
    return parsed if parsed >= 0 else fallback


def get_bool_env(name: str, fallback: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return fallback
    return raw.strip().lower() not in ("0", "false", "no", "off")


@dataclass(frozen=True)
class Settings:
    max_in_flight: int = 4
    dispatch_interval_ms: int = 350
    dispatch_jitter_ms: int = 250
    retry_limit: int = 1
    failure_limit: int = 12
    route_concurrency: int = 1
    headless: bool = True
    progress_bar: bool = True
    cache_dir: Path = Path("cache")
    output_dir: Path = Path("output")

    @classmethod
    def from_env(cls) -> "Settings":
        d = cls()
        return cls(
            max_in_flight=get_positive_int_env(f"{ENV_PREFIX}MAX_IN_FLIGHT", d.max_in_flight),
            dispatch_interval_ms=get_positive_int_env(
                f"{ENV_PREFIX}DISPATCH_INTERVAL_MS", d.dispatch_interval_ms
            ),
            dispatch_jitter_ms=get_non_negative_int_env(
                f"{ENV_PREFIX}DISPATCH_JITTER_MS", d.dispatch_jitter_ms
            ),
            retry_limit=get_non_negative_int_env(f"{ENV_PREFIX}RETRY_LIMIT", d.retry_limit),
            failure_limit=get_positive_int_env(f"{ENV_PREFIX}FAILURE_LIMIT", d.failure_limit),
            route_concurrency=get_positive_int_env(
                f"{ENV_PREFIX}ROUTE_CONCURRENCY", d.route_concurrency
            ),
            headless=get_bool_env(f"{ENV_PREFIX}HEADLESS", d.headless),
            progress_bar=get_bool_env(f"{ENV_PREFIX}PROGRESS_BAR", d.progress_bar),
            cache_dir=Path(os.getenv(f"{ENV_PREFIX}CACHE_DIR") or d.cache_dir),
            output_dir=Path(os.getenv(f"{ENV_PREFIX}OUTPUT_DIR") or d.output_dir),
        )
