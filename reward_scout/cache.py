"""JSON file cache with a schema-version envelope.

Every value is stored as ``{"schemaVersion", "writtenAt", "data"}``. A file
with no envelope, a different schema version, or data rejected by the
caller's validator is reported and treated as a miss.
"""

import json
import logging
import os
import posixpath
import tempfile
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Callable, Optional

logger = logging.getLogger(__name__)

CACHE_DIR = Path("cache")
OUTPUT_DIR = Path("output")
SCHEMA_VERSION = 1

RAW_MONTHS_PREFIX = "raw-months/"
AGGREGATES_PREFIX = "aggregates/"

Validator = Callable[[Any], bool]


@dataclass
class CacheEntry:
    data: Any
    written_at: datetime


def configure(cache_dir: Optional[Path] = None, output_dir: Optional[Path] = None) -> None:
    global CACHE_DIR, OUTPUT_DIR
    if cache_dir is not None:
        CACHE_DIR = Path(cache_dir)
    if output_dir is not None:
        OUTPUT_DIR = Path(output_dir)


def ensure_dirs() -> None:
    (CACHE_DIR / RAW_MONTHS_PREFIX).mkdir(parents=True, exist_ok=True)
    (CACHE_DIR / AGGREGATES_PREFIX).mkdir(parents=True, exist_ok=True)
    OUTPUT_DIR.mkdir(parents=True, exist_ok=True)


def path_for(key: str) -> Path:
    """Resolve a cache key to a file, refusing keys that escape the cache directory."""
    normalized = posixpath.normpath(str(key).replace("\\", "/")).lstrip("/")
    if not normalized or normalized == ".":
        raise ValueError(f"Invalid cache key: {key!r}")
    if normalized == ".." or normalized.startswith("../"):
        raise ValueError(f"Cache key escapes cache directory: {key!r}")
    return CACHE_DIR / normalized


def exists(key: str) -> bool:
    try:
        return path_for(key).exists()
    except ValueError:
        return False


def _parse_timestamp(value: str) -> datetime:
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _is_envelope(raw: Any) -> bool:
    return (
        isinstance(raw, dict)
        and isinstance(raw.get("schemaVersion"), int)
        and not isinstance(raw.get("schemaVersion"), bool)
        and isinstance(raw.get("writtenAt"), str)
        and "data" in raw
    )


def read_entry(
    key: str,
    validator: Optional[Validator] = None,
    description: Optional[str] = None,
    expected_version: int = SCHEMA_VERSION,
) -> Optional[CacheEntry]:
    """Read a cache entry with its write time, or None if absent or unusable."""
    path = path_for(key)
    if not path.exists():
        return None
    label = description or key
    try:
        raw = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, ValueError) as e:
        logger.warning(f"Cache read error for {label}: {e}")
        return None

    if not _is_envelope(raw):
        logger.warning(f"Invalid cache payload for {label}: missing schema envelope")
        return None
    if raw["schemaVersion"] != expected_version:
        logger.warning(
            f"Cache version mismatch for {label}: expected v{expected_version}, "
            f"got v{raw['schemaVersion']}"
        )
        return None
    try:
        written_at = _parse_timestamp(raw["writtenAt"])
    except ValueError:
        logger.warning(f"Invalid cache timestamp for {label}: {raw['writtenAt']!r}")
        return None
    if validator is not None and not validator(raw["data"]):
        logger.warning(f"Invalid cache shape for {label}")
        return None
    return CacheEntry(data=raw["data"], written_at=written_at)


def get(
    key: str,
    validator: Optional[Validator] = None,
    description: Optional[str] = None,
) -> Optional[Any]:
    entry = read_entry(key, validator=validator, description=description)
    return entry.data if entry is not None else None


def age(key: str, now: Optional[datetime] = None) -> Optional[timedelta]:
    """Time since the entry was written, or None when there is no usable entry."""
    entry = read_entry(key)
    if entry is None:
        return None
    now = now or datetime.now(timezone.utc)
    return now - entry.written_at


def put(key: str, value: Any, written_at: Optional[datetime] = None) -> None:
    """Write a value inside a fresh envelope. The file is replaced atomically."""
    path = path_for(key)
    path.parent.mkdir(parents=True, exist_ok=True)
    written_at = written_at or datetime.now(timezone.utc)
    payload = {
        "schemaVersion": SCHEMA_VERSION,
        "writtenAt": written_at.isoformat(),
        "data": value,
    }
    fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as fp:
            json.dump(payload, fp, indent=2)
        os.replace(tmp_name, path)
    except BaseException:
        Path(tmp_name).unlink(missing_ok=True)
        raise


def write_output(filename: str, content: str) -> Path:
    OUTPUT_DIR.mkdir(parents=True, exist_ok=True)
    path = OUTPUT_DIR / filename
    path.write_text(content, encoding="utf-8")
    return path


def make_month_key(origin: str, destination: str, year: str, month: str) -> str:
    return f"{RAW_MONTHS_PREFIX}{origin.upper()}-{destination.upper()}-{year}-{month}.json"
