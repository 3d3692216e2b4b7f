"""Shape checks for cached JSON, used as cache validators."""

import re
from typing import Any

DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")
ROUTE_CODE_RE = re.compile(r"^[A-Z]{3}-[A-Z]{3}$")


def _optional(value: Any, *types: type) -> bool:
    if value is None:
        return True
    if isinstance(value, bool) and bool not in types:
        return False
    return isinstance(value, types)


def is_year_month(value: Any) -> bool:
    return (
        isinstance(value, dict)
        and isinstance(value.get("month"), str)
        and re.fullmatch(r"\d{2}", value["month"]) is not None
        and isinstance(value.get("year"), str)
        and re.fullmatch(r"\d{4}", value["year"]) is not None
    )


def is_month_data_day(value: Any) -> bool:
    if not isinstance(value, dict):
        return False
    for cabin in ("economy", "premium", "upper"):
        if not (
            _optional(value.get(cabin), int, float)
            and _optional(value.get(f"{cabin}Seats"), int, float)
            and _optional(value.get(f"{cabin}SeatsDisplay"), str)
            and _optional(value.get(f"{cabin}IsSaver"), bool)
        ):
            return False
    return (
        _optional(value.get("minPrice"), int, float)
        and _optional(value.get("currency"), str)
        and _optional(value.get("minAwardPointsTotal"), int, float)
        and _optional(value.get("scrapedAt"), str)
    )


def is_month_data(value: Any) -> bool:
    if not isinstance(value, dict):
        return False
    return all(
        isinstance(date, str) and DATE_RE.match(date) and is_month_data_day(day)
        for date, day in value.items()
    )


def is_route(value: Any) -> bool:
    if not isinstance(value, dict) or not isinstance(value.get("code"), str):
        return False
    for key in ("originCode", "originName", "originGroup", "destinationCode", "name", "group"):
        if not _optional(value.get(key), str):
            return False
    months = value.get("availableMonths")
    if months is not None:
        if not isinstance(months, list) or not all(is_year_month(m) for m in months):
            return False
    return True


def is_route_list(value: Any) -> bool:
    return isinstance(value, list) and all(is_route(r) for r in value)


def _is_route_month_data(value: Any) -> bool:
    return (
        isinstance(value, dict)
        and isinstance(value.get("outbound"), list)
        and isinstance(value.get("inbound"), list)
        and all(is_month_data(m) for m in value["outbound"])
        and all(is_month_data(m) for m in value["inbound"])
    )


def is_route_data_by_code(value: Any) -> bool:
    return isinstance(value, dict) and all(_is_route_month_data(v) for v in value.values())


def is_scrape_manifest(value: Any) -> bool:
    if not isinstance(value, dict):
        return False
    if not is_route_list(value.get("routes")):
        return False
    months = value.get("months")
    if not isinstance(months, list) or not all(is_year_month(m) for m in months):
        return False
    if not isinstance(value.get("scrapedAt"), str):
        return False
    if not isinstance(value.get("incomplete", False), bool):
        return False
    route_months = value.get("routeMonths")
    if route_months is not None:
        if not isinstance(route_months, dict):
            return False
        for months in route_months.values():
            if not isinstance(months, list) or not all(is_year_month(m) for m in months):
                return False
    return True
