"""Data models for reward-scout availability scraping."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional

CABINS = ("economy", "premium", "upper")


class Direction(str, Enum):
    OUTBOUND = "outbound"
    INBOUND = "inbound"


class FetchStatus(str, Enum):
    SUCCESS = "success"
    EMPTY = "empty"
    FAILED = "failed"


@dataclass(frozen=True, order=True)
class YearMonth:
    """A calendar month. Both parts are zero-padded strings, so string order is date order."""
    year: str
    month: str

    @property
    def label(self) -> str:
        return f"{self.year}-{self.month}"

    def to_dict(self) -> dict:
        return {"year": self.year, "month": self.month}

    @classmethod
    def from_dict(cls, data: dict) -> "YearMonth":
        return cls(year=str(data["year"]), month=str(data["month"]))


@dataclass(frozen=True)
class Route:
    """An origin/destination pair as offered by the carrier's route picker."""
    code: str  # e.g. "LHR-JFK"
    origin_code: Optional[str] = None
    destination_code: Optional[str] = None
    name: Optional[str] = None  # destination display name
    group: Optional[str] = None  # destination region, e.g. "North America"
    origin_name: Optional[str] = None
    origin_group: Optional[str] = None
    candidate_months: tuple[YearMonth, ...] = ()

    def to_dict(self) -> dict:
        out: dict[str, Any] = {"code": self.code}
        for key, value in (
            ("originCode", self.origin_code),
            ("originName", self.origin_name),
            ("originGroup", self.origin_group),
            ("destinationCode", self.destination_code),
            ("name", self.name),
            ("group", self.group),
        ):
            if value is not None:
                out[key] = value
        out["availableMonths"] = [m.to_dict() for m in self.candidate_months]
        return out

    @classmethod
    def from_dict(cls, data: dict) -> "Route":
        return cls(
            code=data["code"],
            origin_code=data.get("originCode"),
            destination_code=data.get("destinationCode"),
            name=data.get("name"),
            group=data.get("group"),
            origin_name=data.get("originName"),
            origin_group=data.get("originGroup"),
            candidate_months=tuple(
                YearMonth.from_dict(m) for m in data.get("availableMonths") or []
            ),
        )


@dataclass(frozen=True)
class MonthRequestKey:
    """One directed origin->destination pair in one month: the unit of network work."""
    origin: str
    destination: str
    year: str
    month: str

    @property
    def label(self) -> str:
        return f"{self.origin}->{self.destination} {self.year}-{self.month}"


@dataclass(frozen=True)
class Dependent:
    route_code: str
    direction: Direction
    month_index: int


@dataclass
class MonthRequest:
    key: MonthRequestKey
    dependents: list[Dependent] = field(default_factory=list)
    likely_cache_hit: bool = False


@dataclass
class DayAvailability:
    """Reward inventory for one date. A cabin with no points value had no seats that day."""
    scraped_at: Optional[str] = None
    economy: Optional[int] = None
    economy_seats: Optional[int] = None
    economy_seats_display: Optional[str] = None
    economy_is_saver: Optional[bool] = None
    premium: Optional[int] = None
    premium_seats: Optional[int] = None
    premium_seats_display: Optional[str] = None
    premium_is_saver: Optional[bool] = None
    upper: Optional[int] = None
    upper_seats: Optional[int] = None
    upper_seats_display: Optional[str] = None
    upper_is_saver: Optional[bool] = None
    min_price: Optional[float] = None
    currency: Optional[str] = None
    min_award_points_total: Optional[int] = None

    def cabin_points(self, cabin: str) -> Optional[int]:
        return getattr(self, cabin)

    def cabin_seats(self, cabin: str) -> Optional[int]:
        return getattr(self, f"{cabin}_seats")

    def has_any_cabin(self) -> bool:
        return any(self.cabin_points(c) is not None for c in CABINS)

    def to_dict(self) -> dict:
        out: dict[str, Any] = {}
        for cabin in CABINS:
            if self.cabin_points(cabin) is None:
                continue
            out[cabin] = self.cabin_points(cabin)
            for suffix, attr in (("Seats", "seats"), ("SeatsDisplay", "seats_display"), ("IsSaver", "is_saver")):
                value = getattr(self, f"{cabin}_{attr}")
                if value is not None:
                    out[f"{cabin}{suffix}"] = value
        out["minPrice"] = self.min_price
        out["currency"] = self.currency
        if self.min_award_points_total is not None:
            out["minAwardPointsTotal"] = self.min_award_points_total
        if self.scraped_at is not None:
            out["scrapedAt"] = self.scraped_at
        return out

    @classmethod
    def from_dict(cls, data: dict) -> "DayAvailability":
        kwargs: dict[str, Any] = {
            "scraped_at": data.get("scrapedAt"),
            "min_price": data.get("minPrice"),
            "currency": data.get("currency"),
            "min_award_points_total": data.get("minAwardPointsTotal"),
        }
        for cabin in CABINS:
            kwargs[cabin] = data.get(cabin)
            kwargs[f"{cabin}_seats"] = data.get(f"{cabin}Seats")
            kwargs[f"{cabin}_seats_display"] = data.get(f"{cabin}SeatsDisplay")
            kwargs[f"{cabin}_is_saver"] = data.get(f"{cabin}IsSaver")
        return cls(**kwargs)


# ISO date -> availability. Empty means "fetched, nothing available".
MonthAvailability = dict[str, DayAvailability]


def month_to_dict(month: MonthAvailability) -> dict:
    return {date: day.to_dict() for date, day in month.items()}


def month_from_dict(data: dict) -> MonthAvailability:
    return {date: DayAvailability.from_dict(day) for date, day in data.items()}


@dataclass(frozen=True)
class RouteAvailability:
    """Per-month availability for both legs, indexed like the route's months."""
    outbound: tuple[MonthAvailability, ...]
    inbound: tuple[MonthAvailability, ...]

    def has_data(self) -> bool:
        return any(len(m) > 0 for m in self.outbound + self.inbound)

    def dates_found(self) -> int:
        return sum(len(m) for m in self.outbound + self.inbound)

    def to_dict(self) -> dict:
        return {
            "outbound": [month_to_dict(m) for m in self.outbound],
            "inbound": [month_to_dict(m) for m in self.inbound],
        }

    @classmethod
    def from_dict(cls, data: dict) -> "RouteAvailability":
        return cls(
            outbound=tuple(month_from_dict(m) for m in data.get("outbound", [])),
            inbound=tuple(month_from_dict(m) for m in data.get("inbound", [])),
        )


@dataclass(frozen=True)
class RunManifest:
    """Written once per run after aggregation; only superseded by the next run."""
    routes: tuple[Route, ...]
    route_months: dict[str, tuple[YearMonth, ...]]
    months: tuple[YearMonth, ...]
    scraped_at: str
    incomplete: bool = False

    def to_dict(self) -> dict:
        data = {
            "routes": [r.to_dict() for r in self.routes],
            "routeMonths": {
                code: [m.to_dict() for m in months]
                for code, months in self.route_months.items()
            },
            "months": [m.to_dict() for m in self.months],
            "scrapedAt": self.scraped_at,
        }
        if self.incomplete:
            data["incomplete"] = True
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "RunManifest":
        return cls(
            routes=tuple(Route.from_dict(r) for r in data["routes"]),
            route_months={
                code: tuple(YearMonth.from_dict(m) for m in months)
                for code, months in (data.get("routeMonths") or {}).items()
            },
            months=tuple(YearMonth.from_dict(m) for m in data["months"]),
            scraped_at=data["scrapedAt"],
            incomplete=bool(data.get("incomplete", False)),
        )


@dataclass
class FetchResult:
    """Outcome of running the fetch protocol for one month request."""
    status: FetchStatus
    data: MonthAvailability = field(default_factory=dict)
    from_cache: bool = False
    used_fallback: bool = False
    reason: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.status is not FetchStatus.FAILED
