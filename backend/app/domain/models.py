"""Typed domain representations shared by ingestion, matching and the API."""

from __future__ import annotations

import math
from dataclasses import asdict, dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Literal

from dateutil import parser as date_parser

SourceName = Literal["polymarket", "kalshi"]
SOURCES: tuple[SourceName, ...] = ("polymarket", "kalshi")

Party = Literal["D", "R", "I"]


@dataclass(frozen=True, slots=True)
class Outcome:
    """A named resolution of a market with its implied probability."""

    name: str
    price: float | None = None

    def __post_init__(self) -> None:
        if self.price is None:
            return
        if not math.isfinite(self.price) or not 0.0 <= self.price <= 1.0:
            raise ValueError(f"outcome price must be a probability in [0, 1], got {self.price!r}")


@dataclass(frozen=True, slots=True)
class Market:
    """Immutable snapshot of one exchange listing, rebuilt on every fetch."""

    id: str
    question: str
    description: str
    volume: float
    liquidity: float
    outcomes: tuple[Outcome, ...]
    category: str
    tags: tuple[str, ...]
    active: bool
    closed: bool
    end_date: datetime | None
    url: str
    source: SourceName
    search_text: str
    raw_search_text: str
    image: str | None = None

    @property
    def usable(self) -> bool:
        return self.active and not self.closed

    @property
    def primary_probability(self) -> float | None:
        if not self.outcomes:
            return None
        return self.outcomes[0].price

    def to_dict(self) -> dict[str, Any]:
        payload = asdict(self)
        payload["end_date"] = self.end_date.isoformat() if self.end_date else None
        return payload

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> "Market":
        end_date = payload.get("end_date")
        return cls(
            id=str(payload["id"]),
            question=payload.get("question") or "",
            description=payload.get("description") or "",
            volume=float(payload.get("volume") or 0.0),
            liquidity=float(payload.get("liquidity") or 0.0),
            outcomes=tuple(
                Outcome(name=item["name"], price=item.get("price"))
                for item in payload.get("outcomes") or ()
            ),
            category=payload.get("category") or "Other",
            tags=tuple(payload.get("tags") or ()),
            active=bool(payload.get("active", True)),
            closed=bool(payload.get("closed", False)),
            end_date=date_parser.isoparse(end_date) if end_date else None,
            url=payload.get("url") or "",
            source=payload["source"],
            search_text=payload.get("search_text") or "",
            raw_search_text=payload.get("raw_search_text") or "",
            image=payload.get("image"),
        )


class OfficeType(str, Enum):
    SENATE = "senate"
    GOVERNOR = "governor"
    HOUSE = "house"


@dataclass(frozen=True, slots=True)
class Race:
    """One contest in the static race catalog."""

    state: str
    office: OfficeType
    district: int | None = None
    state_code: str | None = None
    primary_party: Literal["R", "D"] | None = None
    independent_candidate: str | None = None

    def __post_init__(self) -> None:
        if self.office is OfficeType.HOUSE and self.district is None:
            raise ValueError(f"house race in {self.state} requires a district number")
        if self.primary_party not in (None, "R", "D"):
            raise ValueError(f"unsupported primary party {self.primary_party!r}")

    @property
    def is_primary(self) -> bool:
        return self.primary_party is not None

    @property
    def district_code(self) -> str | None:
        if self.district is None or not self.state_code:
            return None
        return f"{self.state_code}-{self.district:02d}"

    @property
    def key(self) -> str:
        if self.is_primary:
            return f"{self.state}:{self.office.value}:primary:{self.primary_party}"
        if self.office is OfficeType.HOUSE:
            return f"{self.state}:house:{self.district_code}"
        return f"{self.state}:{self.office.value}"


@dataclass(frozen=True, slots=True)
class MatchResult:
    """Best market for a race within one derivation pass."""

    race: Race
    market: Market
    score: float


@dataclass(frozen=True, slots=True)
class TopicQuery:
    """Keyword probe: at least one ``required`` term must match."""

    required: tuple[str, ...]
    boost: tuple[str, ...] = field(default_factory=tuple)
    match_all: bool = False
