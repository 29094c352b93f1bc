from datetime import datetime

from pydantic import BaseModel, Field, field_validator

from app.domain import Market as DomainMarket


class Outcome(BaseModel):
    name: str
    price: float | None = None

    model_config = {"from_attributes": True}


class Market(BaseModel):
    id: str
    question: str
    description: str = ""
    volume: float
    liquidity: float = 0.0
    outcomes: list[Outcome] = Field(default_factory=list)
    category: str | None = None
    tags: list[str] = Field(default_factory=list)
    active: bool = True
    closed: bool = False
    end_date: datetime | None = None
    url: str
    source: str
    image: str | None = None

    model_config = {"from_attributes": True}

    @classmethod
    def from_domain(cls, market: DomainMarket) -> "Market":
        return cls.model_validate(market)


class MarketList(BaseModel):
    total: int
    items: list[Market]


class TopicMarketList(MarketList):
    required: list[str]
    boost: list[str] = Field(default_factory=list)
    match_all: bool = False
    sources: dict[str, int] = Field(default_factory=dict)


class CountryMarketList(MarketList):
    country: str


class ArbitrageLeg(BaseModel):
    id: str
    question: str
    source: str
    url: str
    price: float
    volume: float


class ArbitrageOpportunity(BaseModel):
    market_a: ArbitrageLeg
    market_b: ArbitrageLeg
    similarity: float
    divergence: float
    divergence_pct: float
    direction: str


class ArbitrageSummary(BaseModel):
    total_scanned: int = 0
    divergences_found: int = 0
    avg_divergence_pct: float = 0.0
    max_divergence_pct: float = 0.0


class ArbitrageReport(BaseModel):
    opportunities: list[ArbitrageOpportunity] = Field(default_factory=list)
    summary: ArbitrageSummary = Field(default_factory=ArbitrageSummary)
    updated_at: datetime


class OutcomePct(BaseModel):
    name: str
    pct: int | None = None


class RaceRating(BaseModel):
    state: str
    office: str
    district: str | None = None
    rating: str
    d_win_prob: int
    r_win_prob: int
    i_win_prob: int | None = None
    independent_candidate: str | None = None
    market_question: str
    market_url: str
    market_source: str
    market_volume: float
    outcomes: list[OutcomePct] = Field(default_factory=list)

    @field_validator("d_win_prob", "r_win_prob", "i_win_prob")
    @classmethod
    def _percentage(cls, value: int | None) -> int | None:
        if value is not None and not 0 <= value <= 100:
            raise ValueError("win probabilities are percentages in [0, 100]")
        return value


class PrimaryCandidate(BaseModel):
    name: str
    pct: int


class PrimaryResult(BaseModel):
    state: str
    office: str
    party: str
    candidates: list[PrimaryCandidate]
    market_question: str
    market_url: str
    market_source: str
    market_volume: float
    derived: bool = False


class ElectionLiveData(BaseModel):
    ratings: dict[str, RaceRating] = Field(default_factory=dict)
    primaries: dict[str, PrimaryResult] = Field(default_factory=dict)
    market_count: int = 0
    races_matched: int = 0
    timestamp: datetime


class StateElectionData(BaseModel):
    state: str
    senate: RaceRating | None = None
    governor: RaceRating | None = None
    house: dict[str, RaceRating] = Field(default_factory=dict)
    primaries: dict[str, PrimaryResult] = Field(default_factory=dict)
    timestamp: datetime

