from functools import lru_cache

from pydantic import AnyUrl, Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )

    debug: bool = Field(False, description="Enable FastAPI debug mode")
    environment: str = Field(
        default="development",
        description="Runtime environment (development|staging|production)",
    )
    redis_url: str | None = Field(
        default=None,
        description="Redis connection URL for the shared cache tier (process-local cache when unset)",
    )
    market_cache_ttl_seconds: int = Field(
        default=300, description="TTL for normalized market listings in the shared cache", ge=1
    )
    arbitrage_cache_ttl_seconds: int = Field(
        default=300, description="TTL for the cross-source divergence report", ge=1
    )
    election_cache_ttl_seconds: int = Field(
        default=120, description="TTL for derived election ratings", ge=1
    )
    stale_fallback_seconds: int = Field(
        default=1800,
        description="Maximum age of the in-memory snapshot served when upstream and cache both fail",
        ge=0,
    )
    polymarket_base_url: AnyUrl = Field(
        default="https://gamma-api.polymarket.com",
        description="Base URL for Polymarket Gamma API",
    )
    polymarket_events_path: str = Field(
        default="/events",
        description="Relative path for the Polymarket events endpoint",
    )
    polymarket_page_size: int = Field(
        default=100, description="Number of Polymarket events to fetch per page", ge=1
    )
    polymarket_max_events: int = Field(
        default=300,
        description="Upper bound on Polymarket events fetched per listing pass",
        ge=1,
    )
    polymarket_min_volume: float = Field(
        default=5000.0, description="Minimum event volume (USD) for Polymarket markets", ge=0
    )
    polymarket_timeout_seconds: float = Field(
        default=15.0, description="Per-request timeout for Polymarket listing pages", gt=0
    )
    kalshi_base_url: AnyUrl = Field(
        default="https://api.elections.kalshi.com/trade-api/v2",
        description="Base URL for the Kalshi public trade API",
    )
    kalshi_events_path: str = Field(
        default="/events",
        description="Relative path for the Kalshi events endpoint",
    )
    kalshi_page_size: int = Field(
        default=200, description="Number of Kalshi events to fetch per page", ge=1, le=200
    )
    kalshi_max_pages: int = Field(
        default=3, description="Maximum Kalshi cursor pages fetched per listing pass", ge=1
    )
    kalshi_min_volume: float = Field(
        default=1000.0, description="Minimum summed event volume for Kalshi markets", ge=0
    )
    kalshi_timeout_seconds: float = Field(
        default=15.0, description="Per-request timeout for Kalshi listing pages", gt=0
    )
    max_outcomes: int = Field(
        default=6, description="Maximum outcomes kept for multi-outcome events", ge=2
    )
    user_agent: str = Field(
        default="MonitoringTheSituation/1.0",
        description="User-Agent header sent to exchange APIs",
    )
    election_cycle_year: int = Field(
        default=2026, description="Election cycle that race matching targets"
    )
    election_slug_fetch_enabled: bool = Field(
        default=True,
        description="Fetch known Polymarket race events by slug in addition to topic probes",
    )
    election_slug_concurrency: int = Field(
        default=10, description="Concurrent Polymarket slug requests", ge=1
    )
    election_slug_timeout_seconds: float = Field(
        default=8.0, description="Per-request timeout for Polymarket slug lookups", gt=0
    )
    listing_budget_seconds: float = Field(
        default=12.0,
        description="Time allowed for one paginated listing; pages collected before it elapses are kept",
        gt=0,
    )
    source_fetch_timeout_seconds: float = Field(
        default=16.0,
        description="Hard cap on one exchange fetch; on overrun the stale snapshot is served",
        gt=0,
    )
    probe_timeout_seconds: float = Field(
        default=20.0, description="Timeout applied to each concurrent topic probe", gt=0
    )
    refresh_timeout_seconds: float = Field(
        default=45.0,
        description="Soft timeout for one election refresh pass; completed probes are used on overrun",
        gt=0,
    )

    @field_validator("polymarket_events_path", "kalshi_events_path")
    @classmethod
    def _ensure_leading_slash(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("endpoint paths must not be empty")
        return value if value.startswith("/") else f"/{value}"

    @field_validator("redis_url", mode="before")
    @classmethod
    def _blank_redis_url(cls, value: object) -> object:
        if isinstance(value, str) and not value.strip():
            return None
        return value

    @model_validator(mode="after")
    def _nested_timeouts(self) -> "Settings":
        # A probe must outlive the fetch it waits on or the snapshot fallback is skipped.
        if not self.listing_budget_seconds < self.source_fetch_timeout_seconds < self.probe_timeout_seconds:
            raise ValueError(
                "expected listing_budget_seconds < source_fetch_timeout_seconds < probe_timeout_seconds"
            )
        return self


@lru_cache
def get_settings() -> Settings:
    return Settings()


settings = get_settings()
