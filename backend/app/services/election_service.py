"""Live race ratings derived from exchange prices."""

from __future__ import annotations

import time
from datetime import datetime, timezone
from typing import Mapping, Sequence

from loguru import logger

from app.cache import CacheBackend, ResilientCache
from app.core.concurrency import collect_settled
from app.core.config import Settings, settings as default_settings
from app.core.errors import UpstreamUnavailable
from app.domain import Market, TopicQuery
from app.schemas import ElectionLiveData, StateElectionData
from ingestion.service import MarketSource, PolymarketSource
from ingestion.slugs import race_slugs
from matching.election import derive_ratings
from matching.races import RaceCatalog

CACHE_KEY = "elections:live"

_GENERAL_BOOST = (
    "senate",
    "governor",
    "election",
    "midterm",
    "congress",
    "house",
    "democrat",
    "republican",
    "primary",
    "2026",
)

# Overlapping on purpose: many race markets never mention the cycle year.
POLYMARKET_PROBES: tuple[TopicQuery, ...] = (
    TopicQuery(required=("2026",), boost=_GENERAL_BOOST),
    TopicQuery(required=("senate",), boost=("2026", "election", "winner", "primary", "democrat", "republican")),
    TopicQuery(required=("governor",), boost=("2026", "election", "winner", "primary")),
    TopicQuery(required=("midterm",), boost=("2026", "senate", "governor", "house")),
    TopicQuery(required=("primary",), boost=("2026", "senate", "governor", "republican", "democrat")),
)

KALSHI_PROBES: tuple[TopicQuery, ...] = (
    TopicQuery(required=("2026",), boost=_GENERAL_BOOST),
    TopicQuery(required=("senate",), boost=("2026", "election", "winner", "primary")),
    TopicQuery(required=("governor",), boost=("2026", "election", "winner", "gubernatorial")),
    TopicQuery(required=("house",), boost=("2026", "election", "district", "winner")),
    TopicQuery(
        required=("primary",),
        boost=("2026", "senate", "governor", "republican", "democrat", "nominee"),
    ),
)


def _empty_live_data() -> ElectionLiveData:
    return ElectionLiveData(timestamp=datetime.now(timezone.utc))


def build_election_cache(
    backend: CacheBackend, *, settings: Settings | None = None
) -> ResilientCache[ElectionLiveData]:
    settings = settings or default_settings
    return ResilientCache(
        backend,
        name="elections",
        encode=lambda data: data.model_dump_json().encode("utf-8"),
        decode=ElectionLiveData.model_validate_json,
        empty=_empty_live_data,
        ttl_seconds=settings.election_cache_ttl_seconds,
        stale_after_seconds=settings.stale_fallback_seconds,
        is_empty=lambda data: not data.ratings and not data.primaries,
    )


def merge_unique(batches: Sequence[Sequence[Market]]) -> list[Market]:
    """Concatenate batches keeping the first market seen per identity."""

    seen: set[str] = set()
    merged: list[Market] = []
    for batch in batches:
        for market in batch:
            key = market.id or market.url or market.question
            if key in seen:
                continue
            seen.add(key)
            merged.append(market)
    return merged


class ElectionService:
    def __init__(
        self,
        *,
        polymarket: PolymarketSource,
        kalshi: MarketSource,
        catalog: RaceCatalog,
        candidates: Mapping[str, str],
        cache: ResilientCache[ElectionLiveData],
        settings: Settings | None = None,
    ) -> None:
        self.settings = settings or default_settings
        self.polymarket = polymarket
        self.kalshi = kalshi
        self.catalog = catalog
        self.candidates = dict(candidates)
        self.cache = cache

    async def collect_markets(self) -> list[Market]:
        """Run every probe concurrently and merge what came back in time."""

        branches = [self.polymarket.get_markets_by_topic(query) for query in POLYMARKET_PROBES]
        branches += [self.kalshi.get_markets_by_topic(query) for query in KALSHI_PROBES]
        if self.settings.election_slug_fetch_enabled:
            branches.append(
                self.polymarket.fetch_markets_by_slugs(
                    race_slugs(self.catalog), concurrency=self.settings.election_slug_concurrency
                )
            )
        batches = await collect_settled(
            branches,
            default=[],
            branch_timeout=self.settings.probe_timeout_seconds,
            overall_timeout=self.settings.refresh_timeout_seconds,
            label="elections",
        )
        return merge_unique(batches)

    async def refresh(self) -> ElectionLiveData:
        started = time.perf_counter()
        markets = await self.collect_markets()
        if not markets:
            raise UpstreamUnavailable("elections", "no election markets returned by any source")

        ratings, primaries = derive_ratings(markets, self.catalog, self.candidates)
        logger.info(
            "Election refresh done in {:.0f}ms: {} races and {} primaries matched from {} markets",
            (time.perf_counter() - started) * 1000,
            len(ratings),
            len(primaries),
            len(markets),
        )
        return ElectionLiveData(
            ratings=ratings,
            primaries=primaries,
            market_count=len(markets),
            races_matched=len(ratings),
            timestamp=datetime.now(timezone.utc),
        )

    async def get_live_data(self) -> ElectionLiveData:
        return await self.cache.get_or_fetch(CACHE_KEY, self.refresh)

    def resolve_state(self, state: str) -> str:
        wanted = state.strip().lower()
        return next((name for name in self.catalog.states if name.lower() == wanted), state.strip())

    async def get_state_data(self, state: str) -> StateElectionData:
        state = self.resolve_state(state)
        data = await self.get_live_data()
        return StateElectionData(
            state=state,
            senate=data.ratings.get(f"{state}:senate"),
            governor=data.ratings.get(f"{state}:governor"),
            house={
                rating.district or key.split(":")[-1]: rating
                for key, rating in data.ratings.items()
                if key.startswith(f"{state}:house:")
            },
            primaries={
                key: result for key, result in data.primaries.items() if key.startswith(f"{state}:")
            },
            timestamp=data.timestamp,
        )
