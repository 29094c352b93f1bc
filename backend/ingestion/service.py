from __future__ import annotations

import json
from collections.abc import Callable, Iterable
from functools import partial
from typing import Any

import httpx
from loguru import logger

from app.cache import CacheBackend, ResilientCache
from app.core.config import Settings, settings as default_settings
from app.domain import Market, TopicQuery
from matching.country import filter_by_country
from matching.topic import rank_by_topic

from .client import KalshiClient, PolymarketClient
from .normalize import normalize_kalshi_events, normalize_polymarket_events

Normalizer = Callable[[list[dict[str, Any]]], list[Market]]


def encode_markets(markets: list[Market]) -> bytes:
    return json.dumps([market.to_dict() for market in markets]).encode("utf-8")


def decode_markets(payload: bytes) -> list[Market]:
    items = json.loads(payload)
    if not isinstance(items, list):
        raise ValueError("cached market listing must be a JSON array")
    return [Market.from_dict(item) for item in items]


def build_market_cache(
    backend: CacheBackend, *, name: str, settings: Settings | None = None
) -> ResilientCache[list[Market]]:
    settings = settings or default_settings
    return ResilientCache(
        backend,
        name=name,
        encode=encode_markets,
        decode=decode_markets,
        empty=list,
        ttl_seconds=settings.market_cache_ttl_seconds,
        stale_after_seconds=settings.stale_fallback_seconds,
        fetch_timeout=settings.source_fetch_timeout_seconds,
    )


class MarketSource:
    """One exchange: fetch, normalize and cache its listing.

    Every read goes through the injected :class:`ResilientCache`, so an
    unreachable exchange degrades to the cached listing, the stale snapshot or
    an empty list rather than an exception.
    """

    def __init__(
        self,
        *,
        name: str,
        client: PolymarketClient | KalshiClient,
        normalize: Normalizer,
        cache: ResilientCache[list[Market]],
        cache_key: str | None = None,
    ) -> None:
        self.name = name
        self.client = client
        self.normalize = normalize
        self.cache = cache
        self.cache_key = cache_key or f"{name}:markets:all"

    async def _fetch(self) -> list[Market]:
        events = await self.client.fetch_raw()
        markets = self.normalize(events)
        logger.info("{}: {} of {} events kept after normalization", self.name, len(markets), len(events))
        return markets

    async def get_all_markets(self) -> list[Market]:
        return await self.cache.get_or_fetch(self.cache_key, self._fetch)

    async def get_top_markets(self, limit: int = 20) -> list[Market]:
        markets = await self.get_all_markets()
        return markets[: max(limit, 0)]

    async def rank_by_topic(self, query: TopicQuery) -> list[tuple[Market, float]]:
        return rank_by_topic(await self.get_all_markets(), query)

    async def get_markets_by_topic(self, query: TopicQuery) -> list[Market]:
        return [market for market, _ in await self.rank_by_topic(query)]

    async def get_markets_by_country(self, country: str) -> list[Market]:
        return filter_by_country(await self.get_all_markets(), country)

    async def aclose(self) -> None:
        await self.client.aclose()


class PolymarketSource(MarketSource):
    client: PolymarketClient

    async def fetch_markets_by_slugs(self, slugs: Iterable[str], *, concurrency: int = 5) -> list[Market]:
        """Normalized markets for known event slugs; missing slugs are skipped."""

        events = await self.client.fetch_events_by_slugs(slugs, concurrency=concurrency)
        return self.normalize(events)


def build_polymarket_source(
    backend: CacheBackend,
    *,
    settings: Settings | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> PolymarketSource:
    settings = settings or default_settings
    return PolymarketSource(
        name="polymarket",
        client=PolymarketClient(settings=settings, transport=transport),
        normalize=partial(
            normalize_polymarket_events,
            min_volume=settings.polymarket_min_volume,
            max_outcomes=settings.max_outcomes,
        ),
        cache=build_market_cache(backend, name="polymarket", settings=settings),
    )


def build_kalshi_source(
    backend: CacheBackend,
    *,
    settings: Settings | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> MarketSource:
    settings = settings or default_settings
    return MarketSource(
        name="kalshi",
        client=KalshiClient(settings=settings, transport=transport),
        normalize=partial(
            normalize_kalshi_events,
            min_volume=settings.kalshi_min_volume,
            max_outcomes=settings.max_outcomes,
        ),
        cache=build_market_cache(backend, name="kalshi", settings=settings),
    )
