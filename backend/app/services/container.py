"""Process-wide wiring of cache tier, exchange sources and services."""

from __future__ import annotations

from dataclasses import dataclass

import httpx
from loguru import logger

from app.cache import CacheBackend, build_cache_backend
from app.core.config import Settings, settings as default_settings
from ingestion.service import MarketSource, PolymarketSource, build_kalshi_source, build_polymarket_source
from matching.races import load_candidate_parties, load_race_catalog

from .arbitrage_service import ArbitrageService, build_arbitrage_cache
from .election_service import ElectionService, build_election_cache
from .market_service import MarketService


@dataclass(slots=True)
class ServiceContainer:
    backend: CacheBackend
    polymarket: PolymarketSource
    kalshi: MarketSource
    markets: MarketService
    arbitrage: ArbitrageService
    elections: ElectionService

    async def aclose(self) -> None:
        for cache in (
            self.polymarket.cache,
            self.kalshi.cache,
            self.arbitrage.cache,
            self.elections.cache,
        ):
            await cache.drain()
        await self.polymarket.aclose()
        await self.kalshi.aclose()
        await self.backend.close()
        logger.info("Service container closed")


def build_container(
    settings: Settings | None = None,
    *,
    backend: CacheBackend | None = None,
    polymarket_transport: httpx.AsyncBaseTransport | None = None,
    kalshi_transport: httpx.AsyncBaseTransport | None = None,
) -> ServiceContainer:
    settings = settings or default_settings
    backend = backend or build_cache_backend(settings.redis_url)
    polymarket = build_polymarket_source(backend, settings=settings, transport=polymarket_transport)
    kalshi = build_kalshi_source(backend, settings=settings, transport=kalshi_transport)

    catalog = load_race_catalog()
    if catalog.cycle != settings.election_cycle_year:
        logger.warning(
            "Race catalog is for {} but ELECTION_CYCLE_YEAR is {}",
            catalog.cycle,
            settings.election_cycle_year,
        )

    return ServiceContainer(
        backend=backend,
        polymarket=polymarket,
        kalshi=kalshi,
        markets=MarketService([polymarket, kalshi], probe_timeout=settings.probe_timeout_seconds),
        arbitrage=ArbitrageService(
            source_a=polymarket,
            source_b=kalshi,
            cache=build_arbitrage_cache(backend, settings=settings),
            probe_timeout=settings.probe_timeout_seconds,
        ),
        elections=ElectionService(
            polymarket=polymarket,
            kalshi=kalshi,
            catalog=catalog,
            candidates=load_candidate_parties(),
            cache=build_election_cache(backend, settings=settings),
            settings=settings,
        ),
    )
