"""Cross-exchange divergence report."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Sequence

from loguru import logger

from app.cache import CacheBackend, ResilientCache
from app.core.concurrency import collect_settled
from app.core.config import Settings, settings as default_settings
from app.domain import Market, TopicQuery
from app.schemas import ArbitrageLeg, ArbitrageOpportunity, ArbitrageReport, ArbitrageSummary
from ingestion.service import MarketSource
from matching.arbitrage import SCAN_TOPICS, Opportunity, dedupe_opportunities, find_opportunities

CACHE_KEY = "arbitrage:opportunities"
MAX_OPPORTUNITIES = 20


def _empty_report() -> ArbitrageReport:
    return ArbitrageReport(updated_at=datetime.now(timezone.utc))


def build_arbitrage_cache(
    backend: CacheBackend, *, settings: Settings | None = None
) -> ResilientCache[ArbitrageReport]:
    settings = settings or default_settings
    return ResilientCache(
        backend,
        name="arbitrage",
        encode=lambda report: report.model_dump_json().encode("utf-8"),
        decode=ArbitrageReport.model_validate_json,
        empty=_empty_report,
        ttl_seconds=settings.arbitrage_cache_ttl_seconds,
        stale_after_seconds=settings.stale_fallback_seconds,
        is_empty=lambda report: not report.opportunities,
    )


def _leg(market: Market, price: float) -> ArbitrageLeg:
    return ArbitrageLeg(
        id=market.id,
        question=market.question,
        source=market.source,
        url=market.url,
        price=price,
        volume=market.volume,
    )


def _to_schema(opportunity: Opportunity) -> ArbitrageOpportunity:
    return ArbitrageOpportunity(
        market_a=_leg(opportunity.market_a, opportunity.price_a),
        market_b=_leg(opportunity.market_b, opportunity.price_b),
        similarity=opportunity.similarity,
        divergence=opportunity.divergence,
        divergence_pct=opportunity.divergence_pct,
        direction=opportunity.direction,
    )


def build_report(opportunities: Sequence[Opportunity], *, topics_scanned: int) -> ArbitrageReport:
    unique = dedupe_opportunities(sorted(opportunities, key=lambda item: item.divergence, reverse=True))
    percentages = [item.divergence_pct for item in unique]
    summary = ArbitrageSummary(
        total_scanned=topics_scanned,
        divergences_found=len(unique),
        avg_divergence_pct=round(sum(percentages) / len(percentages), 1) if percentages else 0.0,
        max_divergence_pct=max(percentages, default=0.0),
    )
    return ArbitrageReport(
        opportunities=[_to_schema(item) for item in unique[:MAX_OPPORTUNITIES]],
        summary=summary,
        updated_at=datetime.now(timezone.utc),
    )


class ArbitrageService:
    def __init__(
        self,
        *,
        source_a: MarketSource,
        source_b: MarketSource,
        cache: ResilientCache[ArbitrageReport],
        topics: Sequence[TopicQuery] = SCAN_TOPICS,
        probe_timeout: float | None = None,
    ) -> None:
        self.source_a = source_a
        self.source_b = source_b
        self.cache = cache
        self.topics = tuple(topics)
        self.probe_timeout = probe_timeout

    async def get_opportunities(self) -> ArbitrageReport:
        return await self.cache.get_or_fetch(CACHE_KEY, self.scan)

    async def scan(self) -> ArbitrageReport:
        """Probe every topic on both sources concurrently and pair the results."""

        probes = []
        for topic in self.topics:
            probes.append(self.source_a.get_markets_by_topic(topic))
            probes.append(self.source_b.get_markets_by_topic(topic))
        results = await collect_settled(
            probes, default=[], branch_timeout=self.probe_timeout, label="arbitrage"
        )

        opportunities: list[Opportunity] = []
        for index, topic in enumerate(self.topics):
            markets_a, markets_b = results[2 * index], results[2 * index + 1]
            if markets_a and markets_b:
                opportunities.extend(find_opportunities(markets_a, markets_b))

        report = build_report(opportunities, topics_scanned=len(self.topics))
        logger.info(
            "Arbitrage scan: {} divergences across {} topics",
            report.summary.divergences_found,
            len(self.topics),
        )
        return report
