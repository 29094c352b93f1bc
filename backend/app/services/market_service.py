"""Cross-exchange listing operations consumed by the API."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Sequence

from loguru import logger

from app.core.concurrency import collect_settled
from app.domain import Market, TopicQuery
from ingestion.service import MarketSource


@dataclass(slots=True)
class MarketQueryResult:
    total: int
    markets: Sequence[Market]


@dataclass(slots=True)
class TopicQueryResult(MarketQueryResult):
    query: TopicQuery = field(default_factory=lambda: TopicQuery(required=()))
    sources: dict[str, int] = field(default_factory=dict)


class MarketService:
    """Read-only facade merging every configured exchange.

    Each source is queried concurrently; a source that fails or times out
    contributes nothing and the others are still returned. Every listing can
    be narrowed to one exchange with ``source``.
    """

    def __init__(self, sources: Sequence[MarketSource], *, probe_timeout: float | None = None):
        self.sources = list(sources)
        self.probe_timeout = probe_timeout

    def _selected(self, source: str | None) -> list[MarketSource]:
        if source is None:
            return self.sources
        selected = [candidate for candidate in self.sources if candidate.name == source]
        if not selected:
            raise ValueError(f"unknown market source {source!r}")
        return selected

    async def get_top_markets(self, limit: int = 20, *, source: str | None = None) -> MarketQueryResult:
        per_source = await collect_settled(
            [candidate.get_all_markets() for candidate in self._selected(source)],
            default=[],
            branch_timeout=self.probe_timeout,
            label="markets",
        )
        merged = [market for markets in per_source for market in markets]
        merged.sort(key=lambda market: market.volume, reverse=True)
        top = merged[: max(limit, 0)]
        return MarketQueryResult(total=len(top), markets=top)

    async def get_markets_by_topic(
        self,
        query: TopicQuery,
        *,
        per_source_limit: int | None = None,
        source: str | None = None,
    ) -> TopicQueryResult:
        """Markets matching ``query``, best score first.

        ``per_source_limit`` caps each exchange before merging so a large
        exchange cannot crowd the other out.
        """

        sources = self._selected(source)
        ranked_per_source = await collect_settled(
            [candidate.rank_by_topic(query) for candidate in sources],
            default=[],
            branch_timeout=self.probe_timeout,
            label=f"topic {'/'.join(query.required)}",
        )
        if per_source_limit is not None:
            ranked_per_source = [ranked[: max(per_source_limit, 0)] for ranked in ranked_per_source]
        counts = {candidate.name: len(ranked) for candidate, ranked in zip(sources, ranked_per_source)}
        merged = [item for ranked in ranked_per_source for item in ranked]
        merged.sort(key=lambda item: (item[1], item[0].volume), reverse=True)
        markets = [market for market, _ in merged]
        logger.debug("Topic {} matched {} markets {}", query.required, len(markets), counts)
        return TopicQueryResult(total=len(markets), markets=markets, query=query, sources=counts)

    async def get_markets_by_country(self, country: str, *, source: str | None = None) -> MarketQueryResult:
        per_source = await collect_settled(
            [candidate.get_markets_by_country(country) for candidate in self._selected(source)],
            default=[],
            branch_timeout=self.probe_timeout,
            label=f"country {country}",
        )
        merged = [market for markets in per_source for market in markets]
        merged.sort(key=lambda market: market.volume, reverse=True)
        return MarketQueryResult(total=len(merged), markets=merged)
