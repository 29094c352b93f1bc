"""Pair same-topic markets across exchanges and flag price divergence."""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass

from app.core.text import normalize_text, tokenize
from app.domain import Market, TopicQuery

MIN_SIMILARITY = 0.35
MIN_DIVERGENCE = 0.03
DEDUPE_KEY_LENGTH = 40

SCAN_TOPICS: tuple[TopicQuery, ...] = (
    TopicQuery(required=("president", "election", "2028"), boost=("winner", "nominee")),
    TopicQuery(required=("ukraine", "russia", "war"), boost=("ceasefire", "peace")),
    TopicQuery(required=("china", "taiwan"), boost=("invasion", "conflict")),
    TopicQuery(required=("fed", "interest", "rate"), boost=("cut", "hike", "FOMC")),
    TopicQuery(required=("recession", "GDP", "economy"), boost=("2026", "2027")),
    TopicQuery(required=("bitcoin", "crypto"), boost=("price", "ETF")),
    TopicQuery(required=("AI", "artificial intelligence"), boost=("regulation", "GPT")),
    TopicQuery(required=("oil", "OPEC", "crude"), boost=("price", "barrel")),
    TopicQuery(required=("NATO", "alliance"), boost=("expansion", "defense")),
    TopicQuery(required=("immigration", "border"), boost=("policy", "wall")),
)


@dataclass(frozen=True, slots=True)
class Opportunity:
    market_a: Market
    market_b: Market
    price_a: float
    price_b: float
    similarity: float
    divergence: float
    direction: str

    @property
    def divergence_pct(self) -> float:
        return round(self.divergence * 100, 1)


def title_similarity(title_a: str, title_b: str) -> float:
    """Jaccard similarity of the normalized title token sets."""

    tokens_a = tokenize(title_a)
    tokens_b = tokenize(title_b)
    union = tokens_a | tokens_b
    if not union:
        return 0.0
    return len(tokens_a & tokens_b) / len(union)


def _best_counterpart(market: Market, candidates: Sequence[Market]) -> tuple[Market | None, float]:
    best: Market | None = None
    best_score = 0.0
    for candidate in candidates:
        score = title_similarity(market.question, candidate.question)
        if score > best_score and score >= MIN_SIMILARITY:
            best, best_score = candidate, score
    return best, best_score


def find_opportunities(markets_a: Iterable[Market], markets_b: Sequence[Market]) -> list[Opportunity]:
    """Best title match in ``markets_b`` for each market in ``markets_a``.

    Pairs are kept when the primary outcome prices differ by at least
    ``MIN_DIVERGENCE``; the result is ordered by divergence, largest first.
    """

    opportunities: list[Opportunity] = []
    for market in markets_a:
        counterpart, similarity = _best_counterpart(market, markets_b)
        if counterpart is None:
            continue
        price_a = market.primary_probability
        price_b = counterpart.primary_probability
        if price_a is None or price_b is None:
            continue
        divergence = round(abs(price_a - price_b), 6)
        if divergence < MIN_DIVERGENCE:
            continue
        opportunities.append(
            Opportunity(
                market_a=market,
                market_b=counterpart,
                price_a=price_a,
                price_b=price_b,
                similarity=round(similarity, 3),
                divergence=round(divergence, 3),
                direction=market.source if price_a > price_b else counterpart.source,
            )
        )
    opportunities.sort(key=lambda item: item.divergence, reverse=True)
    return opportunities


def dedupe_opportunities(opportunities: Iterable[Opportunity]) -> list[Opportunity]:
    seen: set[str] = set()
    unique: list[Opportunity] = []
    for opportunity in opportunities:
        key = normalize_text(opportunity.market_a.question)[:DEDUPE_KEY_LENGTH]
        if key in seen:
            continue
        seen.add(key)
        unique.append(opportunity)
    return unique
