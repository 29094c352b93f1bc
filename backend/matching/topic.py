"""Keyword relevance scoring for normalized markets."""

from __future__ import annotations

from collections.abc import Iterable, Sequence

from app.core.text import keyword_pattern, normalize_text
from app.domain import Market, TopicQuery

REQUIRED_TITLE_WEIGHT = 3.0
REQUIRED_BODY_WEIGHT = 2.0
BOOST_TITLE_WEIGHT = 1.5
BOOST_BODY_WEIGHT = 1.0


def _normalized_keywords(keywords: Iterable[str]) -> list[str]:
    normalized = (normalize_text(keyword) for keyword in keywords)
    return [keyword for keyword in normalized if keyword]


def score_market(
    market: Market,
    required: Sequence[str],
    boost: Sequence[str] = (),
    match_all: bool = False,
) -> float:
    """Relevance of ``market`` for the keyword sets; 0 means excluded.

    Required keywords found in the title score 3, found only in the body 2.
    Boost keywords score 1.5 and 1 the same way. With ``match_all`` every
    required keyword has to match.
    """

    required_terms = _normalized_keywords(required)
    if not required_terms:
        return 0.0

    body_text = market.search_text or normalize_text(f"{market.question} {market.description}")
    raw_text = market.raw_search_text or f"{market.question} {market.description}"
    title_text = normalize_text(market.question)

    def matches(term: str) -> bool:
        pattern = keyword_pattern(term)
        return bool(pattern.search(body_text) or pattern.search(raw_text))

    def in_title(term: str) -> bool:
        return bool(keyword_pattern(term).search(title_text))

    matched = [term for term in required_terms if matches(term)]
    if not matched:
        return 0.0
    if match_all and len(matched) < len(required_terms):
        return 0.0

    score = sum(REQUIRED_TITLE_WEIGHT if in_title(term) else REQUIRED_BODY_WEIGHT for term in matched)
    for term in _normalized_keywords(boost):
        if matches(term):
            score += BOOST_TITLE_WEIGHT if in_title(term) else BOOST_BODY_WEIGHT
    return score


def rank_by_topic(markets: Iterable[Market], query: TopicQuery) -> list[tuple[Market, float]]:
    """Markets with a positive score, best first; volume breaks ties."""

    if not query.required:
        return []
    scored = [
        (market, score_market(market, query.required, query.boost, query.match_all))
        for market in markets
    ]
    ranked = [(market, score) for market, score in scored if score > 0]
    ranked.sort(key=lambda item: (item[1], item[0].volume), reverse=True)
    return ranked


def filter_by_topic(
    markets: Iterable[Market],
    required: Sequence[str],
    boost: Sequence[str] = (),
    match_all: bool = False,
) -> list[Market]:
    query = TopicQuery(required=tuple(required), boost=tuple(boost), match_all=match_all)
    return [market for market, _ in rank_by_topic(markets, query)]
