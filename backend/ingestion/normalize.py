from __future__ import annotations

import json
import math
import re
from datetime import datetime
from typing import Any

from dateutil import parser as date_parser

from app.core.text import normalize_text
from app.domain import Market, Outcome

_BRACKET_PATTERNS = (
    re.compile(r"[≥≤><]\s*\d"),
    re.compile(r"\d+\.?\d*\s*%?\s*[-–—]\s*\d+\.?\d*\s*%"),
    re.compile(r"\bor more\b", re.IGNORECASE),
    re.compile(r"\bor fewer\b", re.IGNORECASE),
    re.compile(r"\bor less\b", re.IGNORECASE),
    re.compile(r"\bmargin\b", re.IGNORECASE),
)

_KALSHI_OPEN_STATUSES = {"open", "active"}


def _as_list(value: Any) -> list[Any]:
    """Return value as a list when possible, decoding JSON strings."""
    if isinstance(value, list):
        return value
    if isinstance(value, str):
        try:
            parsed = json.loads(value)
        except json.JSONDecodeError:
            return []
        return parsed if isinstance(parsed, list) else []
    return []


def _parse_datetime(value: Any) -> datetime | None:
    if not value:
        return None
    try:
        return date_parser.isoparse(str(value))
    except (ValueError, TypeError):
        return None


def _parse_float(value: Any) -> float | None:
    if value is None or value == "":
        return None
    try:
        parsed = float(value)
    except (TypeError, ValueError):
        return None
    return parsed if math.isfinite(parsed) else None


def _parse_probability(value: Any, *, scale: float = 1.0) -> float | None:
    parsed = _parse_float(value)
    if parsed is None:
        return None
    probability = parsed / scale
    if not 0.0 <= probability <= 1.0:
        return None
    return probability


def _first_number(*values: Any) -> float:
    for value in values:
        parsed = _parse_float(value)
        if parsed:
            return max(parsed, 0.0)
    return 0.0


def is_bracket_outcome(name: str) -> bool:
    return any(pattern.search(name) for pattern in _BRACKET_PATTERNS)


def is_bracket_market(outcomes: tuple[Outcome, ...] | list[Outcome]) -> bool:
    """True when at least a third of the outcomes are numeric ranges or thresholds."""

    if not outcomes:
        return False
    bracket_count = sum(1 for outcome in outcomes if is_bracket_outcome(outcome.name))
    return bracket_count >= max(1, math.ceil(len(outcomes) / 3))


def _binary_outcomes(yes_price: float | None, names: list[Any] | None = None) -> tuple[Outcome, ...]:
    labels = [str(name) for name in names or [] if name][:2]
    if len(labels) != 2:
        labels = ["Yes", "No"]
    if yes_price is None:
        return tuple(Outcome(name=label) for label in labels)
    return (
        Outcome(name=labels[0], price=yes_price),
        Outcome(name=labels[1], price=round(1.0 - yes_price, 6)),
    )


def _keep(market: Market, min_volume: float) -> bool:
    return (
        market.usable
        and bool(market.outcomes)
        and market.volume >= min_volume
        and not is_bracket_market(market.outcomes)
    )


def _polymarket_outcomes(event: dict[str, Any], max_outcomes: int) -> tuple[Outcome, ...]:
    sub_markets = [m for m in _as_list(event.get("markets")) if isinstance(m, dict)]
    if len(sub_markets) == 1:
        market = sub_markets[0]
        prices = _as_list(market.get("outcomePrices"))
        yes_price = _parse_probability(prices[0]) if prices else None
        return _binary_outcomes(yes_price, _as_list(market.get("outcomes")))

    outcomes: list[Outcome] = []
    for market in sub_markets[:max_outcomes]:
        prices = _as_list(market.get("outcomePrices"))
        outcomes.append(
            Outcome(
                name=str(
                    market.get("groupItemTitle")
                    or market.get("question")
                    or market.get("title")
                    or "Unknown"
                ),
                price=_parse_probability(prices[0]) if prices else None,
            )
        )
    return tuple(outcomes)


def normalize_polymarket_event(event: dict[str, Any], index: int, max_outcomes: int = 6) -> Market:
    tags = [tag for tag in _as_list(event.get("tags")) if isinstance(tag, dict)]
    tag_labels = [str(tag.get("label") or tag.get("slug")) for tag in tags if tag.get("label") or tag.get("slug")]
    tag_slugs = [str(tag["slug"]) for tag in tags if tag.get("slug")]
    series_labels = [
        str(series.get("title") or series.get("slug"))
        for series in _as_list(event.get("series"))
        if isinstance(series, dict) and (series.get("title") or series.get("slug"))
    ]
    sub_markets = [m for m in _as_list(event.get("markets")) if isinstance(m, dict)]
    outcomes = _polymarket_outcomes(event, max_outcomes)

    search_parts = [
        event.get("title"),
        event.get("description"),
        event.get("slug"),
        event.get("ticker"),
        *tag_labels,
        *tag_slugs,
        *series_labels,
        *(m.get("question") or m.get("title") for m in sub_markets),
        event.get("groupItemTitle"),
        *(outcome.name for outcome in outcomes),
    ]
    raw_search_text = " ".join(str(part) for part in search_parts if part)
    slug_or_id = event.get("slug") or event.get("id")

    return Market(
        id=str(event.get("id") or event.get("slug") or f"poly-{index}"),
        question=str(event.get("title") or event.get("question") or "Untitled Market"),
        description=str(event.get("description") or event.get("subtitle") or ""),
        volume=_first_number(
            event.get("volume"),
            event.get("volume24hr"),
            event.get("volumeNum"),
            sub_markets[0].get("volume") if sub_markets else None,
        ),
        liquidity=_first_number(event.get("liquidity")),
        outcomes=outcomes,
        category=str(event.get("category") or (tag_labels[0] if tag_labels else "Other")),
        tags=tuple(tag_labels),
        active=event.get("active") is not False and event.get("closed") is not True,
        closed=event.get("closed") is True,
        end_date=_parse_datetime(event.get("endDate") or event.get("end_date_iso")),
        url=str(event.get("url") or f"https://polymarket.com/event/{slug_or_id}"),
        source="polymarket",
        search_text=normalize_text(raw_search_text),
        raw_search_text=raw_search_text,
        image=event.get("image") or event.get("icon"),
    )


def normalize_polymarket_events(
    events: list[dict[str, Any]], min_volume: float, max_outcomes: int = 6
) -> list[Market]:
    """Normalize Gamma events, drop unusable or bracket markets, sort by volume."""

    markets = [
        normalize_polymarket_event(event, index, max_outcomes)
        for index, event in enumerate(events)
        if isinstance(event, dict)
    ]
    kept = [market for market in markets if _keep(market, min_volume)]
    return sorted(kept, key=lambda market: market.volume, reverse=True)


def _kalshi_price(market: dict[str, Any]) -> float | None:
    for cents_key, dollars_key in (("last_price", "last_price_dollars"), ("yes_ask", "yes_ask_dollars")):
        if market.get(cents_key) is not None:
            price = _parse_probability(market.get(cents_key), scale=100.0)
        else:
            price = _parse_probability(market.get(dollars_key))
        if price is not None:
            return price
    return None


def normalize_kalshi_event(event: dict[str, Any], max_outcomes: int = 6) -> Market:
    sub_markets = [m for m in _as_list(event.get("markets")) if isinstance(m, dict)]
    open_markets = [m for m in sub_markets if str(m.get("status") or "").lower() in _KALSHI_OPEN_STATUSES]

    if len(sub_markets) == 1 and len(open_markets) == 1:
        yes_price = _kalshi_price(open_markets[0])
        outcomes = _binary_outcomes(0.5 if yes_price is None else yes_price)
    else:
        outcomes = tuple(
            Outcome(
                name=str(
                    m.get("yes_sub_title") or m.get("subtitle") or m.get("title") or m.get("ticker") or "Yes"
                ),
                price=_kalshi_price(m),
            )
            for m in open_markets[:max_outcomes]
        )

    search_parts = [
        event.get("title"),
        event.get("sub_title"),
        event.get("category"),
        event.get("series_ticker"),
        *(m.get("title") or m.get("subtitle") for m in sub_markets),
        *(outcome.name for outcome in outcomes),
    ]
    raw_search_text = " ".join(str(part) for part in search_parts if part)
    ticker = event.get("event_ticker") or ""

    return Market(
        id=f"kalshi-{ticker}",
        question=str(event.get("title") or "Untitled Market"),
        description=str(event.get("sub_title") or ""),
        volume=sum(_first_number(m.get("volume")) for m in sub_markets),
        liquidity=sum(_first_number(m.get("open_interest")) for m in sub_markets),
        outcomes=outcomes,
        category=str(event.get("category") or "Other"),
        tags=(),
        active=True,
        closed=False,
        end_date=_parse_datetime(
            event.get("close_date") or (sub_markets[0].get("close_time") if sub_markets else None)
        ),
        url=f"https://kalshi.com/markets/{ticker}",
        source="kalshi",
        search_text=normalize_text(raw_search_text),
        raw_search_text=raw_search_text,
    )


def normalize_kalshi_events(
    events: list[dict[str, Any]], min_volume: float, max_outcomes: int = 6
) -> list[Market]:
    """Normalize Kalshi events (volume summed over nested markets)."""

    markets = [
        normalize_kalshi_event(event, max_outcomes)
        for event in events
        if isinstance(event, dict) and event.get("event_ticker")
    ]
    kept = [market for market in markets if _keep(market, min_volume)]
    return sorted(kept, key=lambda market: market.volume, reverse=True)
