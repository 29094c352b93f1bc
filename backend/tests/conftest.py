from __future__ import annotations

import json
import sys
from pathlib import Path
from typing import Any

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

import pytest

from app.core.config import Settings
from app.core.text import normalize_text
from app.domain import Market, Outcome
from matching.races import load_candidate_parties, load_race_catalog

DATA_DIR = Path(__file__).parent / "data"


def build_market(
    question: str = "Will it happen?",
    *,
    outcomes: list[tuple[str, float | None]] | None = None,
    description: str = "",
    volume: float = 10_000.0,
    source: str = "polymarket",
    market_id: str | None = None,
    tags: tuple[str, ...] = (),
    category: str = "Politics",
    active: bool = True,
    closed: bool = False,
) -> Market:
    """Market with derived search fields, as the normalizers would build it."""

    pairs = outcomes if outcomes is not None else [("Yes", 0.5), ("No", 0.5)]
    built = tuple(Outcome(name=name, price=price) for name, price in pairs)
    raw = " ".join(
        part for part in [question, description, category, *tags, *(o.name for o in built)] if part
    )
    return Market(
        id=market_id or f"{source}-{normalize_text(question).replace(' ', '-')}",
        question=question,
        description=description,
        volume=volume,
        liquidity=0.0,
        outcomes=built,
        category=category,
        tags=tags,
        active=active,
        closed=closed,
        end_date=None,
        url=f"https://example.com/{source}",
        source=source,  # type: ignore[arg-type]
        search_text=normalize_text(raw),
        raw_search_text=raw,
    )


@pytest.fixture
def make_market():
    return build_market


def _load(name: str) -> Any:
    return json.loads((DATA_DIR / name).read_text(encoding="utf-8"))


@pytest.fixture
def polymarket_events() -> list[dict[str, Any]]:
    return _load("polymarket_events.json")


@pytest.fixture
def kalshi_payload() -> dict[str, Any]:
    return _load("kalshi_events.json")


@pytest.fixture
def race_catalog():
    return load_race_catalog()


@pytest.fixture
def candidate_parties():
    return load_candidate_parties()


@pytest.fixture
def test_settings(monkeypatch) -> Settings:
    settings = Settings(
        redis_url=None,
        polymarket_page_size=2,
        polymarket_max_events=5,
        kalshi_page_size=2,
        kalshi_max_pages=3,
        listing_budget_seconds=0.5,
        source_fetch_timeout_seconds=1,
        probe_timeout_seconds=2,
        refresh_timeout_seconds=5,
        election_slug_fetch_enabled=False,
    )
    monkeypatch.setattr("app.core.config.get_settings", lambda: settings)
    monkeypatch.setattr("app.core.config.settings", settings)
    return settings
