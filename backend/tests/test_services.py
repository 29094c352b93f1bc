from __future__ import annotations

import asyncio

import httpx
import pytest

from app.cache import MemoryCacheBackend, ResilientCache
from app.core.errors import UpstreamUnavailable
from app.domain import TopicQuery
from app.services.election_service import ElectionService, build_election_cache, merge_unique
from app.services.market_service import MarketService
from ingestion.service import (
    MarketSource,
    build_kalshi_source,
    build_polymarket_source,
    decode_markets,
    encode_markets,
)
from matching.country import filter_by_country
from matching.topic import rank_by_topic


class FakeSource:
    def __init__(self, name, markets, *, fail=False):
        self.name = name
        self.markets = list(markets)
        self.fail = fail
        self.slug_calls = 0

    async def get_all_markets(self):
        if self.fail:
            raise UpstreamUnavailable(self.name, "down")
        return list(self.markets)

    async def rank_by_topic(self, query):
        return rank_by_topic(await self.get_all_markets(), query)

    async def get_markets_by_topic(self, query):
        return [market for market, _ in await self.rank_by_topic(query)]

    async def get_markets_by_country(self, country):
        return filter_by_country(await self.get_all_markets(), country)

    async def fetch_markets_by_slugs(self, slugs, *, concurrency=5):
        self.slug_calls += 1
        return []


class StallingClient:
    """Exchange client whose listing can be slowed down between calls."""

    def __init__(self, markets):
        self.markets = list(markets)
        self.delay = 0.0
        self.calls = 0

    async def fetch_raw(self):
        self.calls += 1
        await asyncio.sleep(self.delay)
        return list(self.markets)

    async def aclose(self):
        return None


class FakeClock:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


class NullBackend:
    async def get(self, key):
        return None

    async def set(self, key, value, ttl_seconds):
        return None

    async def delete(self, key):
        return None

    async def close(self):
        return None


def test_top_markets_merge_sources_by_volume(make_market):
    poly = FakeSource("polymarket", [make_market("A?", volume=500), make_market("B?", volume=50)])
    kalshi = FakeSource("kalshi", [make_market("C?", volume=200, source="kalshi")])

    result = asyncio.run(MarketService([poly, kalshi]).get_top_markets(2))

    assert [market.question for market in result.markets] == ["A?", "C?"]
    assert result.total == 2


def test_failing_source_does_not_fail_listing(make_market):
    poly = FakeSource("polymarket", [make_market("A?")])
    kalshi = FakeSource("kalshi", [], fail=True)

    result = asyncio.run(MarketService([poly, kalshi]).get_top_markets(10))

    assert [market.question for market in result.markets] == ["A?"]


def test_topic_query_merges_by_score_and_counts_sources(make_market):
    poly = FakeSource(
        "polymarket",
        [make_market("Fed rate cut in June?", volume=10), make_market("Bitcoin to 100k?")],
    )
    kalshi = FakeSource(
        "kalshi",
        [make_market("FOMC June decision", description="fed cut", volume=999, source="kalshi")],
    )

    result = asyncio.run(
        MarketService([poly, kalshi]).get_markets_by_topic(TopicQuery(required=("fed",)))
    )

    assert [market.question for market in result.markets] == ["Fed rate cut in June?", "FOMC June decision"]
    assert result.sources == {"polymarket": 1, "kalshi": 1}


def test_country_query(make_market):
    poly = FakeSource("polymarket", [make_market("Will the U.S. default?"), make_market("France election?")])
    kalshi = FakeSource("kalshi", [], fail=True)

    result = asyncio.run(MarketService([poly, kalshi]).get_markets_by_country("United States"))

    assert [market.question for market in result.markets] == ["Will the U.S. default?"]


def test_market_source_fetches_normalizes_and_caches(test_settings, polymarket_events):
    state = {"fail": False, "calls": 0}

    def handler(request: httpx.Request) -> httpx.Response:
        state["calls"] += 1
        if state["fail"]:
            return httpx.Response(500)
        offset = int(request.url.params["offset"])
        limit = int(request.url.params["limit"])
        return httpx.Response(200, json=polymarket_events[offset : offset + limit])

    async def run():
        source = build_polymarket_source(
            MemoryCacheBackend(), settings=test_settings, transport=httpx.MockTransport(handler)
        )
        try:
            listing = await source.get_all_markets()
            await source.cache.drain()
            state["fail"] = True
            cached = await source.get_markets_by_topic(TopicQuery(required=("fed",)))
            top = await source.get_top_markets(1)
        finally:
            await source.aclose()
        return listing, cached, top

    listing, cached, top = asyncio.run(run())

    assert [market.id for market in listing] == ["16085", "20211"]
    assert [market.id for market in cached] == ["16085"]
    assert [market.id for market in top] == ["16085"]
    assert state["calls"] == 3


def test_kalshi_source_degrades_to_empty(test_settings):
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(503)

    async def run():
        source = build_kalshi_source(
            MemoryCacheBackend(), settings=test_settings, transport=httpx.MockTransport(handler)
        )
        try:
            return await source.get_all_markets()
        finally:
            await source.aclose()

    assert asyncio.run(run()) == []


def test_merge_unique_keeps_first(make_market):
    a = make_market("A?", market_id="1")
    a_again = make_market("A again?", market_id="1")
    b = make_market("B?", market_id="2")

    assert merge_unique([[a], [a_again, b]]) == [a, b]


def _texas_market(make_market):
    return make_market(
        "Texas Senate Election Winner",
        description="2026 U.S. Senate election in Texas",
        outcomes=[("Colin Allred", 0.62), ("Ken Paxton", 0.35), ("Other", 0.03)],
        volume=880_000,
        market_id="20211",
    )


def _election_service(settings, catalog, candidates, poly, kalshi, backend=None):
    return ElectionService(
        polymarket=poly,
        kalshi=kalshi,
        catalog=catalog,
        candidates=candidates,
        cache=build_election_cache(backend or MemoryCacheBackend(), settings=settings),
        settings=settings,
    )


def test_election_live_data(test_settings, race_catalog, candidate_parties, make_market):
    texas = _texas_market(make_market)
    house = make_market("TX-28 House Election Winner 2026", outcomes=[("Democrat", 0.41), ("Republican", 0.59)])
    poly = FakeSource("polymarket", [texas, house])
    kalshi = FakeSource("kalshi", [texas])
    service = _election_service(test_settings, race_catalog, candidate_parties, poly, kalshi)

    async def run():
        live = await service.get_live_data()
        state = await service.get_state_data("texas")
        return live, state

    live, state = asyncio.run(run())

    assert live.market_count == 2
    assert live.races_matched == 2
    assert live.ratings["Texas:senate"].rating == "lean-d"
    assert state.state == "Texas"
    assert state.senate is not None and state.senate.d_win_prob == 64
    assert state.governor is None
    assert list(state.house) == ["TX-28"]
    assert state.house["TX-28"].rating == "lean-r"
    assert poly.slug_calls == 0


def test_election_slug_lookup_runs_when_enabled(test_settings, race_catalog, candidate_parties, make_market):
    settings = test_settings.model_copy(update={"election_slug_fetch_enabled": True})
    poly = FakeSource("polymarket", [_texas_market(make_market)])
    service = _election_service(settings, race_catalog, candidate_parties, poly, FakeSource("kalshi", []))

    asyncio.run(service.refresh())

    assert poly.slug_calls == 1


def test_election_data_never_raises(test_settings, race_catalog, candidate_parties):
    poly = FakeSource("polymarket", [], fail=True)
    kalshi = FakeSource("kalshi", [], fail=True)
    service = _election_service(test_settings, race_catalog, candidate_parties, poly, kalshi)

    live = asyncio.run(service.get_live_data())

    assert live.ratings == {}
    assert live.market_count == 0


def test_election_serves_snapshot_when_sources_fail(test_settings, race_catalog, candidate_parties, make_market):
    poly = FakeSource("polymarket", [_texas_market(make_market)])
    kalshi = FakeSource("kalshi", [])
    service = _election_service(
        test_settings, race_catalog, candidate_parties, poly, kalshi, backend=NullBackend()
    )

    async def run():
        first = await service.get_live_data()
        poly.fail = True
        second = await service.get_live_data()
        return first, second

    first, second = asyncio.run(run())

    assert "Texas:senate" in second.ratings
    assert second.timestamp == first.timestamp


def _stalling_source(settings, markets, *, clock=None):
    clock = clock or FakeClock()
    client = StallingClient(markets)
    cache = ResilientCache(
        MemoryCacheBackend(clock=clock),
        name="polymarket",
        encode=encode_markets,
        decode=decode_markets,
        empty=list,
        ttl_seconds=settings.market_cache_ttl_seconds,
        fetch_timeout=settings.source_fetch_timeout_seconds,
        clock=clock,
    )
    source = MarketSource(name="polymarket", client=client, normalize=list, cache=cache)
    return source, client


def test_stalled_exchange_serves_snapshot(test_settings, make_market):
    clock = FakeClock()
    source, client = _stalling_source(test_settings, [make_market("Fed rate cut in June?")], clock=clock)
    service = MarketService([source], probe_timeout=test_settings.probe_timeout_seconds)

    async def run():
        first = await service.get_top_markets(10)
        await source.cache.drain()
        clock.now += 600
        client.delay = test_settings.probe_timeout_seconds + 1
        second = await service.get_top_markets(10)
        return first, second

    first, second = asyncio.run(run())

    assert [market.question for market in first.markets] == ["Fed rate cut in June?"]
    assert [market.question for market in second.markets] == ["Fed rate cut in June?"]
    assert source.cache.snapshot_age(source.cache_key) == 600


def test_concurrent_probes_share_one_listing_fetch(test_settings, make_market):
    source, client = _stalling_source(test_settings, [make_market("Texas Senate race?")])
    client.delay = 0.01

    async def run():
        return await asyncio.gather(
            *(source.get_markets_by_topic(TopicQuery(required=("senate",))) for _ in range(5))
        )

    results = asyncio.run(run())

    assert client.calls == 1
    assert all(len(result) == 1 for result in results)


def test_topic_query_caps_each_source_before_merging(make_market):
    poly = FakeSource(
        "polymarket", [make_market(f"Fed decision {n}?", volume=1_000_000 + n) for n in range(3)]
    )
    kalshi = FakeSource("kalshi", [make_market("Fed June decision?", volume=10, source="kalshi")])

    result = asyncio.run(
        MarketService([poly, kalshi]).get_markets_by_topic(
            TopicQuery(required=("fed",)), per_source_limit=1
        )
    )

    assert [market.question for market in result.markets] == ["Fed decision 2?", "Fed June decision?"]
    assert result.sources == {"polymarket": 1, "kalshi": 1}


def test_listing_for_one_source(make_market):
    poly = FakeSource("polymarket", [make_market("A?", volume=500)])
    kalshi = FakeSource("kalshi", [make_market("K?", volume=5, source="kalshi")])
    service = MarketService([poly, kalshi])

    result = asyncio.run(service.get_top_markets(10, source="kalshi"))

    assert [market.question for market in result.markets] == ["K?"]
    with pytest.raises(ValueError):
        asyncio.run(service.get_top_markets(10, source="predictit"))
