from __future__ import annotations

import pytest

from app.domain import TopicQuery
from matching.topic import filter_by_topic, rank_by_topic, score_market


def test_no_required_keywords_matches_nothing(make_market):
    markets = [make_market("Fed rate cut in June?")]

    assert filter_by_topic(markets, required=[]) == []
    assert filter_by_topic(markets, required=["", "!!"]) == []


def test_title_matches_outweigh_body_matches(make_market):
    in_title = make_market("Fed rate cut in June?", description="Monetary policy")
    in_body = make_market("June FOMC decision", description="Will the Fed cut?")

    assert score_market(in_title, ["fed"]) == pytest.approx(3.0)
    assert score_market(in_body, ["fed"]) == pytest.approx(2.0)


def test_boost_keywords_add_weight(make_market):
    market = make_market("Fed rate cut in June?", description="Decided by the FOMC")

    assert score_market(market, ["fed"], boost=["cut", "fomc", "hike"]) == pytest.approx(3.0 + 1.5 + 1.0)


def test_boost_alone_does_not_include_market(make_market):
    market = make_market("Rate cut in June?")

    assert score_market(market, ["bitcoin"], boost=["cut"]) == 0.0


def test_match_all_requires_every_keyword(make_market):
    partial = make_market("China trade deal?")
    full = make_market("China invades Taiwan?")

    assert filter_by_topic([partial, full], ["china", "taiwan"], match_all=True) == [full]
    assert set(m.id for m in filter_by_topic([partial, full], ["china", "taiwan"])) == {partial.id, full.id}


def test_keywords_are_word_bounded(make_market):
    market = make_market("Federal budget passes?")

    assert score_market(market, ["fed"]) == 0.0


def test_rank_by_topic_orders_by_score_then_volume(make_market):
    low = make_market("Bitcoin above 100k?", volume=1_000, market_id="low")
    high = make_market("Bitcoin above 120k?", volume=9_000, market_id="high")
    body_only = make_market("Crypto ETF approved?", description="bitcoin spot", volume=99_000, market_id="body")

    ranked = rank_by_topic([low, body_only, high], TopicQuery(required=("bitcoin",)))

    assert [market.id for market, _ in ranked] == ["high", "low", "body"]
    assert [score for _, score in ranked] == [3.0, 3.0, 2.0]


def test_rank_by_topic_leaves_markets_untouched(make_market):
    market = make_market("Bitcoin above 100k?")

    (ranked_market, score), = rank_by_topic([market], TopicQuery(required=("bitcoin",)))

    assert ranked_market is market
    assert score > 0
