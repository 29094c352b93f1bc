from __future__ import annotations

import pytest

from app.core.text import normalize_text
from matching.election import (
    candidate_party,
    derive_ratings,
    district_pattern,
    extract_dem_probability,
    probability_to_rating,
    score_match,
    state_mentioned,
    state_name_mentioned,
)


def _race(catalog, key):
    return next(race for race in catalog.races if race.key == key)


def _texas_field(make_market):
    return make_market(
        "Texas Senate Election Winner",
        description="Who will win the 2026 U.S. Senate election in Texas?",
        outcomes=[("Colin Allred", 0.62), ("Ken Paxton", 0.35), ("Other", 0.03)],
        volume=880_000,
    )


def test_ambiguous_state_code_needs_a_digit(race_catalog):
    assert not state_mentioned(normalize_text("will win or lose the primary"), "Oregon", race_catalog)
    assert state_mentioned(normalize_text("OR-04 winner"), "Oregon", race_catalog)


def test_unambiguous_state_code_matches_as_word(race_catalog):
    assert state_mentioned(normalize_text("Who wins the TX Senate seat?"), "Texas", race_catalog)
    assert not state_mentioned(normalize_text("Next big tech IPO"), "Texas", race_catalog)


def test_longer_state_names_do_not_count(race_catalog):
    assert not state_name_mentioned(normalize_text("West Virginia Senate"), "Virginia", race_catalog)
    assert state_name_mentioned(normalize_text("Virginia and West Virginia"), "Virginia", race_catalog)
    assert state_name_mentioned(normalize_text("West Virginia Senate"), "West Virginia", race_catalog)
    assert not state_name_mentioned(normalize_text("Arkansas governor"), "Kansas", race_catalog)


@pytest.mark.parametrize(
    ("text", "expected"),
    [
        ("tx 07 house winner", True),
        ("tx7 house winner", True),
        ("texas district 7", True),
        ("cd 07 race", True),
        ("texas 7th congressional district", True),
        ("tx 17 house winner", False),
        ("texas district 70", False),
    ],
)
def test_district_pattern_accepts_padded_and_unpadded(text, expected):
    assert bool(district_pattern("TX", 7).search(text)) is expected


def test_negative_keywords_reject_market(make_market, race_catalog):
    market = make_market("Texas Senate passes NBA arena bill in 2026?")

    assert score_match(market, _race(race_catalog, "Texas:senate"), race_catalog) == 0


def test_other_election_year_is_rejected(make_market, race_catalog):
    race = _race(race_catalog, "Texas:senate")
    old = make_market("Texas Senate Election Winner 2024", volume=1_000_000)
    current = make_market("Texas Senate Election Winner 2026", volume=1_000)
    undated = make_market("Texas Senate Election Winner", volume=1_000)

    assert score_match(old, race, race_catalog) == 0
    assert score_match(current, race, race_catalog) == pytest.approx(1 + 2 + 1 + 3)
    assert score_match(undated, race, race_catalog) == pytest.approx(1 + 1 + 3)


def test_primary_and_general_are_decided_from_title(make_market, race_catalog):
    general = _race(race_catalog, "Texas:senate")
    gop_primary = _race(race_catalog, "Texas:senate:primary:R")
    dem_primary = _race(race_catalog, "Texas:senate:primary:D")

    primary_market = make_market(
        "Texas Republican Senate Primary Winner",
        outcomes=[("Ken Paxton", 0.6), ("John Cornyn", 0.4)],
    )
    general_market = make_market(
        "Texas Senate Election Winner",
        description="Candidates who win their primary advance to November.",
    )

    assert score_match(primary_market, general, race_catalog) == 0
    assert score_match(primary_market, gop_primary, race_catalog) > 0
    assert score_match(primary_market, dem_primary, race_catalog) == 0
    assert score_match(general_market, general, race_catalog) > 0
    assert score_match(general_market, gop_primary, race_catalog) == 0


def test_house_race_requires_matching_district(make_market, race_catalog):
    market = make_market("TX-28 House Election Winner")

    assert score_match(market, _race(race_catalog, "Texas:house:TX-28"), race_catalog) > 0
    assert score_match(market, _race(race_catalog, "Texas:house:TX-23"), race_catalog) == 0
    assert score_match(market, _race(race_catalog, "Texas:senate"), race_catalog) == 0


def test_candidate_aggregation_scenario(make_market, candidate_parties):
    probability = extract_dem_probability(_texas_field(make_market), candidate_parties)

    assert probability == pytest.approx(0.62 / 0.97)
    assert probability_to_rating(probability) == "lean-d"


def test_party_labeled_outcomes_take_priority(make_market, candidate_parties):
    market = make_market(
        "Texas Senate race winner",
        outcomes=[("Republican Party", 0.63), ("Democratic Party", 0.38)],
    )

    assert extract_dem_probability(market, candidate_parties) == pytest.approx(0.38)


def test_republican_label_alone_is_inverted(make_market, candidate_parties):
    market = make_market("Texas Senate race winner", outcomes=[("GOP", 0.7), ("Other", 0.3)])

    assert extract_dem_probability(market, candidate_parties) == pytest.approx(0.3)


def test_question_framing(make_market, candidate_parties):
    dem = make_market("Will a Democrat win the Ohio Senate race in 2026?", outcomes=[("Yes", 0.3), ("No", 0.7)])
    rep = make_market("Will Republicans win the Ohio Senate race?", outcomes=[("Yes", 0.8), ("No", 0.2)])

    assert extract_dem_probability(dem, candidate_parties) == pytest.approx(0.3)
    assert extract_dem_probability(rep, candidate_parties) == pytest.approx(0.2)


def test_no_signal_means_no_probability(make_market, candidate_parties):
    market = make_market("Ohio Senate race 2026", outcomes=[("Yes", 0.5), ("No", 0.5)])
    single = make_market("Ohio Senate race 2026", outcomes=[("Sherrod Brown", 0.5), ("Somebody Else", 0.5)])

    assert extract_dem_probability(market, candidate_parties) is None
    assert extract_dem_probability(single, candidate_parties) is None


def test_candidate_party_recognition(candidate_parties):
    assert candidate_party("Jane Doe (D)", candidate_parties) == "D"
    assert candidate_party("John Roe (R-TX)", candidate_parties) == "R"
    assert candidate_party("Ken Paxton", candidate_parties) == "R"
    assert candidate_party("Rep. Haley Stevens", candidate_parties) == "D"
    assert candidate_party("Other", candidate_parties) is None


@pytest.mark.parametrize(
    ("probability", "rating"),
    [
        (0.90, "safe-d"),
        (0.85, "safe-d"),
        (0.70, "likely-d"),
        (0.57, "lean-d"),
        (0.50, "toss-up"),
        (0.43, "toss-up"),
        (0.30, "lean-r"),
        (0.15, "likely-r"),
        (0.05, "safe-r"),
        (None, None),
    ],
)
def test_probability_to_rating(probability, rating):
    assert probability_to_rating(probability) == rating


def test_derive_ratings_general_race(make_market, race_catalog, candidate_parties):
    ratings, primaries = derive_ratings([_texas_field(make_market)], race_catalog, candidate_parties)

    rating = ratings["Texas:senate"]
    assert rating.rating == "lean-d"
    assert rating.d_win_prob == 64
    assert rating.r_win_prob == 36
    assert rating.i_win_prob is None
    assert [outcome.pct for outcome in rating.outcomes] == [62, 35, 3]
    assert "Texas:senate:primary:D" not in primaries


def test_derive_ratings_picks_highest_scoring_market(make_market, race_catalog, candidate_parties):
    small = make_market(
        "Texas Senate race winner",
        outcomes=[("Democratic Party", 0.2), ("Republican Party", 0.8)],
        volume=5_000,
        source="kalshi",
    )
    ratings, _ = derive_ratings([small, _texas_field(make_market)], race_catalog, candidate_parties)

    assert ratings["Texas:senate"].market_question == "Texas Senate Election Winner"


def test_independent_variant(make_market, race_catalog, candidate_parties):
    market = make_market(
        "Nebraska Senate Election Winner",
        outcomes=[("Pete Ricketts", 0.52), ("Dan Osborn", 0.45)],
    )
    ratings, _ = derive_ratings([market], race_catalog, candidate_parties)

    rating = ratings["Nebraska:senate"]
    assert rating.r_win_prob == 52
    assert rating.d_win_prob == 0
    assert rating.i_win_prob == 48
    assert rating.independent_candidate == "Dan Osborn"
    assert rating.rating == "toss-up"


def test_dedicated_primary_market(make_market, race_catalog, candidate_parties):
    market = make_market(
        "Texas Republican Senate Primary Winner",
        outcomes=[("John Cornyn", 0.35), ("Ken Paxton", 0.6), ("Wesley Hunt", None)],
    )
    _, primaries = derive_ratings([market], race_catalog, candidate_parties)

    result = primaries["Texas:senate:primary:R"]
    assert result.derived is False
    assert [(c.name, c.pct) for c in result.candidates] == [("Ken Paxton", 60), ("John Cornyn", 35)]


def test_primary_synthesized_from_general_field(make_market, race_catalog, candidate_parties):
    market = make_market(
        "Michigan Senate Election Winner",
        outcomes=[
            ("Mike Rogers", 0.55),
            ("Haley Stevens", 0.20),
            ("Mallory McMorrow", 0.15),
            ("Abdul El-Sayed", 0.10),
        ],
    )
    ratings, primaries = derive_ratings([market], race_catalog, candidate_parties)

    assert ratings["Michigan:senate"].rating == "toss-up"
    dem = primaries["Michigan:senate:primary:D"]
    assert dem.derived is True
    assert [(c.name, c.pct) for c in dem.candidates] == [
        ("Haley Stevens", 44),
        ("Mallory McMorrow", 33),
        ("Abdul El-Sayed", 22),
    ]
    assert "Michigan:senate:primary:R" not in primaries


def test_unmatched_races_are_omitted(make_market, race_catalog, candidate_parties):
    ratings, primaries = derive_ratings(
        [make_market("Bitcoin above 100k?")], race_catalog, candidate_parties
    )

    assert ratings == {}
    assert primaries == {}
