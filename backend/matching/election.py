"""Race matching and win-probability derivation for the race catalog.

Every refresh scores each catalog race against the merged market set, keeps
the single best market per race and turns its outcome prices into a
Democratic win probability and a rating bucket. Primary races without a
dedicated market can be synthesized from the general-election market when it
lists candidates of the target party.
"""

from __future__ import annotations

import math
import re
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass
from functools import lru_cache

from app.core.text import normalize_text
from app.domain import Market, MatchResult, OfficeType, Outcome, Race
from app.schemas import OutcomePct, PrimaryCandidate, PrimaryResult, RaceRating

from .races import CandidatePartyMap, RaceCatalog

NEGATIVE_KEYWORDS = (
    # sports
    "nba",
    "nfl",
    "mlb",
    "nhl",
    "ncaa",
    "mls",
    "ufc",
    "super bowl",
    "world series",
    "stanley cup",
    "premier league",
    "champions league",
    "world cup",
    "playoffs",
    "mvp",
    "heisman",
    # crypto
    "bitcoin",
    "btc",
    "ethereum",
    "eth",
    "solana",
    "dogecoin",
    "crypto",
    "memecoin",
    # unrelated finance
    "nasdaq",
    "s p 500",
    "dow jones",
    "stock price",
    "earnings",
    "ipo",
    "interest rate",
    "fed rate",
)
_NEGATIVE = re.compile(r"\b(?:" + "|".join(re.escape(term) for term in NEGATIVE_KEYWORDS) + r")\b")

_OFFICE_PATTERNS = {
    OfficeType.SENATE: re.compile(r"\bsenat"),
    OfficeType.GOVERNOR: re.compile(r"\bgovern|\bgubern"),
    OfficeType.HOUSE: re.compile(r"\bhouse\b|\bcongress|\bdistrict\b|\bcd\b"),
}
_PRIMARY_TERMS = re.compile(r"\b(?:primary|primaries|nominee|nomination)\b")
_PARTY_TERMS = {
    "R": re.compile(r"\b(?:republican\w*|gop|rep)\b"),
    "D": re.compile(r"\b(?:democrat\w*|dem|dems|dfl)\b"),
}
_YEAR = re.compile(r"\b20\d{2}\b")

_DEM_LABEL = re.compile(r"\b(?:democrat\w*|dem|dems|blue)\b")
_REP_LABEL = re.compile(r"\b(?:republican\w*|rep|gop|red)\b")
_DEM_FRAMING = re.compile(r"democrat\w*.*\bwin|\bwill\b.*\bdemocrat|\bdem\w*.*\bflip|\bblue wave\b")
_REP_FRAMING = re.compile(r"republican\w*.*\bwin|\bwill\b.*\brepublican|\brep\w*.*\bflip|\bgop\b.*\bwin|\bred wave\b")
_PARTY_TAG = re.compile(r"\(\s*(D|R|I)\s*\)|\b(D|R|I)-[A-Z]{2}\b")

RATING_THRESHOLDS = (
    (0.85, "safe-d"),
    (0.70, "likely-d"),
    (0.57, "lean-d"),
    (0.43, "toss-up"),
    (0.30, "lean-r"),
    (0.15, "likely-r"),
)
MIN_RECOGNIZED_CANDIDATES = 2
MAX_PRIMARY_CANDIDATES = 10
MAX_RATING_OUTCOMES = 4


def probability_to_rating(d_probability: float | None) -> str | None:
    if d_probability is None or not math.isfinite(d_probability):
        return None
    for threshold, rating in RATING_THRESHOLDS:
        if d_probability >= threshold:
            return rating
    return "safe-r"


@lru_cache(maxsize=512)
def district_pattern(state_code: str, district: int) -> re.Pattern[str]:
    """Matches a district number in normalized text, padded or not.

    ``CA-13``, ``ca13``, ``district 13``, ``CD 13`` and ``13th district`` all
    match for ``("CA", 13)``; ``TX-7`` and ``TX-07`` are equivalent.
    """

    code = re.escape(state_code.lower())
    number = rf"0*{int(district)}"
    return re.compile(
        rf"\b(?:{code}\s?|district\s|cd\s?){number}\b"
        rf"|\b{number}(?:st|nd|rd|th)?\s(?:congressional\s)?district\b"
    )


@lru_cache(maxsize=128)
def _state_name_pattern(state: str, others: tuple[str, ...]) -> re.Pattern[str]:
    name = normalize_text(state)
    guards: list[str] = []
    for other in others:
        longer = normalize_text(other)
        found = re.search(rf"\b{re.escape(name)}\b", longer) if longer != name else None
        if found is None:
            continue
        prefix, suffix = longer[: found.start()], longer[found.end() :]
        if prefix:
            guards.append(f"(?<!{re.escape(prefix)})")
        if suffix:
            guards.append(f"(?!{re.escape(suffix)})")
    return re.compile(rf"\b{''.join(guards)}{re.escape(name)}\b")


@lru_cache(maxsize=128)
def _state_code_pattern(code: str, ambiguous: bool) -> re.Pattern[str]:
    escaped = re.escape(code.lower())
    if ambiguous:
        return re.compile(rf"\b{escaped}\s?\d")
    return re.compile(rf"\b{escaped}\b")


def state_name_mentioned(text: str, state: str, catalog: RaceCatalog) -> bool:
    """Word-bounded state name that is not part of a longer state name."""

    return bool(_state_name_pattern(state, catalog.states).search(text))


def state_mentioned(text: str, state: str, catalog: RaceCatalog) -> bool:
    if state_name_mentioned(text, state, catalog):
        return True
    code = catalog.state_code(state)
    if not code:
        return False
    return bool(_state_code_pattern(code, code in catalog.ambiguous_codes).search(text))


@dataclass(frozen=True, slots=True)
class _MarketText:
    market: Market
    text: str
    title: str
    years: frozenset[str]
    excluded: bool


def _market_text(market: Market) -> _MarketText:
    text = normalize_text(f"{market.question} {market.description} {market.raw_search_text}")
    return _MarketText(
        market=market,
        text=text,
        title=normalize_text(market.question),
        years=frozenset(_YEAR.findall(text)),
        excluded=bool(_NEGATIVE.search(text)),
    )


def _opposite(party: str) -> str:
    return "D" if party == "R" else "R"


def _score_text(entry: _MarketText, race: Race, catalog: RaceCatalog) -> float:
    text, title = entry.text, entry.title

    if entry.excluded:
        return 0.0
    if not state_mentioned(text, race.state, catalog):
        return 0.0
    if not _OFFICE_PATTERNS[race.office].search(text):
        return 0.0

    title_is_primary = bool(_PRIMARY_TERMS.search(title))
    if race.is_primary:
        party = race.primary_party or ""
        if not title_is_primary:
            return 0.0
        if not _PARTY_TERMS[party].search(text):
            return 0.0
        if _PARTY_TERMS[_opposite(party)].search(title) and not _PARTY_TERMS[party].search(title):
            return 0.0
    elif title_is_primary:
        return 0.0

    if race.office is OfficeType.HOUSE:
        code = race.state_code or catalog.state_code(race.state) or ""
        if race.district is None or not district_pattern(code, race.district).search(text):
            return 0.0

    cycle = str(catalog.cycle)
    if entry.years and cycle not in entry.years:
        return 0.0

    score = 1.0
    if cycle in entry.years:
        score += 2
    if state_name_mentioned(text, race.state, catalog):
        score += 1
    if race.is_primary and title_is_primary:
        score += 2
    if race.district is not None:
        score += 1
    return score + math.log10(max(entry.market.volume, 1.0))


def score_match(market: Market, race: Race, catalog: RaceCatalog) -> float:
    """Relevance of ``market`` for ``race``; 0 means the market cannot be it."""

    return _score_text(_market_text(market), race, catalog)


def best_matches(
    markets: Iterable[Market], races: Sequence[Race], catalog: RaceCatalog
) -> dict[str, MatchResult]:
    """Highest-scoring market per race key; races with no candidate are omitted."""

    texts = [_market_text(market) for market in markets]
    matches: dict[str, MatchResult] = {}
    for race in races:
        best: MatchResult | None = None
        for entry in texts:
            score = _score_text(entry, race, catalog)
            if score > 0 and (best is None or score > best.score):
                best = MatchResult(race=race, market=entry.market, score=score)
        if best is not None:
            matches[race.key] = best
    return matches


def candidate_party(name: str, candidates: CandidatePartyMap) -> str | None:
    """Party label for an outcome naming a candidate, if recognizable."""

    tagged = _PARTY_TAG.search(name)
    if tagged:
        return tagged.group(1) or tagged.group(2)
    normalized = normalize_text(name)
    if not normalized:
        return None
    if normalized in candidates:
        return candidates[normalized]
    for candidate, party in candidates.items():
        if re.search(rf"\b{re.escape(candidate)}\b", normalized):
            return party
    return None


def _party_label(name: str) -> str | None:
    normalized = normalize_text(name)
    if _DEM_LABEL.search(normalized):
        return "D"
    if _REP_LABEL.search(normalized):
        return "R"
    return None


def _priced(outcomes: Iterable[Outcome]) -> list[Outcome]:
    return [outcome for outcome in outcomes if outcome.name and outcome.price is not None]


def _from_party_labels(outcomes: Sequence[Outcome]) -> float | None:
    for outcome in outcomes:
        if _DEM_LABEL.search(normalize_text(outcome.name)):
            return outcome.price
    for outcome in outcomes:
        if _REP_LABEL.search(normalize_text(outcome.name)):
            return 1.0 - (outcome.price or 0.0)
    return None


def _from_question_framing(market: Market) -> float | None:
    if len(market.outcomes) < 2:
        return None
    yes_price = market.outcomes[0].price
    if yes_price is None:
        return None
    question = normalize_text(market.question)
    about_dem = bool(_DEM_FRAMING.search(question))
    about_rep = bool(_REP_FRAMING.search(question))
    if about_dem == about_rep:
        return None
    return yes_price if about_dem else 1.0 - yes_price


def _from_candidates(outcomes: Sequence[Outcome], candidates: CandidatePartyMap) -> float | None:
    d_sum = r_sum = 0.0
    recognized = 0
    for outcome in outcomes:
        party = candidate_party(outcome.name, candidates)
        if party is None:
            continue
        recognized += 1
        if party == "D":
            d_sum += outcome.price or 0.0
        elif party == "R":
            r_sum += outcome.price or 0.0
    if recognized < MIN_RECOGNIZED_CANDIDATES or d_sum + r_sum <= 0:
        return None
    return d_sum / (d_sum + r_sum)


def extract_dem_probability(market: Market, candidates: CandidatePartyMap) -> float | None:
    """Democratic win probability implied by the market, or None.

    Tried in order: outcomes labeled with a party, a question framed around
    one party winning, then candidate outcomes aggregated by party.
    """

    outcomes = _priced(market.outcomes)
    if not outcomes:
        return None
    for extractor in (
        lambda: _from_party_labels(outcomes),
        lambda: _from_question_framing(market),
        lambda: _from_candidates(outcomes, candidates),
    ):
        probability = extractor()
        if probability is not None:
            return min(max(probability, 0.0), 1.0)
    return None


def extract_three_way(
    market: Market, candidates: CandidatePartyMap
) -> tuple[float, float, float] | None:
    """``(d, r, independent)`` read directly from party or candidate outcomes."""

    d_price: float | None = None
    r_price: float | None = None
    for outcome in _priced(market.outcomes):
        party = _party_label(outcome.name) or candidate_party(outcome.name, candidates)
        if party == "D" and d_price is None:
            d_price = outcome.price
        elif party == "R" and r_price is None:
            r_price = outcome.price
    if d_price is None and r_price is None:
        return None
    d_value, r_value = d_price or 0.0, r_price or 0.0
    return d_value, r_value, max(0.0, 1.0 - r_value - d_value)


def _pct(value: float) -> int:
    return min(100, max(0, round(value * 100)))


def build_rating(match: MatchResult, candidates: CandidatePartyMap) -> RaceRating | None:
    race, market = match.race, match.market
    i_win_prob: int | None = None

    three_way = extract_three_way(market, candidates) if race.independent_candidate else None
    if three_way is not None:
        d_value, r_value, independent = three_way
        rating = probability_to_rating(1.0 - r_value)
        d_win_prob, r_win_prob, i_win_prob = _pct(d_value), _pct(r_value), _pct(independent)
    else:
        d_probability = extract_dem_probability(market, candidates)
        if d_probability is None:
            return None
        rating = probability_to_rating(d_probability)
        d_win_prob, r_win_prob = _pct(d_probability), _pct(1.0 - d_probability)

    if rating is None:
        return None
    return RaceRating(
        state=race.state,
        office=race.office.value,
        district=race.district_code,
        rating=rating,
        d_win_prob=d_win_prob,
        r_win_prob=r_win_prob,
        i_win_prob=i_win_prob,
        independent_candidate=race.independent_candidate if i_win_prob is not None else None,
        market_question=market.question,
        market_url=market.url,
        market_source=market.source,
        market_volume=market.volume,
        outcomes=[
            OutcomePct(name=outcome.name, pct=None if outcome.price is None else _pct(outcome.price))
            for outcome in market.outcomes[:MAX_RATING_OUTCOMES]
        ],
    )


def build_primary(match: MatchResult) -> PrimaryResult | None:
    race, market = match.race, match.market
    ranked = sorted(_priced(market.outcomes), key=lambda outcome: outcome.price or 0.0, reverse=True)
    if not ranked:
        return None
    return PrimaryResult(
        state=race.state,
        office=race.office.value,
        party=race.primary_party or "",
        candidates=[
            PrimaryCandidate(name=outcome.name, pct=_pct(outcome.price or 0.0))
            for outcome in ranked[:MAX_PRIMARY_CANDIDATES]
        ],
        market_question=market.question,
        market_url=market.url,
        market_source=market.source,
        market_volume=market.volume,
    )


def synthesize_primary(
    race: Race, general_market: Market, candidates: CandidatePartyMap
) -> PrimaryResult | None:
    """Primary view built from the party's candidates in a general market.

    Percentages are relative to the party's summed prices. Needs at least two
    recognized candidates of the target party.
    """

    party = race.primary_party
    if party is None:
        return None
    members = [
        outcome
        for outcome in _priced(general_market.outcomes)
        if candidate_party(outcome.name, candidates) == party
    ]
    total = sum(outcome.price or 0.0 for outcome in members)
    if len(members) < MIN_RECOGNIZED_CANDIDATES or total <= 0:
        return None
    members.sort(key=lambda outcome: outcome.price or 0.0, reverse=True)
    return PrimaryResult(
        state=race.state,
        office=race.office.value,
        party=party,
        candidates=[
            PrimaryCandidate(name=outcome.name, pct=_pct((outcome.price or 0.0) / total))
            for outcome in members[:MAX_PRIMARY_CANDIDATES]
        ],
        market_question=general_market.question,
        market_url=general_market.url,
        market_source=general_market.source,
        market_volume=general_market.volume,
        derived=True,
    )


def _general_key(race: Race) -> str:
    return f"{race.state}:{race.office.value}"


def derive_ratings(
    markets: Sequence[Market],
    catalog: RaceCatalog,
    candidates: Mapping[str, str],
) -> tuple[dict[str, RaceRating], dict[str, PrimaryResult]]:
    """Ratings keyed by general race key and primaries keyed by primary race key."""

    candidate_map = dict(candidates)
    matches = best_matches(markets, catalog.races, catalog)

    ratings: dict[str, RaceRating] = {}
    for race in catalog.general_races:
        match = matches.get(race.key)
        if match is None:
            continue
        rating = build_rating(match, candidate_map)
        if rating is not None:
            ratings[race.key] = rating

    primaries: dict[str, PrimaryResult] = {}
    for race in catalog.primary_races:
        match = matches.get(race.key)
        result = build_primary(match) if match is not None else None
        if result is None:
            general = matches.get(_general_key(race))
            if general is not None:
                result = synthesize_primary(race, general.market, candidate_map)
        if result is not None:
            primaries[race.key] = result

    return ratings, primaries
