"""Country name expansion for geographic market filtering."""

from __future__ import annotations

import re
from collections.abc import Iterable
from dataclasses import dataclass

from app.core.text import keyword_pattern, normalize_text
from app.domain import Market

STOPWORDS = frozenset({"of", "the", "and", "or", "for", "in", "on", "to", "a", "an"})

COMMON_PREFIXES = (
    "republic of ",
    "democratic republic of ",
    "federal republic of ",
    "kingdom of ",
    "state of ",
    "states of ",
    "federated states of ",
    "islamic republic of ",
    "people s republic of ",
    "plurinational state of ",
    "bolivarian republic of ",
    "united republic of ",
    "arab republic of ",
    "sultanate of ",
    "emirate of ",
    "emirates of ",
)

COUNTRY_ALIASES: dict[str, tuple[str, ...]] = {
    "united states of america": ("united states", "usa", "u.s.", "u.s.a", "us", "america", "american"),
    "united states": ("usa", "u.s.", "u.s.a", "us", "america", "american"),
    "united kingdom": (
        "uk",
        "u.k.",
        "britain",
        "great britain",
        "british",
        "england",
        "scotland",
        "wales",
        "northern ireland",
    ),
    "russia": ("russian federation", "russian"),
    "iran": ("islamic republic of iran", "iranian"),
    "syria": ("syrian arab republic", "syrian"),
    "cote d ivoire": ("cote d'ivoire", "ivory coast"),
    "czechia": ("czech republic", "czech"),
    "vietnam": ("viet nam", "vietnamese"),
    "laos": ("lao", "lao pdr", "lao peoples democratic republic"),
    "bolivia": ("plurinational state of bolivia", "bolivian"),
    "venezuela": ("bolivarian republic of venezuela", "venezuelan"),
    "tanzania": ("united republic of tanzania", "tanzanian"),
    "moldova": ("republic of moldova", "moldovan"),
    "north korea": ("dprk", "democratic people s republic of korea", "north korean"),
    "south korea": ("republic of korea", "rok", "south korean", "korean"),
    "china": ("prc", "people s republic of china", "chinese", "mainland china"),
    "hong kong": ("hong kong sar", "hongkong"),
    "taiwan": ("republic of china", "roc", "taiwanese"),
    "united arab emirates": ("uae", "u.a.e.", "emirates", "emirati"),
    "saudi arabia": ("ksa", "kingdom of saudi arabia", "saudi"),
    "cabo verde": ("cape verde", "cape verdean"),
    "north macedonia": ("macedonia", "republic of macedonia", "macedonian"),
    "myanmar": ("burma", "burmese"),
    "eswatini": ("swaziland", "swazi"),
    "republic of the congo": ("congo-brazzaville", "congo"),
    "democratic republic of the congo": ("dr congo", "drc", "congo-kinshasa"),
}

MIN_TERM_LENGTH = 3


@dataclass(frozen=True, slots=True)
class CountrySearchProfile:
    country: str
    term_patterns: tuple[re.Pattern[str], ...]
    acronym_patterns: tuple[re.Pattern[str], ...]


def _acronym(tokens: list[str]) -> str | None:
    if len(tokens) < 2:
        return None
    acronym = "".join(token[0] for token in tokens).upper()
    return acronym if 2 <= len(acronym) <= 4 else None


def _acronym_pattern(acronym: str) -> re.Pattern[str]:
    # Letters may be separated by dots: "US" also matches "U.S".
    return re.compile(r"\b" + r"\.?".join(re.escape(letter) for letter in acronym) + r"\b")


def build_search_profile(country_name: str) -> CountrySearchProfile:
    """Expand a country name into term variants and acronym patterns."""

    normalized_name = normalize_text(country_name)
    variants: list[str] = []
    acronyms: list[str] = []

    def add(collection: list[str], value: str | None) -> None:
        if value and value not in collection:
            collection.append(value)

    if normalized_name:
        add(variants, normalized_name)
        padded = f"{normalized_name} "
        for prefix in COMMON_PREFIXES:
            if padded.startswith(prefix):
                trimmed = normalized_name[len(prefix):].strip()
                if len(trimmed) >= MIN_TERM_LENGTH:
                    add(variants, trimmed)
        tokens = [token for token in normalized_name.split() if token not in STOPWORDS]
        if tokens:
            add(variants, " ".join(tokens))
        add(acronyms, _acronym(tokens))

    for alias in COUNTRY_ALIASES.get(normalized_name, ()):
        normalized_alias = normalize_text(alias)
        if not normalized_alias:
            continue
        add(variants, normalized_alias)
        add(acronyms, _acronym(normalized_alias.split()))

    return CountrySearchProfile(
        country=country_name,
        term_patterns=tuple(
            keyword_pattern(term) for term in variants if len(term) >= MIN_TERM_LENGTH
        ),
        acronym_patterns=tuple(_acronym_pattern(acronym) for acronym in acronyms),
    )


def matches_country(market: Market, profile: CountrySearchProfile) -> bool:
    if any(pattern.search(market.search_text) for pattern in profile.term_patterns):
        return True
    return any(pattern.search(market.raw_search_text) for pattern in profile.acronym_patterns)


def filter_by_country(markets: Iterable[Market], country_name: str | None) -> list[Market]:
    if not country_name or not normalize_text(country_name):
        return list(markets)
    profile = build_search_profile(country_name)
    return [market for market in markets if matches_country(market, profile)]
