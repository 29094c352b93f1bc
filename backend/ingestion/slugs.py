"""Known Polymarket event slugs for the race catalog.

Topic probes miss race events whose text never mentions the cycle year, so
the election refresh also asks the Gamma API for these slugs directly.
"""

from __future__ import annotations

import re

from app.domain import OfficeType
from matching.races import RaceCatalog

_PARTY_WORDS = {"R": "republican", "D": "democratic"}

# Events that do not follow the per-state patterns.
EXTRA_SLUGS = (
    "michigan-republican-senate-primary-winner-954",
    "california-governor-election-2026",
    "republican-nominee-for-florida-governor",
    "democratic-nominee-for-florida-governor",
    "parties-advancing-from-the-california-governor-primary",
    "florida-us-senate-election-winner",
)

CONTROL_SLUGS = (
    "which-party-will-win-the-senate-in-2026",
    "which-party-will-win-the-house-in-2026",
    "balance-of-power-2026-midterms",
    "republican-senate-seats-after-the-2026-midterm-elections-927",
    "republican-house-seats-after-the-2026-midterm-elections",
    "will-democrats-win-all-core-four-senate-races",
)


def to_slug(value: str) -> str:
    return re.sub(r"\s+", "-", value.strip().lower())


def race_slugs(catalog: RaceCatalog, *, include_control: bool = True) -> list[str]:
    """Slugs for every catalog race, in catalog order, without duplicates."""

    slugs: list[str] = []
    cycle = catalog.cycle
    for race in catalog.races:
        state = to_slug(race.state)
        if race.office is OfficeType.SENATE and not race.is_primary:
            slugs += [f"{state}-senate-election-winner", f"{state}-us-senate-election-winner"]
        elif race.office is OfficeType.SENATE:
            slugs.append(f"{state}-{_PARTY_WORDS[race.primary_party]}-senate-primary-winner")
        elif race.office is OfficeType.GOVERNOR and not race.is_primary:
            slugs.append(f"{state}-governor-winner-{cycle}")
        elif race.office is OfficeType.GOVERNOR:
            slugs.append(f"{state}-governor-{_PARTY_WORDS[race.primary_party]}-primary-winner")
        elif race.district_code:
            slugs.append(f"{race.district_code.lower()}-house-election-winner")

    slugs.extend(EXTRA_SLUGS)
    if include_control:
        slugs.extend(CONTROL_SLUGS)
    return list(dict.fromkeys(slugs))
