"""Static race catalog and candidate-party table, loaded from YAML."""

from __future__ import annotations

from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Any

import yaml
from loguru import logger

from app.core.text import normalize_text
from app.domain import OfficeType, Race

DATA_DIR = Path(__file__).resolve().parent / "data"
DEFAULT_CATALOG_PATH = DATA_DIR / "races_2026.yaml"
DEFAULT_CANDIDATES_PATH = DATA_DIR / "candidates.yaml"

CandidatePartyMap = dict[str, str]

_PARTY_LABELS = {"D", "R", "I"}


@dataclass(frozen=True, slots=True)
class RaceCatalog:
    cycle: int
    state_codes: dict[str, str]
    races: tuple[Race, ...]
    ambiguous_codes: frozenset[str]

    @property
    def general_races(self) -> tuple[Race, ...]:
        return tuple(race for race in self.races if not race.is_primary)

    @property
    def primary_races(self) -> tuple[Race, ...]:
        return tuple(race for race in self.races if race.is_primary)

    @property
    def states(self) -> tuple[str, ...]:
        return tuple(self.state_codes)

    def state_code(self, state: str) -> str | None:
        return self.state_codes.get(state)

    def races_for_state(self, state: str) -> tuple[Race, ...]:
        return tuple(race for race in self.races if race.state == state)


def _load_yaml(path: Path) -> Any:
    with path.open("r", encoding="utf-8") as handle:
        return yaml.safe_load(handle)


def _office(value: Any) -> OfficeType:
    try:
        return OfficeType(str(value).lower())
    except ValueError as exc:
        raise ValueError(f"unknown office type in race catalog: {value!r}") from exc


def build_race_catalog(data: dict[str, Any]) -> RaceCatalog:
    """Enumerate every race declared by a parsed catalog document."""

    if not isinstance(data, dict) or "cycle" not in data:
        raise ValueError("race catalog must be a mapping with a 'cycle' entry")

    state_codes = {str(state): str(code).upper() for state, code in (data.get("state_codes") or {}).items()}

    def code_for(state: str) -> str:
        code = state_codes.get(state)
        if code is None:
            raise ValueError(f"race catalog has no state code for {state!r}")
        return code

    independents: dict[tuple[str, OfficeType], str] = {}
    for entry in data.get("independents") or ():
        independents[(str(entry["state"]), _office(entry["office"]))] = str(entry["candidate"])

    offices_by_state = {
        OfficeType.SENATE: [str(state) for state in data.get("senate") or ()],
        OfficeType.GOVERNOR: [str(state) for state in data.get("governor") or ()],
    }

    races: list[Race] = []
    for office, states in offices_by_state.items():
        for state in states:
            races.append(
                Race(
                    state=state,
                    office=office,
                    state_code=code_for(state),
                    independent_candidate=independents.get((state, office)),
                )
            )

    for entry in data.get("house") or ():
        state = str(entry["state"])
        races.append(
            Race(
                state=state,
                office=OfficeType.HOUSE,
                district=int(entry["district"]),
                state_code=code_for(state),
            )
        )

    primaries = data.get("primaries") or {}
    parties = [str(party).upper() for party in primaries.get("parties") or ()]
    for office in (_office(value) for value in primaries.get("offices") or ()):
        if office is OfficeType.HOUSE:
            raise ValueError("house primaries are not tracked")
        for party in parties:
            for state in offices_by_state[office]:
                races.append(
                    Race(
                        state=state,
                        office=office,
                        state_code=code_for(state),
                        primary_party=party,  # type: ignore[arg-type]
                    )
                )

    return RaceCatalog(
        cycle=int(data["cycle"]),
        state_codes=state_codes,
        races=tuple(races),
        ambiguous_codes=frozenset(str(code).upper() for code in data.get("ambiguous_codes") or ()),
    )


@lru_cache(maxsize=4)
def load_race_catalog(path: Path = DEFAULT_CATALOG_PATH) -> RaceCatalog:
    catalog = build_race_catalog(_load_yaml(path))
    logger.debug("Loaded {} races for the {} cycle from {}", len(catalog.races), catalog.cycle, path.name)
    return catalog


def build_candidate_parties(data: dict[str, Any] | None) -> CandidatePartyMap:
    parties: CandidatePartyMap = {}
    for name, party in (data or {}).items():
        label = str(party).upper()
        if label not in _PARTY_LABELS:
            raise ValueError(f"unknown party label {party!r} for candidate {name!r}")
        key = normalize_text(name)
        if key:
            parties[key] = label
    return parties


@lru_cache(maxsize=4)
def load_candidate_parties(path: Path = DEFAULT_CANDIDATES_PATH) -> CandidatePartyMap:
    return build_candidate_parties(_load_yaml(path))
