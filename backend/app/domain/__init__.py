"""Domain models representing normalized market data and the race catalog."""

from .models import (
    SOURCES,
    Market,
    MatchResult,
    OfficeType,
    Outcome,
    Party,
    Race,
    SourceName,
    TopicQuery,
)

__all__ = [
    "SOURCES",
    "Market",
    "MatchResult",
    "OfficeType",
    "Outcome",
    "Party",
    "Race",
    "SourceName",
    "TopicQuery",
]
