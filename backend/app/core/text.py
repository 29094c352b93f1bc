"""Text canonicalization shared by the adapters and every matcher."""

from __future__ import annotations

import re
import unicodedata
from functools import lru_cache
from typing import Any

_NON_ALNUM = re.compile(r"[^a-zA-Z0-9\s]")
_WHITESPACE = re.compile(r"\s+")


def normalize_text(value: Any) -> str:
    """Strip diacritics and punctuation, lowercase and collapse whitespace.

    ``"Côte d'Ivoire!"`` becomes ``"cote d ivoire"``. ``None`` and empty
    values normalize to an empty string.
    """

    if value is None:
        return ""
    decomposed = unicodedata.normalize("NFD", str(value))
    stripped = "".join(char for char in decomposed if not unicodedata.combining(char))
    cleaned = _NON_ALNUM.sub(" ", stripped).lower()
    return _WHITESPACE.sub(" ", cleaned).strip()


@lru_cache(maxsize=2048)
def keyword_pattern(keyword: str) -> re.Pattern[str]:
    """Word-bounded, case-insensitive pattern for a literal keyword."""

    return re.compile(rf"\b{re.escape(keyword)}\b", re.IGNORECASE)


def tokenize(value: Any) -> set[str]:
    normalized = normalize_text(value)
    return set(normalized.split()) if normalized else set()
