from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any

from israel_drugs.engine.similarity import confidence_tier, score


SEARCH_TYPES = {"trade_names", "active_ingredients", "both"}

_TRADE_NAME_PATTERN = re.compile(r"^[A-Z][a-z]+")
_HEBREW_CHARS = re.compile(r"[\u0590-\u05FF]")
_LATIN_CHARS = re.compile(r"[a-zA-Z]")


@dataclass(frozen=True)
class Suggestion:
    name: str
    score: float
    confidence: str
    rank: int
    name_type: str = "unknown"

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "similarity_score": round(self.score, 4),
            "confidence": self.confidence,
            "rank": self.rank,
            "name_type": self.name_type,
        }


def classify_name_type(name: str, search_type: str = "both") -> str:
    if search_type == "trade_names":
        return "trade_name"
    if search_type == "active_ingredients":
        return "active_ingredient"
    # Catalog convention: generic substances are upper-cased.
    if name.upper() == name and len(name) > 5 and any(ch.isupper() for ch in name):
        return "active_ingredient"
    if _TRADE_NAME_PATTERN.match(name):
        return "trade_name"
    return "unknown"


def rank(raw_suggestions: list[str], query: str, limit: int, *, search_type: str = "both") -> list[Suggestion]:
    """Score, order and truncate upstream suggestions for `query`.

    The sort is stable, so equal scores keep the upstream order (which
    reflects relevance signals not visible here).
    """
    scored = [(score(name, query), name) for name in raw_suggestions]
    ordered = sorted(scored, key=lambda item: item[0], reverse=True)
    out: list[Suggestion] = []
    for position, (value, name) in enumerate(ordered[: max(limit, 0)], start=1):
        out.append(
            Suggestion(
                name=name,
                score=value,
                confidence=confidence_tier(value),
                rank=position,
                name_type=classify_name_type(name, search_type),
            )
        )
    return out


def search_strategy(query: str) -> str:
    if len(query) < 3:
        return "broad_prefix_matching"
    if len(query) < 6:
        return "targeted_similarity_search"
    return "precise_completion_search"


def analyze_query(query: str, suggestions: list[Suggestion] | None = None) -> dict[str, Any]:
    has_hebrew = bool(_HEBREW_CHARS.search(query))
    has_latin = bool(_LATIN_CHARS.search(query))
    if has_hebrew and not has_latin:
        language = "hebrew"
    elif has_latin and not has_hebrew:
        language = "english"
    else:
        language = "mixed"

    best = suggestions[0] if suggestions else None
    return {
        "language_detected": language,
        "contains_numbers": any(ch.isdigit() for ch in query),
        "query_length": len(query),
        "search_strategy": search_strategy(query),
        "likely_misspelled": bool(best is not None and best.confidence == "low"),
        "best_match": best.name if best is not None else None,
    }
