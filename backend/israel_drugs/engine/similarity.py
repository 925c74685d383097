from __future__ import annotations

from rapidfuzz.distance import Levenshtein

HIGH_CONFIDENCE = 0.8
MEDIUM_CONFIDENCE = 0.5


def levenshtein_distance(left: str, right: str) -> int:
    return Levenshtein.distance(left, right)


def score(candidate: str, query: str) -> float:
    """Similarity of `candidate` to `query` in [0, 1].

    Rules are tried in order and the first match wins: case-insensitive
    prefix, then substring, then normalized Levenshtein distance. The prefix
    and substring rules make the score asymmetric.
    """
    candidate_lower = str(candidate or "").lower()
    query_lower = str(query or "").lower()

    if candidate_lower == query_lower:
        return 1.0

    if query_lower:
        ratio = len(query_lower) / len(candidate_lower) if candidate_lower else 0.0
        if candidate_lower.startswith(query_lower):
            return min(0.9 + 0.1 * ratio, 1.0)
        if query_lower in candidate_lower:
            return min(0.6 + 0.3 * ratio, 1.0)

    distance = levenshtein_distance(query_lower, candidate_lower)
    longest = max(len(query_lower), len(candidate_lower))
    return max(0.0, 1.0 - distance / longest)


def confidence_tier(value: float) -> str:
    if value >= HIGH_CONFIDENCE:
        return "high"
    if value >= MEDIUM_CONFIDENCE:
        return "medium"
    return "low"


def closest_matches(query: str, candidates: list[str], *, limit: int = 3, minimum: float = 0.4) -> list[str]:
    scored = [(score(candidate, query), candidate) for candidate in candidates]
    ranked = sorted(scored, key=lambda item: item[0], reverse=True)
    return [candidate for value, candidate in ranked if value >= minimum][:limit]
