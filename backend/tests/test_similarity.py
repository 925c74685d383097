from __future__ import annotations

import pytest

from israel_drugs.engine.similarity import closest_matches, confidence_tier, levenshtein_distance, score


@pytest.mark.parametrize("value", ["Acamol", "paracetamol", "x", "אקמול"])
def test_identical_strings_score_one(value: str) -> None:
    assert score(value, value) == 1.0


def test_identical_strings_ignore_case() -> None:
    assert score("ACAMOL", "acamol") == 1.0


def test_prefix_rule_applies_when_candidate_starts_with_query() -> None:
    value = score("paracetamol", "parac")
    assert value > 0.9
    assert value == pytest.approx(0.9 + 0.1 * 5 / 11)


def test_score_is_asymmetric_for_prefix_pairs() -> None:
    # The reverse ordering cannot use the prefix rule and falls to edit distance.
    assert score("parac", "paracetamol") == pytest.approx(1 - 6 / 11)
    assert score("paracetamol", "parac") > score("parac", "paracetamol")


def test_substring_rule() -> None:
    assert score("Dexamol", "xamo") == pytest.approx(0.6 + 0.3 * 4 / 7)


def test_levenshtein_rule_for_misspelling() -> None:
    assert score("acamol", "acamlo") == pytest.approx(1 - 2 / 6)


def test_empty_query_never_raises_and_is_non_negative() -> None:
    assert score("Acamol", "") == 0.0
    assert score("", "") == 1.0


def test_levenshtein_distance_basics() -> None:
    assert levenshtein_distance("kitten", "sitting") == 3
    assert levenshtein_distance("", "abc") == 3
    assert levenshtein_distance("abc", "abc") == 0


def test_levenshtein_distance_counts_transposition_as_two_edits() -> None:
    assert levenshtein_distance("acamol", "acmaol") == 2
    assert levenshtein_distance("אקמול", "אקמל") == 1


def test_confidence_tiers() -> None:
    assert confidence_tier(0.8) == "high"
    assert confidence_tier(0.79) == "medium"
    assert confidence_tier(0.5) == "medium"
    assert confidence_tier(0.49) == "low"


def test_closest_matches_orders_by_score() -> None:
    assert closest_matches("ora", ["topical", "oral", "otic"]) == ["oral"]
