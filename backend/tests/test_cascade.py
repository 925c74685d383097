from __future__ import annotations

import pytest

from israel_drugs.engine.cancellation import CancellationToken
from israel_drugs.engine.cascade import (
    STEP_DROP_BASKET,
    STEP_INVERT_PRESCRIPTION,
    STEP_MINIMAL,
    STEP_PRIMARY,
    STEP_RELAX_ORDERING,
    FallbackCascade,
    SearchPlan,
    step_filters,
)
from israel_drugs.registry.models import DrugRecord, PrescriptionFilter, ResultSet, SearchFilters
from israel_drugs.tools.errors import SearchCancelled, UpstreamUnavailable


def _records(count: int) -> tuple[DrugRecord, ...]:
    return tuple(
        DrugRecord(registration_number=f"{index:03d} 00 00000 00", hebrew_name="", english_name=f"DRUG {index}")
        for index in range(count)
    )


class ScriptedFetch:
    """Returns scripted results in call order and records the filters seen."""

    def __init__(self, *results) -> None:
        self.results = list(results)
        self.seen: list[SearchFilters] = []

    def __call__(self, filters: SearchFilters, cancel):
        self.seen.append(filters)
        outcome = self.results.pop(0) if self.results else ResultSet()
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


def _plan(fetch, **base) -> SearchPlan:
    filters = SearchFilters(
        prescription=base.pop("prescription", PrescriptionFilter.ALL_DRUGS),
        health_basket_only=base.pop("health_basket_only", False),
        order_by=base.pop("order_by", 1),
    )
    return SearchPlan(label="test", base_filters=filters, fetch=fetch, **base)


def test_primary_hit_stops_cascade() -> None:
    fetch = ScriptedFetch(ResultSet(records=_records(3)))

    result = FallbackCascade().execute(_plan(fetch, health_basket_only=True))

    assert len(fetch.seen) == 1
    assert [attempt.step for attempt in result.attempts] == [STEP_PRIMARY]
    assert result.attempts[0].accepted is True
    assert result.used_fallback is False
    assert result.total_count == 3


def test_basket_filter_blocking_is_recovered_at_step_two() -> None:
    fetch = ScriptedFetch(ResultSet(), ResultSet(), ResultSet(records=_records(2)))

    result = FallbackCascade().execute(_plan(fetch, health_basket_only=True))

    assert [attempt.step for attempt in result.attempts] == [STEP_PRIMARY, STEP_INVERT_PRESCRIPTION, STEP_DROP_BASKET]
    assert result.attempts[2].accepted is True
    assert [attempt.accepted for attempt in result.attempts[:2]] == [False, False]
    assert result.accepted_step == STEP_DROP_BASKET
    assert fetch.seen[1].prescription is PrescriptionFilter.OTC_ONLY
    assert fetch.seen[1].health_basket_only is True
    assert fetch.seen[2].prescription is PrescriptionFilter.ALL_DRUGS
    assert fetch.seen[2].health_basket_only is False


def test_exhausted_cascade_is_a_successful_empty_result() -> None:
    fetch = ScriptedFetch()

    result = FallbackCascade().execute(_plan(fetch, health_basket_only=True, order_by=5))

    assert result.records == ()
    assert result.accepted_step is None
    assert result.accepted_attempt is None
    assert [attempt.step for attempt in result.attempts] == [
        STEP_PRIMARY,
        STEP_INVERT_PRESCRIPTION,
        STEP_DROP_BASKET,
        STEP_RELAX_ORDERING,
        STEP_MINIMAL,
    ]
    assert not any(attempt.accepted for attempt in result.attempts)


def test_inapplicable_and_duplicate_steps_are_skipped() -> None:
    fetch = ScriptedFetch()
    plan = _plan(fetch, order_by=0, allow_prescription_inversion=False)

    result = FallbackCascade().execute(plan)

    # Minimal filters equal the primary filters here, so only one call is made.
    assert [attempt.step for attempt in result.attempts] == [STEP_PRIMARY]
    assert len(fetch.seen) == 1


def test_transport_error_propagates_without_further_steps() -> None:
    fetch = ScriptedFetch(ResultSet(), UpstreamUnavailable("registry down"))

    with pytest.raises(UpstreamUnavailable):
        FallbackCascade().execute(_plan(fetch, health_basket_only=True))

    assert len(fetch.seen) == 2


def test_cancellation_stops_before_next_step() -> None:
    token = CancellationToken()

    def fetch(filters, cancel):
        cancel.cancel("user aborted")
        return ResultSet()

    with pytest.raises(SearchCancelled) as exc:
        FallbackCascade().execute(_plan(fetch, health_basket_only=True), cancel=token)

    assert exc.value.details["stage"] == f"test:{STEP_INVERT_PRESCRIPTION}"
    assert exc.value.details["reason"] == "user aborted"


def test_large_result_sets_are_capped_with_full_count() -> None:
    fetch = ScriptedFetch(ResultSet(records=_records(60)))

    result = FallbackCascade(max_results=50).execute(_plan(fetch))

    assert len(result.records) == 50
    assert result.total_count == 60
    assert result.truncated is True
    assert result.refinement_advised is True
    assert result.has_more is True


def test_caller_limit_caps_page_without_refinement_advice() -> None:
    fetch = ScriptedFetch(ResultSet(records=_records(12)))

    result = FallbackCascade(max_results=50).execute(_plan(fetch, limit=5))

    assert len(result.records) == 5
    assert result.total_count == 12
    assert result.truncated is True
    assert result.refinement_advised is False


def test_step_filters_derive_from_base_filters() -> None:
    plan = _plan(ScriptedFetch(), prescription=PrescriptionFilter.OTC_ONLY, health_basket_only=True, order_by=5)

    assert step_filters(STEP_DROP_BASKET, plan).prescription is PrescriptionFilter.OTC_ONLY
    assert step_filters(STEP_RELAX_ORDERING, plan).order_by == 0
    assert step_filters(STEP_RELAX_ORDERING, plan).health_basket_only is True
    minimal = step_filters(STEP_MINIMAL, plan)
    assert minimal == SearchFilters(prescription=PrescriptionFilter.ALL_DRUGS, health_basket_only=False, order_by=0)


def test_relax_ordering_only_for_popularity() -> None:
    plan = _plan(ScriptedFetch(), order_by=1)
    assert step_filters(STEP_RELAX_ORDERING, plan) is None


def test_cascade_rejects_non_positive_max_results() -> None:
    with pytest.raises(ValueError):
        FallbackCascade(max_results=0)
