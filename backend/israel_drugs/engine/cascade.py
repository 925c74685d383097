from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from typing import Any, Callable

from israel_drugs.engine.cancellation import CancellationToken, check_cancelled
from israel_drugs.registry.models import (
    DEFAULT_ORDER,
    FIRST_PAGE,
    POPULARITY_ORDER,
    DrugRecord,
    PrescriptionFilter,
    ResultSet,
    SearchFilters,
)


logger = logging.getLogger(__name__)

STEP_PRIMARY = "primary"
STEP_INVERT_PRESCRIPTION = "invert_prescription"
STEP_DROP_BASKET = "drop_basket_filter"
STEP_RELAX_ORDERING = "relax_ordering"
STEP_MINIMAL = "minimal_filters"

# Order is fixed. Each step derives from the caller's base filters.
CASCADE_STEPS = (
    STEP_PRIMARY,
    STEP_INVERT_PRESCRIPTION,
    STEP_DROP_BASKET,
    STEP_RELAX_ORDERING,
    STEP_MINIMAL,
)

DEFAULT_MAX_RESULTS = 50

Fetch = Callable[[SearchFilters, CancellationToken | None], ResultSet]


@dataclass(frozen=True)
class SearchAttempt:
    step: str
    filters: SearchFilters
    result_count: int
    accepted: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "step": self.step,
            "filters": self.filters.to_dict(),
            "result_count": self.result_count,
            "accepted": self.accepted,
        }


@dataclass(frozen=True)
class SearchPlan:
    label: str
    base_filters: SearchFilters
    fetch: Fetch
    allow_prescription_inversion: bool = True
    limit: int | None = None


@dataclass(frozen=True)
class CascadeResult:
    records: tuple[DrugRecord, ...]
    total_count: int
    truncated: bool
    refinement_advised: bool
    attempts: tuple[SearchAttempt, ...]
    accepted_step: str | None = None
    has_more: bool = False

    @property
    def accepted_attempt(self) -> SearchAttempt | None:
        for attempt in self.attempts:
            if attempt.accepted:
                return attempt
        return None

    @property
    def used_fallback(self) -> bool:
        return self.accepted_step not in (None, STEP_PRIMARY)

    def to_dict(self) -> dict[str, Any]:
        return {
            "records": [record.to_dict() for record in self.records],
            "returned_count": len(self.records),
            "total_count": self.total_count,
            "truncated": self.truncated,
            "refinement_advised": self.refinement_advised,
            "accepted_step": self.accepted_step,
            "has_more": self.has_more,
            "attempts": [attempt.to_dict() for attempt in self.attempts],
        }


def step_filters(step: str, plan: SearchPlan) -> SearchFilters | None:
    """Filters for `step`, or None when the step does not apply to `plan`."""
    base = plan.base_filters
    if step == STEP_PRIMARY:
        return base
    if step == STEP_INVERT_PRESCRIPTION:
        if not plan.allow_prescription_inversion or base.prescription is None:
            return None
        return replace(base, prescription=base.prescription.inverted())
    if step == STEP_DROP_BASKET:
        if not base.health_basket_only:
            return None
        return replace(base, health_basket_only=False)
    if step == STEP_RELAX_ORDERING:
        if base.order_by != POPULARITY_ORDER:
            return None
        return replace(base, order_by=DEFAULT_ORDER)
    if step == STEP_MINIMAL:
        return SearchFilters(
            prescription=PrescriptionFilter.ALL_DRUGS if base.prescription is not None else None,
            health_basket_only=False,
            order_by=DEFAULT_ORDER,
            page=FIRST_PAGE,
            route_id=None,
        )
    raise ValueError(f"Unknown cascade step: {step}")


class FallbackCascade:
    def __init__(self, *, max_results: int = DEFAULT_MAX_RESULTS) -> None:
        if max_results < 1:
            raise ValueError("max_results must be positive")
        self.max_results = max_results

    def _page_size(self, plan: SearchPlan) -> int:
        if plan.limit is not None and plan.limit > 0:
            return min(plan.limit, self.max_results)
        return self.max_results

    def _finish(
        self,
        plan: SearchPlan,
        attempts: list[SearchAttempt],
        accepted: ResultSet | None,
    ) -> CascadeResult:
        if accepted is None:
            logger.info("%s: cascade exhausted after %d attempt(s) with no results", plan.label, len(attempts))
            return CascadeResult(
                records=(),
                total_count=0,
                truncated=False,
                refinement_advised=False,
                attempts=tuple(attempts),
            )

        page_size = self._page_size(plan)
        total = len(accepted.records)
        return CascadeResult(
            records=accepted.records[:page_size],
            total_count=total,
            truncated=total > page_size,
            refinement_advised=total > self.max_results,
            attempts=tuple(attempts),
            accepted_step=attempts[-1].step,
            has_more=accepted.has_more or total > page_size,
        )

    def execute(self, plan: SearchPlan, *, cancel: CancellationToken | None = None) -> CascadeResult:
        """Run the primary query, then the fallback steps, until one is non-empty.

        Empty results advance to the next step. Transport failures propagate
        immediately, as does cancellation, without probing further steps.
        """
        attempts: list[SearchAttempt] = []
        tried: list[SearchFilters] = []

        for step in CASCADE_STEPS:
            filters = step_filters(step, plan)
            if filters is None or filters in tried:
                logger.debug("%s: skipping step %s", plan.label, step)
                continue

            check_cancelled(cancel, stage=f"{plan.label}:{step}")
            result = plan.fetch(filters, cancel)
            tried.append(filters)
            count = len(result.records)

            if count:
                attempts.append(SearchAttempt(step=step, filters=filters, result_count=count, accepted=True))
                logger.info("%s: step %s accepted with %d result(s)", plan.label, step, count)
                return self._finish(plan, attempts, result)

            attempts.append(SearchAttempt(step=step, filters=filters, result_count=0))
            logger.info("%s: step %s returned no results", plan.label, step)

        return self._finish(plan, attempts, None)
