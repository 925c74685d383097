from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Mapping

from israel_drugs.engine.cancellation import CancellationToken, check_cancelled
from israel_drugs.engine.cascade import DEFAULT_MAX_RESULTS, CascadeResult, FallbackCascade, SearchPlan
from israel_drugs.engine.criteria import (
    ActiveIngredient,
    AdministrationRoute,
    AtcCode,
    FreeText,
    ReferenceDrug,
    SearchCriterion,
    classify,
    describe_criterion,
    resolve_route,
    sanitize_query,
)
from israel_drugs.engine.reference import ReferenceResolver, ResolvedReference
from israel_drugs.engine.suggestions import SEARCH_TYPES, Suggestion, analyze_query, rank
from israel_drugs.registry.client import RegistryClient
from israel_drugs.registry.models import (
    DEFAULT_ORDER,
    POPULARITY_ORDER,
    SIMILARITY_ORDER,
    PrescriptionFilter,
    ResultSet,
    SearchFilters,
)
from israel_drugs.tools.errors import AmbiguousCriterion, InvalidCriterion


logger = logging.getLogger(__name__)

PRESCRIPTION_ACCESS = {
    "has_prescription": PrescriptionFilter.ALL_DRUGS,
    "either": PrescriptionFilter.ALL_DRUGS,
    "otc_only": PrescriptionFilter.OTC_ONLY,
}

SEARCH_SCOPE_ORDER = {
    "exact_match": DEFAULT_ORDER,
    "similar_names": SIMILARITY_ORDER,
    "broad_search": POPULARITY_ORDER,
}

DEFAULT_MAX_SUGGESTIONS = 20


@dataclass(frozen=True)
class AlternativesOutcome:
    criterion: SearchCriterion
    result: CascadeResult
    reference: ResolvedReference | None = None
    preferred_route: AdministrationRoute | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "criterion": describe_criterion(self.criterion),
            "reference": self.reference.to_dict() if self.reference else None,
            "preferred_route": describe_criterion(self.preferred_route) if self.preferred_route else None,
            **self.result.to_dict(),
        }


@dataclass(frozen=True)
class SuggestOutcome:
    query: str
    search_type: str
    suggestions: tuple[Suggestion, ...]
    raw_count: int
    analysis: dict[str, Any]

    def to_dict(self) -> dict[str, Any]:
        return {
            "query": self.query,
            "search_type": self.search_type,
            "suggestions": [item.to_dict() for item in self.suggestions],
            "total_suggestions": len(self.suggestions),
            "upstream_count": self.raw_count,
            "spelling_analysis": self.analysis,
        }


def _choice(value: str, allowed: Mapping[str, Any] | set[str], field_name: str) -> str:
    normalized = str(value or "").strip().lower()
    if normalized not in allowed:
        raise InvalidCriterion(
            f"'{field_name}' must be one of: {', '.join(sorted(allowed))}",
            details={"field": field_name, "value": value, "allowed": sorted(allowed)},
        )
    return normalized


class SearchEngine:
    """Stateless entry points over one injected registry client."""

    def __init__(
        self,
        client: RegistryClient,
        *,
        max_results: int = DEFAULT_MAX_RESULTS,
        max_suggestions: int = DEFAULT_MAX_SUGGESTIONS,
    ) -> None:
        self.client = client
        self.cascade = FallbackCascade(max_results=max_results)
        self.resolver = ReferenceResolver(client)
        self.max_suggestions = max_suggestions

    def resolve_by_name(
        self,
        query: str,
        *,
        prescription_access: str = "either",
        budget_conscious: bool = False,
        search_scope: str = "similar_names",
        cancel: CancellationToken | None = None,
    ) -> CascadeResult:
        term = sanitize_query(query, field_name="medication_query")
        access = _choice(prescription_access, PRESCRIPTION_ACCESS, "prescription_access")
        scope = _choice(search_scope, SEARCH_SCOPE_ORDER, "search_scope")

        def fetch(filters: SearchFilters, token: CancellationToken | None) -> ResultSet:
            return self.client.search_by_name(
                term,
                prescription=filters.prescription or PrescriptionFilter.ALL_DRUGS,
                health_basket_only=filters.health_basket_only,
                page=filters.page,
                order_by=filters.order_by,
                cancel=token,
            )

        plan = SearchPlan(
            label=f"by_name[{term}]",
            base_filters=SearchFilters(
                prescription=PRESCRIPTION_ACCESS[access],
                health_basket_only=bool(budget_conscious),
                order_by=SEARCH_SCOPE_ORDER[scope],
            ),
            fetch=fetch,
            allow_prescription_inversion=scope != "exact_match",
        )
        return self.cascade.execute(plan, cancel=cancel)

    def resolve_by_symptom(
        self,
        category: str,
        symptom: str,
        *,
        otc_preferred: bool = False,
        health_basket_only: bool = False,
        max_results: int | None = None,
        cancel: CancellationToken | None = None,
    ) -> CascadeResult:
        primary = sanitize_query(category, field_name="primary_category")
        secondary = sanitize_query(symptom, field_name="specific_symptom")
        if max_results is not None and max_results < 1:
            raise InvalidCriterion("'max_results' must be positive", details={"max_results": max_results})

        def fetch(filters: SearchFilters, token: CancellationToken | None) -> ResultSet:
            return self.client.search_by_symptom(
                primary,
                secondary,
                prescription=filters.prescription or PrescriptionFilter.ALL_DRUGS,
                health_basket_only=filters.health_basket_only,
                page=filters.page,
                order_by=filters.order_by,
                cancel=token,
            )

        plan = SearchPlan(
            label=f"by_symptom[{primary} > {secondary}]",
            base_filters=SearchFilters(
                prescription=PrescriptionFilter.OTC_ONLY if otc_preferred else PrescriptionFilter.ALL_DRUGS,
                health_basket_only=bool(health_basket_only),
                order_by=POPULARITY_ORDER,
            ),
            fetch=fetch,
            limit=max_results,
        )
        return self.cascade.execute(plan, cancel=cancel)

    def resolve_alternatives(
        self,
        criteria: Mapping[str, Any] | None,
        *,
        health_basket_priority: bool = False,
        preferred_route: str | None = None,
        cancel: CancellationToken | None = None,
    ) -> AlternativesOutcome:
        criterion = classify(criteria)
        secondary_route = resolve_route(preferred_route) if preferred_route and str(preferred_route).strip() else None
        if isinstance(criterion, AdministrationRoute) and secondary_route is not None:
            if secondary_route.route_id != criterion.route_id:
                raise AmbiguousCriterion(
                    "Both an administration route criterion and a different preferred route were given",
                    details={"route": criterion.route_name, "preferred_route": secondary_route.route_name},
                )
            secondary_route = None

        reference: ResolvedReference | None = None
        search_criterion: SearchCriterion = criterion
        if isinstance(criterion, ReferenceDrug):
            reference = self.resolver.resolve(criterion.name, cancel=cancel)
            search_criterion = reference.criterion

        check_cancelled(cancel, stage="alternatives")
        term: str | None = None
        atc_code: str | None = None
        core_route: int | None = None
        if isinstance(search_criterion, (ActiveIngredient, FreeText)):
            term = search_criterion.value
        elif isinstance(search_criterion, AtcCode):
            atc_code = search_criterion.value
        elif isinstance(search_criterion, AdministrationRoute):
            core_route = search_criterion.route_id

        def fetch(filters: SearchFilters, token: CancellationToken | None) -> ResultSet:
            found = self.client.search_generic(
                term=term,
                route_id=core_route if core_route is not None else filters.route_id,
                atc_code=atc_code,
                page=filters.page,
                order_by=filters.order_by,
                cancel=token,
            )
            if not filters.health_basket_only:
                return found
            # The generic endpoint has no basket parameter; filter locally.
            kept = tuple(record for record in found.records if record.in_health_basket)
            return ResultSet(records=kept, has_more=found.has_more, total_pages=found.total_pages)

        plan = SearchPlan(
            label=f"alternatives[{describe_criterion(search_criterion)['kind']}]",
            base_filters=SearchFilters(
                prescription=None,
                health_basket_only=bool(health_basket_priority),
                order_by=SIMILARITY_ORDER,
                route_id=secondary_route.route_id if secondary_route else None,
            ),
            fetch=fetch,
        )
        result = self.cascade.execute(plan, cancel=cancel)
        return AlternativesOutcome(
            criterion=search_criterion,
            result=result,
            reference=reference,
            preferred_route=secondary_route,
        )

    def suggest(
        self,
        partial_name: str,
        *,
        search_type: str = "both",
        max_suggestions: int | None = None,
        cancel: CancellationToken | None = None,
    ) -> SuggestOutcome:
        query = sanitize_query(partial_name, field_name="partial_name")
        kind = _choice(search_type, SEARCH_TYPES, "search_type")
        limit = self.max_suggestions if max_suggestions is None else max_suggestions
        if limit < 1:
            raise InvalidCriterion("'max_suggestions' must be positive", details={"max_suggestions": limit})
        limit = min(limit, self.max_suggestions)

        check_cancelled(cancel, stage="suggest")
        raw = self.client.autocomplete(
            query,
            include_trade_names=kind != "active_ingredients",
            include_ingredients=kind != "trade_names",
            cancel=cancel,
        )
        ranked = rank(raw, query, limit, search_type=kind)
        logger.debug("suggest[%s]: %d upstream, %d returned", query, len(raw), len(ranked))
        return SuggestOutcome(
            query=query,
            search_type=kind,
            suggestions=tuple(ranked),
            raw_count=len(raw),
            analysis=analyze_query(query, ranked),
        )
