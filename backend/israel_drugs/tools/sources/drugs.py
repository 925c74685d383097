from __future__ import annotations

from typing import Any

from israel_drugs.config import Settings
from israel_drugs.engine.cascade import CascadeResult
from israel_drugs.engine.criteria import CRITERION_FIELDS, ROUTE_IDS, describe_criterion, truncate_atc_to_level4
from israel_drugs.engine.service import PRESCRIPTION_ACCESS, SEARCH_SCOPE_ORDER, SearchEngine
from israel_drugs.engine.suggestions import SEARCH_TYPES
from israel_drugs.registry.client import RegistryClient, validate_registration_number
from israel_drugs.tools.context import ToolContext
from israel_drugs.tools.contracts import make_tool_output
from israel_drugs.tools.descriptions import render_tool_description
from israel_drugs.tools.errors import ToolExecutionError
from israel_drugs.tools.registry import ToolSpec


SOURCE = "israel_drugs"
MAX_SYMPTOM_RESULTS = 50


def _require_text(payload: dict[str, Any], key: str) -> str:
    value = str(payload.get(key, "") or "").strip()
    if not value:
        raise ToolExecutionError(code="VALIDATION_ERROR", message=f"'{key}' is required")
    return value


def _optional_bool(payload: dict[str, Any], key: str, default: bool = False) -> bool:
    raw = payload.get(key)
    if raw is None:
        return default
    if isinstance(raw, bool):
        return raw
    raise ToolExecutionError(code="VALIDATION_ERROR", message=f"'{key}' must be a boolean", details={key: raw})


def _optional_int(payload: dict[str, Any], key: str, *, minimum: int, maximum: int) -> int | None:
    raw = payload.get(key)
    if raw is None:
        return None
    if isinstance(raw, bool):
        raise ToolExecutionError(code="VALIDATION_ERROR", message=f"'{key}' must be an integer")
    try:
        value = int(raw)
    except (TypeError, ValueError) as exc:
        raise ToolExecutionError(code="VALIDATION_ERROR", message=f"'{key}' must be an integer") from exc
    if value < minimum or value > maximum:
        raise ToolExecutionError(
            code="VALIDATION_ERROR",
            message=f"'{key}' must be between {minimum} and {maximum}",
            details={key: value, "min": minimum, "max": maximum},
        )
    return value


def _cancel(ctx: ToolContext | None):
    return ctx.cancel if ctx is not None else None


def _cascade_warnings(result: CascadeResult, *, max_results: int) -> list[str]:
    warnings: list[str] = []
    if result.used_fallback:
        warnings.append(
            f"No results matched the requested filters; results come from the '{result.accepted_step}' fallback step."
        )
    if result.refinement_advised:
        warnings.append(
            f"{result.total_count} matches found; only the first {max_results} are returned. Refine the query."
        )
    elif result.truncated:
        warnings.append(f"Showing {len(result.records)} of {result.total_count} matches.")
    return warnings


def _pagination(result: CascadeResult) -> dict[str, Any]:
    return {"has_more": result.has_more, "total_count": result.total_count}


def _record_ids(result: CascadeResult) -> list[str]:
    return [record.registration_number for record in result.records]


def build_drug_search_tools(engine: SearchEngine, client: RegistryClient, settings: Settings) -> list[ToolSpec]:
    max_results = engine.cascade.max_results

    def discover_drug_by_name(payload: dict[str, Any], ctx: ToolContext | None = None) -> dict[str, Any]:
        query = _require_text(payload, "medication_query")
        prescription_access = str(payload.get("prescription_access") or "either")
        search_scope = str(payload.get("search_scope") or "similar_names")
        budget_conscious = _optional_bool(payload, "budget_conscious")

        result = engine.resolve_by_name(
            query,
            prescription_access=prescription_access,
            budget_conscious=budget_conscious,
            search_scope=search_scope,
            cancel=_cancel(ctx),
        )
        if result.records:
            summary = f"Found {result.total_count} registry match(es) for '{query}'."
        else:
            summary = f"No registry matches for '{query}' after {len(result.attempts)} attempt(s)."
        return make_tool_output(
            source=SOURCE,
            summary=summary,
            data={"query": query, "search_scope": search_scope, **result.to_dict()},
            ids=_record_ids(result),
            warnings=_cascade_warnings(result, max_results=max_results),
            pagination=_pagination(result),
            next_recommended_tools=["get_drug_details", "explore_generic_alternatives"]
            if result.records
            else ["suggest_drug_names"],
            ctx=ctx,
        )

    def find_drugs_for_symptom(payload: dict[str, Any], ctx: ToolContext | None = None) -> dict[str, Any]:
        category = _require_text(payload, "primary_category")
        symptom = _require_text(payload, "specific_symptom")
        limit = _optional_int(payload, "max_results", minimum=1, maximum=MAX_SYMPTOM_RESULTS)

        result = engine.resolve_by_symptom(
            category,
            symptom,
            otc_preferred=_optional_bool(payload, "otc_preferred"),
            health_basket_only=_optional_bool(payload, "health_basket_only"),
            max_results=limit,
            cancel=_cancel(ctx),
        )
        return make_tool_output(
            source=SOURCE,
            summary=f"Found {result.total_count} treatment(s) for '{category} > {symptom}'.",
            data={"primary_category": category, "specific_symptom": symptom, **result.to_dict()},
            ids=_record_ids(result),
            warnings=_cascade_warnings(result, max_results=max_results),
            pagination=_pagination(result),
            next_recommended_tools=["get_drug_details"] if result.records else ["browse_available_symptoms"],
            ctx=ctx,
        )

    def explore_generic_alternatives(payload: dict[str, Any], ctx: ToolContext | None = None) -> dict[str, Any]:
        criteria = {key: payload.get(key) for key in CRITERION_FIELDS}
        if criteria.get("atc_code"):
            criteria["atc_code"] = truncate_atc_to_level4(str(criteria["atc_code"]))

        outcome = engine.resolve_alternatives(
            criteria,
            health_basket_priority=_optional_bool(payload, "health_basket_priority"),
            preferred_route=payload.get("preferred_route"),
            cancel=_cancel(ctx),
        )
        result = outcome.result
        described = describe_criterion(outcome.criterion)
        label = outcome.reference.reference_name if outcome.reference else described.get("value") or described.get("route_name")
        warnings = _cascade_warnings(result, max_results=max_results)
        if outcome.reference is not None and outcome.reference.source == "active_ingredient":
            warnings.append("Therapeutic class (ATC) unavailable for the reference drug; matched by active ingredient.")
        return make_tool_output(
            source=SOURCE,
            summary=f"Found {result.total_count} alternative(s) for '{label}'.",
            data=outcome.to_dict(),
            ids=_record_ids(result),
            warnings=warnings,
            pagination=_pagination(result),
            next_recommended_tools=["get_drug_details"] if result.records else ["discover_drug_by_name"],
            ctx=ctx,
        )

    def suggest_drug_names(payload: dict[str, Any], ctx: ToolContext | None = None) -> dict[str, Any]:
        partial = _require_text(payload, "partial_name")
        limit = _optional_int(payload, "max_suggestions", minimum=1, maximum=engine.max_suggestions)

        outcome = engine.suggest(
            partial,
            search_type=str(payload.get("search_type") or "both"),
            max_suggestions=limit,
            cancel=_cancel(ctx),
        )
        warnings: list[str] = []
        if outcome.analysis.get("likely_misspelled"):
            warnings.append(f"'{partial}' looks misspelled; best guess is '{outcome.analysis.get('best_match')}'.")
        return make_tool_output(
            source=SOURCE,
            summary=f"{len(outcome.suggestions)} suggestion(s) for '{outcome.query}'.",
            result_kind="suggestion_list",
            data=outcome.to_dict(),
            ids=[item.name for item in outcome.suggestions],
            warnings=warnings,
            pagination={"has_more": outcome.raw_count > len(outcome.suggestions), "total_count": outcome.raw_count},
            next_recommended_tools=["discover_drug_by_name"] if outcome.suggestions else [],
            ctx=ctx,
        )

    def get_drug_details(payload: dict[str, Any], ctx: ToolContext | None = None) -> dict[str, Any]:
        registration_number = validate_registration_number(_require_text(payload, "registration_number"))
        detail = client.get_drug_detail(registration_number, cancel=_cancel(ctx))
        data = detail.to_dict()
        name = detail.english_name or detail.hebrew_name or registration_number
        warnings = [] if detail.is_active else [f"Registration {registration_number} is cancelled."]
        return make_tool_output(
            source=SOURCE,
            summary=f"Registry details for {name} ({registration_number}).",
            result_kind="document",
            data=data,
            ids=[registration_number],
            warnings=warnings,
            next_recommended_tools=["explore_generic_alternatives"],
            ctx=ctx,
        )

    tools = [
        ToolSpec(
            name="discover_drug_by_name",
            description=render_tool_description(
                purpose="Search the Israeli drug registry by trade name or active ingredient, relaxing filters when nothing matches.",
                when=["you know (part of) a drug name", "you need registration numbers for detail lookups"],
                avoid=["you only know a symptom", "you want substitutes for a known drug"],
                critical_args=[
                    "medication_query: Hebrew or English name",
                    "prescription_access: otc_only/has_prescription/either",
                    "search_scope: exact_match/similar_names/broad_search",
                    "budget_conscious: health basket only",
                ],
                returns="Record list of registry entries plus the fallback attempts tried.",
                fails_if=["query missing or unsearchable", "invalid enum values", "registry unavailable"],
            ),
            input_schema={
                "type": "object",
                "properties": {
                    "medication_query": {"type": "string", "minLength": 1, "maxLength": 100},
                    "prescription_access": {
                        "type": "string",
                        "enum": sorted(PRESCRIPTION_ACCESS),
                        "default": "either",
                    },
                    "budget_conscious": {"type": "boolean", "default": False},
                    "search_scope": {
                        "type": "string",
                        "enum": sorted(SEARCH_SCOPE_ORDER),
                        "default": "similar_names",
                    },
                },
                "required": ["medication_query"],
            },
            handler=discover_drug_by_name,
            source=SOURCE,
        ),
        ToolSpec(
            name="find_drugs_for_symptom",
            description=render_tool_description(
                purpose="List registered treatments for a symptom category and specific symptom, most popular first.",
                when=["you start from a complaint rather than a drug", "you want OTC options for a symptom"],
                avoid=["category/symptom values not taken from browse_available_symptoms"],
                critical_args=[
                    "primary_category: Hebrew symptom category",
                    "specific_symptom: Hebrew symptom",
                    "otc_preferred/health_basket_only: filters",
                    f"max_results: 1-{MAX_SYMPTOM_RESULTS}",
                ],
                returns="Record list of treatments plus the fallback attempts tried.",
                fails_if=["category or symptom missing", "max_results out of range", "registry unavailable"],
            ),
            input_schema={
                "type": "object",
                "properties": {
                    "primary_category": {"type": "string", "minLength": 1},
                    "specific_symptom": {"type": "string", "minLength": 1},
                    "otc_preferred": {"type": "boolean", "default": False},
                    "health_basket_only": {"type": "boolean", "default": False},
                    "max_results": {"type": "integer", "minimum": 1, "maximum": MAX_SYMPTOM_RESULTS},
                },
                "required": ["primary_category", "specific_symptom"],
            },
            handler=find_drugs_for_symptom,
            source=SOURCE,
        ),
        ToolSpec(
            name="explore_generic_alternatives",
            description=render_tool_description(
                purpose="Find therapeutic alternatives by active ingredient, ATC level-4 class, route or a reference drug.",
                when=["you need substitutes for a known drug", "you want every product in an ATC class"],
                avoid=["providing more than one criterion", "guessing route names outside the accepted list"],
                critical_args=[
                    "exactly one of active_ingredient/atc_code/administration_route/reference_drug_name/free_text",
                    "atc_code: level-4 such as N02BE (level-5 codes are truncated)",
                    f"administration_route / preferred_route: {', '.join(sorted(ROUTE_IDS))} or Hebrew",
                    "health_basket_priority: basket only",
                ],
                returns="Record list of alternatives with the resolved criterion and reference resolution.",
                fails_if=[
                    "zero or several criteria",
                    "unknown route",
                    "malformed ATC code",
                    "reference drug not found or without class data",
                ],
            ),
            input_schema={
                "type": "object",
                "properties": {
                    "active_ingredient": {"type": "string"},
                    "atc_code": {"type": "string"},
                    "administration_route": {"type": "string"},
                    "reference_drug_name": {"type": "string"},
                    "free_text": {"type": "string"},
                    "health_basket_priority": {"type": "boolean", "default": False},
                    "preferred_route": {"type": "string"},
                },
            },
            handler=explore_generic_alternatives,
            source=SOURCE,
        ),
        ToolSpec(
            name="suggest_drug_names",
            description=render_tool_description(
                purpose="Autocomplete and spell-check partial drug names against the registry.",
                when=["a name search returned nothing", "the user typed a partial or misspelled name"],
                avoid=["you already have a registration number"],
                critical_args=[
                    "partial_name: at least one character",
                    "search_type: trade_names/active_ingredients/both",
                    f"max_suggestions: 1-{engine.max_suggestions}",
                ],
                returns="Ranked suggestion list with similarity scores, confidence tiers and a query analysis.",
                fails_if=["partial_name missing", "invalid search_type", "registry unavailable"],
            ),
            input_schema={
                "type": "object",
                "properties": {
                    "partial_name": {"type": "string", "minLength": 1, "maxLength": 100},
                    "search_type": {"type": "string", "enum": sorted(SEARCH_TYPES), "default": "both"},
                    "max_suggestions": {"type": "integer", "minimum": 1, "maximum": engine.max_suggestions},
                },
                "required": ["partial_name"],
            },
            handler=suggest_drug_names,
            source=SOURCE,
        ),
    ]

    if settings.enable_drug_detail_tool:
        tools.append(
            ToolSpec(
                name="get_drug_details",
                description=render_tool_description(
                    purpose="Fetch the full registry entry for one registration number.",
                    when=["you have a registration number from a search", "you need ATC classes or indications"],
                    avoid=["you only have a drug name"],
                    critical_args=["registration_number: format XXX XX XXXXX XX"],
                    returns="Document with ATC entries, ingredients, flags and price.",
                    fails_if=["malformed registration number", "unknown registration number", "registry unavailable"],
                ),
                input_schema={
                    "type": "object",
                    "properties": {
                        "registration_number": {"type": "string", "pattern": r"^\d{3} \d{2} \d{5} \d{2}$"},
                    },
                    "required": ["registration_number"],
                },
                handler=get_drug_details,
                source=SOURCE,
            )
        )
    return tools
