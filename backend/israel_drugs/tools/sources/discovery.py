from __future__ import annotations

import logging
from typing import Any

from israel_drugs.engine.criteria import ATC_LEVEL4_LENGTH, ATC_LEVEL5_LENGTH, ROUTE_IDS
from israel_drugs.engine.similarity import closest_matches
from israel_drugs.registry.client import RegistryClient
from israel_drugs.registry.models import PrescriptionFilter
from israel_drugs.tools.context import ToolContext
from israel_drugs.tools.contracts import make_tool_output
from israel_drugs.tools.descriptions import render_tool_description
from israel_drugs.tools.errors import UpstreamUnavailable
from israel_drugs.tools.registry import ToolSpec
from israel_drugs.tools.sources.drugs import SOURCE, _cancel, _optional_bool, _optional_int


logger = logging.getLogger(__name__)

MAX_PER_CATEGORY = 50
MAX_POPULAR_RESULTS = 50
MAX_ATC_RESULTS = 200
DEFAULT_ATC_RESULTS = 50

# ATC code length per classification level.
ATC_LEVEL_LENGTHS = {1: 1, 2: 3, 3: 4, 4: ATC_LEVEL4_LENGTH, 5: ATC_LEVEL5_LENGTH}
_ROUTE_KEYS = {route_id: key for key, route_id in ROUTE_IDS.items()}


def _optional_text(payload: dict[str, Any], key: str) -> str | None:
    value = str(payload.get(key) or "").strip()
    return value or None


def atc_level(code: str) -> int | None:
    for level, length in ATC_LEVEL_LENGTHS.items():
        if len(code) == length:
            return level
    return None


def build_discovery_tools(client: RegistryClient) -> list[ToolSpec]:
    def browse_available_symptoms(payload: dict[str, Any], ctx: ToolContext | None = None) -> dict[str, Any]:
        category_filter = _optional_text(payload, "category_filter")
        max_per_category = _optional_int(payload, "max_per_category", minimum=1, maximum=MAX_PER_CATEGORY) or 20
        include_popular = _optional_bool(payload, "include_popular_symptoms")
        max_popular = _optional_int(payload, "max_popular_results", minimum=1, maximum=MAX_POPULAR_RESULTS) or 10
        otc_only = _optional_bool(payload, "otc_only")

        hierarchy = client.get_symptom_hierarchy(
            prescription=PrescriptionFilter.OTC_ONLY if otc_only else PrescriptionFilter.ALL_DRUGS,
            cancel=_cancel(ctx),
        )
        warnings: list[str] = []
        categories = hierarchy
        if category_filter:
            needle = category_filter.lower()
            categories = [category for category in hierarchy if needle in category.name.lower()]
            if not categories and hierarchy:
                hints = closest_matches(category_filter, [category.name for category in hierarchy])
                hint_text = f" Closest categories: {', '.join(hints)}." if hints else ""
                warnings.append(f"No symptom category matches '{category_filter}'.{hint_text}")

        popular = None
        if include_popular:
            try:
                popular = client.get_popular_symptoms(max_popular, cancel=_cancel(ctx))
            except UpstreamUnavailable as exc:
                logger.warning("Popular symptoms unavailable (%s); returning the hierarchy only", exc.code)
                warnings.append("Popular symptoms could not be retrieved.")

        return make_tool_output(
            source=SOURCE,
            summary=f"{len(categories)} symptom categor{'y' if len(categories) == 1 else 'ies'} available.",
            result_kind="document",
            data={
                "categories": [category.to_dict(max_symptoms=max_per_category) for category in categories],
                "popular_symptoms": [item.to_dict() for item in popular] if popular is not None else None,
                "total_categories": len(categories),
            },
            ids=[category.name for category in categories],
            warnings=warnings,
            next_recommended_tools=["find_drugs_for_symptom"] if categories else [],
            ctx=ctx,
        )

    def list_administration_routes(payload: dict[str, Any], ctx: ToolContext | None = None) -> dict[str, Any]:
        search_filter = _optional_text(payload, "search_filter")
        routes = client.get_route_list(cancel=_cancel(ctx))
        if search_filter:
            needle = search_filter.lower()
            routes = [
                route
                for route in routes
                if needle in route.name.lower() or needle in (_ROUTE_KEYS.get(route.route_id) or "")
            ]
        return make_tool_output(
            source=SOURCE,
            summary=f"{len(routes)} administration route(s) registered.",
            data={
                "routes": [
                    {"route_id": route.route_id, "name": route.name, "route_key": _ROUTE_KEYS.get(route.route_id)}
                    for route in routes
                ],
            },
            ids=[str(route.route_id) for route in routes],
            pagination={"has_more": False, "total_count": len(routes)},
            next_recommended_tools=["explore_generic_alternatives"] if routes else [],
            ctx=ctx,
        )

    def explore_therapeutic_categories(payload: dict[str, Any], ctx: ToolContext | None = None) -> dict[str, Any]:
        level = _optional_int(payload, "level", minimum=1, maximum=5)
        search_filter = _optional_text(payload, "search_filter")
        limit = _optional_int(payload, "max_results", minimum=1, maximum=MAX_ATC_RESULTS) or DEFAULT_ATC_RESULTS

        entries = client.get_atc_list(cancel=_cancel(ctx))
        if level is not None:
            entries = [entry for entry in entries if len(entry.code) == ATC_LEVEL_LENGTHS[level]]
        if search_filter:
            code_prefix = search_filter.upper()
            needle = search_filter.lower()
            entries = [
                entry
                for entry in entries
                if entry.code.startswith(code_prefix) or needle in entry.description.lower()
            ]

        shown = entries[:limit]
        warnings = []
        if len(entries) > limit:
            warnings.append(f"Showing {limit} of {len(entries)} ATC categories. Narrow with level or search_filter.")
        return make_tool_output(
            source=SOURCE,
            summary=f"{len(entries)} ATC categor{'y' if len(entries) == 1 else 'ies'} matched.",
            data={
                "categories": [
                    {"atc_code": entry.code, "description": entry.description, "level": atc_level(entry.code)}
                    for entry in shown
                ],
            },
            ids=[entry.code for entry in shown],
            warnings=warnings,
            pagination={"has_more": len(entries) > limit, "total_count": len(entries)},
            next_recommended_tools=["explore_generic_alternatives"] if shown else [],
            ctx=ctx,
        )

    return [
        ToolSpec(
            name="browse_available_symptoms",
            description=render_tool_description(
                purpose="List the registry symptom hierarchy: categories and their specific symptoms, in Hebrew.",
                when=[
                    "you need exact primary_category/specific_symptom values for find_drugs_for_symptom",
                    "you want the most searched symptoms",
                ],
                avoid=["you already hold exact category and symptom names"],
                critical_args=[
                    "category_filter: substring of a category name",
                    f"max_per_category: 1-{MAX_PER_CATEGORY}",
                    "include_popular_symptoms / max_popular_results",
                    "otc_only: hierarchy restricted to OTC treatments",
                ],
                returns="Document with categories, their symptoms and optional popular symptoms.",
                fails_if=["non-boolean flags", "limits out of range", "registry unavailable"],
            ),
            input_schema={
                "type": "object",
                "properties": {
                    "category_filter": {"type": "string"},
                    "max_per_category": {"type": "integer", "minimum": 1, "maximum": MAX_PER_CATEGORY, "default": 20},
                    "include_popular_symptoms": {"type": "boolean", "default": False},
                    "max_popular_results": {
                        "type": "integer",
                        "minimum": 1,
                        "maximum": MAX_POPULAR_RESULTS,
                        "default": 10,
                    },
                    "otc_only": {"type": "boolean", "default": False},
                },
            },
            handler=browse_available_symptoms,
            source=SOURCE,
        ),
        ToolSpec(
            name="list_administration_routes",
            description=render_tool_description(
                purpose="List administration routes known to the registry with their numeric ids.",
                when=["you need a valid route for explore_generic_alternatives", "a route name was rejected"],
                avoid=["you already use one of the accepted route keys"],
                critical_args=["search_filter: optional substring of the Hebrew name or route key"],
                returns="Record list of routes with id, Hebrew name and accepted route key where one exists.",
                fails_if=["registry unavailable"],
            ),
            input_schema={
                "type": "object",
                "properties": {"search_filter": {"type": "string"}},
            },
            handler=list_administration_routes,
            source=SOURCE,
        ),
        ToolSpec(
            name="explore_therapeutic_categories",
            description=render_tool_description(
                purpose="Browse ATC therapeutic categories registered in Israel by level, code prefix or description.",
                when=["you need a level-4 ATC code for explore_generic_alternatives", "you explore a drug class"],
                avoid=["listing every level at once without a filter"],
                critical_args=[
                    "level: 1-5 (4 = chemical subgroup such as N02BE)",
                    "search_filter: code prefix or description text",
                    f"max_results: 1-{MAX_ATC_RESULTS}",
                ],
                returns="Record list of ATC codes with descriptions and levels.",
                fails_if=["level or max_results out of range", "registry unavailable"],
            ),
            input_schema={
                "type": "object",
                "properties": {
                    "level": {"type": "integer", "minimum": 1, "maximum": 5},
                    "search_filter": {"type": "string"},
                    "max_results": {
                        "type": "integer",
                        "minimum": 1,
                        "maximum": MAX_ATC_RESULTS,
                        "default": DEFAULT_ATC_RESULTS,
                    },
                },
            },
            handler=explore_therapeutic_categories,
            source=SOURCE,
        ),
    ]
