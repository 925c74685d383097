from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any, Mapping, Union

from israel_drugs.engine.similarity import closest_matches
from israel_drugs.tools.errors import AmbiguousCriterion, InvalidAtcCode, InvalidCriterion, UnknownRoute


ROUTE_IDS = {
    "oral": 17,
    "topical": 2,
    "ophthalmic": 15,
    "otic": 16,
    "intravenous": 6,
    "intramuscular": 5,
    "rectal": 18,
}

HEBREW_ROUTES = {
    "פומי": ROUTE_IDS["oral"],
    "עורי": ROUTE_IDS["topical"],
    "עיני": ROUTE_IDS["ophthalmic"],
    "אוזני": ROUTE_IDS["otic"],
    "תוך-ורידי": ROUTE_IDS["intravenous"],
    "תוך-שרירי": ROUTE_IDS["intramuscular"],
    "רקטלי": ROUTE_IDS["rectal"],
}

CRITERION_FIELDS = (
    "active_ingredient",
    "atc_code",
    "administration_route",
    "reference_drug_name",
    "free_text",
)

ATC_LEVEL4_PATTERN = re.compile(r"^[A-Z][0-9]{2}[A-Z]{2}$")
ATC_LEVEL4_LENGTH = 5
ATC_LEVEL5_LENGTH = 7

MAX_QUERY_LENGTH = 100
_UNSAFE_CHARS = re.compile(r"[<>\"';&]")


@dataclass(frozen=True)
class ActiveIngredient:
    value: str
    kind = "active_ingredient"


@dataclass(frozen=True)
class AtcCode:
    value: str
    kind = "atc_code"


@dataclass(frozen=True)
class AdministrationRoute:
    route_id: int
    route_name: str
    kind = "administration_route"


@dataclass(frozen=True)
class ReferenceDrug:
    name: str
    kind = "reference_drug"


@dataclass(frozen=True)
class FreeText:
    value: str
    kind = "free_text"


SearchCriterion = Union[ActiveIngredient, AtcCode, AdministrationRoute, ReferenceDrug, FreeText]


def describe_criterion(criterion: SearchCriterion) -> dict[str, Any]:
    if isinstance(criterion, AdministrationRoute):
        return {"kind": criterion.kind, "route_id": criterion.route_id, "route_name": criterion.route_name}
    if isinstance(criterion, ReferenceDrug):
        return {"kind": criterion.kind, "value": criterion.name}
    return {"kind": criterion.kind, "value": criterion.value}


def sanitize_query(text: Any, *, max_length: int = MAX_QUERY_LENGTH, field_name: str = "query") -> str:
    cleaned = _UNSAFE_CHARS.sub("", str(text or "")).strip()
    cleaned = " ".join(cleaned.split())[:max_length].strip()
    if not cleaned:
        raise InvalidCriterion(f"'{field_name}' must contain at least one searchable character", details={"field": field_name})
    return cleaned


def truncate_atc_to_level4(code: str) -> str:
    cleaned = str(code or "").strip().upper()
    if len(cleaned) == ATC_LEVEL5_LENGTH:
        return cleaned[:ATC_LEVEL4_LENGTH]
    return cleaned


def validate_atc_code(code: str) -> str:
    cleaned = str(code or "").strip()
    if len(cleaned) != ATC_LEVEL4_LENGTH or not ATC_LEVEL4_PATTERN.match(cleaned):
        raise InvalidAtcCode(
            f"ATC code '{cleaned}' is not a level-4 code",
            details={
                "atc_code": cleaned,
                "expected": "uppercase letter, two digits, two uppercase letters (e.g. 'N02BE')",
                "hint": "truncate level-5 codes such as 'N02BE01' to their level-4 parent",
            },
        )
    return cleaned


def resolve_route(name: str) -> AdministrationRoute:
    raw = str(name or "").strip()
    if raw in HEBREW_ROUTES:
        return AdministrationRoute(route_id=HEBREW_ROUTES[raw], route_name=raw)
    lowered = raw.lower()
    if lowered in ROUTE_IDS:
        return AdministrationRoute(route_id=ROUTE_IDS[lowered], route_name=lowered)

    known = sorted(ROUTE_IDS) + sorted(HEBREW_ROUTES)
    raise UnknownRoute(
        f"Unknown administration route: {raw}",
        details={
            "route": raw,
            "accepted_routes": known,
            "did_you_mean": closest_matches(lowered, known),
        },
    )


def _populated(raw: Mapping[str, Any]) -> dict[str, str]:
    out: dict[str, str] = {}
    for key in CRITERION_FIELDS:
        value = raw.get(key)
        if value is None:
            continue
        text = str(value).strip()
        if text:
            out[key] = text
    return out


def classify(raw_criteria: Mapping[str, Any] | None) -> SearchCriterion:
    """Turn raw caller criteria into exactly one `SearchCriterion`.

    Zero populated fields raise `InvalidCriterion`; several raise
    `AmbiguousCriterion`. Routes and ATC codes are validated here, never
    fuzzily accepted.
    """
    if raw_criteria is not None and not isinstance(raw_criteria, Mapping):
        raise InvalidCriterion("Search criteria must be an object", details={"received": type(raw_criteria).__name__})
    populated = _populated(raw_criteria or {})
    if not populated:
        raise InvalidCriterion(
            "At least one search criterion must be provided",
            details={"accepted_fields": list(CRITERION_FIELDS)},
        )
    if len(populated) > 1:
        raise AmbiguousCriterion(
            "Exactly one search criterion must be provided",
            details={"populated_fields": sorted(populated)},
        )

    key, value = next(iter(populated.items()))
    if key == "active_ingredient":
        return ActiveIngredient(value=sanitize_query(value, field_name=key).upper())
    if key == "atc_code":
        return AtcCode(value=validate_atc_code(value))
    if key == "administration_route":
        return resolve_route(value)
    if key == "reference_drug_name":
        return ReferenceDrug(name=sanitize_query(value, field_name=key))
    return FreeText(value=sanitize_query(value, field_name=key))
