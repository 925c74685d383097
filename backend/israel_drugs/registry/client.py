from __future__ import annotations

import logging
import re
from typing import TYPE_CHECKING, Any, Protocol

from israel_drugs.registry.models import (
    DEFAULT_ORDER,
    FIRST_PAGE,
    AtcListEntry,
    DrugDetail,
    PopularSymptom,
    PrescriptionFilter,
    ResultSet,
    RouteEntry,
    SymptomCategory,
    parse_atc_list,
    parse_autocomplete,
    parse_drug_detail,
    parse_popular_symptoms,
    parse_route_list,
    parse_search_array,
    parse_search_envelope,
    parse_symptom_hierarchy,
)
from israel_drugs.tools.errors import (
    DrugNotFound,
    InvalidCriterion,
    SearchCancelled,
    ToolExecutionError,
    UpstreamUnavailable,
)
from israel_drugs.tools.http_client import SimpleHttpClient

if TYPE_CHECKING:
    from israel_drugs.engine.cancellation import CancellationToken


logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://israeldrugs.health.gov.il/GovServiceList/IDRServer"

ENDPOINTS = {
    "autocomplete": "/SearchBoxAutocomplete",
    "search_by_name": "/SearchByName",
    "search_by_symptom": "/SearchBySymptom",
    "search_generic": "/SearchGeneric",
    "drug_detail": "/GetSpecificDrug",
    "symptom_hierarchy": "/GetBySymptom",
    "popular_symptoms": "/GetFastSearchPopularSymptoms",
    "route_list": "/GetMatanList",
    "atc_list": "/GetAtcList",
}

_REG_NUM_PATTERN = re.compile(r"^\d{3} \d{2} \d{5} \d{2}$")
MAX_POPULAR_SYMPTOMS = 100


class RegistryClient(Protocol):
    def search_by_name(
        self,
        term: str,
        *,
        prescription: PrescriptionFilter,
        health_basket_only: bool,
        page: int = FIRST_PAGE,
        order_by: int = DEFAULT_ORDER,
        cancel: CancellationToken | None = None,
    ) -> ResultSet: ...

    def search_by_symptom(
        self,
        category: str,
        symptom: str,
        *,
        prescription: PrescriptionFilter,
        health_basket_only: bool,
        page: int = FIRST_PAGE,
        order_by: int = DEFAULT_ORDER,
        cancel: CancellationToken | None = None,
    ) -> ResultSet: ...

    def search_generic(
        self,
        *,
        term: str | None = None,
        route_id: int | None = None,
        atc_code: str | None = None,
        page: int = FIRST_PAGE,
        order_by: int = DEFAULT_ORDER,
        cancel: CancellationToken | None = None,
    ) -> ResultSet: ...

    def get_drug_detail(self, registration_number: str, *, cancel: CancellationToken | None = None) -> DrugDetail: ...

    def autocomplete(
        self,
        term: str,
        *,
        include_trade_names: bool = True,
        include_ingredients: bool = True,
        cancel: CancellationToken | None = None,
    ) -> list[str]: ...

    def get_symptom_hierarchy(
        self,
        *,
        prescription: PrescriptionFilter = PrescriptionFilter.ALL_DRUGS,
        cancel: CancellationToken | None = None,
    ) -> list[SymptomCategory]: ...

    def get_popular_symptoms(self, row_count: int = 10, *, cancel: CancellationToken | None = None) -> list[PopularSymptom]: ...

    def get_route_list(self, *, cancel: CancellationToken | None = None) -> list[RouteEntry]: ...

    def get_atc_list(self, *, cancel: CancellationToken | None = None) -> list[AtcListEntry]: ...


def validate_registration_number(value: str) -> str:
    cleaned = " ".join(str(value or "").split())
    if not _REG_NUM_PATTERN.match(cleaned):
        raise InvalidCriterion(
            "Invalid drug registration number format",
            details={"registration_number": value, "expected_format": "XXX XX XXXXX XX (e.g. '020 16 20534 00')"},
        )
    return cleaned


class IsraelDrugsClient:
    """Ministry of Health drug registry over POST/JSON.

    Every method returns strictly parsed records. Transport and server
    failures surface as `UpstreamUnavailable`; shape mismatches as
    `UpstreamSchemaError`.
    """

    def __init__(self, http: SimpleHttpClient, *, base_url: str = DEFAULT_BASE_URL) -> None:
        self.http = http
        self.base_url = base_url.rstrip("/")

    def _post(self, endpoint: str, body: dict[str, Any], cancel: CancellationToken | None) -> Any:
        url = f"{self.base_url}{ENDPOINTS[endpoint]}"
        logger.debug("POST %s body=%s", url, body)
        try:
            payload, _ = self.http.post_json(url=url, json_body=body, cancel=cancel)
        except SearchCancelled:
            raise
        except ToolExecutionError as exc:
            raise UpstreamUnavailable(
                f"Drug registry {ENDPOINTS[endpoint]} failed: {exc.message}",
                details={"endpoint": ENDPOINTS[endpoint], "upstream_code": exc.code, **exc.details},
                retryable=exc.retryable or exc.code == "UPSTREAM_ERROR",
            ) from exc
        return payload

    def search_by_name(
        self,
        term: str,
        *,
        prescription: PrescriptionFilter,
        health_basket_only: bool,
        page: int = FIRST_PAGE,
        order_by: int = DEFAULT_ORDER,
        cancel: CancellationToken | None = None,
    ) -> ResultSet:
        body = {
            "val": term,
            "prescription": prescription.to_wire(),
            "healthServices": bool(health_basket_only),
            "pageIndex": page,
            "orderBy": order_by,
        }
        payload = self._post("search_by_name", body, cancel)
        return parse_search_envelope(payload, endpoint=ENDPOINTS["search_by_name"], page=page)

    def search_by_symptom(
        self,
        category: str,
        symptom: str,
        *,
        prescription: PrescriptionFilter,
        health_basket_only: bool,
        page: int = FIRST_PAGE,
        order_by: int = DEFAULT_ORDER,
        cancel: CancellationToken | None = None,
    ) -> ResultSet:
        body = {
            "primarySymp": category,
            "secondarySymp": symptom,
            "healthServices": bool(health_basket_only),
            "pageIndex": page,
            "prescription": prescription.to_wire(),
            "orderBy": order_by,
        }
        payload = self._post("search_by_symptom", body, cancel)
        return parse_search_envelope(payload, endpoint=ENDPOINTS["search_by_symptom"], page=page)

    def search_generic(
        self,
        *,
        term: str | None = None,
        route_id: int | None = None,
        atc_code: str | None = None,
        page: int = FIRST_PAGE,
        order_by: int = DEFAULT_ORDER,
        cancel: CancellationToken | None = None,
    ) -> ResultSet:
        if not term and route_id is None and not atc_code:
            raise InvalidCriterion("At least one of term, route_id or atc_code must be provided")
        body = {
            "val": term or "",
            "matanId": route_id,
            "packageId": None,
            "atcId": atc_code,
            "pageIndex": page,
            "orderBy": order_by,
        }
        payload = self._post("search_generic", body, cancel)
        # This endpoint answers with a bare array rather than an envelope.
        return parse_search_array(payload, endpoint=ENDPOINTS["search_generic"], page=page)

    def get_drug_detail(self, registration_number: str, *, cancel: CancellationToken | None = None) -> DrugDetail:
        payload = self._post("drug_detail", {"dragRegNum": registration_number}, cancel)
        if not payload:
            raise DrugNotFound(
                f"No registry entry for registration number {registration_number}",
                details={"registration_number": registration_number},
            )
        return parse_drug_detail(payload)

    def autocomplete(
        self,
        term: str,
        *,
        include_trade_names: bool = True,
        include_ingredients: bool = True,
        cancel: CancellationToken | None = None,
    ) -> list[str]:
        body = {
            "val": term,
            "isSearchTradeName": "1" if include_trade_names else "0",
            "isSearchTradeMarkiv": "1" if include_ingredients else "0",
        }
        payload = self._post("autocomplete", body, cancel)
        return parse_autocomplete(payload)

    def get_symptom_hierarchy(
        self,
        *,
        prescription: PrescriptionFilter = PrescriptionFilter.ALL_DRUGS,
        cancel: CancellationToken | None = None,
    ) -> list[SymptomCategory]:
        payload = self._post("symptom_hierarchy", {"prescription": prescription.to_wire()}, cancel)
        return parse_symptom_hierarchy(payload)

    def get_popular_symptoms(self, row_count: int = 10, *, cancel: CancellationToken | None = None) -> list[PopularSymptom]:
        if row_count < 1 or row_count > MAX_POPULAR_SYMPTOMS:
            raise InvalidCriterion(
                f"row_count must be between 1 and {MAX_POPULAR_SYMPTOMS}",
                details={"row_count": row_count},
            )
        payload = self._post("popular_symptoms", {"rowCount": row_count}, cancel)
        return parse_popular_symptoms(payload)

    def get_route_list(self, *, cancel: CancellationToken | None = None) -> list[RouteEntry]:
        return parse_route_list(self._post("route_list", {}, cancel))

    def get_atc_list(self, *, cancel: CancellationToken | None = None) -> list[AtcListEntry]:
        return parse_atc_list(self._post("atc_list", {}, cancel))
