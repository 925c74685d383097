from __future__ import annotations

import pytest

from israel_drugs.engine.cancellation import CancellationToken
from israel_drugs.registry.client import DEFAULT_BASE_URL, IsraelDrugsClient, validate_registration_number
from israel_drugs.registry.models import PrescriptionFilter
from israel_drugs.tools.errors import (
    DrugNotFound,
    InvalidCriterion,
    SearchCancelled,
    ToolExecutionError,
    UpstreamSchemaError,
    UpstreamUnavailable,
)


ROW = {"dragRegNum": "020 16 20534 00", "dragEnName": "ACAMOL", "dragHebName": "אקמול"}


class FakeHttp:
    def __init__(self, responses: dict[str, object]) -> None:
        self.responses = responses
        self.posts: list[tuple[str, dict]] = []

    def post_json(self, *, url, json_body, headers=None, cancel=None):
        self.posts.append((url, json_body))
        endpoint = url.rsplit("/", 1)[-1]
        response = self.responses[endpoint]
        if isinstance(response, Exception):
            raise response
        return response, {}


def test_search_by_name_encodes_inverted_prescription_flag() -> None:
    http = FakeHttp({"SearchByName": {"results": [ROW], "hasMore": False}})
    client = IsraelDrugsClient(http)

    result = client.search_by_name(
        "acamol",
        prescription=PrescriptionFilter.OTC_ONLY,
        health_basket_only=True,
        page=2,
        order_by=5,
    )

    url, body = http.posts[0]
    assert url == f"{DEFAULT_BASE_URL}/SearchByName"
    assert body == {"val": "acamol", "prescription": True, "healthServices": True, "pageIndex": 2, "orderBy": 5}
    assert result.records[0].registration_number == "020 16 20534 00"


def test_search_by_symptom_body() -> None:
    http = FakeHttp({"SearchBySymptom": {"results": []}})
    IsraelDrugsClient(http).search_by_symptom(
        "כאב",
        "כאב ראש",
        prescription=PrescriptionFilter.ALL_DRUGS,
        health_basket_only=False,
    )
    _, body = http.posts[0]
    assert body["primarySymp"] == "כאב"
    assert body["secondarySymp"] == "כאב ראש"
    assert body["prescription"] is False


def test_search_generic_normalizes_bare_array() -> None:
    http = FakeHttp({"SearchGeneric": [ROW]})
    result = IsraelDrugsClient(http, base_url="https://example.org/api/").search_generic(atc_code="N02BE", order_by=1)

    url, body = http.posts[0]
    assert url == "https://example.org/api/SearchGeneric"
    assert body == {"val": "", "matanId": None, "packageId": None, "atcId": "N02BE", "pageIndex": 1, "orderBy": 1}
    assert len(result) == 1
    assert result.has_more is False


def test_search_generic_requires_a_criterion() -> None:
    with pytest.raises(InvalidCriterion):
        IsraelDrugsClient(FakeHttp({})).search_generic()


def test_autocomplete_flags() -> None:
    http = FakeHttp({"SearchBoxAutocomplete": {"results": ["Acamol"]}})
    suggestions = IsraelDrugsClient(http).autocomplete("acam", include_trade_names=True, include_ingredients=False)

    _, body = http.posts[0]
    assert body == {"val": "acam", "isSearchTradeName": "1", "isSearchTradeMarkiv": "0"}
    assert suggestions == ["Acamol"]


def test_transport_errors_become_upstream_unavailable() -> None:
    error = ToolExecutionError(code="UPSTREAM_ERROR", message="Network error", retryable=True)
    client = IsraelDrugsClient(FakeHttp({"SearchByName": error}))

    with pytest.raises(UpstreamUnavailable) as exc:
        client.search_by_name("acamol", prescription=PrescriptionFilter.ALL_DRUGS, health_basket_only=False)

    assert exc.value.code == "UPSTREAM_UNAVAILABLE"
    assert exc.value.retryable is True
    assert exc.value.details["endpoint"] == "/SearchByName"
    assert exc.value.details["upstream_code"] == "UPSTREAM_ERROR"


def test_cancellation_passes_through_unchanged() -> None:
    client = IsraelDrugsClient(FakeHttp({"SearchByName": SearchCancelled("deadline exceeded")}))

    with pytest.raises(SearchCancelled):
        client.search_by_name("acamol", prescription=PrescriptionFilter.ALL_DRUGS, health_basket_only=False)


def test_malformed_payload_is_schema_error() -> None:
    client = IsraelDrugsClient(FakeHttp({"SearchByName": {"results": [{"dragEnName": "no id"}]}}))

    with pytest.raises(UpstreamSchemaError):
        client.search_by_name("acamol", prescription=PrescriptionFilter.ALL_DRUGS, health_basket_only=False)


def test_get_drug_detail_empty_payload_is_not_found() -> None:
    client = IsraelDrugsClient(FakeHttp({"GetSpecificDrug": None}))

    with pytest.raises(DrugNotFound):
        client.get_drug_detail("020 16 20534 00")


def test_get_drug_detail_parses_atc() -> None:
    payload = {"dragRegNum": "020 16 20534 00", "atc": [{"atc4Code": "N02BE "}]}
    http = FakeHttp({"GetSpecificDrug": payload})

    detail = IsraelDrugsClient(http).get_drug_detail("020 16 20534 00", cancel=CancellationToken())

    assert detail.first_level4_code() == "N02BE"
    assert http.posts[0][1] == {"dragRegNum": "020 16 20534 00"}


def test_registration_number_validation() -> None:
    assert validate_registration_number(" 020  16 20534 00 ") == "020 16 20534 00"
    with pytest.raises(InvalidCriterion):
        validate_registration_number("02016205340")




def test_symptom_hierarchy_body_and_parsing() -> None:
    http = FakeHttp(
        {
            "GetBySymptom": [
                {
                    "bySymptomMain": "שיכוך כאבים והורדת חום",
                    "list": [{"bySymptomSecond": 1, "bySymptomName": "כאבי ראש "}],
                },
                {"bySymptomMain": "אלרגיה", "list": None},
            ]
        }
    )

    categories = IsraelDrugsClient(http).get_symptom_hierarchy(prescription=PrescriptionFilter.OTC_ONLY)

    assert http.posts[0][1] == {"prescription": True}
    assert [category.name for category in categories] == ["שיכוך כאבים והורדת חום", "אלרגיה"]
    assert categories[0].symptoms[0].symptom_id == 1
    assert categories[0].symptoms[0].name == "כאבי ראש"
    assert categories[1].symptoms == ()


def test_popular_symptoms_row_count() -> None:
    http = FakeHttp(
        {
            "GetFastSearchPopularSymptoms": [
                {"bySymptomMain": "אף-אוזן-גרון", "bySymptomSecond": 4, "bySymptomName": "כאבי גרון", "order": 812}
            ]
        }
    )
    client = IsraelDrugsClient(http)

    popular = client.get_popular_symptoms(5)

    assert http.posts[0][1] == {"rowCount": 5}
    assert popular[0].popularity == 812
    assert popular[0].category == "אף-אוזן-גרון"
    with pytest.raises(InvalidCriterion):
        client.get_popular_symptoms(0)
    assert len(http.posts) == 1


def test_route_and_atc_lists() -> None:
    http = FakeHttp(
        {
            "GetMatanList": [{"id": 17, "text": "פומי"}, {"id": 2, "text": "עורי "}],
            "GetAtcList": [{"id": "n02be ", "text": "Anilides"}, {"id": "A", "text": None}],
        }
    )
    client = IsraelDrugsClient(http)

    routes = client.get_route_list()
    atc = client.get_atc_list()

    assert [(route.route_id, route.name) for route in routes] == [(17, "פומי"), (2, "עורי")]
    assert [(entry.code, entry.description) for entry in atc] == [("N02BE", "Anilides"), ("A", "")]
    assert [body for _, body in http.posts] == [{}, {}]


def test_lookup_list_must_be_an_array() -> None:
    client = IsraelDrugsClient(FakeHttp({"GetMatanList": {"results": []}}))

    with pytest.raises(UpstreamSchemaError):
        client.get_route_list()
