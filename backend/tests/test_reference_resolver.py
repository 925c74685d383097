from __future__ import annotations

import pytest

from israel_drugs.engine.cancellation import CancellationToken
from israel_drugs.engine.criteria import ActiveIngredient, AtcCode
from israel_drugs.engine.reference import ReferenceResolver, leading_ingredient_token
from israel_drugs.registry.client import IsraelDrugsClient
from israel_drugs.registry.models import AtcEntry, DrugDetail, DrugRecord, PrescriptionFilter, ResultSet
from israel_drugs.tools.errors import DrugNotFound, ResolutionIncomplete, SearchCancelled, UpstreamUnavailable


ACAMOL = DrugRecord(
    registration_number="020 16 20534 00",
    hebrew_name="אקמול",
    english_name="ACAMOL",
    active_ingredients=("PARACETAMOL 500MG",),
)


class FakeClient:
    def __init__(self, *, records=(), detail=None, detail_error=None) -> None:
        self.records = tuple(records)
        self.detail = detail
        self.detail_error = detail_error
        self.search_calls: list[dict] = []
        self.detail_calls: list[str] = []

    def search_by_name(self, term, *, prescription, health_basket_only, page=1, order_by=0, cancel=None):
        self.search_calls.append(
            {
                "term": term,
                "prescription": prescription,
                "health_basket_only": health_basket_only,
                "page": page,
                "order_by": order_by,
            }
        )
        return ResultSet(records=self.records)

    def get_drug_detail(self, registration_number, *, cancel=None):
        self.detail_calls.append(registration_number)
        if self.detail_error is not None:
            raise self.detail_error
        return self.detail


def _detail(*atc_codes: str) -> DrugDetail:
    return DrugDetail(
        registration_number=ACAMOL.registration_number,
        hebrew_name="אקמול",
        english_name="ACAMOL",
        atc=tuple(AtcEntry(level4=code) for code in atc_codes),
    )


def test_resolve_prefers_atc_over_ingredient() -> None:
    client = FakeClient(records=[ACAMOL], detail=_detail("N02BE"))

    resolved = ReferenceResolver(client).resolve("Acamol")

    assert resolved.criterion == AtcCode(value="N02BE")
    assert resolved.source == "atc"
    assert resolved.registration_number == "020 16 20534 00"
    assert resolved.detail_available is True
    assert client.search_calls == [
        {
            "term": "Acamol",
            "prescription": PrescriptionFilter.ALL_DRUGS,
            "health_basket_only": False,
            "page": 1,
            "order_by": 0,
        }
    ]
    assert client.detail_calls == ["020 16 20534 00"]


def test_resolve_skips_blank_atc_entries() -> None:
    client = FakeClient(records=[ACAMOL], detail=_detail("", "N02BE"))
    assert ReferenceResolver(client).resolve("Acamol").criterion == AtcCode(value="N02BE")


def test_resolve_unknown_drug_raises_drug_not_found() -> None:
    client = FakeClient(records=[])

    with pytest.raises(DrugNotFound) as exc:
        ReferenceResolver(client).resolve("UnknownDrugXYZ123")

    assert exc.value.details["reference_name"] == "UnknownDrugXYZ123"
    assert client.detail_calls == []


def test_resolve_falls_back_to_ingredient_without_atc() -> None:
    client = FakeClient(records=[ACAMOL], detail=_detail())

    resolved = ReferenceResolver(client).resolve("Acamol")

    assert resolved.criterion == ActiveIngredient(value="PARACETAMOL")
    assert resolved.source == "active_ingredient"
    assert resolved.detail_available is True


def test_resolve_degrades_when_detail_fetch_fails() -> None:
    client = FakeClient(records=[ACAMOL], detail_error=UpstreamUnavailable("boom"))

    resolved = ReferenceResolver(client).resolve("Acamol")

    assert resolved.criterion == ActiveIngredient(value="PARACETAMOL")
    assert resolved.detail_available is False


def test_resolve_incomplete_carries_registration_number() -> None:
    bare = DrugRecord(registration_number="111 22 33333 44", hebrew_name="", english_name="MYSTERY")
    client = FakeClient(records=[bare], detail=None, detail_error=UpstreamUnavailable("down"))

    with pytest.raises(ResolutionIncomplete) as exc:
        ReferenceResolver(client).resolve("Mystery")

    assert exc.value.details["registration_number"] == "111 22 33333 44"


def test_resolve_does_not_swallow_cancellation() -> None:
    token = CancellationToken()
    token.cancel()
    client = FakeClient(records=[ACAMOL], detail=_detail("N02BE"))

    with pytest.raises(SearchCancelled):
        ReferenceResolver(client).resolve("Acamol", cancel=token)
    assert client.search_calls == []


def test_leading_ingredient_token() -> None:
    assert leading_ingredient_token("PARACETAMOL 500MG") == "PARACETAMOL"
    assert leading_ingredient_token("   ") is None


def test_resolve_degrades_when_detail_record_is_missing() -> None:
    client = FakeClient(
        records=[ACAMOL],
        detail_error=DrugNotFound("gone", details={"registration_number": ACAMOL.registration_number}),
    )

    resolved = ReferenceResolver(client).resolve("Acamol")

    assert resolved.criterion == ActiveIngredient(value="PARACETAMOL")
    assert resolved.source == "active_ingredient"
    assert resolved.detail_available is False


class FakeHttp:
    def __init__(self, responses: dict[str, object]) -> None:
        self.responses = responses

    def post_json(self, *, url, json_body, headers=None, cancel=None):
        return self.responses[url.rsplit("/", 1)[-1]], {}


def test_resolve_through_client_with_null_detail_payload() -> None:
    http = FakeHttp(
        {
            "SearchByName": {
                "results": [
                    {
                        "dragRegNum": "020 16 20534 00",
                        "dragEnName": "ACAMOL",
                        "activeComponents": [{"componentName": "PARACETAMOL 500MG"}],
                    }
                ]
            },
            "GetSpecificDrug": None,
        }
    )

    resolved = ReferenceResolver(IsraelDrugsClient(http)).resolve("Acamol")

    assert resolved.criterion == ActiveIngredient(value="PARACETAMOL")
    assert resolved.registration_number == "020 16 20534 00"
    assert resolved.detail_available is False


def test_resolve_propagates_cancellation_from_detail_fetch() -> None:
    client = FakeClient(records=[ACAMOL], detail_error=SearchCancelled("deadline exceeded"))

    with pytest.raises(SearchCancelled):
        ReferenceResolver(client).resolve("Acamol")
