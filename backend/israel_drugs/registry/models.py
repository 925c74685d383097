from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from israel_drugs.tools.errors import UpstreamSchemaError


DEFAULT_ORDER = 0
SIMILARITY_ORDER = 1
POPULARITY_ORDER = 5
FIRST_PAGE = 1

IMAGES_BASE_URL = "https://mohpublic.z6.web.core.windows.net/IsraelDrugs"


class PrescriptionFilter(enum.Enum):
    """Prescription filter of the search endpoints.

    The upstream encodes it inverted: `prescription=true` in a request body
    returns over-the-counter drugs only, `prescription=false` returns all drugs.
    """

    OTC_ONLY = "otc_only"
    ALL_DRUGS = "all_drugs"

    def to_wire(self) -> bool:
        return self is PrescriptionFilter.OTC_ONLY

    def inverted(self) -> "PrescriptionFilter":
        if self is PrescriptionFilter.OTC_ONLY:
            return PrescriptionFilter.ALL_DRUGS
        return PrescriptionFilter.OTC_ONLY


@dataclass(frozen=True)
class DrugRecord:
    registration_number: str
    hebrew_name: str
    english_name: str
    active_ingredients: tuple[str, ...] = ()
    requires_prescription: bool = False
    in_health_basket: bool = False
    is_active: bool = True
    # Search rows carry no ATC data; only the detail endpoint does.
    atc_codes: tuple[str, ...] = ()
    price: float | None = None
    dosage_form: str | None = None
    route: str | None = None
    manufacturer: str | None = None
    images: tuple[str, ...] = ()  # absolute URLs

    def to_dict(self) -> dict[str, Any]:
        return {
            "registration_number": self.registration_number,
            "hebrew_name": self.hebrew_name,
            "english_name": self.english_name,
            "active_ingredients": list(self.active_ingredients),
            "requires_prescription": self.requires_prescription,
            "in_health_basket": self.in_health_basket,
            "is_active": self.is_active,
            "atc_codes": list(self.atc_codes),
            "price": self.price,
            "dosage_form": self.dosage_form,
            "route": self.route,
            "manufacturer": self.manufacturer,
            "images": list(self.images),
        }


@dataclass(frozen=True)
class AtcEntry:
    level4: str
    level4_name: str | None = None
    level5: str | None = None
    level5_name: str | None = None


@dataclass(frozen=True)
class DrugDetail:
    registration_number: str
    hebrew_name: str
    english_name: str
    atc: tuple[AtcEntry, ...] = ()
    active_ingredients: tuple[str, ...] = ()
    requires_prescription: bool = False
    in_health_basket: bool = False
    is_active: bool = True
    max_price: float | None = None
    indication: str | None = None
    dosage_form: str | None = None
    manufacturer: str | None = None
    images: tuple[str, ...] = ()

    def first_level4_code(self) -> str | None:
        for entry in self.atc:
            if entry.level4:
                return entry.level4
        return None

    def to_dict(self) -> dict[str, Any]:
        return {
            "registration_number": self.registration_number,
            "hebrew_name": self.hebrew_name,
            "english_name": self.english_name,
            "atc": [
                {
                    "level4": entry.level4,
                    "level4_name": entry.level4_name,
                    "level5": entry.level5,
                    "level5_name": entry.level5_name,
                }
                for entry in self.atc
            ],
            "active_ingredients": list(self.active_ingredients),
            "requires_prescription": self.requires_prescription,
            "in_health_basket": self.in_health_basket,
            "is_active": self.is_active,
            "max_price": self.max_price,
            "indication": self.indication,
            "dosage_form": self.dosage_form,
            "manufacturer": self.manufacturer,
            "images": list(self.images),
        }


@dataclass(frozen=True)
class SymptomEntry:
    symptom_id: int
    name: str


@dataclass(frozen=True)
class SymptomCategory:
    name: str
    symptoms: tuple[SymptomEntry, ...] = ()

    def to_dict(self, *, max_symptoms: int | None = None) -> dict[str, Any]:
        shown = self.symptoms if max_symptoms is None else self.symptoms[:max_symptoms]
        return {
            "primary_category": self.name,
            "symptoms": [{"symptom_id": item.symptom_id, "specific_symptom": item.name} for item in shown],
            "symptom_count": len(self.symptoms),
        }


@dataclass(frozen=True)
class PopularSymptom:
    category: str
    symptom_id: int
    name: str
    popularity: int | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "primary_category": self.category,
            "symptom_id": self.symptom_id,
            "specific_symptom": self.name,
            "popularity": self.popularity,
        }


@dataclass(frozen=True)
class RouteEntry:
    route_id: int
    name: str


@dataclass(frozen=True)
class AtcListEntry:
    code: str
    description: str


@dataclass(frozen=True)
class ResultSet:
    records: tuple[DrugRecord, ...] = ()
    has_more: bool = False
    total_pages: int | None = None

    def __len__(self) -> int:
        return len(self.records)

    @property
    def is_empty(self) -> bool:
        return not self.records


@dataclass(frozen=True)
class SearchFilters:
    prescription: PrescriptionFilter | None = None
    health_basket_only: bool = False
    order_by: int = DEFAULT_ORDER
    page: int = FIRST_PAGE
    route_id: int | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "prescription": self.prescription.value if self.prescription else None,
            "health_basket_only": self.health_basket_only,
            "order_by": self.order_by,
            "page": self.page,
            "route_id": self.route_id,
        }


# Wire models. Upstream payloads are parsed here and nowhere else.


class _WireModel(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)


class _WireComponent(_WireModel):
    component_name: str = Field(alias="componentName")


class _WireImage(_WireModel):
    url: str


class _WireSearchRow(_WireModel):
    reg_num: str = Field(alias="dragRegNum", min_length=1)
    heb_name: str | None = Field(default=None, alias="dragHebName")
    en_name: str | None = Field(default=None, alias="dragEnName")
    active_components: list[_WireComponent] | None = Field(default=None, alias="activeComponents")
    prescription: bool | None = None
    health: bool | None = None
    iscanceled: bool | None = None
    customer_price: str | float | None = Field(default=None, alias="customerPrice")
    dosage_form: str | None = Field(default=None, alias="dosageForm")
    usage_form: str | None = Field(default=None, alias="usageForm")
    route: str | None = None
    reg_owner: str | None = Field(default=None, alias="dragRegOwner")
    images: list[_WireImage] | None = None
    pages: int | None = None

    @field_validator("reg_num")
    @classmethod
    def _strip_reg_num(cls, value: str) -> str:
        stripped = value.strip()
        if not stripped:
            raise ValueError("registration number is blank")
        return stripped


class _WireEnvelope(_WireModel):
    results: list[_WireSearchRow] | None = None
    has_more: bool | None = Field(default=None, alias="hasMore")


class _WireAtc(_WireModel):
    atc4_code: str | None = Field(default=None, alias="atc4Code")
    atc4_name: str | None = Field(default=None, alias="atc4Name")
    atc5_code: str | None = Field(default=None, alias="atc5Code")
    atc5_name: str | None = Field(default=None, alias="atc5Name")


class _WireIngredient(_WireModel):
    ingredients_desc: str | None = Field(default=None, alias="ingredientsDesc")
    dosage: str | None = None


class _WireDetail(_WireModel):
    reg_num: str = Field(alias="dragRegNum", min_length=1)
    heb_name: str | None = Field(default=None, alias="dragHebName")
    en_name: str | None = Field(default=None, alias="dragEnName")
    atc: list[_WireAtc] | None = None
    active_metirals: list[_WireIngredient] | None = Field(default=None, alias="activeMetirals")
    is_prescription: bool | None = Field(default=None, alias="isPrescription")
    health: bool | None = None
    iscanceled: bool | None = None
    max_price: float | None = Field(default=None, alias="maxPrice")
    indication: str | None = Field(default=None, alias="dragIndication")
    dosage_form: str | None = Field(default=None, alias="dosageForm")
    manufacturer: str | None = Field(default=None, alias="regManufactureName")
    images: list[_WireImage] | None = None


class _WireAutocomplete(_WireModel):
    results: list[str] | None = None


class _WireSymptomItem(_WireModel):
    symptom_id: int = Field(alias="bySymptomSecond")
    name: str = Field(alias="bySymptomName", min_length=1)


class _WireSymptomCategory(_WireModel):
    name: str = Field(alias="bySymptomMain", min_length=1)
    items: list[_WireSymptomItem] | None = Field(default=None, alias="list")


class _WirePopularSymptom(_WireModel):
    category: str = Field(alias="bySymptomMain")
    symptom_id: int = Field(alias="bySymptomSecond")
    name: str = Field(alias="bySymptomName", min_length=1)
    order: int | None = None


class _WireRoute(_WireModel):
    id: int
    text: str | None = None


class _WireAtcListItem(_WireModel):
    id: str = Field(min_length=1)
    text: str | None = None


def _parse_price(raw: str | float | None) -> float | None:
    if raw is None:
        return None
    if isinstance(raw, (int, float)):
        return float(raw) if raw > 0 else None
    text = raw.strip().replace(",", "")
    if not text:
        return None
    try:
        value = float(text)
    except ValueError:
        return None
    return value if value > 0 else None


def _clean(value: str | None) -> str:
    return (value or "").strip()


def image_url(image_name: str) -> str:
    return f"{IMAGES_BASE_URL}/{image_name.strip()}"


def _image_urls(images: list[_WireImage] | None) -> tuple[str, ...]:
    return tuple(image_url(image.url) for image in (images or []) if image.url.strip())


def _schema_error(endpoint: str, exc: ValidationError) -> UpstreamSchemaError:
    return UpstreamSchemaError(
        f"Upstream {endpoint} payload did not match the expected shape",
        details={"endpoint": endpoint, "errors": exc.errors(include_url=False, include_input=False)[:5]},
    )


def _record_from_row(row: _WireSearchRow) -> DrugRecord:
    return DrugRecord(
        registration_number=row.reg_num,
        hebrew_name=_clean(row.heb_name),
        english_name=_clean(row.en_name),
        active_ingredients=tuple(
            _clean(item.component_name) for item in (row.active_components or []) if _clean(item.component_name)
        ),
        requires_prescription=bool(row.prescription),
        in_health_basket=bool(row.health),
        is_active=not row.iscanceled,
        price=_parse_price(row.customer_price),
        dosage_form=_clean(row.dosage_form) or None,
        route=_clean(row.route or row.usage_form) or None,
        manufacturer=_clean(row.reg_owner) or None,
        images=_image_urls(row.images),
    )


def _result_set(rows: list[_WireSearchRow], *, page: int, has_more: bool | None) -> ResultSet:
    records = tuple(_record_from_row(row) for row in rows)
    total_pages = rows[0].pages if rows else None
    if has_more is None:
        has_more = bool(total_pages and total_pages > page)
    return ResultSet(records=records, has_more=has_more, total_pages=total_pages)


def parse_search_envelope(payload: Any, *, endpoint: str, page: int = FIRST_PAGE) -> ResultSet:
    if not isinstance(payload, dict):
        raise UpstreamSchemaError(
            f"Upstream {endpoint} returned {type(payload).__name__}, expected an object",
            details={"endpoint": endpoint},
        )
    try:
        envelope = _WireEnvelope.model_validate(payload)
    except ValidationError as exc:
        raise _schema_error(endpoint, exc) from exc
    return _result_set(envelope.results or [], page=page, has_more=envelope.has_more)


def parse_search_array(payload: Any, *, endpoint: str, page: int = FIRST_PAGE) -> ResultSet:
    if payload is None:
        return ResultSet()
    if not isinstance(payload, list):
        raise UpstreamSchemaError(
            f"Upstream {endpoint} returned {type(payload).__name__}, expected an array",
            details={"endpoint": endpoint},
        )
    try:
        rows = [_WireSearchRow.model_validate(item) for item in payload]
    except ValidationError as exc:
        raise _schema_error(endpoint, exc) from exc
    return _result_set(rows, page=page, has_more=None)


def parse_drug_detail(payload: Any) -> DrugDetail:
    try:
        wire = _WireDetail.model_validate(payload)
    except ValidationError as exc:
        raise _schema_error("GetSpecificDrug", exc) from exc
    atc = tuple(
        AtcEntry(
            level4=_clean(item.atc4_code),
            level4_name=_clean(item.atc4_name) or None,
            level5=_clean(item.atc5_code) or None,
            level5_name=_clean(item.atc5_name) or None,
        )
        for item in (wire.atc or [])
    )
    return DrugDetail(
        registration_number=wire.reg_num.strip(),
        hebrew_name=_clean(wire.heb_name),
        english_name=_clean(wire.en_name),
        atc=atc,
        active_ingredients=tuple(
            _clean(item.ingredients_desc) for item in (wire.active_metirals or []) if _clean(item.ingredients_desc)
        ),
        requires_prescription=bool(wire.is_prescription),
        in_health_basket=bool(wire.health),
        is_active=not wire.iscanceled,
        max_price=wire.max_price if wire.max_price and wire.max_price > 0 else None,
        indication=_clean(wire.indication) or None,
        dosage_form=_clean(wire.dosage_form) or None,
        manufacturer=_clean(wire.manufacturer) or None,
        images=_image_urls(wire.images),
    )


def parse_autocomplete(payload: Any) -> list[str]:
    if isinstance(payload, list):
        payload = {"results": payload}
    try:
        wire = _WireAutocomplete.model_validate(payload)
    except ValidationError as exc:
        raise _schema_error("SearchBoxAutocomplete", exc) from exc
    return [item.strip() for item in (wire.results or []) if item and item.strip()]


def _parse_list(payload: Any, model: type[_WireModel], *, endpoint: str) -> list[Any]:
    if payload is None:
        return []
    if not isinstance(payload, list):
        raise UpstreamSchemaError(
            f"Upstream {endpoint} returned {type(payload).__name__}, expected an array",
            details={"endpoint": endpoint},
        )
    try:
        return [model.model_validate(item) for item in payload]
    except ValidationError as exc:
        raise _schema_error(endpoint, exc) from exc


def parse_symptom_hierarchy(payload: Any) -> list[SymptomCategory]:
    categories = _parse_list(payload, _WireSymptomCategory, endpoint="GetBySymptom")
    return [
        SymptomCategory(
            name=category.name.strip(),
            symptoms=tuple(
                SymptomEntry(symptom_id=item.symptom_id, name=item.name.strip()) for item in (category.items or [])
            ),
        )
        for category in categories
    ]


def parse_popular_symptoms(payload: Any) -> list[PopularSymptom]:
    rows = _parse_list(payload, _WirePopularSymptom, endpoint="GetFastSearchPopularSymptoms")
    return [
        PopularSymptom(
            category=_clean(row.category),
            symptom_id=row.symptom_id,
            name=row.name.strip(),
            popularity=row.order,
        )
        for row in rows
    ]


def parse_route_list(payload: Any) -> list[RouteEntry]:
    rows = _parse_list(payload, _WireRoute, endpoint="GetMatanList")
    return [RouteEntry(route_id=row.id, name=_clean(row.text)) for row in rows]


def parse_atc_list(payload: Any) -> list[AtcListEntry]:
    # ATC ids can carry trailing spaces, like atc4Code in the detail payload.
    rows = _parse_list(payload, _WireAtcListItem, endpoint="GetAtcList")
    return [AtcListEntry(code=row.id.strip().upper(), description=_clean(row.text)) for row in rows if row.id.strip()]
