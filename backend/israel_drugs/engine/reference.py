from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from israel_drugs.engine.cancellation import CancellationToken, check_cancelled
from israel_drugs.engine.criteria import ActiveIngredient, AtcCode
from israel_drugs.registry.client import RegistryClient
from israel_drugs.registry.models import DEFAULT_ORDER, FIRST_PAGE, DrugDetail, PrescriptionFilter
from israel_drugs.tools.errors import DrugNotFound, ResolutionIncomplete, UpstreamUnavailable


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ResolvedReference:
    reference_name: str
    registration_number: str
    criterion: AtcCode | ActiveIngredient
    source: str
    matched_name: str | None = None
    detail_available: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "reference_name": self.reference_name,
            "registration_number": self.registration_number,
            "matched_name": self.matched_name,
            "criterion": {"kind": self.criterion.kind, "value": self.criterion.value},
            "source": self.source,
            "detail_available": self.detail_available,
        }


def leading_ingredient_token(ingredient: str) -> str | None:
    # Ingredient strings usually carry a dosage suffix ("PARACETAMOL 500MG").
    tokens = str(ingredient or "").split()
    return tokens[0] if tokens else None


class ReferenceResolver:
    def __init__(self, client: RegistryClient) -> None:
        self.client = client

    def _fetch_detail(self, registration_number: str, cancel: CancellationToken | None) -> DrugDetail | None:
        try:
            return self.client.get_drug_detail(registration_number, cancel=cancel)
        except (UpstreamUnavailable, DrugNotFound) as exc:
            logger.warning(
                "Detail fetch failed for %s (%s); falling back to active ingredient",
                registration_number,
                exc.code,
            )
            return None

    def resolve(self, drug_name: str, *, cancel: CancellationToken | None = None) -> ResolvedReference:
        check_cancelled(cancel, stage="reference_search")
        found = self.client.search_by_name(
            drug_name,
            prescription=PrescriptionFilter.ALL_DRUGS,
            health_basket_only=False,
            page=FIRST_PAGE,
            order_by=DEFAULT_ORDER,
            cancel=cancel,
        )
        if found.is_empty:
            raise DrugNotFound(
                f"Reference drug '{drug_name}' was not found in the registry",
                details={"reference_name": drug_name},
            )

        # The upstream relevance order is trusted; the first row is the match.
        match = found.records[0]
        matched_name = match.english_name or match.hebrew_name or None

        check_cancelled(cancel, stage="reference_detail")
        detail = self._fetch_detail(match.registration_number, cancel)
        if detail is not None:
            level4 = detail.first_level4_code()
            if level4:
                logger.info("Resolved reference '%s' to ATC %s", drug_name, level4)
                return ResolvedReference(
                    reference_name=drug_name,
                    registration_number=match.registration_number,
                    criterion=AtcCode(value=level4),
                    source="atc",
                    matched_name=matched_name,
                    detail_available=True,
                )

        token = leading_ingredient_token(match.active_ingredients[0]) if match.active_ingredients else None
        if token:
            logger.info("Resolved reference '%s' to active ingredient %s", drug_name, token)
            return ResolvedReference(
                reference_name=drug_name,
                registration_number=match.registration_number,
                criterion=ActiveIngredient(value=token.upper()),
                source="active_ingredient",
                matched_name=matched_name,
                detail_available=detail is not None,
            )

        raise ResolutionIncomplete(
            f"Could not determine a therapeutic class for '{drug_name}'",
            details={
                "reference_name": drug_name,
                "registration_number": match.registration_number,
                "matched_name": matched_name,
                "detail_available": detail is not None,
            },
        )
