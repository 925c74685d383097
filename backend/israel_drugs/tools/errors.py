from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


@dataclass
class ToolExecutionError(Exception):
    code: str
    message: str
    retryable: bool = False
    details: dict[str, Any] = field(default_factory=dict)

    def __str__(self) -> str:
        return f"{self.code}: {self.message}"

    def to_error_payload(self) -> dict[str, Any]:
        return {
            "code": self.code,
            "message": self.message,
            "retryable": self.retryable,
            "details": self.details,
        }


class _EngineError(ToolExecutionError):
    error_code = "ENGINE_ERROR"
    default_retryable = False

    def __init__(
        self,
        message: str,
        *,
        details: dict[str, Any] | None = None,
        retryable: bool | None = None,
    ) -> None:
        super().__init__(
            code=self.error_code,
            message=message,
            retryable=self.default_retryable if retryable is None else retryable,
            details=dict(details or {}),
        )


# Caller input errors: reported immediately, never retried, never reach the cascade.


class InvalidCriterion(_EngineError):
    error_code = "INVALID_CRITERION"


class AmbiguousCriterion(_EngineError):
    error_code = "AMBIGUOUS_CRITERION"


class UnknownRoute(_EngineError):
    error_code = "UNKNOWN_ROUTE"


class InvalidAtcCode(_EngineError):
    error_code = "INVALID_ATC_CODE"


# Resolution failures: abort before the cascade starts.


class DrugNotFound(_EngineError):
    error_code = "DRUG_NOT_FOUND"


class ResolutionIncomplete(_EngineError):
    error_code = "RESOLUTION_INCOMPLETE"


class UpstreamUnavailable(_EngineError):
    error_code = "UPSTREAM_UNAVAILABLE"
    default_retryable = True


class UpstreamSchemaError(UpstreamUnavailable):
    error_code = "UPSTREAM_SCHEMA_ERROR"
    default_retryable = False


class SearchCancelled(_EngineError):
    error_code = "CANCELLED"


INPUT_ERROR_CODES = frozenset(
    {
        "VALIDATION_ERROR",
        InvalidCriterion.error_code,
        AmbiguousCriterion.error_code,
        UnknownRoute.error_code,
        InvalidAtcCode.error_code,
    }
)


def unknown_error_payload(exc: Exception) -> dict[str, Any]:
    return {
        "code": "UPSTREAM_ERROR",
        "message": str(exc),
        "retryable": False,
        "details": {},
    }
