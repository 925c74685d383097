from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

from israel_drugs.registry.client import DEFAULT_BASE_URL


_ENV_LOADED = False

LOG_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}


def _load_env_file() -> None:
    global _ENV_LOADED
    if _ENV_LOADED:
        return

    # backend/israel_drugs/config.py -> backend/
    backend_root = Path(__file__).resolve().parents[1]
    load_dotenv(backend_root / ".env", override=False)
    _ENV_LOADED = True


@dataclass(frozen=True)
class Settings:
    api_base_url: str
    http_timeout_seconds: int
    http_max_retries: int
    http_user_agent: str
    search_max_results: int
    suggest_max_suggestions: int
    search_deadline_seconds: int | None
    log_level: str
    enable_drug_detail_tool: bool

    @property
    def log_level_value(self) -> int:
        return getattr(logging, self.log_level, logging.INFO)


def _env_bool(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def _env_int(name: str, default: int | None = None) -> int | None:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        value = int(raw.strip())
    except ValueError:
        return default
    return value if value >= 0 else default


def _positive(value: int | None, default: int) -> int:
    return value if value else default


def _normalize_log_level(value: str | None) -> str:
    normalized = (value or "INFO").strip().upper()
    if normalized in LOG_LEVELS:
        return normalized
    return "INFO"


def get_settings() -> Settings:
    _load_env_file()
    # 0 disables the per-request deadline.
    deadline = _env_int("SEARCH_DEADLINE_SECONDS", default=60)

    return Settings(
        api_base_url=os.getenv("ISRAEL_DRUGS_API_BASE_URL", DEFAULT_BASE_URL).strip().rstrip("/") or DEFAULT_BASE_URL,
        http_timeout_seconds=_positive(_env_int("ISRAEL_DRUGS_HTTP_TIMEOUT_SECONDS", default=30), 30),
        http_max_retries=int(_env_int("ISRAEL_DRUGS_HTTP_MAX_RETRIES", default=2) or 0),
        http_user_agent=os.getenv("ISRAEL_DRUGS_USER_AGENT", "israel-drugs-agent/0.1"),
        search_max_results=_positive(_env_int("SEARCH_MAX_RESULTS", default=50), 50),
        suggest_max_suggestions=_positive(_env_int("SUGGEST_MAX_SUGGESTIONS", default=20), 20),
        search_deadline_seconds=deadline or None,
        log_level=_normalize_log_level(os.getenv("LOG_LEVEL")),
        enable_drug_detail_tool=_env_bool("ENABLE_DRUG_DETAIL_TOOL", default=True),
    )
