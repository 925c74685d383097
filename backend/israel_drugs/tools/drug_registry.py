from __future__ import annotations

import logging

from israel_drugs.config import Settings
from israel_drugs.engine.service import SearchEngine
from israel_drugs.registry.client import IsraelDrugsClient, RegistryClient
from israel_drugs.tools.http_client import SimpleHttpClient
from israel_drugs.tools.registry import ToolRegistry
from israel_drugs.tools.sources.discovery import build_discovery_tools
from israel_drugs.tools.sources.drugs import build_drug_search_tools


logger = logging.getLogger(__name__)


def create_drug_registry(settings: Settings, client: RegistryClient | None = None) -> ToolRegistry:
    if client is None:
        http = SimpleHttpClient(
            timeout_seconds=settings.http_timeout_seconds,
            max_retries=settings.http_max_retries,
            user_agent=settings.http_user_agent,
        )
        client = IsraelDrugsClient(http, base_url=settings.api_base_url)

    engine = SearchEngine(
        client,
        max_results=settings.search_max_results,
        max_suggestions=settings.suggest_max_suggestions,
    )
    tools = build_drug_search_tools(engine, client, settings)
    tools.extend(build_discovery_tools(client))
    if not settings.enable_drug_detail_tool:
        logger.info("Drug detail tool disabled by ENABLE_DRUG_DETAIL_TOOL")
    return ToolRegistry(tools)
