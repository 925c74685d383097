from __future__ import annotations

import asyncio
import uuid
from functools import lru_cache
from typing import Any

from fastapi import APIRouter, Body, Depends
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from israel_drugs.config import get_settings
from israel_drugs.engine.cancellation import CancellationToken
from israel_drugs.tools.context import ToolContext
from israel_drugs.tools.drug_registry import create_drug_registry
from israel_drugs.tools.errors import INPUT_ERROR_CODES, DrugNotFound
from israel_drugs.tools.registry import ToolRegistry

router = APIRouter(tags=["tools"])

NOT_FOUND_CODES = {"NOT_FOUND", DrugNotFound.error_code}


class ToolSchemaResponse(BaseModel):
    name: str
    description: str
    input_schema: dict[str, Any]


class ToolListResponse(BaseModel):
    tools: list[ToolSchemaResponse]


@lru_cache(maxsize=1)
def get_registry() -> ToolRegistry:
    return create_drug_registry(get_settings())


def get_deadline_seconds() -> int | None:
    return get_settings().search_deadline_seconds


def status_for_error(error: dict[str, Any]) -> int:
    code = str(error.get("code") or "")
    if error.get("retryable"):
        return 503
    if code in NOT_FOUND_CODES:
        return 404
    if code in INPUT_ERROR_CODES:
        return 422
    return 400


@router.get("/api/tools", response_model=ToolListResponse)
async def list_tools(registry: ToolRegistry = Depends(get_registry)) -> ToolListResponse:
    tools = []
    for schema in registry.anthropic_schemas():
        tools.append(
            ToolSchemaResponse(
                name=schema["name"],
                description=schema["description"],
                input_schema=schema["input_schema"],
            )
        )
    return ToolListResponse(tools=tools)


@router.post("/api/tools/{tool_name}")
async def run_tool(
    tool_name: str,
    arguments: dict[str, Any] | None = Body(default=None),
    registry: ToolRegistry = Depends(get_registry),
    deadline_seconds: int | None = Depends(get_deadline_seconds),
) -> JSONResponse:
    ctx = ToolContext(
        request_id=str(uuid.uuid4()),
        caller="http",
        cancel=CancellationToken(deadline_seconds=deadline_seconds),
    )
    try:
        result = await asyncio.to_thread(registry.execute, tool_name, arguments or {}, ctx)
    except asyncio.CancelledError:
        # Client went away; stop the worker at its next checkpoint.
        ctx.cancel.cancel("request cancelled")
        raise

    if result.get("status") == "success":
        return JSONResponse(status_code=200, content=result)
    return JSONResponse(status_code=status_for_error(result.get("error") or {}), content=result)
