from __future__ import annotations

import inspect
import logging
from dataclasses import dataclass
from typing import Any, Callable

from israel_drugs.tools.context import ToolContext
from israel_drugs.tools.contracts import normalize_tool_output
from israel_drugs.tools.descriptions import has_policy_sections
from israel_drugs.tools.errors import ToolExecutionError, unknown_error_payload


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ToolSpec:
    name: str
    description: str
    input_schema: dict[str, Any]
    handler: Callable[..., dict[str, Any]]
    source: str = "israel_drugs"

    def _description_with_policy(self) -> str:
        description = str(self.description or "").strip()
        if has_policy_sections(description):
            return description
        base = description or "Israeli drug registry helper."
        return (
            f"WHEN: {base}\n"
            "AVOID: Calling the tool outside its declared schema and intent.\n"
            "CRITICAL_ARGS: Refer to parameters schema for required fields.\n"
            "RETURNS: Structured tool output contract with data and metadata.\n"
            "FAILS_IF: Required args are missing or the registry rejects the query."
        )

    def openai_schema(self) -> dict[str, Any]:
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self._description_with_policy(),
                "parameters": self.input_schema,
            },
        }

    def anthropic_schema(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "description": self._description_with_policy(),
            "input_schema": self.input_schema,
        }


class ToolRegistry:
    def __init__(self, tools: list[ToolSpec]) -> None:
        self._by_name = {tool.name: tool for tool in tools}

    def openai_schemas(self) -> list[dict[str, Any]]:
        return [tool.openai_schema() for tool in self._by_name.values()]

    def anthropic_schemas(self) -> list[dict[str, Any]]:
        return [tool.anthropic_schema() for tool in self._by_name.values()]

    def names(self) -> list[str]:
        return sorted(self._by_name.keys())

    def _call_handler(self, handler: Callable[..., dict[str, Any]], payload: dict[str, Any], ctx: ToolContext | None) -> dict[str, Any]:
        params = list(inspect.signature(handler).parameters.values())
        if len(params) >= 2:
            return handler(payload, ctx)
        return handler(payload)

    def execute(self, tool_name: str, payload: dict[str, Any], ctx: ToolContext | None = None) -> dict[str, Any]:
        tool = self._by_name.get(tool_name)
        if not tool:
            return {
                "status": "error",
                "error": {
                    "code": "NOT_FOUND",
                    "message": f"Unknown tool '{tool_name}'",
                    "retryable": False,
                    "details": {"available_tools": self.names()},
                },
            }

        effective_ctx = ctx.with_tool(tool_name=tool_name) if ctx is not None else ToolContext(tool_name=tool_name)
        try:
            raw_result = self._call_handler(tool.handler, dict(payload or {}), effective_ctx)
            return {
                "status": "success",
                "output": normalize_tool_output(raw_result, source=tool.source, ctx=effective_ctx),
            }
        except ToolExecutionError as exc:
            logger.info("Tool %s failed: %s", tool_name, exc)
            return {
                "status": "error",
                "error": exc.to_error_payload(),
            }
        except Exception as exc:  # pragma: no cover
            logger.exception("Tool %s raised an unexpected error", tool_name)
            return {
                "status": "error",
                "error": unknown_error_payload(exc),
            }
