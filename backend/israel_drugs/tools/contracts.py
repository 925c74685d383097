from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from israel_drugs.tools.context import ToolContext

CONTRACT_VERSION = "1.0"
RESULT_KINDS = {"record_list", "suggestion_list", "document", "status"}
CONTRACT_KEYS = ("summary", "data", "ids", "warnings", "pagination", "source_meta")


def utc_iso() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


def _lineage_from_ctx(ctx: ToolContext | None) -> dict[str, Any]:
    if ctx is None:
        return {"request_id": None, "caller": None, "tool_name": None}
    return ctx.lineage()


def _coerce_result_kind(value: Any) -> str:
    candidate = str(value or "").strip().lower()
    if candidate in RESULT_KINDS:
        return candidate
    return "record_list"


def _coerce_tool_list(value: Any) -> list[str]:
    if not isinstance(value, list):
        return []
    out: list[str] = []
    seen: set[str] = set()
    for item in value:
        tool = str(item or "").strip()
        if not tool or tool in seen:
            continue
        seen.add(tool)
        out.append(tool)
    return out


def make_tool_output(
    *,
    source: str,
    summary: str,
    result_kind: str = "record_list",
    data: Any | None = None,
    ids: list[Any] | None = None,
    warnings: list[str] | None = None,
    pagination: dict[str, Any] | None = None,
    next_recommended_tools: list[str] | None = None,
    ctx: ToolContext | None = None,
) -> dict[str, Any]:
    return {
        "contract_version": CONTRACT_VERSION,
        "result_kind": _coerce_result_kind(result_kind),
        "summary": summary,
        "data": data if data is not None else {},
        "ids": ids or [],
        "warnings": warnings or [],
        "pagination": pagination or {"has_more": False, "total_count": None},
        "source_meta": {
            "source": source,
            "retrieved_at": utc_iso(),
            "lineage": _lineage_from_ctx(ctx),
        },
        "guidance": {
            "next_recommended_tools": _coerce_tool_list(next_recommended_tools or []),
        },
    }


def normalize_tool_output(output: Any, *, source: str, ctx: ToolContext | None) -> dict[str, Any]:
    if not isinstance(output, dict):
        return make_tool_output(
            source=source,
            summary="Tool completed.",
            result_kind="status",
            data={"value": output},
            ctx=ctx,
        )

    if all(key in output for key in CONTRACT_KEYS):
        normalized = dict(output)
        normalized["contract_version"] = CONTRACT_VERSION
        normalized["result_kind"] = _coerce_result_kind(normalized.get("result_kind"))
        source_meta = normalized.get("source_meta")
        if not isinstance(source_meta, dict):
            source_meta = {}
        source_meta.setdefault("source", source)
        source_meta.setdefault("retrieved_at", utc_iso())
        source_meta.setdefault("lineage", _lineage_from_ctx(ctx))
        normalized["source_meta"] = source_meta
        guidance = normalized.get("guidance")
        if not isinstance(guidance, dict):
            guidance = {}
        guidance["next_recommended_tools"] = _coerce_tool_list(guidance.get("next_recommended_tools"))
        normalized["guidance"] = guidance
        return normalized

    guidance = output.get("guidance") if isinstance(output.get("guidance"), dict) else {}
    return make_tool_output(
        source=source,
        summary=str(output.get("summary") or "Tool completed."),
        result_kind=str(output.get("result_kind") or "record_list"),
        data=output.get("data") if "data" in output else output,
        ids=list(output.get("ids") or []),
        warnings=list(output.get("warnings") or []),
        pagination=output.get("pagination"),
        next_recommended_tools=_coerce_tool_list(guidance.get("next_recommended_tools")),
        ctx=ctx,
    )
