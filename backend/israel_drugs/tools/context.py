from __future__ import annotations

from dataclasses import dataclass, replace

from israel_drugs.engine.cancellation import CancellationToken


@dataclass(frozen=True)
class ToolContext:
    request_id: str | None = None
    caller: str | None = None
    tool_name: str | None = None
    cancel: CancellationToken | None = None

    def with_tool(self, *, tool_name: str) -> "ToolContext":
        return replace(self, tool_name=tool_name)

    def lineage(self) -> dict[str, str | None]:
        return {
            "request_id": self.request_id,
            "caller": self.caller,
            "tool_name": self.tool_name,
        }
