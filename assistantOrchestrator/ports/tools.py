"""Generic tool-invocation port."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Protocol


@dataclass(frozen=True)
class ToolResult:
    success: bool
    output: Any = None
    error: Optional[str] = None

    def to_payload(self) -> Dict[str, Any]:
        if self.success:
            return {"success": True, "output": self.output}
        return {"success": False, "error": self.error or "Tool failed"}


class ToolInvoker(Protocol):
    """Executes tools on behalf of a user.

    ``get_tools`` returns tool definitions in OpenAI function format:
    ``{"type": "function", "function": {"name", "description", "parameters"}}``.
    """

    async def invoke(self, user_id: str, tool_id: str, args: Dict[str, Any]) -> ToolResult:
        ...

    async def get_tools(self, user_id: str) -> List[Dict[str, Any]]:
        ...


def tool_name(definition: Dict[str, Any]) -> str:
    """Return the name of a tool definition."""
    if "function" in definition:
        return definition["function"].get("name", "")
    return definition.get("name", "")


__all__ = ["ToolResult", "ToolInvoker", "tool_name"]
