"""Tool registry and tool-invocation port over LangChain tools."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Tuple

from langchain_core.tools import BaseTool
from langchain_core.utils.function_calling import convert_to_openai_tool

from assistantOrchestrator.ports.tools import ToolResult

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class ToolMeta:
    """Registry attributes of a tool.

    Hidden tools can be invoked (side channels such as session bookkeeping)
    but are never offered to a model in a tool menu.
    """

    name: str
    tags: List[str] = field(default_factory=list)
    hidden: bool = False


class ToolRegistry:
    """Name -> (tool, meta) table shared by the orchestrator and sub-agents."""

    def __init__(self, tools: Optional[Iterable[BaseTool]] = None) -> None:
        self._entries: Dict[str, Tuple[BaseTool, ToolMeta]] = {}
        for tool in tools or ():
            self.register_tool(tool)

    def register_tool(self, tool: BaseTool, meta: Optional[ToolMeta] = None) -> None:
        if tool.name in self._entries:
            LOGGER.warning(f"Tool {tool.name} registered twice; keeping the latest")
        self._entries[tool.name] = (tool, meta or ToolMeta(name=tool.name))

    def get_tool(self, name: str) -> BaseTool:
        """Raises KeyError for unknown names."""
        return self._entries[name][0]

    def has_tool(self, name: str) -> bool:
        return name in self._entries

    def list_tools(self) -> List[BaseTool]:
        return [tool for tool, _ in self._entries.values()]

    def list_visible_tools(self) -> List[BaseTool]:
        return [tool for tool, meta in self._entries.values() if not meta.hidden]

    def tools_tagged(self, tag: str) -> List[str]:
        return [name for name, (_, meta) in self._entries.items() if tag in meta.tags]


class LangChainToolInvoker:
    """Tool-invocation port serving the tools of a ``ToolRegistry``.

    The same tools are served to every user; ``user_id`` is accepted for
    the port contract and logging.
    """

    def __init__(self, registry: ToolRegistry):
        self.registry = registry

    async def invoke(self, user_id: str, tool_id: str, args: Dict[str, Any]) -> ToolResult:
        if not self.registry.has_tool(tool_id):
            return ToolResult(success=False, error=f"Unknown tool: {tool_id}")

        try:
            output = await self.registry.get_tool(tool_id).ainvoke(dict(args or {}))
        except asyncio.CancelledError:
            raise
        except Exception as e:
            LOGGER.warning(f"Tool {tool_id} failed for user {user_id}: {e}")
            return ToolResult(success=False, error=str(e))
        return ToolResult(success=True, output=output)

    async def get_tools(self, user_id: str) -> List[Dict[str, Any]]:
        return [convert_to_openai_tool(tool) for tool in self.registry.list_visible_tools()]


__all__ = ["ToolMeta", "ToolRegistry", "LangChainToolInvoker"]
