"""Ports consumed by the orchestration core, with in-memory adapters."""

from .events import EventBus, EventEmitter, InMemoryEventBus
from .history import ConversationSummary, HistoryRepository, InMemoryHistoryRepository, StoredMessage
from .memory import InMemoryMemoryStore, MemoryRecord, MemoryStore
from .oracle import DoneChunk, OracleChunk, OracleOptions, PlanningOracle, TokenChunk, ToolCallChunk, Usage
from .store import InMemoryStateStore, StateStore
from .tools import ToolInvoker, ToolResult, tool_name

__all__ = [
    "EventBus",
    "EventEmitter",
    "InMemoryEventBus",
    "ConversationSummary",
    "HistoryRepository",
    "InMemoryHistoryRepository",
    "StoredMessage",
    "InMemoryMemoryStore",
    "MemoryRecord",
    "MemoryStore",
    "DoneChunk",
    "OracleChunk",
    "OracleOptions",
    "PlanningOracle",
    "TokenChunk",
    "ToolCallChunk",
    "Usage",
    "InMemoryStateStore",
    "StateStore",
    "ToolInvoker",
    "ToolResult",
    "tool_name",
]
