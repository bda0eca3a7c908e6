"""Pytest configuration and fixtures for all tests.

This file is automatically loaded by pytest. It puts the project root on
``sys.path`` and provides in-process fakes for the oracle and tool ports so
runs can be driven end to end without a model or network.
"""

import asyncio
import itertools
import json
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Optional, Union

# Ensure project root is in PYTHONPATH for imports to work
project_root = Path(__file__).parent.parent
if str(project_root) not in sys.path:
    sys.path.insert(0, str(project_root))

from langchain_core.messages import BaseMessage, HumanMessage, ToolMessage  # noqa: E402

from assistantOrchestrator.agents.manager import SubAgentManager  # noqa: E402
from assistantOrchestrator.config.settings import (  # noqa: E402
    GuardSettings,
    HistorySettings,
    OrchestratorSettings,
    SubAgentSettings,
)
from assistantOrchestrator.context.history import ConversationHistoryService  # noqa: E402
from assistantOrchestrator.guard.loop_guard import LoopGuard  # noqa: E402
from assistantOrchestrator.orchestrator.service import OrchestratorService  # noqa: E402
from assistantOrchestrator.ports.events import InMemoryEventBus  # noqa: E402
from assistantOrchestrator.ports.history import InMemoryHistoryRepository  # noqa: E402
from assistantOrchestrator.ports.memory import InMemoryMemoryStore  # noqa: E402
from assistantOrchestrator.ports.oracle import DoneChunk, OracleOptions, TokenChunk, ToolCallChunk, Usage  # noqa: E402
from assistantOrchestrator.ports.store import InMemoryStateStore  # noqa: E402
from assistantOrchestrator.ports.tools import ToolResult  # noqa: E402

AGENT_PROMPT_MARKER = "## Your Assigned Task"

_call_ids = itertools.count(1)


# ========== Scripted oracle ==========

@dataclass
class Turn:
    """One scripted oracle turn."""

    text: str = ""
    tool_calls: List[Dict[str, Any]] = field(default_factory=list)
    prompt_tokens: int = 100
    completion_tokens: int = 20
    error: Optional[BaseException] = None
    delay: float = 0.0


TurnSource = Union[Turn, Callable[[List[BaseMessage]], Turn]]


def call(name: str, args: Optional[Dict[str, Any]] = None, call_id: Optional[str] = None) -> Dict[str, Any]:
    """Build a tool call dict with a unique id."""
    return {"name": name, "args": dict(args or {}), "id": call_id or f"call_{next(_call_ids)}"}


def tool_payloads(messages: Iterable[BaseMessage], name: str) -> List[Dict[str, Any]]:
    """Decoded JSON payloads of every tool result named ``name``."""
    return [
        json.loads(m.content)
        for m in messages
        if isinstance(m, ToolMessage) and m.name == name
    ]


def is_agent_call(options: OracleOptions) -> bool:
    return bool(options.system_prompt) and AGENT_PROMPT_MARKER in options.system_prompt


def _default_agent_turn(messages: List[BaseMessage], options: OracleOptions) -> Turn:
    first = next((m for m in messages if isinstance(m, HumanMessage)), None)
    task = str(first.content).splitlines()[0] if first else "task"
    return Turn(text=f"Finished. {task}")


class ScriptedOracle:
    """Planning oracle fake.

    Control loop turns come from ``turns`` in order; each entry is a ``Turn``
    or a callable receiving the model-facing messages. Sub-agent turns come
    from ``agent_turns(messages, options)``; by default every agent answers
    with plain text on its first turn. ``generate`` returns ``generate_text``.
    """

    def __init__(
        self,
        turns: Iterable[TurnSource] = (),
        agent_turns: Optional[Callable[[List[BaseMessage], OracleOptions], Turn]] = None,
        generate_text: str = "Conversation summary",
        model: str = "gpt-4o",
    ):
        self._turns = iter(turns)
        self.agent_turns = agent_turns or _default_agent_turn
        self.generate_text = generate_text
        self.model = model
        self.calls: List[List[BaseMessage]] = []
        self.options: List[OracleOptions] = []
        self.agent_calls: List[List[BaseMessage]] = []
        self.generate_calls: List[List[BaseMessage]] = []

    def get_model(self) -> str:
        return self.model

    def calculate_cost(self, prompt_tokens: int, completion_tokens: int) -> float:
        return prompt_tokens * 0.00001 + completion_tokens * 0.00002

    def _next_turn(self, messages: List[BaseMessage]) -> Turn:
        try:
            source = next(self._turns)
        except StopIteration:
            raise RuntimeError("Oracle script exhausted") from None
        return source(messages) if callable(source) else source

    async def stream(self, messages: List[BaseMessage], options: OracleOptions):
        messages = list(messages)
        if is_agent_call(options):
            self.agent_calls.append(messages)
            turn = self.agent_turns(messages, options)
        else:
            self.calls.append(messages)
            self.options.append(options)
            turn = self._next_turn(messages)

        if turn.delay:
            await asyncio.sleep(turn.delay)
        if turn.error is not None:
            raise turn.error
        if turn.text:
            yield TokenChunk(text=turn.text)
        for tc in turn.tool_calls:
            yield ToolCallChunk(id=tc["id"], name=tc["name"], args=tc["args"])
        yield DoneChunk(
            finish_reason="tool_calls" if turn.tool_calls else "stop",
            usage=Usage(prompt_tokens=turn.prompt_tokens, completion_tokens=turn.completion_tokens),
        )

    async def generate(self, messages: List[BaseMessage], options: OracleOptions) -> str:
        self.generate_calls.append(list(messages))
        return self.generate_text


# ========== Tool invoker fake ==========

class FakeToolInvoker:
    """Tool port fake serving plain callables; records every invocation."""

    def __init__(self, tools: Optional[Dict[str, Callable[..., Any]]] = None):
        self.tools = dict(tools or {})
        self.invocations: List[Dict[str, Any]] = []

    async def invoke(self, user_id: str, tool_id: str, args: Dict[str, Any]) -> ToolResult:
        self.invocations.append({"user_id": user_id, "tool": tool_id, "args": dict(args)})
        if tool_id.startswith("session_"):
            return ToolResult(success=True, output="ok")
        func = self.tools.get(tool_id)
        if func is None:
            return ToolResult(success=False, error=f"Unknown tool: {tool_id}")
        try:
            return ToolResult(success=True, output=func(**args))
        except Exception as e:
            return ToolResult(success=False, error=str(e))

    async def get_tools(self, user_id: str) -> List[Dict[str, Any]]:
        return [
            {
                "type": "function",
                "function": {"name": name, "description": name, "parameters": {"type": "object", "properties": {}}},
            }
            for name in self.tools
        ]

    def calls_to(self, tool_id: str) -> List[Dict[str, Any]]:
        return [i for i in self.invocations if i["tool"] == tool_id]


# ========== Service assembly ==========

@dataclass
class Harness:
    service: OrchestratorService
    oracle: ScriptedOracle
    tools: FakeToolInvoker
    bus: InMemoryEventBus
    store: InMemoryStateStore
    history: ConversationHistoryService
    memory: InMemoryMemoryStore

    def events(self, run_id: str, event_type: Optional[str] = None):
        if event_type is None:
            return self.bus.events(run_id)
        return self.bus.events_of_type(run_id, event_type)


def build_harness(
    oracle: ScriptedOracle,
    tools: Optional[FakeToolInvoker] = None,
    *,
    max_iterations: int = 20,
    max_retries: int = 3,
    max_interventions: int = 10,
    agent_max_iterations: int = 5,
    **orchestrator_overrides: Any,
) -> Harness:
    tools = tools or FakeToolInvoker()
    store = InMemoryStateStore()
    bus = InMemoryEventBus()
    memory = InMemoryMemoryStore()
    history = ConversationHistoryService(InMemoryHistoryRepository(), oracle, HistorySettings())
    agents = SubAgentManager(
        oracle,
        tools,
        store=store,
        settings=SubAgentSettings(max_iterations=agent_max_iterations),
    )
    settings = OrchestratorSettings(
        max_iterations=max_iterations,
        agent_wait_timeout_seconds=5,
        **orchestrator_overrides,
    )
    service = OrchestratorService(
        oracle=oracle,
        tool_invoker=tools,
        agents=agents,
        guard=LoopGuard(GuardSettings(max_retries_per_task=max_retries, max_total_interventions=max_interventions)),
        event_bus=bus,
        store=store,
        memory=memory,
        history=history,
        settings=settings,
    )
    return Harness(service=service, oracle=oracle, tools=tools, bus=bus, store=store, history=history, memory=memory)
