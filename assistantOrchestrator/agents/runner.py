"""Sub-agent decision loop.

Each sub-agent runs a small LangGraph graph of its own:

    START -> agent -> tools -> agent -> ... -> END

The ``agent`` node streams one oracle turn; the ``tools`` node executes the
turn's tool calls inside the agent's whitelist. Steering and cancellation
arrive as commands on the agent's mailbox and are consumed only at safe
points: before an oracle turn, between streamed chunks and between tool
calls.
"""

from __future__ import annotations

import asyncio
import json
import logging
import re
import time
from dataclasses import dataclass
from typing import Any, Dict, List, Literal, Optional, TypedDict

from langchain_core.messages import AIMessage, BaseMessage, HumanMessage, SystemMessage, ToolMessage
from langgraph.graph import END, START, StateGraph

from assistantOrchestrator.agents.prompts import (
    build_agent_system_prompt,
    build_initial_task_message,
    format_guidance,
)
from assistantOrchestrator.agents.scopes import get_agent_tools
from assistantOrchestrator.config.settings import SubAgentSettings
from assistantOrchestrator.context.manager import ContextManager
from assistantOrchestrator.domain.models import (
    AgentOutcome,
    Artifact,
    ReasoningStep,
    SubAgentState,
    SubAgentStatus,
    ToolCallRecord,
    new_id,
    utcnow,
)
from assistantOrchestrator.ports.events import EventEmitter
from assistantOrchestrator.ports.oracle import DoneChunk, OracleOptions, PlanningOracle, TokenChunk, ToolCallChunk
from assistantOrchestrator.ports.tools import ToolInvoker, ToolResult, tool_name
from assistantOrchestrator.utils.logging_utils import log_agent_event, log_routing_decision, log_tool_call, log_tool_result

LOGGER = logging.getLogger(__name__)

_CODE_BLOCK_RE = re.compile(r"```(\w+)?\n(.*?)```", re.DOTALL)
_JSON_BLOCK_RE = re.compile(r"```json\n(.*?)```", re.DOTALL)


@dataclass(frozen=True)
class AgentCommand:
    """Mailbox entry: steering text or a cancellation request."""
    kind: Literal["guide", "redirect", "cancel"]
    text: str = ""


class SubAgentGraphState(TypedDict, total=False):
    messages: List[BaseMessage]
    iterations: int
    max_iterations: int
    outcome: Optional[AgentOutcome]


def extract_artifacts(content: str) -> List[Artifact]:
    """Fenced code blocks become ``code`` artifacts, valid fenced JSON becomes ``data``."""
    artifacts: List[Artifact] = []
    for match in _CODE_BLOCK_RE.finditer(content):
        language = match.group(1) or "text"
        artifacts.append(Artifact(
            id=new_id(),
            type="code",
            name=f"code_{language}_{len(artifacts) + 1}",
            content={"language": language, "code": match.group(2)},
        ))
    for match in _JSON_BLOCK_RE.finditer(content):
        try:
            data = json.loads(match.group(1))
        except ValueError:
            continue
        artifacts.append(Artifact(
            id=new_id(),
            type="data",
            name=f"data_{len(artifacts) + 1}",
            content=data,
        ))
    return artifacts


class SubAgentRunner:
    """Runs one sub-agent to a single ``AgentOutcome``.

    The runner is the only writer of ``state``; other components read it
    through ``AgentHandle.get_state()`` snapshots.
    """

    def __init__(
        self,
        state: SubAgentState,
        *,
        user_id: str,
        oracle: PlanningOracle,
        tool_invoker: ToolInvoker,
        mailbox: "asyncio.Queue[AgentCommand]",
        emitter: EventEmitter,
        settings: Optional[SubAgentSettings] = None,
        instructions: Optional[str] = None,
        context_manager: Optional[ContextManager] = None,
    ):
        self.state = state
        self.user_id = user_id
        self.oracle = oracle
        self.tool_invoker = tool_invoker
        self.mailbox = mailbox
        self.emitter = emitter
        self.settings = settings or SubAgentSettings()
        self.instructions = instructions
        self.context_manager = context_manager

        self.allowed_tools = get_agent_tools(state.agent_type, state.additional_tools)
        self.system_prompt = build_agent_system_prompt(
            state.agent_type, state.task_description, self.allowed_tools, instructions
        )
        self._cancel_reason: Optional[str] = None
        self._guidance: List[AgentCommand] = []
        self._tool_definitions: List[Dict[str, Any]] = []

    # ========== Mailbox ==========

    def _drain_mailbox(self) -> None:
        while True:
            try:
                command = self.mailbox.get_nowait()
            except asyncio.QueueEmpty:
                return
            if command.kind == "cancel":
                if self._cancel_reason is None:
                    self._cancel_reason = command.text or "Cancelled by orchestrator"
            else:
                self._guidance.append(command)
                self.state.pending_guidance = command.text

    def _cancel_requested(self) -> bool:
        self._drain_mailbox()
        return self._cancel_reason is not None

    # ========== Logs and events ==========

    async def _reason(self, step_type: str, content: str) -> None:
        step = ReasoningStep(id=new_id(), type=step_type, content=content)
        self.state.reasoning_steps.append(step)
        await self.emitter.emit(
            "agent.reasoning",
            {"step": {"id": step.id, "type": step_type, "content": content}},
            agent_id=self.state.id,
        )

    def _append(self, message: BaseMessage) -> None:
        self.state.messages.append(message)

    # ========== Graph nodes ==========

    async def _agent_node(self, graph_state: SubAgentGraphState) -> dict:
        messages = list(graph_state.get("messages", []))
        iterations = graph_state.get("iterations", 0)
        max_iterations = graph_state.get("max_iterations", self.settings.max_iterations)

        if self._cancel_requested():
            return {"outcome": self._cancelled_outcome()}

        if iterations >= max_iterations:
            return {"outcome": AgentOutcome(success=False, error=f"Reached maximum iterations ({max_iterations})")}

        for command in self._guidance:
            guidance_message = SystemMessage(content=format_guidance(command.text, redirect=command.kind == "redirect"))
            messages.append(guidance_message)
            self._append(guidance_message)
            await self._reason("observation", "Received guidance from orchestrator")
        self._guidance = []
        self.state.pending_guidance = None

        if self.context_manager is not None:
            managed = await self.context_manager.manage_context(
                messages, self.oracle.get_model(), self.system_prompt, self._tool_definitions
            )
            if managed.summarized:
                messages = managed.messages
                self.state.messages = list(messages)
                await self._reason(
                    "observation",
                    f"Context summarized: {managed.folded_count} messages compressed "
                    f"({managed.before_tokens} -> {managed.after_tokens} tokens)",
                )

        await self._reason("thinking", f"Processing task: {self.state.task_description}")

        content_parts: List[str] = []
        tool_calls: List[Dict[str, Any]] = []
        options = OracleOptions(
            system_prompt=self.system_prompt,
            tools=self._tool_definitions,
            temperature=self.settings.temperature,
            max_tokens=self.settings.max_tokens,
        )

        stream = self.oracle.stream(messages, options)
        try:
            async for chunk in stream:
                if isinstance(chunk, TokenChunk):
                    content_parts.append(chunk.text)
                    await self.emitter.emit("agent.token", {"token": chunk.text}, agent_id=self.state.id)
                elif isinstance(chunk, ToolCallChunk):
                    tool_calls.append({"name": chunk.name, "args": dict(chunk.args), "id": chunk.id})
                    await self.emitter.emit(
                        "agent.tool_call",
                        {"tool_call_id": chunk.id, "tool": chunk.name, "input": chunk.args},
                        agent_id=self.state.id,
                    )
                elif isinstance(chunk, DoneChunk):
                    usage = chunk.usage
                    self.state.total_tokens += usage.total_tokens
                    self.state.total_cost += self.oracle.calculate_cost(usage.prompt_tokens, usage.completion_tokens)
                if self._cancel_requested():
                    break
        finally:
            aclose = getattr(stream, "aclose", None)
            if aclose is not None:
                await aclose()

        if self._cancel_reason is not None:
            return {"outcome": self._cancelled_outcome()}

        content = "".join(content_parts)
        response = AIMessage(content=content, tool_calls=tool_calls)
        self._append(response)

        update: Dict[str, Any] = {"messages": messages + [response], "iterations": iterations + 1}
        if tool_calls:
            await self._reason("decision", f"Decided to use tools: {', '.join(tc['name'] for tc in tool_calls)}")
            return update

        if content:
            await self._reason("decision", "Formulated response")
            for artifact in extract_artifacts(content):
                self.state.artifacts.append(artifact)
        update["outcome"] = AgentOutcome(success=True, output=content or "Task completed")
        return update

    async def _tools_node(self, graph_state: SubAgentGraphState) -> dict:
        messages = list(graph_state.get("messages", []))
        last = messages[-1] if messages else None
        if not isinstance(last, AIMessage) or not last.tool_calls:
            return {}

        for call in last.tool_calls:
            if self._cancel_requested():
                return {"messages": messages, "outcome": self._cancelled_outcome()}
            tool_message = await self._execute_tool_call(call)
            messages.append(tool_message)
            self._append(tool_message)

        return {"messages": messages}

    async def _execute_tool_call(self, call: Dict[str, Any]) -> ToolMessage:
        name = call.get("name", "")
        args = call.get("args") or {}
        call_id = call.get("id") or new_id()
        started = time.monotonic()

        log_tool_call(LOGGER, name, args)
        if name not in self.allowed_tools:
            result = ToolResult(success=False, error=f"Tool '{name}' is not available to this agent")
        else:
            try:
                result = await self.tool_invoker.invoke(self.user_id, name, args)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                LOGGER.warning(f"Tool {name} raised: {e}")
                result = ToolResult(success=False, error=str(e))

        duration_ms = int((time.monotonic() - started) * 1000)
        payload = result.to_payload()
        log_tool_result(LOGGER, name, payload, result.success)

        self.state.tool_calls.append(ToolCallRecord(
            id=new_id(),
            tool_id=name,
            input=dict(args),
            output=result.output if result.success else {"error": result.error},
            status="success" if result.success else "error",
            duration_ms=duration_ms,
        ))
        await self.emitter.emit(
            "agent.tool_result",
            {"tool_call_id": call_id, "tool": name, "success": result.success, "output": payload},
            agent_id=self.state.id,
        )
        await self._reason("observation", f"Tool {name} returned: {'success' if result.success else 'error'}")

        return ToolMessage(
            content=json.dumps(payload, ensure_ascii=False, default=str),
            tool_call_id=call_id,
            name=name,
        )

    # ========== Routing ==========

    def _route_after_agent(self, graph_state: SubAgentGraphState) -> str:
        if graph_state.get("outcome") is not None:
            decision, reason = "end", "outcome reached"
        else:
            messages = graph_state.get("messages", [])
            last = messages[-1] if messages else None
            if isinstance(last, AIMessage) and last.tool_calls:
                decision, reason = "tools", f"{len(last.tool_calls)} tool call(s)"
            else:
                decision, reason = "end", "no tool calls"
        log_routing_decision(LOGGER, f"subagent-{self.state.id[:8]}:agent", decision, reason)
        return decision

    def _route_after_tools(self, graph_state: SubAgentGraphState) -> str:
        if graph_state.get("outcome") is not None:
            return "end"
        return "agent"

    def build_graph(self):
        graph = StateGraph(SubAgentGraphState)
        graph.add_node("agent", self._agent_node)
        graph.add_node("tools", self._tools_node)
        graph.add_edge(START, "agent")
        graph.add_conditional_edges("agent", self._route_after_agent, {"tools": "tools", "end": END})
        graph.add_conditional_edges("tools", self._route_after_tools, {"agent": "agent", "end": END})
        return graph.compile()

    # ========== Entry ==========

    def _cancelled_outcome(self) -> AgentOutcome:
        return AgentOutcome(success=False, error=f"Agent was cancelled: {self._cancel_reason}")

    async def _load_tool_definitions(self) -> List[Dict[str, Any]]:
        if not self.allowed_tools:
            return []
        definitions = await self.tool_invoker.get_tools(self.user_id)
        return [d for d in definitions if tool_name(d) in self.allowed_tools]

    async def run(self) -> AgentOutcome:
        """Execute the agent to completion; never raises except on task cancellation."""
        self.state.status = SubAgentStatus.RUNNING
        log_agent_event(LOGGER, self.state.id, "running", self.state.task_description)

        initial = HumanMessage(content=build_initial_task_message(
            self.state.task_description, self.state.upstream_context
        ))
        self._append(initial)

        try:
            self._tool_definitions = await self._load_tool_definitions()
            max_iterations = self.settings.max_iterations
            final_state = await self.build_graph().ainvoke(
                {"messages": [initial], "iterations": 0, "max_iterations": max_iterations, "outcome": None},
                config={"recursion_limit": max_iterations * 2 + 5},
            )
            outcome = final_state.get("outcome")
            if outcome is None:
                outcome = AgentOutcome(success=False, error=f"Reached maximum iterations ({max_iterations})")
        except asyncio.CancelledError:
            self._finish(AgentOutcome(success=False, error="Agent was cancelled: task cancelled"), cancelled=True)
            raise
        except Exception as e:
            LOGGER.error(f"Sub-agent {self.state.id[:8]} failed: {e}")
            outcome = AgentOutcome(success=False, error=str(e))

        self._finish(outcome, cancelled=self._cancel_reason is not None)
        await self.emitter.emit(
            "agent.terminated",
            {
                "task_id": self.state.task_node_id,
                "status": self.state.status.value,
                "error": outcome.error,
                "total_tokens": self.state.total_tokens,
                "total_cost": self.state.total_cost,
            },
            agent_id=self.state.id,
        )
        return outcome

    def _finish(self, outcome: AgentOutcome, cancelled: bool) -> None:
        if cancelled:
            self.state.status = SubAgentStatus.CANCELLED
        elif outcome.success:
            self.state.status = SubAgentStatus.COMPLETED
        else:
            self.state.status = SubAgentStatus.FAILED
        self.state.completed_at = utcnow()
        log_agent_event(LOGGER, self.state.id, self.state.status.value, outcome.error or "")


__all__ = [
    "AgentCommand",
    "SubAgentGraphState",
    "SubAgentRunner",
    "extract_artifacts",
]
