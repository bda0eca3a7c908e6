"""Sub-agent lifecycle management.

Every spawned agent runs as its own asyncio task behind an ``AgentHandle``.
The handle talks to the running loop only through a mailbox queue
(guidance, redirect, cancel) and exposes a one-shot completion future that
is resolved exactly once, whichever of natural completion, cooperative
cancellation or task cancellation happens first.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Tuple

from assistantOrchestrator.agents.runner import AgentCommand, SubAgentRunner
from assistantOrchestrator.config.settings import SubAgentSettings
from assistantOrchestrator.context.manager import ContextManager
from assistantOrchestrator.domain.models import (
    AgentOutcome,
    AgentType,
    SubAgentState,
    SubAgentStatus,
    new_id,
)
from assistantOrchestrator.ports.events import EventEmitter
from assistantOrchestrator.ports.oracle import PlanningOracle
from assistantOrchestrator.ports.store import StateStore
from assistantOrchestrator.ports.tools import ToolInvoker
from assistantOrchestrator.utils.error_handler import best_effort
from assistantOrchestrator.utils.logging_utils import log_agent_event

LOGGER = logging.getLogger(__name__)


@dataclass
class SpawnSpec:
    """What a new sub-agent should work on."""
    task_node_id: str
    agent_type: AgentType
    task_description: str
    upstream_context: Optional[str] = None
    additional_tools: List[str] = field(default_factory=list)
    instructions: Optional[str] = None


class AgentHandle:
    """Caller-side view of one running sub-agent."""

    def __init__(
        self,
        state: SubAgentState,
        runner: SubAgentRunner,
        mailbox: "asyncio.Queue[AgentCommand]",
        on_finish: Optional[Callable[["AgentHandle"], Awaitable[Any]]] = None,
    ):
        self._state = state
        self._runner = runner
        self._mailbox = mailbox
        self._on_finish = on_finish
        self._future: asyncio.Future = asyncio.get_running_loop().create_future()
        self._task: Optional[asyncio.Task] = None

    @property
    def id(self) -> str:
        return self._state.id

    @property
    def run_id(self) -> str:
        return self._state.run_id

    @property
    def task_node_id(self) -> str:
        return self._state.task_node_id

    @property
    def agent_type(self) -> AgentType:
        return self._state.agent_type

    @property
    def done(self) -> bool:
        return self._future.done()

    def get_state(self) -> SubAgentState:
        """Point-in-time copy of the agent's state."""
        return self._state.snapshot()

    def outcome(self) -> Optional[AgentOutcome]:
        return self._future.result() if self._future.done() else None

    # ========== Mailbox ==========

    def send_guidance(self, guidance: str, redirect: bool = False) -> bool:
        """Queue steering text for the next safe point. No delivery acknowledgment."""
        if self.done:
            return False
        self._mailbox.put_nowait(AgentCommand(kind="redirect" if redirect else "guide", text=guidance))
        log_agent_event(LOGGER, self.id, "redirect queued" if redirect else "guidance queued", guidance)
        return True

    def cancel(self, reason: str) -> bool:
        """Request cooperative cancellation; observed at the agent's next safe point."""
        if self.done:
            return False
        self._mailbox.put_nowait(AgentCommand(kind="cancel", text=reason))
        log_agent_event(LOGGER, self.id, "cancel requested", reason)
        return True

    # ========== Completion ==========

    def _resolve(self, outcome: AgentOutcome) -> bool:
        """Resolve the completion future; later calls are ignored."""
        if self._future.done():
            return False
        self._future.set_result(outcome)
        return True

    async def wait_for_completion(self) -> AgentOutcome:
        return await asyncio.shield(self._future)

    def start(self) -> None:
        self._task = asyncio.create_task(self._run(), name=f"subagent-{self.id[:8]}")
        self._task.add_done_callback(self._on_task_done)

    async def _run(self) -> None:
        outcome = await self._runner.run()
        self._resolve(outcome)
        if self._on_finish is not None:
            await best_effort(f"finish agent {self.id[:8]}", self._on_finish(self), LOGGER)

    def _on_task_done(self, task: asyncio.Task) -> None:
        if task.cancelled():
            self._resolve(AgentOutcome(success=False, error="Agent was cancelled: task cancelled"))
        elif task.exception() is not None:
            self._resolve(AgentOutcome(success=False, error=str(task.exception())))

    async def join(self, timeout: Optional[float] = None) -> None:
        """Wait for the underlying task to exit, cancelling it after ``timeout``."""
        if self._task is None or self._task.done():
            return
        try:
            await asyncio.wait_for(asyncio.shield(self._task), timeout)
        except asyncio.TimeoutError:
            self._task.cancel()
            await asyncio.gather(self._task, return_exceptions=True)


class SubAgentManager:
    """Spawns, tracks, steers and reaps sub-agents for all runs."""

    def __init__(
        self,
        oracle: PlanningOracle,
        tool_invoker: ToolInvoker,
        store: Optional[StateStore] = None,
        settings: Optional[SubAgentSettings] = None,
        context_manager: Optional[ContextManager] = None,
    ):
        self.oracle = oracle
        self.tool_invoker = tool_invoker
        self.store = store
        self.settings = settings or SubAgentSettings()
        self.context_manager = context_manager
        self._agents: Dict[str, AgentHandle] = {}
        self._by_run: Dict[str, List[str]] = {}
        self._reaped: Dict[str, set] = {}

    # ========== Spawning ==========

    async def spawn_agent(
        self,
        run_id: str,
        spec: SpawnSpec,
        *,
        user_id: str,
        emitter: EventEmitter,
    ) -> AgentHandle:
        state = SubAgentState(
            id=new_id(),
            run_id=run_id,
            task_node_id=spec.task_node_id,
            agent_type=AgentType(spec.agent_type),
            task_description=spec.task_description,
            upstream_context=spec.upstream_context,
            additional_tools=set(spec.additional_tools),
        )
        mailbox: asyncio.Queue = asyncio.Queue()
        runner = SubAgentRunner(
            state,
            user_id=user_id,
            oracle=self.oracle,
            tool_invoker=self.tool_invoker,
            mailbox=mailbox,
            emitter=emitter,
            settings=self.settings,
            instructions=spec.instructions,
            context_manager=self.context_manager,
        )
        handle = AgentHandle(state, runner, mailbox, on_finish=self._persist)

        self._agents[state.id] = handle
        self._by_run.setdefault(run_id, []).append(state.id)
        await self._persist(handle)

        await emitter.emit(
            "agent.spawned",
            {
                "task_id": spec.task_node_id,
                "agent_type": state.agent_type.value,
                "task_description": spec.task_description,
            },
            agent_id=state.id,
        )
        log_agent_event(LOGGER, state.id, f"spawned ({state.agent_type.value})", spec.task_description)

        handle.start()
        return handle

    async def _persist(self, handle: AgentHandle) -> None:
        if self.store is not None:
            await best_effort("save sub-agent", self.store.save_subagent(handle.get_state()), LOGGER)

    # ========== Lookup ==========

    def get_agent(self, agent_id: str) -> Optional[AgentHandle]:
        return self._agents.get(agent_id)

    def _run_handles(self, run_id: str) -> List[AgentHandle]:
        return [self._agents[a] for a in self._by_run.get(run_id, []) if a in self._agents]

    async def get_agent_state(self, agent_id: str) -> Optional[SubAgentState]:
        handle = self._agents.get(agent_id)
        if handle is not None:
            return handle.get_state()
        if self.store is not None:
            return await self.store.get_subagent(agent_id)
        return None

    def get_run_agents(self, run_id: str) -> List[SubAgentState]:
        return [h.get_state() for h in self._run_handles(run_id)]

    def get_active_agents(self, run_id: str) -> List[SubAgentState]:
        return [h.get_state() for h in self._run_handles(run_id) if not h.done]

    def has_active_agents(self, run_id: str) -> bool:
        return any(not h.done for h in self._run_handles(run_id))

    # ========== Steering ==========

    def send_guidance(self, agent_id: str, guidance: str, redirect: bool = False) -> bool:
        handle = self._agents.get(agent_id)
        if handle is None:
            return False
        return handle.send_guidance(guidance, redirect=redirect)

    def cancel_agent(self, agent_id: str, reason: str) -> bool:
        handle = self._agents.get(agent_id)
        if handle is None:
            return False
        return handle.cancel(reason)

    def cancel_all_agents(self, run_id: str, reason: str) -> int:
        cancelled = sum(1 for h in self._run_handles(run_id) if h.cancel(reason))
        if cancelled:
            LOGGER.warning(f"Cancelled {cancelled} agent(s) for run {run_id}: {reason}")
        return cancelled

    # ========== Completion ==========

    async def wait_for_agent(self, agent_id: str) -> Optional[AgentOutcome]:
        handle = self._agents.get(agent_id)
        if handle is None:
            return None
        return await handle.wait_for_completion()

    async def wait_for_agents(self, agent_ids: Iterable[str]) -> Dict[str, AgentOutcome]:
        agent_ids = [a for a in agent_ids if a in self._agents]
        outcomes = await asyncio.gather(*(self.wait_for_agent(a) for a in agent_ids))
        return {a: o for a, o in zip(agent_ids, outcomes) if o is not None}

    async def wait_for_any(self, run_id: str, timeout: Optional[float] = None) -> bool:
        """Block until at least one active agent of the run finishes.

        Returns False when there was nothing to wait for or the timeout hit.
        """
        pending = [h._future for h in self._run_handles(run_id) if not h.done]
        if not pending:
            return False
        done, _ = await asyncio.wait(pending, timeout=timeout, return_when=asyncio.FIRST_COMPLETED)
        return bool(done)

    def collect_terminated(self, run_id: str) -> List[Tuple[AgentHandle, AgentOutcome]]:
        """Terminated agents not collected before, in spawn order."""
        reaped = self._reaped.setdefault(run_id, set())
        collected = []
        for handle in self._run_handles(run_id):
            if handle.done and handle.id not in reaped:
                reaped.add(handle.id)
                collected.append((handle, handle.outcome()))
        return collected

    def get_run_summary(self, run_id: str) -> Dict[str, Any]:
        states = [h.get_state() for h in self._run_handles(run_id)]
        counts = {"active": 0, "completed": 0, "failed": 0, "cancelled": 0}
        for state in states:
            if state.status in (SubAgentStatus.INITIALIZING, SubAgentStatus.RUNNING):
                counts["active"] += 1
            else:
                counts[state.status.value] += 1
        return {
            "total": len(states),
            **counts,
            "total_tokens": sum(s.total_tokens for s in states),
            "total_cost": sum(s.total_cost for s in states),
            "agents": [
                {
                    "id": s.id,
                    "agent_type": s.agent_type.value,
                    "status": s.status.value,
                    "task_description": s.task_description,
                    "tokens": s.total_tokens,
                    "cost": s.total_cost,
                }
                for s in states
            ],
        }

    async def cleanup_run(self, run_id: str, timeout: float = 5.0) -> None:
        """Cancel what is still running, wait for the tasks, and forget the run."""
        handles = self._run_handles(run_id)
        for handle in handles:
            handle.cancel("Run finished")
        await asyncio.gather(*(h.join(timeout) for h in handles), return_exceptions=True)
        for handle in handles:
            self._agents.pop(handle.id, None)
        self._by_run.pop(run_id, None)
        self._reaped.pop(run_id, None)


__all__ = ["SpawnSpec", "AgentHandle", "SubAgentManager"]
