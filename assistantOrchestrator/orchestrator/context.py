"""Per-run context handed to every node and action handler.

One ``RunContext`` is built for each ``execute_run`` call and travels to the
graph nodes through ``config["configurable"]["run_context"]``. Nothing about
a run lives in module or service globals, so concurrent runs for different
users never share mutable state.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from langchain_core.messages import BaseMessage
from langchain_core.runnables import RunnableConfig

from assistantOrchestrator.agents.manager import SubAgentManager
from assistantOrchestrator.config.settings import OrchestratorSettings
from assistantOrchestrator.context.manager import ContextManager
from assistantOrchestrator.domain.models import RunMode, RunState, RunStatus
from assistantOrchestrator.guard.loop_guard import LoopGuard
from assistantOrchestrator.planning.dag import TaskPlanService
from assistantOrchestrator.ports.events import EventEmitter
from assistantOrchestrator.ports.memory import MemoryStore
from assistantOrchestrator.ports.oracle import PlanningOracle
from assistantOrchestrator.ports.store import StateStore
from assistantOrchestrator.ports.tools import ToolInvoker, ToolResult
from assistantOrchestrator.utils.error_handler import best_effort

LOGGER = logging.getLogger(__name__)

RUN_CONTEXT_KEY = "run_context"


@dataclass
class RunContext:
    """Everything one run needs, owned by that run only."""

    run: RunState
    oracle: PlanningOracle
    plans: TaskPlanService
    guard: LoopGuard
    agents: SubAgentManager
    tool_invoker: ToolInvoker
    emitter: EventEmitter
    settings: OrchestratorSettings
    store: Optional[StateStore] = None
    memory: Optional[MemoryStore] = None
    context_manager: Optional[ContextManager] = None
    mode: RunMode = RunMode.DIRECT
    system_prompt: str = ""
    tools: List[Dict[str, Any]] = field(default_factory=list)
    run_messages: List[BaseMessage] = field(default_factory=list)
    cancel_event: asyncio.Event = field(default_factory=asyncio.Event)
    agent_usage_settled: bool = False

    @property
    def run_id(self) -> str:
        return self.run.run_id

    @property
    def user_id(self) -> str:
        return self.run.user_id

    @property
    def cancel_requested(self) -> bool:
        return self.cancel_event.is_set()

    def plan_active(self) -> bool:
        """A plan exists and still has pending or running tasks."""
        if not self.plans.has_plan(self.run_id):
            return False
        return not self.plans.get_plan_completion(self.run_id).is_complete

    # ========== Run state ==========

    async def set_status(self, status: RunStatus, message: Optional[str] = None) -> None:
        if self.run.status == status:
            return
        self.run.set_status(status)
        await self.save_run()
        data: Dict[str, Any] = {"status": status.value}
        if message:
            data["message"] = message
        await self.emitter.emit("orchestrator.status", data)

    def settle_agent_usage(self) -> None:
        """Fold sub-agent token and cost totals into the run, once."""
        if self.agent_usage_settled:
            return
        summary = self.agents.get_run_summary(self.run_id)
        self.run.add_usage(summary["total_tokens"], summary["total_cost"])
        self.agent_usage_settled = True

    async def save_run(self) -> None:
        if self.store is not None:
            await best_effort("save run", self.store.save_run(self.run.snapshot()), LOGGER)

    # ========== Side channels ==========

    async def side_channel(self, tool_id: str, args: Dict[str, Any]) -> Optional[ToolResult]:
        """Invoke a bookkeeping tool; failures are logged and never raised."""
        result = await best_effort(tool_id, self.tool_invoker.invoke(self.user_id, tool_id, args), LOGGER)
        if result is not None and not result.success:
            LOGGER.warning(f"Side channel {tool_id} failed: {result.error}")
        return result


def get_run_context(config: Optional[RunnableConfig]) -> RunContext:
    """Pull the run context out of a node's runnable config."""
    configurable = (config or {}).get("configurable", {})
    ctx = configurable.get(RUN_CONTEXT_KEY)
    if ctx is None:
        raise RuntimeError("Graph invoked without a run context")
    return ctx


__all__ = ["RUN_CONTEXT_KEY", "RunContext", "get_run_context"]
