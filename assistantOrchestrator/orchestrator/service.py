"""Orchestrator service - the public run surface.

``execute_run`` takes one user request from start to finish:

1. Scripted plan check (codeword input, when enabled)
2. Preamble: session start, history, memory, tool menu
3. Control loop graph until a response or a fatal error
4. Epilogue: persist history, session end, final event, ``RunResult``

``execute_run`` never raises for run failures; every fatal error is turned
into a failed ``RunResult`` after the run's agents have been cancelled.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Dict, List, Optional

from langchain_core.messages import AIMessage, BaseMessage, HumanMessage, SystemMessage
from langgraph.errors import GraphRecursionError

from assistantOrchestrator.agents.manager import SubAgentManager
from assistantOrchestrator.config.settings import OrchestratorSettings
from assistantOrchestrator.context.history import ConversationHistoryService
from assistantOrchestrator.context.manager import ContextManager
from assistantOrchestrator.context.message_utils import validate_message_sequence
from assistantOrchestrator.domain.actions import ORCHESTRATOR_ONLY_TOOL_IDS
from assistantOrchestrator.domain.models import RunMode, RunResult, RunState, RunStatus
from assistantOrchestrator.guard.loop_guard import LoopGuard
from assistantOrchestrator.orchestrator.context import RUN_CONTEXT_KEY, RunContext
from assistantOrchestrator.orchestrator.graph import build_orchestrator_graph
from assistantOrchestrator.orchestrator.graph.nodes.oracle import CORRUPTED_HISTORY_MESSAGE
from assistantOrchestrator.orchestrator.handlers import ActionDispatcher
from assistantOrchestrator.orchestrator.prompts import build_orchestrator_system_prompt
from assistantOrchestrator.orchestrator.scripted import ScriptedPlan, ScriptedPlanExecutor, ScriptedPlanRegistry
from assistantOrchestrator.orchestrator.tools import ORCHESTRATOR_TOOLS
from assistantOrchestrator.planning.dag import TaskPlanService
from assistantOrchestrator.ports.events import EventBus, EventEmitter
from assistantOrchestrator.ports.memory import MemoryStore
from assistantOrchestrator.ports.oracle import PlanningOracle
from assistantOrchestrator.ports.store import InMemoryStateStore, StateStore
from assistantOrchestrator.ports.tools import ToolInvoker, tool_name
from assistantOrchestrator.utils.error_handler import (
    CorruptedHistoryError,
    IterationLimitError,
    OrchestratorError,
    RunCancelledError,
    ScriptedPlanTimeoutError,
    best_effort,
    is_corrupted_history_error,
)
from assistantOrchestrator.utils.logging_utils import log_error

LOGGER = logging.getLogger(__name__)

MEMORY_CONTEXT_HEADER = "Relevant context from memory:"
SESSION_SUMMARY_CHARS = 500


class OrchestratorService:
    """Runs user requests through the control loop."""

    def __init__(
        self,
        *,
        oracle: PlanningOracle,
        tool_invoker: ToolInvoker,
        agents: SubAgentManager,
        plans: Optional[TaskPlanService] = None,
        guard: Optional[LoopGuard] = None,
        event_bus: Optional[EventBus] = None,
        store: Optional[StateStore] = None,
        memory: Optional[MemoryStore] = None,
        history: Optional[ConversationHistoryService] = None,
        context_manager: Optional[ContextManager] = None,
        settings: Optional[OrchestratorSettings] = None,
        scripted_plans: Optional[ScriptedPlanRegistry] = None,
    ):
        self.oracle = oracle
        self.tool_invoker = tool_invoker
        self.agents = agents
        self.store = store if store is not None else InMemoryStateStore()
        self.plans = plans or TaskPlanService(self.store)
        self.guard = guard or LoopGuard()
        self.event_bus = event_bus
        self.memory = memory
        self.history = history
        self.context_manager = context_manager
        self.settings = settings or OrchestratorSettings()
        self.scripted_plans = scripted_plans

        self.dispatcher = ActionDispatcher()
        self.graph = build_orchestrator_graph(dispatcher=self.dispatcher)
        self.scripted_executor = ScriptedPlanExecutor(self.dispatcher, self.settings)
        self._runs: Dict[str, RunContext] = {}

    # ========== Public surface ==========

    async def execute_run(self, user_id: str, run_id: str, user_input: str) -> RunResult:
        """Execute one user request and return its result."""
        if run_id in self._runs:
            return RunResult(success=False, error=f"Run {run_id} is already executing")

        ctx = self._new_context(user_id, run_id)
        self._runs[run_id] = ctx
        LOGGER.info(f"Run {run_id} started for user {user_id}")

        try:
            scripted = self._match_scripted(user_input)
            if scripted is not None:
                return await self._execute_scripted(ctx, scripted)
            return await self._execute_loop(ctx, user_input)
        except asyncio.CancelledError:
            await self._fail_run(ctx, RunCancelledError("Run was cancelled"))
            raise
        except Exception as e:
            return await self._fail_run(ctx, e)
        finally:
            await self._cleanup(ctx)

    def cancel_run(self, run_id: str) -> bool:
        """Request cancellation; observed by the loop at its next iteration."""
        ctx = self._runs.get(run_id)
        if ctx is None:
            return False
        ctx.cancel_event.set()
        LOGGER.warning(f"Cancellation requested for run {run_id}")
        return True

    def get_run(self, run_id: str) -> Optional[RunState]:
        ctx = self._runs.get(run_id)
        return ctx.run.snapshot() if ctx else None

    def active_runs(self) -> List[str]:
        return list(self._runs)

    # ========== Run setup ==========

    def _new_context(self, user_id: str, run_id: str) -> RunContext:
        return RunContext(
            run=RunState(run_id=run_id, user_id=user_id),
            oracle=self.oracle,
            plans=self.plans,
            guard=self.guard,
            agents=self.agents,
            tool_invoker=self.tool_invoker,
            emitter=EventEmitter(self.event_bus, run_id),
            settings=self.settings,
            store=self.store,
            memory=self.memory,
            context_manager=self.context_manager,
            system_prompt=build_orchestrator_system_prompt(
                max_retries=self.guard.max_retries_per_task,
                max_interventions=self.guard.max_total_interventions,
            ),
        )

    def _match_scripted(self, user_input: str) -> Optional[ScriptedPlan]:
        if not self.settings.enable_scripted_plans or self.scripted_plans is None:
            return None
        plan = self.scripted_plans.match(user_input)
        if plan is not None:
            LOGGER.info(f"Scripted plan matched: {plan.codeword}")
        return plan

    async def _load_history(self, user_id: str) -> List[BaseMessage]:
        if self.history is None:
            return []
        return await best_effort("load history", self.history.load_context(user_id), LOGGER) or []

    async def _memory_context(self, ctx: RunContext, user_input: str) -> Optional[SystemMessage]:
        if self.memory is None or self.settings.memory_search_limit <= 0:
            return None
        records = await best_effort(
            "memory search",
            self.memory.search(ctx.user_id, user_input, self.settings.memory_search_limit),
            LOGGER,
        )
        if not records:
            return None
        lines = "\n".join(f"- {r.content}" for r in records)
        return SystemMessage(content=f"{MEMORY_CONTEXT_HEADER}\n{lines}")

    async def _tool_menu(self, user_id: str) -> List[dict]:
        user_tools = await best_effort("load tools", self.tool_invoker.get_tools(user_id), LOGGER) or []
        return list(ORCHESTRATOR_TOOLS) + [t for t in user_tools if tool_name(t) not in ORCHESTRATOR_ONLY_TOOL_IDS]

    # ========== Execution ==========

    async def _execute_loop(self, ctx: RunContext, user_input: str) -> RunResult:
        await ctx.save_run()
        await ctx.side_channel("session_start", {"run_id": ctx.run_id})
        await ctx.set_status(RunStatus.PLANNING, "Analyzing request...")

        history = await self._load_history(ctx.user_id)
        memory_message = await self._memory_context(ctx, user_input)
        ctx.tools = await self._tool_menu(ctx.user_id)

        human = HumanMessage(content=user_input)
        ctx.run_messages.append(human)
        messages: List[BaseMessage] = list(history)
        if memory_message is not None:
            messages.append(memory_message)
        messages.append(human)

        max_iterations = self.settings.max_iterations
        try:
            final_state = await self.graph.ainvoke(
                {
                    "messages": messages,
                    "iterations": 0,
                    "max_iterations": max_iterations,
                    "final_response": None,
                    "responded": False,
                    "summary_requested": False,
                    "last_error": None,
                },
                config={
                    "recursion_limit": max_iterations * 4 + 10,
                    "configurable": {RUN_CONTEXT_KEY: ctx},
                },
            )
        except GraphRecursionError as e:
            raise IterationLimitError(max_iterations) from e

        response = final_state.get("final_response") or ""
        if final_state.get("responded"):
            success = True
        elif self.plans.has_plan(ctx.run_id):
            completion = self.plans.get_plan_completion(ctx.run_id)
            success = completion.is_complete and completion.failed == 0
        else:
            success = bool(response)
        return await self._finish_run(ctx, response, success=success)

    async def _execute_scripted(self, ctx: RunContext, plan: ScriptedPlan) -> RunResult:
        await ctx.save_run()
        await ctx.side_channel("session_start", {"run_id": ctx.run_id})

        response = await self.scripted_executor.execute(ctx, plan)
        ctx.run_messages = [HumanMessage(content=plan.codeword), AIMessage(content=response)]

        completion = self.plans.get_plan_completion(ctx.run_id)
        return await self._finish_run(ctx, response, success=completion.failed == 0)

    # ========== Run boundary ==========

    def _task_counts(self, ctx: RunContext):
        if not self.plans.has_plan(ctx.run_id):
            return 0, 0
        completion = self.plans.get_plan_completion(ctx.run_id)
        return completion.completed, completion.failed

    async def _persist_history(self, ctx: RunContext, messages: List[BaseMessage]) -> None:
        if self.history is None or not messages:
            return
        await best_effort("persist history", self.history.persist_run_messages(ctx.user_id, ctx.run_id, messages), LOGGER)
        await best_effort("summarize history", self.history.maybe_summarize(ctx.user_id), LOGGER)

    async def _finish_run(self, ctx: RunContext, response: str, success: bool) -> RunResult:
        ctx.settle_agent_usage()
        await self._persist_history(ctx, ctx.run_messages)
        await ctx.side_channel("session_end", {"run_id": ctx.run_id, "summary": response[:SESSION_SUMMARY_CHARS]})

        await ctx.set_status(RunStatus.COMPLETED)
        await ctx.emitter.emit(
            "agent.final",
            {
                "content": response,
                "usage": {"total_tokens": ctx.run.total_tokens, "total_cost": ctx.run.total_cost},
            },
        )

        completed, failed = self._task_counts(ctx)
        LOGGER.info(
            f"Run {ctx.run_id} completed (success={success}, tasks {completed} ok / {failed} failed, "
            f"{ctx.run.total_tokens} tokens, ${ctx.run.total_cost:.4f})"
        )
        return RunResult(
            success=success,
            response=response,
            total_tokens=ctx.run.total_tokens,
            total_cost=ctx.run.total_cost,
            plan_id=ctx.run.plan_id,
            tasks_completed=completed,
            tasks_failed=failed,
        )

    async def _fail_run(self, ctx: RunContext, error: BaseException) -> RunResult:
        corrupted = isinstance(error, CorruptedHistoryError) or is_corrupted_history_error(error)
        if corrupted:
            code, message = "CORRUPTED_HISTORY", CORRUPTED_HISTORY_MESSAGE
        else:
            message = error.user_message if isinstance(error, OrchestratorError) else str(error) or type(error).__name__
            if isinstance(error, RunCancelledError):
                code = "RUN_CANCELLED"
            elif isinstance(error, ScriptedPlanTimeoutError) or self._is_scripted(ctx):
                code = "SCRIPTED_PLAN_ERROR"
            else:
                code = "ORCHESTRATOR_ERROR"

        log_error(LOGGER, error, f"run {ctx.run_id}")
        self.agents.cancel_all_agents(ctx.run_id, "Orchestrator error")
        ctx.settle_agent_usage()

        if corrupted:
            if self.history is not None:
                await best_effort("clear history", self.history.clear_history(ctx.user_id), LOGGER)
        elif not self._is_scripted(ctx):
            await self._persist_history(ctx, validate_message_sequence(ctx.run_messages))

        await ctx.side_channel("session_end", {"run_id": ctx.run_id, "summary": f"Session ended due to error: {message}"})
        if not ctx.run.status.is_terminal:
            await ctx.set_status(RunStatus.FAILED, message)
        await ctx.emitter.emit("agent.error", {"message": message, "code": code})

        completed, failed = self._task_counts(ctx)
        return RunResult(
            success=False,
            error=message,
            total_tokens=ctx.run.total_tokens,
            total_cost=ctx.run.total_cost,
            plan_id=ctx.run.plan_id,
            tasks_completed=completed,
            tasks_failed=failed,
        )

    @staticmethod
    def _is_scripted(ctx: RunContext) -> bool:
        return ctx.mode == RunMode.SCRIPTED

    async def _cleanup(self, ctx: RunContext) -> None:
        await best_effort("cleanup agents", self.agents.cleanup_run(ctx.run_id), LOGGER)
        self._runs.pop(ctx.run_id, None)
        self.plans.discard(ctx.run_id)
        await best_effort("reset guard", self.guard.reset_run(ctx.run_id), LOGGER)


__all__ = ["OrchestratorService"]
