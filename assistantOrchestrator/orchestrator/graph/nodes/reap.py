"""Reap node - settles finished sub-agents before each oracle turn.

Runs at the top of every loop iteration:

1. Enforce cancellation and the iteration cap
2. Block on agent activity when the oracle only narrated while agents run
3. Settle the plan nodes of terminated agents and brief the oracle
4. Ask for the closing summary once every task has settled
"""

from __future__ import annotations

import asyncio
import logging
from typing import Callable, List

from langchain_core.messages import AIMessage, HumanMessage, SystemMessage
from langchain_core.runnables import RunnableConfig

from assistantOrchestrator.domain.models import RunStatus, TaskStatus
from assistantOrchestrator.orchestrator.context import RunContext, get_run_context
from assistantOrchestrator.orchestrator.graph.state import OrchestrationState
from assistantOrchestrator.orchestrator.handlers import emit_task_outcome
from assistantOrchestrator.utils.error_handler import (
    IterationLimitError,
    OrchestratorError,
    RunCancelledError,
    with_error_boundary,
)
from assistantOrchestrator.utils.logging_utils import log_agent_event

LOGGER = logging.getLogger(__name__)

PLAN_COMPLETE_PROMPT = "All tasks are complete. Please provide a summary response to the user."

_PREVIEW_CHARS = 300


def _preview(value) -> str:
    text = value if isinstance(value, str) else str(value)
    text = " ".join(text.split())
    return text if len(text) <= _PREVIEW_CHARS else text[:_PREVIEW_CHARS] + "..."


def ensure_not_cancelled(ctx: RunContext) -> None:
    if ctx.cancel_requested:
        raise RunCancelledError("Run was cancelled")


async def wait_for_agent_activity(ctx: RunContext, timeout: float) -> bool:
    """Block until an agent of the run terminates, the run is cancelled, or ``timeout`` passes.

    Returns True when an agent terminated.
    """
    waiter = asyncio.create_task(ctx.agents.wait_for_any(ctx.run_id, timeout))
    cancelled = asyncio.create_task(ctx.cancel_event.wait())
    try:
        done, _ = await asyncio.wait({waiter, cancelled}, return_when=asyncio.FIRST_COMPLETED)
    finally:
        for task in (waiter, cancelled):
            if not task.done():
                task.cancel()
        await asyncio.gather(waiter, cancelled, return_exceptions=True)
    return waiter in done and not waiter.cancelled() and bool(waiter.result())


async def reap_terminated_agents(ctx: RunContext) -> List[str]:
    """Settle plan nodes of agents that terminated since the last call.

    A node is only settled while it is still in progress under the same
    agent; nodes already marked complete, failed or reset for retry by the
    oracle are left alone. Returns one briefing line per terminated agent.
    """
    notes: List[str] = []
    for handle, outcome in ctx.agents.collect_terminated(ctx.run_id):
        ctx.run.active_agent_ids.discard(handle.id)
        log_agent_event(LOGGER, handle.id, "reaped", outcome.error or "")

        try:
            node = ctx.plans.get_node(ctx.run_id, handle.task_node_id)
        except OrchestratorError:
            LOGGER.warning(f"Agent {handle.id[:8]} finished for unknown task {handle.task_node_id}")
            continue
        if node.status != TaskStatus.IN_PROGRESS or node.assigned_agent_id != handle.id:
            continue

        if outcome.success:
            await ctx.plans.complete_task(ctx.run_id, node.id, outcome.output)
            await emit_task_outcome(ctx, node.id, True, result=outcome.output, agent_id=handle.id)
            notes.append(f"Task {node.id} ({node.description}) completed: {_preview(outcome.output)}")
        else:
            error = outcome.error or "Agent failed"
            await ctx.plans.fail_task(ctx.run_id, node.id, error)
            await emit_task_outcome(ctx, node.id, False, error=error, agent_id=handle.id)
            notes.append(
                f"Task {node.id} ({node.description}) failed: {error}. "
                "Retry it with mark_task_failed(should_retry=true) and start_agent, or continue without it."
            )
    return notes


def _ready_nudge(ctx: RunContext) -> str:
    ready = ctx.plans.get_ready_tasks(ctx.run_id).ready
    if not ready:
        return (
            "The plan is not finished but no agents are running and no tasks are ready. "
            "Retry or modify the blocked tasks, or respond to the user with what was done."
        )
    lines = [f"- {n.id}: {n.description} ({n.agent_type.value})" for n in ready]
    return "The plan is not finished and no agents are running. Ready tasks:\n" + "\n".join(lines)


def build_reap_node() -> Callable:
    """Build the reap node."""

    @with_error_boundary("reap")
    async def reap_node(state: OrchestrationState, config: RunnableConfig) -> dict:
        ctx = get_run_context(config)
        ensure_not_cancelled(ctx)

        iterations = state.get("iterations", 0)
        max_iterations = state.get("max_iterations", ctx.settings.max_iterations)
        if iterations >= max_iterations:
            raise IterationLimitError(max_iterations)

        messages = list(state.get("messages", []))
        last = messages[-1] if messages else None
        narrated = isinstance(last, AIMessage) and not last.tool_calls

        if narrated and ctx.plan_active() and ctx.agents.has_active_agents(ctx.run_id):
            await ctx.set_status(RunStatus.MONITORING, "Waiting for agents...")
            await wait_for_agent_activity(ctx, ctx.settings.agent_wait_timeout_seconds)
            ensure_not_cancelled(ctx)

        update: dict = {}
        notes = await reap_terminated_agents(ctx)
        if notes:
            messages.append(SystemMessage(content="Agent updates:\n" + "\n".join(f"- {n}" for n in notes)))

        if ctx.plans.has_plan(ctx.run_id):
            completion = ctx.plans.get_plan_completion(ctx.run_id)
            if completion.is_complete:
                if not state.get("summary_requested"):
                    messages.append(HumanMessage(content=PLAN_COMPLETE_PROMPT))
                    update["summary_requested"] = True
            else:
                update["summary_requested"] = False
                if narrated and not ctx.agents.has_active_agents(ctx.run_id):
                    messages.append(SystemMessage(content=_ready_nudge(ctx)))

        if ctx.run.status == RunStatus.MONITORING:
            await ctx.set_status(RunStatus.EXECUTING)

        update["messages"] = messages
        return update

    return reap_node


__all__ = [
    "PLAN_COMPLETE_PROMPT",
    "build_reap_node",
    "ensure_not_cancelled",
    "reap_terminated_agents",
    "wait_for_agent_activity",
]
