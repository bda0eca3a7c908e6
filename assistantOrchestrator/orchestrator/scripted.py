"""Scripted plan mode.

A scripted plan is a predefined task plan registered under a codeword. When
scripted plans are enabled and the user's whole input is a codeword, the run
skips oracle planning: the plan is created as-is, ready tasks are started on
a poll interval, and the run ends with a generated report once every task
has settled or the wall-clock ceiling is hit.

Registry file format (YAML)::

    plans:
      demo-research:
        display_name: Research demo
        description: Collects sources and writes a short brief.
        reasoning: Two research tasks feeding one writer.
        tasks:
          - temp_id: a
            description: Find recent articles about ...
            agent_type: research
          - temp_id: b
            description: Summarize the findings
            agent_type: general
            dependencies: [a]
"""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Dict, List, Optional, Union

import yaml
from pydantic import BaseModel, ConfigDict, Field

from assistantOrchestrator.config.settings import OrchestratorSettings
from assistantOrchestrator.domain.actions import TaskInput
from assistantOrchestrator.domain.models import RunMode, RunStatus, TaskPlan, TaskStatus
from assistantOrchestrator.orchestrator.context import RunContext
from assistantOrchestrator.orchestrator.graph.nodes.reap import (
    ensure_not_cancelled,
    reap_terminated_agents,
    wait_for_agent_activity,
)
from assistantOrchestrator.orchestrator.handlers import ActionDispatcher, emit_task_outcome
from assistantOrchestrator.utils.error_handler import OrchestratorError, ScriptedPlanTimeoutError

LOGGER = logging.getLogger(__name__)

BLOCKED_REASON = "Blocked by failed dependency"


class ScriptedPlan(BaseModel):
    """A predefined plan triggered by a codeword."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    codeword: str
    display_name: str = Field(default="", alias="displayName")
    description: str = ""
    reasoning: str = ""
    tasks: List[TaskInput] = Field(default_factory=list)

    @property
    def title(self) -> str:
        return self.display_name or self.codeword


class ScriptedPlanRegistry:
    """Codeword -> scripted plan lookup."""

    def __init__(self, plans: Optional[Dict[str, ScriptedPlan]] = None):
        self._plans = {k.strip().lower(): v for k, v in (plans or {}).items()}

    @classmethod
    def from_yaml(cls, path: Union[str, Path]) -> "ScriptedPlanRegistry":
        """Load plans from a YAML file; a missing file gives an empty registry."""
        path = Path(path)
        if not path.exists():
            LOGGER.warning(f"Scripted plan file not found: {path}")
            return cls()

        with open(path, "r", encoding="utf-8") as f:
            config = yaml.safe_load(f) or {}

        plans = {}
        for codeword, body in (config.get("plans") or {}).items():
            plans[str(codeword)] = ScriptedPlan.model_validate({"codeword": str(codeword), **(body or {})})
        LOGGER.info(f"Loaded {len(plans)} scripted plan(s) from {path}")
        return cls(plans)

    def match(self, user_input: str) -> Optional[ScriptedPlan]:
        return self._plans.get(user_input.strip().lower())

    def codewords(self) -> List[str]:
        return sorted(self._plans)

    def __len__(self) -> int:
        return len(self._plans)


def build_scripted_response(plan: ScriptedPlan, final_plan: Optional[TaskPlan]) -> str:
    """Markdown report of a finished scripted run."""
    nodes = final_plan.nodes if final_plan else []
    completed = [n for n in nodes if n.status == TaskStatus.COMPLETED]
    failed = [n for n in nodes if n.status in (TaskStatus.FAILED, TaskStatus.CANCELLED)]

    lines = [f"# {plan.title} - Completed", ""]
    if plan.description:
        lines += [plan.description, ""]
    lines += [
        "## Results",
        "",
        f"- **Completed Tasks**: {len(completed)}",
        f"- **Failed Tasks**: {len(failed)}",
        "",
    ]
    if completed:
        lines += ["### Completed", ""]
        lines += [f"{i}. {n.description}" for i, n in enumerate(completed, 1)]
        lines.append("")
    if failed:
        lines += ["### Failed", ""]
        for i, node in enumerate(failed, 1):
            entry = f"{i}. {node.description}"
            if isinstance(node.result, dict):
                reason = node.result.get("error") or node.result.get("cancelled")
                if reason:
                    entry += f" - {reason}"
            lines.append(entry)
        lines.append("")
    return "\n".join(lines)


class ScriptedPlanExecutor:
    """Drives a scripted plan to completion without oracle decisions."""

    def __init__(self, dispatcher: ActionDispatcher, settings: OrchestratorSettings):
        self.dispatcher = dispatcher
        self.settings = settings

    async def execute(self, ctx: RunContext, plan: ScriptedPlan) -> str:
        """Run ``plan`` for ``ctx`` and return the final report.

        Raises:
            OrchestratorError: If the plan cannot be created
            ScriptedPlanTimeoutError: If tasks are still running at the deadline
            RunCancelledError: If the run is cancelled meanwhile
        """
        ctx.mode = RunMode.SCRIPTED
        await ctx.set_status(RunStatus.EXECUTING, f"Creating plan: {plan.title}")

        created = await self.dispatcher.dispatch(
            ctx,
            "create_task_plan",
            {
                "reasoning": plan.reasoning,
                "tasks": [t.model_dump() for t in plan.tasks],
            },
        )
        if not created.get("success"):
            raise OrchestratorError(f"Failed to create plan: {created.get('error')}")
        LOGGER.info(f"Scripted plan '{plan.codeword}' created: {created['plan_id']}")

        await self._drive(ctx)
        return build_scripted_response(plan, ctx.plans.get_plan(ctx.run_id))

    async def _drive(self, ctx: RunContext) -> None:
        loop = asyncio.get_running_loop()
        timeout = self.settings.scripted_timeout_seconds
        poll = self.settings.scripted_poll_interval
        deadline = loop.time() + timeout

        while True:
            ensure_not_cancelled(ctx)
            await reap_terminated_agents(ctx)

            completion = ctx.plans.get_plan_completion(ctx.run_id)
            if completion.is_complete:
                LOGGER.info(f"Scripted plan settled: {completion.completed} completed, {completion.failed} failed")
                return

            if loop.time() >= deadline:
                raise ScriptedPlanTimeoutError(f"Scripted plan timed out after {timeout:.0f} seconds")

            running = {a.task_node_id for a in ctx.agents.get_active_agents(ctx.run_id)}
            for node in ctx.plans.get_ready_tasks(ctx.run_id).ready:
                if node.id in running:
                    continue
                started = await self.dispatcher.dispatch(ctx, "start_agent", {"task_id": node.id})
                if not started.get("success"):
                    LOGGER.warning(f"Could not start task {node.id}: {started.get('error')}")

            if not ctx.agents.has_active_agents(ctx.run_id):
                report = ctx.plans.get_ready_tasks(ctx.run_id)
                if not report.ready and report.waiting:
                    await self._cancel_blocked(ctx, report.waiting)
                    continue

            remaining = max(0.0, deadline - loop.time())
            if ctx.agents.has_active_agents(ctx.run_id):
                await wait_for_agent_activity(ctx, min(poll, remaining))
            else:
                await asyncio.sleep(min(poll, remaining))

    async def _cancel_blocked(self, ctx: RunContext, nodes) -> None:
        for node in nodes:
            await ctx.plans.cancel_task(ctx.run_id, node.id, BLOCKED_REASON)
            await emit_task_outcome(ctx, node.id, False, error=BLOCKED_REASON, cancelled=True)
            LOGGER.warning(f"Task {node.id} cancelled: {BLOCKED_REASON}")


__all__ = [
    "ScriptedPlan",
    "ScriptedPlanRegistry",
    "ScriptedPlanExecutor",
    "build_scripted_response",
]
