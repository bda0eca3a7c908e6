"""Durable state store port for runs, plans, task nodes and sub-agents."""

from __future__ import annotations

import copy
import logging
from typing import Dict, List, Optional, Protocol

from assistantOrchestrator.domain.models import RunState, SubAgentState, TaskNode, TaskPlan

LOGGER = logging.getLogger(__name__)


class StateStore(Protocol):
    async def save_run(self, run: RunState) -> None:
        ...

    async def get_run(self, run_id: str) -> Optional[RunState]:
        ...

    async def save_plan(self, plan: TaskPlan) -> None:
        ...

    async def get_plan(self, plan_id: str) -> Optional[TaskPlan]:
        ...

    async def get_plan_by_run(self, run_id: str) -> Optional[TaskPlan]:
        ...

    async def save_node(self, node: TaskNode) -> None:
        ...

    async def save_subagent(self, agent: SubAgentState) -> None:
        ...

    async def get_subagent(self, agent_id: str) -> Optional[SubAgentState]:
        ...

    async def list_subagents(self, run_id: str) -> List[SubAgentState]:
        ...


class InMemoryStateStore:
    """Process-local store; every read and write goes through a deep copy."""

    def __init__(self) -> None:
        self._runs: Dict[str, RunState] = {}
        self._plans: Dict[str, TaskPlan] = {}
        self._plan_by_run: Dict[str, str] = {}
        self._subagents: Dict[str, SubAgentState] = {}

    async def save_run(self, run: RunState) -> None:
        self._runs[run.run_id] = copy.deepcopy(run)

    async def get_run(self, run_id: str) -> Optional[RunState]:
        run = self._runs.get(run_id)
        return copy.deepcopy(run) if run else None

    async def save_plan(self, plan: TaskPlan) -> None:
        self._plans[plan.id] = copy.deepcopy(plan)
        self._plan_by_run[plan.run_id] = plan.id

    async def get_plan(self, plan_id: str) -> Optional[TaskPlan]:
        plan = self._plans.get(plan_id)
        return copy.deepcopy(plan) if plan else None

    async def get_plan_by_run(self, run_id: str) -> Optional[TaskPlan]:
        plan_id = self._plan_by_run.get(run_id)
        return await self.get_plan(plan_id) if plan_id else None

    async def save_node(self, node: TaskNode) -> None:
        plan = self._plans.get(node.plan_id)
        if plan is None:
            LOGGER.warning(f"save_node: unknown plan {node.plan_id}")
            return
        for index, existing in enumerate(plan.nodes):
            if existing.id == node.id:
                plan.nodes[index] = copy.deepcopy(node)
                return
        plan.nodes.append(copy.deepcopy(node))

    async def save_subagent(self, agent: SubAgentState) -> None:
        self._subagents[agent.id] = copy.deepcopy(agent)

    async def get_subagent(self, agent_id: str) -> Optional[SubAgentState]:
        agent = self._subagents.get(agent_id)
        return copy.deepcopy(agent) if agent else None

    async def list_subagents(self, run_id: str) -> List[SubAgentState]:
        return [copy.deepcopy(a) for a in self._subagents.values() if a.run_id == run_id]


__all__ = ["StateStore", "InMemoryStateStore"]
