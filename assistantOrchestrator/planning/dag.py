"""Task plan (DAG) manager.

Owns plan creation, node insertion with dependency validation, readiness,
upstream context digests, node status transitions and completion queries.
Acyclicity is enforced whenever nodes are inserted or rewired; scheduling
never has to deal with a cycle.

Only the control loop calls the mutating methods. Every public read returns
copies, never live nodes.
"""

from __future__ import annotations

import copy
import json
import logging
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Literal, Mapping, Optional, Sequence, Set, Tuple

from assistantOrchestrator.domain.actions import TaskInput
from assistantOrchestrator.domain.models import (
    AgentType,
    PlanCompletion,
    PlanStatus,
    ReadinessReport,
    TaskNode,
    TaskPlan,
    TaskStatus,
    new_id,
    utcnow,
)
from assistantOrchestrator.ports.store import StateStore
from assistantOrchestrator.utils.error_handler import (
    PlanNotFoundError,
    PlanValidationError,
    TaskNotFoundError,
)

LOGGER = logging.getLogger(__name__)

MAX_RECOMMENDED_TASKS = 10
MAX_RECOMMENDED_ROOTS = 5

PlanStructure = Literal["sequential", "dag"]

_VALID_AGENT_TYPES = {t.value for t in AgentType}


@dataclass(frozen=True)
class PlanValidation:
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    @property
    def valid(self) -> bool:
        return not self.errors


@dataclass(frozen=True)
class PlanCreation:
    plan: TaskPlan
    id_map: Dict[str, str]
    warnings: List[str] = field(default_factory=list)


def find_cycle(graph: Mapping[str, Iterable[str]]) -> Optional[List[str]]:
    """Return one cycle in ``graph`` (node -> dependencies) or None.

    Three-colour depth-first search; dependencies that are not keys of the
    graph are treated as leaves.
    """
    white, gray, black = 0, 1, 2
    color: Dict[str, int] = {node: white for node in graph}
    parent: Dict[str, str] = {}

    for root in graph:
        if color[root] != white:
            continue
        stack: List[Tuple[str, Iterable[str]]] = [(root, iter(graph[root]))]
        color[root] = gray
        while stack:
            node, deps = stack[-1]
            advanced = False
            for dep in deps:
                state = color.get(dep)
                if state is None or state == black:
                    continue
                if state == gray:
                    cycle = [dep, node]
                    cursor = node
                    while cursor != dep and cursor in parent:
                        cursor = parent[cursor]
                        cycle.append(cursor)
                    return list(reversed(cycle))
                parent[dep] = node
                color[dep] = gray
                stack.append((dep, iter(graph[dep])))
                advanced = True
                break
            if not advanced:
                color[node] = black
                stack.pop()
    return None


def validate_task_inputs(tasks: Sequence[TaskInput], existing_ids: Iterable[str] = ()) -> PlanValidation:
    """Validate oracle-proposed tasks before any node is created.

    Dependencies may reference temp ids within ``tasks`` or ids of nodes that
    already exist in the plan (``existing_ids``).
    """
    errors: List[str] = []
    warnings: List[str] = []
    existing = set(existing_ids)

    if not tasks:
        return PlanValidation(errors=["Plan must contain at least one task"])

    temp_ids: Set[str] = set()
    for index, task in enumerate(tasks):
        label = task.temp_id or f"#{index + 1}"
        if not task.temp_id:
            errors.append(f"Task {label} is missing a tempId")
        elif task.temp_id in temp_ids or task.temp_id in existing:
            errors.append(f"Duplicate task id: {task.temp_id}")
        else:
            temp_ids.add(task.temp_id)
        if not task.description.strip():
            errors.append(f"Task {label} is missing a description")
        if task.agent_type not in _VALID_AGENT_TYPES:
            errors.append(
                f"Task {label} has invalid agent type '{task.agent_type}' "
                f"(expected one of: {', '.join(sorted(_VALID_AGENT_TYPES))})"
            )

    known = temp_ids | existing
    for task in tasks:
        for dep in task.dependencies:
            if dep == task.temp_id:
                errors.append(f"Task {task.temp_id} cannot depend on itself")
            elif dep not in known:
                errors.append(f"Task {task.temp_id or '?'} depends on unknown task: {dep}")

    if not errors:
        graph = {task.temp_id: list(task.dependencies) for task in tasks}
        cycle = find_cycle(graph)
        if cycle:
            errors.append(f"Circular dependency detected: {' -> '.join(cycle)}")

    if len(tasks) > MAX_RECOMMENDED_TASKS:
        warnings.append(f"Plan has {len(tasks)} tasks; consider consolidating (recommended <= {MAX_RECOMMENDED_TASKS})")
    roots = [t for t in tasks if not t.dependencies]
    if len(roots) > MAX_RECOMMENDED_ROOTS:
        warnings.append(f"Plan has {len(roots)} parallel root tasks (recommended <= {MAX_RECOMMENDED_ROOTS})")

    return PlanValidation(errors=errors, warnings=warnings)


class TaskPlanService:
    """DAG manager holding the single active plan of each run."""

    def __init__(self, store: StateStore):
        self.store = store
        self._plans: Dict[str, TaskPlan] = {}

    # ========== Plan lifecycle ==========

    async def create_plan(self, run_id: str, reasoning: str = "") -> TaskPlan:
        """Create an empty plan for ``run_id``.

        Raises:
            PlanValidationError: If the run already has an executing plan
        """
        existing = self._plans.get(run_id)
        if existing is not None and existing.status == PlanStatus.EXECUTING and any(
            n.status in (TaskStatus.PENDING, TaskStatus.IN_PROGRESS) for n in existing.nodes
        ):
            raise PlanValidationError(["Run already has an executing plan; use modify_plan to change it"])

        plan = TaskPlan(id=new_id(), run_id=run_id, reasoning=reasoning)
        self._plans[run_id] = plan
        await self.store.save_plan(plan)
        return plan.snapshot()

    async def add_nodes(self, run_id: str, tasks: Sequence[TaskInput]) -> Dict[str, str]:
        """Insert ``tasks`` in bulk; returns temp id -> node id.

        Raises:
            PlanValidationError: On unknown dependencies, duplicates or a cycle
        """
        plan = self._require_plan(run_id)
        validation = validate_task_inputs(tasks, existing_ids=[n.id for n in plan.nodes])
        if not validation.valid:
            raise PlanValidationError(validation.errors)

        id_map = {task.temp_id: new_id() for task in tasks}
        new_nodes = [
            TaskNode(
                id=id_map[task.temp_id],
                plan_id=plan.id,
                description=task.description.strip(),
                agent_type=AgentType(task.agent_type),
                dependencies={id_map.get(dep, dep) for dep in task.dependencies},
            )
            for task in tasks
        ]
        self._check_acyclic(plan.nodes + new_nodes)

        plan.nodes.extend(new_nodes)
        for node in new_nodes:
            await self.store.save_node(node)
        return id_map

    async def create_plan_from_input(self, run_id: str, reasoning: str, tasks: Sequence[TaskInput]) -> PlanCreation:
        """Validate, create and start executing a plan proposed by the oracle."""
        validation = validate_task_inputs(tasks)
        if not validation.valid:
            raise PlanValidationError(validation.errors)
        for warning in validation.warnings:
            LOGGER.warning(f"Plan warning: {warning}")

        await self.create_plan(run_id, reasoning)
        id_map = await self.add_nodes(run_id, tasks)
        plan = self._require_plan(run_id)
        plan.status = PlanStatus.EXECUTING
        await self.store.save_plan(plan)
        return PlanCreation(plan=plan.snapshot(), id_map=id_map, warnings=validation.warnings)

    def get_plan(self, run_id: str) -> Optional[TaskPlan]:
        plan = self._plans.get(run_id)
        return plan.snapshot() if plan else None

    def has_plan(self, run_id: str) -> bool:
        return run_id in self._plans

    def get_node(self, run_id: str, node_id: str) -> TaskNode:
        return self._snapshot_node(self._require_node(run_id, node_id))

    def discard(self, run_id: str) -> None:
        self._plans.pop(run_id, None)

    # ========== Readiness ==========

    def is_ready(self, plan: TaskPlan, node: TaskNode) -> bool:
        if node.status != TaskStatus.PENDING:
            return False
        for dep_id in node.dependencies:
            dep = plan.get_node(dep_id)
            if dep is None or dep.status != TaskStatus.COMPLETED:
                return False
        return True

    def get_ready_tasks(self, run_id: str) -> ReadinessReport:
        plan = self._require_plan(run_id)
        ready, waiting, completed, failed = [], [], [], []
        for node in plan.nodes:
            if node.status == TaskStatus.COMPLETED:
                completed.append(node)
            elif node.status in (TaskStatus.FAILED, TaskStatus.CANCELLED):
                failed.append(node)
            elif self.is_ready(plan, node):
                ready.append(node)
            elif node.status == TaskStatus.PENDING:
                waiting.append(node)
        return ReadinessReport(
            ready=copy.deepcopy(ready),
            waiting=copy.deepcopy(waiting),
            completed=copy.deepcopy(completed),
            failed=copy.deepcopy(failed),
        )

    def get_upstream_context(self, run_id: str, node_id: str) -> str:
        """Digest of completed dependency results used to brief a new sub-agent."""
        plan = self._require_plan(run_id)
        node = self._require_node(run_id, node_id)
        blocks = []
        for dep in plan.nodes:
            if dep.id in node.dependencies and dep.status == TaskStatus.COMPLETED:
                blocks.append(
                    f"## Result from: {dep.description}\n"
                    f"{json.dumps(dep.result, ensure_ascii=False, indent=2, default=str)}"
                )
        return "\n\n".join(blocks)

    # ========== Node transitions ==========

    async def start_task(self, run_id: str, node_id: str, agent_id: str) -> TaskNode:
        node = self._require_node(run_id, node_id)
        plan = self._require_plan(run_id)
        if not self.is_ready(plan, node):
            raise PlanValidationError([f"Task {node_id} is not ready (status: {node.status.value})"])
        node.status = TaskStatus.IN_PROGRESS
        node.assigned_agent_id = agent_id
        node.started_at = utcnow()
        await self.store.save_node(node)
        return self._snapshot_node(node)

    async def complete_task(self, run_id: str, node_id: str, result) -> TaskNode:
        node = self._require_node(run_id, node_id)
        node.status = TaskStatus.COMPLETED
        node.result = result
        node.completed_at = utcnow()
        await self.store.save_node(node)
        await self._refresh_plan_status(run_id)
        return self._snapshot_node(node)

    async def fail_task(self, run_id: str, node_id: str, error: str) -> TaskNode:
        node = self._require_node(run_id, node_id)
        node.status = TaskStatus.FAILED
        node.result = {"error": error}
        node.completed_at = utcnow()
        await self.store.save_node(node)
        await self._refresh_plan_status(run_id)
        return self._snapshot_node(node)

    async def cancel_task(self, run_id: str, node_id: str, reason: str = "") -> TaskNode:
        node = self._require_node(run_id, node_id)
        node.status = TaskStatus.CANCELLED
        if reason:
            node.result = {"cancelled": reason}
        node.completed_at = utcnow()
        await self.store.save_node(node)
        await self._refresh_plan_status(run_id)
        return self._snapshot_node(node)

    async def reset_task_for_retry(self, run_id: str, node_id: str) -> TaskNode:
        """Move a failed task back to pending for another attempt.

        The failed attempt's result, assigned agent and timestamps are
        cleared so the next attempt starts from a clean node.
        """
        node = self._require_node(run_id, node_id)
        if node.status != TaskStatus.FAILED:
            raise PlanValidationError([f"Only failed tasks can be retried (status: {node.status.value})"])
        node.status = TaskStatus.PENDING
        node.retry_count += 1
        node.result = None
        node.assigned_agent_id = None
        node.started_at = None
        node.completed_at = None
        plan = self._require_plan(run_id)
        plan.status = PlanStatus.EXECUTING
        await self.store.save_node(node)
        await self.store.save_plan(plan)
        return self._snapshot_node(node)

    # ========== Plan modification ==========

    async def add_task(self, run_id: str, task: TaskInput) -> TaskNode:
        """Add one node; dependencies must be ids of existing nodes."""
        if not task.temp_id:
            task = task.model_copy(update={"temp_id": new_id()})
        id_map = await self.add_nodes(run_id, [task])
        plan = self._require_plan(run_id)
        if plan.status == PlanStatus.COMPLETED or plan.status == PlanStatus.FAILED:
            plan.status = PlanStatus.EXECUTING
            await self.store.save_plan(plan)
        return self.get_node(run_id, id_map[task.temp_id])

    async def remove_task(self, run_id: str, node_id: str) -> TaskNode:
        """Cancel a pending node that no live node depends on."""
        plan = self._require_plan(run_id)
        node = self._require_node(run_id, node_id)
        if node.status != TaskStatus.PENDING:
            raise PlanValidationError([f"Can only remove pending tasks (status: {node.status.value})"])
        dependents = [
            n.id for n in plan.nodes
            if node_id in n.dependencies and n.status != TaskStatus.CANCELLED
        ]
        if dependents:
            raise PlanValidationError([f"Cannot remove task with dependents: {', '.join(dependents)}"])
        return await self.cancel_task(run_id, node_id, "Removed from plan")

    async def update_task(
        self,
        run_id: str,
        node_id: str,
        description: Optional[str] = None,
        agent_type: Optional[str] = None,
    ) -> TaskNode:
        node = self._require_node(run_id, node_id)
        if node.status != TaskStatus.PENDING:
            raise PlanValidationError([f"Can only update pending tasks (status: {node.status.value})"])
        if agent_type is not None:
            if agent_type not in _VALID_AGENT_TYPES:
                raise PlanValidationError([f"Invalid agent type: {agent_type}"])
            node.agent_type = AgentType(agent_type)
        if description:
            node.description = description.strip()
        await self.store.save_node(node)
        return self._snapshot_node(node)

    async def reorder_task(self, run_id: str, node_id: str, dependencies: Iterable[str]) -> TaskNode:
        """Replace a pending node's dependencies, keeping the graph acyclic."""
        plan = self._require_plan(run_id)
        node = self._require_node(run_id, node_id)
        if node.status != TaskStatus.PENDING:
            raise PlanValidationError([f"Can only reorder pending tasks (status: {node.status.value})"])
        new_deps = set(dependencies)
        unknown = [d for d in new_deps if plan.get_node(d) is None]
        if unknown:
            raise PlanValidationError([f"Unknown dependency: {d}" for d in unknown])
        if node_id in new_deps:
            raise PlanValidationError([f"Task {node_id} cannot depend on itself"])
        graph = {n.id: (new_deps if n.id == node_id else n.dependencies) for n in plan.nodes}
        cycle = find_cycle(graph)
        if cycle:
            raise PlanValidationError([f"Circular dependency detected: {' -> '.join(cycle)}"])
        node.dependencies = new_deps
        await self.store.save_node(node)
        return self._snapshot_node(node)

    # ========== Completion queries ==========

    def get_plan_completion(self, run_id: str) -> PlanCompletion:
        plan = self._require_plan(run_id)
        return self.completion_of(plan)

    @staticmethod
    def completion_of(plan: TaskPlan) -> PlanCompletion:
        completed = failed = pending = 0
        for node in plan.nodes:
            if node.status == TaskStatus.COMPLETED:
                completed += 1
            elif node.status in (TaskStatus.FAILED, TaskStatus.CANCELLED):
                failed += 1
            else:
                pending += 1
        is_complete = pending == 0
        return PlanCompletion(
            is_complete=is_complete,
            is_success=is_complete and failed == 0,
            completed=completed,
            failed=failed,
            pending=pending,
            total=len(plan.nodes),
        )

    def is_complete(self, run_id: str) -> bool:
        return self.get_plan_completion(run_id).is_complete

    def is_success(self, run_id: str) -> bool:
        return self.get_plan_completion(run_id).is_success

    def count_by_status(self, run_id: str) -> Dict[str, int]:
        plan = self._require_plan(run_id)
        counts = {status.value: 0 for status in TaskStatus}
        for node in plan.nodes:
            counts[node.status.value] += 1
        return counts

    def get_plan_structure(self, run_id: str) -> PlanStructure:
        """Classify the plan as a single chain or a fan-out/fan-in graph (observability only)."""
        return self.structure_of(self._require_plan(run_id))

    @staticmethod
    def structure_of(plan: TaskPlan) -> PlanStructure:
        dependents: Dict[str, int] = {}
        roots = 0
        for node in plan.nodes:
            if not node.dependencies:
                roots += 1
            if len(node.dependencies) > 1:
                return "dag"
            for dep in node.dependencies:
                dependents[dep] = dependents.get(dep, 0) + 1
        if roots > 1 or any(count > 1 for count in dependents.values()):
            return "dag"
        return "sequential"

    def get_plan_summary(self, run_id: str) -> Dict[str, object]:
        plan = self._require_plan(run_id)
        completion = self.completion_of(plan)
        lines = []
        for index, node in enumerate(plan.nodes, 1):
            deps = f" (depends on: {len(node.dependencies)} tasks)" if node.dependencies else " (no dependencies)"
            lines.append(f"{index}. [{node.agent_type.value}] {node.description}{deps}")
        structure = self.structure_of(plan)
        return {
            "plan_id": plan.id,
            "status": plan.status.value,
            "structure": structure,
            "total": completion.total,
            "completed": completion.completed,
            "failed": completion.failed,
            "pending": completion.pending,
            "by_status": self.count_by_status(run_id),
            "text": f"Plan ({structure}): {len(plan.nodes)} tasks\n" + "\n".join(lines),
        }

    # ========== Internals ==========

    def _require_plan(self, run_id: str) -> TaskPlan:
        plan = self._plans.get(run_id)
        if plan is None:
            raise PlanNotFoundError(f"No active plan for run {run_id}", "No plan exists yet. Create one with create_task_plan.")
        return plan

    def _require_node(self, run_id: str, node_id: str) -> TaskNode:
        node = self._require_plan(run_id).get_node(node_id)
        if node is None:
            raise TaskNotFoundError(f"Task not found: {node_id}")
        return node

    @staticmethod
    def _snapshot_node(node: TaskNode) -> TaskNode:
        return copy.deepcopy(node)

    @staticmethod
    def _check_acyclic(nodes: Sequence[TaskNode]) -> None:
        cycle = find_cycle({n.id: n.dependencies for n in nodes})
        if cycle:
            raise PlanValidationError([f"Circular dependency detected: {' -> '.join(cycle)}"])

    async def _refresh_plan_status(self, run_id: str) -> None:
        plan = self._require_plan(run_id)
        completion = self.completion_of(plan)
        if completion.is_complete and plan.nodes:
            plan.status = PlanStatus.COMPLETED if completion.is_success else PlanStatus.FAILED
            await self.store.save_plan(plan)


__all__ = [
    "PlanValidation",
    "PlanCreation",
    "PlanStructure",
    "find_cycle",
    "validate_task_inputs",
    "TaskPlanService",
]
