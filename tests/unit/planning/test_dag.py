"""Unit tests for the task plan (DAG) manager."""

import random

import pytest

from assistantOrchestrator.domain.actions import TaskInput
from assistantOrchestrator.domain.models import PlanStatus, TaskStatus
from assistantOrchestrator.planning.dag import TaskPlanService, find_cycle, validate_task_inputs
from assistantOrchestrator.ports.store import InMemoryStateStore
from assistantOrchestrator.utils.error_handler import PlanNotFoundError, PlanValidationError, TaskNotFoundError

RUN = "run-1"


def task(temp_id, deps=(), agent_type="general", description=None):
    return TaskInput(
        temp_id=temp_id,
        description=description or f"Task {temp_id}",
        agent_type=agent_type,
        dependencies=list(deps),
    )


@pytest.fixture
def store():
    return InMemoryStateStore()


@pytest.fixture
def plans(store):
    return TaskPlanService(store)


async def make_plan(plans, tasks):
    creation = await plans.create_plan_from_input(RUN, "because", tasks)
    return creation.id_map


class TestFindCycle:
    def test_acyclic_graph(self):
        assert find_cycle({"a": [], "b": ["a"], "c": ["a", "b"]}) is None

    def test_detects_cycle(self):
        cycle = find_cycle({"a": ["c"], "b": ["a"], "c": ["b"]})
        assert cycle is not None
        assert cycle[0] == cycle[-1]
        assert set(cycle) == {"a", "b", "c"}

    def test_unknown_dependencies_are_leaves(self):
        assert find_cycle({"a": ["external"]}) is None


class TestValidateTaskInputs:
    def test_empty_plan(self):
        assert validate_task_inputs([]).errors == ["Plan must contain at least one task"]

    def test_unknown_dependency(self):
        result = validate_task_inputs([task("a", deps=["x"])])
        assert not result.valid
        assert "depends on unknown task: x" in result.errors[0]

    def test_duplicate_and_self_dependency(self):
        result = validate_task_inputs([task("a"), task("a"), task("b", deps=["b"])])
        assert any("Duplicate task id: a" in e for e in result.errors)
        assert any("cannot depend on itself" in e for e in result.errors)

    def test_invalid_agent_type(self):
        result = validate_task_inputs([task("a", agent_type="plumber")])
        assert "invalid agent type 'plumber'" in result.errors[0]

    def test_cycle_reported(self):
        result = validate_task_inputs([task("a", deps=["b"]), task("b", deps=["a"])])
        assert any(e.startswith("Circular dependency detected") for e in result.errors)

    def test_validation_is_idempotent(self):
        tasks = [task("a"), task("b", deps=["a"])]
        assert validate_task_inputs(tasks) == validate_task_inputs(tasks)

    def test_large_plan_warnings(self):
        result = validate_task_inputs([task(str(i)) for i in range(12)])
        assert result.valid
        assert len(result.warnings) == 2


class TestPlanLifecycle:
    @pytest.mark.asyncio
    async def test_create_plan_maps_temp_ids(self, plans, store):
        id_map = await make_plan(plans, [task("a"), task("b", deps=["a"])])

        plan = plans.get_plan(RUN)
        assert plan.status == PlanStatus.EXECUTING
        assert set(id_map) == {"a", "b"}
        assert plan.get_node(id_map["b"]).dependencies == {id_map["a"]}
        assert (await store.get_plan_by_run(RUN)).id == plan.id

    @pytest.mark.asyncio
    async def test_invalid_plan_creates_nothing(self, plans):
        with pytest.raises(PlanValidationError):
            await plans.create_plan_from_input(RUN, "", [task("a", deps=["missing"])])
        assert not plans.has_plan(RUN)

    @pytest.mark.asyncio
    async def test_second_executing_plan_rejected(self, plans):
        await make_plan(plans, [task("a")])
        with pytest.raises(PlanValidationError, match="already has an executing plan"):
            await make_plan(plans, [task("b")])

    @pytest.mark.asyncio
    async def test_readiness_follows_completion(self, plans):
        ids = await make_plan(plans, [task("a"), task("b", deps=["a"]), task("c", deps=["a"])])

        assert [n.id for n in plans.get_ready_tasks(RUN).ready] == [ids["a"]]

        await plans.start_task(RUN, ids["a"], "agent-1")
        report = plans.get_ready_tasks(RUN)
        assert report.ready == []
        assert {n.id for n in report.waiting} == {ids["b"], ids["c"]}

        await plans.complete_task(RUN, ids["a"], "result A")
        assert {n.id for n in plans.get_ready_tasks(RUN).ready} == {ids["b"], ids["c"]}

    @pytest.mark.asyncio
    async def test_start_task_requires_readiness(self, plans):
        ids = await make_plan(plans, [task("a"), task("b", deps=["a"])])
        with pytest.raises(PlanValidationError, match="is not ready"):
            await plans.start_task(RUN, ids["b"], "agent-1")

    @pytest.mark.asyncio
    async def test_upstream_context_includes_completed_results(self, plans):
        ids = await make_plan(plans, [task("a", description="Find flights"), task("b", deps=["a"])])
        await plans.start_task(RUN, ids["a"], "agent-1")
        await plans.complete_task(RUN, ids["a"], {"flight": "LH123"})

        context = plans.get_upstream_context(RUN, ids["b"])
        assert "## Result from: Find flights" in context
        assert "LH123" in context

    @pytest.mark.asyncio
    async def test_completion_counts_and_plan_status(self, plans):
        ids = await make_plan(plans, [task("a"), task("b")])
        await plans.start_task(RUN, ids["a"], "agent-1")
        await plans.complete_task(RUN, ids["a"], "ok")
        assert not plans.is_complete(RUN)

        await plans.fail_task(RUN, ids["b"], "boom")
        completion = plans.get_plan_completion(RUN)
        assert completion.is_complete
        assert not completion.is_success
        assert (completion.completed, completion.failed, completion.pending) == (1, 1, 0)
        assert plans.get_plan(RUN).status == PlanStatus.FAILED

    @pytest.mark.asyncio
    async def test_reset_for_retry_clears_attempt(self, plans):
        ids = await make_plan(plans, [task("a")])
        await plans.start_task(RUN, ids["a"], "agent-1")
        await plans.fail_task(RUN, ids["a"], "timeout")

        node = await plans.reset_task_for_retry(RUN, ids["a"])
        assert node.status == TaskStatus.PENDING
        assert node.retry_count == 1
        assert node.result is None
        assert node.assigned_agent_id is None
        assert node.started_at is None and node.completed_at is None
        assert plans.get_plan(RUN).status == PlanStatus.EXECUTING

    @pytest.mark.asyncio
    async def test_reset_requires_failed_task(self, plans):
        ids = await make_plan(plans, [task("a")])
        with pytest.raises(PlanValidationError, match="Only failed tasks"):
            await plans.reset_task_for_retry(RUN, ids["a"])

    @pytest.mark.asyncio
    async def test_reads_return_copies(self, plans):
        ids = await make_plan(plans, [task("a")])
        node = plans.get_node(RUN, ids["a"])
        node.status = TaskStatus.COMPLETED
        assert plans.get_node(RUN, ids["a"]).status == TaskStatus.PENDING

    def test_missing_plan_and_node(self, plans):
        with pytest.raises(PlanNotFoundError):
            plans.get_ready_tasks(RUN)

    @pytest.mark.asyncio
    async def test_unknown_node(self, plans):
        await make_plan(plans, [task("a")])
        with pytest.raises(TaskNotFoundError):
            plans.get_node(RUN, "nope")

    @pytest.mark.asyncio
    async def test_plan_summary(self, plans):
        await make_plan(plans, [task("a", agent_type="research"), task("b", ["a"])])
        summary = plans.get_plan_summary(RUN)

        assert summary["structure"] == "sequential"
        assert summary["total"] == 2
        assert summary["by_status"]["pending"] == 2
        assert summary["by_status"]["completed"] == 0
        assert summary["text"] == (
            "Plan (sequential): 2 tasks\n"
            "1. [research] Task a (no dependencies)\n"
            "2. [general] Task b (depends on: 1 tasks)"
        )


class TestPlanModification:
    @pytest.mark.asyncio
    async def test_add_task_depending_on_existing_node(self, plans):
        ids = await make_plan(plans, [task("a")])
        node = await plans.add_task(RUN, TaskInput(description="Follow up", dependencies=[ids["a"]]))
        assert node.dependencies == {ids["a"]}
        assert node.status == TaskStatus.PENDING

    @pytest.mark.asyncio
    async def test_add_task_reopens_finished_plan(self, plans):
        ids = await make_plan(plans, [task("a")])
        await plans.start_task(RUN, ids["a"], "agent-1")
        await plans.complete_task(RUN, ids["a"], "done")
        assert plans.get_plan(RUN).status == PlanStatus.COMPLETED

        await plans.add_task(RUN, TaskInput(description="One more"))
        assert plans.get_plan(RUN).status == PlanStatus.EXECUTING

    @pytest.mark.asyncio
    async def test_remove_task_with_dependents_rejected(self, plans):
        ids = await make_plan(plans, [task("a"), task("b", deps=["a"])])
        with pytest.raises(PlanValidationError, match="dependents"):
            await plans.remove_task(RUN, ids["a"])

        removed = await plans.remove_task(RUN, ids["b"])
        assert removed.status == TaskStatus.CANCELLED

    @pytest.mark.asyncio
    async def test_update_task(self, plans):
        ids = await make_plan(plans, [task("a")])
        node = await plans.update_task(RUN, ids["a"], description="  New text ", agent_type="research")
        assert node.description == "New text"
        assert node.agent_type.value == "research"

        with pytest.raises(PlanValidationError, match="Invalid agent type"):
            await plans.update_task(RUN, ids["a"], agent_type="nope")

    @pytest.mark.asyncio
    async def test_reorder_rejects_cycles(self, plans):
        ids = await make_plan(plans, [task("a"), task("b", deps=["a"])])
        with pytest.raises(PlanValidationError, match="Circular dependency"):
            await plans.reorder_task(RUN, ids["a"], [ids["b"]])

        node = await plans.reorder_task(RUN, ids["b"], [])
        assert node.dependencies == set()

    @pytest.mark.asyncio
    async def test_structure_classification(self, plans):
        await make_plan(plans, [task("a"), task("b", deps=["a"]), task("c", deps=["b"])])
        assert plans.get_plan_structure(RUN) == "sequential"

        other = "run-2"
        await plans.create_plan_from_input(other, "", [task("a"), task("b", deps=["a"]), task("c", deps=["a"])])
        assert plans.get_plan_structure(other) == "dag"


def _random_tasks(rng: random.Random, count: int):
    tasks = []
    for index in range(count):
        earlier = [f"t{j}" for j in range(index)]
        deps = rng.sample(earlier, k=rng.randint(0, min(3, len(earlier)))) if earlier else []
        tasks.append(task(f"t{index}", deps=deps))
    rng.shuffle(tasks)
    return tasks


class TestRandomPlans:
    @pytest.mark.asyncio
    @pytest.mark.parametrize("seed", range(10))
    async def test_scheduling_settles_every_node_in_dependency_order(self, seed):
        rng = random.Random(seed)
        plans = TaskPlanService(InMemoryStateStore())
        tasks = _random_tasks(rng, rng.randint(1, 12))
        ids = await make_plan(plans, tasks)
        deps_of = {ids[t.temp_id]: {ids[d] for d in t.dependencies} for t in tasks}

        finished = []
        while not plans.is_complete(RUN):
            ready = plans.get_ready_tasks(RUN).ready
            assert ready, "a non-complete acyclic plan always has a ready task"
            node = rng.choice(ready)
            assert deps_of[node.id] <= set(finished)
            await plans.start_task(RUN, node.id, f"agent-{node.id}")
            await plans.complete_task(RUN, node.id, "ok")
            finished.append(node.id)

        assert sorted(finished) == sorted(ids.values())
        assert plans.is_success(RUN)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("seed", range(20))
    async def test_snapshots_stay_consistent_mid_run(self, seed):
        rng = random.Random(seed)
        plans = TaskPlanService(InMemoryStateStore())
        ids = await make_plan(plans, _random_tasks(rng, rng.randint(1, 12)))
        running = []

        while True:
            nodes = {n.id: n for n in plans.get_plan(RUN).nodes}
            completion = plans.get_plan_completion(RUN)
            assert completion.completed + completion.failed + completion.pending == completion.total == len(ids)

            ready = {n.id for n in plans.get_ready_tasks(RUN).ready}
            expected = {
                n.id
                for n in nodes.values()
                if n.status == TaskStatus.PENDING
                and all(nodes[d].status == TaskStatus.COMPLETED for d in n.dependencies)
            }
            assert ready == expected

            if not ready and not running:
                break
            if ready and (not running or rng.random() < 0.5):
                node_id = rng.choice(sorted(ready))
                await plans.start_task(RUN, node_id, f"agent-{node_id}")
                running.append(node_id)
            else:
                node_id = running.pop(rng.randrange(len(running)))
                if rng.random() < 0.2:
                    await plans.fail_task(RUN, node_id, "boom")
                else:
                    await plans.complete_task(RUN, node_id, "ok")

        completion = plans.get_plan_completion(RUN)
        assert completion.is_complete == (completion.pending == 0)
        assert completion.is_success == (completion.is_complete and completion.failed == 0)

    @pytest.mark.parametrize("seed", range(10))
    def test_back_edge_always_detected(self, seed):
        rng = random.Random(seed)
        count = rng.randint(2, 10)
        graph = {f"t{i}": [f"t{i - 1}"] if i else [] for i in range(count)}
        head = f"t{rng.randint(0, count - 2)}"
        graph[head] = graph[head] + [f"t{count - 1}"]
        assert find_cycle(graph) is not None
