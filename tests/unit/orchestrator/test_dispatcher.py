"""Unit tests for orchestrator action dispatch."""

from unittest.mock import AsyncMock

import pytest

from assistantOrchestrator.agents.manager import SubAgentManager
from assistantOrchestrator.config.settings import GuardSettings, OrchestratorSettings
from assistantOrchestrator.domain.models import RunMode, RunState, RunStatus, TaskStatus
from assistantOrchestrator.guard.loop_guard import LoopGuard
from assistantOrchestrator.orchestrator.context import RunContext
from assistantOrchestrator.orchestrator.handlers import ActionDispatcher, extract_file_path, file_action
from assistantOrchestrator.planning.dag import TaskPlanService
from assistantOrchestrator.ports.events import EventEmitter, InMemoryEventBus
from assistantOrchestrator.ports.memory import InMemoryMemoryStore
from assistantOrchestrator.ports.store import InMemoryStateStore
from tests.conftest import FakeToolInvoker, ScriptedOracle, Turn

RUN = "run-1"

PLAN_ARGS = {
    "reasoning": "Flights first, then hotel and car",
    "tasks": [
        {"tempId": "flights", "description": "Find flights", "agentType": "research"},
        {"tempId": "hotel", "description": "Book hotel", "dependencies": ["flights"]},
        {"tempId": "car", "description": "Rent a car", "dependencies": ["flights"]},
    ],
}


def make_context(tools=None, agent_turns=None, max_retries=3, max_interventions=10):
    oracle = ScriptedOracle(agent_turns=agent_turns)
    tools = tools or FakeToolInvoker()
    store = InMemoryStateStore()
    bus = InMemoryEventBus()
    ctx = RunContext(
        run=RunState(run_id=RUN, user_id="user-1"),
        oracle=oracle,
        plans=TaskPlanService(store),
        guard=LoopGuard(GuardSettings(max_retries_per_task=max_retries, max_total_interventions=max_interventions)),
        agents=SubAgentManager(oracle, tools, store=store),
        tool_invoker=tools,
        emitter=EventEmitter(bus, RUN),
        settings=OrchestratorSettings(),
        store=store,
        memory=InMemoryMemoryStore(),
    )
    return ctx, bus


@pytest.fixture
def dispatcher():
    return ActionDispatcher()


async def create_plan(dispatcher, ctx):
    payload = await dispatcher.dispatch(ctx, "create_task_plan", PLAN_ARGS)
    assert payload["success"], payload
    return {t["temp_id"]: t["id"] for t in payload["tasks"]}


class TestCreatePlan:
    @pytest.mark.asyncio
    async def test_payload_and_events(self, dispatcher):
        ctx, bus = make_context()
        payload = await dispatcher.dispatch(ctx, "create_task_plan", PLAN_ARGS)

        assert payload["structure"] == "dag"
        ids = {t["temp_id"]: t["id"] for t in payload["tasks"]}
        assert payload["ready_task_ids"] == [ids["flights"]]
        assert ctx.run.plan_id == payload["plan_id"]
        assert ctx.mode == RunMode.PLANNING
        assert ctx.run.status == RunStatus.EXECUTING

        created = bus.events_of_type(RUN, "plan.created")[0].data
        assert created["task_count"] == 3
        assert created["reasoning"] == "Flights first, then hotel and car"
        assert bus.events_of_type(RUN, "orchestrator.status")[0].data["status"] == "executing"

    @pytest.mark.asyncio
    async def test_invalid_plan_is_payload(self, dispatcher):
        ctx, bus = make_context()
        payload = await dispatcher.dispatch(ctx, "create_task_plan", {
            "tasks": [{"tempId": "a", "description": "x", "dependencies": ["ghost"]}],
        })

        assert not payload["success"]
        assert "unknown task: ghost" in payload["error"]
        assert not ctx.plans.has_plan(RUN)
        assert bus.events(RUN) == []

    @pytest.mark.asyncio
    async def test_malformed_arguments(self, dispatcher):
        ctx, _ = make_context()
        payload = await dispatcher.dispatch(ctx, "start_agent", {})
        assert not payload["success"]
        assert payload["error"].startswith("Invalid arguments for start_agent")


class TestModifyPlan:
    @pytest.mark.asyncio
    async def test_requires_plan(self, dispatcher):
        ctx, _ = make_context()
        payload = await dispatcher.dispatch(ctx, "modify_plan", {"action": "add", "newTask": {"description": "x"}})
        assert payload == {"success": False, "error": "No plan exists for this run"}

    @pytest.mark.asyncio
    async def test_add_and_event(self, dispatcher):
        ctx, bus = make_context()
        ids = await create_plan(dispatcher, ctx)
        payload = await dispatcher.dispatch(ctx, "modify_plan", {
            "action": "add",
            "reason": "need insurance",
            "newTask": {"description": "Buy travel insurance", "dependencies": [ids["flights"]]},
        })

        assert payload["success"]
        assert payload["task"]["dependencies"] == [ids["flights"]]
        modified = bus.events_of_type(RUN, "plan.modified")[0].data
        assert modified["modification"] == "add"
        assert modified["affected_task_ids"] == [payload["task"]["id"]]

    @pytest.mark.asyncio
    async def test_update_only_touches_given_fields(self, dispatcher):
        ctx, _ = make_context()
        ids = await create_plan(dispatcher, ctx)
        payload = await dispatcher.dispatch(ctx, "modify_plan", {
            "action": "update",
            "taskId": ids["flights"],
            "newTask": {"description": "Find cheap flights"},
        })

        assert payload["task"]["description"] == "Find cheap flights"
        assert payload["task"]["agent_type"] == "research"

    @pytest.mark.asyncio
    async def test_missing_fields(self, dispatcher):
        ctx, _ = make_context()
        ids = await create_plan(dispatcher, ctx)

        assert "task_id is required" in (await dispatcher.dispatch(ctx, "modify_plan", {"action": "remove"}))["error"]
        reorder = await dispatcher.dispatch(ctx, "modify_plan", {"action": "reorder", "taskId": ids["car"]})
        assert "new_dependencies is required" in reorder["error"]

    @pytest.mark.asyncio
    async def test_remove_with_dependents_rejected(self, dispatcher):
        ctx, _ = make_context()
        ids = await create_plan(dispatcher, ctx)
        payload = await dispatcher.dispatch(ctx, "modify_plan", {"action": "remove", "taskId": ids["flights"]})
        assert not payload["success"]
        assert "dependents" in payload["error"]


class TestStartAgent:
    @pytest.mark.asyncio
    async def test_start_ready_task(self, dispatcher):
        ctx, bus = make_context()
        ids = await create_plan(dispatcher, ctx)
        payload = await dispatcher.dispatch(ctx, "start_agent", {"taskId": ids["flights"]})

        assert payload["success"]
        assert payload["agent_id"] in ctx.run.active_agent_ids
        node = ctx.plans.get_node(RUN, ids["flights"])
        assert node.status == TaskStatus.IN_PROGRESS
        assert node.assigned_agent_id == payload["agent_id"]

        started = bus.events_of_type(RUN, "task.started")[0]
        assert started.agent_id == payload["agent_id"]
        assert started.data["agent_type"] == "research"
        await ctx.agents.wait_for_agent(payload["agent_id"])

    @pytest.mark.asyncio
    async def test_blocked_task_reports_dependencies(self, dispatcher):
        ctx, _ = make_context()
        ids = await create_plan(dispatcher, ctx)
        payload = await dispatcher.dispatch(ctx, "start_agent", {"taskId": ids["hotel"]})

        assert not payload["success"]
        assert payload["error"] == f"Task dependencies are not complete: {ids['flights']}"
        assert ctx.agents.get_run_agents(RUN) == []

    @pytest.mark.asyncio
    async def test_running_task_cannot_start_twice(self, dispatcher):
        ctx, _ = make_context(agent_turns=lambda m, o: Turn(text="ok", delay=0.05))
        ids = await create_plan(dispatcher, ctx)
        first = await dispatcher.dispatch(ctx, "start_agent", {"taskId": ids["flights"]})
        second = await dispatcher.dispatch(ctx, "start_agent", {"taskId": ids["flights"]})

        assert second == {"success": False, "error": "Task is not pending: in_progress"}
        await ctx.agents.wait_for_agent(first["agent_id"])

    @pytest.mark.asyncio
    async def test_unknown_task(self, dispatcher):
        ctx, _ = make_context()
        await create_plan(dispatcher, ctx)
        payload = await dispatcher.dispatch(ctx, "start_agent", {"taskId": "ghost"})
        assert not payload["success"]
        assert "ghost" in payload["error"]


class TestInterventions:
    @pytest.mark.asyncio
    async def test_guide_counts_against_limit(self, dispatcher):
        ctx, bus = make_context(agent_turns=lambda m, o: Turn(text="ok", delay=0.2), max_interventions=2)
        ids = await create_plan(dispatcher, ctx)
        agent_id = (await dispatcher.dispatch(ctx, "start_agent", {"taskId": ids["flights"]}))["agent_id"]

        first = await dispatcher.dispatch(ctx, "intervene_agent", {
            "agentId": agent_id, "action": "guide", "guidance": "prefer morning flights",
        })
        assert first["success"] and first["delivered"]
        assert first["interventions_remaining"] == 1
        assert ctx.run.total_interventions == 1

        second = await dispatcher.dispatch(ctx, "intervene_agent", {
            "agentId": agent_id, "action": "redirect", "guidance": "use trains",
        })
        assert "warning" in second

        denied = await dispatcher.dispatch(ctx, "intervene_agent", {
            "agentId": agent_id, "action": "guide", "guidance": "again",
        })
        assert denied["success"] is False and denied["allowed"] is False

        events = bus.events_of_type(RUN, "agent.intervention")
        assert [e.data["intervention_count"] for e in events] == [1, 2]
        await ctx.agents.cleanup_run(RUN, timeout=0.5)

    @pytest.mark.asyncio
    async def test_guidance_required(self, dispatcher):
        ctx, _ = make_context(agent_turns=lambda m, o: Turn(text="ok", delay=0.2))
        ids = await create_plan(dispatcher, ctx)
        agent_id = (await dispatcher.dispatch(ctx, "start_agent", {"taskId": ids["flights"]}))["agent_id"]

        payload = await dispatcher.dispatch(ctx, "intervene_agent", {"agentId": agent_id, "action": "guide"})
        assert payload == {"success": False, "error": "guidance is required for guide"}
        await ctx.agents.cleanup_run(RUN, timeout=0.5)

    @pytest.mark.asyncio
    async def test_unknown_agent_rejected(self, dispatcher):
        ctx, _ = make_context()
        payload = await dispatcher.dispatch(ctx, "intervene_agent", {"agentId": "ghost", "action": "cancel"})
        assert payload == {"success": False, "error": "Agent not active: ghost"}

        payload = await dispatcher.dispatch(ctx, "cancel_agent", {"agentId": "ghost"})
        assert payload == {"success": False, "error": "Agent not active: ghost"}

        payload = await dispatcher.dispatch(ctx, "monitor_agent", {"agentId": "ghost"})
        assert payload == {"success": False, "error": "Agent not found: ghost"}
        assert ctx.run.total_interventions == 0

    @pytest.mark.asyncio
    async def test_cancel_agent_cancels_task(self, dispatcher):
        ctx, bus = make_context(agent_turns=lambda m, o: Turn(text="ok", delay=0.2))
        ids = await create_plan(dispatcher, ctx)
        agent_id = (await dispatcher.dispatch(ctx, "start_agent", {"taskId": ids["flights"]}))["agent_id"]

        payload = await dispatcher.dispatch(ctx, "cancel_agent", {"agentId": agent_id, "reason": "plans changed"})

        assert payload["success"]
        assert agent_id not in ctx.run.active_agent_ids
        assert ctx.plans.get_node(RUN, ids["flights"]).status == TaskStatus.CANCELLED
        assert bus.events_of_type(RUN, "task.failed")[0].data["cancelled"] is True
        outcome = await ctx.agents.wait_for_agent(agent_id)
        assert outcome.error == "Agent was cancelled: plans changed"


class TestTaskOutcomes:
    @pytest.mark.asyncio
    async def test_mark_complete_unblocks_dependents(self, dispatcher):
        ctx, bus = make_context()
        ids = await create_plan(dispatcher, ctx)
        payload = await dispatcher.dispatch(ctx, "mark_task_complete", {
            "taskId": ids["flights"], "summary": "LH123 booked",
        })

        assert set(payload["ready_task_ids"]) == {ids["hotel"], ids["car"]}
        completed = bus.events_of_type(RUN, "task.completed")[0].data
        assert completed["success"] is True
        assert completed["result"] == {"summary": "LH123 booked"}

    @pytest.mark.asyncio
    async def test_mark_failed_without_retry(self, dispatcher):
        ctx, bus = make_context()
        ids = await create_plan(dispatcher, ctx)
        payload = await dispatcher.dispatch(ctx, "mark_task_failed", {"taskId": ids["flights"], "error": "no seats"})

        assert payload == {"success": True, "can_retry": False}
        assert ctx.plans.get_node(RUN, ids["flights"]).status == TaskStatus.FAILED
        assert bus.events_of_type(RUN, "task.failed")[0].data["will_retry"] is False
        assert bus.events_of_type(RUN, "task.completed")[0].data["success"] is False

    @pytest.mark.asyncio
    async def test_retry_then_denial(self, dispatcher):
        ctx, bus = make_context(max_retries=1)
        ids = await create_plan(dispatcher, ctx)
        args = {"taskId": ids["flights"], "error": "timeout", "shouldRetry": True}

        retry = await dispatcher.dispatch(ctx, "mark_task_failed", args)
        assert retry["can_retry"] is True
        assert retry["retries_remaining"] == 0
        assert "warning" in retry
        node = ctx.plans.get_node(RUN, ids["flights"])
        assert node.status == TaskStatus.PENDING and node.retry_count == 1
        assert ctx.run.loop_counters[ids["flights"]] == 1

        denied = await dispatcher.dispatch(ctx, "mark_task_failed", args)
        assert denied["can_retry"] is False
        assert "maximum retry limit (1)" in denied["reason"]
        failed = ctx.plans.get_node(RUN, ids["flights"])
        assert failed.status == TaskStatus.FAILED
        assert failed.result == {"error": "timeout (max retries reached)"}

        will_retry = [e.data["will_retry"] for e in bus.events_of_type(RUN, "task.failed")]
        assert will_retry == [True, False]

    @pytest.mark.asyncio
    async def test_mark_failed_cancels_running_agent(self, dispatcher):
        ctx, _ = make_context(agent_turns=lambda m, o: Turn(text="ok", delay=0.2))
        ids = await create_plan(dispatcher, ctx)
        agent_id = (await dispatcher.dispatch(ctx, "start_agent", {"taskId": ids["flights"]}))["agent_id"]

        await dispatcher.dispatch(ctx, "mark_task_failed", {"taskId": ids["flights"], "error": "stuck"})

        outcome = await ctx.agents.wait_for_agent(agent_id)
        assert not outcome.success
        assert agent_id not in ctx.run.active_agent_ids


class TestMisc:
    @pytest.mark.asyncio
    async def test_plan_status(self, dispatcher):
        ctx, _ = make_context()
        assert not (await dispatcher.dispatch(ctx, "get_plan_status", {}))["success"]

        ids = await create_plan(dispatcher, ctx)
        payload = await dispatcher.dispatch(ctx, "get_plan_status", {})
        status = payload["status"]
        assert status["total_tasks"] == 3
        assert status["pending"] == 3
        assert [t["id"] for t in status["ready_to_start"]] == [ids["flights"]]
        assert status["is_complete"] is False
        assert payload["summary"].startswith("Plan (dag): 3 tasks\n1. ")

    @pytest.mark.asyncio
    async def test_store_memory(self, dispatcher):
        ctx, _ = make_context()
        payload = await dispatcher.dispatch(ctx, "store_memory", {"content": "Prefers aisle seats", "category": "preference"})
        assert payload["success"]

        found = await ctx.memory.search("user-1", "aisle seats")
        assert found[0].content == "Prefers aisle seats"
        assert found[0].metadata["category"] == "preference"

    @pytest.mark.asyncio
    async def test_respond_to_user(self, dispatcher):
        ctx, _ = make_context()
        payload = await dispatcher.dispatch(ctx, "respond_to_user", {"content": "All set", "includeArtifacts": True})
        assert payload == {"success": True, "content": "All set", "artifacts": []}

    @pytest.mark.asyncio
    async def test_pass_through_captures_file_writes(self, dispatcher):
        tools = FakeToolInvoker({"file_write": lambda path, content: "written"})
        ctx, _ = make_context(tools=tools)
        payload = await dispatcher.dispatch(ctx, "file_write", {"path": "notes.md", "content": "hi"})

        assert payload == {"success": True, "output": "written"}
        capture = tools.calls_to("session_capture_file")[0]["args"]
        assert capture == {"run_id": RUN, "file_path": "notes.md", "action": "create"}

    @pytest.mark.asyncio
    async def test_pass_through_failure_is_payload(self, dispatcher):
        tools = FakeToolInvoker()
        ctx, _ = make_context(tools=tools)
        payload = await dispatcher.dispatch(ctx, "file_write", {"path": "x"})

        assert payload == {"success": False, "error": "Unknown tool: file_write"}
        assert tools.calls_to("session_capture_file") == []

    @pytest.mark.asyncio
    async def test_pass_through_invoker_exception_is_payload(self, dispatcher):
        tools = FakeToolInvoker()
        tools.invoke = AsyncMock(side_effect=ConnectionError("tool server down"))
        ctx, _ = make_context(tools=tools)
        payload = await dispatcher.dispatch(ctx, "file_write", {"path": "x"})

        assert payload == {"success": False, "error": "tool server down"}
        tools.invoke.assert_awaited_once()


@pytest.mark.parametrize(
    "tool_id, expected",
    [
        ("fs.write_file", "create"),
        ("delete_file", "delete"),
        ("fs.move", "rename"),
        ("fs.copy", "copy"),
        ("edit_file", "modify"),
    ],
)
def test_file_action(tool_id, expected):
    assert file_action(tool_id) == expected


def test_extract_file_path():
    assert extract_file_path({"filePath": "a.txt"}) == "a.txt"
    assert extract_file_path({"path": ""}) is None
