"""Unit tests for codeword-triggered scripted plans."""

import pytest

from assistantOrchestrator.domain.actions import TaskInput
from assistantOrchestrator.domain.models import AgentType, TaskNode, TaskPlan, TaskStatus
from assistantOrchestrator.orchestrator.scripted import (
    ScriptedPlan,
    ScriptedPlanRegistry,
    build_scripted_response,
)
from assistantOrchestrator.runtime.app import DEFAULT_SCRIPTED_PLANS_PATH
from tests.conftest import ScriptedOracle, Turn, build_harness

USER = "user-1"


@pytest.fixture
def registry():
    return ScriptedPlanRegistry.from_yaml(DEFAULT_SCRIPTED_PLANS_PATH)


def scripted_harness(registry, oracle=None, **overrides):
    values = {"enable_scripted_plans": True, "scripted_poll_interval": 0.05}
    values.update(overrides)
    harness = build_harness(oracle or ScriptedOracle(), **values)
    harness.service.scripted_plans = registry
    return harness


class TestRegistry:
    def test_bundled_plans(self, registry):
        assert registry.codewords() == ["morning-briefing", "research-digest"]
        plan = registry.match("morning-briefing")
        assert plan.title == "Morning Briefing"
        assert [t.temp_id for t in plan.tasks] == ["agenda", "inbox", "briefing"]
        assert plan.tasks[2].dependencies == ["agenda", "inbox"]
        assert plan.tasks[0].agent_type == "scheduling"

    def test_match_is_case_and_whitespace_insensitive(self, registry):
        assert registry.match("  Research-Digest \n").codeword == "research-digest"
        assert registry.match("research digest") is None

    def test_missing_file_gives_empty_registry(self, tmp_path):
        assert len(ScriptedPlanRegistry.from_yaml(tmp_path / "nope.yaml")) == 0

    def test_snake_case_keys(self, tmp_path):
        path = tmp_path / "plans.yaml"
        path.write_text(
            "plans:\n"
            "  Demo:\n"
            "    display_name: Demo run\n"
            "    tasks:\n"
            "      - temp_id: a\n"
            "        description: Do it\n",
            encoding="utf-8",
        )
        plan = ScriptedPlanRegistry.from_yaml(path).match("demo")
        assert plan.title == "Demo run"
        assert plan.tasks[0].temp_id == "a"


def test_build_scripted_response():
    plan = ScriptedPlan(codeword="demo", display_name="Demo", description="A demo plan.")
    final = TaskPlan(id="p", run_id="r", reasoning="")
    final.nodes = [
        TaskNode(id="1", plan_id="p", description="First", agent_type=AgentType.GENERAL, status=TaskStatus.COMPLETED),
        TaskNode(
            id="2",
            plan_id="p",
            description="Second",
            agent_type=AgentType.GENERAL,
            status=TaskStatus.FAILED,
            result={"error": "boom"},
        ),
    ]

    report = build_scripted_response(plan, final)

    assert report.startswith("# Demo - Completed\n\nA demo plan.")
    assert "- **Completed Tasks**: 1" in report
    assert "- **Failed Tasks**: 1" in report
    assert "1. First" in report
    assert "1. Second - boom" in report


class TestExecution:
    @pytest.mark.asyncio
    async def test_codeword_runs_plan_without_oracle(self, registry):
        harness = scripted_harness(registry)
        result = await harness.service.execute_run(USER, "run-s", "Morning-Briefing")

        assert result.success, result.error
        assert result.tasks_completed == 3
        assert result.tasks_failed == 0
        assert result.response.startswith("# Morning Briefing - Completed")
        assert harness.oracle.calls == []
        assert len(harness.oracle.agent_calls) == 3

        assert len(harness.events("run-s", "plan.created")) == 1
        assert len(harness.events("run-s", "task.started")) == 3
        assert harness.events("run-s")[-1].type == "agent.final"
        assert harness.tools.calls_to("session_start")
        assert harness.tools.calls_to("session_end")

    @pytest.mark.asyncio
    async def test_dependents_start_after_upstream(self, registry):
        harness = scripted_harness(registry)
        await harness.service.execute_run(USER, "run-s", "morning-briefing")

        briefing_call = harness.oracle.agent_calls[-1]
        briefing = briefing_call[0].content
        assert "Combine the agenda" in briefing
        assert "## Context from Previous Tasks" in briefing

    @pytest.mark.asyncio
    async def test_failed_dependency_cancels_blocked_tasks(self, registry):
        def agent_turns(messages, options):
            if "Review today's calendar" in messages[0].content:
                return Turn(error=RuntimeError("calendar offline"))
            return Turn(text="done")

        harness = scripted_harness(registry, ScriptedOracle(agent_turns=agent_turns))
        result = await harness.service.execute_run(USER, "run-s", "morning-briefing")

        assert not result.success
        assert result.tasks_completed == 1
        assert result.tasks_failed == 2
        assert "calendar offline" in result.response
        assert "Blocked by failed dependency" in result.response

    @pytest.mark.asyncio
    async def test_timeout_fails_run(self, registry):
        harness = scripted_harness(
            registry,
            ScriptedOracle(agent_turns=lambda m, o: Turn(text="late", delay=1.0)),
            scripted_timeout_seconds=0.3,
        )
        result = await harness.service.execute_run(USER, "run-s", "research-digest")

        assert not result.success
        assert "timed out" in result.error
        error = harness.events("run-s", "agent.error")[0].data
        assert error["code"] == "SCRIPTED_PLAN_ERROR"

    @pytest.mark.asyncio
    async def test_disabled_uses_control_loop(self, registry):
        oracle = ScriptedOracle([Turn(text="Good morning!")])
        harness = scripted_harness(registry, oracle, enable_scripted_plans=False)
        result = await harness.service.execute_run(USER, "run-s", "morning-briefing")

        assert result.success
        assert result.response == "Good morning!"
        assert result.plan_id is None

    @pytest.mark.asyncio
    async def test_non_codeword_uses_control_loop(self, registry):
        oracle = ScriptedOracle([Turn(text="Sure.")])
        harness = scripted_harness(registry, oracle)
        result = await harness.service.execute_run(USER, "run-s", "morning briefing please")

        assert result.response == "Sure."
        assert len(oracle.calls) == 1


def test_task_input_dump_round_trips_through_aliases():
    task = TaskInput(temp_id="a", description="x", agent_type="research", dependencies=["b"])
    assert TaskInput.model_validate(task.model_dump()) == task
