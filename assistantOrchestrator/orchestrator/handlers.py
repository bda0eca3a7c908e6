"""Action dispatch for the control loop.

Every oracle tool call is parsed into one action (see
``domain.actions``) and routed through a handler table keyed by action
type. The table is checked against ``ALL_ACTION_TYPES`` when the dispatcher
is built, so a new action without a handler fails at startup instead of
being silently ignored at runtime.

Handlers return JSON-serializable payloads carrying ``success``; expected
failures (unknown task, guard denial, invalid plan) are payloads, not
exceptions. Only fatal errors escape ``dispatch``.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional

from pydantic import ValidationError

from assistantOrchestrator.agents.manager import SpawnSpec
from assistantOrchestrator.domain.actions import (
    ALL_ACTION_TYPES,
    CancelAgentAction,
    CreatePlanAction,
    GetPlanStatusAction,
    InterveneAgentAction,
    MarkTaskCompleteAction,
    MarkTaskFailedAction,
    ModifyPlanAction,
    MonitorAgentAction,
    PassThroughAction,
    RespondToUserAction,
    StartAgentAction,
    StoreMemoryAction,
    parse_action,
)
from assistantOrchestrator.domain.models import RunMode, RunStatus, TaskNode, TaskStatus
from assistantOrchestrator.orchestrator.context import RunContext
from assistantOrchestrator.utils.error_handler import (
    FATAL_ERRORS,
    AgentNotFoundError,
    OrchestratorError,
    ToolInvocationError,
)
from assistantOrchestrator.utils.logging_utils import log_error, log_plan_created, log_tool_call, log_tool_result

LOGGER = logging.getLogger(__name__)

Payload = Dict[str, Any]
Handler = Callable[[RunContext, Any], Awaitable[Payload]]

FILE_OPERATION_TOOLS = frozenset({
    "fs.write_file",
    "fs.delete_file",
    "fs.create_directory",
    "fs.delete_directory",
    "fs.move",
    "fs.copy",
    "file_write",
    "file_delete",
    "write_file",
    "delete_file",
    "create_file",
    "edit_file",
    "rename_file",
})

_FILE_PATH_KEYS = ("path", "filePath", "file_path", "source", "destination", "target")

RECENT_REASONING_STEPS = 3


# ========== Helpers ==========

def extract_file_path(args: Dict[str, Any]) -> Optional[str]:
    for key in _FILE_PATH_KEYS:
        value = args.get(key)
        if isinstance(value, str) and value:
            return value
    return None


def file_action(tool_id: str) -> str:
    """Classify a file tool as create / delete / modify / rename / copy."""
    if "write" in tool_id or "create" in tool_id:
        return "create"
    if "delete" in tool_id or "remove" in tool_id:
        return "delete"
    if "move" in tool_id or "rename" in tool_id:
        return "rename"
    if "copy" in tool_id:
        return "copy"
    return "modify"


def _format_validation_error(error: ValidationError) -> str:
    parts = []
    for item in error.errors():
        location = ".".join(str(p) for p in item.get("loc", ())) or "arguments"
        parts.append(f"{location}: {item.get('msg', 'invalid')}")
    return "; ".join(parts)


def _task_brief(node: TaskNode) -> Dict[str, Any]:
    return {
        "id": node.id,
        "description": node.description,
        "agent_type": node.agent_type.value,
        "status": node.status.value,
        "dependencies": sorted(node.dependencies),
        "assigned_agent_id": node.assigned_agent_id,
        "retry_count": node.retry_count,
    }


async def emit_task_outcome(
    ctx: RunContext,
    task_id: str,
    success: bool,
    result: Any = None,
    error: Optional[str] = None,
    **extra: Any,
) -> None:
    """``task.completed`` for every settled task, plus ``task.failed`` for failures."""
    if success:
        await ctx.emitter.emit("task.completed", {"task_id": task_id, "success": True, "result": result, **extra})
        return
    await ctx.emitter.emit("task.failed", {"task_id": task_id, "error": error, **extra})
    await ctx.emitter.emit("task.completed", {"task_id": task_id, "success": False, "error": error, **extra})


class ActionDispatcher:
    """Routes parsed actions to their handlers."""

    def __init__(self) -> None:
        self._handlers: Dict[type, Handler] = {
            CreatePlanAction: self._create_plan,
            ModifyPlanAction: self._modify_plan,
            StartAgentAction: self._start_agent,
            MonitorAgentAction: self._monitor_agent,
            InterveneAgentAction: self._intervene_agent,
            CancelAgentAction: self._cancel_agent,
            MarkTaskCompleteAction: self._mark_task_complete,
            MarkTaskFailedAction: self._mark_task_failed,
            StoreMemoryAction: self._store_memory,
            RespondToUserAction: self._respond_to_user,
            GetPlanStatusAction: self._get_plan_status,
            PassThroughAction: self._pass_through,
        }
        missing = [t.__name__ for t in ALL_ACTION_TYPES if t not in self._handlers]
        if missing:
            raise RuntimeError(f"No handler registered for action(s): {', '.join(missing)}")

    async def dispatch(self, ctx: RunContext, name: str, args: Optional[Dict[str, Any]]) -> Payload:
        """Parse and execute one tool call, always returning a payload."""
        args = dict(args or {})
        log_tool_call(LOGGER, name, args)

        try:
            action = parse_action(name, args)
        except ValidationError as e:
            payload = {"success": False, "error": f"Invalid arguments for {name}: {_format_validation_error(e)}"}
            log_tool_result(LOGGER, name, payload, success=False)
            return payload

        handler = self._handlers[type(action)]
        try:
            payload = await handler(ctx, action)
        except FATAL_ERRORS:
            raise
        except OrchestratorError as e:
            LOGGER.warning(f"{name} rejected: {e}")
            payload = {"success": False, "error": e.user_message}
        except Exception as e:
            log_error(LOGGER, e, f"dispatching {name}")
            payload = {"success": False, "error": f"{name} failed: {e}"}

        log_tool_result(LOGGER, name, payload, success=bool(payload.get("success")))
        return payload

    # ========== Plan ==========

    async def _create_plan(self, ctx: RunContext, action: CreatePlanAction) -> Payload:
        creation = await ctx.plans.create_plan_from_input(ctx.run_id, action.reasoning, action.tasks)
        plan = creation.plan
        structure = ctx.plans.get_plan_structure(ctx.run_id)
        temp_ids = {node_id: temp_id for temp_id, node_id in creation.id_map.items()}

        ctx.run.plan_id = plan.id
        if ctx.mode == RunMode.DIRECT:
            ctx.mode = RunMode.PLANNING
        await ctx.set_status(RunStatus.EXECUTING, "Executing plan...")

        tasks = [node.to_dict() for node in plan.nodes]
        log_plan_created(LOGGER, {"id": plan.id, "structure": structure, "tasks": tasks})
        await ctx.emitter.emit(
            "plan.created",
            {
                "plan_id": plan.id,
                "task_count": len(plan.nodes),
                "structure": structure,
                "reasoning": plan.reasoning,
                "tasks": [
                    {
                        "id": t["id"],
                        "description": t["description"],
                        "agent_type": t["agent_type"],
                        "dependencies": t["dependencies"],
                    }
                    for t in tasks
                ],
            },
        )

        ready = ctx.plans.get_ready_tasks(ctx.run_id).ready
        payload: Payload = {
            "success": True,
            "plan_id": plan.id,
            "structure": structure,
            "tasks": [
                {
                    "id": node.id,
                    "temp_id": temp_ids.get(node.id),
                    "description": node.description,
                    "agent_type": node.agent_type.value,
                    "dependencies": sorted(node.dependencies),
                }
                for node in plan.nodes
            ],
            "ready_task_ids": [node.id for node in ready],
        }
        if creation.warnings:
            payload["warnings"] = creation.warnings
        return payload

    async def _modify_plan(self, ctx: RunContext, action: ModifyPlanAction) -> Payload:
        if not ctx.plans.has_plan(ctx.run_id):
            return {"success": False, "error": "No plan exists for this run"}

        if action.action == "add":
            if action.new_task is None:
                return {"success": False, "error": "new_task is required for add"}
            node = await ctx.plans.add_task(ctx.run_id, action.new_task)
        else:
            if not action.task_id:
                return {"success": False, "error": f"task_id is required for {action.action}"}
            if action.action == "remove":
                node = await ctx.plans.remove_task(ctx.run_id, action.task_id)
            elif action.action == "update":
                if action.new_task is None:
                    return {"success": False, "error": "new_task is required for update"}
                fields = action.new_task.model_fields_set
                node = await ctx.plans.update_task(
                    ctx.run_id,
                    action.task_id,
                    description=action.new_task.description if "description" in fields else None,
                    agent_type=action.new_task.agent_type if "agent_type" in fields else None,
                )
            else:
                if action.new_dependencies is None:
                    return {"success": False, "error": "new_dependencies is required for reorder"}
                node = await ctx.plans.reorder_task(ctx.run_id, action.task_id, action.new_dependencies)

        plan = ctx.plans.get_plan(ctx.run_id)
        await ctx.emitter.emit(
            "plan.modified",
            {
                "plan_id": plan.id if plan else None,
                "modification": action.action,
                "reason": action.reason,
                "affected_task_ids": [node.id],
            },
        )
        LOGGER.info(f"Plan modified ({action.action}): {node.id} - {action.reason}")
        return {"success": True, "action": action.action, "task": _task_brief(node)}

    # ========== Agents ==========

    async def _start_agent(self, ctx: RunContext, action: StartAgentAction) -> Payload:
        node = ctx.plans.get_node(ctx.run_id, action.task_id)
        if node.status != TaskStatus.PENDING:
            return {"success": False, "error": f"Task is not pending: {node.status.value}"}
        ready_ids = {n.id for n in ctx.plans.get_ready_tasks(ctx.run_id).ready}
        if node.id not in ready_ids:
            plan = ctx.plans.get_plan(ctx.run_id)
            blocking = [
                dep for dep in sorted(node.dependencies)
                if plan.get_node(dep) is None or plan.get_node(dep).status != TaskStatus.COMPLETED
            ]
            return {"success": False, "error": f"Task dependencies are not complete: {', '.join(blocking)}"}

        upstream = ctx.plans.get_upstream_context(ctx.run_id, node.id)
        handle = await ctx.agents.spawn_agent(
            ctx.run_id,
            SpawnSpec(
                task_node_id=node.id,
                agent_type=node.agent_type,
                task_description=node.description,
                upstream_context=upstream or None,
                additional_tools=list(action.additional_tools),
                instructions=action.instructions,
            ),
            user_id=ctx.user_id,
            emitter=ctx.emitter,
        )
        try:
            await ctx.plans.start_task(ctx.run_id, node.id, handle.id)
        except OrchestratorError:
            handle.cancel("Task could not be started")
            raise

        ctx.run.active_agent_ids.add(handle.id)
        await ctx.emitter.emit(
            "task.started",
            {
                "task_id": node.id,
                "description": node.description,
                "agent_type": node.agent_type.value,
            },
            agent_id=handle.id,
        )
        return {"success": True, "agent_id": handle.id, "task_id": node.id}

    async def _monitor_agent(self, ctx: RunContext, action: MonitorAgentAction) -> Payload:
        state = await ctx.agents.get_agent_state(action.agent_id)
        if state is None or state.run_id != ctx.run_id:
            raise AgentNotFoundError(f"Agent not found: {action.agent_id}")
        return {
            "success": True,
            "state": {
                "id": state.id,
                "status": state.status.value,
                "task_id": state.task_node_id,
                "task_description": state.task_description,
                "message_count": len(state.messages),
                "tool_call_count": len(state.tool_calls),
                "recent_reasoning": [s.content for s in state.reasoning_steps[-RECENT_REASONING_STEPS:]],
                "pending_guidance": state.pending_guidance,
                "artifact_count": len(state.artifacts),
                "tokens": state.total_tokens,
                "cost": state.total_cost,
            },
        }

    async def _intervene_agent(self, ctx: RunContext, action: InterveneAgentAction) -> Payload:
        handle = ctx.agents.get_agent(action.agent_id)
        if handle is None or handle.run_id != ctx.run_id or handle.done:
            raise AgentNotFoundError(f"Agent not active: {action.agent_id}")
        if action.action in ("guide", "redirect") and not action.guidance:
            return {"success": False, "error": f"guidance is required for {action.action}"}

        decision, record = await ctx.guard.try_intervene(ctx.run_id)
        if not decision.allowed:
            return {"success": False, "allowed": False, "error": decision.reason}
        ctx.run.total_interventions = record.new_count

        if action.action == "cancel":
            delivered = handle.cancel(action.reason or "Cancelled by orchestrator")
        else:
            delivered = handle.send_guidance(action.guidance, redirect=action.action == "redirect")

        await ctx.emitter.emit(
            "agent.intervention",
            {
                "task_id": handle.task_node_id,
                "action": action.action,
                "reason": action.reason,
                "guidance": action.guidance,
                "intervention_count": record.new_count,
            },
            agent_id=handle.id,
        )

        payload: Payload = {
            "success": True,
            "delivered": delivered,
            "interventions_used": record.new_count,
            "interventions_remaining": max(0, record.max_interventions - record.new_count),
        }
        if record.is_near_limit:
            payload["warning"] = "Approaching the intervention limit for this request"
        return payload

    async def _cancel_agent(self, ctx: RunContext, action: CancelAgentAction) -> Payload:
        handle = ctx.agents.get_agent(action.agent_id)
        if handle is None or handle.run_id != ctx.run_id or handle.done:
            raise AgentNotFoundError(f"Agent not active: {action.agent_id}")

        reason = action.reason or "Cancelled by orchestrator"
        handle.cancel(reason)
        ctx.run.active_agent_ids.discard(handle.id)

        node = ctx.plans.get_node(ctx.run_id, handle.task_node_id)
        if node.status == TaskStatus.IN_PROGRESS and node.assigned_agent_id == handle.id:
            await ctx.plans.cancel_task(ctx.run_id, node.id, reason)
            await emit_task_outcome(ctx, node.id, False, error=f"Cancelled: {reason}", cancelled=True)
        return {"success": True, "agent_id": handle.id, "task_id": handle.task_node_id}

    async def _cancel_node_agent(self, ctx: RunContext, node: TaskNode, reason: str) -> None:
        if node.status != TaskStatus.IN_PROGRESS or not node.assigned_agent_id:
            return
        if ctx.agents.cancel_agent(node.assigned_agent_id, reason):
            ctx.run.active_agent_ids.discard(node.assigned_agent_id)

    # ========== Task outcomes ==========

    async def _mark_task_complete(self, ctx: RunContext, action: MarkTaskCompleteAction) -> Payload:
        node = ctx.plans.get_node(ctx.run_id, action.task_id)
        await self._cancel_node_agent(ctx, node, "Task marked complete by orchestrator")

        result = action.result if action.result is not None else {"summary": action.summary}
        await ctx.plans.complete_task(ctx.run_id, action.task_id, result)
        await emit_task_outcome(ctx, action.task_id, True, result=result, summary=action.summary)

        ready = ctx.plans.get_ready_tasks(ctx.run_id).ready
        return {"success": True, "task_id": action.task_id, "ready_task_ids": [n.id for n in ready]}

    async def _mark_task_failed(self, ctx: RunContext, action: MarkTaskFailedAction) -> Payload:
        node = ctx.plans.get_node(ctx.run_id, action.task_id)
        await self._cancel_node_agent(ctx, node, "Task marked failed by orchestrator")

        if not action.should_retry:
            await ctx.plans.fail_task(ctx.run_id, action.task_id, action.error)
            await emit_task_outcome(ctx, action.task_id, False, error=action.error, will_retry=False)
            return {"success": True, "can_retry": False}

        decision, record = await ctx.guard.try_retry_task(ctx.run_id, action.task_id)
        if not decision.allowed:
            message = f"{action.error} (max retries reached)"
            await ctx.plans.fail_task(ctx.run_id, action.task_id, message)
            await emit_task_outcome(ctx, action.task_id, False, error=message, will_retry=False)
            return {"success": True, "can_retry": False, "reason": decision.reason}

        if node.status != TaskStatus.FAILED:
            await ctx.plans.fail_task(ctx.run_id, action.task_id, action.error)
        reset = await ctx.plans.reset_task_for_retry(ctx.run_id, action.task_id)
        ctx.run.loop_counters[action.task_id] = record.new_count
        await ctx.emitter.emit(
            "task.failed",
            {
                "task_id": action.task_id,
                "error": action.error,
                "will_retry": True,
                "retry_count": reset.retry_count,
                "retry_strategy": action.retry_strategy,
            },
        )
        payload: Payload = {
            "success": True,
            "can_retry": True,
            "retry_count": record.new_count,
            "retries_remaining": max(0, record.max_retries - record.new_count),
            "message": "Task reset to pending; start a new agent for it",
        }
        if record.is_last_retry:
            payload["warning"] = "This is the last retry allowed for this task"
        return payload

    # ========== Memory / status / response ==========

    async def _store_memory(self, ctx: RunContext, action: StoreMemoryAction) -> Payload:
        if ctx.memory is None:
            return {"success": False, "error": "Memory store is not configured"}
        record = await ctx.memory.store(ctx.user_id, action.content, {"category": action.category, **action.metadata})
        return {"success": True, "memory_id": record.id}

    async def _get_plan_status(self, ctx: RunContext, action: GetPlanStatusAction) -> Payload:
        plan = ctx.plans.get_plan(ctx.run_id)
        if plan is None:
            return {"success": False, "error": "No plan exists for this run"}

        report = ctx.plans.get_ready_tasks(ctx.run_id)
        completion = ctx.plans.completion_of(plan)
        return {
            "success": True,
            "status": {
                "plan_id": plan.id,
                "status": plan.status.value,
                "structure": ctx.plans.structure_of(plan),
                "total_tasks": completion.total,
                "completed": completion.completed,
                "failed": completion.failed,
                "pending": completion.pending,
                "ready_to_start": [
                    {"id": n.id, "description": n.description, "agent_type": n.agent_type.value}
                    for n in report.ready
                ],
                "tasks": [_task_brief(n) for n in plan.nodes],
                "active_agents": [
                    {
                        "id": a.id,
                        "task_id": a.task_node_id,
                        "agent_type": a.agent_type.value,
                        "status": a.status.value,
                    }
                    for a in ctx.agents.get_active_agents(ctx.run_id)
                ],
                "is_complete": completion.is_complete,
                "is_success": completion.is_success,
            },
            "summary": ctx.plans.get_plan_summary(ctx.run_id)["text"],
        }

    async def _respond_to_user(self, ctx: RunContext, action: RespondToUserAction) -> Payload:
        payload: Payload = {"success": True, "content": action.content}
        if action.include_artifacts:
            wanted = set(action.artifact_ids)
            artifacts: List[Dict[str, Any]] = []
            for agent in ctx.agents.get_run_agents(ctx.run_id):
                for artifact in agent.artifacts:
                    if wanted and artifact.id not in wanted:
                        continue
                    artifacts.append({
                        "id": artifact.id,
                        "type": artifact.type,
                        "name": artifact.name,
                        "content": artifact.content,
                        "agent_id": agent.id,
                    })
            payload["artifacts"] = artifacts
        return payload

    # ========== Pass-through ==========

    async def _pass_through(self, ctx: RunContext, action: PassThroughAction) -> Payload:
        try:
            result = await ctx.tool_invoker.invoke(ctx.user_id, action.tool_name, action.args)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            raise ToolInvocationError(f"Tool {action.tool_name} raised: {e}", str(e) or type(e).__name__) from e

        if result.success and action.tool_name in FILE_OPERATION_TOOLS:
            path = extract_file_path(action.args)
            if path:
                await ctx.side_channel(
                    "session_capture_file",
                    {"run_id": ctx.run_id, "file_path": path, "action": file_action(action.tool_name)},
                )
        return result.to_payload()


__all__ = [
    "FILE_OPERATION_TOOLS",
    "ActionDispatcher",
    "emit_task_outcome",
    "extract_file_path",
    "file_action",
]
