"""Runtime assembly for the orchestrator service."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Optional

from langchain_core.language_models import BaseChatModel
from langchain_core.tools import BaseTool

from assistantOrchestrator.adapters.langchain_oracle import ChatModelOracle
from assistantOrchestrator.adapters.langchain_tools import LangChainToolInvoker, ToolMeta, ToolRegistry
from assistantOrchestrator.agents.manager import SubAgentManager
from assistantOrchestrator.config.settings import Settings, get_settings
from assistantOrchestrator.context.history import ConversationHistoryService
from assistantOrchestrator.context.manager import ContextManager
from assistantOrchestrator.guard.loop_guard import LoopGuard
from assistantOrchestrator.orchestrator.scripted import ScriptedPlanRegistry
from assistantOrchestrator.orchestrator.service import OrchestratorService
from assistantOrchestrator.planning.dag import TaskPlanService
from assistantOrchestrator.ports.events import InMemoryEventBus
from assistantOrchestrator.ports.history import InMemoryHistoryRepository
from assistantOrchestrator.ports.memory import InMemoryMemoryStore
from assistantOrchestrator.ports.store import InMemoryStateStore
from assistantOrchestrator.tools.builtin import SessionRecorder, build_session_tools, get_current_time
from .model_resolver import build_chat_model

LOGGER = logging.getLogger(__name__)

DEFAULT_SCRIPTED_PLANS_PATH = Path(__file__).resolve().parent.parent / "config" / "scripted_plans.yaml"


@dataclass
class OrchestratorApp:
    """Assembled service plus the collaborators callers interact with."""

    service: OrchestratorService
    event_bus: InMemoryEventBus
    tool_registry: ToolRegistry
    sessions: SessionRecorder
    settings: Settings


def _create_tool_registry(sessions: SessionRecorder, extra_tools: Optional[Iterable[BaseTool]] = None) -> ToolRegistry:
    registry = ToolRegistry()
    registry.register_tool(get_current_time, ToolMeta(name=get_current_time.name, tags=["builtin"]))
    for tool in build_session_tools(sessions):
        registry.register_tool(tool, ToolMeta(name=tool.name, tags=["session"], hidden=True))
    for tool in extra_tools or []:
        registry.register_tool(tool, ToolMeta(name=tool.name, tags=["user"]))
    LOGGER.info(
        f"Tool registry ready: {len(registry.list_visible_tools())} visible / {len(registry.list_tools())} total "
        f"({len(registry.tools_tagged('user'))} user)"
    )
    return registry


def _load_scripted_plans(settings: Settings) -> Optional[ScriptedPlanRegistry]:
    if not settings.orchestrator.enable_scripted_plans:
        return None
    path = settings.orchestrator.scripted_plans_path or DEFAULT_SCRIPTED_PLANS_PATH
    return ScriptedPlanRegistry.from_yaml(path)


def build_orchestrator_app(
    settings: Optional[Settings] = None,
    *,
    chat_model: Optional[BaseChatModel] = None,
    tools: Optional[Iterable[BaseTool]] = None,
    event_bus: Optional[InMemoryEventBus] = None,
) -> OrchestratorApp:
    """Wire the orchestrator with in-memory stores and LangChain adapters.

    Args:
        settings: Application settings (defaults to the cached environment settings)
        chat_model: Chat model for the planning oracle; built from settings.models when omitted
        tools: Additional LangChain tools offered to the orchestrator and sub-agents
        event_bus: Event bus to publish run events on

    Returns:
        OrchestratorApp bundling the service and its event bus
    """
    settings = settings or get_settings()
    model = chat_model if chat_model is not None else build_chat_model(settings.models)
    oracle = ChatModelOracle(
        model,
        settings.models.model_id,
        input_cost_per_1k=settings.models.input_cost_per_1k,
        output_cost_per_1k=settings.models.output_cost_per_1k,
    )

    sessions = SessionRecorder()
    registry = _create_tool_registry(sessions, tools)
    tool_invoker = LangChainToolInvoker(registry)

    store = InMemoryStateStore()
    bus = event_bus or InMemoryEventBus()
    context_manager = None
    if settings.context.enabled:
        context_manager = ContextManager(
            oracle,
            settings.context,
            context_window_override=settings.models.context_window,
        )
    history = None
    if settings.history.enabled:
        history = ConversationHistoryService(InMemoryHistoryRepository(), oracle, settings.history)

    agents = SubAgentManager(
        oracle,
        tool_invoker,
        store=store,
        settings=settings.subagents,
        context_manager=context_manager,
    )
    service = OrchestratorService(
        oracle=oracle,
        tool_invoker=tool_invoker,
        agents=agents,
        plans=TaskPlanService(store),
        guard=LoopGuard(settings.guard),
        event_bus=bus,
        store=store,
        memory=InMemoryMemoryStore(),
        history=history,
        context_manager=context_manager,
        settings=settings.orchestrator,
        scripted_plans=_load_scripted_plans(settings),
    )
    LOGGER.info(f"Orchestrator ready (model={settings.models.model_id}, env={settings.environment})")
    return OrchestratorApp(
        service=service,
        event_bus=bus,
        tool_registry=registry,
        sessions=sessions,
        settings=settings,
    )


def build_orchestrator_service(
    settings: Optional[Settings] = None,
    *,
    chat_model: Optional[BaseChatModel] = None,
    tools: Optional[Iterable[BaseTool]] = None,
    event_bus: Optional[InMemoryEventBus] = None,
) -> OrchestratorService:
    """Return only the wired ``OrchestratorService``."""
    return build_orchestrator_app(settings, chat_model=chat_model, tools=tools, event_bus=event_bus).service


__all__ = [
    "DEFAULT_SCRIPTED_PLANS_PATH",
    "OrchestratorApp",
    "build_orchestrator_app",
    "build_orchestrator_service",
]
