"""Control loop: action dispatch, graph, scripted plans and the run service."""

from .context import RunContext, get_run_context
from .handlers import ActionDispatcher
from .scripted import ScriptedPlan, ScriptedPlanExecutor, ScriptedPlanRegistry
from .service import OrchestratorService
from .tools import ORCHESTRATOR_TOOLS

__all__ = [
    "RunContext",
    "get_run_context",
    "ActionDispatcher",
    "ScriptedPlan",
    "ScriptedPlanExecutor",
    "ScriptedPlanRegistry",
    "OrchestratorService",
    "ORCHESTRATOR_TOOLS",
]
