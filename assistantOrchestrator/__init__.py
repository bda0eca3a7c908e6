"""AssistantOrchestrator - task orchestration core for a personal assistant.

The orchestrator decides whether to answer a request directly or to break it
into a dependency graph of tasks, runs worker agents for the ready tasks,
supervises them and consolidates their results into a final answer.

Main entry point:
    from assistantOrchestrator.runtime.app import build_orchestrator_service
"""

__version__ = "0.1.0"
