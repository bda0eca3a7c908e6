"""Unified error handling for orchestrator nodes, handlers and side channels."""

from __future__ import annotations

import asyncio
import functools
import logging
from typing import Any, Awaitable, Callable, Iterable, List, Optional, Tuple, Type

LOGGER = logging.getLogger(__name__)

# Provider error text when a tool result reaches the model without its call.
CORRUPTED_HISTORY_SIGNATURES = (
    "must be a response to a preceeding message with 'tool_calls'",
    "must be a response to a preceding message with 'tool_calls'",
)


class OrchestratorError(Exception):
    """Base exception for orchestrator errors."""

    def __init__(self, message: str, user_message: str = None):
        super().__init__(message)
        self.user_message = user_message or message


class OracleError(OrchestratorError):
    """Planning oracle stream or generate call failed."""
    pass


class IterationLimitError(OrchestratorError):
    """The control loop reached its iteration cap."""

    def __init__(self, max_iterations: int):
        super().__init__(f"Orchestrator reached maximum iterations ({max_iterations})")
        self.max_iterations = max_iterations


class PlanValidationError(OrchestratorError):
    """Plan input failed structural validation."""

    def __init__(self, errors: Iterable[str]):
        self.errors: List[str] = list(errors)
        super().__init__(f"Plan validation failed: {'; '.join(self.errors)}")


class PlanNotFoundError(OrchestratorError):
    """No active plan exists for the run."""
    pass


class TaskNotFoundError(OrchestratorError):
    """Referenced task node does not exist in the plan."""
    pass


class AgentNotFoundError(OrchestratorError):
    """Referenced sub-agent is not tracked."""
    pass


class ToolInvocationError(OrchestratorError):
    """Error during tool invocation."""
    pass


class CorruptedHistoryError(OrchestratorError):
    """Persisted conversation history produced an invalid message sequence."""
    pass


class RunCancelledError(OrchestratorError):
    """The run was cancelled by request."""
    pass


class ScriptedPlanTimeoutError(OrchestratorError):
    """A scripted plan run exceeded its wall-clock ceiling."""
    pass


FATAL_ERRORS: Tuple[Type[BaseException], ...] = (
    OracleError,
    IterationLimitError,
    RunCancelledError,
    CorruptedHistoryError,
    asyncio.CancelledError,
)


def is_corrupted_history_error(error: BaseException) -> bool:
    """Return True when the error carries the orphan-tool-result provider signature."""
    text = str(error)
    return any(signature in text for signature in CORRUPTED_HISTORY_SIGNATURES)


def with_error_boundary(node_name: str, fatal: Tuple[Type[BaseException], ...] = FATAL_ERRORS):
    """Decorator to add an error boundary to graph nodes.

    Fatal errors propagate to the run boundary. Anything else is logged and
    recorded on the state as ``last_error`` so the loop can continue.

    Example:
        @with_error_boundary("context")
        async def context_node(state, config):
            ...
    """
    def decorator(func: Callable) -> Callable:
        def _record(error: Exception) -> dict:
            if isinstance(error, OrchestratorError):
                LOGGER.error(f"{node_name} failed: {error}")
                return {"last_error": error.user_message}
            LOGGER.exception(f"{node_name} unexpected error", exc_info=error)
            return {"last_error": f"{node_name} failed: {type(error).__name__}"}

        @functools.wraps(func)
        def sync_wrapper(*args: Any, **kwargs: Any) -> dict:
            try:
                return func(*args, **kwargs)
            except fatal:
                raise
            except Exception as e:
                return _record(e)

        @functools.wraps(func)
        async def async_wrapper(*args: Any, **kwargs: Any) -> dict:
            try:
                return await func(*args, **kwargs)
            except fatal:
                raise
            except Exception as e:
                return _record(e)

        if asyncio.iscoroutinefunction(func):
            return async_wrapper
        return sync_wrapper

    return decorator


async def best_effort(operation: str, awaitable: Awaitable[Any], logger: Optional[logging.Logger] = None) -> Any:
    """Await a side-channel operation, logging and swallowing any failure.

    Returns the awaited value, or None when the operation failed.
    """
    log = logger or LOGGER
    try:
        return await awaitable
    except asyncio.CancelledError:
        raise
    except Exception as e:
        log.warning(f"Best-effort operation '{operation}' failed: {type(e).__name__}: {e}")
        return None


def handle_oracle_error(error: Exception) -> str:
    """Convert oracle invocation errors to user-facing messages.

    Args:
        error: Exception raised during an oracle call

    Returns:
        User-facing error message
    """
    error_str = str(error).lower()

    if "rate_limit" in error_str or "429" in error_str:
        return "The assistant is receiving too many requests, please try again shortly."

    if "timeout" in error_str or "timed out" in error_str:
        return "The model took too long to respond, please try again."

    if "context_length" in error_str or "maximum context" in error_str:
        return "The conversation is too long for the model, please start a new conversation."

    if "invalid_api_key" in error_str or "authentication" in error_str:
        return "The model credentials are invalid, please contact the administrator."

    if "quota" in error_str or "insufficient" in error_str:
        return "The model quota is exhausted, please contact the administrator."

    return f"The model is temporarily unavailable: {error}"


__all__ = [
    "OrchestratorError",
    "OracleError",
    "IterationLimitError",
    "PlanValidationError",
    "PlanNotFoundError",
    "TaskNotFoundError",
    "AgentNotFoundError",
    "ToolInvocationError",
    "CorruptedHistoryError",
    "RunCancelledError",
    "ScriptedPlanTimeoutError",
    "FATAL_ERRORS",
    "is_corrupted_history_error",
    "with_error_boundary",
    "best_effort",
    "handle_oracle_error",
]
