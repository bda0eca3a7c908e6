"""Logging utilities for the orchestrator."""

import json
import logging
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Optional

ROOT_LOGGER_NAME = "assistantOrchestrator"
PREVIEW_CHARS = 500


def _preview(value: Any) -> str:
    text = str(value)
    return text if len(text) <= PREVIEW_CHARS else text[:PREVIEW_CHARS] + "..."


def setup_logging(level: int = logging.INFO, log_dir: Optional[str] = "logs") -> logging.Logger:
    """Setup logging configuration for the orchestrator.

    Args:
        level: Console logging level floor (console never drops below WARNING)
        log_dir: Directory for the timestamped log file, or None to skip the file handler

    Returns:
        Configured package logger
    """
    logger = logging.getLogger(ROOT_LOGGER_NAME)
    logger.setLevel(logging.DEBUG)  # Capture all child logs
    logger.propagate = False

    logger.handlers = []

    log_file = None
    if log_dir:
        logs_path = Path(log_dir)
        logs_path.mkdir(parents=True, exist_ok=True)
        log_file = logs_path / f"orchestrator_{datetime.now().strftime('%Y%m%d_%H%M%S')}.log"

        file_handler = logging.FileHandler(log_file, encoding="utf-8")
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(logging.Formatter(
            "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S"
        ))
        logger.addHandler(file_handler)

    console_handler = logging.StreamHandler()
    console_handler.setLevel(max(level, logging.WARNING))
    console_handler.setFormatter(logging.Formatter("%(levelname)s: %(message)s"))
    logger.addHandler(console_handler)

    logger.info("=" * 80)
    logger.info("Orchestrator session started")
    if log_file:
        logger.info(f"Log file: {log_file}")
    logger.info("=" * 80)

    return logger


def log_tool_call(logger: logging.Logger, tool_name: str, args: Dict[str, Any]) -> None:
    """Log a dispatched tool call; arguments go to DEBUG only."""
    logger.info(f"-> {tool_name}")
    logger.debug(f"   args={json.dumps(args, ensure_ascii=False, default=str)[:PREVIEW_CHARS]}")


def log_tool_result(logger: logging.Logger, tool_name: str, result: Any, success: bool = True) -> None:
    level = logging.INFO if success else logging.WARNING
    logger.log(level, f"<- {tool_name} ({'ok' if success else 'error'})")
    logger.debug(f"   result={_preview(result)}")


def log_routing_decision(logger: logging.Logger, from_node: str, decision: str, reason: str = "") -> None:
    """Log routing decision.

    Args:
        logger: Logger instance
        from_node: Source node making the decision
        decision: Routing destination
        reason: Reason for the routing decision
    """
    suffix = f" ({reason})" if reason else ""
    logger.debug(f"[route] {from_node} -> {decision}{suffix}")


def log_plan_created(logger: logging.Logger, plan: Dict[str, Any]) -> None:
    """Log plan creation details.

    Args:
        logger: Logger instance
        plan: Plan dictionary with id, structure and tasks
    """
    tasks = plan.get("tasks", [])
    logger.info(f"Plan {plan.get('id', '?')} created: {len(tasks)} task(s), {plan.get('structure', '?')}")
    for task in tasks:
        deps = ", ".join(task.get("dependencies") or []) or "-"
        logger.info(f"   [{task.get('agent_type')}] {task.get('id')} after {deps}: {task.get('description')}")


def log_agent_event(logger: logging.Logger, agent_id: str, event: str, detail: str = "") -> None:
    """Log a sub-agent lifecycle event (spawned, guided, cancelled, terminated)."""
    logger.info(f"Agent {agent_id[:8]}: {event}")
    if detail:
        logger.debug(f"  Detail: {detail[:500]}")


def log_guard_decision(logger: logging.Logger, kind: str, allowed: bool, reason: str = "") -> None:
    """Log a retry or intervention gate decision."""
    verdict = "allowed" if allowed else "denied"
    logger.info(f"Guard {kind}: {verdict}")
    if reason:
        logger.info(f"  Reason: {reason}")


def log_error(logger: logging.Logger, error: Exception, context: str = "") -> None:
    """Log error with context.

    Args:
        logger: Logger instance
        error: Exception instance
        context: Additional context about where the error occurred
    """
    where = f" in {context}" if context else ""
    logger.error(f"{type(error).__name__}{where}: {error}")
    logger.debug("Traceback:", exc_info=error)


__all__ = [
    "ROOT_LOGGER_NAME",
    "setup_logging",
    "log_tool_call",
    "log_tool_result",
    "log_routing_decision",
    "log_plan_created",
    "log_agent_event",
    "log_guard_decision",
    "log_error",
]
