"""Command line entry point for the assistant orchestrator.

Usage:
    python main.py "Plan my week and draft a status email"
    python main.py                      # interactive, one run per line
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import uuid
from typing import Optional

from assistantOrchestrator.config.settings import get_settings
from assistantOrchestrator.domain.events import StreamEvent
from assistantOrchestrator.domain.models import RunResult
from assistantOrchestrator.ports.events import InMemoryEventBus
from assistantOrchestrator.runtime import build_orchestrator_service
from assistantOrchestrator.utils.logging_utils import setup_logging


def _format_event(event: StreamEvent, verbose: bool) -> Optional[str]:
    data = event.data
    agent = f"[{event.agent_id[:8]}] " if event.agent_id else ""
    if event.type == "agent.token":
        return None
    if event.type == "orchestrator.status":
        message = data.get("message")
        return f"[status] {data.get('status')}" + (f": {message}" if message else "")
    if event.type == "plan.created":
        return f"[plan] created with {data.get('task_count', 0)} task(s)"
    if event.type == "plan.modified":
        return f"[plan] {data.get('modification')}: {data.get('reason', '')}".rstrip(": ")
    if event.type == "task.started":
        return f"[task] started {data.get('task_id')} {data.get('description', '')}".rstrip()
    if event.type == "task.completed":
        state = "done" if data.get("success") else "failed"
        return f"[task] {state} {data.get('task_id')}"
    if event.type == "task.failed":
        return f"[task] failed {data.get('task_id')}: {data.get('error')}"
    if event.type == "agent.spawned":
        return f"{agent}[agent] {data.get('agent_type')}: {data.get('task_description')}"
    if event.type == "agent.intervention":
        return f"{agent}[intervention] {data.get('action')}: {data.get('reason', '')}"
    if event.type == "agent.terminated":
        return f"{agent}[agent] terminated ({data.get('status')})"
    if event.type == "agent.error":
        return f"[error] {data.get('message')}"
    if verbose and event.type in {"agent.tool_call", "agent.tool_result", "agent.reasoning"}:
        return f"{agent}[{event.type}] {data}"
    return None


async def _print_events(bus: InMemoryEventBus, run_id: str, verbose: bool) -> None:
    async for event in bus.subscribe(run_id):
        if event.type == "agent.final":
            continue
        line = _format_event(event, verbose)
        if line:
            print(line)


async def run_once(service, bus: InMemoryEventBus, user_id: str, text: str, verbose: bool) -> RunResult:
    run_id = str(uuid.uuid4())
    printer = asyncio.create_task(_print_events(bus, run_id, verbose))
    await asyncio.sleep(0)
    try:
        result = await service.execute_run(user_id, run_id, text)
    finally:
        bus.close(run_id)
        await printer
        bus.discard(run_id)

    if result.success:
        print(f"\nAssistant> {result.response}")
    else:
        print(f"\n[failed] {result.error}")
    print(
        f"(tokens: {result.total_tokens}, cost: ${result.total_cost:.4f}, "
        f"tasks: {result.tasks_completed} ok / {result.tasks_failed} failed)"
    )
    return result


async def async_main(args: argparse.Namespace) -> int:
    settings = get_settings()
    level = getattr(logging, (args.log_level or settings.observability.log_level).upper(), logging.INFO)
    setup_logging(level, log_dir=settings.observability.log_dir)
    if args.scripted:
        settings.orchestrator.enable_scripted_plans = True

    bus = InMemoryEventBus()
    try:
        service = build_orchestrator_service(settings, event_bus=bus)
    except RuntimeError as e:
        print(f"Configuration error: {e}")
        return 2

    if args.request:
        result = await run_once(service, bus, args.user, " ".join(args.request), args.verbose)
        return 0 if result.success else 1

    print("Assistant orchestrator ready. Type /quit to exit.")
    while True:
        try:
            loop = asyncio.get_running_loop()
            user_input = await loop.run_in_executor(None, lambda: input("You> ").strip())
        except (KeyboardInterrupt, EOFError):
            print("\nBye!")
            break
        if not user_input:
            continue
        if user_input.lower() in {"/quit", "/exit"}:
            break
        await run_once(service, bus, args.user, user_input, args.verbose)
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Run requests through the assistant orchestrator.")
    parser.add_argument("request", nargs="*", help="Request to run; omit for interactive mode")
    parser.add_argument("--user", default="cli-user", help="User id owning the conversation history")
    parser.add_argument("--verbose", "-v", action="store_true", help="Also print tool calls and reasoning")
    parser.add_argument("--scripted", action="store_true", help="Enable codeword-triggered scripted plans")
    parser.add_argument("--log-level", default=None, help="Console log level (default from LOG_LEVEL)")
    return parser


def main() -> None:
    args = build_parser().parse_args()
    raise SystemExit(asyncio.run(async_main(args)))


if __name__ == "__main__":
    main()
