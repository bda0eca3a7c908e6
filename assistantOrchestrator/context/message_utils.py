"""Structural cleanup of message histories before they reach the oracle.

Providers reject a sequence where a ``ToolMessage`` has no preceding
assistant call, or where an assistant's tool calls are not all answered
before the next user/system turn. Everything here returns a new list and is
idempotent on an already-valid sequence.
"""

from __future__ import annotations

import logging
from typing import List, Optional, Sequence, Set

from langchain_core.messages import AIMessage, BaseMessage, ToolMessage

from assistantOrchestrator.context.token_counter import TokenCounter

LOGGER = logging.getLogger(__name__)


def _tool_call_ids(message: AIMessage) -> List[Optional[str]]:
    ids = []
    for tc in message.tool_calls or []:
        ids.append(tc.get("id") if isinstance(tc, dict) else getattr(tc, "id", None))
    return ids


def has_tool_calls(message: BaseMessage) -> bool:
    return isinstance(message, AIMessage) and bool(message.tool_calls)


def drop_leading_tool_messages(messages: Sequence[BaseMessage]) -> List[BaseMessage]:
    """Strip tool results at the head of the window; their call was trimmed away."""
    start = 0
    while start < len(messages) and isinstance(messages[start], ToolMessage):
        start += 1
    if start:
        LOGGER.debug(f"Dropped {start} leading tool message(s)")
    return list(messages[start:])


def validate_message_sequence(messages: Sequence[BaseMessage]) -> List[BaseMessage]:
    """Forward pass that keeps only complete assistant/tool exchanges.

    - An assistant turn with tool calls stays only if every call is answered
      before any other kind of message arrives. Otherwise the assistant turn
      and the partial results already collected for it are dropped.
    - A tool result whose call id is not pending is dropped as an orphan.
    - An exchange still open at the end of the sequence is dropped.
    """
    cleaned: List[BaseMessage] = []
    pending: Set[Optional[str]] = set()
    open_index: Optional[int] = None
    dropped = 0

    def discard_open() -> None:
        nonlocal pending, open_index, dropped
        if open_index is not None and pending:
            dropped += len(cleaned) - open_index
            del cleaned[open_index:]
        pending = set()
        open_index = None

    for message in messages:
        if isinstance(message, ToolMessage):
            call_id = getattr(message, "tool_call_id", None)
            if call_id and call_id in pending:
                cleaned.append(message)
                pending.discard(call_id)
                if not pending:
                    open_index = None
            else:
                dropped += 1
            continue

        # any non-tool message closes the previous exchange
        discard_open()

        if has_tool_calls(message):
            open_index = len(cleaned)
            pending = set(_tool_call_ids(message))
        cleaned.append(message)

    discard_open()

    if dropped:
        LOGGER.info(f"Message validation dropped {dropped} message(s)")
    return cleaned


def trim_to_token_budget(
    messages: Sequence[BaseMessage],
    max_tokens: int,
    counter: Optional[TokenCounter] = None,
) -> List[BaseMessage]:
    """Keep the newest messages that fit ``max_tokens``, then repair the edges."""
    counter = counter or TokenCounter()
    start = counter.find_token_threshold_index(messages, max_tokens)
    trimmed = drop_leading_tool_messages(messages[start:])
    return validate_message_sequence(trimmed)


def truncate_messages_safely(messages: Sequence[BaseMessage], keep_recent: int = 10) -> List[BaseMessage]:
    """Keep the last ``keep_recent`` messages without splitting a tool exchange."""
    if len(messages) <= keep_recent:
        return validate_message_sequence(messages)
    tail = drop_leading_tool_messages(messages[len(messages) - keep_recent:])
    return validate_message_sequence(tail)


__all__ = [
    "has_tool_calls",
    "drop_leading_tool_messages",
    "validate_message_sequence",
    "trim_to_token_budget",
    "truncate_messages_safely",
]
