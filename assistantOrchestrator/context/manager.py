"""Live context window budgeting.

When the estimated prompt (system prompt + messages + tool menu) crosses
``trigger_threshold`` of the usable window, the oldest turns are folded into
a digest produced by a one-shot oracle call. The digest replaces them as a
single leading ``SystemMessage``; the recent tail is kept verbatim. If the
digest call fails, the window is trimmed structurally instead.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Literal, Optional, Sequence

from langchain_core.messages import AIMessage, BaseMessage, HumanMessage, SystemMessage, ToolMessage

from assistantOrchestrator.config.settings import ContextSettings
from assistantOrchestrator.context.message_utils import trim_to_token_budget, validate_message_sequence
from assistantOrchestrator.context.token_counter import TokenCounter, get_model_context_limit
from assistantOrchestrator.ports.oracle import OracleOptions, PlanningOracle

LOGGER = logging.getLogger(__name__)

SUMMARY_PREFIX = "Previous conversation summary:"
DIGEST_TOKEN_RATIO = 0.3


# ===== Prompt templates =====

DIGEST_PROMPT = """Your task is to write a digest of the earlier part of a conversation between a user and a personal assistant that coordinates worker agents.

Go through the conversation in order and keep:

1. **Durable facts** - preferences, names, dates, numbers and other facts that remain true
2. **Completed work** - tasks that finished and what they produced
3. **Open threads** - requests that are still pending or were left unanswered
4. **Key decisions** - choices made by the user or the assistant and why they matter

If a previous digest is included, merge it with the new turns into one updated digest.

Output only the digest, as short sections with bullet points. Do not add commentary.
"""


@dataclass
class ContextManagementResult:
    """Outcome of one budgeting pass."""
    messages: List[BaseMessage]
    strategy: Literal["none", "summarize", "trim"]
    before_tokens: int
    after_tokens: int
    folded_count: int = 0

    @property
    def summarized(self) -> bool:
        return self.strategy == "summarize"


def is_summary_message(message: BaseMessage) -> bool:
    return isinstance(message, SystemMessage) and str(message.content).startswith(SUMMARY_PREFIX)


def format_messages_for_digest(messages: Sequence[BaseMessage], max_chars: int = 2000) -> str:
    """Render messages as plain text for a digest prompt."""
    formatted = []
    for msg in messages:
        content = str(msg.content)[:max_chars]
        if isinstance(msg, AIMessage) and msg.tool_calls:
            tools = ", ".join(tc.get("name", "unknown") for tc in msg.tool_calls)
            line = f"[Assistant] called tools: {tools}"
            if content:
                line = f"[Assistant] {content}\n{line}"
            formatted.append(line)
        elif isinstance(msg, AIMessage):
            formatted.append(f"[Assistant] {content}")
        elif isinstance(msg, ToolMessage):
            formatted.append(f"[Tool:{getattr(msg, 'name', None) or 'unknown'}] {content[:500]}")
        elif isinstance(msg, HumanMessage):
            formatted.append(f"[User] {content}")
        else:
            formatted.append(f"[System] {content}")
    return "\n\n".join(formatted)


class ContextManager:
    """Keeps the live message window under the model's token budget."""

    def __init__(
        self,
        oracle: PlanningOracle,
        settings: Optional[ContextSettings] = None,
        counter: Optional[TokenCounter] = None,
        context_window_override: Optional[int] = None,
    ):
        self.oracle = oracle
        self.settings = settings or ContextSettings()
        self.counter = counter or TokenCounter()
        self.context_window_override = context_window_override

    # ========== Budget arithmetic ==========

    def _available_tokens(self, model_id: str) -> int:
        limit = get_model_context_limit(model_id, self.context_window_override)
        return max(0, limit - self.settings.output_reserve)

    def trigger_tokens(self, model_id: str) -> int:
        return int(self._available_tokens(model_id) * self.settings.trigger_threshold)

    def target_tokens(self, model_id: str) -> int:
        return int(self._available_tokens(model_id) * self.settings.target_threshold)

    def would_trigger_summarization(
        self,
        messages: Sequence[BaseMessage],
        model_id: str,
        system_prompt: Optional[str] = None,
        tools: Optional[Sequence[Dict[str, Any]]] = None,
    ) -> bool:
        if not self.settings.enabled:
            return False
        total = self.counter.estimate_total_context(system_prompt, messages, tools)
        return total > self.trigger_tokens(model_id)

    def _fold_boundary(self, messages: Sequence[BaseMessage], start: int, tail_budget: int) -> int:
        """Index of the first kept message; everything in [start, boundary) is folded."""
        boundary = start + self.counter.find_token_threshold_index(messages[start:], tail_budget)
        boundary = min(boundary, max(start, len(messages) - self.settings.min_messages_to_keep))
        # kept tail must open on the assistant call, not on its results
        while boundary > start and isinstance(messages[boundary], ToolMessage):
            boundary -= 1
        return boundary

    # ========== Main entry ==========

    async def manage_context(
        self,
        messages: Sequence[BaseMessage],
        model_id: str,
        system_prompt: Optional[str] = None,
        tools: Optional[Sequence[Dict[str, Any]]] = None,
    ) -> ContextManagementResult:
        """Return a window that fits the budget, folding old turns if needed."""
        messages = list(messages)
        before = self.counter.estimate_total_context(system_prompt, messages, tools)

        if not self.settings.enabled or before <= self.trigger_tokens(model_id):
            return ContextManagementResult(messages=messages, strategy="none", before_tokens=before, after_tokens=before)

        fixed = self.counter.estimate_system_prompt_tokens(system_prompt) + self.counter.estimate_tools_tokens(tools)
        tail_budget = max(0, self.target_tokens(model_id) - fixed)

        previous_digest = messages[0] if messages and is_summary_message(messages[0]) else None
        start = 1 if previous_digest is not None else 0
        boundary = self._fold_boundary(messages, start, tail_budget)
        folded = messages[start:boundary]

        if not folded:
            LOGGER.warning(
                f"Context over budget (~{before} tokens) but nothing can be folded "
                f"(min_messages_to_keep={self.settings.min_messages_to_keep})"
            )
            return ContextManagementResult(messages=messages, strategy="none", before_tokens=before, after_tokens=before)

        LOGGER.info(f"Context at ~{before} tokens exceeds trigger, folding {len(folded)} message(s)")

        try:
            digest = await self._generate_digest(folded, previous_digest)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            LOGGER.error(f"Digest generation failed: {e}")
            LOGGER.warning("Falling back to structural trimming")
            trimmed = trim_to_token_budget(messages, tail_budget, self.counter)
            after = self.counter.estimate_total_context(system_prompt, trimmed, tools)
            return ContextManagementResult(
                messages=trimmed,
                strategy="trim",
                before_tokens=before,
                after_tokens=after,
                folded_count=len(messages) - len(trimmed),
            )

        result = [SystemMessage(content=f"{SUMMARY_PREFIX}\n{digest}")]
        result.extend(validate_message_sequence(messages[boundary:]))
        after = self.counter.estimate_total_context(system_prompt, result, tools)

        LOGGER.info(
            f"Context folded: {len(messages)} -> {len(result)} messages, "
            f"~{before} -> ~{after} tokens"
        )
        return ContextManagementResult(
            messages=result,
            strategy="summarize",
            before_tokens=before,
            after_tokens=after,
            folded_count=len(folded),
        )

    async def _generate_digest(self, folded: Sequence[BaseMessage], previous_digest: Optional[BaseMessage]) -> str:
        folded_tokens = self.counter.estimate_messages_tokens(folded)
        max_tokens = max(1, min(self.settings.summary_max_tokens, int(folded_tokens * DIGEST_TOKEN_RATIO)))

        parts = [DIGEST_PROMPT]
        if previous_digest is not None:
            parts.append(f"Previous digest:\n{previous_digest.content}")
        parts.append(f"Conversation:\n{format_messages_for_digest(folded)}")

        digest = await self.oracle.generate(
            [HumanMessage(content="\n\n".join(parts))],
            OracleOptions(temperature=self.settings.summary_temperature, max_tokens=max_tokens),
        )
        digest = (digest or "").strip()
        if not digest:
            raise ValueError("Digest generation returned empty text")
        return digest

    def get_config(self) -> Dict[str, Any]:
        return {
            "enabled": self.settings.enabled,
            "trigger_threshold": self.settings.trigger_threshold,
            "target_threshold": self.settings.target_threshold,
            "min_messages_to_keep": self.settings.min_messages_to_keep,
            "output_reserve": self.settings.output_reserve,
        }


__all__ = [
    "SUMMARY_PREFIX",
    "ContextManagementResult",
    "ContextManager",
    "format_messages_for_digest",
    "is_summary_message",
]
