"""Persisted per-user conversation history.

Messages of finished runs are stored through the ``HistoryRepository``
port. When a new run starts, the stored tail is loaded back under a token
budget, prefixed with the rolling summary of older turns, and annotated with
"[N hours later]" markers where the user came back after a long pause.
"""

from __future__ import annotations

import logging
from typing import List, Optional, Sequence

from langchain_core.messages import AIMessage, BaseMessage, HumanMessage, SystemMessage, ToolMessage

from assistantOrchestrator.config.settings import HistorySettings
from assistantOrchestrator.context.manager import SUMMARY_PREFIX, format_messages_for_digest
from assistantOrchestrator.context.message_utils import trim_to_token_budget
from assistantOrchestrator.context.token_counter import TokenCounter
from assistantOrchestrator.domain.models import utcnow
from assistantOrchestrator.ports.history import ConversationSummary, HistoryRepository, StoredMessage
from assistantOrchestrator.ports.oracle import OracleOptions, PlanningOracle

LOGGER = logging.getLogger(__name__)

DEFAULT_SUBJECT = "General conversation"
SUMMARY_TEMPERATURE = 0.3
SUMMARY_MAX_TOKENS = 1000
SUBJECT_MAX_TOKENS = 20
SUBJECT_MAX_LENGTH = 60

CONVERSATION_SUMMARY_PROMPT = """Summarize the conversation below between a user and their personal assistant.

Keep facts about the user, requests that were completed and their results, requests that are still open, and decisions that were made. If an earlier summary is given, fold it into the new one.

Write plain prose or short bullet points, at most a few paragraphs. Output only the summary.
"""

SUBJECT_PROMPT = """Give a short subject line (at most 6 words) for a conversation that starts with the message below. Reply with the subject only.

Message:
{message}
"""


def format_time_gap(seconds: float) -> str:
    """Human-readable gap, e.g. "3 hours later"."""
    seconds = max(0, int(seconds))
    if seconds >= 86400:
        days = seconds // 86400
        return "1 day later" if days == 1 else f"{days} days later"
    if seconds >= 3600:
        hours = seconds // 3600
        return "1 hour later" if hours == 1 else f"{hours} hours later"
    if seconds >= 60:
        minutes = seconds // 60
        return "1 minute later" if minutes == 1 else f"{minutes} minutes later"
    return "moments later"


def _should_persist(message: BaseMessage) -> bool:
    if isinstance(message, (HumanMessage, AIMessage)):
        return True
    return isinstance(message, ToolMessage) and bool(getattr(message, "tool_call_id", None))


class ConversationHistoryService:
    """Loads, persists and summarizes a user's conversation across runs."""

    def __init__(
        self,
        repository: HistoryRepository,
        oracle: PlanningOracle,
        settings: Optional[HistorySettings] = None,
        counter: Optional[TokenCounter] = None,
    ):
        self.repository = repository
        self.oracle = oracle
        self.settings = settings or HistorySettings()
        self.counter = counter or TokenCounter()

    # ========== Loading ==========

    async def load_context(self, user_id: str) -> List[BaseMessage]:
        """Messages to prepend to a new run, within ``max_history_tokens``."""
        if not self.settings.enabled:
            return []

        summary = await self.repository.get_summary(user_id)
        after_id = summary.summarized_up_to_id if summary else None
        stored = await self.repository.list_messages(user_id, after_id=after_id)
        stored = stored[-self.settings.max_recent_messages:]

        messages: List[BaseMessage] = []
        for item in stored:
            gap = item.metadata.get("time_gap_seconds")
            if (
                isinstance(item.message, HumanMessage)
                and gap is not None
                and gap >= self.settings.time_gap_threshold_seconds
            ):
                messages.append(SystemMessage(content=f"[{format_time_gap(gap)}]"))
            messages.append(item.message)

        budget = self.settings.max_history_tokens
        prefix: List[BaseMessage] = []
        if summary and summary.content:
            summary_message = SystemMessage(content=f"{SUMMARY_PREFIX}\n{summary.content}")
            prefix.append(summary_message)
            budget = max(0, budget - self.counter.estimate_message_tokens(summary_message))

        trimmed = trim_to_token_budget(messages, budget, self.counter)

        LOGGER.debug(
            f"Loaded history for user {user_id}: {len(stored)} stored, {len(trimmed)} kept"
            f"{' + summary' if prefix else ''}"
        )
        return prefix + trimmed

    async def get_history(self, user_id: str) -> List[StoredMessage]:
        return await self.repository.list_messages(user_id)

    # ========== Persisting ==========

    async def persist_run_messages(self, user_id: str, run_id: str, messages: Sequence[BaseMessage]) -> int:
        """Store the user/assistant/tool messages of a finished run."""
        if not self.settings.enabled:
            return 0

        to_store = [m for m in messages if _should_persist(m)]
        if not to_store:
            return 0

        last = await self.repository.last_message(user_id)
        first_metadata = {}
        if last is None:
            first_human = next((m for m in to_store if isinstance(m, HumanMessage)), None)
            first_metadata["subject"] = (
                await self.extract_subject(str(first_human.content)) if first_human else DEFAULT_SUBJECT
            )
        else:
            first_metadata["time_gap_seconds"] = (utcnow() - last.created_at).total_seconds()

        for index, message in enumerate(to_store):
            await self.repository.append(user_id, run_id, message, first_metadata if index == 0 else None)

        LOGGER.info(f"Persisted {len(to_store)} message(s) for run {run_id}")
        return len(to_store)

    async def extract_subject(self, text: str) -> str:
        """Short subject for a new conversation; falls back to a generic one."""
        if not text.strip():
            return DEFAULT_SUBJECT
        try:
            subject = await self.oracle.generate(
                [HumanMessage(content=SUBJECT_PROMPT.format(message=text[:1000]))],
                OracleOptions(temperature=SUMMARY_TEMPERATURE, max_tokens=SUBJECT_MAX_TOKENS),
            )
        except Exception as e:
            LOGGER.warning(f"Subject extraction failed: {e}")
            return DEFAULT_SUBJECT
        subject = (subject or "").strip().strip("\"'").strip()
        return subject[:SUBJECT_MAX_LENGTH] if subject else DEFAULT_SUBJECT

    # ========== Rolling summary ==========

    async def maybe_summarize(self, user_id: str) -> bool:
        """Fold older unsummarized messages into the rolling summary.

        Runs once the unsummarized count reaches ``summarization_threshold``;
        the newest ``keep_recent_count`` messages stay verbatim.
        """
        if not self.settings.enabled:
            return False

        summary = await self.repository.get_summary(user_id)
        after_id = summary.summarized_up_to_id if summary else None
        unsummarized = await self.repository.list_messages(user_id, after_id=after_id)
        if len(unsummarized) < self.settings.summarization_threshold:
            return False

        boundary = len(unsummarized) - self.settings.keep_recent_count
        while 0 < boundary < len(unsummarized) and isinstance(unsummarized[boundary].message, ToolMessage):
            boundary -= 1
        to_fold = unsummarized[:boundary]
        if not to_fold:
            return False

        folded_messages = [item.message for item in to_fold]
        parts = [CONVERSATION_SUMMARY_PROMPT]
        if summary and summary.content:
            parts.append(f"Earlier summary:\n{summary.content}")
        parts.append(f"Conversation:\n{format_messages_for_digest(folded_messages)}")

        content = await self.oracle.generate(
            [HumanMessage(content="\n\n".join(parts))],
            OracleOptions(temperature=SUMMARY_TEMPERATURE, max_tokens=SUMMARY_MAX_TOKENS),
        )
        content = (content or "").strip()
        if not content:
            LOGGER.warning(f"Empty history summary for user {user_id}, keeping previous summary")
            return False

        previous_count = summary.summarized_message_count if summary else 0
        await self.repository.upsert_summary(ConversationSummary(
            user_id=user_id,
            content=content,
            summarized_message_count=previous_count + len(to_fold),
            summarized_up_to_id=to_fold[-1].id,
            original_token_count=self.counter.estimate_messages_tokens(folded_messages),
            summary_token_count=self.counter.estimate_tokens(content),
        ))
        LOGGER.info(f"Summarized {len(to_fold)} message(s) for user {user_id}")
        return True

    async def clear_history(self, user_id: str) -> int:
        deleted = await self.repository.delete_all(user_id)
        LOGGER.warning(f"Cleared conversation history for user {user_id} ({deleted} messages)")
        return deleted


__all__ = [
    "DEFAULT_SUBJECT",
    "ConversationHistoryService",
    "format_time_gap",
]
