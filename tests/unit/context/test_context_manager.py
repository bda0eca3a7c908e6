"""Unit tests for live context budgeting."""

from unittest.mock import AsyncMock, MagicMock

import pytest
from langchain_core.messages import AIMessage, HumanMessage, SystemMessage, ToolMessage

from assistantOrchestrator.config.settings import ContextSettings
from assistantOrchestrator.context.manager import (
    SUMMARY_PREFIX,
    ContextManager,
    format_messages_for_digest,
    is_summary_message,
)


def make_oracle(digest="Digest of earlier turns"):
    oracle = MagicMock()
    oracle.generate = AsyncMock(return_value=digest)
    return oracle


def make_manager(oracle, **overrides):
    values = {"output_reserve": 0, "min_messages_to_keep": 4}
    values.update(overrides)
    settings = ContextSettings(**values)
    return ContextManager(oracle, settings, context_window_override=1000)


def conversation(pairs=10, size=350):
    messages = []
    for i in range(pairs):
        messages.append(HumanMessage(content=f"{i}" + "q" * (size - 1)))
        messages.append(AIMessage(content=f"{i}" + "a" * (size - 1)))
    return messages


class TestBudget:
    def test_thresholds(self):
        manager = make_manager(make_oracle())
        assert manager.trigger_tokens("gpt-4o") == 800
        assert manager.target_tokens("gpt-4o") == 500

    def test_would_trigger(self):
        manager = make_manager(make_oracle())
        assert not manager.would_trigger_summarization(conversation(2), "gpt-4o")
        assert manager.would_trigger_summarization(conversation(10), "gpt-4o")

    def test_disabled_never_triggers(self):
        manager = make_manager(make_oracle(), enabled=False)
        assert not manager.would_trigger_summarization(conversation(10), "gpt-4o")


class TestManageContext:
    @pytest.mark.asyncio
    async def test_under_budget_untouched(self):
        oracle = make_oracle()
        messages = conversation(2)
        result = await make_manager(oracle).manage_context(messages, "gpt-4o")

        assert result.strategy == "none"
        assert result.messages == messages
        oracle.generate.assert_not_called()

    @pytest.mark.asyncio
    async def test_folds_old_turns_into_digest(self):
        oracle = make_oracle()
        messages = conversation(10)
        result = await make_manager(oracle).manage_context(messages, "gpt-4o")

        assert result.summarized
        assert is_summary_message(result.messages[0])
        assert result.messages[0].content == f"{SUMMARY_PREFIX}\nDigest of earlier turns"
        assert result.messages[1:] == messages[-4:]
        assert result.folded_count == 16
        assert result.after_tokens < result.before_tokens

        _, options = oracle.generate.call_args.args
        assert options.temperature == 0.3
        assert options.max_tokens <= 2000

    @pytest.mark.asyncio
    async def test_previous_digest_is_merged(self):
        oracle = make_oracle("Merged digest")
        previous = SystemMessage(content=f"{SUMMARY_PREFIX}\nOld digest")
        messages = [previous] + conversation(10)

        result = await make_manager(oracle).manage_context(messages, "gpt-4o")

        prompt = oracle.generate.call_args.args[0][0].content
        assert "Previous digest:" in prompt
        assert "Old digest" in prompt
        assert result.messages[0].content.endswith("Merged digest")
        assert sum(1 for m in result.messages if is_summary_message(m)) == 1

    @pytest.mark.asyncio
    async def test_kept_tail_never_starts_with_tool_result(self):
        oracle = make_oracle()
        messages = conversation(8)
        messages += [
            AIMessage(content="", tool_calls=[{"name": "lookup", "args": {}, "id": f"c{i}"} for i in range(3)]),
            *[ToolMessage(content="r" * 1200, tool_call_id=f"c{i}", name="lookup") for i in range(3)],
            AIMessage(content="final"),
        ]
        result = await make_manager(oracle).manage_context(messages, "gpt-4o")

        assert result.summarized
        assert not isinstance(result.messages[1], ToolMessage)

    @pytest.mark.asyncio
    async def test_digest_failure_falls_back_to_trim(self):
        oracle = MagicMock()
        oracle.generate = AsyncMock(side_effect=RuntimeError("provider down"))
        messages = conversation(10)

        result = await make_manager(oracle).manage_context(messages, "gpt-4o")

        assert result.strategy == "trim"
        assert result.messages == messages[-4:]
        assert result.after_tokens <= 500

    @pytest.mark.asyncio
    async def test_empty_digest_falls_back_to_trim(self):
        result = await make_manager(make_oracle("   ")).manage_context(conversation(10), "gpt-4o")
        assert result.strategy == "trim"

    @pytest.mark.asyncio
    async def test_nothing_foldable(self):
        oracle = make_oracle()
        manager = make_manager(oracle, min_messages_to_keep=50)
        result = await manager.manage_context(conversation(10), "gpt-4o")

        assert result.strategy == "none"
        oracle.generate.assert_not_called()


def test_format_messages_for_digest():
    text = format_messages_for_digest([
        HumanMessage(content="plan my trip"),
        AIMessage(content="", tool_calls=[{"name": "create_task_plan", "args": {}, "id": "1"}]),
        ToolMessage(content="{}", tool_call_id="1", name="create_task_plan"),
        SystemMessage(content="Agent updates"),
    ])
    assert "[User] plan my trip" in text
    assert "[Assistant] called tools: create_task_plan" in text
    assert "[Tool:create_task_plan] {}" in text
    assert "[System] Agent updates" in text
