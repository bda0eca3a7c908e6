"""Unit tests for message sequence cleanup."""

import random

import pytest
from langchain_core.messages import AIMessage, HumanMessage, SystemMessage, ToolMessage

from assistantOrchestrator.context.message_utils import (
    drop_leading_tool_messages,
    trim_to_token_budget,
    truncate_messages_safely,
    validate_message_sequence,
)
from assistantOrchestrator.context.token_counter import TokenCounter


def ai_call(*ids):
    return AIMessage(content="", tool_calls=[{"name": "lookup", "args": {}, "id": i} for i in ids])


def result(call_id, text="ok"):
    return ToolMessage(content=text, tool_call_id=call_id, name="lookup")


class TestValidateMessageSequence:
    def test_valid_sequence_unchanged(self):
        messages = [HumanMessage(content="hi"), ai_call("1", "2"), result("1"), result("2"), AIMessage(content="done")]
        assert validate_message_sequence(messages) == messages

    def test_orphan_tool_result_dropped(self):
        messages = [HumanMessage(content="hi"), result("ghost"), AIMessage(content="answer")]
        assert validate_message_sequence(messages) == [messages[0], messages[2]]

    def test_partially_answered_exchange_dropped(self):
        messages = [
            HumanMessage(content="hi"),
            ai_call("1", "2"),
            result("1"),
            SystemMessage(content="interruption"),
        ]
        assert validate_message_sequence(messages) == [messages[0], messages[3]]

    def test_open_exchange_at_end_dropped(self):
        messages = [HumanMessage(content="hi"), ai_call("1")]
        assert validate_message_sequence(messages) == [messages[0]]

    def test_duplicate_result_dropped(self):
        messages = [ai_call("1"), result("1"), result("1", "again")]
        assert validate_message_sequence(messages) == messages[:2]

    def test_idempotent(self):
        messages = [
            result("x"),
            HumanMessage(content="q"),
            ai_call("1", "2"),
            result("2"),
            HumanMessage(content="q2"),
            ai_call("3"),
            result("3"),
        ]
        once = validate_message_sequence(messages)
        assert validate_message_sequence(once) == once

    def test_returns_new_list(self):
        messages = [HumanMessage(content="hi")]
        cleaned = validate_message_sequence(messages)
        cleaned.append(HumanMessage(content="more"))
        assert len(messages) == 1


class TestTrimming:
    def test_drop_leading_tool_messages(self):
        messages = [result("1"), result("2"), HumanMessage(content="hi")]
        assert drop_leading_tool_messages(messages) == [messages[2]]

    def test_truncate_never_splits_exchange(self):
        messages = [HumanMessage(content="q"), ai_call("1"), result("1"), AIMessage(content="a")]
        truncated = truncate_messages_safely(messages, keep_recent=2)
        assert truncated == [messages[3]]

    def test_truncate_short_history_kept(self):
        messages = [HumanMessage(content="q"), AIMessage(content="a")]
        assert truncate_messages_safely(messages, keep_recent=10) == messages

    def test_trim_to_token_budget_keeps_newest(self):
        messages = [HumanMessage(content="x" * 700) for _ in range(5)] + [HumanMessage(content="latest")]
        trimmed = trim_to_token_budget(messages, max_tokens=250)
        assert trimmed[-1].content == "latest"
        assert len(trimmed) < len(messages)
        assert not isinstance(trimmed[0], ToolMessage)


def _random_history(rng: random.Random, length: int):
    """Random role sequence with complete, partial and orphaned tool exchanges."""
    messages = []
    next_id = 0
    while len(messages) < length:
        kind = rng.choice(["human", "system", "answer", "exchange", "partial", "orphan"])
        if kind == "human":
            messages.append(HumanMessage(content="q" * rng.randint(1, 200)))
        elif kind == "system":
            messages.append(SystemMessage(content="note"))
        elif kind == "answer":
            messages.append(AIMessage(content="a" * rng.randint(1, 200)))
        elif kind == "orphan":
            messages.append(result(f"ghost-{next_id}"))
            next_id += 1
        else:
            ids = [f"c{next_id + i}" for i in range(rng.randint(1, 3))]
            next_id += len(ids)
            messages.append(ai_call(*ids))
            answered = ids if kind == "exchange" else ids[: rng.randint(0, len(ids) - 1)]
            messages.extend(result(i, "r" * rng.randint(1, 300)) for i in answered)
    return messages


def assert_well_formed(messages):
    assert not messages or not isinstance(messages[0], ToolMessage)
    pending = set()
    for message in messages:
        if isinstance(message, ToolMessage):
            assert message.tool_call_id in pending
            pending.discard(message.tool_call_id)
            continue
        assert not pending, "assistant tool calls left unanswered"
        if isinstance(message, AIMessage) and message.tool_calls:
            pending = {tc["id"] for tc in message.tool_calls}
    assert not pending


class TestRandomHistories:
    @pytest.mark.parametrize("seed", range(50))
    def test_trim_never_opens_on_tool_result(self, seed):
        rng = random.Random(seed)
        messages = _random_history(rng, rng.randint(1, 60))
        counter = TokenCounter()
        budget = rng.randint(10, counter.estimate_messages_tokens(messages) + 10)

        trimmed = trim_to_token_budget(messages, max_tokens=budget, counter=counter)

        assert_well_formed(trimmed)
        assert counter.estimate_messages_tokens(trimmed) <= budget
        assert trim_to_token_budget(trimmed, max_tokens=budget, counter=counter) == trimmed
        assert validate_message_sequence(trimmed) == trimmed

    @pytest.mark.parametrize("seed", range(50))
    def test_truncate_keeps_exchanges_whole(self, seed):
        rng = random.Random(seed)
        messages = _random_history(rng, rng.randint(1, 60))

        truncated = truncate_messages_safely(messages, keep_recent=rng.randint(1, 20))

        assert_well_formed(truncated)


def test_dangling_call_dropped_when_trimming_long_conversation():
    messages = []
    turn_starts = {}
    for turn in range(1, 41):
        turn_starts[turn] = len(messages)
        messages.append(HumanMessage(content=f"question {turn}"))
        if turn == 38:
            messages.append(ai_call("dangling-1", "dangling-2"))
            messages.append(result("dangling-1"))
        elif turn % 5 == 0:
            messages.append(ai_call(f"call-{turn}"))
            messages.append(result(f"call-{turn}"))
            messages.append(AIMessage(content=f"answer {turn}"))
        else:
            messages.append(AIMessage(content=f"answer {turn}"))

    counter = TokenCounter()
    budget = counter.estimate_messages_tokens(messages[turn_starts[31]:])
    trimmed = trim_to_token_budget(messages, max_tokens=budget, counter=counter)

    assert trimmed[0].content == "question 31"
    assert_well_formed(trimmed)
    call_ids = {tc["id"] for m in trimmed if isinstance(m, AIMessage) for tc in m.tool_calls}
    assert call_ids == {"call-35", "call-40"}
    assert not [m for m in trimmed if isinstance(m, ToolMessage) and m.tool_call_id.startswith("dangling")]
    assert [m.content for m in trimmed if isinstance(m, HumanMessage)] == [f"question {t}" for t in range(31, 41)]
