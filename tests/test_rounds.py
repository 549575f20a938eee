"""Tests for tool_loop.rounds: tool calls, thinking accumulation, rounds."""

from __future__ import annotations

import pytest

from tool_loop.rounds import ThinkingDataItem, ThinkingDelta, ToolCall, ToolCallRound


# ---------------------------------------------------------------------------
# ToolCall
# ---------------------------------------------------------------------------


class TestToolCall:
    def test_from_openai_dict_arguments_serialized(self):
        call = ToolCall.from_openai({
            "id": "call_1",
            "type": "function",
            "function": {"name": "search", "arguments": {"query": "paris"}},
        })
        assert call.id == "call_1"
        assert call.name == "search"
        assert call.parsed_arguments() == {"query": "paris"}

    def test_from_openai_keeps_string_arguments_verbatim(self):
        call = ToolCall.from_openai({"id": "c", "function": {"name": "x", "arguments": '{"a":1}'}})
        assert call.arguments == '{"a":1}'

    def test_empty_arguments_parse_as_empty_object(self):
        assert ToolCall("c", "x", "  ").parsed_arguments() == {}

    def test_to_openai(self):
        assert ToolCall("c", "x", "{}").to_openai() == {
            "id": "c",
            "type": "function",
            "function": {"name": "x", "arguments": "{}"},
        }


# ---------------------------------------------------------------------------
# ThinkingDataItem
# ---------------------------------------------------------------------------


class TestThinkingDataItem:
    def test_create_uses_delta_id(self):
        item = ThinkingDataItem.create_or_update(None, ThinkingDelta(text="a", id="t1"))
        assert item.id == "t1"
        assert item.text == "a"

    def test_create_generates_id(self):
        item = ThinkingDataItem.create_or_update(None, ThinkingDelta(text="a"))
        assert item.id

    def test_scalar_deltas_concatenate(self):
        item = ThinkingDataItem("t")
        item.update(ThinkingDelta(text="Let me "))
        item.update(ThinkingDelta(text="think."))
        assert item.text == "Let me think."

    def test_scalar_then_list_becomes_list(self):
        item = ThinkingDataItem("t")
        item.update(ThinkingDelta(text="first"))
        item.update(ThinkingDelta(text=["second", "third"]))
        assert item.text == ["first", "second", "third"]

    def test_list_then_scalar_appends_element(self):
        item = ThinkingDataItem("t")
        item.update(ThinkingDelta(text=["a"]))
        item.update(ThinkingDelta(text="b"))
        assert item.text == ["a", "b"]
        assert item.joined_text == "ab"

    def test_id_replaced_by_later_delta(self):
        item = ThinkingDataItem.create_or_update(None, ThinkingDelta(text="a", id="first"))
        ThinkingDataItem.create_or_update(item, ThinkingDelta(text="b", id="second"))
        assert item.id == "second"
        assert item.text == "ab"

    def test_encrypted_and_metadata(self):
        item = ThinkingDataItem("t")
        item.update(ThinkingDelta(encrypted="blob", metadata={"signature": "s"}))
        assert item.encrypted == "blob"
        assert item.metadata == {"signature": "s"}
        assert item.text == ""

    def test_update_with_usage_mapping(self):
        item = ThinkingDataItem("t")
        item.update_with_usage({"completion_tokens_details": {"reasoning_tokens": 42}})
        assert item.tokens == 42

    def test_update_with_usage_without_details(self):
        item = ThinkingDataItem("t")
        item.update_with_usage({"completion_tokens": 5})
        assert item.tokens is None


# ---------------------------------------------------------------------------
# ToolCallRound
# ---------------------------------------------------------------------------


class TestToolCallRound:
    def test_defaults(self):
        round_ = ToolCallRound("hello")
        assert round_.id
        assert round_.tool_calls == ()
        assert round_.tool_input_retry == 0
        assert round_.summary is None

    def test_fields_are_read_only_except_summary(self):
        round_ = ToolCallRound("hello")
        round_.summary = "greeted"
        assert round_.summary == "greeted"
        with pytest.raises(AttributeError):
            round_.response = "changed"  # type: ignore[misc]

    def test_create_round_trip_keeps_summary(self):
        original = ToolCallRound(
            "Let me look.",
            tool_calls=[ToolCall("c1", "search", '{"q": "x"}')],
            tool_input_retry=1,
            stateful_marker="resp_1",
        )
        original.summary = "searched"
        copy = ToolCallRound.create(original.to_dict())
        assert copy.id == original.id
        assert copy.response == original.response
        assert copy.tool_calls == original.tool_calls
        assert copy.tool_input_retry == 1
        assert copy.stateful_marker == "resp_1"
        assert copy.summary == "searched"

    def test_create_from_round_shares_thinking_item(self):
        thinking = ThinkingDataItem.create_or_update(None, ThinkingDelta(text="hmm"))
        original = ToolCallRound("x", thinking=thinking)
        copy = ToolCallRound.create(original)
        assert copy.thinking is thinking

    def test_create_from_mapping_with_thinking_dict(self):
        round_ = ToolCallRound.create({
            "response": "r",
            "tool_calls": [{"id": "c", "name": "n", "arguments": {"a": 1}}],
            "thinking": {"id": "t", "text": ["a", "b"], "tokens": 3},
        })
        assert round_.tool_calls[0].parsed_arguments() == {"a": 1}
        assert round_.thinking is not None
        assert round_.thinking.text == ["a", "b"]
        assert round_.thinking.tokens == 3
