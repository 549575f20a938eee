"""Tests for tool_loop.prompting.MessagePromptBuilder."""

from __future__ import annotations

from tool_loop.loop import BuildPromptContext, TurnRequest
from tool_loop.prompting import MISSING_TOOL_RESULT, MessagePromptBuilder
from tool_loop.rounds import ToolCall, ToolCallRound

TOOLS = [{"type": "function", "function": {"name": "add", "parameters": {"type": "object"}}}]


def _context(**overrides) -> BuildPromptContext:
    base = {
        "request": TurnRequest(
            prompt="What is 1 + 2?",
            history=[{"role": "user", "content": "hi"}, {"role": "assistant", "content": "hello"}],
        ),
        "rounds": (),
        "tool_results": {},
        "iteration": 0,
    }
    base.update(overrides)
    return BuildPromptContext(**base)


class TestMessagePromptBuilder:
    def test_first_round(self):
        prompt = MessagePromptBuilder("Be brief.", TOOLS).build_prompt(_context())
        assert prompt.messages == [
            {"role": "system", "content": "Be brief."},
            {"role": "user", "content": "hi"},
            {"role": "assistant", "content": "hello"},
            {"role": "user", "content": "What is 1 + 2?"},
        ]
        assert prompt.tools == TOOLS

    def test_no_system_prompt(self):
        prompt = MessagePromptBuilder().build_prompt(_context())
        assert prompt.messages[0] == {"role": "user", "content": "hi"}
        assert prompt.tools == []

    def test_rounds_rendered_with_tool_results(self):
        round_ = ToolCallRound(
            "",
            tool_calls=[ToolCall("c1", "add", '{"a": 1}'), ToolCall("c2", "add", '{"a": 2}')],
        )
        prompt = MessagePromptBuilder().build_prompt(
            _context(rounds=(round_,), tool_results={round_.id: {"c1": "1"}}),
        )
        assistant, first, second = prompt.messages[-3:]
        assert assistant["role"] == "assistant"
        assert assistant["content"] is None
        assert [tc["id"] for tc in assistant["tool_calls"]] == ["c1", "c2"]
        assert first == {"role": "tool", "tool_call_id": "c1", "content": "1"}
        assert second["content"] == MISSING_TOOL_RESULT

    def test_same_call_id_in_two_rounds_keeps_each_result(self):
        first = ToolCallRound("", tool_calls=[ToolCall("call_0", "add", '{"a": 1}')])
        second = ToolCallRound("", tool_calls=[ToolCall("call_0", "add", '{"a": 5}')])
        prompt = MessagePromptBuilder().build_prompt(
            _context(
                rounds=(first, second),
                tool_results={first.id: {"call_0": "3"}, second.id: {"call_0": "10"}},
            ),
        )
        assert [m["content"] for m in prompt.messages if m["role"] == "tool"] == ["3", "10"]

    def test_text_only_round(self):
        prompt = MessagePromptBuilder().build_prompt(
            _context(rounds=(ToolCallRound("partial answer"),)),
        )
        assert prompt.messages[-1] == {"role": "assistant", "content": "partial answer"}

    def test_hint_and_additional_context_trail(self):
        prompt = MessagePromptBuilder().build_prompt(
            _context(tool_input_hint="Fix the input.", additional_context=("Use metric units.",)),
        )
        assert prompt.messages[-1] == {
            "role": "user",
            "content": "[SYSTEM: Fix the input.]\n\n[SYSTEM: Use metric units.]",
        }

    def test_history_not_mutated(self):
        context = _context()
        prompt = MessagePromptBuilder().build_prompt(context)
        prompt.messages[0]["content"] = "changed"
        assert context.request.history[0]["content"] == "hi"
