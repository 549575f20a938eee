"""Default prompt builder: OpenAI-format chat messages.

Message layout for a round:

    [system]                         optional system prompt
    ...request.history               prior turns, passed through
    [user]      request.prompt
    per completed round:
      [assistant] response + tool_calls
      [tool]      one per tool call, from context.tool_results[round.id]
    [user]      "[SYSTEM: ...]" correction / additional context, when present
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, Mapping

from tool_loop.rounds import ToolCallRound

if TYPE_CHECKING:
    from tool_loop.loop import BuildPromptContext, BuiltPrompt

logger = logging.getLogger(__name__)

MISSING_TOOL_RESULT: str = "ERROR: No result recorded for this tool call."
"""Placeholder so every assistant tool call is answered by a tool message."""


class MessagePromptBuilder:
    """Renders a BuildPromptContext into chat messages plus tool schemas."""

    def __init__(
        self,
        system_prompt: str | None = None,
        tools: list[dict[str, Any]] | None = None,
    ) -> None:
        self.system_prompt = system_prompt
        self.tools = list(tools or [])

    def build_prompt(self, context: BuildPromptContext) -> BuiltPrompt:
        from tool_loop.loop import BuiltPrompt

        messages: list[dict[str, Any]] = []
        if self.system_prompt:
            messages.append({"role": "system", "content": self.system_prompt})
        messages.extend(dict(m) for m in context.request.history)
        messages.append({"role": "user", "content": context.request.prompt})

        for round_ in context.rounds:
            messages.extend(
                self._round_messages(round_, context.tool_results.get(round_.id, {})),
            )

        trailer = self._trailer(context)
        if trailer:
            messages.append({"role": "user", "content": trailer})

        logger.debug(
            "Built prompt: %d messages, %d rounds, %d tools",
            len(messages), len(context.rounds), len(self.tools),
        )
        return BuiltPrompt(messages=messages, tools=list(self.tools))

    @staticmethod
    def _round_messages(
        round_: ToolCallRound, call_results: Mapping[str, str],
    ) -> list[dict[str, Any]]:
        if not round_.tool_calls:
            return [{"role": "assistant", "content": round_.response}]
        out: list[dict[str, Any]] = [
            {
                "role": "assistant",
                "content": round_.response or None,
                "tool_calls": [call.to_openai() for call in round_.tool_calls],
            }
        ]
        for call in round_.tool_calls:
            out.append({
                "role": "tool",
                "tool_call_id": call.id,
                "content": call_results.get(call.id, MISSING_TOOL_RESULT),
            })
        return out

    @staticmethod
    def _trailer(context: BuildPromptContext) -> str:
        parts: list[str] = []
        if context.tool_input_hint:
            parts.append(f"[SYSTEM: {context.tool_input_hint}]")
        for extra in context.additional_context:
            parts.append(f"[SYSTEM: {extra}]")
        return "\n\n".join(parts)
