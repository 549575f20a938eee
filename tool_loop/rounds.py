"""Round model for the tool-calling loop.

A ``ToolCallRound`` records one model response plus the tool calls it
requested. Rounds are append-only history owned by the loop; ``summary`` is the
only field that may change after construction.

Usage:
    round_ = ToolCallRound.create({
        "response": "Let me look that up.",
        "tool_calls": [ToolCall("call_1", "search", '{"query": "paris"}')],
    })
    round_.summary = "searched for paris"
"""

from __future__ import annotations

import json as _json
import uuid
from dataclasses import dataclass, field
from typing import Any, Iterable, Mapping


def _generate_id() -> str:
    return str(uuid.uuid4())


# ---------------------------------------------------------------------------
# Tool calls
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ToolCall:
    """One requested action: correlation id, tool name, serialized arguments."""

    id: str
    name: str
    arguments: str = "{}"

    @classmethod
    def from_openai(cls, tc: Mapping[str, Any]) -> "ToolCall":
        """Build from an OpenAI/litellm tool call dict.

        ``{"id": ..., "type": "function", "function": {"name": ..., "arguments": ...}}``
        """
        fn_info = tc.get("function") or {}
        arguments = fn_info.get("arguments", "{}")
        if not isinstance(arguments, str):
            arguments = _json.dumps(arguments)
        return cls(
            id=str(tc.get("id") or _generate_id()),
            name=str(fn_info.get("name", "")),
            arguments=arguments,
        )

    def parsed_arguments(self) -> Any:
        """Decode the serialized arguments. Raises json.JSONDecodeError if malformed."""
        if not self.arguments.strip():
            return {}
        return _json.loads(self.arguments)

    def to_openai(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "type": "function",
            "function": {"name": self.name, "arguments": self.arguments},
        }


# ---------------------------------------------------------------------------
# Thinking accumulation
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ThinkingDelta:
    """One incremental piece of reasoning content from a streamed response."""

    text: str | list[str] | None = None
    id: str | None = None
    metadata: dict[str, Any] | None = None
    encrypted: str | None = None


class ThinkingDataItem:
    """Accumulator for reasoning content associated with a round.

    ``text`` stays a plain string while only scalar deltas arrive. Once any
    delta carries a list, ``text`` becomes a list and every later delta is
    appended as new element(s) in arrival order.
    """

    def __init__(self, id: str) -> None:
        self.id = id
        self.text: str | list[str] = ""
        self.metadata: dict[str, Any] | None = None
        self.tokens: int | None = None
        self.encrypted: str | None = None

    @classmethod
    def create_or_update(
        cls, item: "ThinkingDataItem | None", delta: ThinkingDelta,
    ) -> "ThinkingDataItem":
        if item is None:
            item = cls(delta.id or _generate_id())
        item.update(delta)
        return item

    def update(self, delta: ThinkingDelta) -> None:
        if delta.id and delta.id != self.id:
            self.id = delta.id
        if delta.encrypted is not None:
            self.encrypted = delta.encrypted
        if delta.text is not None:
            if isinstance(delta.text, list):
                if isinstance(self.text, list):
                    self.text.extend(delta.text)
                elif self.text:
                    self.text = [self.text, *delta.text]
                else:
                    self.text = list(delta.text)
            elif isinstance(self.text, list):
                self.text.append(delta.text)
            else:
                self.text += delta.text
        if delta.metadata:
            self.metadata = dict(delta.metadata)

    def update_with_usage(self, usage: Any) -> None:
        """Record reasoning token count from final usage accounting."""
        details = _field(usage, "completion_tokens_details")
        self.tokens = _field(details, "reasoning_tokens")

    @property
    def joined_text(self) -> str:
        if isinstance(self.text, list):
            return "".join(self.text)
        return self.text

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "text": list(self.text) if isinstance(self.text, list) else self.text,
            "metadata": dict(self.metadata) if self.metadata else None,
            "tokens": self.tokens,
            "encrypted": self.encrypted,
        }

    def __repr__(self) -> str:
        return f"ThinkingDataItem(id={self.id!r}, text={self.text!r}, tokens={self.tokens!r})"


def _field(obj: Any, name: str) -> Any:
    if obj is None:
        return None
    if isinstance(obj, Mapping):
        return obj.get(name)
    return getattr(obj, name, None)


# ---------------------------------------------------------------------------
# Rounds
# ---------------------------------------------------------------------------


class ToolCallRound:
    """One model response and the tool calls it requested.

    Args:
        response: The text response from the assistant (may be empty).
        tool_calls: Tool calls in request order.
        tool_input_retry: Times this round was regenerated after invalid tool input.
        id: Stable identifier; a uuid4 is generated when omitted.
        stateful_marker: Opaque backend token chaining state across rounds.
        thinking: Reasoning content accumulated for this round.
    """

    __slots__ = ("_response", "_tool_calls", "_tool_input_retry", "_id",
                 "_stateful_marker", "_thinking", "summary")

    def __init__(
        self,
        response: str,
        tool_calls: Iterable[ToolCall] = (),
        tool_input_retry: int = 0,
        id: str | None = None,
        stateful_marker: str | None = None,
        thinking: ThinkingDataItem | None = None,
    ) -> None:
        self._response = response or ""
        self._tool_calls = tuple(tool_calls)
        self._tool_input_retry = tool_input_retry
        self._id = id or _generate_id()
        self._stateful_marker = stateful_marker
        self._thinking = thinking
        self.summary: str | None = None

    @classmethod
    def create(cls, params: "Mapping[str, Any] | ToolCallRound") -> "ToolCallRound":
        """Create a round from plain data (or copy another round), keeping ``summary``."""
        if isinstance(params, ToolCallRound):
            params = params.to_dict(thinking_as_item=True)
        raw_calls = params.get("tool_calls") or ()
        tool_calls = [
            tc if isinstance(tc, ToolCall) else _tool_call_from_mapping(tc)
            for tc in raw_calls
        ]
        thinking = params.get("thinking")
        if isinstance(thinking, Mapping):
            item = ThinkingDataItem(str(thinking.get("id") or _generate_id()))
            text = thinking.get("text", "")
            item.text = list(text) if isinstance(text, list) else (text or "")
            item.metadata = thinking.get("metadata")
            item.tokens = thinking.get("tokens")
            item.encrypted = thinking.get("encrypted")
            thinking = item
        round_ = cls(
            response=params.get("response", ""),
            tool_calls=tool_calls,
            tool_input_retry=int(params.get("tool_input_retry", 0) or 0),
            id=params.get("id"),
            stateful_marker=params.get("stateful_marker"),
            thinking=thinking,
        )
        round_.summary = params.get("summary")
        return round_

    @property
    def response(self) -> str:
        return self._response

    @property
    def tool_calls(self) -> tuple[ToolCall, ...]:
        return self._tool_calls

    @property
    def tool_input_retry(self) -> int:
        return self._tool_input_retry

    @property
    def id(self) -> str:
        return self._id

    @property
    def stateful_marker(self) -> str | None:
        return self._stateful_marker

    @property
    def thinking(self) -> ThinkingDataItem | None:
        return self._thinking

    def to_dict(self, *, thinking_as_item: bool = False) -> dict[str, Any]:
        thinking: Any = self._thinking
        if thinking is not None and not thinking_as_item:
            thinking = thinking.to_dict()
        return {
            "id": self._id,
            "response": self._response,
            "tool_calls": [
                {"id": tc.id, "name": tc.name, "arguments": tc.arguments}
                for tc in self._tool_calls
            ],
            "tool_input_retry": self._tool_input_retry,
            "stateful_marker": self._stateful_marker,
            "thinking": thinking,
            "summary": self.summary,
        }

    def __repr__(self) -> str:
        return (
            f"ToolCallRound(id={self._id!r}, response={self._response[:40]!r}, "
            f"tool_calls={len(self._tool_calls)}, tool_input_retry={self._tool_input_retry})"
        )


def _tool_call_from_mapping(tc: Mapping[str, Any]) -> ToolCall:
    if "function" in tc:
        return ToolCall.from_openai(tc)
    arguments = tc.get("arguments", "{}")
    if not isinstance(arguments, str):
        arguments = _json.dumps(arguments)
    return ToolCall(id=str(tc.get("id") or _generate_id()), name=str(tc.get("name", "")), arguments=arguments)
