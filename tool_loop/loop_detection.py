"""Repetition detection over a turn's round history.

Two independent, stateless checks. Both return ``None`` when nothing looks
wrong; a result object means the turn should stop early.

- ``detect_tool_call_loop``: the trailing window of tool calls is dominated by
  one or two identical ``name:arguments`` pairs.
- ``detect_text_loop``: the latest response repeats the same sentence.

Both are advisory. A miss lets a stuck turn run to its round budget; a false
positive ends a turn early.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any, Sequence

from tool_loop.config import TextLoopPolicy, ToolCallLoopPolicy
from tool_loop.rounds import ToolCall, ToolCallRound

_SENTENCE_SPLIT_RE = re.compile(r"[.!?\n\r]+")
_NON_ALNUM_RE = re.compile(r"[^a-z0-9]+")


@dataclass(frozen=True)
class ToolCallLoopDetectionResult:
    """Evidence that the recent tool calls are repeating."""

    tool_counts_window: dict[str, int] = field(default_factory=dict)
    window_size: int = 0
    unique_tool_key_count: int = 0
    max_key_count: int = 0
    total_tool_call_rounds: int = 0
    total_tool_calls: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "tool_counts_window": dict(self.tool_counts_window),
            "window_size": self.window_size,
            "unique_tool_key_count": self.unique_tool_key_count,
            "max_key_count": self.max_key_count,
            "total_tool_call_rounds": self.total_tool_call_rounds,
            "total_tool_calls": self.total_tool_calls,
        }


@dataclass(frozen=True)
class TextLoopDetectionResult:
    """Evidence that the latest response repeats itself."""

    repeat_count: int
    total_sentences: int
    total_rounds: int
    response_length: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "repeat_count": self.repeat_count,
            "total_sentences": self.total_sentences,
            "total_rounds": self.total_rounds,
            "response_length": self.response_length,
        }


def tool_call_key(call: ToolCall) -> str:
    """Exact-match identity of a call. Differently serialized arguments are distinct."""
    return f"{call.name}:{call.arguments}"


def detect_tool_call_loop(
    rounds: Sequence[ToolCallRound],
    policy: ToolCallLoopPolicy = ToolCallLoopPolicy(),
) -> ToolCallLoopDetectionResult | None:
    """Flag a turn whose trailing tool calls bounce between one or two invocations."""
    all_calls: list[ToolCall] = []
    for round_ in rounds:
        all_calls.extend(round_.tool_calls)

    # Short turns are never flagged.
    if len(all_calls) < policy.min_total_calls:
        return None

    recent = all_calls[-min(policy.window_size, len(all_calls)):]
    if len(recent) < policy.min_total_calls:
        return None

    counts: dict[str, int] = {}
    for call in recent:
        key = tool_call_key(call)
        counts[key] = counts.get(key, 0) + 1

    unique_keys = len(counts)
    if unique_keys == 0:
        return None

    max_key_count = max(counts.values())
    if unique_keys <= policy.max_distinct_keys and max_key_count >= policy.min_repeats:
        return ToolCallLoopDetectionResult(
            tool_counts_window=counts,
            window_size=len(recent),
            unique_tool_key_count=unique_keys,
            max_key_count=max_key_count,
            total_tool_call_rounds=len(rounds),
            total_tool_calls=len(all_calls),
        )
    return None


def split_sentences(text: str) -> list[str]:
    return [s.strip() for s in _SENTENCE_SPLIT_RE.split(text) if s.strip()]


def normalize_sentence(sentence: str) -> str:
    return _NON_ALNUM_RE.sub(" ", sentence.lower()).strip()


def detect_text_loop(
    rounds: Sequence[ToolCallRound],
    policy: TextLoopPolicy = TextLoopPolicy(),
) -> TextLoopDetectionResult | None:
    """Flag a latest response that repeats the same sentence over and over.

    Only the most recent round is examined, not the whole history.
    """
    if not rounds:
        return None

    response = rounds[-1].response
    if not response or len(response) < policy.min_response_length:
        return None

    sentences = split_sentences(response)
    if len(sentences) < policy.min_sentences:
        return None

    counts: dict[str, int] = {}
    max_count = 0
    for sentence in sentences:
        normalized = normalize_sentence(sentence)
        # Too short to count as repeated content rather than coincidence.
        if len(normalized) < policy.min_sentence_length:
            continue
        count = counts.get(normalized, 0) + 1
        counts[normalized] = count
        max_count = max(max_count, count)

    if max_count >= policy.min_repeats:
        return TextLoopDetectionResult(
            repeat_count=max_count,
            total_sentences=len(sentences),
            total_rounds=len(rounds),
            response_length=len(response),
        )
    return None
