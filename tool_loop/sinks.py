"""Output and usage sinks consumed by the tool-calling loop.

``OutputSink`` is the append-only stream a turn writes to: response text,
one aggregated hook message per lifecycle dispatch, and tool progress notices.
``UsageSink`` receives token counts once per completed round (never for
sub-agent turns).

Two ready-made implementations are provided: ``RecordingOutputSink`` keeps
everything in memory (tests, batch runs), ``LoggingOutputSink`` forwards to a
logger.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Protocol, runtime_checkable

logger = logging.getLogger(__name__)


@runtime_checkable
class OutputSink(Protocol):
    """Append-only stream for a single turn."""

    def text(self, fragment: str) -> None: ...

    def hook_progress(
        self,
        hook_type: str,
        error_message: str | None = None,
        warning_message: str | None = None,
    ) -> None: ...

    def tool_progress(self, tool_name: str, tool_call_id: str, message: str) -> None: ...


@runtime_checkable
class UsageSink(Protocol):
    """Receives prompt/completion token counts for a completed round."""

    def report(self, prompt_tokens: int, completion_tokens: int) -> None: ...


@dataclass
class HookMessage:
    """One hook_progress emission."""

    hook_type: str
    error_message: str | None = None
    warning_message: str | None = None


@dataclass
class RecordingOutputSink:
    """In-memory OutputSink."""

    fragments: list[str] = field(default_factory=list)
    hook_messages: list[HookMessage] = field(default_factory=list)
    tool_messages: list[tuple[str, str, str]] = field(default_factory=list)

    def text(self, fragment: str) -> None:
        self.fragments.append(fragment)

    def hook_progress(
        self,
        hook_type: str,
        error_message: str | None = None,
        warning_message: str | None = None,
    ) -> None:
        self.hook_messages.append(
            HookMessage(
                hook_type=str(hook_type),
                error_message=error_message,
                warning_message=warning_message,
            )
        )

    def tool_progress(self, tool_name: str, tool_call_id: str, message: str) -> None:
        self.tool_messages.append((tool_name, tool_call_id, message))

    @property
    def full_text(self) -> str:
        return "".join(self.fragments)


class LoggingOutputSink:
    """OutputSink that forwards everything to a logger."""

    def __init__(self, log: logging.Logger | None = None) -> None:
        self._log = log or logger

    def text(self, fragment: str) -> None:
        self._log.info("%s", fragment)

    def hook_progress(
        self,
        hook_type: str,
        error_message: str | None = None,
        warning_message: str | None = None,
    ) -> None:
        if error_message:
            self._log.error("[%s] %s", hook_type, error_message)
        if warning_message:
            self._log.warning("[%s] %s", hook_type, warning_message)

    def tool_progress(self, tool_name: str, tool_call_id: str, message: str) -> None:
        self._log.info("[tool:%s %s] %s", tool_name, tool_call_id, message)


@dataclass
class RecordingUsageSink:
    """In-memory UsageSink."""

    usages: list[dict[str, Any]] = field(default_factory=list)

    def report(self, prompt_tokens: int, completion_tokens: int) -> None:
        self.usages.append(
            {"prompt_tokens": prompt_tokens, "completion_tokens": completion_tokens}
        )
