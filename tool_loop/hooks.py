"""Lifecycle hooks around the tool-calling loop.

A hook is a callback registered for a lifecycle event (before a tool runs,
after it runs, when the user prompt is submitted, ...). Dispatching an event
yields zero or more ``HookResult`` objects in invocation order, which
``process_hook_results`` turns into abort / warning / continue signals.

Registries are plain objects owned by whoever composes the loop; there is no
module-level registry to mutate:

    registry = HookRegistry()
    registry.register(HookType.PRE_TOOL_USE, lambda: PreToolUseLoggingHook())
    registry.register(HookType.PRE_TOOL_USE, make_policy_hook)

    dispatcher = RegistryHookDispatcher(registry)
    results = await dispatcher.dispatch(HookType.PRE_TOOL_USE, {"tool_name": "bash"})
    process_hook_results(HookType.PRE_TOOL_USE, results, sink, on_success=print)

Handlers are built through a resolver callable, so a composition root can
inject dependencies (``registry.build(resolver=container.create)``).
"""

from __future__ import annotations

import asyncio
import logging
from enum import Enum
from typing import (
    Any,
    Awaitable,
    Callable,
    Literal,
    Mapping,
    Protocol,
    Sequence,
    Union,
    runtime_checkable,
)

from pydantic import BaseModel, ConfigDict, ValidationError

from tool_loop.errors import HookAbortError
from tool_loop.sinks import OutputSink

logger = logging.getLogger(__name__)


class HookType(str, Enum):
    """Lifecycle events that hooks can intercept."""

    USER_PROMPT_SUBMIT = "UserPromptSubmit"
    PRE_TOOL_USE = "PreToolUse"
    POST_TOOL_USE = "PostToolUse"
    STOP = "Stop"
    SUBAGENT_START = "SubagentStart"
    SUBAGENT_STOP = "SubagentStop"
    SESSION_START = "SessionStart"
    SESSION_END = "SessionEnd"

    def __str__(self) -> str:
        return self.value


HookResultKind = Literal["success", "warning", "error"]


class HookResult(BaseModel):
    """Outcome of one hook invocation."""

    model_config = ConfigDict(frozen=True)

    stop_reason: str | None = None
    result_kind: HookResultKind = "success"
    warning_message: str | None = None
    output: Any = None


# ---------------------------------------------------------------------------
# Result processing
# ---------------------------------------------------------------------------


def format_hook_error_message(error_message: str) -> str:
    """User-facing text for a hook that failed with a fatal error."""
    if error_message:
        return (
            "A hook failed with a fatal error. Please check the hooks log for more "
            f"details. Error message: {error_message}"
        )
    return "A hook failed with a fatal error. Please check the hooks log for more details."


def process_hook_results(
    hook_type: HookType | str,
    results: Sequence[HookResult],
    output_sink: OutputSink | None,
    on_success: Callable[[Any], None],
) -> None:
    """Apply hook results in order.

    - ``stop_reason`` set: raise HookAbortError, later results are not looked at.
    - ``warning``: collected, shown once after the batch.
    - ``success``: ``on_success(output)`` is called immediately.
    - ``error``: always fatal, raise HookAbortError with the error output.

    Raises:
        HookAbortError: On a stop reason or an error result.
    """
    warnings: list[str] = []

    for result in results:
        if result.stop_reason:
            logger.info(
                "[ToolCallingLoop] %s hook requested abort: %s", hook_type, result.stop_reason,
            )
            raise HookAbortError(str(hook_type), result.stop_reason)

        if result.result_kind == "warning":
            if result.warning_message:
                logger.debug(
                    "[ToolCallingLoop] %s hook warning: %s", hook_type, result.warning_message,
                )
                warnings.append(result.warning_message)
        elif result.result_kind == "success":
            on_success(result.output)
        elif result.result_kind == "error":
            error_message = result.output if isinstance(result.output, str) else ""
            logger.error("[ToolCallingLoop] %s hook error: %s", hook_type, error_message)
            if output_sink is not None:
                output_sink.hook_progress(
                    str(hook_type), error_message=format_hook_error_message(error_message),
                )
            raise HookAbortError(str(hook_type), error_message)

    if warnings and output_sink is not None:
        if len(warnings) == 1:
            output_sink.hook_progress(str(hook_type), warning_message=warnings[0])
        else:
            formatted = "\n".join(f"{i}. {w}" for i, w in enumerate(warnings, start=1))
            output_sink.hook_progress(str(hook_type), warning_message=formatted)


# ---------------------------------------------------------------------------
# Handlers and registry
# ---------------------------------------------------------------------------

HookCallbackReturn = Union[HookResult, Mapping[str, Any], None]
HookCallback = Callable[
    [Mapping[str, Any]],
    Union[HookCallbackReturn, Awaitable[HookCallbackReturn]],
]


@runtime_checkable
class HookCallbackMatcher(Protocol):
    """A handler: an ordered list of callbacks for one lifecycle event."""

    hooks: list[HookCallback]


HookHandlerFactory = Callable[..., HookCallbackMatcher]
HandlerResolver = Callable[[HookHandlerFactory], HookCallbackMatcher]


def _default_resolver(factory: HookHandlerFactory) -> HookCallbackMatcher:
    return factory()


class HookRegistry:
    """Ordered handler factories per lifecycle event.

    Construction order is registration order; ``build`` preserves it.
    """

    def __init__(self) -> None:
        self._factories: dict[HookType, list[HookHandlerFactory]] = {}

    def register(self, hook_type: HookType | str, factory: HookHandlerFactory) -> None:
        """Append *factory* to the handlers for *hook_type*."""
        self._factories.setdefault(HookType(hook_type), []).append(factory)

    def handlers_for(self, hook_type: HookType | str) -> tuple[HookHandlerFactory, ...]:
        return tuple(self._factories.get(HookType(hook_type), ()))

    @property
    def hook_types(self) -> tuple[HookType, ...]:
        return tuple(k for k, v in self._factories.items() if v)

    def build(
        self, resolver: HandlerResolver | None = None,
    ) -> dict[HookType, list[HookCallbackMatcher]]:
        """Instantiate every registered handler, skipping events with no handlers."""
        resolve = resolver or _default_resolver
        built: dict[HookType, list[HookCallbackMatcher]] = {}
        for hook_type, factories in self._factories.items():
            if not factories:
                continue
            built[hook_type] = [resolve(factory) for factory in factories]
        return built

    def __len__(self) -> int:
        return sum(len(v) for v in self._factories.values())


class RegistryHookDispatcher:
    """Hook dispatcher backed by a HookRegistry.

    Handlers are built lazily on first dispatch and reused for the lifetime of
    the dispatcher. Every callback of every handler runs in order.
    """

    def __init__(
        self,
        registry: HookRegistry,
        resolver: HandlerResolver | None = None,
    ) -> None:
        self._registry = registry
        self._resolver = resolver
        self._handlers: dict[HookType, list[HookCallbackMatcher]] | None = None

    @property
    def handlers(self) -> dict[HookType, list[HookCallbackMatcher]]:
        if self._handlers is None:
            self._handlers = self._registry.build(self._resolver)
        return self._handlers

    async def dispatch(
        self, hook_type: HookType | str, payload: Mapping[str, Any],
    ) -> list[HookResult]:
        results: list[HookResult] = []
        for handler in self.handlers.get(HookType(hook_type), []):
            for callback in handler.hooks:
                results.append(await _invoke_callback(hook_type, callback, payload))
        return results


async def _invoke_callback(
    hook_type: HookType | str,
    callback: HookCallback,
    payload: Mapping[str, Any],
) -> HookResult:
    try:
        raw = callback(payload)
        if asyncio.iscoroutine(raw) or isinstance(raw, asyncio.Future):
            raw = await raw
    except asyncio.CancelledError:
        raise
    except Exception as exc:
        logger.error("[ToolCallingLoop] %s hook callback raised: %s", hook_type, exc)
        return HookResult(result_kind="error", output=f"{type(exc).__name__}: {exc}")
    return coerce_hook_result(raw)


def coerce_hook_result(raw: HookCallbackReturn) -> HookResult:
    """Normalize a callback's return value into a HookResult.

    ``None`` is a success with no output; mappings are validated.
    """
    if raw is None:
        return HookResult()
    if isinstance(raw, HookResult):
        return raw
    if isinstance(raw, Mapping):
        try:
            return HookResult.model_validate(dict(raw))
        except ValidationError as exc:
            return HookResult(result_kind="error", output=f"Invalid hook result: {exc}")
    return HookResult(result_kind="error", output=f"Invalid hook result type: {type(raw).__name__}")


# ---------------------------------------------------------------------------
# Built-in handlers
# ---------------------------------------------------------------------------


class PreToolUseLoggingHook:
    """Logs every tool call before it runs."""

    def __init__(self, log: logging.Logger | None = None) -> None:
        self._log = log or logger
        self.hooks: list[HookCallback] = [self._on_pre_tool_use]

    def _on_pre_tool_use(self, payload: Mapping[str, Any]) -> HookResult:
        self._log.debug(
            "[ToolCallingLoop] PreToolUse hook: tool=%s, tool_call_id=%s",
            payload.get("tool_name"),
            payload.get("tool_call_id"),
        )
        return HookResult()


class PostToolUseLoggingHook:
    """Logs every tool call after it ran, with the size of its output."""

    def __init__(self, log: logging.Logger | None = None) -> None:
        self._log = log or logger
        self.hooks: list[HookCallback] = [self._on_post_tool_use]

    def _on_post_tool_use(self, payload: Mapping[str, Any]) -> HookResult:
        output = payload.get("tool_output")
        self._log.debug(
            "[ToolCallingLoop] PostToolUse hook: tool=%s, tool_call_id=%s, output_chars=%d",
            payload.get("tool_name"),
            payload.get("tool_call_id"),
            len(output) if isinstance(output, str) else 0,
        )
        return HookResult()
