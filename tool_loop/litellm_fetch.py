"""litellm-backed endpoint and fetcher for the tool-calling loop.

Usage:
    from tool_loop.endpoint import StaticEndpointProvider
    from tool_loop.litellm_fetch import LiteLLMEndpoint, LiteLLMFetcher

    provider = StaticEndpointProvider(LiteLLMEndpoint("anthropic/claude-sonnet-4-5"))
    fetcher = LiteLLMFetcher(num_retries=2)

Retries rate limits and transient server/connection errors with jittered
exponential backoff; everything else (and the last failure) is raised as a
``FetchError`` subclass.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

import litellm

from tool_loop.cancellation import CancellationToken
from tool_loop.errors import is_retryable_fetch_error, wrap_fetch_error
from tool_loop.execution_kernel import exponential_backoff, run_async_with_retry
from tool_loop.loop import FetchResult
from tool_loop.rounds import ThinkingDelta, ToolCall

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LiteLLMEndpoint:
    """Resolved model backend: a litellm model string plus connection settings."""

    model: str
    api_base: str | None = None
    timeout: int = 60
    extra_kwargs: dict[str, Any] = field(default_factory=dict)


def _extract_tool_calls(message: Any) -> list[ToolCall]:
    """Extract tool calls from a response message."""
    raw_calls = getattr(message, "tool_calls", None)
    if not raw_calls:
        return []
    calls: list[ToolCall] = []
    for tc in raw_calls:
        if isinstance(tc, dict):
            calls.append(ToolCall.from_openai(tc))
            continue
        calls.append(ToolCall.from_openai({
            "id": tc.id,
            "function": {
                "name": tc.function.name,
                "arguments": tc.function.arguments,
            },
        }))
    return calls


def _extract_usage(response: Any) -> dict[str, Any] | None:
    """Extract token usage dict from litellm response."""
    usage = getattr(response, "usage", None)
    if usage is None:
        return None
    out: dict[str, Any] = {
        "prompt_tokens": getattr(usage, "prompt_tokens", 0) or 0,
        "completion_tokens": getattr(usage, "completion_tokens", 0) or 0,
        "total_tokens": getattr(usage, "total_tokens", 0) or 0,
    }
    details = getattr(usage, "completion_tokens_details", None)
    reasoning_tokens = getattr(details, "reasoning_tokens", None) if details is not None else None
    if reasoning_tokens is not None:
        out["completion_tokens_details"] = {"reasoning_tokens": reasoning_tokens}
    return out


def _extract_thinking(message: Any) -> list[ThinkingDelta]:
    reasoning = getattr(message, "reasoning_content", None)
    if not isinstance(reasoning, str) or not reasoning:
        return []
    return [ThinkingDelta(text=reasoning)]


def build_fetch_result(response: Any, model: str) -> FetchResult:
    """Extract the fields the loop needs from a litellm chat completion.

    Chat completions keep no server-side state, so ``stateful_marker`` stays None.
    """
    choice = response.choices[0]
    message = choice.message
    content: str = message.content or ""
    finish_reason: str = choice.finish_reason or ""
    tool_calls = _extract_tool_calls(message)

    logger.debug(
        "LLM call: model=%s finish=%s tool_calls=%d", model, finish_reason, len(tool_calls),
    )

    return FetchResult(
        text=content,
        tool_calls=tool_calls,
        usage=_extract_usage(response),
        thinking=_extract_thinking(message),
        model=getattr(response, "model", None) or model,
        finish_reason=finish_reason,
        # Truncated output without tool calls is continued in the next round.
        needs_continuation=finish_reason == "length" and not tool_calls,
    )


class LiteLLMFetcher:
    """ModelFetcher that calls ``litellm.acompletion``."""

    def __init__(
        self,
        num_retries: int = 2,
        base_delay: float = 1.0,
        max_delay: float = 30.0,
    ) -> None:
        self.num_retries = num_retries
        self.base_delay = base_delay
        self.max_delay = max_delay

    async def fetch(
        self,
        endpoint: LiteLLMEndpoint,
        messages: list[dict[str, Any]],
        tools: list[dict[str, Any]],
        token: CancellationToken | None = None,
    ) -> FetchResult:
        """One chat completion with retries.

        Retry notices for this call are returned on ``FetchResult.warnings``.

        Raises:
            FetchError: (subclass) when the call fails for good.
        """
        call_kwargs: dict[str, Any] = {
            "model": endpoint.model,
            "messages": messages,
            "timeout": endpoint.timeout,
            **endpoint.extra_kwargs,
        }
        if tools:
            call_kwargs["tools"] = tools
        if endpoint.api_base is not None:
            call_kwargs["api_base"] = endpoint.api_base

        async def _invoke(attempt: int) -> Any:
            return await litellm.acompletion(**call_kwargs)

        warnings: list[str] = []
        try:
            response = await run_async_with_retry(
                caller="LiteLLMFetcher.fetch",
                model=endpoint.model,
                max_retries=self.num_retries,
                invoke=_invoke,
                should_retry=is_retryable_fetch_error,
                compute_delay=lambda attempt, exc: (
                    exponential_backoff(attempt, self.base_delay, self.max_delay),
                    "backoff",
                ),
                warning_sink=warnings,
                logger=logger,
                cancelled=(lambda: token.is_cancellation_requested) if token else None,
            )
        except Exception as exc:
            wrapped = wrap_fetch_error(exc)
            logger.error(
                "LLM call failed: model=%s (%s: %s)", endpoint.model, type(wrapped).__name__, exc,
            )
            if wrapped is exc:
                raise
            raise wrapped from exc

        result = build_fetch_result(response, endpoint.model)
        result.warnings.extend(warnings)
        return result
