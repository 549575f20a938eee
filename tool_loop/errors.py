"""Structured error types for tool_loop.

Callers can catch specific error types instead of inspecting raw backend
exceptions:

    from tool_loop.errors import FetchRateLimitError, HookAbortError

    try:
        result = await loop.run(sink, token)
    except FetchRateLimitError:
        # Transient; the fetcher already retried. The caller may wait longer.
        ...

Hook aborts never escape ``ToolCallingLoop.run()``; they become a
``TurnAborted`` outcome. They are still raised inside the loop and by
``process_hook_results`` so a lifecycle dispatch can stop immediately.
"""

from __future__ import annotations

from typing import Any


class ToolLoopError(Exception):
    """Base for all tool_loop errors."""

    def __init__(self, message: str, original: Exception | None = None) -> None:
        super().__init__(message)
        self.original = original


class LoopConfigurationError(ToolLoopError):
    """Invalid loop configuration (non-positive limits, bad thresholds)."""


class HookAbortError(ToolLoopError):
    """A hook requested the agent to abort processing.

    The stop reason is meant to be shown to the user.
    """

    def __init__(self, hook_type: str, stop_reason: str) -> None:
        super().__init__(f"Hook {hook_type} aborted: {stop_reason}")
        self.hook_type = hook_type
        self.stop_reason = stop_reason


def is_hook_abort_error(error: Any) -> bool:
    """Return True if *error* is a HookAbortError."""
    return isinstance(error, HookAbortError)


class UnknownToolError(ToolLoopError):
    """The model requested a tool that is not registered."""

    def __init__(self, tool_name: str) -> None:
        super().__init__(f"Unknown tool: {tool_name}")
        self.tool_name = tool_name


class ToolInputValidationError(ToolLoopError):
    """A tool call's input failed validation against the tool's schema."""

    def __init__(
        self,
        tool_name: str,
        message: str,
        *,
        errors: list[str] | None = None,
        original: Exception | None = None,
    ) -> None:
        super().__init__(message, original=original)
        self.tool_name = tool_name
        self.errors = errors or [message]


class ToolInputRetriesExhaustedError(ToolLoopError):
    """Tool input stayed invalid after the bounded number of corrective rounds."""

    def __init__(self, tool_name: str, retries: int, message: str) -> None:
        super().__init__(
            f"Tool input for {tool_name!r} still invalid after {retries} retries: {message}"
        )
        self.tool_name = tool_name
        self.retries = retries
        self.validation_message = message


class FetchError(ToolLoopError):
    """Base for model fetch / transport failures."""


class FetchRateLimitError(FetchError):
    """Transient rate limit (429). Retry with backoff."""


class FetchQuotaExhaustedError(FetchError):
    """Permanent quota/billing exhaustion. Do not retry."""


class FetchAuthError(FetchError):
    """Authentication failed (401/403)."""


class FetchContentFilterError(FetchError):
    """Content policy violation; the request was blocked."""


class FetchTransientError(FetchError):
    """Server error (500/502/503), timeout or connection failure. Retry."""


class FetchModelNotFoundError(FetchError):
    """Model doesn't exist (404)."""


# Patterns that indicate permanent quota exhaustion (not transient rate limit).
_QUOTA_PATTERNS = [
    "quota",
    "billing",
    "insufficient",
    "exceeded your current",
    "plan and billing",
    "account deactivated",
    "account suspended",
]


def _litellm_error_types(module: Any, names: tuple[str, ...]) -> tuple[type[BaseException], ...]:
    """Resolve optional litellm exception classes without static attribute coupling."""
    out: list[type[BaseException]] = []
    for name in names:
        candidate = getattr(module, name, None)
        if isinstance(candidate, type) and issubclass(candidate, BaseException):
            out.append(candidate)
    return tuple(out)


def classify_fetch_error(error: Exception) -> type[FetchError]:
    """Classify any backend exception into a FetchError subtype.

    Uses litellm exception types first, falls back to string matching.
    """
    import litellm as _lt

    auth_types = _litellm_error_types(_lt, ("AuthenticationError", "PermissionDeniedError"))
    if auth_types and isinstance(error, auth_types):
        return FetchAuthError

    not_found_types = _litellm_error_types(_lt, ("NotFoundError",))
    if not_found_types and isinstance(error, not_found_types):
        return FetchModelNotFoundError

    content_types = _litellm_error_types(_lt, ("ContentPolicyViolationError",))
    if content_types and isinstance(error, content_types):
        return FetchContentFilterError

    budget_types = _litellm_error_types(_lt, ("BudgetExceededError",))
    if budget_types and isinstance(error, budget_types):
        return FetchQuotaExhaustedError

    rate_types = _litellm_error_types(_lt, ("RateLimitError",))
    if rate_types and isinstance(error, rate_types):
        error_str = str(error).lower()
        if any(p in error_str for p in _QUOTA_PATTERNS):
            return FetchQuotaExhaustedError
        return FetchRateLimitError

    transient_types = _litellm_error_types(
        _lt,
        (
            "InternalServerError",
            "ServiceUnavailableError",
            "APIConnectionError",
            "BadGatewayError",
            "Timeout",
        ),
    )
    if transient_types and isinstance(error, transient_types):
        return FetchTransientError

    # Fallback: string pattern matching
    error_str = str(error).lower()

    if any(p in error_str for p in _QUOTA_PATTERNS):
        return FetchQuotaExhaustedError
    if "401" in error_str or "authentication" in error_str or "unauthorized" in error_str:
        return FetchAuthError
    if "403" in error_str or "forbidden" in error_str:
        return FetchAuthError
    if "404" in error_str or "not found" in error_str or "does not exist" in error_str:
        return FetchModelNotFoundError
    if "content" in error_str and ("policy" in error_str or "filter" in error_str):
        return FetchContentFilterError
    if "rate" in error_str and "limit" in error_str:
        return FetchRateLimitError
    if any(p in error_str for p in ("timeout", "timed out", "connection", "500", "502", "503", "server error")):
        return FetchTransientError

    return FetchError


def wrap_fetch_error(error: Exception) -> FetchError:
    """Wrap an exception in the appropriate FetchError subclass.

    If the error is already a FetchError, returns it unchanged.
    """
    if isinstance(error, FetchError):
        return error
    cls = classify_fetch_error(error)
    return cls(str(error), original=error)


def is_retryable_fetch_error(error: Exception) -> bool:
    """Rate limits and transient server/connection errors are worth retrying."""
    return isinstance(wrap_fetch_error(error), (FetchRateLimitError, FetchTransientError))
