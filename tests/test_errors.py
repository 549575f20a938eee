"""Tests for tool_loop.errors: error hierarchy, classification and wrapping."""

from __future__ import annotations

import litellm
import pytest

from tool_loop.errors import (
    FetchAuthError,
    FetchContentFilterError,
    FetchError,
    FetchModelNotFoundError,
    FetchQuotaExhaustedError,
    FetchRateLimitError,
    FetchTransientError,
    HookAbortError,
    ToolInputRetriesExhaustedError,
    ToolInputValidationError,
    ToolLoopError,
    classify_fetch_error,
    is_hook_abort_error,
    is_retryable_fetch_error,
    wrap_fetch_error,
)


# ---------------------------------------------------------------------------
# Loop errors
# ---------------------------------------------------------------------------


class TestHookAbortError:
    def test_message_and_fields(self):
        err = HookAbortError("PreToolUse", "blocked by policy")
        assert str(err) == "Hook PreToolUse aborted: blocked by policy"
        assert err.hook_type == "PreToolUse"
        assert err.stop_reason == "blocked by policy"
        assert isinstance(err, ToolLoopError)

    def test_type_guard(self):
        assert is_hook_abort_error(HookAbortError("Stop", "x"))
        assert not is_hook_abort_error(ValueError("x"))
        assert not is_hook_abort_error(None)


class TestToolInputErrors:
    def test_validation_error_defaults_errors_to_message(self):
        err = ToolInputValidationError("search", "bad input")
        assert err.tool_name == "search"
        assert err.errors == ["bad input"]
        assert err.original is None

    def test_retries_exhausted_keeps_validation_message(self):
        err = ToolInputRetriesExhaustedError("search", 3, "query: required")
        assert err.retries == 3
        assert err.validation_message == "query: required"
        assert "after 3 retries" in str(err)


# ---------------------------------------------------------------------------
# classify_fetch_error: litellm exception types
# ---------------------------------------------------------------------------


class TestClassifyLitellmTypes:
    def test_auth_error(self):
        err = litellm.AuthenticationError(
            message="Invalid API key", model="gpt-4o", llm_provider="openai"
        )
        assert classify_fetch_error(err) is FetchAuthError

    def test_not_found(self):
        err = litellm.NotFoundError(
            message="Model not found", model="gpt-99", llm_provider="openai"
        )
        assert classify_fetch_error(err) is FetchModelNotFoundError

    def test_content_policy(self):
        err = litellm.ContentPolicyViolationError(
            message="Content blocked", model="gpt-4o", llm_provider="openai"
        )
        assert classify_fetch_error(err) is FetchContentFilterError

    def test_rate_limit_transient(self):
        err = litellm.RateLimitError(
            message="Rate limit exceeded, please retry after 1s",
            model="gpt-4o",
            llm_provider="openai",
        )
        assert classify_fetch_error(err) is FetchRateLimitError

    def test_rate_limit_quota(self):
        err = litellm.RateLimitError(
            message="You exceeded your current quota, check billing",
            model="gpt-4o",
            llm_provider="openai",
        )
        assert classify_fetch_error(err) is FetchQuotaExhaustedError

    def test_internal_server_error(self):
        err = litellm.InternalServerError(
            message="Internal server error", model="gpt-4o", llm_provider="openai"
        )
        assert classify_fetch_error(err) is FetchTransientError


# ---------------------------------------------------------------------------
# classify_fetch_error: string fallback
# ---------------------------------------------------------------------------


class TestClassifyStringFallback:
    @pytest.mark.parametrize(
        "message,expected",
        [
            ("HTTP 401 unauthorized", FetchAuthError),
            ("403 Forbidden", FetchAuthError),
            ("model does not exist", FetchModelNotFoundError),
            ("content policy violation", FetchContentFilterError),
            ("rate limit hit", FetchRateLimitError),
            ("connection reset by peer", FetchTransientError),
            ("request timed out", FetchTransientError),
            ("something odd", FetchError),
        ],
    )
    def test_patterns(self, message, expected):
        assert classify_fetch_error(RuntimeError(message)) is expected


# ---------------------------------------------------------------------------
# wrap_fetch_error / is_retryable_fetch_error
# ---------------------------------------------------------------------------


class TestWrapFetchError:
    def test_wraps_with_original(self):
        original = RuntimeError("503 service unavailable")
        wrapped = wrap_fetch_error(original)
        assert isinstance(wrapped, FetchTransientError)
        assert wrapped.original is original

    def test_fetch_error_passthrough(self):
        err = FetchAuthError("nope")
        assert wrap_fetch_error(err) is err

    def test_retryable(self):
        assert is_retryable_fetch_error(RuntimeError("rate limit exceeded"))
        assert is_retryable_fetch_error(RuntimeError("timed out"))
        assert not is_retryable_fetch_error(RuntimeError("401 unauthorized"))
        assert not is_retryable_fetch_error(RuntimeError("quota exceeded"))
