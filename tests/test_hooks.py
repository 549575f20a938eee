"""Tests for tool_loop.hooks: result processing, registry, dispatcher."""

from __future__ import annotations

import logging
from unittest.mock import MagicMock

import pytest

from tool_loop.errors import HookAbortError
from tool_loop.hooks import (
    HookRegistry,
    HookResult,
    HookType,
    PostToolUseLoggingHook,
    PreToolUseLoggingHook,
    RegistryHookDispatcher,
    coerce_hook_result,
    format_hook_error_message,
    process_hook_results,
)
from tool_loop.sinks import RecordingOutputSink


# ---------------------------------------------------------------------------
# process_hook_results
# ---------------------------------------------------------------------------


class TestProcessHookResults:
    def test_stop_reason_aborts_before_later_results(self):
        sink = RecordingOutputSink()
        on_success = MagicMock()
        results = [
            HookResult(result_kind="warning", warning_message="careful"),
            HookResult(stop_reason="blocked by policy"),
            HookResult(output="never seen"),
        ]
        with pytest.raises(HookAbortError) as exc_info:
            process_hook_results(HookType.PRE_TOOL_USE, results, sink, on_success)

        assert exc_info.value.stop_reason == "blocked by policy"
        assert exc_info.value.hook_type == "PreToolUse"
        on_success.assert_not_called()
        # Warnings collected before the abort are never shown.
        assert sink.hook_messages == []

    def test_multiple_warnings_numbered_in_one_message(self):
        sink = RecordingOutputSink()
        results = [
            HookResult(result_kind="warning", warning_message="first"),
            HookResult(result_kind="warning", warning_message="second"),
        ]
        process_hook_results(HookType.POST_TOOL_USE, results, sink, lambda _: None)

        assert len(sink.hook_messages) == 1
        msg = sink.hook_messages[0]
        assert msg.hook_type == "PostToolUse"
        assert msg.warning_message == "1. first\n2. second"
        assert msg.error_message is None

    def test_single_warning_not_numbered(self):
        sink = RecordingOutputSink()
        process_hook_results(
            HookType.PRE_TOOL_USE,
            [HookResult(result_kind="warning", warning_message="only one")],
            sink,
            lambda _: None,
        )
        assert sink.hook_messages[0].warning_message == "only one"

    def test_warning_without_message_ignored(self):
        sink = RecordingOutputSink()
        process_hook_results(
            HookType.PRE_TOOL_USE, [HookResult(result_kind="warning")], sink, lambda _: None,
        )
        assert sink.hook_messages == []

    def test_warnings_without_sink_are_dropped(self):
        process_hook_results(
            HookType.PRE_TOOL_USE,
            [HookResult(result_kind="warning", warning_message="w")],
            None,
            lambda _: None,
        )

    def test_success_calls_on_success_in_order(self):
        seen: list[object] = []
        process_hook_results(
            HookType.PRE_TOOL_USE,
            [HookResult(output={"a": 1}), HookResult(), HookResult(output="x")],
            RecordingOutputSink(),
            seen.append,
        )
        assert seen == [{"a": 1}, None, "x"]

    def test_error_reports_and_aborts_with_output(self):
        sink = RecordingOutputSink()
        on_success = MagicMock()
        with pytest.raises(HookAbortError) as exc_info:
            process_hook_results(
                HookType.PRE_TOOL_USE,
                [HookResult(output="ok"), HookResult(result_kind="error", output="disk full")],
                sink,
                on_success,
            )
        assert exc_info.value.stop_reason == "disk full"
        on_success.assert_called_once_with("ok")
        assert sink.hook_messages[0].error_message == format_hook_error_message("disk full")

    def test_error_with_non_string_output_has_empty_reason(self):
        with pytest.raises(HookAbortError) as exc_info:
            process_hook_results(
                HookType.STOP,
                [HookResult(result_kind="error", output={"code": 1})],
                None,
                lambda _: None,
            )
        assert exc_info.value.stop_reason == ""

    def test_format_hook_error_message(self):
        assert format_hook_error_message("boom").endswith("Error message: boom")
        assert "Error message" not in format_hook_error_message("")


# ---------------------------------------------------------------------------
# HookRegistry
# ---------------------------------------------------------------------------


class _Handler:
    def __init__(self, label: str) -> None:
        self.label = label
        self.hooks = [lambda payload: {"output": label}]


class TestHookRegistry:
    def test_registration_order_preserved(self):
        registry = HookRegistry()
        registry.register(HookType.PRE_TOOL_USE, lambda: _Handler("a"))
        registry.register(HookType.PRE_TOOL_USE, lambda: _Handler("b"))
        registry.register("PostToolUse", lambda: _Handler("c"))

        built = registry.build()
        assert [h.label for h in built[HookType.PRE_TOOL_USE]] == ["a", "b"]
        assert [h.label for h in built[HookType.POST_TOOL_USE]] == ["c"]
        assert len(registry) == 3
        assert registry.hook_types == (HookType.PRE_TOOL_USE, HookType.POST_TOOL_USE)

    def test_unregistered_event_is_absent(self):
        registry = HookRegistry()
        registry.register(HookType.STOP, lambda: _Handler("s"))
        built = registry.build()
        assert HookType.PRE_TOOL_USE not in built
        assert registry.handlers_for(HookType.PRE_TOOL_USE) == ()

    def test_build_uses_resolver_per_handler(self):
        registry = HookRegistry()
        factory_a = lambda: _Handler("a")  # noqa: E731
        factory_b = lambda: _Handler("b")  # noqa: E731
        registry.register(HookType.PRE_TOOL_USE, factory_a)
        registry.register(HookType.PRE_TOOL_USE, factory_b)

        resolver = MagicMock(side_effect=lambda factory: factory())
        registry.build(resolver)

        assert resolver.call_count == 2
        assert [c.args[0] for c in resolver.call_args_list] == [factory_a, factory_b]

    def test_each_build_creates_fresh_instances(self):
        registry = HookRegistry()
        registry.register(HookType.PRE_TOOL_USE, lambda: _Handler("a"))
        first = registry.build()[HookType.PRE_TOOL_USE][0]
        second = registry.build()[HookType.PRE_TOOL_USE][0]
        assert first is not second

    def test_registries_are_isolated(self):
        one, two = HookRegistry(), HookRegistry()
        one.register(HookType.PRE_TOOL_USE, lambda: _Handler("a"))
        assert len(two) == 0
        assert two.build() == {}

    def test_unknown_hook_type_rejected(self):
        with pytest.raises(ValueError):
            HookRegistry().register("NotAHook", lambda: _Handler("x"))


# ---------------------------------------------------------------------------
# RegistryHookDispatcher
# ---------------------------------------------------------------------------


class TestRegistryHookDispatcher:
    @pytest.mark.asyncio
    async def test_dispatch_runs_every_callback_in_order(self):
        calls: list[str] = []

        class Multi:
            def __init__(self) -> None:
                self.hooks = [self.first, self.second]

            def first(self, payload):
                calls.append("first")
                return HookResult(output=payload["tool_name"])

            async def second(self, payload):
                calls.append("second")
                return {"result_kind": "warning", "warning_message": "slow"}

        registry = HookRegistry()
        registry.register(HookType.PRE_TOOL_USE, Multi)
        dispatcher = RegistryHookDispatcher(registry)

        results = await dispatcher.dispatch(HookType.PRE_TOOL_USE, {"tool_name": "bash"})

        assert calls == ["first", "second"]
        assert results[0] == HookResult(output="bash")
        assert results[1].result_kind == "warning"
        assert results[1].warning_message == "slow"

    @pytest.mark.asyncio
    async def test_handlers_built_once(self):
        factory = MagicMock(side_effect=lambda: _Handler("a"))
        registry = HookRegistry()
        registry.register(HookType.STOP, factory)
        dispatcher = RegistryHookDispatcher(registry)

        await dispatcher.dispatch(HookType.STOP, {})
        await dispatcher.dispatch(HookType.STOP, {})
        assert factory.call_count == 1

    @pytest.mark.asyncio
    async def test_raising_callback_becomes_error_result(self):
        def boom(payload):
            raise RuntimeError("hook crashed")

        class Crashing:
            hooks = [boom]

        registry = HookRegistry()
        registry.register(HookType.PRE_TOOL_USE, Crashing)
        results = await RegistryHookDispatcher(registry).dispatch(HookType.PRE_TOOL_USE, {})

        assert results[0].result_kind == "error"
        assert results[0].output == "RuntimeError: hook crashed"

    @pytest.mark.asyncio
    async def test_no_handlers_returns_empty(self):
        assert await RegistryHookDispatcher(HookRegistry()).dispatch(HookType.STOP, {}) == []


class TestCoerceHookResult:
    def test_none_is_success(self):
        assert coerce_hook_result(None) == HookResult()

    def test_invalid_mapping_is_error(self):
        result = coerce_hook_result({"result_kind": "explode"})
        assert result.result_kind == "error"

    def test_unsupported_type_is_error(self):
        result = coerce_hook_result(42)  # type: ignore[arg-type]
        assert result.result_kind == "error"
        assert "int" in result.output


# ---------------------------------------------------------------------------
# Built-in logging hooks
# ---------------------------------------------------------------------------


class TestLoggingHooks:
    def test_pre_tool_use_logs(self, caplog):
        log = logging.getLogger("test_hooks.pre")
        hook = PreToolUseLoggingHook(log)
        with caplog.at_level(logging.DEBUG, logger="test_hooks.pre"):
            result = hook.hooks[0]({"tool_name": "read", "tool_call_id": "c1"})
        assert result == HookResult()
        assert "tool=read" in caplog.text

    def test_post_tool_use_logs_output_size(self, caplog):
        log = logging.getLogger("test_hooks.post")
        hook = PostToolUseLoggingHook(log)
        with caplog.at_level(logging.DEBUG, logger="test_hooks.post"):
            hook.hooks[0]({"tool_name": "read", "tool_call_id": "c1", "tool_output": "abcd"})
        assert "output_chars=4" in caplog.text
