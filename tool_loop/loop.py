"""The agentic tool-calling loop.

Drives one conversational turn from user request to final answer across
several rounds of: build prompt -> fetch model response -> validate and run
the requested tools (through lifecycle hooks) -> feed results back.

Usage:
    loop = ToolCallingLoop(
        TurnRequest(prompt="What is in README.md?"),
        endpoint_provider=StaticEndpointProvider(LiteLLMEndpoint("gpt-4o")),
        prompt_builder=MessagePromptBuilder(tools=toolset.openai_tools),
        fetcher=LiteLLMFetcher(),
        tool_executor=toolset,
        validator=toolset,
        hook_dispatcher=RegistryHookDispatcher(registry),
        usage_sink=usage_sink,
        config=LoopConfig.from_env(),
    )
    result = await loop.run(RecordingOutputSink(), CancellationToken.none())
    if isinstance(result, TurnSuccess):
        print(result.final_text)

Per-round flow:
    1. Resolve the turn's endpoint (at most once per turn)
    2. Build the prompt from round history
    3. Fetch one model response through the cached endpoint
    4. No tool calls and no continuation -> terminal round, success
    5. Validate every call; invalid input -> corrective round with a hint
    6. For each call in order: PreToolUse hooks, invoke, PostToolUse hooks
    7. Append the round, run loop detection, check the round budget

Transport errors from the fetcher, and tool input that stays invalid after
``max_tool_input_retries`` corrective rounds, propagate out of ``run()``.
Hook aborts, cancellation, budget exhaustion and detected repetition are
returned as outcomes.
"""

from __future__ import annotations

import asyncio
import inspect
import json as _json
import logging
from dataclasses import dataclass, field
from typing import (
    Any,
    Awaitable,
    ClassVar,
    Literal,
    Mapping,
    Protocol,
    Sequence,
    Union,
    runtime_checkable,
)

from tool_loop.cancellation import CancellationToken
from tool_loop.config import LoopConfig
from tool_loop.endpoint import EndpointProvider, TurnEndpointCache
from tool_loop.errors import (
    HookAbortError,
    ToolInputRetriesExhaustedError,
    ToolInputValidationError,
)
from tool_loop.hooks import HookResult, HookType, process_hook_results
from tool_loop.loop_detection import detect_text_loop, detect_tool_call_loop
from tool_loop.rounds import ThinkingDataItem, ThinkingDelta, ToolCall, ToolCallRound
from tool_loop.sinks import OutputSink, UsageSink

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Request / prompt data
# ---------------------------------------------------------------------------


@dataclass
class TurnRequest:
    """What the user (or a parent agent) asked for in this turn."""

    prompt: str
    history: list[dict[str, Any]] = field(default_factory=list)
    sub_agent_invocation_id: str | None = None
    sub_agent_name: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def is_sub_agent(self) -> bool:
        """True when the turn runs on behalf of another agent, not the user."""
        return bool(self.sub_agent_invocation_id)


@dataclass(frozen=True)
class BuildPromptContext:
    """Everything a prompt builder needs to render one round's prompt.

    ``tool_results`` maps round id to ``{tool_call_id: output text}``; call ids
    are only unique within their round.
    """

    request: TurnRequest
    rounds: tuple[ToolCallRound, ...]
    tool_results: Mapping[str, Mapping[str, str]]
    iteration: int
    tool_input_hint: str | None = None
    additional_context: tuple[str, ...] = ()


@dataclass(frozen=True)
class BuiltPrompt:
    messages: list[dict[str, Any]]
    tools: list[dict[str, Any]] = field(default_factory=list)


@dataclass
class FetchResult:
    """One model response.

    ``needs_continuation`` marks a response without tool calls that is not
    final (e.g. truncated output the backend wants to continue). ``warnings``
    carries fetch-level notices such as retries; the loop copies them onto
    the turn outcome.
    """

    text: str = ""
    tool_calls: list[ToolCall] = field(default_factory=list)
    usage: dict[str, Any] | None = None
    stateful_marker: str | None = None
    thinking: list[ThinkingDelta] = field(default_factory=list)
    model: str = ""
    finish_reason: str = ""
    needs_continuation: bool = False
    warnings: list[str] = field(default_factory=list)


# ---------------------------------------------------------------------------
# Collaborators
# ---------------------------------------------------------------------------


@runtime_checkable
class PromptBuilder(Protocol):
    """Renders the prompt for a round. May be sync or async."""

    def build_prompt(
        self, context: BuildPromptContext,
    ) -> BuiltPrompt | Awaitable[BuiltPrompt]: ...


@runtime_checkable
class ModelFetcher(Protocol):
    """One request/response exchange with the model."""

    async def fetch(
        self,
        endpoint: Any,
        messages: list[dict[str, Any]],
        tools: list[dict[str, Any]],
        token: CancellationToken,
    ) -> FetchResult: ...


@runtime_checkable
class ToolExecutor(Protocol):
    async def invoke(self, name: str, tool_input: Any, token: CancellationToken) -> Any: ...


@runtime_checkable
class ToolInputValidator(Protocol):
    """Returns the validated input or raises ToolInputValidationError."""

    def validate(self, name: str, raw_input: str) -> Any: ...


@runtime_checkable
class HookDispatcher(Protocol):
    async def dispatch(
        self, hook_type: HookType | str, payload: Mapping[str, Any],
    ) -> list[HookResult]: ...


class JsonInputValidator:
    """Fallback validator: arguments must be a JSON object."""

    def validate(self, name: str, raw_input: str) -> Any:
        try:
            parsed = _json.loads(raw_input) if raw_input.strip() else {}
        except _json.JSONDecodeError as exc:
            raise ToolInputValidationError(
                name, f"Invalid JSON arguments for {name}: {exc}", original=exc,
            ) from exc
        if not isinstance(parsed, dict):
            raise ToolInputValidationError(
                name, f"Arguments for {name} must be a JSON object, got {type(parsed).__name__}",
            )
        return parsed


# ---------------------------------------------------------------------------
# Turn outcomes
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class TurnOutcome:
    """Fields shared by every terminal result of a turn."""

    rounds: tuple[ToolCallRound, ...] = ()
    warnings: tuple[str, ...] = ()
    usage: Mapping[str, int] = field(default_factory=dict)

    status: ClassVar[str] = ""


@dataclass(frozen=True)
class TurnSuccess(TurnOutcome):
    final_text: str = ""

    status: ClassVar[str] = "success"


@dataclass(frozen=True)
class TurnAborted(TurnOutcome):
    """A hook stopped the turn. ``reason`` is meant for the user."""

    reason: str = ""
    hook_type: str = ""

    status: ClassVar[str] = "aborted"


@dataclass(frozen=True)
class TurnCancelled(TurnOutcome):
    status: ClassVar[str] = "cancelled"


@dataclass(frozen=True)
class TurnBudgetExceeded(TurnOutcome):
    limit: int = 0

    status: ClassVar[str] = "budget_exceeded"


@dataclass(frozen=True)
class TurnRepetitionDetected(TurnOutcome):
    kind: Literal["tool", "text"] = "tool"
    details: Mapping[str, Any] = field(default_factory=dict)

    status: ClassVar[str] = "repetition_detected"


TurnResult = Union[
    TurnSuccess, TurnAborted, TurnCancelled, TurnBudgetExceeded, TurnRepetitionDetected,
]


def _truncate(text: str, max_length: int) -> str:
    """Truncate text if it exceeds max_length, appending a notice."""
    if len(text) <= max_length:
        return text
    return text[:max_length] + f"\n... [truncated at {max_length} chars]"


def _extract_usage(usage: Mapping[str, Any]) -> tuple[int, int]:
    """Extract (prompt_tokens, completion_tokens) from a usage dict.

    Handles both OpenAI convention (prompt_tokens/completion_tokens)
    and Anthropic convention (input_tokens/output_tokens).
    """
    inp = usage.get("prompt_tokens") or usage.get("input_tokens") or 0
    out = usage.get("completion_tokens") or usage.get("output_tokens") or 0
    return int(inp), int(out)


def _serialize_tool_output(output: Any) -> str:
    if isinstance(output, str):
        return output
    try:
        return _json.dumps(output, default=str)
    except (TypeError, ValueError):
        return str(output)


# ---------------------------------------------------------------------------
# The loop
# ---------------------------------------------------------------------------


class ToolCallingLoop:
    """Runs one turn. Owns the round history and the turn's endpoint cache.

    One instance per turn; a sub-agent turn gets its own instance.
    """

    def __init__(
        self,
        request: TurnRequest,
        *,
        endpoint_provider: EndpointProvider,
        prompt_builder: PromptBuilder,
        fetcher: ModelFetcher,
        tool_executor: ToolExecutor,
        validator: ToolInputValidator | None = None,
        hook_dispatcher: HookDispatcher | None = None,
        usage_sink: UsageSink | None = None,
        config: LoopConfig | None = None,
    ) -> None:
        self.request = request
        self.config = (config or LoopConfig()).validate()
        self.endpoint_cache = TurnEndpointCache(endpoint_provider)
        self._prompt_builder = prompt_builder
        self._fetcher = fetcher
        self._tool_executor = tool_executor
        self._validator: ToolInputValidator = validator or JsonInputValidator()
        self._hook_dispatcher = hook_dispatcher
        self._usage_sink = usage_sink
        self._reset_turn_state()

    def _reset_turn_state(self) -> None:
        self._rounds: list[ToolCallRound] = []
        self._tool_results: dict[str, dict[str, str]] = {}
        self._tool_input_retry = 0
        self._tool_input_hint: str | None = None
        self._additional_context: list[str] = []
        self._warnings: list[str] = []
        self._usage = {"prompt_tokens": 0, "completion_tokens": 0}

    @property
    def rounds(self) -> tuple[ToolCallRound, ...]:
        return tuple(self._rounds)

    @property
    def tool_results(self) -> dict[str, dict[str, str]]:
        return {round_id: dict(results) for round_id, results in self._tool_results.items()}

    @property
    def warnings(self) -> tuple[str, ...]:
        return tuple(self._warnings)

    # -- turn ---------------------------------------------------------------

    async def run(
        self,
        output_sink: OutputSink | None,
        token: CancellationToken | None = None,
    ) -> TurnResult:
        """Run the turn to a terminal outcome.

        The endpoint cache lives exactly as long as this call.

        Raises:
            ToolInputRetriesExhaustedError: Tool input stayed invalid.
            FetchError: (or any fetcher exception) on transport failures.
        """
        token = token or CancellationToken.none()
        self._reset_turn_state()
        logger.debug(
            "[ToolCallingLoop] Starting turn (limit=%d, sub_agent=%s)",
            self.config.tool_call_limit,
            self.request.sub_agent_name or self.request.is_sub_agent,
        )

        async with self.endpoint_cache.turn_scope():
            try:
                if token.is_cancellation_requested:
                    return self._outcome(TurnCancelled)
                await self._dispatch_hooks(
                    self._start_hook_type(), {"prompt": self.request.prompt}, output_sink,
                )
                iteration = 0
                while True:
                    outcome = await self.run_one(output_sink, iteration, token)
                    if outcome is not None:
                        logger.info(
                            "[ToolCallingLoop] Turn ended: %s after %d round(s)",
                            outcome.status,
                            len(self._rounds),
                        )
                        return outcome
                    iteration += 1
            except HookAbortError as exc:
                logger.info(
                    "[ToolCallingLoop] Turn aborted by %s hook: %s", exc.hook_type, exc.stop_reason,
                )
                return self._outcome(
                    TurnAborted, reason=exc.stop_reason, hook_type=exc.hook_type,
                )

    # -- round --------------------------------------------------------------

    async def run_one(
        self,
        output_sink: OutputSink | None,
        iteration: int,
        token: CancellationToken | None = None,
    ) -> TurnResult | None:
        """Run a single round. Returns an outcome when the turn should end, else None.

        Raises:
            HookAbortError: A PreToolUse/PostToolUse/Stop hook aborted.
        """
        token = token or CancellationToken.none()
        if token.is_cancellation_requested:
            logger.info("[ToolCallingLoop] Cancelled before round %d", iteration + 1)
            return self._outcome(TurnCancelled)

        endpoint = await self.endpoint_cache.get_endpoint(self.request)

        context = BuildPromptContext(
            request=self.request,
            rounds=tuple(self._rounds),
            tool_results=self.tool_results,
            iteration=iteration,
            tool_input_hint=self._tool_input_hint,
            additional_context=tuple(self._additional_context),
        )
        prompt = self._prompt_builder.build_prompt(context)
        if inspect.isawaitable(prompt):
            prompt = await prompt

        logger.debug("[ToolCallingLoop] Round %d: fetching", iteration + 1)
        result = await self._fetcher.fetch(endpoint, prompt.messages, prompt.tools, token)

        self._warnings.extend(result.warnings)
        self._record_usage(result)
        thinking = self._accumulate_thinking(result)

        if result.text and output_sink is not None:
            output_sink.text(result.text)

        if not result.tool_calls and not result.needs_continuation:
            round_ = ToolCallRound(
                response=result.text,
                tool_calls=(),
                tool_input_retry=self._tool_input_retry,
                stateful_marker=result.stateful_marker,
                thinking=thinking,
            )
            self._rounds.append(round_)
            self._tool_input_hint = None
            await self._dispatch_hooks(
                self._stop_hook_type(), {"response": result.text}, output_sink,
            )
            return self._outcome(TurnSuccess, final_text=result.text)

        if token.is_cancellation_requested:
            logger.info("[ToolCallingLoop] Cancelled before running round %d tools", iteration + 1)
            self._rounds.append(self._make_round(result, thinking))
            return self._outcome(TurnCancelled)

        call_results: dict[str, str] = {}
        validated = self._validate_calls(result.tool_calls, call_results)
        if validated is None:
            self._record_corrective_round(result, thinking, call_results)
        else:
            self._tool_input_retry = 0
            self._tool_input_hint = None
            self._additional_context = []
            round_ = self._make_round(result, thinking)
            cancelled = await self._execute_calls(
                round_, validated, output_sink, iteration, token,
            )
            self._rounds.append(round_)
            if cancelled:
                return self._outcome(TurnCancelled)

        repetition = self._check_repetition()
        if repetition is not None:
            return repetition

        if iteration + 1 >= self.config.tool_call_limit:
            warning = (
                f"TOOL_CALL_LIMIT: reached {self.config.tool_call_limit} round(s) "
                "without a final answer"
            )
            self._warnings.append(warning)
            logger.warning("[ToolCallingLoop] %s", warning)
            return self._outcome(TurnBudgetExceeded, limit=self.config.tool_call_limit)

        return None

    # -- helpers ------------------------------------------------------------

    def _make_round(
        self, result: FetchResult, thinking: ThinkingDataItem | None,
    ) -> ToolCallRound:
        return ToolCallRound(
            response=result.text,
            tool_calls=result.tool_calls,
            tool_input_retry=self._tool_input_retry,
            stateful_marker=result.stateful_marker,
            thinking=thinking,
        )

    def _record_usage(self, result: FetchResult) -> None:
        if not result.usage:
            return
        prompt_tokens, completion_tokens = _extract_usage(result.usage)
        self._usage["prompt_tokens"] += prompt_tokens
        self._usage["completion_tokens"] += completion_tokens
        # Sub-agent usage is aggregated by the parent turn.
        if self._usage_sink is not None and not self.request.is_sub_agent:
            self._usage_sink.report(prompt_tokens, completion_tokens)

    @staticmethod
    def _accumulate_thinking(result: FetchResult) -> ThinkingDataItem | None:
        item: ThinkingDataItem | None = None
        for delta in result.thinking:
            item = ThinkingDataItem.create_or_update(item, delta)
        if item is not None and result.usage:
            item.update_with_usage(result.usage)
        return item

    def _validate_calls(
        self, tool_calls: Sequence[ToolCall], call_results: dict[str, str],
    ) -> list[Any] | None:
        """Validate every call in request order.

        Returns the validated inputs, or None after recording the hint for a
        corrective round. On failure every call of the round gets a result in
        ``call_results``: the validation error, or a not-executed notice.

        Raises:
            ToolInputRetriesExhaustedError: Too many consecutive invalid rounds.
        """
        validated: list[Any] = []
        errors: list[ToolInputValidationError] = []
        for call in tool_calls:
            try:
                validated.append(self._validator.validate(call.name, call.arguments))
            except ToolInputValidationError as exc:
                errors.append(exc)
                call_results[call.id] = f"ERROR: Invalid input for tool {call.name}: {exc}"
        if not errors:
            return validated

        for call in tool_calls:
            if call.id not in call_results:
                call_results[call.id] = (
                    "Not executed: another tool call in this round had invalid input."
                )

        first = errors[0]
        if self._tool_input_retry >= self.config.max_tool_input_retries:
            raise ToolInputRetriesExhaustedError(
                first.tool_name, self._tool_input_retry, str(first),
            )

        self._tool_input_retry += 1
        self._tool_input_hint = (
            "The previous tool call input was invalid. "
            + " ".join(str(e) for e in errors)
            + " Fix the arguments so they match the tool's schema and try again."
        )
        warning = (
            f"TOOL_INPUT_RETRY {self._tool_input_retry}/{self.config.max_tool_input_retries}: "
            + "; ".join(f"{e.tool_name}: {e}" for e in errors)
        )
        self._warnings.append(warning)
        logger.warning("[ToolCallingLoop] %s", warning)
        return None

    def _record_corrective_round(
        self,
        result: FetchResult,
        thinking: ThinkingDataItem | None,
        call_results: dict[str, str],
    ) -> None:
        # _tool_input_retry was already incremented for the retry this round triggers.
        round_ = self._make_round(result, thinking)
        self._tool_results[round_.id] = call_results
        self._rounds.append(round_)

    async def _execute_calls(
        self,
        round_: ToolCallRound,
        inputs: Sequence[Any],
        output_sink: OutputSink | None,
        iteration: int,
        token: CancellationToken,
    ) -> bool:
        """Run the round's tool calls in order. Returns True if cancelled midway."""
        call_results = self._tool_results.setdefault(round_.id, {})
        for call, tool_input in zip(round_.tool_calls, inputs):
            if token.is_cancellation_requested:
                logger.info(
                    "[ToolCallingLoop] Cancelled; skipping remaining tools from %s", call.name,
                )
                return True

            base_payload = {
                "tool_name": call.name,
                "tool_call_id": call.id,
                "tool_input": tool_input,
                "round_id": round_.id,
                "iteration": iteration,
            }
            await self._dispatch_hooks(HookType.PRE_TOOL_USE, base_payload, output_sink)

            if output_sink is not None:
                output_sink.tool_progress(call.name, call.id, f"Running {call.name}")
            output = await self._invoke_tool(call, tool_input, output_sink, token)
            call_results[call.id] = _truncate(output, self.config.tool_result_max_length)

            await self._dispatch_hooks(
                HookType.POST_TOOL_USE, {**base_payload, "tool_output": output}, output_sink,
            )
        return False

    async def _invoke_tool(
        self,
        call: ToolCall,
        tool_input: Any,
        output_sink: OutputSink | None,
        token: CancellationToken,
    ) -> str:
        try:
            raw = await self._tool_executor.invoke(call.name, tool_input, token)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            error_msg = f"{type(exc).__name__}: {exc}"
            logger.error("[ToolCallingLoop] Tool '%s' failed: %s", call.name, error_msg)
            if output_sink is not None:
                output_sink.tool_progress(call.name, call.id, f"{call.name} failed: {error_msg}")
            return f"ERROR: {error_msg}"
        return _serialize_tool_output(raw)

    async def _dispatch_hooks(
        self,
        hook_type: HookType,
        payload: Mapping[str, Any],
        output_sink: OutputSink | None,
    ) -> None:
        if self._hook_dispatcher is None:
            return
        results = await self._hook_dispatcher.dispatch(hook_type, payload)
        process_hook_results(hook_type, results, output_sink, self._on_hook_success)

    def _on_hook_success(self, output: Any) -> None:
        if isinstance(output, Mapping):
            extra = output.get("additional_context")
            if isinstance(extra, str) and extra.strip():
                self._additional_context.append(extra.strip())

    def _start_hook_type(self) -> HookType:
        if self.request.is_sub_agent:
            return HookType.SUBAGENT_START
        return HookType.USER_PROMPT_SUBMIT

    def _stop_hook_type(self) -> HookType:
        if self.request.is_sub_agent:
            return HookType.SUBAGENT_STOP
        return HookType.STOP

    def _check_repetition(self) -> TurnRepetitionDetected | None:
        if not self.config.detect_loops:
            return None

        tool_loop = detect_tool_call_loop(self._rounds, self.config.tool_loop_policy)
        if tool_loop is not None:
            warning = (
                f"LOOP_DETECTED: tool calls repeating ({tool_loop.unique_tool_key_count} "
                f"distinct, max {tool_loop.max_key_count} in last {tool_loop.window_size})"
            )
            self._warnings.append(warning)
            logger.warning("[ToolCallingLoop] %s", warning)
            return self._outcome(TurnRepetitionDetected, kind="tool", details=tool_loop.to_dict())

        text_loop = detect_text_loop(self._rounds, self.config.text_loop_policy)
        if text_loop is not None:
            warning = (
                f"LOOP_DETECTED: response text repeating (sentence seen "
                f"{text_loop.repeat_count} times in {text_loop.total_sentences})"
            )
            self._warnings.append(warning)
            logger.warning("[ToolCallingLoop] %s", warning)
            return self._outcome(TurnRepetitionDetected, kind="text", details=text_loop.to_dict())

        return None

    def _outcome(self, cls: type[Any], **kwargs: Any) -> Any:
        return cls(
            rounds=tuple(self._rounds),
            warnings=tuple(self._warnings),
            usage=dict(self._usage),
            **kwargs,
        )
