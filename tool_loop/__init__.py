"""tool_loop: an agentic tool-calling loop.

Drives one conversational turn from user request to final answer across
rounds of prompt -> model -> tool calls -> results, with per-turn endpoint
caching, tool input validation and retry, lifecycle hooks, repetition
detection, round budgets, cooperative cancellation and usage accounting.

Usage:
    from tool_loop import (
        DirectToolSet, LiteLLMEndpoint, LiteLLMFetcher, LoopConfig,
        MessagePromptBuilder, RecordingOutputSink, StaticEndpointProvider,
        ToolCallingLoop, TurnRequest, TurnSuccess,
    )

    def read_file(path: str) -> str:
        '''Read a text file.'''
        return open(path).read()

    toolset = DirectToolSet([read_file])
    loop = ToolCallingLoop(
        TurnRequest(prompt="Summarize README.md"),
        endpoint_provider=StaticEndpointProvider(LiteLLMEndpoint("gpt-4o")),
        prompt_builder=MessagePromptBuilder("You are helpful.", toolset.openai_tools),
        fetcher=LiteLLMFetcher(),
        tool_executor=toolset,
        validator=toolset,
        config=LoopConfig.from_env(),
    )
    result = await loop.run(RecordingOutputSink())
    if isinstance(result, TurnSuccess):
        print(result.final_text)
"""

from tool_loop.cancellation import CancellationToken, CancellationTokenSource
from tool_loop.config import LoopConfig, TextLoopPolicy, ToolCallLoopPolicy
from tool_loop.endpoint import EndpointProvider, StaticEndpointProvider, TurnEndpointCache
from tool_loop.errors import (
    FetchAuthError,
    FetchContentFilterError,
    FetchError,
    FetchModelNotFoundError,
    FetchQuotaExhaustedError,
    FetchRateLimitError,
    FetchTransientError,
    HookAbortError,
    LoopConfigurationError,
    ToolInputRetriesExhaustedError,
    ToolInputValidationError,
    ToolLoopError,
    UnknownToolError,
    classify_fetch_error,
    is_hook_abort_error,
    wrap_fetch_error,
)
from tool_loop.hooks import (
    HookRegistry,
    HookResult,
    HookType,
    PostToolUseLoggingHook,
    PreToolUseLoggingHook,
    RegistryHookDispatcher,
    process_hook_results,
)
from tool_loop.litellm_fetch import LiteLLMEndpoint, LiteLLMFetcher
from tool_loop.loop import (
    BuildPromptContext,
    BuiltPrompt,
    FetchResult,
    ToolCallingLoop,
    TurnAborted,
    TurnBudgetExceeded,
    TurnCancelled,
    TurnOutcome,
    TurnRepetitionDetected,
    TurnRequest,
    TurnResult,
    TurnSuccess,
)
from tool_loop.loop_detection import (
    TextLoopDetectionResult,
    ToolCallLoopDetectionResult,
    detect_text_loop,
    detect_tool_call_loop,
)
from tool_loop.prompting import MessagePromptBuilder
from tool_loop.rounds import ThinkingDataItem, ThinkingDelta, ToolCall, ToolCallRound
from tool_loop.schema_validation import SchemaToolValidator
from tool_loop.sinks import (
    LoggingOutputSink,
    OutputSink,
    RecordingOutputSink,
    RecordingUsageSink,
    UsageSink,
)
from tool_loop.tool_utils import DirectToolSet, callable_to_openai_tool

__all__ = [
    "BuildPromptContext",
    "BuiltPrompt",
    "CancellationToken",
    "CancellationTokenSource",
    "DirectToolSet",
    "EndpointProvider",
    "FetchAuthError",
    "FetchContentFilterError",
    "FetchError",
    "FetchModelNotFoundError",
    "FetchQuotaExhaustedError",
    "FetchRateLimitError",
    "FetchResult",
    "FetchTransientError",
    "HookAbortError",
    "HookRegistry",
    "HookResult",
    "HookType",
    "LiteLLMEndpoint",
    "LiteLLMFetcher",
    "LoggingOutputSink",
    "LoopConfig",
    "LoopConfigurationError",
    "MessagePromptBuilder",
    "OutputSink",
    "PostToolUseLoggingHook",
    "PreToolUseLoggingHook",
    "RecordingOutputSink",
    "RecordingUsageSink",
    "RegistryHookDispatcher",
    "SchemaToolValidator",
    "StaticEndpointProvider",
    "TextLoopDetectionResult",
    "TextLoopPolicy",
    "ThinkingDataItem",
    "ThinkingDelta",
    "ToolCall",
    "ToolCallLoopDetectionResult",
    "ToolCallLoopPolicy",
    "ToolCallRound",
    "ToolCallingLoop",
    "ToolInputRetriesExhaustedError",
    "ToolInputValidationError",
    "ToolLoopError",
    "TurnAborted",
    "TurnBudgetExceeded",
    "TurnCancelled",
    "TurnEndpointCache",
    "TurnOutcome",
    "TurnRepetitionDetected",
    "TurnRequest",
    "TurnResult",
    "TurnSuccess",
    "UnknownToolError",
    "UsageSink",
    "callable_to_openai_tool",
    "classify_fetch_error",
    "detect_text_loop",
    "detect_tool_call_loop",
    "is_hook_abort_error",
    "process_hook_results",
    "wrap_fetch_error",
]
