"""Typed runtime configuration for tool_loop."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field

from tool_loop.errors import LoopConfigurationError

logger = logging.getLogger(__name__)

TOOL_CALL_LIMIT_ENV = "TOOL_LOOP_TOOL_CALL_LIMIT"
MAX_TOOL_INPUT_RETRIES_ENV = "TOOL_LOOP_MAX_TOOL_INPUT_RETRIES"
DETECT_LOOPS_ENV = "TOOL_LOOP_DETECT_LOOPS"

DEFAULT_TOOL_CALL_LIMIT: int = 15
"""Maximum rounds that request tool calls before the turn ends as budget-exceeded."""

DEFAULT_MAX_TOOL_INPUT_RETRIES: int = 3
"""Corrective rounds allowed for invalid tool input before a terminal error."""

DEFAULT_TOOL_RESULT_MAX_LENGTH: int = 50_000
"""Maximum character length for a single tool result fed back to the model."""


@dataclass(frozen=True)
class ToolCallLoopPolicy:
    """Thresholds for repeated tool-invocation detection."""

    min_total_calls: int = 12
    window_size: int = 20
    max_distinct_keys: int = 2
    min_repeats: int = 6


@dataclass(frozen=True)
class TextLoopPolicy:
    """Thresholds for repeated-sentence detection in the latest response."""

    min_response_length: int = 200
    min_sentences: int = 3
    min_sentence_length: int = 30
    min_repeats: int = 3


@dataclass(frozen=True)
class LoopConfig:
    """Per-turn loop policy, resolved once and passed explicitly to the loop."""

    tool_call_limit: int = DEFAULT_TOOL_CALL_LIMIT
    max_tool_input_retries: int = DEFAULT_MAX_TOOL_INPUT_RETRIES
    tool_result_max_length: int = DEFAULT_TOOL_RESULT_MAX_LENGTH
    detect_loops: bool = True
    tool_loop_policy: ToolCallLoopPolicy = field(default_factory=ToolCallLoopPolicy)
    text_loop_policy: TextLoopPolicy = field(default_factory=TextLoopPolicy)

    def validate(self) -> "LoopConfig":
        """Raise LoopConfigurationError for values the loop cannot honor."""
        if self.tool_call_limit < 1:
            raise LoopConfigurationError(
                f"tool_call_limit must be >= 1, got {self.tool_call_limit}"
            )
        if self.max_tool_input_retries < 0:
            raise LoopConfigurationError(
                f"max_tool_input_retries must be >= 0, got {self.max_tool_input_retries}"
            )
        if self.tool_result_max_length < 1:
            raise LoopConfigurationError(
                f"tool_result_max_length must be >= 1, got {self.tool_result_max_length}"
            )
        if self.tool_loop_policy.window_size < 1 or self.tool_loop_policy.min_total_calls < 1:
            raise LoopConfigurationError("tool loop policy window and minimum must be >= 1")
        return self

    @classmethod
    def from_env(cls) -> "LoopConfig":
        """Build typed config from environment variables."""
        tool_call_limit = _int_from_env(TOOL_CALL_LIMIT_ENV, DEFAULT_TOOL_CALL_LIMIT, minimum=1)
        max_retries = _int_from_env(
            MAX_TOOL_INPUT_RETRIES_ENV, DEFAULT_MAX_TOOL_INPUT_RETRIES, minimum=0,
        )

        detect_raw = os.environ.get(DETECT_LOOPS_ENV, "on").strip().lower()
        if detect_raw in {"0", "false", "no", "off"}:
            detect_loops = False
        elif detect_raw in {"1", "true", "yes", "on", ""}:
            detect_loops = True
        else:
            logger.warning(
                "Invalid %s=%r; expected on/off boolean. Defaulting to on.",
                DETECT_LOOPS_ENV,
                detect_raw,
            )
            detect_loops = True

        return cls(
            tool_call_limit=tool_call_limit,
            max_tool_input_retries=max_retries,
            detect_loops=detect_loops,
        )


def _int_from_env(name: str, default: int, *, minimum: int) -> int:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    try:
        value = int(raw.strip())
    except ValueError:
        logger.warning("Invalid %s=%r; expected an integer. Defaulting to %d.", name, raw, default)
        return default
    if value < minimum:
        logger.warning("Invalid %s=%d; must be >= %d. Defaulting to %d.", name, value, minimum, default)
        return default
    return value
