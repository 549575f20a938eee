"""Tool input validation for externally declared tool schemas.

Use this when the tools are not Python callables in this process (remote
tools, MCP-style servers) and only their OpenAI tool schemas are known.
"""

from __future__ import annotations

import logging
from typing import Any, Iterable

from tool_loop.errors import ToolInputValidationError, UnknownToolError
from tool_loop.tool_utils import decode_tool_arguments, validate_against_schema

logger = logging.getLogger(__name__)


class SchemaToolValidator:
    """ToolInputValidator backed by ``{"type": "function", "function": {...}}`` schemas."""

    def __init__(self, openai_tools: Iterable[dict[str, Any]]) -> None:
        self._schemas: dict[str, dict[str, Any]] = {}
        for tool in openai_tools:
            fn = tool.get("function", tool)
            name = fn.get("name")
            if not name:
                raise ValueError(f"Tool schema without a name: {tool!r}")
            self._schemas[name] = fn.get("parameters") or {"type": "object"}

    @property
    def names(self) -> list[str]:
        return list(self._schemas)

    def validate(self, name: str, raw_input: str | dict[str, Any]) -> dict[str, Any]:
        schema = self._schemas.get(name)
        if schema is None:
            raise ToolInputValidationError(
                name,
                f"Unknown tool: {name}. Available tools: {', '.join(sorted(self._schemas))}",
                original=UnknownToolError(name),
            )
        arguments = decode_tool_arguments(name, raw_input)
        validate_against_schema(name, arguments, schema)
        return arguments
