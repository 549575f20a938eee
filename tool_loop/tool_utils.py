"""Direct Python tools for the tool-calling loop.

Generate OpenAI-compatible tool schemas from plain Python functions, validate
model-supplied arguments against them and run the functions in-process.

Usage:
    from tool_loop.tool_utils import DirectToolSet

    async def search(query: str, limit: int = 10) -> str:
        '''Search for entities.'''
        ...

    toolset = DirectToolSet([search])
    # toolset.openai_tools is ready for the prompt builder / litellm tools=
    # toolset is both the loop's tool_executor and its validator
"""

from __future__ import annotations

import asyncio
import inspect
import json as _json
import logging
from typing import Any, Callable, Union, get_args, get_origin, get_type_hints

import jsonschema

from tool_loop.cancellation import CancellationToken
from tool_loop.errors import ToolInputValidationError, UnknownToolError

logger = logging.getLogger(__name__)

TOKEN_PARAM: str = "token"
"""Parameter name through which a tool receives the turn's CancellationToken."""

# Python type → JSON Schema type
_TYPE_MAP: dict[type, str] = {
    str: "string",
    int: "integer",
    float: "number",
    bool: "boolean",
}


def _unsupported_args(fn: Callable[..., Any], arguments: dict[str, Any]) -> list[str]:
    """Return argument names the callable cannot accept, sorted."""
    try:
        sig = inspect.signature(fn)
    except (TypeError, ValueError):
        return []
    accepted: set[str] = set()
    for name, param in sig.parameters.items():
        if name in ("self", "cls", TOKEN_PARAM):
            continue
        if param.kind == inspect.Parameter.VAR_KEYWORD:
            return []
        if param.kind in (
            inspect.Parameter.POSITIONAL_OR_KEYWORD,
            inspect.Parameter.KEYWORD_ONLY,
        ):
            accepted.add(name)
    return sorted(key for key in arguments if key not in accepted)


def _type_to_json_schema(tp: type) -> dict[str, Any]:
    """Convert a Python type annotation to a JSON Schema fragment.

    Supports: str, int, float, bool, list[X], dict, Optional[X].
    Raises ValueError for unsupported types.
    """
    origin = get_origin(tp)
    args = get_args(tp)

    # Optional[X] → unwrap to X (nullable not needed for OpenAI function calling)
    if origin is Union:
        non_none = [a for a in args if a is not type(None)]
        if len(non_none) == 1:
            return _type_to_json_schema(non_none[0])

    if origin is list:
        schema: dict[str, Any] = {"type": "array"}
        if args:
            schema["items"] = _type_to_json_schema(args[0])
        return schema

    if origin is dict or tp is dict:
        return {"type": "object"}

    if tp in _TYPE_MAP:
        return {"type": _TYPE_MAP[tp]}

    raise ValueError(
        f"Unsupported type annotation: {tp!r}. "
        f"Supported: str, int, float, bool, list[X], dict, Optional[X]."
    )


def callable_to_openai_tool(fn: Callable[..., Any]) -> dict[str, Any]:
    """Convert a Python callable to an OpenAI function-calling tool schema.

    Inspects the function's name, type hints, and docstring.
    Every parameter must have a type annotation (raises ValueError otherwise),
    except ``token``, which receives the CancellationToken and is not exposed
    to the model.

    Args:
        fn: An async or sync function with typed parameters.

    Returns:
        OpenAI tool schema dict: {"type": "function", "function": {...}}
    """
    sig = inspect.signature(fn)
    try:
        hints = get_type_hints(fn)
    except Exception:
        hints = {}

    properties: dict[str, Any] = {}
    required: list[str] = []

    for name, param in sig.parameters.items():
        if name in ("self", "cls", TOKEN_PARAM):
            continue
        if param.kind in (inspect.Parameter.VAR_POSITIONAL, inspect.Parameter.VAR_KEYWORD):
            continue

        if name not in hints:
            raise ValueError(
                f"Parameter {name!r} of {fn.__name__!r} has no type annotation. "
                f"All parameters must be typed for schema generation."
            )

        prop = _type_to_json_schema(hints[name])

        if param.default is not inspect.Parameter.empty:
            prop["default"] = param.default
        else:
            required.append(name)

        properties[name] = prop

    # Description from explicit override attribute or docstring first line
    description = ""
    override_desc = getattr(fn, "__tool_description__", None)
    if isinstance(override_desc, str) and override_desc.strip():
        description = override_desc.strip()
    elif fn.__doc__:
        first_line = fn.__doc__.strip().split("\n")[0].strip()
        if first_line:
            description = first_line

    parameters: dict[str, Any] = {
        "type": "object",
        "properties": properties,
    }
    if required:
        parameters["required"] = required

    return {
        "type": "function",
        "function": {
            "name": fn.__name__,
            "description": description,
            "parameters": parameters,
        },
    }


def decode_tool_arguments(tool_name: str, raw_input: str | dict[str, Any]) -> dict[str, Any]:
    """Decode a tool call's argument text into a JSON object.

    Raises:
        ToolInputValidationError: Not valid JSON, or not an object.
    """
    if isinstance(raw_input, dict):
        return dict(raw_input)
    try:
        arguments = _json.loads(raw_input) if raw_input and raw_input.strip() else {}
    except _json.JSONDecodeError as exc:
        logger.error(
            "Failed to parse tool call arguments for %s: %s", tool_name, str(raw_input)[:200],
        )
        raise ToolInputValidationError(
            tool_name, f"Invalid JSON arguments for {tool_name}: {exc}", original=exc,
        ) from exc
    if not isinstance(arguments, dict):
        raise ToolInputValidationError(
            tool_name,
            f"Arguments for {tool_name} must be a JSON object, got {type(arguments).__name__}",
        )
    return arguments


def validate_against_schema(
    tool_name: str, arguments: dict[str, Any], schema: dict[str, Any],
) -> None:
    """Validate *arguments* against a JSON Schema, collecting every violation.

    Raises:
        ToolInputValidationError: One or more schema violations.
    """
    validator_cls = jsonschema.validators.validator_for(schema)
    validator = validator_cls(schema)
    errors = sorted(validator.iter_errors(arguments), key=lambda e: list(e.path))
    if not errors:
        return
    messages = []
    for err in errors:
        location = "/".join(str(p) for p in err.path)
        messages.append(f"{location}: {err.message}" if location else err.message)
    raise ToolInputValidationError(
        tool_name,
        f"Schema validation failed for {tool_name}: " + "; ".join(messages),
        errors=messages,
        original=errors[0],
    )


class DirectToolSet:
    """A set of Python callables exposed as tools.

    Acts as both the loop's ``ToolExecutor`` and ``ToolInputValidator``.

    Raises:
        ValueError: If two functions have the same __name__.
    """

    def __init__(self, tools: list[Callable[..., Any]]) -> None:
        self.tool_map: dict[str, Callable[..., Any]] = {}
        self.openai_tools: list[dict[str, Any]] = []
        self._schemas: dict[str, dict[str, Any]] = {}

        for fn in tools:
            schema = callable_to_openai_tool(fn)
            name = schema["function"]["name"]
            if name in self.tool_map:
                raise ValueError(
                    f"Duplicate tool name {name!r}: "
                    f"{self.tool_map[name]!r} and {fn!r} have the same __name__."
                )
            self.tool_map[name] = fn
            self.openai_tools.append(schema)
            self._schemas[name] = schema["function"]["parameters"]

    @property
    def names(self) -> list[str]:
        return list(self.tool_map)

    def validate(self, name: str, raw_input: str | dict[str, Any]) -> dict[str, Any]:
        """Decode and schema-check a call's arguments.

        The decoded input is checked exactly as the model sent it; nothing is
        renamed or reshaped. Returns the keyword arguments to call the tool with.

        Raises:
            ToolInputValidationError: Bad JSON, bad shape, or unknown tool.
        """
        fn = self.tool_map.get(name)
        if fn is None:
            raise ToolInputValidationError(
                name,
                f"Unknown tool: {name}. Available tools: {', '.join(sorted(self.tool_map))}",
                original=UnknownToolError(name),
            )

        arguments = decode_tool_arguments(name, raw_input)
        validate_against_schema(name, arguments, self._schemas[name])

        unknown = _unsupported_args(fn, arguments)
        if unknown:
            parts = [
                "unsupported args: " + ", ".join(unknown),
                "allowed args: " + ", ".join(sorted(self._schemas[name]["properties"])),
            ]
            message = "; ".join(parts)
            raise ToolInputValidationError(name, f"Validation error for {name}: {message}", errors=parts)
        return arguments

    async def invoke(
        self,
        name: str,
        tool_input: dict[str, Any],
        token: CancellationToken | None = None,
    ) -> str:
        """Call the tool and serialize its result (str passed through, else json.dumps).

        Exceptions from the tool itself propagate; the loop turns them into
        error text for the model.
        """
        fn = self.tool_map.get(name)
        if fn is None:
            raise UnknownToolError(name)

        kwargs = dict(tool_input)
        if _accepts_token(fn):
            kwargs[TOKEN_PARAM] = token or CancellationToken.none()

        if asyncio.iscoroutinefunction(fn):
            raw_result = await fn(**kwargs)
        else:
            raw_result = fn(**kwargs)
            if inspect.isawaitable(raw_result):
                raw_result = await raw_result

        if isinstance(raw_result, str):
            return raw_result
        return _json.dumps(raw_result, default=str)


def _accepts_token(fn: Callable[..., Any]) -> bool:
    try:
        return TOKEN_PARAM in inspect.signature(fn).parameters
    except (TypeError, ValueError):
        return False
