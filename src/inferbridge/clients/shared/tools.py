from __future__ import annotations

"""
Tool definition and tool-choice normalization shared by all prompt adapters.
Structural problems raise immediately, before any request is sent.
"""

import json
import logging
import re
from typing import Any, Iterable

from ...errors import InvalidToolChoiceError, InvalidToolDefinitionError
from ...structured import sanitize_schema
from ...types import JSONSchema, Message, ResolvedToolChoice, ToolChoice, ToolDefinition, ToolInput

logger = logging.getLogger(__name__)

TOOL_NAME_PATTERN = re.compile(r"^[a-zA-Z_][a-zA-Z0-9_]*$")
_CHOICE_MODES = ("auto", "none", "required")
_FLAT_SCHEMA_KEYS = ("inputSchema", "input_schema", "parameters")


def _clean_parameters(schema: Any) -> JSONSchema:
    if not schema:
        return {"type": "object"}
    return sanitize_schema(schema)


def normalize_tool(tool: ToolInput, index: int) -> ToolDefinition:
    """Validate one tool given in nested-function or flat form."""
    if not isinstance(tool, dict):
        raise InvalidToolDefinitionError(f"Tool at index {index}: invalid tool format")

    schema: Any = None
    if tool.get("type") == "function" and "function" in tool:
        function = tool["function"]
        if not isinstance(function, dict):
            raise InvalidToolDefinitionError(
                f"Tool at index {index}: invalid function object structure"
            )
        name = function.get("name")
        description = function.get("description")
        schema = function.get("parameters")
    elif "name" in tool:
        name = tool.get("name")
        description = tool.get("description")
        for key in _FLAT_SCHEMA_KEYS:
            if tool.get(key):
                schema = tool[key]
                break
    else:
        raise InvalidToolDefinitionError(
            f"Tool at index {index}: expected an object with 'name' and 'description' "
            "or a nested function object"
        )

    if not isinstance(name, str) or not name.strip():
        raise InvalidToolDefinitionError(f"Tool at index {index}: tool must have a non-empty name")
    if not isinstance(description, str) or not description.strip():
        raise InvalidToolDefinitionError(
            f"Tool at index {index}: tool must have a non-empty description"
        )

    name = name.strip()
    if not TOOL_NAME_PATTERN.match(name):
        raise InvalidToolDefinitionError(
            f"Tool name '{name}' is invalid. Must be a valid function name "
            "(letters, numbers, underscores only, cannot start with number)"
        )

    return ToolDefinition(
        name=name,
        description=description.strip(),
        parameters=_clean_parameters(schema),
    )


def normalize_tools(tools: Iterable[ToolInput] | None) -> list[ToolDefinition]:
    if tools is None:
        return []
    if isinstance(tools, (str, bytes, dict)):
        raise InvalidToolDefinitionError("Tools must be a list")
    tools = list(tools)
    if not tools:
        raise InvalidToolDefinitionError("Tools must be a non-empty list when provided")
    return [normalize_tool(tool, idx) for idx, tool in enumerate(tools)]


def _assert_tool_exists(name: str, tools: list[ToolDefinition]) -> None:
    if not TOOL_NAME_PATTERN.match(name):
        raise InvalidToolChoiceError(
            f"Invalid tool name '{name}'. Tool names must match {TOOL_NAME_PATTERN.pattern}"
        )
    if not any(tool.name == name for tool in tools):
        raise InvalidToolChoiceError(f"Tool choice references non-existent tool: '{name}'")


def resolve_tool_choice(
    choice: ToolChoice | None,
    tools: list[ToolDefinition],
) -> ResolvedToolChoice | None:
    """
    Normalize the accepted tool-choice spellings into a `ResolvedToolChoice`.

    Named choices must reference a tool in `tools`. Wire-specific degradation
    (for example `required`) is left to the adapter.
    """
    if choice is None:
        return None

    if isinstance(choice, str):
        value = choice.strip()
        if value in _CHOICE_MODES:
            return ResolvedToolChoice(mode=value)
        if not value:
            raise InvalidToolChoiceError("Tool choice must not be empty")
        _assert_tool_exists(value, tools)
        return ResolvedToolChoice(mode="tool", tool_name=value)

    if not isinstance(choice, dict):
        raise InvalidToolChoiceError(f"Unsupported tool choice: {choice!r}")

    choice_type = choice.get("type")
    if choice_type in _CHOICE_MODES:
        return ResolvedToolChoice(mode=choice_type)

    name: Any = None
    if choice_type == "tool" or (choice_type is None and "toolName" in choice):
        name = choice.get("tool_name", choice.get("toolName"))
    elif choice_type == "function":
        function = choice.get("function")
        name = function.get("name") if isinstance(function, dict) else None
    else:
        raise InvalidToolChoiceError(f"Unsupported tool choice type: {choice_type!r}")

    if not isinstance(name, str) or not name.strip():
        raise InvalidToolChoiceError("Tool choice must include a tool name")

    name = name.strip()
    _assert_tool_exists(name, tools)
    return ResolvedToolChoice(mode="tool", tool_name=name)


def has_tool_results(messages: Iterable[Message]) -> bool:
    return any(message.role == "tool" for message in messages)


def release_forced_tool_choice(
    choice: ResolvedToolChoice | None,
    messages: list[Message],
) -> ResolvedToolChoice | None:
    """
    Relax a forced tool back to `auto` once the conversation holds tool results,
    so the model is not asked to call the same tool forever.
    """
    if choice is None or choice.mode != "tool":
        return choice
    if not has_tool_results(messages):
        return choice

    logger.debug("Releasing forced tool choice '%s' after tool results", choice.tool_name)
    return ResolvedToolChoice(mode="auto")


def tool_result_content(part: dict[str, Any], *, json_indent: int | None = None) -> tuple[str, bool]:
    """
    Render one tool-result part as wire text.

    Returns `(content, is_error)`. `json`/`error-json` values are serialized with
    `json_indent`; a legacy `result` value is used when `output` is absent.
    """
    output = part.get("output")
    if isinstance(output, dict):
        output_type = output.get("type")
        value = output.get("value")
        if output_type in ("text", "error-text"):
            return ("" if value is None else str(value)), output_type == "error-text"
        if output_type in ("json", "error-json"):
            return _dump_json(value, json_indent), output_type == "error-json"
        return "", False

    if "result" in part:
        result = part["result"]
        if isinstance(result, str):
            return result, False
        if isinstance(result, (dict, list)):
            return _dump_json(result, json_indent), False
        return str(result), False

    return "", False


def _dump_json(value: Any, indent: int | None) -> str:
    if indent is None:
        return json.dumps(value, separators=(",", ":"), ensure_ascii=False, default=str)
    return json.dumps(value, indent=indent, ensure_ascii=False, default=str)


def tool_call_arguments(part: dict[str, Any]) -> Any:
    """Return the raw arguments of an assistant tool-call part (`input`, then `args`)."""
    if "input" in part:
        return part["input"]
    return part.get("args")
