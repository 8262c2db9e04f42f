from __future__ import annotations

"""
MIT License
Copyright (c) 2026 socioy
See LICENSE file for full license text.

Module for structured outputs.
Upstreams without a native JSON mode are driven through a synthetic tool: the
requested schema becomes the tool's parameters, the tool is forced, and its
argument text is recovered as the final answer.
"""
import json
import logging
import re
from typing import Any, Iterable, TypeVar

from pydantic import BaseModel, ValidationError

from .types import (
    JSONObject,
    JSONSchema,
    ResponseFormat,
    StructuredOutputConfig,
    ToolCall,
    ToolDefinition,
)
from .utils import compact_json, try_parse_json

logger = logging.getLogger(__name__)

T = TypeVar("T", bound=BaseModel)

DEFAULT_STRUCTURED_TOOL_NAME = "deliver_structured_output"
DEFAULT_STRUCTURED_TOOL_DESCRIPTION = (
    "Return structured data that satisfies the requested schema."
)
MAX_TOOL_NAME_LENGTH = 64

_DISALLOWED_NAME_CHARS = re.compile(r"[^a-z0-9_]")
_REPEATED_UNDERSCORES = re.compile(r"_+")
_LEADING_NAME_CHAR = re.compile(r"^[a-zA-Z_]")


def normalize_structured_tool_name(name: str | None) -> str:
    """
    Turn a free-form output name into a function-safe tool name.

    `"  Custom Tool  "` becomes `"custom_tool"`; names that are empty or still
    start with a digit after normalization fall back to the default name.
    """
    if not isinstance(name, str):
        return DEFAULT_STRUCTURED_TOOL_NAME

    normalized = _DISALLOWED_NAME_CHARS.sub("_", name.strip().lower())
    normalized = _REPEATED_UNDERSCORES.sub("_", normalized).strip("_")

    if not normalized or not _LEADING_NAME_CHAR.match(normalized):
        return DEFAULT_STRUCTURED_TOOL_NAME

    return normalized[:MAX_TOOL_NAME_LENGTH]


def sanitize_schema(schema: Any) -> JSONSchema:
    """Deep-copy a schema, strip `$schema` and default `type` to `object`."""
    fallback: JSONSchema = {"type": "object", "additionalProperties": True}
    if not isinstance(schema, dict):
        return fallback

    try:
        cloned = json.loads(json.dumps(schema))
    except (TypeError, ValueError):
        return fallback

    cloned.pop("$schema", None)
    cloned.setdefault("type", "object")
    return cloned


def structured_output_instruction(
    tool_name: str,
    schema: JSONSchema,
    description: str | None = None,
) -> str:
    try:
        schema_text: str | None = json.dumps(schema, indent=2, ensure_ascii=False)
    except (TypeError, ValueError):
        schema_text = None

    lines = [
        f'You must provide the final answer by calling the function "{tool_name}" exactly once.',
        "Do not include any narrative text before or after the function call.",
    ]

    if description and description.strip():
        lines.append(f"The structured data should satisfy: {description.strip()}")

    if schema_text:
        lines.append(f"The arguments must strictly conform to this JSON schema:\n{schema_text}")
    else:
        lines.append(
            "Provide arguments that form a valid JSON object matching the requested schema."
        )

    lines.append(
        "Return only the tool call with valid JSON arguments (no Markdown code fences)."
    )
    return "\n".join(lines)


def create_structured_output_config(
    schema: Any,
    *,
    name: str | None = None,
    description: str | None = None,
) -> StructuredOutputConfig:
    parameters = sanitize_schema(schema)
    tool_name = normalize_structured_tool_name(name)
    tool_description = (description or "").strip() or DEFAULT_STRUCTURED_TOOL_DESCRIPTION

    return StructuredOutputConfig(
        tool_name=tool_name,
        tool=ToolDefinition(
            name=tool_name,
            description=tool_description,
            parameters=parameters,
        ),
        system_instruction=structured_output_instruction(tool_name, parameters, description),
    )


def response_format_for_model(model: type[BaseModel]) -> ResponseFormat:
    """Build a JSON response format from a pydantic model class."""
    return ResponseFormat(
        type="json",
        schema=model.model_json_schema(),
        name=model.__name__,
        description=(model.__doc__ or "").strip() or None,
    )


def recover_structured_text(
    tool_calls: Iterable[ToolCall],
    expected_tool_name: str | None = None,
) -> str | None:
    """
    Pick the tool call that carries the structured answer and return its
    arguments as compact JSON.

    Priority: the expected tool with parsable arguments, then the first call with
    parsable non-empty arguments, then the first non-empty raw argument string.
    Returns None when no call carries arguments.
    """
    candidates = [call for call in tool_calls if call.input.strip()]
    if not candidates:
        return None

    ordered: list[ToolCall] = []
    if expected_tool_name:
        ordered.extend(c for c in candidates if c.tool_name == expected_tool_name)
    ordered.extend(c for c in candidates if c not in ordered)

    for call in ordered:
        ok, value = try_parse_json(call.input.strip())
        if not ok:
            continue
        try:
            return compact_json(value)
        except (TypeError, ValueError):
            return call.input.strip()

    fallback = ordered[0]
    logger.warning(
        "Structured output tool '%s' returned invalid JSON arguments; using raw text",
        fallback.tool_name,
    )
    return fallback.input.strip()


def parse_and_validate_json(text: str, schema: type[T]) -> JSONObject | None:
    """
    Validate recovered structured text against a pydantic model.

    Failures are not fatal: they are logged and None is returned so the raw text
    stays available to the caller.
    """
    ok, obj = try_parse_json(text)
    if not ok or not isinstance(obj, dict):
        logger.warning("Structured output is not a JSON object: %.200s", text)
        return None
    try:
        validated = schema.model_validate(obj)
    except ValidationError as e:
        logger.warning("Structured output does not conform to %s: %s", schema.__name__, e)
        return None
    return validated.model_dump(mode="json")


def resolve_response_text(
    text: str,
    tool_calls: list[ToolCall] | None,
    expected_tool_name: str | None = None,
) -> str:
    """
    Pick the text a non-streaming response reports.

    Order: the structured answer when one is expected, then non-blank free text,
    then arguments recovered from any tool call, else the empty string.
    """
    calls = tool_calls or []
    if expected_tool_name:
        structured = recover_structured_text(calls, expected_tool_name)
        if structured is not None:
            return structured
    if text.strip():
        return text
    return recover_structured_text(calls) or ""
