from __future__ import annotations

"""
Tool call extraction shared by the non-streaming normalizers.

Upstreams disagree on where tool calls live and what their fields are called.
The accessor tables below list every known spelling in priority order; adding a
new upstream variant means adding a path here, not a new branch.
"""

import json
import logging
from typing import Any

from ...types import ToolCall
from ...utils import generate_id, try_parse_json
from .normalization import to_plain_dict

logger = logging.getLogger(__name__)

# Content-part types that carry a single tool call.
TOOL_CALL_PART_TYPES = frozenset({"tool_call", "tool-use", "tool_use", "function_call"})
# Content-part type that nests a list of tool calls under `tool_calls`.
TOOL_CALL_LIST_PART_TYPE = "tool_calls"

ID_PATHS: tuple[tuple[str, ...], ...] = (
    ("id",),
    ("tool_call_id",),
    ("toolCallId",),
    ("function", "id"),
)
NAME_PATHS: tuple[tuple[str, ...], ...] = (
    ("function", "name"),
    ("name",),
    ("tool_name",),
    ("toolName",),
)
ARGUMENT_PATHS: tuple[tuple[str, ...], ...] = (
    ("function", "arguments"),
    ("arguments",),
    ("args",),
    ("input",),
)

_MISSING = object()


def _lookup(record: dict[str, Any], path: tuple[str, ...]) -> Any:
    current: Any = record
    for key in path:
        if not isinstance(current, dict) or key not in current:
            return _MISSING
        current = current[key]
    return current


def collect_tool_call_candidates(message: Any) -> list[dict[str, Any]]:
    """Gather tool-call-like records from a message's `tool_calls` and content parts."""
    message = to_plain_dict(message)
    if not message:
        return []

    candidates: list[dict[str, Any]] = []

    direct = message.get("tool_calls")
    if isinstance(direct, list):
        candidates.extend(to_plain_dict(call) for call in direct if call is not None)

    content = message.get("content")
    if isinstance(content, list):
        for part in content:
            if not isinstance(part, dict):
                continue
            part_type = part.get("type")
            part_type = part_type.lower() if isinstance(part_type, str) else None

            if part_type == TOOL_CALL_LIST_PART_TYPE and isinstance(part.get("tool_calls"), list):
                candidates.extend(
                    to_plain_dict(call) for call in part["tool_calls"] if call is not None
                )
            elif part_type in TOOL_CALL_PART_TYPES:
                candidates.append(part)

    return candidates


def _arguments_text(value: Any, index: int) -> str | None:
    """Render one argument source as JSON text, or None when it is unusable."""
    if value is None:
        return None

    if isinstance(value, str):
        trimmed = value.strip()
        if not trimmed:
            return None
        ok, _ = try_parse_json(trimmed)
        if not ok:
            logger.warning("Tool call at index %d: failed to parse arguments JSON", index)
        return trimmed

    try:
        return json.dumps(value, ensure_ascii=False)
    except (TypeError, ValueError):
        logger.warning("Tool call at index %d: arguments are not JSON serializable", index)
        return None


def normalize_tool_call(candidate: dict[str, Any], index: int) -> ToolCall | None:
    name = ""
    for path in NAME_PATHS:
        value = _lookup(candidate, path)
        if isinstance(value, str) and value.strip():
            name = value.strip()
            break

    if not name:
        logger.warning("Tool call at index %d: missing tool name, skipping entry", index)
        return None

    call_id = None
    for path in ID_PATHS:
        value = _lookup(candidate, path)
        if isinstance(value, str) and value.strip():
            call_id = value
            break

    arguments = "{}"
    for path in ARGUMENT_PATHS:
        value = _lookup(candidate, path)
        if value is _MISSING:
            continue
        text = _arguments_text(value, index)
        if text is not None:
            arguments = text
            break

    return ToolCall(
        tool_call_id=call_id or generate_id(),
        tool_name=name,
        input=arguments,
    )


def extract_tool_calls(message: Any) -> list[ToolCall] | None:
    """
    Extract normalized tool calls from an upstream message payload.

    Returns None (not an empty list) when the payload holds no valid tool call.
    """
    out: list[ToolCall] = []
    for index, candidate in enumerate(collect_tool_call_candidates(message)):
        call = normalize_tool_call(candidate, index)
        if call is not None:
            out.append(call)
    return out or None
