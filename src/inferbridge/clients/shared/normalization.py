from __future__ import annotations

"""
Shared client-side normalization helpers used across upstream adapters.
"""

from dataclasses import asdict, is_dataclass
from datetime import datetime, timezone
from typing import Any

from ...types import FinishReason, ResponseMetadata, Usage


def to_plain_dict(value: Any) -> dict[str, Any]:
    """Best-effort conversion of decoded upstream objects into plain dictionaries."""
    if isinstance(value, dict):
        return value

    if hasattr(value, "model_dump"):
        try:
            dumped = value.model_dump()
            if isinstance(dumped, dict):
                return dumped
        except Exception:
            pass

    if is_dataclass(value) and not isinstance(value, type):
        try:
            return asdict(value)
        except Exception:
            pass

    return {}


def extract_text_from_content(content: Any) -> str:
    """Extract plain text from string, list-of-parts and `{text}` content shapes."""
    if isinstance(content, str):
        return content

    if isinstance(content, list):
        out: list[str] = []
        for item in content:
            if isinstance(item, str):
                out.append(item)
                continue

            if not isinstance(item, dict):
                continue

            if item.get("type") not in (None, "text", "output_text"):
                continue

            text = item.get("text")
            if isinstance(text, str):
                out.append(text)
        return "".join(out)

    if isinstance(content, dict):
        text = content.get("text")
        if isinstance(text, str):
            return text

    return ""


def _int_or_none(value: Any) -> int | None:
    if isinstance(value, bool):
        return None
    return value if isinstance(value, int) else None


def _first_int(*values: Any) -> int | None:
    for value in values:
        number = _int_or_none(value)
        if number is not None:
            return number
    return None


def extract_usage(raw_dict: dict[str, Any]) -> Usage:
    """
    Normalize usage token counters from OpenAI-style or Anthropic-style payloads.

    Values absent upstream stay None; the total is derived only when both input
    and output counts are known.
    """
    usage = raw_dict.get("usage")
    if not isinstance(usage, dict):
        return Usage()

    prompt_details = usage.get("prompt_tokens_details")
    prompt_details = prompt_details if isinstance(prompt_details, dict) else {}
    completion_details = usage.get("completion_tokens_details")
    completion_details = completion_details if isinstance(completion_details, dict) else {}

    input_tokens = _first_int(usage.get("prompt_tokens"), usage.get("input_tokens"))
    output_tokens = _first_int(usage.get("completion_tokens"), usage.get("output_tokens"))
    total_tokens = _int_or_none(usage.get("total_tokens"))
    if total_tokens is None and input_tokens is not None and output_tokens is not None:
        total_tokens = input_tokens + output_tokens

    cached = _first_int(usage.get("cached_input_tokens"), prompt_details.get("cached_tokens"))
    if cached is None:
        cache_read = _int_or_none(usage.get("cache_read_input_tokens"))
        cache_creation = _int_or_none(usage.get("cache_creation_input_tokens"))
        if cache_read is not None or cache_creation is not None:
            cached = (cache_read or 0) + (cache_creation or 0)

    return Usage(
        input_tokens=input_tokens,
        output_tokens=output_tokens,
        total_tokens=total_tokens,
        reasoning_tokens=_first_int(
            usage.get("reasoning_tokens"),
            completion_details.get("reasoning_tokens"),
        ),
        cached_input_tokens=cached,
    )


def merge_usage(current: Usage | None, update: Usage) -> Usage:
    """
    Merge a usage update into the accumulated record.

    Input and output counts are tracked independently; a field present in the
    update replaces the accumulated one. The total falls back to input + output.
    """
    base = current or Usage()
    input_tokens = update.input_tokens if update.input_tokens is not None else base.input_tokens
    output_tokens = (
        update.output_tokens if update.output_tokens is not None else base.output_tokens
    )
    total_tokens = update.total_tokens
    if total_tokens is None and input_tokens is not None and output_tokens is not None:
        total_tokens = input_tokens + output_tokens
    if total_tokens is None:
        total_tokens = base.total_tokens

    return Usage(
        input_tokens=input_tokens,
        output_tokens=output_tokens,
        total_tokens=total_tokens,
        reasoning_tokens=(
            update.reasoning_tokens
            if update.reasoning_tokens is not None
            else base.reasoning_tokens
        ),
        cached_input_tokens=(
            update.cached_input_tokens
            if update.cached_input_tokens is not None
            else base.cached_input_tokens
        ),
    )


_OPENAI_FINISH_REASONS: dict[str, FinishReason] = {
    "stop": "stop",
    "length": "length",
    "max_tokens": "length",
    "content_filter": "content-filter",
    "tool_calls": "tool-calls",
    "function_call": "tool-calls",
    "error": "error",
    "other": "other",
}

_ANTHROPIC_FINISH_REASONS: dict[str, FinishReason] = {
    "end_turn": "stop",
    "stop_sequence": "stop",
    "max_tokens": "length",
    "tool_use": "tool-calls",
    "refusal": "content-filter",
    "pause_turn": "other",
    "error": "error",
}


def _map_finish_reason(value: Any, table: dict[str, FinishReason]) -> FinishReason:
    if not isinstance(value, str) or not value:
        return "unknown"
    return table.get(value, "other")


def map_openai_finish_reason(value: Any) -> FinishReason:
    return _map_finish_reason(value, _OPENAI_FINISH_REASONS)


def map_anthropic_finish_reason(value: Any) -> FinishReason:
    return _map_finish_reason(value, _ANTHROPIC_FINISH_REASONS)


def extract_response_metadata(raw_dict: dict[str, Any]) -> ResponseMetadata:
    """Map `id`, `model` and unix `created` seconds into response metadata."""
    response_id = raw_dict.get("id")
    model_id = raw_dict.get("model")
    created = raw_dict.get("created")

    timestamp = None
    if isinstance(created, (int, float)) and not isinstance(created, bool):
        timestamp = datetime.fromtimestamp(created, tz=timezone.utc)

    return ResponseMetadata(
        id=response_id if isinstance(response_id, str) else None,
        model_id=model_id if isinstance(model_id, str) else None,
        timestamp=timestamp,
    )
