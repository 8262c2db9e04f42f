"""Shared client helper utilities."""

from .normalization import (
    extract_response_metadata,
    extract_text_from_content,
    extract_usage,
    map_anthropic_finish_reason,
    map_openai_finish_reason,
    merge_usage,
    to_plain_dict,
)
from .streaming import StreamingState, StreamNormalizer, ToolCallBuffer
from .tool_calls import extract_tool_calls
from .tools import normalize_tools, resolve_tool_choice

__all__ = [
    "to_plain_dict",
    "extract_text_from_content",
    "extract_usage",
    "merge_usage",
    "extract_response_metadata",
    "map_openai_finish_reason",
    "map_anthropic_finish_reason",
    "extract_tool_calls",
    "normalize_tools",
    "resolve_tool_choice",
    "StreamingState",
    "StreamNormalizer",
    "ToolCallBuffer",
]
