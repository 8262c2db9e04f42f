from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone

import pytest
from pydantic import BaseModel

from inferbridge.clients.shared.normalization import (
    extract_response_metadata,
    extract_text_from_content,
    extract_usage,
    map_anthropic_finish_reason,
    map_openai_finish_reason,
    merge_usage,
    to_plain_dict,
)
from inferbridge.clients.shared.tool_calls import extract_tool_calls
from inferbridge.types import ToolCall, Usage


class ChunkModel(BaseModel):
    id: str
    choices: list[dict]


@dataclass
class ChunkRecord:
    id: str


def test_to_plain_dict_accepts_models_and_dataclasses():
    assert to_plain_dict({"a": 1}) == {"a": 1}
    assert to_plain_dict(ChunkModel(id="x", choices=[])) == {"id": "x", "choices": []}
    assert to_plain_dict(ChunkRecord(id="y")) == {"id": "y"}
    assert to_plain_dict("text") == {}
    assert to_plain_dict(None) == {}


def test_extract_text_from_content_shapes():
    assert extract_text_from_content("plain") == "plain"
    assert extract_text_from_content({"text": "dict"}) == "dict"
    assert (
        extract_text_from_content(
            [
                "a",
                {"type": "text", "text": "b"},
                {"type": "output_text", "text": "c"},
                {"type": "tool_use", "text": "ignored"},
                {"text": "d"},
            ]
        )
        == "abcd"
    )
    assert extract_text_from_content(None) == ""


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ({}, Usage()),
        (
            {"usage": {"prompt_tokens": 3, "completion_tokens": 4}},
            Usage(input_tokens=3, output_tokens=4, total_tokens=7),
        ),
        (
            {"usage": {"input_tokens": 3, "output_tokens": 4, "total_tokens": 9}},
            Usage(input_tokens=3, output_tokens=4, total_tokens=9),
        ),
        (
            {
                "usage": {
                    "prompt_tokens": 10,
                    "completion_tokens": 5,
                    "prompt_tokens_details": {"cached_tokens": 6},
                    "completion_tokens_details": {"reasoning_tokens": 2},
                }
            },
            Usage(input_tokens=10, output_tokens=5, total_tokens=15, reasoning_tokens=2, cached_input_tokens=6),
        ),
        (
            {"usage": {"input_tokens": 1, "reasoning_tokens": 4, "cached_input_tokens": 1}},
            Usage(input_tokens=1, reasoning_tokens=4, cached_input_tokens=1),
        ),
        (
            {"usage": {"input_tokens": 2, "output_tokens": 1, "cache_read_input_tokens": 5}},
            Usage(input_tokens=2, output_tokens=1, total_tokens=3, cached_input_tokens=5),
        ),
        (
            {"usage": {"prompt_tokens": True, "completion_tokens": "3"}},
            Usage(),
        ),
    ],
)
def test_extract_usage(raw, expected):
    assert extract_usage(raw) == expected


def test_merge_usage_keeps_input_and_output_independent():
    started = merge_usage(None, Usage(input_tokens=10))
    merged = merge_usage(started, Usage(output_tokens=4))

    assert started == Usage(input_tokens=10)
    assert merged == Usage(input_tokens=10, output_tokens=4, total_tokens=14)
    assert merge_usage(merged, Usage(total_tokens=20)).total_tokens == 20


@pytest.mark.parametrize(
    ("value", "expected"),
    [
        ("stop", "stop"),
        ("length", "length"),
        ("max_tokens", "length"),
        ("content_filter", "content-filter"),
        ("tool_calls", "tool-calls"),
        ("function_call", "tool-calls"),
        ("error", "error"),
        ("other", "other"),
        ("something_new", "other"),
        ("", "unknown"),
        (None, "unknown"),
    ],
)
def test_map_openai_finish_reason(value, expected):
    assert map_openai_finish_reason(value) == expected


@pytest.mark.parametrize(
    ("value", "expected"),
    [
        ("end_turn", "stop"),
        ("stop_sequence", "stop"),
        ("max_tokens", "length"),
        ("tool_use", "tool-calls"),
        ("refusal", "content-filter"),
        ("pause_turn", "other"),
        (None, "unknown"),
    ],
)
def test_map_anthropic_finish_reason(value, expected):
    assert map_anthropic_finish_reason(value) == expected


def test_extract_response_metadata():
    meta = extract_response_metadata({"id": "r1", "model": "m1", "created": 0})

    assert meta.id == "r1"
    assert meta.model_id == "m1"
    assert meta.timestamp == datetime(1970, 1, 1, tzinfo=timezone.utc)
    assert extract_response_metadata({"id": 5}).id is None


# Tool call extraction


def test_extract_openai_tool_calls():
    calls = extract_tool_calls(
        {
            "tool_calls": [
                {
                    "id": "call_1",
                    "type": "function",
                    "function": {"name": "get_weather", "arguments": ' {"city":"Paris"} '},
                }
            ]
        }
    )

    assert calls == [ToolCall(tool_call_id="call_1", tool_name="get_weather", input='{"city":"Paris"}')]


def test_extract_tool_calls_from_content_part_synonyms():
    calls = extract_tool_calls(
        {
            "content": [
                {"type": "text", "text": "ignored"},
                {"type": "tool-use", "toolCallId": "a", "toolName": "first", "args": {"x": 1}},
                {"type": "TOOL_CALL", "tool_call_id": "b", "tool_name": "second", "arguments": "{}"},
                {"type": "function_call", "id": "c", "name": "third"},
                {
                    "type": "tool_calls",
                    "tool_calls": [{"id": "d", "function": {"name": "fourth", "arguments": "[1]"}}],
                },
            ]
        }
    )

    assert calls is not None
    assert [(c.tool_call_id, c.tool_name, c.input) for c in calls] == [
        ("a", "first", '{"x": 1}'),
        ("b", "second", "{}"),
        ("c", "third", "{}"),
        ("d", "fourth", "[1]"),
    ]


def test_extract_tool_calls_skips_nameless_and_generates_ids(caplog):
    with caplog.at_level(logging.WARNING, logger="inferbridge.clients.shared.tool_calls"):
        calls = extract_tool_calls(
            {
                "tool_calls": [
                    {"id": "x", "function": {"arguments": "{}"}},
                    {"function": {"name": "named", "arguments": "{not json"}},
                ]
            }
        )

    assert calls is not None and len(calls) == 1
    assert calls[0].tool_name == "named"
    assert calls[0].input == "{not json"
    assert len(calls[0].tool_call_id) == 16
    assert "missing tool name" in caplog.text
    assert "failed to parse arguments JSON" in caplog.text


def test_extract_tool_calls_returns_none_when_empty():
    assert extract_tool_calls({"content": "just text"}) is None
    assert extract_tool_calls({"tool_calls": []}) is None
    assert extract_tool_calls(None) is None


def test_empty_argument_string_falls_through_to_next_source():
    calls = extract_tool_calls({"tool_calls": [{"name": "t", "arguments": "  ", "input": {"q": "v"}}]})

    assert calls is not None
    assert calls[0].input == '{"q": "v"}'
