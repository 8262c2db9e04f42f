from __future__ import annotations

import pytest
from pydantic import BaseModel

from inferbridge.structured import (
    DEFAULT_STRUCTURED_TOOL_DESCRIPTION,
    DEFAULT_STRUCTURED_TOOL_NAME,
    create_structured_output_config,
    normalize_structured_tool_name,
    parse_and_validate_json,
    recover_structured_text,
    resolve_response_text,
    response_format_for_model,
    sanitize_schema,
)
from inferbridge.types import ToolCall


class Movie(BaseModel):
    """Film summary."""

    title: str
    year: int


@pytest.mark.parametrize(
    ("name", "expected"),
    [
        ("123-invalid", DEFAULT_STRUCTURED_TOOL_NAME),
        ("  Custom Tool  ", "custom_tool"),
        ("Movie", "movie"),
        ("a--b__c", "a_b_c"),
        ("", DEFAULT_STRUCTURED_TOOL_NAME),
        ("!!!", DEFAULT_STRUCTURED_TOOL_NAME),
        (None, DEFAULT_STRUCTURED_TOOL_NAME),
        ("x" * 80, "x" * 64),
    ],
)
def test_normalize_structured_tool_name(name, expected):
    assert normalize_structured_tool_name(name) == expected


def test_sanitize_schema_copies_and_cleans():
    original = {
        "$schema": "http://json-schema.org/draft-07/schema#",
        "properties": {"title": {"type": "string"}},
    }

    cleaned = sanitize_schema(original)

    assert cleaned == {"properties": {"title": {"type": "string"}}, "type": "object"}
    assert "$schema" in original
    cleaned["properties"]["title"]["type"] = "number"
    assert original["properties"]["title"]["type"] == "string"


def test_sanitize_schema_falls_back_for_unusable_input():
    fallback = {"type": "object", "additionalProperties": True}

    assert sanitize_schema(None) == fallback
    assert sanitize_schema(["not", "a", "dict"]) == fallback
    assert sanitize_schema({"bad": object()}) == fallback


def test_create_structured_output_config():
    schema = {"type": "object", "properties": {"title": {"type": "string"}}}

    config = create_structured_output_config(schema, name="  Custom Tool  ", description="A title")

    assert config.tool_name == "custom_tool"
    assert config.tool.name == "custom_tool"
    assert config.tool.description == "A title"
    assert config.tool.parameters == schema
    assert 'calling the function "custom_tool" exactly once' in config.system_instruction
    assert "The structured data should satisfy: A title" in config.system_instruction
    assert '"title"' in config.system_instruction


def test_create_structured_output_config_defaults():
    config = create_structured_output_config({"type": "object"})

    assert config.tool_name == DEFAULT_STRUCTURED_TOOL_NAME
    assert config.tool.description == DEFAULT_STRUCTURED_TOOL_DESCRIPTION
    assert "should satisfy" not in config.system_instruction


def test_response_format_for_model():
    fmt = response_format_for_model(Movie)

    assert fmt.type == "json"
    assert fmt.name == "Movie"
    assert fmt.description == "Film summary."
    assert fmt.schema is not None
    assert set(fmt.schema["properties"]) == {"title", "year"}


def test_recover_prefers_expected_tool_and_compacts_json():
    calls = [
        ToolCall(tool_call_id="1", tool_name="other", input='{"a": 1}'),
        ToolCall(tool_call_id="2", tool_name="deliver_structured_output", input='{ "title" : "X" }'),
    ]

    assert recover_structured_text(calls, "deliver_structured_output") == '{"title":"X"}'
    assert recover_structured_text(calls) == '{"a":1}'


def test_recover_skips_unparsable_then_falls_back_to_raw_text():
    calls = [
        ToolCall(tool_call_id="1", tool_name="deliver_structured_output", input="{broken"),
        ToolCall(tool_call_id="2", tool_name="other", input='{"ok": true}'),
    ]

    assert recover_structured_text(calls, "deliver_structured_output") == '{"ok":true}'
    assert recover_structured_text(calls[:1], "deliver_structured_output") == "{broken"
    assert recover_structured_text([ToolCall(tool_call_id="1", tool_name="t", input="  ")]) is None
    assert recover_structured_text([]) is None


def test_parse_and_validate_json():
    assert parse_and_validate_json('{"title": "Up", "year": 2009}', Movie) == {"title": "Up", "year": 2009}
    assert parse_and_validate_json('{"title": "Up"}', Movie) is None
    assert parse_and_validate_json("[1, 2]", Movie) is None
    assert parse_and_validate_json("not json", Movie) is None


def test_resolve_response_text_order():
    structured = [ToolCall(tool_call_id="1", tool_name="deliver_structured_output", input='{"t": 1}')]

    assert resolve_response_text("free text", structured, "deliver_structured_output") == '{"t":1}'
    assert resolve_response_text("free text", structured) == "free text"
    assert resolve_response_text("   ", structured) == '{"t":1}'
    assert resolve_response_text("", None) == ""
