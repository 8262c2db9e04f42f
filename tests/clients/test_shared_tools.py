from __future__ import annotations

import pytest

from inferbridge.clients.shared.tools import (
    normalize_tool,
    normalize_tools,
    release_forced_tool_choice,
    resolve_tool_choice,
    tool_result_content,
)
from inferbridge.errors import InvalidToolChoiceError, InvalidToolDefinitionError
from inferbridge.types import Message, ResolvedToolChoice, ToolDefinition


TOOLS = [
    ToolDefinition(name="get_weather", description="Weather lookup"),
    ToolDefinition(name="search", description="Web search"),
]


def test_nested_function_tool_is_normalized():
    tool = normalize_tool(
        {
            "type": "function",
            "function": {
                "name": " get_weather ",
                "description": " Weather lookup ",
                "parameters": {
                    "$schema": "http://json-schema.org/draft-07/schema#",
                    "properties": {"city": {"type": "string"}},
                },
            },
        },
        0,
    )

    assert tool == ToolDefinition(
        name="get_weather",
        description="Weather lookup",
        parameters={"properties": {"city": {"type": "string"}}, "type": "object"},
    )


@pytest.mark.parametrize("schema_key", ["inputSchema", "input_schema", "parameters"])
def test_flat_tool_accepts_schema_synonyms(schema_key):
    schema = {"type": "object", "properties": {"q": {"type": "string"}}}
    tool = normalize_tool({"name": "search", "description": "Web search", schema_key: schema}, 3)

    assert tool.parameters == schema


def test_flat_tool_without_schema_gets_object_schema():
    tool = normalize_tool({"name": "ping", "description": "Ping"}, 0)

    assert tool.parameters == {"type": "object"}


@pytest.mark.parametrize(
    ("tool", "message"),
    [
        ("not a dict", "invalid tool format"),
        ({"type": "function", "function": "nope"}, "invalid function object structure"),
        ({"description": "no name"}, "expected an object"),
        ({"name": "  ", "description": "x"}, "non-empty name"),
        ({"name": "ok_name", "description": ""}, "non-empty description"),
        ({"name": "1bad", "description": "x"}, "is invalid"),
        ({"name": "has-dash", "description": "x"}, "is invalid"),
    ],
)
def test_invalid_tools_raise(tool, message):
    with pytest.raises(InvalidToolDefinitionError, match=message):
        normalize_tool(tool, 0)


def test_normalize_tools_requires_a_non_empty_list():
    assert normalize_tools(None) == []
    with pytest.raises(InvalidToolDefinitionError):
        normalize_tools([])
    with pytest.raises(InvalidToolDefinitionError):
        normalize_tools({"name": "x", "description": "y"})


def test_invalid_tool_error_reports_its_index():
    with pytest.raises(InvalidToolDefinitionError, match="index 1"):
        normalize_tools([{"name": "ok", "description": "fine"}, {"name": "", "description": "x"}])


@pytest.mark.parametrize(
    ("choice", "expected"),
    [
        (None, None),
        ("auto", ResolvedToolChoice(mode="auto")),
        ("none", ResolvedToolChoice(mode="none")),
        ("required", ResolvedToolChoice(mode="required")),
        ("search", ResolvedToolChoice(mode="tool", tool_name="search")),
        ({"type": "auto"}, ResolvedToolChoice(mode="auto")),
        ({"type": "required"}, ResolvedToolChoice(mode="required")),
        ({"type": "tool", "tool_name": "search"}, ResolvedToolChoice(mode="tool", tool_name="search")),
        ({"type": "tool", "toolName": "search"}, ResolvedToolChoice(mode="tool", tool_name="search")),
        ({"toolName": "get_weather"}, ResolvedToolChoice(mode="tool", tool_name="get_weather")),
        (
            {"type": "function", "function": {"name": "get_weather"}},
            ResolvedToolChoice(mode="tool", tool_name="get_weather"),
        ),
    ],
)
def test_resolve_tool_choice_spellings(choice, expected):
    assert resolve_tool_choice(choice, TOOLS) == expected


@pytest.mark.parametrize(
    "choice",
    [
        "",
        "missing_tool",
        "bad-name",
        {"type": "tool"},
        {"type": "function", "function": {}},
        {"type": "banana"},
        42,
    ],
)
def test_resolve_tool_choice_rejects_bad_choices(choice):
    with pytest.raises(InvalidToolChoiceError):
        resolve_tool_choice(choice, TOOLS)


def test_forced_choice_is_released_only_after_tool_results():
    forced = ResolvedToolChoice(mode="tool", tool_name="search")
    before = [Message(role="user", content="hi")]
    after = before + [
        Message(role="tool", content=[{"type": "tool-result", "tool_call_id": "c1", "result": "x"}])
    ]

    assert release_forced_tool_choice(forced, before) is forced
    assert release_forced_tool_choice(forced, after) == ResolvedToolChoice(mode="auto")
    assert release_forced_tool_choice(ResolvedToolChoice(mode="required"), after).mode == "required"


@pytest.mark.parametrize(
    ("part", "indent", "expected"),
    [
        ({"output": {"type": "text", "value": "done"}}, None, ("done", False)),
        ({"output": {"type": "error-text", "value": "boom"}}, None, ("boom", True)),
        ({"output": {"type": "json", "value": {"a": 1}}}, None, ('{"a":1}', False)),
        ({"output": {"type": "json", "value": {"a": 1}}}, 2, ('{\n  "a": 1\n}', False)),
        ({"output": {"type": "error-json", "value": {"e": "x"}}}, None, ('{"e":"x"}', True)),
        ({"result": "legacy"}, None, ("legacy", False)),
        ({"result": {"k": [1, 2]}}, None, ('{"k":[1,2]}', False)),
        ({"result": 3}, None, ("3", False)),
        ({}, None, ("", False)),
    ],
)
def test_tool_result_content(part, indent, expected):
    assert tool_result_content(part, json_indent=indent) == expected
