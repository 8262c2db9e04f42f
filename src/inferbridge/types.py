from __future__ import annotations

"""
MIT License
Copyright (c) 2026 socioy
See LICENSE file for full license text.

This module defines the protocol-agnostic types shared by every upstream adapter:
the normalized prompt, tool definitions, the response shape and the stream parts.
"""

import json
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Literal, NotRequired, TypeAlias, TypedDict


JSONPrimitive: TypeAlias = str | int | float | bool | None
JSONValue: TypeAlias = JSONPrimitive | list["JSONValue"] | dict[str, "JSONValue"]
JSONObject: TypeAlias = dict[str, JSONValue]
JSONSchema: TypeAlias = dict[str, JSONValue]

Role = Literal["system", "user", "assistant", "tool"]
ROLES: tuple[str, ...] = ("system", "user", "assistant", "tool")


class TextPart(TypedDict):
    type: Literal["text"]
    text: str


class ImagePart(TypedDict):
    type: Literal["image"]
    data: str
    media_type: NotRequired[str]


class ToolCallPart(TypedDict):
    type: Literal["tool-call"]
    tool_name: str
    tool_call_id: NotRequired[str]
    input: NotRequired[JSONValue]


class ToolResultOutput(TypedDict):
    type: Literal["text", "json", "error-text", "error-json"]
    value: JSONValue


class ToolResultPart(TypedDict):
    type: Literal["tool-result"]
    tool_call_id: str
    tool_name: NotRequired[str]
    output: NotRequired[ToolResultOutput]
    result: NotRequired[JSONValue]


MessagePart: TypeAlias = TextPart | ImagePart | ToolCallPart | ToolResultPart
MessageContent: TypeAlias = str | list[MessagePart]


@dataclass(frozen=True, slots=True)
class Message:
    role: Role
    content: MessageContent


# Tools arrive either nested (`{"type": "function", "function": {...}}`) or flat
# (`{"name", "description", "parameters" | "input_schema" | "inputSchema"}`).
ToolInput: TypeAlias = dict[str, Any]

# "auto" | "none" | "required" | "<tool name>" | {"type": "tool", "tool_name": ...}
# | {"type": "function", "function": {"name": ...}}
ToolChoice: TypeAlias = str | dict[str, Any]

FinishReason = Literal[
    "stop",
    "length",
    "content-filter",
    "tool-calls",
    "error",
    "other",
    "unknown",
]


@dataclass(frozen=True, slots=True)
class ToolDefinition:
    """A validated tool: regex-safe name, non-empty description, object schema."""

    name: str
    description: str
    parameters: JSONSchema = field(default_factory=lambda: {"type": "object"})


@dataclass(frozen=True, slots=True)
class ResolvedToolChoice:
    mode: Literal["auto", "none", "required", "tool"]
    tool_name: str | None = None


@dataclass(frozen=True, slots=True)
class ResponseFormat:
    type: Literal["text", "json"] = "json"
    schema: JSONSchema | None = None
    name: str | None = None
    description: str | None = None


@dataclass(frozen=True, slots=True)
class StructuredOutputConfig:
    tool_name: str
    tool: ToolDefinition
    system_instruction: str


@dataclass(frozen=True, slots=True)
class Usage:
    input_tokens: int | None = None
    output_tokens: int | None = None
    total_tokens: int | None = None
    reasoning_tokens: int | None = None
    cached_input_tokens: int | None = None


@dataclass(frozen=True, slots=True)
class ToolCall:
    """
    Data-only representation of a model-returned tool call.
    `input` is the JSON argument text exactly as recovered from the upstream.
    """

    tool_call_id: str
    tool_name: str
    input: str = "{}"
    type: Literal["tool-call"] = "tool-call"

    @property
    def arguments(self) -> JSONObject:
        try:
            parsed = json.loads(self.input)
        except ValueError:
            return {}
        return parsed if isinstance(parsed, dict) else {}


@dataclass(frozen=True, slots=True)
class TextContent:
    text: str
    type: Literal["text"] = "text"


ContentPart: TypeAlias = TextContent | ToolCall


@dataclass(frozen=True, slots=True)
class CallWarning:
    setting: str
    details: str | None = None
    type: Literal["unsupported-setting", "other"] = "unsupported-setting"


@dataclass(frozen=True, slots=True)
class ResponseMetadata:
    id: str | None = None
    model_id: str | None = None
    timestamp: datetime | None = None


@dataclass(frozen=True, slots=True)
class ChatRequest:
    """
    Canonical request type. The model id is bound to the `ChatModel` instance,
    so the request only carries the conversation and sampling controls.
    """

    messages: list[Message] | str = field(default_factory=list)
    tools: list[ToolInput] | None = None
    tool_choice: ToolChoice | None = None
    response_format: ResponseFormat | None = None
    max_tokens: int | None = None
    temperature: float | None = None
    top_p: float | None = None
    top_k: int | None = None
    stop: list[str] | None = None
    seed: int | None = None
    presence_penalty: float | None = None
    frequency_penalty: float | None = None
    headers: dict[str, str | None] | None = None
    timeout_s: float | None = None
    request_id: str | None = None
    extra: JSONObject = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class ChatResponse:
    content: list[ContentPart] = field(default_factory=list)
    finish_reason: FinishReason = "unknown"
    usage: Usage = field(default_factory=Usage)
    metadata: ResponseMetadata = field(default_factory=ResponseMetadata)
    warnings: list[CallWarning] = field(default_factory=list)
    request_id: str | None = None
    request_body: dict[str, Any] = field(default_factory=dict)
    raw: dict[str, Any] = field(default_factory=dict)
    structured_response: JSONObject | None = None

    @property
    def text(self) -> str:
        return "".join(p.text for p in self.content if isinstance(p, TextContent))

    @property
    def tool_calls(self) -> list[ToolCall]:
        return [p for p in self.content if isinstance(p, ToolCall)]


@dataclass(frozen=True, slots=True)
class StreamStartPart:
    warnings: list[CallWarning] = field(default_factory=list)
    type: Literal["stream-start"] = "stream-start"


@dataclass(frozen=True, slots=True)
class StreamTextStartPart:
    id: str
    type: Literal["text-start"] = "text-start"


@dataclass(frozen=True, slots=True)
class StreamTextDeltaPart:
    id: str
    delta: str
    type: Literal["text-delta"] = "text-delta"


@dataclass(frozen=True, slots=True)
class StreamTextEndPart:
    id: str
    type: Literal["text-end"] = "text-end"


@dataclass(frozen=True, slots=True)
class StreamToolCallPart:
    tool_call_id: str
    tool_name: str
    input: str = "{}"
    type: Literal["tool-call"] = "tool-call"


@dataclass(frozen=True, slots=True)
class StreamFinishPart:
    finish_reason: FinishReason
    usage: Usage
    type: Literal["finish"] = "finish"


StreamPart: TypeAlias = (
    StreamStartPart
    | StreamTextStartPart
    | StreamTextDeltaPart
    | StreamTextEndPart
    | StreamToolCallPart
    | StreamFinishPart
)
