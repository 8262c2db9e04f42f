from __future__ import annotations

"""
Adapter for OpenAI-chat-style upstreams (`/v1/chat/completions`).

Streams arrive as `{choices: [{delta, finish_reason}], usage?}` chunks whose
tool-call arguments are split across chunks and keyed by slot index.
"""

import json
import logging
from typing import Any

from ..shared.normalization import (
    extract_response_metadata,
    extract_usage,
    map_openai_finish_reason,
    to_plain_dict,
)
from ..shared.streaming import StreamingState, StreamNormalizer
from ..shared.tool_calls import extract_tool_calls
from ..shared.tools import tool_call_arguments, tool_result_content
from ...chat import ChatModel, PreparedCall
from ...errors import EmptyPromptError, MalformedResponseError
from ...structured import resolve_response_text
from ...types import (
    ChatRequest,
    ChatResponse,
    Message,
    ResolvedToolChoice,
    StreamPart,
    TextContent,
)
from ...utils import generate_id

logger = logging.getLogger(__name__)


class OpenAIChatStreamNormalizer(StreamNormalizer):
    """Normalize OpenAI-chat SSE chunks."""

    protocol = "openai_chat"

    def _handle_event(self, state: StreamingState, event: dict[str, Any]) -> list[StreamPart]:
        parts: list[StreamPart] = []

        if isinstance(event.get("id"), str) and state.message_id is None:
            state.message_id = event["id"]
        if isinstance(event.get("model"), str) and state.model_id is None:
            state.model_id = event["model"]

        if isinstance(event.get("usage"), dict):
            self._record_usage(state, extract_usage(event))

        choice = self._first_choice(event)
        delta = choice.get("delta")
        delta = to_plain_dict(delta) if delta is not None else {}

        tool_calls = delta.get("tool_calls")
        if isinstance(tool_calls, list):
            for fragment in tool_calls:
                self._buffer_fragment(state, to_plain_dict(fragment))

        content = delta.get("content")
        if isinstance(content, str) and content:
            parts.extend(self._append_text(state, content))

        finish_reason = choice.get("finish_reason")
        if finish_reason:
            state.finish_reason = map_openai_finish_reason(finish_reason)
            if state.finish_reason == "tool-calls":
                calls = self._take_tool_calls(state)
                seen = {call.tool_call_id for call in calls}
                for call in extract_tool_calls(choice.get("message")) or []:
                    if call.tool_call_id not in seen:
                        calls.append(call)
                        seen.add(call.tool_call_id)
                parts.extend(self._emit_tool_calls(state, calls))

        return parts

    def _first_choice(self, event: dict[str, Any]) -> dict[str, Any]:
        choices = event.get("choices")
        if isinstance(choices, list):
            return to_plain_dict(choices[0]) if choices else {}
        # Some upstreams flatten the choice into the chunk itself.
        if "delta" in event or "finish_reason" in event:
            return event
        return {}

    def _buffer_fragment(self, state: StreamingState, fragment: dict[str, Any]) -> None:
        index = fragment.get("index")
        if not isinstance(index, int) or isinstance(index, bool) or index < 0:
            index = 0

        buf = self._buffer_for(state, index)
        call_id = fragment.get("id")
        if isinstance(call_id, str) and call_id.strip():
            buf.id = call_id

        function = to_plain_dict(fragment.get("function"))
        name = function.get("name")
        if isinstance(name, str) and name.strip():
            buf.name = name.strip()
        arguments = function.get("arguments")
        if isinstance(arguments, str):
            buf.args_buffer += arguments


class OpenAIChatClient(ChatModel):
    """Chat model speaking the OpenAI chat-completions wire protocol."""

    endpoint_path = "/v1/chat/completions"
    auth_mode = "bearer"

    _UNSUPPORTED_SETTINGS = (
        ("top_k", "OpenAI-chat upstreams do not support top_k sampling."),
    )
    _DEGRADE_REQUIRED_DEFAULT = True

    @property
    def provider_id(self) -> str:
        return "openai_chat"

    def _stream_normalizer(self) -> StreamNormalizer:
        return OpenAIChatStreamNormalizer()

    def _build_wire_body(
        self,
        request: ChatRequest,
        prepared: PreparedCall,
        *,
        stream: bool,
    ) -> dict[str, Any]:
        messages: list[dict[str, Any]] = []
        if prepared.system:
            messages.append({"role": "system", "content": prepared.system})
        for message in prepared.messages:
            messages.extend(self._message_to_wire(message))

        body: dict[str, Any] = {
            "model": self.model_id,
            "messages": messages,
            "stream": stream,
        }

        if request.temperature is not None:
            body["temperature"] = request.temperature
        if request.max_tokens is not None:
            body["max_tokens"] = request.max_tokens
        if request.top_p is not None:
            body["top_p"] = request.top_p
        if request.stop:
            body["stop"] = list(request.stop)
        if request.seed is not None:
            body["seed"] = request.seed
        if request.presence_penalty is not None:
            body["presence_penalty"] = request.presence_penalty
        if request.frequency_penalty is not None:
            body["frequency_penalty"] = request.frequency_penalty

        if prepared.tools:
            body["tools"] = [
                {
                    "type": "function",
                    "function": {
                        "name": tool.name,
                        "description": tool.description,
                        "parameters": tool.parameters,
                    },
                }
                for tool in prepared.tools
            ]
            if prepared.tool_choice is not None:
                body["tool_choice"] = self._tool_choice_to_wire(prepared.tool_choice)

        body.update(request.extra)
        return body

    def _tool_choice_to_wire(self, choice: ResolvedToolChoice) -> Any:
        choice = self._resolve_required(choice)
        if choice.mode == "tool":
            return {"type": "function", "function": {"name": choice.tool_name}}
        return choice.mode

    def _message_to_wire(self, message: Message) -> list[dict[str, Any]]:
        if message.role == "tool":
            return self._split_tool_message(message)
        if message.role == "assistant":
            return [self._assistant_to_wire(message)]
        if message.role == "user":
            return [self._user_to_wire(message)]
        return [{"role": "system", "content": self._text_of(message.content).strip()}]

    def _user_to_wire(self, message: Message) -> dict[str, Any]:
        text = self._text_of(message.content)
        images = self._parts_of(message, "image")
        if not images:
            if not text.strip():
                raise EmptyPromptError("Message content cannot be empty")
            return {"role": "user", "content": text}

        content: list[dict[str, Any]] = []
        if text.strip():
            content.append({"type": "text", "text": text})
        for image in images:
            media_type = image.get("media_type") or "image/png"
            content.append(
                {
                    "type": "image_url",
                    "image_url": {"url": f"data:{media_type};base64,{image.get('data', '')}"},
                }
            )
        return {"role": "user", "content": content}

    def _assistant_to_wire(self, message: Message) -> dict[str, Any]:
        tool_calls: list[dict[str, Any]] = []
        for part in self._tool_call_parts(message):
            name = part.get("tool_name")
            if not isinstance(name, str) or not name.strip():
                continue
            call_id = part.get("tool_call_id")
            arguments = tool_call_arguments(part)
            if isinstance(arguments, str):
                args_text = arguments
            elif arguments is None:
                args_text = "{}"
            else:
                try:
                    args_text = json.dumps(arguments, ensure_ascii=False)
                except (TypeError, ValueError):
                    args_text = "{}"
            tool_calls.append(
                {
                    "id": call_id if isinstance(call_id, str) and call_id else generate_id(),
                    "type": "function",
                    "function": {"name": name.strip(), "arguments": args_text},
                }
            )

        text = self._text_of(message.content)
        out: dict[str, Any] = {"role": "assistant", "content": text}
        if tool_calls:
            if not text.strip():
                out["content"] = self.config.tool_call_placeholder
            out["tool_calls"] = tool_calls
        return out

    def _split_tool_message(self, message: Message) -> list[dict[str, Any]]:
        """One wire message per tool result."""
        results = self._parts_of(message, "tool-result")
        if not results:
            raise EmptyPromptError("Tool message content must contain tool results")

        out: list[dict[str, Any]] = []
        for part in results:
            content, _ = tool_result_content(part, json_indent=2)
            out.append(
                {
                    "role": "tool",
                    "tool_call_id": part.get("tool_call_id"),
                    "content": content,
                }
            )
        return out

    def _message_text(self, message: dict[str, Any]) -> str:
        content = message.get("content")
        if isinstance(content, list):
            return "\n".join(
                part["text"]
                for part in content
                if isinstance(part, dict)
                and part.get("type") == "text"
                and isinstance(part.get("text"), str)
                and part["text"].strip()
            )
        return self._text_of(content)

    def _normalize_response(self, raw: dict[str, Any], prepared: PreparedCall) -> ChatResponse:
        choices = raw.get("choices")
        if not isinstance(choices, list) or not choices:
            raise MalformedResponseError("No choices in response from upstream", body=raw)

        choice = to_plain_dict(choices[0])
        message = to_plain_dict(choice.get("message"))
        tool_calls = extract_tool_calls(message)
        text = resolve_response_text(
            self._message_text(message),
            tool_calls,
            prepared.expected_tool_name,
        )

        return ChatResponse(
            content=[TextContent(text=text), *(tool_calls or [])],
            finish_reason=map_openai_finish_reason(choice.get("finish_reason")),
            usage=extract_usage(raw),
            metadata=extract_response_metadata(raw),
        )
