from __future__ import annotations

"""
Adapter for Anthropic Messages-style upstreams (`/v1/messages`).

Streams arrive as typed events (`message_start`, `content_block_*`,
`message_delta`, `message_stop`); tool arguments arrive as `input_json_delta`
fragments of the block they belong to.
"""

import json
import logging
from typing import Any

from ..shared.normalization import (
    extract_response_metadata,
    extract_text_from_content,
    extract_usage,
    map_anthropic_finish_reason,
    merge_usage,
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
    Usage,
)
from ...utils import generate_id, try_parse_json

logger = logging.getLogger(__name__)


def _block_index(event: dict[str, Any]) -> int:
    index = event.get("index")
    if isinstance(index, int) and not isinstance(index, bool) and index >= 0:
        return index
    return 0


class AnthropicStreamNormalizer(StreamNormalizer):
    """Normalize Anthropic Messages SSE events."""

    protocol = "anthropic_messages"

    def _handle_event(self, state: StreamingState, event: dict[str, Any]) -> list[StreamPart]:
        event_type = event.get("type")

        if event_type == "message_start":
            return self._on_message_start(state, event)
        if event_type == "content_block_start":
            return self._on_block_start(state, event)
        if event_type == "content_block_delta":
            return self._on_block_delta(state, event)
        if event_type == "content_block_stop":
            return self._on_block_stop(state, event)
        if event_type == "message_delta":
            return self._on_message_delta(state, event)
        if event_type == "message_stop":
            if state.finish_reason is None:
                state.finish_reason = "unknown"
            self._settle_usage(state)
            return []
        if event_type == "ping":
            return []
        if event_type == "error":
            error = to_plain_dict(event.get("error"))
            logger.warning(
                "Stream %s: upstream error event: %s",
                state.call_id,
                error.get("message") or error or event,
            )
            state.finish_reason = "error"
            self._settle_usage(state)
            return []

        logger.warning("Stream %s: ignoring unknown event type %r", state.call_id, event_type)
        return []

    def _on_message_start(self, state: StreamingState, event: dict[str, Any]) -> list[StreamPart]:
        message = to_plain_dict(event.get("message"))
        if isinstance(message.get("id"), str):
            state.message_id = message["id"]
        if isinstance(message.get("model"), str):
            state.model_id = message["model"]

        usage = extract_usage(message)
        if usage.input_tokens is not None:
            # Output tokens are reported cumulatively by message_delta.
            state.pending_usage = merge_usage(
                state.pending_usage,
                Usage(
                    input_tokens=usage.input_tokens,
                    cached_input_tokens=usage.cached_input_tokens,
                ),
            )
        return []

    def _settle_usage(self, state: StreamingState) -> None:
        """Release held-back usage so the finish gate can fire without a usage delta."""
        if state.usage is None:
            self._record_usage(state, state.pending_usage or Usage())

    def _on_block_start(self, state: StreamingState, event: dict[str, Any]) -> list[StreamPart]:
        index = _block_index(event)
        block = to_plain_dict(event.get("content_block"))
        block_type = block.get("type")
        if not isinstance(block_type, str):
            return []
        state.block_types[index] = block_type

        if block_type == "tool_use":
            buf = self._buffer_for(state, index)
            if isinstance(block.get("id"), str):
                buf.id = block["id"]
            if isinstance(block.get("name"), str) and block["name"].strip():
                buf.name = block["name"].strip()
            initial = block.get("input")
            if isinstance(initial, dict) and initial:
                buf.args_buffer = json.dumps(initial, ensure_ascii=False)
            return []

        if block_type == "text":
            text = block.get("text")
            if isinstance(text, str) and text:
                return self._append_text(state, text)
        return []

    def _on_block_delta(self, state: StreamingState, event: dict[str, Any]) -> list[StreamPart]:
        index = _block_index(event)
        delta = to_plain_dict(event.get("delta"))
        delta_type = delta.get("type")

        if delta_type == "text_delta":
            text = delta.get("text")
            if isinstance(text, str) and text:
                return self._append_text(state, text)
            return []

        if delta_type == "input_json_delta":
            partial = delta.get("partial_json")
            if isinstance(partial, str):
                self._buffer_for(state, index).args_buffer += partial
        return []

    def _on_block_stop(self, state: StreamingState, event: dict[str, Any]) -> list[StreamPart]:
        index = _block_index(event)
        block_type = state.block_types.pop(index, None)
        if block_type == "text":
            return self._close_text(state)
        if block_type == "tool_use":
            return self._emit_tool_calls(state, self._take_tool_calls(state, [index]))
        return []

    def _on_message_delta(self, state: StreamingState, event: dict[str, Any]) -> list[StreamPart]:
        if isinstance(event.get("usage"), dict):
            self._record_usage(state, merge_usage(state.pending_usage, extract_usage(event)))

        delta = to_plain_dict(event.get("delta"))
        stop_reason = delta.get("stop_reason")
        if stop_reason:
            state.finish_reason = map_anthropic_finish_reason(stop_reason)
        return []


class AnthropicMessagesClient(ChatModel):
    """Chat model speaking the Anthropic Messages wire protocol."""

    endpoint_path = "/v1/messages"
    auth_mode = "x-api-key"

    _UNSUPPORTED_SETTINGS = (
        ("presence_penalty", "Presence penalty is not supported by Anthropic Messages upstreams."),
        ("frequency_penalty", "Frequency penalty is not supported by Anthropic Messages upstreams."),
        ("seed", "Deterministic sampling is not available on Anthropic Messages upstreams."),
    )
    _DEGRADE_REQUIRED_DEFAULT = False

    @property
    def provider_id(self) -> str:
        return "anthropic_messages"

    def _stream_normalizer(self) -> StreamNormalizer:
        return AnthropicStreamNormalizer()

    def _extra_headers(self) -> dict[str, str]:
        return {"anthropic-version": self.config.anthropic_version}

    def _build_wire_body(
        self,
        request: ChatRequest,
        prepared: PreparedCall,
        *,
        stream: bool,
    ) -> dict[str, Any]:
        system_chunks = [prepared.system] if prepared.system else []
        messages: list[dict[str, Any]] = []

        for message in prepared.messages:
            if message.role == "system":
                text = self._text_of(message.content).strip()
                if text:
                    system_chunks.append(text)
            elif message.role == "tool":
                self._append_tool_results(messages, message)
            elif message.role == "assistant":
                messages.append({"role": "assistant", "content": self._assistant_blocks(message)})
            else:
                messages.append({"role": "user", "content": self._user_content(message)})

        body: dict[str, Any] = {
            "model": self.model_id,
            "messages": messages,
            "max_tokens": (
                request.max_tokens
                if request.max_tokens is not None
                else self.config.default_max_tokens
            ),
            "stream": stream,
        }
        if system_chunks:
            body["system"] = "\n\n".join(system_chunks)

        if request.temperature is not None:
            body["temperature"] = request.temperature
        if request.top_p is not None:
            body["top_p"] = request.top_p
        if request.top_k is not None:
            body["top_k"] = request.top_k
        if request.stop:
            body["stop_sequences"] = list(request.stop)

        if prepared.tools:
            body["tools"] = [
                {
                    "name": tool.name,
                    "description": tool.description,
                    "input_schema": tool.parameters,
                }
                for tool in prepared.tools
            ]
            if prepared.tool_choice is not None:
                body["tool_choice"] = self._tool_choice_to_wire(prepared.tool_choice)

        body.update(request.extra)
        return body

    def _tool_choice_to_wire(self, choice: ResolvedToolChoice) -> dict[str, Any]:
        choice = self._resolve_required(choice)
        if choice.mode == "tool":
            return {"type": "tool", "name": choice.tool_name}
        if choice.mode == "required":
            return {"type": "any"}
        return {"type": choice.mode}

    def _user_content(self, message: Message) -> str | list[dict[str, Any]]:
        if isinstance(message.content, str):
            return message.content

        blocks: list[dict[str, Any]] = []
        for part in message.content:
            if not isinstance(part, dict):
                continue
            if part.get("type") == "text":
                text = part.get("text")
                if isinstance(text, str) and text.strip():
                    blocks.append({"type": "text", "text": text})
            elif part.get("type") == "image" and part.get("data"):
                blocks.append(
                    {
                        "type": "image",
                        "source": {
                            "type": "base64",
                            "media_type": part.get("media_type") or "image/png",
                            "data": part["data"],
                        },
                    }
                )
        if not blocks:
            raise EmptyPromptError("Message content cannot be empty")
        return blocks

    def _assistant_blocks(self, message: Message) -> list[dict[str, Any]]:
        text = self._text_of(message.content)
        tool_uses: list[dict[str, Any]] = []
        for part in self._tool_call_parts(message):
            name = part.get("tool_name")
            if not isinstance(name, str) or not name.strip():
                continue
            call_id = part.get("tool_call_id")
            tool_uses.append(
                {
                    "type": "tool_use",
                    "id": call_id if isinstance(call_id, str) and call_id else generate_id(),
                    "name": name.strip(),
                    "input": self._tool_input_object(tool_call_arguments(part)),
                }
            )

        if not text.strip() and tool_uses:
            text = self.config.tool_call_placeholder

        blocks: list[dict[str, Any]] = []
        if text.strip():
            blocks.append({"type": "text", "text": text})
        blocks.extend(tool_uses)
        return blocks

    @staticmethod
    def _tool_input_object(arguments: Any) -> dict[str, Any]:
        if isinstance(arguments, dict):
            return arguments
        if isinstance(arguments, str):
            ok, parsed = try_parse_json(arguments)
            if ok and isinstance(parsed, dict):
                return parsed
            logger.warning("Assistant tool-call input is not a JSON object; sending {}")
        return {}

    def _append_tool_results(self, messages: list[dict[str, Any]], message: Message) -> None:
        """Tool results travel as `tool_result` blocks inside a user message."""
        results = self._parts_of(message, "tool-result")
        if not results:
            raise EmptyPromptError("Tool message content must contain tool results")

        blocks: list[dict[str, Any]] = []
        for part in results:
            content, is_error = tool_result_content(part)
            block: dict[str, Any] = {
                "type": "tool_result",
                "tool_use_id": part.get("tool_call_id"),
                "content": content,
            }
            if is_error:
                block["is_error"] = True
            blocks.append(block)

        if messages and messages[-1]["role"] == "user":
            previous = messages[-1]["content"]
            if isinstance(previous, str):
                previous = [{"type": "text", "text": previous}]
            messages[-1]["content"] = [*previous, *blocks]
        else:
            messages.append({"role": "user", "content": blocks})

    def _normalize_response(self, raw: dict[str, Any], prepared: PreparedCall) -> ChatResponse:
        if raw.get("type") == "error":
            raise MalformedResponseError("Upstream returned an error body", body=raw)

        blocks = raw.get("content")
        if not isinstance(blocks, list) or not blocks:
            raise MalformedResponseError("No content blocks in response from upstream", body=raw)

        blocks = [to_plain_dict(b) for b in blocks]
        text = extract_text_from_content([b for b in blocks if b.get("type") == "text"])
        tool_calls = extract_tool_calls({"content": blocks})

        return ChatResponse(
            content=[
                TextContent(text=resolve_response_text(text, tool_calls, prepared.expected_tool_name)),
                *(tool_calls or []),
            ],
            finish_reason=map_anthropic_finish_reason(raw.get("stop_reason")),
            usage=extract_usage(raw),
            metadata=extract_response_metadata(raw),
        )
