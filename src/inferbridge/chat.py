from __future__ import annotations

"""
MIT License
Copyright (c) 2026 socioy
See LICENSE file for full license text.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, replace
from typing import Any, AsyncIterator, Callable, Literal, TypeVar, cast

from pydantic import BaseModel

from .clients.shared.streaming import StreamingState, StreamNormalizer
from .clients.shared.tools import normalize_tools, release_forced_tool_choice, resolve_tool_choice
from .config import ChatConfig, ensure_endpoint_path, validate_base_url
from .errors import (
    ChatAbortedError,
    ChatConfigurationError,
    ChatError,
    ChatTransportError,
    EmptyPromptError,
    InvalidRoleError,
    InvalidToolDefinitionError,
    MalformedResponseError,
)
from .structured import (
    create_structured_output_config,
    parse_and_validate_json,
    recover_structured_text,
    response_format_for_model,
)
from .transport import HttpxTransport, RequestTransport, TransportOptions
from .types import (
    ROLES,
    CallWarning,
    ChatRequest,
    ChatResponse,
    ContentPart,
    JSONObject,
    Message,
    MessagePart,
    ResolvedToolChoice,
    ResponseMetadata,
    StreamFinishPart,
    StreamPart,
    StreamStartPart,
    StreamTextDeltaPart,
    StreamTextStartPart,
    StreamToolCallPart,
    StructuredOutputConfig,
    TextContent,
    ToolCall,
    ToolDefinition,
)
from .utils import generate_id, run_sync

logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)

_STREAM_END = object()


@dataclass(frozen=True, slots=True)
class PreparedCall:
    """
    Protocol-independent result of the prompt adapter.

    `system` is the hoisted, trimmed first system message with any structured
    output instruction already prepended. `messages` excludes that system
    message and every droppable assistant message.
    """

    system: str | None
    messages: list[Message]
    tools: list[ToolDefinition]
    tool_choice: ResolvedToolChoice | None
    structured: StructuredOutputConfig | None
    warnings: list[CallWarning]

    @property
    def expected_tool_name(self) -> str | None:
        return self.structured.tool_name if self.structured is not None else None


@dataclass(slots=True)
class _StreamContext:
    request_id: str
    prepared: PreparedCall
    body: dict[str, Any]
    response_model: type[BaseModel] | None
    state: StreamingState | None = None


class ChatStreamHandle:
    """
    Stream plus control for one streamed call.

    `parts` supports a single consumer. `cancel()` stops the upstream read;
    `await_result()` then returns None, as it does for a stream that closed
    without a `finish` part.
    """

    def __init__(
        self,
        *,
        source: AsyncIterator[StreamPart],
        request_id: str,
        abort: asyncio.Event,
        finalize: Callable[[list[StreamPart]], ChatResponse | None],
    ) -> None:
        self._source = source
        self._request_id = request_id
        self._abort = abort
        self._finalize = finalize

        self._queue: asyncio.Queue[object] = asyncio.Queue()
        self._done = asyncio.Event()
        self._task: asyncio.Task[None] | None = None
        self._parts: list[StreamPart] = []
        self._error: Exception | None = None
        self._cancelled = False
        self._consumed = False

    @property
    def request_id(self) -> str:
        return self._request_id

    def _ensure_started(self) -> None:
        if self._task is None:
            self._task = asyncio.create_task(self._pump())

    async def _pump(self) -> None:
        try:
            async for part in self._source:
                self._parts.append(part)
                await self._queue.put(part)
        except asyncio.CancelledError:
            self._cancelled = True
        except ChatAbortedError:
            self._cancelled = True
        except Exception as e:
            self._error = e if isinstance(e, ChatError) else ChatError(str(e))
        finally:
            if self._error is not None:
                await self._queue.put(self._error)
            await self._queue.put(_STREAM_END)
            self._done.set()

    async def _iter_parts(self) -> AsyncIterator[StreamPart]:
        self._ensure_started()
        while True:
            item = await self._queue.get()
            if item is _STREAM_END:
                break
            if isinstance(item, Exception):
                raise item
            yield cast(StreamPart, item)

    @property
    def parts(self) -> AsyncIterator[StreamPart]:
        if self._consumed:
            raise ChatError("ChatStreamHandle.parts supports a single consumer per stream handle")
        self._consumed = True
        return self._iter_parts()

    async def cancel(self) -> None:
        if self._done.is_set():
            return
        self._ensure_started()
        self._cancelled = True
        self._abort.set()
        logger.debug("Stream %s cancelled by caller", self._request_id)
        if self._task is not None and not self._task.done():
            self._task.cancel()
            await asyncio.gather(self._task, return_exceptions=True)
        # A task cancelled before its first step never reaches the pump's finally.
        if not self._done.is_set():
            await self._queue.put(_STREAM_END)
            self._done.set()

    async def await_result(self) -> ChatResponse | None:
        self._ensure_started()
        await self._done.wait()
        if self._cancelled:
            return None
        if self._error is not None:
            raise self._error
        return self._finalize(list(self._parts))


class ChatModel(ABC):
    """
    Base class for one upstream chat protocol bound to one model id.

    Public methods define the stable call contract:
      - chat/chat_sync
      - chat_stream and chat_stream_handle
      - build_request_body (no I/O)

    Concrete adapters implement the wire mapping hooks only.
    """

    endpoint_path: str = "/v1/chat/completions"
    auth_mode: Literal["bearer", "x-api-key"] = "bearer"

    # (ChatRequest field, warning details) pairs the upstream ignores.
    _UNSUPPORTED_SETTINGS: tuple[tuple[str, str], ...] = ()
    _DEGRADE_REQUIRED_DEFAULT = False

    def __init__(
        self,
        model_id: str | None = None,
        *,
        config: ChatConfig | None = None,
        transport: RequestTransport | None = None,
    ) -> None:
        """
        Bind a model id and upstream.

        Missing credentials, a missing model id or a non-http(s) base URL raise
        `ChatConfigurationError` here, before any request is made.
        """
        self.config = config or ChatConfig.from_env()
        self.model_id = (model_id or self.config.default_model or "").strip()

        if not self.config.api_key or not self.config.api_key.strip():
            raise ChatConfigurationError(
                "API key is required (set INFERBRIDGE_API_KEY or INFERENCE_KEY)"
            )
        if not self.model_id:
            raise ChatConfigurationError(
                "Model id is required (pass model_id or set INFERBRIDGE_MODEL)"
            )

        base_url = validate_base_url(self.config.base_url)
        self.url = ensure_endpoint_path(base_url, self.endpoint_path)
        self.transport: RequestTransport = transport or HttpxTransport(self.config)

    @property
    @abstractmethod
    def provider_id(self) -> str:
        """Stable protocol id (e.g. 'openai_chat', 'anthropic_messages')."""

    @classmethod
    def from_env(cls, model_id: str | None = None, **kwargs: Any) -> "ChatModel":
        return cls(model_id, config=ChatConfig.from_env(), **kwargs)

    # Adapter hooks

    @abstractmethod
    def _build_wire_body(
        self,
        request: ChatRequest,
        prepared: PreparedCall,
        *,
        stream: bool,
    ) -> dict[str, Any]:
        """Map the prepared call into this upstream's request body."""

    @abstractmethod
    def _normalize_response(self, raw: dict[str, Any], prepared: PreparedCall) -> ChatResponse:
        """Map one complete upstream body into content, finish reason, usage and metadata."""

    @abstractmethod
    def _stream_normalizer(self) -> StreamNormalizer:
        """Return the event normalizer for this upstream's stream format."""

    def _extra_headers(self) -> dict[str, str]:
        return {}

    # Public surface

    def build_request_body(
        self,
        request: ChatRequest | str,
        *,
        stream: bool = False,
        response_model: type[BaseModel] | None = None,
    ) -> dict[str, Any]:
        """Run the prompt adapter and return the wire body without sending it."""
        request = self._coerce_request(request)
        prepared = self.prepare(request, response_model=response_model)
        return self._build_wire_body(request, prepared, stream=stream)

    async def chat(
        self,
        request: ChatRequest | str,
        *,
        response_model: type[ModelT] | None = None,
    ) -> ChatResponse:
        """
        Execute a non-streaming chat completion.

        Structural problems in the request raise before the upstream is called.
        """
        request = self._coerce_request(request)
        prepared = self.prepare(request, response_model=response_model)
        body = self._build_wire_body(request, prepared, stream=False)
        request_id = request.request_id or generate_id()

        logger.debug("Dispatching %s request %s to %s", self.provider_id, request_id, self.url)
        raw = await self._execute(request, body, stream=False, abort=None)
        if not isinstance(raw, dict):
            raise MalformedResponseError(
                f"Invalid response format from {self.provider_id} upstream",
                body=raw,
            )

        response = self._normalize_response(raw, prepared)
        structured_response = None
        if response_model is not None:
            structured_response = parse_and_validate_json(response.text, response_model)

        return replace(
            response,
            warnings=list(prepared.warnings),
            request_id=request_id,
            request_body=body,
            raw=raw,
            structured_response=structured_response,
        )

    def chat_sync(
        self,
        request: ChatRequest | str,
        *,
        response_model: type[ModelT] | None = None,
    ) -> ChatResponse:
        """Synchronous wrapper around `chat`."""
        return run_sync(self.chat(request, response_model=response_model))

    async def chat_stream(
        self,
        request: ChatRequest | str,
        *,
        response_model: type[ModelT] | None = None,
        abort: asyncio.Event | None = None,
    ) -> AsyncIterator[StreamPart]:
        """
        Execute a streaming chat completion.

        Emits `stream-start` first, then normalized parts ending with exactly one
        `finish`. A stream the upstream closes early ends without `finish`;
        setting `abort` raises `ChatAbortedError` from the iterator.
        """
        stream, _ = self._open_stream(request, response_model=response_model, abort=abort)
        return stream

    async def chat_stream_handle(
        self,
        request: ChatRequest | str,
        *,
        response_model: type[ModelT] | None = None,
    ) -> ChatStreamHandle:
        """Execute a streaming chat call and return a control handle."""
        abort = asyncio.Event()
        stream, context = self._open_stream(request, response_model=response_model, abort=abort)
        return ChatStreamHandle(
            source=stream,
            request_id=context.request_id,
            abort=abort,
            finalize=lambda parts: self._assemble_stream_response(parts, context),
        )

    # Prompt adapter (protocol independent part)

    def prepare(
        self,
        request: ChatRequest,
        *,
        response_model: type[BaseModel] | None = None,
    ) -> PreparedCall:
        messages = self._coerce_messages(request.messages)
        system, rest = self._hoist_system(messages)
        rest = [m for m in rest if not self._should_drop(m)]
        self._check_tool_result_pairing(rest)

        structured = self._structured_config(request, response_model)

        tools: list[ToolDefinition] = []
        if request.tools is not None:
            if not request.tools and structured is None:
                raise InvalidToolDefinitionError("Tools must be a non-empty list when provided")
            if request.tools:
                tools = normalize_tools(request.tools)
        if structured is not None:
            tools = [t for t in tools if t.name != structured.tool_name]
            tools.append(structured.tool)

        requested_choice = request.tool_choice
        if structured is not None:
            requested_choice = {"type": "tool", "tool_name": structured.tool_name}

        tool_choice: ResolvedToolChoice | None = None
        if tools:
            tool_choice = resolve_tool_choice(requested_choice, tools)
            tool_choice = release_forced_tool_choice(tool_choice, rest)
        elif requested_choice is not None:
            logger.warning("Tool choice provided without tools; ignoring tool choice")

        if structured is not None:
            system = (
                f"{structured.system_instruction}\n\n{system}"
                if system
                else structured.system_instruction
            )

        return PreparedCall(
            system=system,
            messages=rest,
            tools=tools,
            tool_choice=tool_choice,
            structured=structured,
            warnings=self._call_warnings(request),
        )

    def _coerce_request(self, request: ChatRequest | str) -> ChatRequest:
        if isinstance(request, str):
            return ChatRequest(messages=request)
        return request

    def _coerce_messages(self, messages: list[Message] | str) -> list[Message]:
        if isinstance(messages, str):
            if not messages.strip():
                raise EmptyPromptError("Prompt cannot be empty")
            return [Message(role="user", content=messages)]

        if not messages:
            raise EmptyPromptError("Prompt must contain at least one message")

        out: list[Message] = []
        for idx, item in enumerate(messages):
            if isinstance(item, dict):
                item = Message(role=item.get("role"), content=item.get("content", ""))
            if not isinstance(item, Message):
                raise InvalidRoleError(f"messages[{idx}] must be a Message")
            if item.role not in ROLES:
                raise InvalidRoleError(f"Invalid message role at index {idx}: {item.role!r}")
            if item.role == "user" and not self._has_user_content(item):
                raise EmptyPromptError(f"Message content at index {idx} cannot be empty")
            out.append(item)
        return out

    def _hoist_system(self, messages: list[Message]) -> tuple[str | None, list[Message]]:
        for idx, message in enumerate(messages):
            if message.role != "system":
                continue
            text = self._text_of(message.content).strip()
            rest = messages[:idx] + messages[idx + 1 :]
            return (text or None), rest
        return None, list(messages)

    def _check_tool_result_pairing(self, messages: list[Message]) -> None:
        """Log tool results whose id matches no earlier assistant tool call."""
        seen: set[str] = set()
        for message in messages:
            if message.role == "assistant":
                for part in self._tool_call_parts(message):
                    call_id = part.get("tool_call_id")
                    if isinstance(call_id, str):
                        seen.add(call_id)
            elif message.role == "tool":
                for part in self._parts_of(message, "tool-result"):
                    call_id = part.get("tool_call_id")
                    if call_id not in seen:
                        logger.warning(
                            "Tool result %r does not match any earlier assistant tool call",
                            call_id,
                        )

    def _should_drop(self, message: Message) -> bool:
        """Assistant messages with blank text and no tool call carry nothing to send."""
        if message.role != "assistant":
            return False
        if self._tool_call_parts(message):
            return False
        return not self._text_of(message.content).strip()

    def _structured_config(
        self,
        request: ChatRequest,
        response_model: type[BaseModel] | None,
    ) -> StructuredOutputConfig | None:
        fmt = request.response_format
        if response_model is not None:
            fmt = response_format_for_model(response_model)
        if fmt is None or fmt.type != "json":
            return None
        return create_structured_output_config(
            fmt.schema,
            name=fmt.name,
            description=fmt.description,
        )

    def _call_warnings(self, request: ChatRequest) -> list[CallWarning]:
        warnings = [
            CallWarning(setting=setting, details=details)
            for setting, details in self._UNSUPPORTED_SETTINGS
            if getattr(request, setting) is not None
        ]
        fmt = request.response_format
        if fmt is not None and fmt.type not in ("text", "json"):
            warnings.append(
                CallWarning(
                    setting="response_format",
                    details=f"Unsupported response format type '{fmt.type}'.",
                )
            )
        return warnings

    def _resolve_required(self, choice: ResolvedToolChoice) -> ResolvedToolChoice:
        """Apply the `required` degrade policy for this upstream."""
        if choice.mode != "required":
            return choice
        degrade = self.config.degrade_required_tool_choice
        if degrade is None:
            degrade = self._DEGRADE_REQUIRED_DEFAULT
        return ResolvedToolChoice(mode="auto") if degrade else choice

    # Message content helpers shared by adapters

    @staticmethod
    def _text_of(content: Any, separator: str = "\n") -> str:
        if isinstance(content, str):
            return content
        if isinstance(content, dict):
            text = content.get("text")
            return text if isinstance(text, str) else ""
        if isinstance(content, list):
            return separator.join(
                part["text"]
                for part in content
                if isinstance(part, dict)
                and part.get("type") == "text"
                and isinstance(part.get("text"), str)
            )
        return ""

    @staticmethod
    def _parts_of(message: Message, part_type: str) -> list[MessagePart]:
        if not isinstance(message.content, list):
            return []
        return [p for p in message.content if isinstance(p, dict) and p.get("type") == part_type]

    def _tool_call_parts(self, message: Message) -> list[MessagePart]:
        return self._parts_of(message, "tool-call")

    def _has_user_content(self, message: Message) -> bool:
        if self._text_of(message.content).strip():
            return True
        return bool(self._parts_of(message, "image"))

    # Transport

    def _request_headers(self, request: ChatRequest) -> dict[str, str]:
        headers = dict(self._extra_headers())
        for key, value in (request.headers or {}).items():
            if isinstance(value, str):
                headers[key] = value
        return headers

    async def _execute(
        self,
        request: ChatRequest,
        body: dict[str, Any],
        *,
        stream: bool,
        abort: asyncio.Event | None,
    ) -> Any:
        options = TransportOptions(
            timeout_s=request.timeout_s if request.timeout_s is not None else self.config.timeout_s,
            max_retries=self.config.max_retries,
            headers=self._request_headers(request),
            stream=stream,
            abort=abort,
            auth_mode=self.auth_mode,
        )
        try:
            return await self.transport.execute(self.url, self.config.api_key, body, options)
        except ChatError:
            raise
        except Exception as e:
            raise ChatTransportError(f"{self.provider_id} request failed: {e}") from e

    def _open_stream(
        self,
        request: ChatRequest | str,
        *,
        response_model: type[BaseModel] | None,
        abort: asyncio.Event | None,
    ) -> tuple[AsyncIterator[StreamPart], _StreamContext]:
        request = self._coerce_request(request)
        prepared = self.prepare(request, response_model=response_model)
        body = self._build_wire_body(request, prepared, stream=True)
        context = _StreamContext(
            request_id=request.request_id or generate_id(),
            prepared=prepared,
            body=body,
            response_model=response_model,
        )

        async def _iter() -> AsyncIterator[StreamPart]:
            normalizer = self._stream_normalizer()
            state = normalizer.start(
                call_id=context.request_id,
                expected_tool_name=prepared.expected_tool_name,
            )
            context.state = state

            logger.debug(
                "Dispatching %s stream %s to %s", self.provider_id, context.request_id, self.url
            )
            source = await self._execute(request, body, stream=True, abort=abort)
            yield StreamStartPart(warnings=list(prepared.warnings))

            try:
                async for event in source:
                    if abort is not None and abort.is_set():
                        break
                    for part in normalizer.feed(state, event):
                        yield part
            except ChatError:
                raise
            except Exception as e:
                raise ChatTransportError(f"{self.provider_id} stream failed: {e}") from e
            finally:
                aclose = getattr(source, "aclose", None)
                if aclose is not None:
                    await aclose()

            if abort is not None and abort.is_set():
                raise ChatAbortedError(f"Stream {context.request_id} aborted")
            if not state.finished:
                logger.debug("Stream %s closed before finish", context.request_id)

        return _iter(), context

    def _assemble_stream_response(
        self,
        parts: list[StreamPart],
        context: _StreamContext,
    ) -> ChatResponse | None:
        finish = next((p for p in parts if isinstance(p, StreamFinishPart)), None)
        if finish is None:
            return None

        warnings: list[CallWarning] = []
        # Segment ids (str) and tool calls in emission order.
        order: list[str | ToolCall] = []
        segments: dict[str, list[str]] = {}
        for part in parts:
            if isinstance(part, StreamStartPart):
                warnings.extend(part.warnings)
            elif isinstance(part, StreamTextStartPart):
                segments[part.id] = []
                order.append(part.id)
            elif isinstance(part, StreamTextDeltaPart):
                segments.setdefault(part.id, []).append(part.delta)
            elif isinstance(part, StreamToolCallPart):
                order.append(
                    ToolCall(
                        tool_call_id=part.tool_call_id,
                        tool_name=part.tool_name,
                        input=part.input,
                    )
                )

        content: list[ContentPart] = [
            TextContent(text="".join(segments[item])) if isinstance(item, str) else item
            for item in order
        ]

        structured_response: JSONObject | None = None
        if context.response_model is not None:
            calls = [p for p in content if isinstance(p, ToolCall)]
            text = recover_structured_text(calls, context.prepared.expected_tool_name)
            if text is None:
                text = "".join(p.text for p in content if isinstance(p, TextContent))
            structured_response = parse_and_validate_json(text, context.response_model)

        state = context.state
        return ChatResponse(
            content=content,
            finish_reason=finish.finish_reason,
            usage=finish.usage,
            metadata=ResponseMetadata(
                id=state.message_id if state else None,
                model_id=(state.model_id if state else None) or self.model_id,
            ),
            warnings=warnings,
            request_id=context.request_id,
            request_body=context.body,
            raw={},
            structured_response=structured_response,
        )
