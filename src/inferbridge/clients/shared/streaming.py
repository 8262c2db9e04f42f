from __future__ import annotations

"""
Streaming normalization state machine.

Every streamed call owns one `StreamingState`, created by `StreamNormalizer.start`
and passed explicitly through `feed`. Nothing is kept on the normalizer or the
model instance, so overlapping streams on one model never share buffers.

Concrete normalizers (one per upstream protocol) only translate raw events into
the shared transitions defined here.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Iterable

from ...structured import recover_structured_text
from ...types import (
    FinishReason,
    StreamFinishPart,
    StreamPart,
    StreamTextDeltaPart,
    StreamTextEndPart,
    StreamTextStartPart,
    StreamToolCallPart,
    ToolCall,
    Usage,
)
from ...utils import generate_id
from .normalization import merge_usage, to_plain_dict

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class ToolCallBuffer:
    id: str | None = None
    name: str | None = None
    args_buffer: str = ""


@dataclass(slots=True)
class StreamingState:
    """Mutable per-call state threaded through `StreamNormalizer.feed`."""

    call_id: str
    expected_tool_name: str | None = None
    tool_call_buffers: dict[int, ToolCallBuffer] = field(default_factory=dict)
    block_types: dict[int, str] = field(default_factory=dict)
    finish_reason: FinishReason | None = None
    usage: Usage | None = None
    # Usage reported ahead of the final counts; does not satisfy the finish gate.
    pending_usage: Usage | None = None
    active_text_id: str | None = None
    text_closed: bool = True
    message_id: str | None = None
    model_id: str | None = None
    finished: bool = False

    def reset(self) -> None:
        self.tool_call_buffers.clear()
        self.block_types.clear()
        self.finish_reason = None
        self.usage = None
        self.pending_usage = None
        self.active_text_id = None
        self.text_closed = True


class StreamNormalizer(ABC):
    """
    Translate one upstream protocol's incremental events into `StreamPart`s.

    `feed` never raises on odd upstream data: unknown events are ignored and
    parsing anomalies are logged.
    """

    protocol: str = "unknown"

    def start(
        self,
        *,
        call_id: str | None = None,
        expected_tool_name: str | None = None,
    ) -> StreamingState:
        state = StreamingState(
            call_id=call_id or generate_id(),
            expected_tool_name=expected_tool_name,
        )
        logger.debug("Stream %s opened (%s)", state.call_id, self.protocol)
        return state

    def feed(self, state: StreamingState, event: Any) -> list[StreamPart]:
        if state.finished:
            return []

        event_dict = to_plain_dict(event)
        if not event_dict:
            return []

        parts = self._handle_event(state, event_dict)
        parts.extend(self._maybe_finish(state))
        return parts

    def feed_all(self, state: StreamingState, events: Iterable[Any]) -> list[StreamPart]:
        """Feed a finite batch of events; convenient for replaying captured streams."""
        parts: list[StreamPart] = []
        for event in events:
            parts.extend(self.feed(state, event))
        return parts

    @abstractmethod
    def _handle_event(self, state: StreamingState, event: dict[str, Any]) -> list[StreamPart]:
        """Apply one decoded upstream event to `state`."""

    # Shared transitions

    def _append_text(self, state: StreamingState, delta: str) -> list[StreamPart]:
        parts: list[StreamPart] = []
        if state.active_text_id is None or state.text_closed:
            state.active_text_id = generate_id()
            state.text_closed = False
            parts.append(StreamTextStartPart(id=state.active_text_id))
        parts.append(StreamTextDeltaPart(id=state.active_text_id, delta=delta))
        return parts

    def _close_text(self, state: StreamingState) -> list[StreamPart]:
        if state.active_text_id is None or state.text_closed:
            return []
        state.text_closed = True
        return [StreamTextEndPart(id=state.active_text_id)]

    def _buffer_for(self, state: StreamingState, index: int) -> ToolCallBuffer:
        buf = state.tool_call_buffers.get(index)
        if buf is None:
            buf = ToolCallBuffer()
            state.tool_call_buffers[index] = buf
        return buf

    def _take_tool_calls(
        self,
        state: StreamingState,
        indexes: Iterable[int] | None = None,
    ) -> list[ToolCall]:
        """Remove the given (or all) buffers and turn the named ones into tool calls."""
        selected = sorted(state.tool_call_buffers) if indexes is None else list(indexes)
        calls: list[ToolCall] = []
        for index in selected:
            buf = state.tool_call_buffers.pop(index, None)
            if buf is None:
                continue
            if not buf.name:
                logger.warning(
                    "Stream %s: dropping tool call at slot %d without a name",
                    state.call_id,
                    index,
                )
                continue
            calls.append(
                ToolCall(
                    tool_call_id=buf.id if buf.id and buf.id.strip() else generate_id(),
                    tool_name=buf.name,
                    input=buf.args_buffer or "{}",
                )
            )
        return calls

    def _emit_tool_calls(self, state: StreamingState, calls: list[ToolCall]) -> list[StreamPart]:
        """
        Emit tool-call parts; when structured output is expected, a text segment
        carrying the recovered JSON goes out first.
        """
        if not calls:
            return []

        parts: list[StreamPart] = []
        if state.expected_tool_name:
            structured = recover_structured_text(calls, state.expected_tool_name)
            if structured is not None:
                parts.extend(self._close_text(state))
                text_id = generate_id()
                state.active_text_id = text_id
                parts.append(StreamTextStartPart(id=text_id))
                parts.append(StreamTextDeltaPart(id=text_id, delta=structured))
                parts.append(StreamTextEndPart(id=text_id))
                state.text_closed = True

        parts.extend(
            StreamToolCallPart(
                tool_call_id=call.tool_call_id,
                tool_name=call.tool_name,
                input=call.input,
            )
            for call in calls
        )
        return parts

    def _record_usage(self, state: StreamingState, usage: Usage) -> None:
        state.usage = merge_usage(state.usage, usage)

    def _maybe_finish(self, state: StreamingState) -> list[StreamPart]:
        """Emit `finish` once both a finish reason and usage are known."""
        if state.finish_reason is None or state.usage is None:
            return []

        parts: list[StreamPart] = []
        parts.extend(self._emit_tool_calls(state, self._take_tool_calls(state)))
        parts.extend(self._close_text(state))
        parts.append(StreamFinishPart(finish_reason=state.finish_reason, usage=state.usage))

        logger.debug(
            "Stream %s finished (%s, %s tokens)",
            state.call_id,
            state.finish_reason,
            state.usage.total_tokens,
        )
        state.reset()
        state.finished = True
        return parts
