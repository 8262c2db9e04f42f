from __future__ import annotations

"""
MIT License
Copyright (c) 2026 socioy
See LICENSE file for full license text.

Request transport boundary.

The normalization layer only needs `RequestTransport.execute`: a JSON body for
non-streaming calls, or an async iterator of decoded upstream events for
streaming ones. `HttpxTransport` is the shipped implementation; retries and
backoff live here and nowhere else.
"""

import asyncio
import json
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Iterable, Literal, Protocol

import httpx

from .config import ChatConfig
from .errors import ChatAbortedError, ChatTransportError, UpstreamHTTPError
from .utils import backoff_delay

logger = logging.getLogger(__name__)

RETRYABLE_STATUS_CODES = frozenset({408, 409, 429, 500, 502, 503, 504})


@dataclass(frozen=True, slots=True)
class TransportOptions:
    timeout_s: float = 30.0
    max_retries: int = 3
    headers: dict[str, str] = field(default_factory=dict)
    stream: bool = False
    abort: asyncio.Event | None = None
    auth_mode: Literal["bearer", "x-api-key"] = "bearer"


class RequestTransport(Protocol):
    async def execute(
        self,
        url: str,
        credentials: str | None,
        body: dict[str, Any],
        options: TransportOptions,
    ) -> dict[str, Any] | AsyncIterator[dict[str, Any]]:
        """Send `body`; return the JSON body, or decoded events when streaming."""
        ...


def decode_sse_lines(lines: Iterable[str]) -> list[dict[str, Any]]:
    """Decode a complete list of SSE lines; see `SSEDecoder`."""
    decoder = SSEDecoder()
    out: list[dict[str, Any]] = []
    for line in lines:
        event = decoder.feed_line(line)
        if event is not None:
            out.append(event)
        if decoder.done:
            break
    return out


class SSEDecoder:
    """
    Turn SSE lines into event dicts.

    `data:` payloads are JSON objects; a preceding `event:` name is copied into
    `type` when the payload has none. `[DONE]` marks the end of the stream.
    """

    def __init__(self) -> None:
        self.event_name: str | None = None
        self.done = False

    def feed_line(self, line: str) -> dict[str, Any] | None:
        line = line.strip()
        if not line:
            self.event_name = None
            return None
        if line.startswith(":"):
            return None
        if line.startswith("event:"):
            self.event_name = line[len("event:") :].strip() or None
            return None
        if not line.startswith("data:"):
            return None

        data_str = line[len("data:") :].strip()
        if data_str == "[DONE]":
            self.done = True
            return None

        try:
            event = json.loads(data_str)
        except json.JSONDecodeError:
            logger.warning("Skipping undecodable stream chunk: %.200s", data_str)
            return None

        if not isinstance(event, dict):
            logger.warning("Skipping non-object stream chunk: %.200s", data_str)
            return None
        if self.event_name and "type" not in event:
            event["type"] = self.event_name
        return event


class HttpxTransport:
    """
    `RequestTransport` backed by `httpx.AsyncClient`.

    Connection errors, timeouts and retryable statuses are retried up to
    `options.max_retries` times with exponential backoff and jitter. A client
    passed in is reused and never closed here; otherwise one is opened per call.
    """

    def __init__(
        self,
        config: ChatConfig | None = None,
        *,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.config = config or ChatConfig()
        self._client = client

    async def execute(
        self,
        url: str,
        credentials: str | None,
        body: dict[str, Any],
        options: TransportOptions,
    ) -> dict[str, Any] | AsyncIterator[dict[str, Any]]:
        headers = self._build_headers(credentials, options)
        if options.stream:
            return self._stream_events(url, headers, body, options)

        async with self._client_scope(options) as client:
            response = await self._send_with_retries(client, url, headers, body, options)
            try:
                await response.aread()
                return response.json()
            except ValueError as e:
                raise ChatTransportError(f"Upstream returned invalid JSON: {e}") from e
            finally:
                await response.aclose()

    def _build_headers(self, credentials: str | None, options: TransportOptions) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if credentials:
            if options.auth_mode == "x-api-key":
                headers["x-api-key"] = credentials
            else:
                headers["Authorization"] = f"Bearer {credentials}"
        if options.stream:
            headers["Accept"] = "text/event-stream"
        headers.update(options.headers)
        return headers

    @asynccontextmanager
    async def _client_scope(self, options: TransportOptions) -> AsyncIterator[httpx.AsyncClient]:
        if self._client is not None:
            yield self._client
            return
        async with httpx.AsyncClient(timeout=options.timeout_s) as client:
            yield client

    async def _send_with_retries(
        self,
        client: httpx.AsyncClient,
        url: str,
        headers: dict[str, str],
        body: dict[str, Any],
        options: TransportOptions,
    ) -> httpx.Response:
        """Send the request (streamed); the caller owns closing the response."""
        attempt = 0
        while True:
            try:
                request = client.build_request(
                    "POST",
                    url,
                    headers=headers,
                    json=body,
                    timeout=options.timeout_s,
                )
                response = await client.send(request, stream=True)
            except (httpx.TimeoutException, httpx.NetworkError) as e:
                if attempt >= options.max_retries:
                    raise ChatTransportError(f"Request to {url} failed: {e}") from e
                await self._backoff(attempt, options, reason=str(e))
                attempt += 1
                continue

            if response.status_code < 400:
                return response

            raw = await response.aread()
            await response.aclose()
            text = raw.decode("utf-8", errors="replace")
            if response.status_code in RETRYABLE_STATUS_CODES and attempt < options.max_retries:
                await self._backoff(attempt, options, reason=f"HTTP {response.status_code}")
                attempt += 1
                continue

            raise UpstreamHTTPError(
                f"Upstream responded with HTTP {response.status_code}: {text[:500] or response.reason_phrase}",
                status_code=response.status_code,
                body=text,
            )

    async def _backoff(self, attempt: int, options: TransportOptions, *, reason: str) -> None:
        delay = backoff_delay(attempt, self.config.backoff_base_s, self.config.backoff_jitter_s)
        logger.debug("Retrying in %.2fs after %s (attempt %d)", delay, reason, attempt + 1)
        if options.abort is None:
            await asyncio.sleep(delay)
            return
        try:
            await asyncio.wait_for(options.abort.wait(), timeout=delay)
        except asyncio.TimeoutError:
            return
        raise ChatAbortedError("Request aborted during retry backoff")

    async def _stream_events(
        self,
        url: str,
        headers: dict[str, str],
        body: dict[str, Any],
        options: TransportOptions,
    ) -> AsyncIterator[dict[str, Any]]:
        async with self._client_scope(options) as client:
            response = await self._send_with_retries(client, url, headers, body, options)
            decoder = SSEDecoder()
            try:
                async for line in response.aiter_lines():
                    if options.abort is not None and options.abort.is_set():
                        logger.debug("Stream from %s aborted by caller", url)
                        return
                    event = decoder.feed_line(line)
                    if event is not None:
                        yield event
                    if decoder.done:
                        return
            finally:
                await response.aclose()
