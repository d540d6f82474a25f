"""Server-Sent Events transport for mcp-pentester.

Two channels to the same URL: a long-lived GET reading ``text/event-stream``
frames for everything the server sends, and one POST per outbound message.
When the stream ends without disconnect() being called it is reopened after
a short delay, resuming from the last event id the server sent.
"""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
from dataclasses import dataclass

import httpx
from mcp.types import JSONRPCMessage

from mcp_pentester.config import TransportConfig
from mcp_pentester.correlation import parse_message, to_payload, validate_message
from mcp_pentester.errors import (
    ConfigurationError,
    FramingError,
    HttpStatusError,
    TransportClosedError,
    TransportConnectionError,
    TransportError,
)
from mcp_pentester.events import EventHub
from mcp_pentester.models import TransportType
from mcp_pentester.transports.base import REQUEST_TIMEOUT, JsonRpcCorrelator, TransportEvent
from mcp_pentester.transports.net import (
    JSON_CONTENT_HEADERS,
    CookieJar,
    build_auth_headers,
    build_ssl_context,
    describe_http_error,
    http_client_options,
    merge_headers,
)

logger = logging.getLogger(__name__)

# Seconds between a dropped stream and the next connection attempt
RECONNECT_DELAY = 1.0

STREAM_HEADERS = {
    "Accept": "text/event-stream",
    "Cache-Control": "no-cache",
}


@dataclass
class SseEvent:
    """One parsed event-stream frame.

    Args:
        data: Concatenated ``data:`` values.
        id: Value of the ``id:`` field, if present.
        event: Value of the ``event:`` field, if present.
    """

    data: str = ""
    id: str | None = None
    event: str | None = None


def parse_sse_frame(frame: str) -> SseEvent:
    """Parse the lines of one frame. Unknown fields and comments are ignored."""
    event = SseEvent()
    for line in frame.split("\n"):
        if line.startswith("id:"):
            event.id = line[3:].strip()
        elif line.startswith("event:"):
            event.event = line[6:].strip()
        elif line.startswith("data:"):
            event.data += line[5:].strip()
    return event


class SseDecoder:
    """Splits an event stream into frames on blank lines.

    A frame cut across chunks is held until the chunk completing it arrives.
    """

    def __init__(self) -> None:
        self._buffer = ""

    def feed(self, chunk: str) -> list[SseEvent]:
        """Append a chunk and return every complete frame it finishes."""
        self._buffer += chunk.replace("\r\n", "\n")
        *frames, self._buffer = self._buffer.split("\n\n")
        return [parse_sse_frame(frame) for frame in frames if frame.strip()]


class SseTransport:
    """Event-stream transport with automatic reconnection.

    Args:
        config: Transport configuration with ``type`` sse.
        timeout: Per-request timeout in seconds.
        reconnect_delay: Seconds to wait before reopening a dropped stream.
        http_transport: Optional httpx transport replacing the network stack.
    """

    transport_type = TransportType.SSE

    def __init__(
        self,
        config: TransportConfig,
        timeout: float = REQUEST_TIMEOUT,
        reconnect_delay: float = RECONNECT_DELAY,
        http_transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        if not config.url:
            raise ConfigurationError("URL required for sse transport")
        self.config = config
        self.url = config.url
        self.events = EventHub()
        self.rpc = JsonRpcCorrelator(self.send, self.events, timeout=timeout)
        self.reconnect_delay = reconnect_delay
        self.last_event_id: str | None = None
        self.cookies = CookieJar()
        self._timeout = timeout
        self._http_transport = http_transport
        is_tls = self.url.lower().startswith("https:")
        self._ssl_context = build_ssl_context(config.certificate) if is_tls else None
        self._auth_headers = build_auth_headers(config.auth)
        self._client: httpx.AsyncClient | None = None
        self._stream: httpx.Response | None = None
        self._reader_task: asyncio.Task[None] | None = None
        self._reconnect_task: asyncio.Task[None] | None = None
        self._reconnecting = False
        self._closing = False

    @property
    def connected(self) -> bool:
        """True while the event stream is open."""
        return self._stream is not None and not self._stream.is_closed

    @property
    def reconnecting(self) -> bool:
        """True while a reconnection attempt is scheduled or running."""
        return self._reconnecting

    def stream_headers(self) -> dict[str, str]:
        """Headers for the GET that opens the event stream."""
        resume = {"Last-Event-ID": self.last_event_id} if self.last_event_id else {}
        return merge_headers(STREAM_HEADERS, self.config.headers, self._auth_headers, resume)

    def post_headers(self) -> dict[str, str]:
        """Headers for each outbound POST."""
        return merge_headers(JSON_CONTENT_HEADERS, self.config.headers, self._auth_headers, self.cookies.header())

    async def connect(self) -> None:
        """Open the event stream.

        Raises:
            TransportConnectionError: On network failure or a non-200 status.
        """
        self._closing = False
        if self._client is None:
            options = http_client_options(
                self.config,
                self._ssl_context,
                # The stream may stay idle indefinitely
                timeout=httpx.Timeout(self._timeout, read=None),
                transport=self._http_transport,
            )
            try:
                self._client = httpx.AsyncClient(**options)
            except (ValueError, ImportError) as exc:
                raise TransportConnectionError(f"Failed to configure HTTP client: {exc}", cause=exc) from exc
        try:
            await self._open_stream()
        except TransportError:
            await self._close_client()
            raise
        self.events.emit(TransportEvent.CONNECTED)

    async def disconnect(self) -> None:
        """Stop reconnecting, close both channels and reject pending requests."""
        self._closing = True
        for task in (self._reconnect_task, self._reader_task):
            if task is not None and not task.done():
                task.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await task
        self._reconnect_task = None
        self._reader_task = None
        self._reconnecting = False
        await self._close_stream()
        await self._close_client()
        self.rpc.reject_all(TransportClosedError("Transport disconnected"))

    async def send(self, message: JSONRPCMessage) -> None:
        """POST one message. Replies normally arrive on the event stream.

        Raises:
            TransportError: If not connected, on an unexpected content type,
                or if a JSON reply cannot be processed.
            TransportConnectionError: On network failure.
            HttpStatusError: On HTTP status 400 or above.
        """
        client = self._client
        if client is None:
            raise TransportError("Transport not connected")
        self.events.emit(TransportEvent.SEND, message)

        try:
            response = await client.post(self.url, json=to_payload(message), headers=self.post_headers())
        except httpx.HTTPError as exc:
            error = TransportConnectionError(f"SSE POST failed: {exc}", cause=exc)
            self.events.emit(TransportEvent.ERROR, error)
            raise error from exc

        self.cookies.update(response.headers.get_list("set-cookie"))
        client.cookies.clear()

        if response.status_code >= 400:
            error = HttpStatusError(describe_http_error(response, self.cookies), response.status_code)
            self.events.emit(TransportEvent.ERROR, error)
            raise error

        self.handle_post_response(response.headers.get("content-type", ""), response.text)

    def handle_post_response(self, content_type: str, body: str) -> None:
        """Process a POST reply body according to its content type.

        Raises:
            TransportError: If a JSON body cannot be processed or the content
                type is not one the transport understands.
        """
        if "text/event-stream" in content_type:
            # Delivered over the GET stream
            return
        if "application/json" in content_type:
            if not body.strip():
                return
            try:
                message = parse_message(body)
            except FramingError as exc:
                raise TransportError(f"Failed to process SSE response: {exc}", cause=exc) from exc
            self.rpc.deliver(message)
            return
        if not body.strip():
            return
        if "text/plain" in content_type:
            try:
                message = parse_message(body)
            except FramingError:
                # Plain acknowledgements like "Accepted" are fine
                logger.debug("Ignoring non-JSON text/plain reply: %s", body[:200])
                return
            self.rpc.deliver(message)
            return
        raise TransportError(f"Unexpected content type: {content_type}")

    def handle_event(self, event: SseEvent) -> None:
        """Track the resume cursor and dispatch the frame's payload."""
        if event.id:
            self.last_event_id = event.id
        if not event.data:
            return
        try:
            data = json.loads(event.data)
        except json.JSONDecodeError:
            logger.debug("Ignoring non-JSON SSE data: %s", event.data[:200])
            return
        try:
            message = validate_message(data, raw=event.data)
        except FramingError as exc:
            logger.warning("Invalid JSON-RPC message on SSE stream: %s", exc)
            self.events.emit(TransportEvent.ERROR, exc)
            return
        self.rpc.deliver(message)

    async def _open_stream(self) -> None:
        assert self._client is not None
        request = self._client.build_request("GET", self.url, headers=self.stream_headers())
        try:
            response = await self._client.send(request, stream=True)
        except httpx.HTTPError as exc:
            raise TransportConnectionError(f"SSE connection failed: {exc}", cause=exc) from exc
        if response.status_code != 200:
            await response.aclose()
            raise TransportConnectionError(
                f"SSE connection failed: HTTP {response.status_code} {response.reason_phrase or 'Error'}"
            )
        logger.debug("SSE stream open at %s (last event id %s)", self.url, self.last_event_id)
        self._stream = response
        self._reader_task = asyncio.create_task(self._read_stream(response), name="sse-reader")

    async def _read_stream(self, response: httpx.Response) -> None:
        decoder = SseDecoder()
        try:
            async for chunk in response.aiter_text():
                for event in decoder.feed(chunk):
                    self.handle_event(event)
        except httpx.HTTPError as exc:
            if not self._closing:
                logger.warning("SSE stream error: %s", exc)
                self.events.emit(TransportEvent.ERROR, TransportConnectionError(f"SSE error: {exc}", cause=exc))
        finally:
            await response.aclose()
        if not self._closing:
            logger.info("SSE stream to %s ended, reconnecting", self.url)
            self._stream = None
            self.events.emit(TransportEvent.DISCONNECTED)
            self._schedule_reconnect()

    def _schedule_reconnect(self) -> None:
        if self._closing or self._reconnecting:
            return
        self._reconnecting = True
        self._reconnect_task = asyncio.create_task(self._reconnect(), name="sse-reconnect")

    async def _reconnect(self) -> None:
        while not self._closing:
            await asyncio.sleep(self.reconnect_delay)
            if self._closing:
                break
            # Cleared first so a stream that drops right away can schedule again
            self._reconnecting = False
            try:
                await self._open_stream()
            except TransportError as exc:
                logger.warning("SSE reconnect to %s failed: %s", self.url, exc)
                self.events.emit(TransportEvent.ERROR, exc)
                self._reconnecting = True
                continue
            return
        self._reconnecting = False

    async def _close_stream(self) -> None:
        stream = self._stream
        self._stream = None
        if stream is not None:
            await stream.aclose()

    async def _close_client(self) -> None:
        client = self._client
        self._client = None
        if client is not None:
            await client.aclose()
