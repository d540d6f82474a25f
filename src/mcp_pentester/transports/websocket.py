"""WebSocket transport for mcp-pentester.

One persistent connection per transport, one JSON-RPC document per frame.
Custom and auth headers ride on the upgrade request. There is no automatic
reconnection: an unexpected close ends the session.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import Awaitable, Callable
from typing import Any

from mcp.types import JSONRPCMessage
from python_socks import ProxyError
from websockets.asyncio.client import ClientConnection, connect
from websockets.exceptions import ConnectionClosedError, WebSocketException
from websockets.protocol import State

from mcp_pentester.config import TransportConfig
from mcp_pentester.correlation import parse_message, to_wire
from mcp_pentester.errors import (
    ConfigurationError,
    FramingError,
    TransportClosedError,
    TransportConnectionError,
    TransportError,
)
from mcp_pentester.events import EventHub
from mcp_pentester.models import TransportType
from mcp_pentester.transports.base import REQUEST_TIMEOUT, JsonRpcCorrelator, TransportEvent
from mcp_pentester.transports.net import build_auth_headers, build_ssl_context, merge_headers

logger = logging.getLogger(__name__)

Connector = Callable[..., Awaitable[ClientConnection]]


class WebSocketTransport:
    """Persistent WebSocket transport.

    Args:
        config: Transport configuration with ``type`` ws or wss.
        timeout: Per-request timeout in seconds.
        connector: Coroutine factory opening the socket. Defaults to
            ``websockets.asyncio.client.connect``.
    """

    def __init__(
        self,
        config: TransportConfig,
        timeout: float = REQUEST_TIMEOUT,
        connector: Connector | None = None,
    ) -> None:
        if not config.url:
            raise ConfigurationError(f"URL required for {config.type.value} transport")
        self.config = config
        self.url = config.url
        self.transport_type = config.type
        self.events = EventHub()
        self.rpc = JsonRpcCorrelator(self.send, self.events, timeout=timeout)
        self._connector: Connector = connector or connect
        self._ssl_context = build_ssl_context(config.certificate) if config.type == TransportType.WSS else None
        self._ws: ClientConnection | None = None
        self._reader_task: asyncio.Task[None] | None = None
        self._closing = False

    @property
    def connected(self) -> bool:
        """True while the socket is open."""
        return self._ws is not None and self._ws.state is State.OPEN

    def connect_options(self) -> dict[str, Any]:
        """Keyword arguments passed to the connector."""
        options: dict[str, Any] = {
            "additional_headers": merge_headers(self.config.headers, build_auth_headers(self.config.auth)),
            # None disables the environment proxy lookup websockets does by default
            "proxy": self.config.proxy.dial_url() if self.config.proxy is not None else None,
        }
        if self._ssl_context is not None:
            options["ssl"] = self._ssl_context
        return options

    async def connect(self) -> None:
        """Open the socket and start the reader task.

        Raises:
            TransportConnectionError: On handshake, socket or proxy failure.
        """
        self._closing = False
        try:
            self._ws = await self._connector(self.url, **self.connect_options())
        except (OSError, TimeoutError, WebSocketException, ProxyError) as exc:
            raise TransportConnectionError(f"WebSocket connection failed: {exc}", cause=exc) from exc
        logger.debug("WebSocket connected to %s", self.url)
        self._reader_task = asyncio.create_task(self._read_frames(self._ws), name="websocket-reader")
        self.events.emit(TransportEvent.CONNECTED)

    async def disconnect(self) -> None:
        """Close the socket and reject pending requests. Safe to call multiple times."""
        self._closing = True
        ws = self._ws
        self._ws = None
        if ws is not None:
            await ws.close()
        if self._reader_task is not None and not self._reader_task.done():
            self._reader_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._reader_task
        self._reader_task = None
        self.rpc.reject_all(TransportClosedError("Transport disconnected"))

    async def send(self, message: JSONRPCMessage) -> None:
        """Send one message as a text frame.

        Raises:
            TransportError: If the socket is absent, not open, or the write fails.
        """
        ws = self._ws
        if ws is None or ws.state is not State.OPEN:
            raise TransportError("WebSocket not connected")
        self.events.emit(TransportEvent.SEND, message)
        try:
            await ws.send(to_wire(message))
        except WebSocketException as exc:
            raise TransportError(f"WebSocket send failed: {exc}", cause=exc) from exc

    def handle_frame(self, frame: str | bytes) -> None:
        """Parse one frame and dispatch it; parse failures become ``error`` events."""
        try:
            message = parse_message(frame)
        except FramingError as exc:
            logger.warning("Failed to parse WebSocket message: %s", exc)
            self.events.emit(TransportEvent.ERROR, FramingError(f"Failed to parse WebSocket message: {exc}", exc.raw))
            return
        self.rpc.deliver(message)

    async def _read_frames(self, ws: ClientConnection) -> None:
        try:
            async for frame in ws:
                self.handle_frame(frame)
        except ConnectionClosedError as exc:
            if not self._closing:
                logger.warning("WebSocket closed with error: %s", exc)
                self.events.emit(TransportEvent.ERROR, TransportConnectionError(f"WebSocket error: {exc}", cause=exc))
        finally:
            if not self._closing:
                logger.debug("WebSocket to %s closed by peer", self.url)
                self._ws = None
                self.rpc.reject_all(TransportClosedError("WebSocket closed"))
                self.events.emit(TransportEvent.DISCONNECTED)
