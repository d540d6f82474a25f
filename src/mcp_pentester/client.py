"""MCP protocol session for mcp-pentester.

McpClient owns one transport, performs the initialize handshake, keeps the
capability snapshot current and records every wire message in the traffic
log. Observers subscribe to ``client.events``; the CLI and the dashboard
are both built on those events.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from enum import StrEnum
from typing import Any, TypeVar

from mcp.types import InitializeResult, JSONRPCMessage, Prompt, Resource, Tool
from pydantic import BaseModel, ValidationError

from mcp_pentester import __version__
from mcp_pentester.config import TransportConfig
from mcp_pentester.errors import ConfigurationError, JsonRpcError
from mcp_pentester.events import EventHub
from mcp_pentester.models import ClientState, ConnectionState, Direction, TransportType
from mcp_pentester.traffic import TrafficLog
from mcp_pentester.transports.base import REQUEST_TIMEOUT, Transport, TransportEvent
from mcp_pentester.transports.http import HttpTransport
from mcp_pentester.transports.sse import SseTransport
from mcp_pentester.transports.stdio import StdioTransport
from mcp_pentester.transports.websocket import WebSocketTransport

logger = logging.getLogger(__name__)

PROTOCOL_VERSION = "2024-11-05"
CLIENT_NAME = "mcp-pentester"

CLIENT_CAPABILITIES: dict[str, Any] = {
    "roots": {"listChanged": True},
    "sampling": {},
}

_ModelT = TypeVar("_ModelT", bound=BaseModel)


class ClientEvent(StrEnum):
    """Events emitted by McpClient.

    Attributes:
        CONNECTED: Handshake finished (payload: initialize result dict).
        DISCONNECTED: The session ended.
        ERROR: Non-fatal failure (payload: Exception).
        NOTIFICATION: Server notification (payload: JSONRPCMessage).
        REQUEST: Server-initiated request (payload: JSONRPCMessage).
        TRAFFIC: A message was logged (payload: TrafficLogEntry).
    """

    CONNECTED = "connected"
    DISCONNECTED = "disconnected"
    ERROR = "error"
    NOTIFICATION = "notification"
    REQUEST = "request"
    TRAFFIC = "traffic"


def build_transport(config: TransportConfig, timeout: float = REQUEST_TIMEOUT) -> Transport:
    """Construct the transport matching ``config.type``.

    Args:
        config: Connection configuration.
        timeout: Per-request timeout in seconds.

    Returns:
        An unconnected transport.

    Raises:
        ConfigurationError: If a required field is missing, TLS material
            cannot be loaded, or the type is unsupported.
    """
    config.validate_target()
    if config.type == TransportType.STDIO:
        assert config.command is not None
        return StdioTransport(config.command, config.args, config.env, timeout=timeout)
    if config.type in (TransportType.HTTP, TransportType.HTTPS):
        return HttpTransport(config, timeout=timeout)
    if config.type in (TransportType.WS, TransportType.WSS):
        return WebSocketTransport(config, timeout=timeout)
    if config.type == TransportType.SSE:
        return SseTransport(config, timeout=timeout)
    raise ConfigurationError(f"Unsupported transport type: {config.type}")


def _validate_items(items: Any, model: type[_ModelT], kind: str) -> list[_ModelT]:
    """Validate listing entries, skipping the ones that do not fit the schema."""
    if not isinstance(items, list):
        if items is not None:
            logger.warning("Server returned a non-list %s field: %r", kind, items)
        return []
    valid: list[_ModelT] = []
    for item in items:
        try:
            valid.append(model.model_validate(item))
        except ValidationError as exc:
            logger.warning("Skipping invalid %s entry %r: %s", kind, item, exc)
    return valid


class McpClient:
    """One MCP session over one transport.

    Args:
        config: Connection configuration.
        transport_factory: Builds the transport from the configuration.
            Replaced in tests with one returning a double.

    Example:
        >>> client = McpClient(TransportConfig(type="stdio", command="python", args=["server.py"]))
        >>> client.events.on(ClientEvent.TRAFFIC, print)
        >>> await client.connect()
        >>> await client.call_tool("echo", {"text": "hi"})
    """

    def __init__(
        self,
        config: TransportConfig,
        transport_factory: Callable[[TransportConfig], Transport] = build_transport,
    ) -> None:
        self.config = config
        self.events = EventHub()
        self.transport: Transport | None = None
        self._transport_factory = transport_factory
        self._state = ClientState()
        self._traffic = TrafficLog(config.type, target=config.target)

    @property
    def state(self) -> ClientState:
        """The live session snapshot."""
        return self._state

    @property
    def traffic_log(self) -> TrafficLog:
        """Every message sent and received, most recent 1000 kept."""
        return self._traffic

    def clear_traffic_log(self) -> None:
        """Drop all logged traffic."""
        self._traffic.clear()

    async def connect(self) -> Any:
        """Connect, perform the handshake and fetch the capability lists.

        Returns:
            The raw ``initialize`` result.

        Raises:
            ConfigurationError: Before any I/O, for an invalid configuration.
            TransportError: If the channel cannot be opened.
            JsonRpcError: If the server rejects ``initialize``.
            RequestTimeoutError: If the server does not answer ``initialize``.
        """
        if self.transport is not None:
            if self._state.connection != ConnectionState.DISCONNECTED:
                raise RuntimeError("Client is already connected")
            # Release a transport that closed underneath us
            await self._teardown()
        transport = self._transport_factory(self.config)
        self.transport = transport
        self._state.connection = ConnectionState.CONNECTING
        self._wire(transport)
        try:
            await transport.connect()
            result = await transport.rpc.request(
                "initialize",
                {
                    "protocolVersion": PROTOCOL_VERSION,
                    "capabilities": CLIENT_CAPABILITIES,
                    "clientInfo": {"name": CLIENT_NAME, "version": __version__},
                },
            )
            await transport.rpc.notify("notifications/initialized")
        except BaseException:
            await self._teardown()
            raise

        self._apply_initialize(result)
        self._state.connection = ConnectionState.CONNECTED
        logger.info("Connected to %s over %s", self.config.target, self.config.type.value)
        self.events.emit(ClientEvent.CONNECTED, result)
        await self.refresh_all()
        return result

    async def disconnect(self) -> None:
        """End the session. Pending requests are rejected. Safe to call multiple times."""
        if self.transport is None:
            return
        await self._teardown()
        self.events.emit(ClientEvent.DISCONNECTED)

    async def list_tools(self) -> list[Tool]:
        """Fetch ``tools/list`` and replace the tools snapshot.

        Returns an empty list when the server does not implement the method.
        """
        result = await self._list("tools/list")
        self._state.tools = _validate_items(result.get("tools"), Tool, "tool")
        return self._state.tools

    async def list_resources(self) -> list[Resource]:
        """Fetch ``resources/list`` and replace the resources snapshot."""
        result = await self._list("resources/list")
        self._state.resources = _validate_items(result.get("resources"), Resource, "resource")
        return self._state.resources

    async def list_prompts(self) -> list[Prompt]:
        """Fetch ``prompts/list`` and replace the prompts snapshot."""
        result = await self._list("prompts/list")
        self._state.prompts = _validate_items(result.get("prompts"), Prompt, "prompt")
        return self._state.prompts

    async def refresh_all(self) -> None:
        """Refresh tools, resources and prompts concurrently.

        Each listing is isolated: one failing leaves the other snapshots
        updated. Failures are logged and emitted as ``error`` events.
        """
        results = await asyncio.gather(
            self.list_tools(),
            self.list_resources(),
            self.list_prompts(),
            return_exceptions=True,
        )
        for method, outcome in zip(("tools/list", "resources/list", "prompts/list"), results, strict=True):
            if isinstance(outcome, asyncio.CancelledError):
                raise outcome
            if isinstance(outcome, BaseException):
                logger.warning("%s failed during refresh: %s", method, outcome)
                self.events.emit(ClientEvent.ERROR, outcome)

    async def call_tool(self, name: str, arguments: dict[str, Any] | None = None) -> Any:
        """Invoke a tool.

        Args:
            name: Tool name.
            arguments: Tool arguments, sent as an empty object when None.

        Returns:
            The raw ``tools/call`` result.
        """
        return await self._rpc_request("tools/call", {"name": name, "arguments": arguments or {}})

    async def read_resource(self, uri: str) -> Any:
        """Read a resource by URI."""
        return await self._rpc_request("resources/read", {"uri": uri})

    async def get_prompt(self, name: str, arguments: dict[str, Any] | None = None) -> Any:
        """Render a prompt with arguments."""
        return await self._rpc_request("prompts/get", {"name": name, "arguments": arguments or {}})

    async def send_raw(self, method: str, params: dict[str, Any] | None = None) -> Any:
        """Issue an arbitrary JSON-RPC request and return its result.

        No validation is applied to ``method`` or ``params``; this is the
        raw primitive for methods the client has no wrapper for.
        """
        return await self._rpc_request(method, params)

    async def notify(self, method: str, params: dict[str, Any] | None = None) -> None:
        """Send an arbitrary notification."""
        await self._require_transport().rpc.notify(method, params)

    async def _list(self, method: str) -> dict[str, Any]:
        try:
            result = await self._rpc_request(method)
        except JsonRpcError as exc:
            if exc.is_method_not_found:
                logger.debug("%s not supported by server: %s", method, exc)
                return {}
            raise
        if not isinstance(result, dict):
            logger.warning("%s returned a non-object result: %r", method, result)
            return {}
        return result

    async def _rpc_request(self, method: str, params: dict[str, Any] | None = None) -> Any:
        return await self._require_transport().rpc.request(method, params)

    def _require_transport(self) -> Transport:
        if self.transport is None or not self._state.connected:
            raise RuntimeError("Client is not connected")
        return self.transport

    def _apply_initialize(self, result: Any) -> None:
        try:
            parsed = InitializeResult.model_validate(result)
        except ValidationError as exc:
            # Keep going: a sloppy server is still worth testing
            logger.warning("Server sent a non-conforming initialize result: %s", exc)
            if isinstance(result, dict):
                self._state.protocol_version = result.get("protocolVersion")
            return
        self._state.server_info = parsed.serverInfo
        self._state.capabilities = parsed.capabilities
        self._state.protocol_version = str(parsed.protocolVersion)

    def _wire(self, transport: Transport) -> None:
        events = transport.events
        events.on(TransportEvent.SEND, lambda message: self._record(Direction.SENT, message))
        events.on(TransportEvent.RECEIVE, lambda message: self._record(Direction.RECEIVED, message))
        events.on(TransportEvent.ERROR, lambda exc: self.events.emit(ClientEvent.ERROR, exc))
        events.on(TransportEvent.NOTIFICATION, lambda message: self.events.emit(ClientEvent.NOTIFICATION, message))
        events.on(TransportEvent.REQUEST, self._on_server_request)
        events.on(TransportEvent.STDERR, lambda text: logger.debug("server stderr: %s", str(text).rstrip()))
        events.on(TransportEvent.DISCONNECTED, self._on_transport_closed)

    def _record(self, direction: Direction, message: JSONRPCMessage) -> None:
        entry = self._traffic.record(direction, message)
        self.events.emit(ClientEvent.TRAFFIC, entry)

    def _on_server_request(self, message: JSONRPCMessage) -> None:
        logger.info("Server-initiated request %s left unanswered", message.root.method)  # type: ignore[union-attr]
        self.events.emit(ClientEvent.REQUEST, message)

    def _on_transport_closed(self, _payload: Any) -> None:
        if self.config.type == TransportType.SSE:
            # The SSE transport reconnects on its own
            logger.info("SSE stream dropped, waiting for reconnect")
            return
        logger.info("Transport to %s closed", self.config.target)
        self._state.connection = ConnectionState.DISCONNECTED
        self.events.emit(ClientEvent.DISCONNECTED)

    async def _teardown(self) -> None:
        transport = self.transport
        self.transport = None
        self._state.connection = ConnectionState.DISCONNECTED
        if transport is not None:
            try:
                await transport.disconnect()
            finally:
                transport.events.clear()
