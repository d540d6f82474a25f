"""Core data models for mcp-pentester.

Defines the enums shared by configuration and transports, the traffic log
envelope wrapping every sent/received JSON-RPC message, correlated exchange
records, and the client state snapshot.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum
from typing import Any

from mcp.types import Implementation, JSONRPCMessage, Prompt, Resource, ServerCapabilities, Tool
from pydantic import BaseModel

from mcp_pentester.correlation import extract_jsonrpc_id, extract_method


class TransportType(StrEnum):
    """Transport used to reach the MCP server.

    Attributes:
        STDIO: Spawned subprocess, newline-delimited JSON over stdin/stdout.
        HTTP: Plain HTTP POST per message.
        HTTPS: HTTP POST over TLS.
        WS: WebSocket.
        WSS: WebSocket over TLS.
        SSE: Server-Sent Events stream plus POST for outbound messages.
    """

    STDIO = "stdio"
    HTTP = "http"
    HTTPS = "https"
    WS = "ws"
    WSS = "wss"
    SSE = "sse"


class ProxyProtocol(StrEnum):
    """Protocol spoken to an upstream intercepting proxy."""

    HTTP = "http"
    HTTPS = "https"
    SOCKS = "socks"
    SOCKS5 = "socks5"


class AuthType(StrEnum):
    """How credentials are turned into request headers."""

    BEARER = "bearer"
    BASIC = "basic"
    CUSTOM = "custom"


class Direction(StrEnum):
    """Direction of a logged message relative to this client.

    Attributes:
        SENT: Message written by the client to the server.
        RECEIVED: Message read from the server.
    """

    SENT = "sent"
    RECEIVED = "received"


class ConnectionState(StrEnum):
    """Lifecycle of a client session."""

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"


class ExchangeStatus(StrEnum):
    """Outcome of a correlated exchange in the traffic feed.

    Attributes:
        OK: Request answered with a result.
        ERROR: Request answered with a JSON-RPC error.
        PENDING: Request sent, no response seen yet.
        NOTIFICATION: Client notification, no response expected.
        INBOUND: Server-originated message with no matching sent request.
    """

    OK = "ok"
    ERROR = "error"
    PENDING = "pending"
    NOTIFICATION = "notification"
    INBOUND = "inbound"


@dataclass
class TrafficLogEntry:
    """A single JSON-RPC message seen on the wire, with capture metadata.

    Args:
        sequence: Position in the log, increasing from 0. Survives eviction,
            so it stays a stable key for display.
        timestamp: When the message was sent or received.
        direction: SENT or RECEIVED.
        transport: The transport type in use.
        message: The JSON-RPC message (MCP SDK type).
        raw: Pretty-printed JSON text of the message.
    """

    sequence: int
    timestamp: datetime
    direction: Direction
    transport: TransportType
    message: JSONRPCMessage
    raw: str

    @property
    def jsonrpc_id(self) -> str | int | None:
        """JSON-RPC id of the message, None for notifications."""
        return extract_jsonrpc_id(self.message)

    @property
    def method(self) -> str | None:
        """JSON-RPC method, None for responses and errors."""
        return extract_method(self.message)


@dataclass
class TrafficExchange:
    """A request paired with its response, as shown in the traffic feed.

    Args:
        request: The sent entry (None for unsolicited inbound messages).
        response: The matching received entry, if any.
        status: Outcome classification.
    """

    request: TrafficLogEntry | None
    response: TrafficLogEntry | None
    status: ExchangeStatus

    @property
    def method(self) -> str | None:
        """Method of the originating request or inbound message."""
        if self.request is not None:
            return self.request.method
        if self.response is not None:
            return self.response.method
        return None

    @property
    def timestamp(self) -> datetime | None:
        """Timestamp of the first entry in the exchange."""
        first = self.request or self.response
        return first.timestamp if first is not None else None


@dataclass
class ClientState:
    """Snapshot of a client session.

    Args:
        connection: Current lifecycle state.
        server_info: Server name/version from the initialize result.
        capabilities: Server capabilities from the initialize result.
        protocol_version: Protocol version the server answered with.
        tools: Latest tools/list snapshot.
        resources: Latest resources/list snapshot.
        prompts: Latest prompts/list snapshot.
    """

    connection: ConnectionState = ConnectionState.DISCONNECTED
    server_info: Implementation | None = None
    capabilities: ServerCapabilities | None = None
    protocol_version: str | None = None
    tools: list[Tool] = field(default_factory=list)
    resources: list[Resource] = field(default_factory=list)
    prompts: list[Prompt] = field(default_factory=list)

    @property
    def connected(self) -> bool:
        """True once the handshake has completed."""
        return self.connection == ConnectionState.CONNECTED


class TrafficCapture(BaseModel):
    """Serializable traffic log for save/load.

    Args:
        transport: Transport type the capture was taken over.
        target: Server command line or URL.
        saved_at: When the capture was written.
        entries: Serialized traffic entries.
        metadata: Arbitrary capture metadata.
    """

    transport: TransportType
    target: str | None = None
    saved_at: datetime
    entries: list[dict[str, Any]]
    metadata: dict[str, Any] = {}
