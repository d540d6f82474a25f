"""Transport protocol and JSON-RPC correlation for mcp-pentester.

All transports (stdio, HTTP, WebSocket, SSE) implement the ``Transport``
protocol: connect, disconnect and fire-and-forget send. Request/response
correlation is not inherited. Each transport composes its own
``JsonRpcCorrelator`` around its ``send`` and hands every parsed inbound
message to ``JsonRpcCorrelator.deliver()``.
"""

from __future__ import annotations

import asyncio
import itertools
import logging
from collections.abc import Awaitable, Callable
from enum import StrEnum
from typing import Any, Protocol

from mcp.types import (
    JSONRPCError,
    JSONRPCMessage,
    JSONRPCNotification,
    JSONRPCRequest,
    JSONRPCResponse,
)

from mcp_pentester.correlation import make_notification, make_request, to_payload
from mcp_pentester.errors import JsonRpcError, RequestTimeoutError
from mcp_pentester.events import EventHub
from mcp_pentester.models import TransportType

logger = logging.getLogger(__name__)

# Seconds to wait for a response before a request is abandoned
REQUEST_TIMEOUT = 30.0


class TransportEvent(StrEnum):
    """Events emitted by every transport.

    Attributes:
        SEND: A message is about to be written (payload: JSONRPCMessage).
        RECEIVE: A message was parsed from the wire (payload: JSONRPCMessage).
        ERROR: A non-fatal failure, e.g. a malformed line (payload: Exception).
        NOTIFICATION: Server notification (payload: JSONRPCMessage).
        REQUEST: Server-initiated request (payload: JSONRPCMessage).
        CONNECTED: The channel is open.
        DISCONNECTED: The channel closed without disconnect() being called.
        STDERR: stdio only, raw stderr text.
        EXIT: stdio only, subprocess return code.
    """

    SEND = "send"
    RECEIVE = "receive"
    ERROR = "error"
    NOTIFICATION = "notification"
    REQUEST = "request"
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"
    STDERR = "stderr"
    EXIT = "exit"


class PendingRequests:
    """Outstanding request ids and the futures waiting on them.

    Ids are allocated from a per-instance counter starting at 1. An id is
    never handed out while a request with the same id is still pending.
    """

    def __init__(self) -> None:
        self._counter = itertools.count(1)
        self._futures: dict[str | int, asyncio.Future[JSONRPCMessage]] = {}

    def __contains__(self, request_id: object) -> bool:
        return request_id in self._futures

    def __len__(self) -> int:
        return len(self._futures)

    @property
    def ids(self) -> list[str | int]:
        """Currently pending ids, oldest first."""
        return list(self._futures)

    def next_id(self) -> int:
        """Allocate the next request id."""
        request_id = next(self._counter)
        while request_id in self._futures:
            request_id = next(self._counter)
        return request_id

    def register(self, request_id: str | int) -> asyncio.Future[JSONRPCMessage]:
        """Create the future a caller awaits for ``request_id``.

        Raises:
            ValueError: If the id is already pending.
        """
        if request_id in self._futures:
            raise ValueError(f"Request id {request_id!r} is already pending")
        future: asyncio.Future[JSONRPCMessage] = asyncio.get_running_loop().create_future()
        self._futures[request_id] = future
        return future

    def resolve(self, response: JSONRPCMessage) -> bool:
        """Complete the pending entry matching a response's id.

        Args:
            response: A JSONRPCResponse or JSONRPCError message.

        Returns:
            True if a pending entry was completed, False if the id is unknown
            (already timed out, never issued, or a duplicate response).
        """
        request_id = getattr(response.root, "id", None)
        if request_id is None:
            return False
        future = self._futures.pop(request_id, None)
        if future is None or future.done():
            return False
        future.set_result(response)
        return True

    def discard(self, request_id: str | int) -> None:
        """Forget a pending entry without completing it."""
        future = self._futures.pop(request_id, None)
        if future is not None and not future.done():
            future.cancel()

    def reject_all(self, exc: BaseException) -> None:
        """Fail every pending entry with ``exc``."""
        futures = list(self._futures.values())
        self._futures.clear()
        for future in futures:
            if not future.done():
                future.set_exception(exc)


class JsonRpcCorrelator:
    """Correlated request/notify built from a transport's ``send``.

    Args:
        send: The owning transport's send coroutine.
        events: The owning transport's event hub.
        timeout: Seconds to wait for each response.

    Example:
        >>> rpc = JsonRpcCorrelator(send=transport.send, events=transport.events)
        >>> result = await rpc.request("tools/list")
    """

    def __init__(
        self,
        send: Callable[[JSONRPCMessage], Awaitable[None]],
        events: EventHub,
        timeout: float = REQUEST_TIMEOUT,
    ) -> None:
        self._send = send
        self._events = events
        self.timeout = timeout
        self.pending = PendingRequests()

    async def request(self, method: str, params: dict[str, Any] | None = None) -> Any:
        """Send a request and wait for its response.

        One deadline covers both the send and the wait, so a transport whose
        send is a whole HTTP round trip is bounded by the same timeout.

        Args:
            method: JSON-RPC method.
            params: Optional params object.

        Returns:
            The ``result`` of the response, any JSON value.

        Raises:
            JsonRpcError: The server answered with an error.
            RequestTimeoutError: No response within ``timeout`` seconds.
            Exception: Whatever ``send`` raised; the pending entry is
                removed before it propagates.
        """
        request_id = self.pending.next_id()
        future = self.pending.register(request_id)
        deadline = asyncio.timeout(self.timeout)
        try:
            async with deadline:
                await self._send(make_request(method, params, request_id))
                response = await future
        except TimeoutError:
            if deadline.expired():
                raise RequestTimeoutError(method) from None
            raise
        finally:
            self.pending.discard(request_id)

        root = response.root
        if isinstance(root, JSONRPCError):
            raise JsonRpcError(root.error.code, root.error.message, root.error.data)
        return to_payload(response).get("result")

    async def notify(self, method: str, params: dict[str, Any] | None = None) -> None:
        """Send a notification. Completes once the message is transmitted."""
        await self._send(make_notification(method, params))

    def deliver(self, message: JSONRPCMessage) -> None:
        """Record an inbound message and route it.

        Emits ``receive`` for every message, then dispatches it.
        """
        self._events.emit(TransportEvent.RECEIVE, message)
        self.dispatch(message)

    def dispatch(self, message: JSONRPCMessage) -> None:
        """Route an inbound message by shape.

        Responses and errors complete the pending request with the same id,
        notifications are broadcast as ``notification``, and server-initiated
        requests are broadcast as ``request`` (never answered).
        """
        root = message.root
        if isinstance(root, JSONRPCResponse | JSONRPCError):
            if not self.pending.resolve(message):
                logger.debug("Dropping response for unknown request id %r", root.id)
        elif isinstance(root, JSONRPCNotification):
            self._events.emit(TransportEvent.NOTIFICATION, message)
        elif isinstance(root, JSONRPCRequest):
            self._events.emit(TransportEvent.REQUEST, message)

    def reject_all(self, exc: BaseException) -> None:
        """Fail every outstanding request immediately."""
        if len(self.pending):
            logger.debug("Rejecting pending request ids %s: %s", self.pending.ids, exc)
        self.pending.reject_all(exc)


class Transport(Protocol):
    """Interface for transports.

    A transport owns exactly one physical channel. The client interacts
    only with this interface and never sees process handles, sockets or
    HTTP clients.
    """

    transport_type: TransportType
    events: EventHub
    rpc: JsonRpcCorrelator

    async def connect(self) -> None:
        """Open the channel.

        Raises:
            TransportConnectionError: If the channel cannot be established.
        """
        ...

    async def disconnect(self) -> None:
        """Release the channel and reject pending requests.

        Safe to call when not connected and safe to call multiple times.
        """
        ...

    async def send(self, message: JSONRPCMessage) -> None:
        """Transmit one request or notification.

        Emits ``send`` with the message before it is written.

        Raises:
            TransportError: If the channel is not open or the write fails.
        """
        ...
