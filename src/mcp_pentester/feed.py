"""Traffic correlation feed for mcp-pentester.

Pairs sent requests with the received responses carrying the same JSON-RPC
id so the traffic log can be read as a list of exchanges with a status. Ids
match strictly: the integer 1 and the string "1" are different requests.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence

from mcp_pentester.correlation import extract_params, is_error, is_notification, is_request, is_response
from mcp_pentester.errors import is_method_not_found
from mcp_pentester.models import Direction, ExchangeStatus, TrafficExchange, TrafficLogEntry

logger = logging.getLogger(__name__)

# Listing methods whose "not supported" errors are hidden from the feed
LIST_METHODS = frozenset({"tools/list", "resources/list", "prompts/list"})


def _same_id(a: str | int | None, b: str | int | None) -> bool:
    # bool is an int subclass and 1 == 1.0; compare types too
    return a is not None and type(a) is type(b) and a == b


def find_response(entries: Sequence[TrafficLogEntry], index: int) -> TrafficLogEntry | None:
    """Scan forward from a sent request for its response.

    Args:
        entries: Traffic log entries, oldest first.
        index: Position of the sent request.

    Returns:
        The first later received response or error with the same id, or
        None if the request is still pending or has been evicted.
    """
    request = entries[index]
    if request.direction != Direction.SENT or not is_request(request.message):
        return None
    for entry in entries[index + 1 :]:
        if entry.direction == Direction.RECEIVED and is_response(entry.message):
            if _same_id(entry.jsonrpc_id, request.jsonrpc_id):
                return entry
    return None


def find_request(entries: Sequence[TrafficLogEntry], index: int) -> TrafficLogEntry | None:
    """Scan backward from a received response for the request it answers.

    Args:
        entries: Traffic log entries, oldest first.
        index: Position of the received response.

    Returns:
        The closest earlier sent request with the same id, or None.
    """
    response = entries[index]
    if response.direction != Direction.RECEIVED or not is_response(response.message):
        return None
    for entry in reversed(entries[:index]):
        if entry.direction == Direction.SENT and is_request(entry.message):
            if _same_id(entry.jsonrpc_id, response.jsonrpc_id):
                return entry
    return None


def is_suppressed(request: TrafficLogEntry | None, response: TrafficLogEntry | None) -> bool:
    """Check whether an exchange is a listing call the server does not implement.

    Such exchanges are routine noise during enumeration and are hidden from
    the feed.
    """
    if request is None or response is None or request.method not in LIST_METHODS:
        return False
    if not is_error(response.message):
        return False
    error = response.message.root.error  # type: ignore[union-attr]
    return is_method_not_found(error.code, error.message)


def exchange_status(response: TrafficLogEntry | None) -> ExchangeStatus:
    """Status of a request given its response, or lack of one."""
    if response is None:
        return ExchangeStatus.PENDING
    return ExchangeStatus.ERROR if is_error(response.message) else ExchangeStatus.OK


def correlate(entries: Sequence[TrafficLogEntry], include_suppressed: bool = False) -> list[TrafficExchange]:
    """Fold the traffic log into exchanges, in the order they began.

    Sent requests become one exchange with status ok, error or pending. Sent
    notifications become ``notification`` exchanges. Received messages with
    no matching sent request (server notifications, server-initiated
    requests, stray responses) become ``inbound`` exchanges.

    Args:
        entries: Traffic log entries, oldest first.
        include_suppressed: Keep unsupported-listing exchanges.

    Returns:
        The correlated exchanges.
    """
    exchanges: list[TrafficExchange] = []
    # (id type, id) -> index of the open exchange awaiting a response
    correlation_map: dict[tuple[type, str | int], int] = {}

    for entry in entries:
        message = entry.message
        if entry.direction == Direction.SENT:
            if is_request(message) and entry.jsonrpc_id is not None:
                correlation_map[(type(entry.jsonrpc_id), entry.jsonrpc_id)] = len(exchanges)
                exchanges.append(TrafficExchange(entry, None, ExchangeStatus.PENDING))
            elif is_notification(message):
                exchanges.append(TrafficExchange(entry, None, ExchangeStatus.NOTIFICATION))
            else:
                logger.debug("Unexpected sent entry #%d", entry.sequence)
            continue

        if is_response(message) and entry.jsonrpc_id is not None:
            slot = correlation_map.pop((type(entry.jsonrpc_id), entry.jsonrpc_id), None)
            if slot is not None:
                exchange = exchanges[slot]
                exchange.response = entry
                exchange.status = exchange_status(entry)
                continue
        exchanges.append(TrafficExchange(None, entry, ExchangeStatus.INBOUND))

    if include_suppressed:
        return exchanges
    return [exchange for exchange in exchanges if not is_suppressed(exchange.request, exchange.response)]


_STATUS_LABELS = {
    ExchangeStatus.OK: "ok",
    ExchangeStatus.ERROR: "ERROR",
    ExchangeStatus.PENDING: "pending",
    ExchangeStatus.NOTIFICATION: "sent",
    ExchangeStatus.INBOUND: "inbound",
}


def describe_entry(entry: TrafficLogEntry) -> str:
    """Method plus the parameters worth seeing at a glance.

    Examples: ``tools/call tool=search args=query,limit``,
    ``resources/read uri=file:///etc/passwd``, ``prompts/get prompt=summary``.
    """
    method = entry.method
    if method is None:
        return f"response id={entry.jsonrpc_id}"
    params = extract_params(entry.message)
    details = ""
    if method == "tools/call":
        details = f" tool={params.get('name')}"
        arguments = params.get("arguments")
        if isinstance(arguments, dict) and arguments:
            details += f" args={','.join(arguments)}"
    elif method == "resources/read":
        details = f" uri={params.get('uri')}"
    elif method == "prompts/get":
        details = f" prompt={params.get('name')}"
    return method + details


def format_exchange(exchange: TrafficExchange) -> str:
    """One-line summary: ``[HH:MM:SS.mmm] <method details> -> <status>``."""
    first = exchange.request or exchange.response
    assert first is not None
    timestamp = first.timestamp.astimezone().strftime("%H:%M:%S.%f")[:-3]
    return f"[{timestamp}] {describe_entry(first)} → {_STATUS_LABELS[exchange.status]}"
