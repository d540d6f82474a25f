"""JSON-RPC message construction, parsing and field extraction.

Insulates the rest of the codebase from the MCP SDK's JSONRPCMessage
internal structure. Transports, the client and the traffic feed use these
helpers instead of reaching into raw message internals.
"""

from __future__ import annotations

import json
from typing import Any, cast

from mcp.types import (
    JSONRPCError,
    JSONRPCMessage,
    JSONRPCNotification,
    JSONRPCRequest,
    JSONRPCResponse,
)
from pydantic import ValidationError

from mcp_pentester.errors import FramingError


class OpaqueResponse(JSONRPCResponse):
    """A response whose ``result`` is any JSON value, not only an object."""

    id: str | int | None  # type: ignore[assignment]
    result: Any  # type: ignore[assignment]


class UnroutedError(JSONRPCError):
    """An error response with a null id, sent for parse-level failures."""

    id: str | int | None  # type: ignore[assignment]


def make_request(method: str, params: dict[str, Any] | None, request_id: int | str) -> JSONRPCMessage:
    """Build a JSON-RPC request envelope.

    Args:
        method: Method name.
        params: Optional params object (omitted from the wire when None).
        request_id: Request id.

    Returns:
        The request wrapped as a JSONRPCMessage.
    """
    if params is None:
        return JSONRPCMessage(JSONRPCRequest(jsonrpc="2.0", id=request_id, method=method))
    return JSONRPCMessage(JSONRPCRequest(jsonrpc="2.0", id=request_id, method=method, params=params))


def make_notification(method: str, params: dict[str, Any] | None = None) -> JSONRPCMessage:
    """Build an id-less JSON-RPC notification envelope."""
    if params is None:
        return JSONRPCMessage(JSONRPCNotification(jsonrpc="2.0", method=method))
    return JSONRPCMessage(JSONRPCNotification(jsonrpc="2.0", method=method, params=params))


def to_payload(message: JSONRPCMessage) -> dict[str, Any]:
    """Dump a message to a plain JSON-compatible dict.

    Only fields that were explicitly set are included, so messages parsed
    from the wire round-trip without gaining or losing keys. The inner model
    is dumped directly so lenient responses keep their opaque ``result``.
    """
    return cast(dict[str, Any], message.root.model_dump(mode="json", by_alias=True, exclude_unset=True))


def to_wire(message: JSONRPCMessage) -> str:
    """Serialize a message to compact single-line JSON."""
    return json.dumps(to_payload(message), separators=(",", ":"))


def parse_message(text: str | bytes) -> JSONRPCMessage:
    """Parse one JSON document into a JSON-RPC message.

    Args:
        text: Raw JSON text.

    Returns:
        The parsed JSONRPCMessage.

    Raises:
        FramingError: If the text is not JSON or not a valid JSON-RPC message.
    """
    if isinstance(text, bytes):
        text = text.decode("utf-8", errors="replace")
    try:
        data = json.loads(text)
    except json.JSONDecodeError as exc:
        raise FramingError(f"Failed to parse JSON: {text}", raw=text) from exc
    return validate_message(data, raw=text)


def validate_message(data: Any, raw: str = "") -> JSONRPCMessage:
    """Validate already-decoded JSON as a JSON-RPC message.

    Anything carrying ``result`` or ``error`` and no ``method`` is a response,
    even when the SDK models reject it (a non-object result or a null id), so
    it is still routed by id.

    Raises:
        FramingError: If ``data`` is not a request, response, error or
            notification.
    """
    try:
        return JSONRPCMessage.model_validate(data)
    except ValidationError as exc:
        message = _lenient_response(data)
        if message is not None:
            return message
        raw = raw or json.dumps(data)
        raise FramingError(f"Invalid JSON-RPC message: {raw}", raw=raw) from exc


def _lenient_response(data: Any) -> JSONRPCMessage | None:
    if not isinstance(data, dict) or "method" in data:
        return None
    model: type[OpaqueResponse | UnroutedError]
    if "error" in data:
        model = UnroutedError
    elif "result" in data:
        model = OpaqueResponse
    else:
        return None
    try:
        return JSONRPCMessage.model_construct(model.model_validate(data))
    except ValidationError:
        return None


def extract_jsonrpc_id(message: JSONRPCMessage) -> str | int | None:
    """Extract the JSON-RPC id field from a message.

    Args:
        message: A JSONRPCMessage (RootModel wrapping a request, response,
            notification, or error).

    Returns:
        The id value (str or int) for requests, responses, and errors.
        None for notifications (which have no id field).
    """
    root = message.root
    if isinstance(root, (JSONRPCRequest, JSONRPCResponse, JSONRPCError)):
        return cast(str | int | None, root.id)
    return None


def extract_method(message: JSONRPCMessage) -> str | None:
    """Extract the JSON-RPC method field from a message.

    Returns:
        The method string for requests and notifications.
        None for responses and errors (which have no method field).
    """
    root = message.root
    if isinstance(root, (JSONRPCRequest, JSONRPCNotification)):
        return cast(str, root.method)
    return None


def extract_params(message: JSONRPCMessage) -> dict[str, Any]:
    """Return the params of a request or notification, or an empty dict."""
    root = message.root
    if isinstance(root, (JSONRPCRequest, JSONRPCNotification)) and root.params is not None:
        return cast(dict[str, Any], to_payload(message).get("params") or {})
    return {}


def is_request(message: JSONRPCMessage) -> bool:
    """Check if the message is a JSON-RPC request (has id and method)."""
    return isinstance(message.root, JSONRPCRequest)


def is_response(message: JSONRPCMessage) -> bool:
    """Check if the message is a JSON-RPC response or error (has id, no method)."""
    return isinstance(message.root, JSONRPCResponse | JSONRPCError)


def is_error(message: JSONRPCMessage) -> bool:
    """Check if the message is a JSON-RPC error response."""
    return isinstance(message.root, JSONRPCError)


def is_notification(message: JSONRPCMessage) -> bool:
    """Check if the message is a JSON-RPC notification (has method, no id)."""
    return isinstance(message.root, JSONRPCNotification)
