"""Exception types for mcp-pentester.

Configuration problems are raised before any I/O. Transport problems
propagate to the caller of connect()/send()/request(). Framing problems are
reported through the transport's ``error`` event and never end a stream.
"""

from __future__ import annotations

from typing import Any

# Standard JSON-RPC 2.0 error codes
PARSE_ERROR = -32700
INVALID_REQUEST = -32600
METHOD_NOT_FOUND = -32601
INVALID_PARAMS = -32602
INTERNAL_ERROR = -32603


class McpPentesterError(Exception):
    """Base exception for mcp-pentester."""


class ConfigurationError(McpPentesterError):
    """Missing or invalid configuration for the chosen transport."""


class TransportError(McpPentesterError):
    """Base exception for channel-level failures."""

    def __init__(self, message: str, cause: Exception | None = None) -> None:
        super().__init__(message)
        self.cause = cause


class TransportConnectionError(TransportError):
    """Spawn, socket, handshake or HTTP-layer failure."""


class TransportClosedError(TransportError):
    """The transport was disconnected while a request was outstanding."""


class HttpStatusError(TransportError):
    """The server answered with an HTTP status of 400 or above.

    Args:
        message: Diagnostic message including status line and body excerpt.
        status_code: The HTTP status code.
    """

    def __init__(self, message: str, status_code: int) -> None:
        super().__init__(message)
        self.status_code = status_code


class NonJsonResponseError(TransportError):
    """A successful HTTP response whose body is not JSON."""


class FramingError(McpPentesterError):
    """A line, frame or body could not be parsed as a JSON-RPC message.

    Args:
        message: Description of the failure.
        raw: The offending text.
    """

    def __init__(self, message: str, raw: str = "") -> None:
        super().__init__(message)
        self.raw = raw


class RequestTimeoutError(McpPentesterError):
    """No response arrived before the request timeout."""

    def __init__(self, method: str) -> None:
        super().__init__(f"Request timeout for method: {method}")
        self.method = method


class JsonRpcError(McpPentesterError):
    """A JSON-RPC error response from the server.

    Args:
        code: JSON-RPC error code.
        message: Error message from the server.
        data: Optional error data.
    """

    def __init__(self, code: int, message: str, data: Any = None) -> None:
        super().__init__(message)
        self.code = code
        self.message = message
        self.data = data

    def __str__(self) -> str:
        return f"{self.message} (code {self.code})"

    @property
    def is_method_not_found(self) -> bool:
        """True when the server reported the method as unsupported."""
        return is_method_not_found(self.code, self.message)

    def to_dict(self) -> dict[str, Any]:
        """Convert back to a JSON-RPC error object."""
        error: dict[str, Any] = {"code": self.code, "message": self.message}
        if self.data is not None:
            error["data"] = self.data
        return error


def is_method_not_found(code: int | None, message: str | None) -> bool:
    """Check whether an error code/message means "method not supported".

    Servers are inconsistent here: some answer -32601, others return a
    generic error whose message says the handler is missing.

    Args:
        code: JSON-RPC error code, if any.
        message: Error message, if any.

    Returns:
        True if the error indicates an unimplemented method.
    """
    if code == METHOD_NOT_FOUND:
        return True
    text = (message or "").lower()
    return "not found" in text or "not a function" in text
