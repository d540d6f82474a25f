"""HTTP/HTTPS transport for mcp-pentester.

Stateless: every outbound message is its own POST and the response body, if
any, is the reply. Nothing is held open between requests except the httpx
connection pool and a minimal cookie jar.
"""

from __future__ import annotations

import json
import logging

import httpx
from mcp.types import JSONRPCMessage

from mcp_pentester.config import TransportConfig
from mcp_pentester.correlation import to_payload, validate_message
from mcp_pentester.errors import (
    ConfigurationError,
    HttpStatusError,
    NonJsonResponseError,
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
    body_preview,
    build_auth_headers,
    build_ssl_context,
    describe_http_error,
    http_client_options,
    merge_headers,
)

logger = logging.getLogger(__name__)


class HttpTransport:
    """POST-per-message transport.

    Header precedence, lowest first: content headers, custom headers, auth
    headers, then the ``Cookie`` header built from Set-Cookie values the
    server sent earlier.

    Args:
        config: Transport configuration with ``type`` http or https.
        timeout: Per-request timeout in seconds.
        http_transport: Optional httpx transport replacing the network stack.
    """

    def __init__(
        self,
        config: TransportConfig,
        timeout: float = REQUEST_TIMEOUT,
        http_transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        if not config.url:
            raise ConfigurationError(f"URL required for {config.type.value} transport")
        self.config = config
        self.url = config.url
        self.transport_type = config.type
        self.events = EventHub()
        self.rpc = JsonRpcCorrelator(self.send, self.events, timeout=timeout)
        self.cookies = CookieJar()
        self._timeout = timeout
        self._http_transport = http_transport
        self._ssl_context = build_ssl_context(config.certificate) if config.type == TransportType.HTTPS else None
        self._auth_headers = build_auth_headers(config.auth)
        self._client: httpx.AsyncClient | None = None

    @property
    def connected(self) -> bool:
        """True between connect() and disconnect()."""
        return self._client is not None

    async def connect(self) -> None:
        """Create the HTTP client. No request is made until the first send."""
        if self._client is not None:
            return
        options = http_client_options(
            self.config,
            self._ssl_context,
            timeout=httpx.Timeout(self._timeout),
            transport=self._http_transport,
        )
        try:
            self._client = httpx.AsyncClient(**options)
        except (ValueError, ImportError) as exc:
            # Unsupported proxy scheme or missing socks extra
            raise TransportConnectionError(f"Failed to configure HTTP client: {exc}", cause=exc) from exc
        logger.debug("HTTP transport ready for %s", self.url)
        self.events.emit(TransportEvent.CONNECTED)

    async def disconnect(self) -> None:
        """Close the HTTP client and reject pending requests."""
        client = self._client
        self._client = None
        if client is not None:
            await client.aclose()
        self.rpc.reject_all(TransportClosedError("Transport disconnected"))

    def request_headers(self) -> dict[str, str]:
        """Headers for the next POST, in precedence order."""
        return merge_headers(
            JSON_CONTENT_HEADERS,
            self.config.headers,
            self._auth_headers,
            self.cookies.header(),
        )

    async def send(self, message: JSONRPCMessage) -> None:
        """POST one message and dispatch the reply, if any.

        Raises:
            TransportError: If the transport is not connected.
            TransportConnectionError: On network failure.
            HttpStatusError: On HTTP status 400 or above.
            NonJsonResponseError: If a successful body is not JSON.
            FramingError: If the body is JSON but not a JSON-RPC message.
        """
        client = self._client
        if client is None:
            raise TransportError("Transport not connected")
        self.events.emit(TransportEvent.SEND, message)

        try:
            response = await client.post(self.url, json=to_payload(message), headers=self.request_headers())
        except httpx.HTTPError as exc:
            error = TransportConnectionError(f"HTTP request failed: {exc}", cause=exc)
            self.events.emit(TransportEvent.ERROR, error)
            raise error from exc

        self.cookies.update(response.headers.get_list("set-cookie"))
        # The jar above is the only cookie state; keep httpx from adding its own
        client.cookies.clear()

        if response.status_code >= 400:
            error = HttpStatusError(describe_http_error(response, self.cookies), response.status_code)
            self.events.emit(TransportEvent.ERROR, error)
            raise error

        body = response.text
        if not body.strip():
            return
        try:
            data = json.loads(body)
        except json.JSONDecodeError as exc:
            raise NonJsonResponseError(
                f"Server returned non-JSON response (HTTP {response.status_code}): {body_preview(body)}"
            ) from exc
        self.rpc.deliver(validate_message(data, raw=body))
