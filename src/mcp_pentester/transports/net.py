"""Shared network plumbing for the HTTP, WebSocket and SSE transports.

Builds auth headers, TLS contexts and httpx client options from a
TransportConfig, merges header layers, keeps a minimal cookie jar and turns
HTTP error statuses into diagnostic messages.
"""

from __future__ import annotations

import base64
import json
import logging
import ssl
from collections.abc import Iterable, Mapping
from typing import Any

import httpx

from mcp_pentester.config import AuthConfig, CertificateConfig, TransportConfig
from mcp_pentester.errors import ConfigurationError
from mcp_pentester.models import AuthType

logger = logging.getLogger(__name__)

# Characters of an error body echoed into diagnostics
BODY_PREVIEW_CHARS = 200

JSON_CONTENT_HEADERS = {
    "Content-Type": "application/json",
    "Accept": "application/json, text/event-stream",
}


def build_auth_headers(auth: AuthConfig | None) -> dict[str, str]:
    """Derive request headers from credentials.

    Args:
        auth: Credentials, or None.

    Returns:
        ``Authorization`` for bearer/basic, the custom map verbatim for
        custom, or an empty dict when the needed fields are missing.
    """
    if auth is None:
        return {}
    if auth.type == AuthType.BEARER:
        return {"Authorization": f"Bearer {auth.token}"} if auth.token else {}
    if auth.type == AuthType.BASIC:
        if auth.username and auth.password:
            credentials = base64.b64encode(f"{auth.username}:{auth.password}".encode()).decode("ascii")
            return {"Authorization": f"Basic {credentials}"}
        return {}
    return dict(auth.headers)


def merge_headers(*layers: Mapping[str, str]) -> dict[str, str]:
    """Merge header maps; later layers win, names compare case-insensitively."""
    merged: dict[str, str] = {}
    for layer in layers:
        for name, value in layer.items():
            for existing in [key for key in merged if key.lower() == name.lower()]:
                del merged[existing]
            merged[name] = value
    return merged


def build_ssl_context(certificate: CertificateConfig | None) -> ssl.SSLContext | None:
    """Build a TLS context from certificate settings.

    Files are read here, once, so a transport built from a config does not
    touch the filesystem again.

    Args:
        certificate: TLS material, or None for library defaults.

    Returns:
        A configured SSLContext, or None when nothing is configured.

    Raises:
        ConfigurationError: If a file cannot be read or the material is invalid.
    """
    if certificate is None:
        return None
    context = ssl.create_default_context()
    try:
        if certificate.ca is not None:
            context.load_verify_locations(cadata=certificate.ca.read_text(encoding="utf-8"))
        if certificate.cert is not None:
            context.load_cert_chain(
                certfile=str(certificate.cert),
                keyfile=str(certificate.key) if certificate.key is not None else None,
                password=certificate.passphrase,
            )
    except (OSError, ssl.SSLError) as exc:
        raise ConfigurationError(f"Failed to load TLS material: {exc}") from exc
    if certificate.reject_unauthorized is False:
        context.check_hostname = False
        context.verify_mode = ssl.CERT_NONE
    return context


def http_client_options(
    config: TransportConfig,
    ssl_context: ssl.SSLContext | None,
    *,
    timeout: httpx.Timeout,
    transport: httpx.AsyncBaseTransport | None = None,
) -> dict[str, Any]:
    """Keyword arguments for ``httpx.AsyncClient``.

    Environment proxy settings are ignored; only the configured proxy is
    used. An injected ``transport`` replaces the network stack and the proxy.

    Args:
        config: The transport configuration.
        ssl_context: TLS context for HTTPS targets, if any.
        timeout: Client timeouts.
        transport: Optional httpx transport override.

    Returns:
        Options dict for ``httpx.AsyncClient(**options)``.
    """
    options: dict[str, Any] = {
        "timeout": timeout,
        "trust_env": False,
        "follow_redirects": False,
    }
    if ssl_context is not None:
        options["verify"] = ssl_context
    if transport is not None:
        options["transport"] = transport
    elif config.proxy is not None:
        options["proxy"] = config.proxy.dial_url()
    return options


class CookieJar:
    """Minimal name=value cookie store fed by Set-Cookie headers.

    No expiry, path or domain matching: every cookie seen is sent back on
    every later request to the same transport.
    """

    def __init__(self) -> None:
        self._cookies: dict[str, str] = {}

    def __len__(self) -> int:
        return len(self._cookies)

    def items(self) -> list[tuple[str, str]]:
        """Stored cookies in insertion order."""
        return list(self._cookies.items())

    def update(self, set_cookie_values: Iterable[str]) -> None:
        """Store the name=value pair of each Set-Cookie header value."""
        for header in set_cookie_values:
            pair = header.split(";", 1)[0]
            name, sep, value = pair.partition("=")
            name = name.strip()
            value = value.strip()
            if not sep or not name or not value:
                continue
            self._cookies[name] = value

    def header(self) -> dict[str, str]:
        """A ``Cookie`` header for the stored cookies, or an empty dict."""
        if not self._cookies:
            return {}
        return {"Cookie": "; ".join(f"{name}={value}" for name, value in self._cookies.items())}


def describe_http_error(response: httpx.Response, cookies: CookieJar | None = None) -> str:
    """Turn an HTTP error response into a diagnostic message.

    Args:
        response: A response with status >= 400 whose body has been read.
        cookies: Cookies received so far, listed in the session-id hint.

    Returns:
        ``HTTP <status> <reason>`` followed by the body's error detail and,
        for plain-text bodies, hints for common failures.
    """
    status = response.status_code
    message = f"HTTP {status} {response.reason_phrase or 'Error'}"
    body = response.text
    text = body.strip()
    if not text:
        return message

    content_type = response.headers.get("content-type", "")
    if "application/json" in content_type:
        detail: Any = None
        try:
            parsed = json.loads(body)
        except json.JSONDecodeError:
            parsed = None
        if isinstance(parsed, dict):
            detail = parsed.get("error") or parsed.get("message")
        if detail:
            if not isinstance(detail, str):
                detail = json.dumps(detail)
            return f"{message}: {detail}"
        return f"{message}: {body[:BODY_PREVIEW_CHARS]}"

    excerpt = text[:BODY_PREVIEW_CHARS]
    message += f": {excerpt}"
    if status == 401:
        message += " (Authentication required - check your auth token/credentials)"
    elif status == 403:
        message += " (Forbidden - check your permissions)"
    elif status == 404:
        message += " (Not found - check the URL path)"
    elif status == 400 and "sessionid" in excerpt.lower():
        message += "\n\nTip: The server requires a sessionid. This is typically provided by:"
        message += "\n  1. A Set-Cookie header in a previous response (check cookies)"
        message += "\n  2. A separate authentication endpoint"
        message += '\n  3. As a custom header: --header "sessionid: VALUE"'
        message += '\n  4. As a query parameter: --url "http://...?sessionid=VALUE"'
        if cookies:
            message += "\n\nCookies received from server:"
            for name, value in cookies.items():
                suffix = "..." if len(value) > 20 else ""
                message += f"\n  {name}={value[:20]}{suffix}"
    return message


def body_preview(text: str) -> str:
    """First characters of a body, with an ellipsis when truncated."""
    stripped = text.strip()
    suffix = "..." if len(stripped) > BODY_PREVIEW_CHARS else ""
    return f"{stripped[:BODY_PREVIEW_CHARS]}{suffix}"
