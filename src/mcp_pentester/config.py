"""Connection configuration for mcp-pentester.

Pydantic models describing how to reach an MCP server: the transport type
and its target, an optional upstream proxy, credentials and TLS material.
Field aliases accept the camelCase layout of JSON config files, e.g.::

    {
      "type": "https",
      "url": "https://api.example.com/mcp",
      "proxy": {"host": "127.0.0.1", "port": 8080, "auth": {"username": "u", "password": "p"}},
      "certificate": {"ca": "ca.pem", "rejectUnauthorized": false}
    }
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any
from urllib.parse import quote

from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

from mcp_pentester.errors import ConfigurationError
from mcp_pentester.models import AuthType, ProxyProtocol, TransportType

_URL_TRANSPORTS = frozenset(
    {TransportType.HTTP, TransportType.HTTPS, TransportType.WS, TransportType.WSS, TransportType.SSE}
)


class ProxyConfig(BaseModel):
    """Upstream proxy that all traffic is tunnelled through.

    Args:
        host: Proxy hostname or IP.
        port: Proxy port.
        protocol: http, https, socks or socks5 (socks is socks5).
        username: Optional proxy username.
        password: Optional proxy password.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    host: str
    port: int = Field(ge=1, le=65535)
    protocol: ProxyProtocol = ProxyProtocol.HTTP
    username: str | None = None
    password: str | None = None

    @model_validator(mode="before")
    @classmethod
    def _flatten_auth(cls, data: Any) -> Any:
        # Config files nest credentials as {"auth": {"username", "password"}}
        if isinstance(data, dict) and isinstance(data.get("auth"), dict):
            data = dict(data)
            auth = data.pop("auth")
            data.setdefault("username", auth.get("username"))
            data.setdefault("password", auth.get("password"))
        return data

    def dial_url(self) -> str:
        """Build the proxy dial string.

        Returns:
            ``<protocol>://[user:pass@]host:port`` with socks mapped to socks5.
            Credentials are percent-encoded.
        """
        scheme = "socks5" if self.is_socks else self.protocol.value
        credentials = ""
        if self.username and self.password:
            credentials = f"{quote(self.username, safe='')}:{quote(self.password, safe='')}@"
        return f"{scheme}://{credentials}{self.host}:{self.port}"

    @property
    def is_socks(self) -> bool:
        """True for socks/socks5 proxies."""
        return self.protocol in (ProxyProtocol.SOCKS, ProxyProtocol.SOCKS5)


class AuthConfig(BaseModel):
    """Credentials turned into request headers.

    Args:
        type: bearer, basic or custom.
        token: Bearer token.
        username: Basic auth username.
        password: Basic auth password.
        headers: Custom headers merged verbatim.
    """

    model_config = ConfigDict(frozen=True)

    type: AuthType
    token: str | None = None
    username: str | None = None
    password: str | None = None
    headers: dict[str, str] = Field(default_factory=dict)


class CertificateConfig(BaseModel):
    """TLS material for HTTPS and WSS targets.

    Args:
        cert: Path to a PEM client certificate.
        key: Path to the client certificate's private key.
        ca: Path to a PEM CA bundle used to verify the server.
        passphrase: Passphrase for an encrypted private key.
        reject_unauthorized: When False, peer certificates are not verified.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    cert: Path | None = None
    key: Path | None = None
    ca: Path | None = None
    passphrase: str | None = None
    reject_unauthorized: bool | None = Field(default=None, alias="rejectUnauthorized")


class TransportConfig(BaseModel):
    """Everything needed to build a transport.

    Args:
        type: Transport type.
        url: Target URL (http, https, ws, wss, sse).
        command: Executable to spawn (stdio).
        args: Command-line arguments (stdio).
        env: Extra environment variables merged over the inherited
            environment (stdio).
        proxy: Optional upstream proxy.
        auth: Optional credentials.
        certificate: Optional TLS material.
        headers: Custom headers sent with every request.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    type: TransportType
    url: str | None = None
    command: str | None = None
    args: list[str] = Field(default_factory=list)
    env: dict[str, str] = Field(default_factory=dict)
    proxy: ProxyConfig | None = None
    auth: AuthConfig | None = None
    certificate: CertificateConfig | None = None
    headers: dict[str, str] = Field(default_factory=dict)

    def validate_target(self) -> None:
        """Check that the fields required by the transport type are present.

        Raises:
            ConfigurationError: If ``command`` (stdio) or ``url`` is missing.
        """
        if self.type == TransportType.STDIO:
            if not self.command:
                raise ConfigurationError("Command required for stdio transport")
        elif self.type in _URL_TRANSPORTS:
            if not self.url:
                raise ConfigurationError(f"URL required for {self.type.value} transport")
        else:  # pragma: no cover - enum is exhaustive
            raise ConfigurationError(f"Unsupported transport type: {self.type}")

    @property
    def target(self) -> str:
        """Human-readable target: the command line or the URL."""
        if self.type == TransportType.STDIO:
            return " ".join([self.command or "", *self.args]).strip()
        return self.url or ""

    @classmethod
    def from_file(cls, path: Path, profile: str | None = None) -> TransportConfig:
        """Load a configuration from a JSON file.

        The file holds either one configuration object or, as written by
        ``gen-config``, an object of named configurations from which
        ``profile`` selects one.

        Args:
            path: File to read.
            profile: Name of the configuration to pick from a multi-profile file.

        Returns:
            The parsed TransportConfig.

        Raises:
            ConfigurationError: If the file is unreadable or invalid, or the
                profile is missing.
        """
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except OSError as exc:
            raise ConfigurationError(f"Failed to read config file {path}: {exc}") from exc
        except json.JSONDecodeError as exc:
            raise ConfigurationError(f"Config file {path} is not valid JSON: {exc}") from exc
        if profile is not None:
            if not isinstance(data, dict) or not isinstance(data.get(profile), dict):
                raise ConfigurationError(f"Profile {profile!r} not found in {path}")
            data = data[profile]
        try:
            return cls.model_validate(data)
        except ValidationError as exc:
            raise ConfigurationError(f"Invalid config file {path}: {exc}") from exc
