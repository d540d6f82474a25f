"""CLI entry point for mcp-pentester."""

from __future__ import annotations

import asyncio
import functools
import json
import logging
import shlex
from collections.abc import Callable
from pathlib import Path
from typing import Any, TypeVar

import click
from pydantic import ValidationError

from mcp_pentester import __version__
from mcp_pentester.config import AuthConfig, CertificateConfig, ProxyConfig, TransportConfig
from mcp_pentester.errors import ConfigurationError, FramingError, McpPentesterError
from mcp_pentester.models import AuthType, ProxyProtocol, TransportType

logger = logging.getLogger(__name__)

F = TypeVar("F", bound=Callable[..., Any])

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"

PEM_FILE = click.Path(exists=True, dir_okay=False, path_type=Path)
OUTPUT_FILE = click.Path(dir_okay=False, path_type=Path)

EXAMPLE_CONFIGS: dict[str, dict[str, Any]] = {
    "stdio": {
        "type": "stdio",
        "command": "npx",
        "args": ["-y", "@modelcontextprotocol/server-filesystem", "/tmp"],
        "env": {},
    },
    "http": {
        "type": "http",
        "url": "http://localhost:3000/mcp",
        "proxy": {"host": "127.0.0.1", "port": 8080, "protocol": "http"},
    },
    "https": {
        "type": "https",
        "url": "https://api.example.com/mcp",
        "proxy": {
            "host": "127.0.0.1",
            "port": 8080,
            "protocol": "http",
            "auth": {"username": "user", "password": "pass"},
        },
        "auth": {"type": "bearer", "token": "YOUR_TOKEN"},
        "certificate": {"ca": "burp-ca.pem", "rejectUnauthorized": True},
    },
    "websocket": {
        "type": "wss",
        "url": "wss://api.example.com/mcp",
        "proxy": {"host": "127.0.0.1", "port": 9050, "protocol": "socks5"},
    },
    "sse": {
        "type": "sse",
        "url": "http://localhost:3000/sse",
        "headers": {"X-Request-Source": "mcp-pentester"},
    },
}


def _configure_logging(level: str, log_file: Path | None) -> None:
    """Send log records to a file, or to stderr if nothing else handles them."""
    root = logging.getLogger()
    root.setLevel(level.upper())
    handler: logging.Handler
    if log_file is not None:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        handler = logging.FileHandler(log_file, encoding="utf-8")
    elif not root.handlers:
        handler = logging.StreamHandler()
    else:
        return
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    root.addHandler(handler)


def connection_options(func: F) -> F:
    """Attach the options that describe how to reach the server."""
    options = [
        click.option(
            "--transport",
            "-t",
            type=click.Choice([t.value for t in TransportType], case_sensitive=False),
            default=TransportType.STDIO.value,
            show_default=True,
            help="Transport type.",
        ),
        click.option("--url", "-u", type=str, help="Server URL (http, https, ws, wss, sse)."),
        click.option("--command", "-c", "server_command", type=str, help="Server command line (stdio)."),
        click.option("--arg", "-a", "server_args", multiple=True, help="Extra server argument (stdio)."),
        click.option("--env", "env_vars", multiple=True, metavar="KEY=VALUE", help="Server env var (stdio)."),
        click.option("--header", "-H", "headers", multiple=True, metavar="'NAME: VALUE'", help="Request header."),
        click.option("--proxy-host", type=str, help="Upstream proxy host."),
        click.option("--proxy-port", type=click.IntRange(1, 65535), help="Upstream proxy port."),
        click.option(
            "--proxy-protocol",
            type=click.Choice([p.value for p in ProxyProtocol], case_sensitive=False),
            default=ProxyProtocol.HTTP.value,
            show_default=True,
            help="Upstream proxy protocol.",
        ),
        click.option("--proxy-user", type=str, help="Proxy username."),
        click.option("--proxy-pass", type=str, help="Proxy password."),
        click.option(
            "--auth-type",
            type=click.Choice([AuthType.BEARER.value, AuthType.BASIC.value], case_sensitive=False),
            help="Authentication scheme (bearer is implied by --token).",
        ),
        click.option("--token", type=str, help="Bearer token."),
        click.option("--auth-user", type=str, help="Basic auth username."),
        click.option("--auth-pass", type=str, help="Basic auth password."),
        click.option("--cert", type=PEM_FILE, help="Client certificate (PEM)."),
        click.option("--key", type=PEM_FILE, help="Client private key (PEM)."),
        click.option("--ca", type=PEM_FILE, help="CA bundle (PEM)."),
        click.option("--passphrase", type=str, help="Private key passphrase."),
        click.option("--insecure", "-k", is_flag=True, default=False, help="Skip TLS certificate verification."),
        click.option(
            "--config",
            "-f",
            "config_file",
            type=click.Path(exists=True, dir_okay=False, path_type=Path),
            help="Load the connection from a JSON config file instead of options.",
        ),
        click.option("--profile", type=str, help="Named configuration inside a gen-config file."),
    ]
    for option in reversed(options):
        func = option(func)
    return func


def _parse_pairs(values: tuple[str, ...], separator: str, option: str) -> dict[str, str]:
    pairs: dict[str, str] = {}
    for value in values:
        name, sep, rest = value.partition(separator)
        if not sep or not name.strip():
            raise click.UsageError(f"Invalid {option} value {value!r}; expected NAME{separator}VALUE.")
        pairs[name.strip()] = rest.strip() if separator == ":" else rest
    return pairs


def build_config(
    transport: str,
    url: str | None = None,
    server_command: str | None = None,
    server_args: tuple[str, ...] = (),
    env_vars: tuple[str, ...] = (),
    headers: tuple[str, ...] = (),
    proxy_host: str | None = None,
    proxy_port: int | None = None,
    proxy_protocol: str = ProxyProtocol.HTTP.value,
    proxy_user: str | None = None,
    proxy_pass: str | None = None,
    auth_type: str | None = None,
    token: str | None = None,
    auth_user: str | None = None,
    auth_pass: str | None = None,
    cert: Path | None = None,
    key: Path | None = None,
    ca: Path | None = None,
    passphrase: str | None = None,
    insecure: bool = False,
    config_file: Path | None = None,
    profile: str | None = None,
) -> TransportConfig:
    """Build a TransportConfig from CLI options or a config file.

    Returns:
        A configuration whose target fields are present.

    Raises:
        click.UsageError: If the options are inconsistent or incomplete.
    """
    if config_file is not None:
        try:
            config = TransportConfig.from_file(config_file, profile=profile)
            config.validate_target()
        except ConfigurationError as exc:
            raise click.UsageError(str(exc)) from exc
        return config

    command: str | None = None
    args = list(server_args)
    if server_command:
        parts = shlex.split(server_command)
        command, args = parts[0], [*parts[1:], *args]

    proxy = None
    if proxy_host or proxy_port:
        if not (proxy_host and proxy_port):
            raise click.UsageError("--proxy-host and --proxy-port must be given together.")
        proxy = ProxyConfig(
            host=proxy_host,
            port=proxy_port,
            protocol=ProxyProtocol(proxy_protocol.lower()),
            username=proxy_user,
            password=proxy_pass,
        )

    auth = None
    if auth_type == AuthType.BASIC or (auth_type is None and (auth_user or auth_pass) and not token):
        if not (auth_user and auth_pass):
            raise click.UsageError("Basic auth needs --auth-user and --auth-pass.")
        auth = AuthConfig(type=AuthType.BASIC, username=auth_user, password=auth_pass)
    elif auth_type == AuthType.BEARER or token:
        if not token:
            raise click.UsageError("Bearer auth needs --token.")
        auth = AuthConfig(type=AuthType.BEARER, token=token)

    certificate = None
    if cert or key or ca or passphrase or insecure:
        certificate = CertificateConfig(
            cert=cert,
            key=key,
            ca=ca,
            passphrase=passphrase,
            reject_unauthorized=False if insecure else None,
        )

    try:
        config = TransportConfig(
            type=TransportType(transport.lower()),
            url=url,
            command=command,
            args=args,
            env=_parse_pairs(env_vars, "=", "--env"),
            proxy=proxy,
            auth=auth,
            certificate=certificate,
            headers=_parse_pairs(headers, ":", "--header"),
        )
        config.validate_target()
    except (ValidationError, ConfigurationError) as exc:
        raise click.UsageError(str(exc)) from exc
    return config


def _parse_json_object(value: str | None, option: str) -> dict[str, Any] | None:
    if value is None:
        return None
    try:
        parsed = json.loads(value)
    except json.JSONDecodeError as exc:
        raise click.UsageError(f"{option} is not valid JSON: {exc}") from exc
    if not isinstance(parsed, dict):
        raise click.UsageError(f"{option} must be a JSON object.")
    return parsed


@click.group()
@click.version_option(version=__version__, prog_name="mcp-pentester")
@click.option(
    "--log-level",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    default="WARNING",
    show_default=True,
    help="Logging verbosity.",
)
@click.option(
    "--log-file",
    type=click.Path(dir_okay=False, path_type=Path),
    help="Write logs to this file (recommended with the dashboard).",
)
def main(log_level: str, log_file: Path | None) -> None:
    """Security-testing client for Model Context Protocol servers."""
    _configure_logging(log_level, log_file)


@main.command()
@connection_options
@click.option("--traffic-file", type=OUTPUT_FILE, help="Save traffic here (s key and on exit).")
def connect(traffic_file: Path | None, **options: Any) -> None:
    """Connect and open the traffic dashboard."""
    config = build_config(**options)

    from mcp_pentester.tui.app import ClientApp

    app = ClientApp(config=config, traffic_file=traffic_file)
    app.run()


@main.command(name="enumerate")
@connection_options
@click.option("--traffic-file", type=OUTPUT_FILE, help="Save the traffic log to this file.")
def enumerate_command(traffic_file: Path | None, **options: Any) -> None:
    """Connect, list tools, resources and prompts, then disconnect."""
    config = build_config(**options)
    asyncio.run(_run_session(config, traffic_file, _print_capabilities))


@main.command()
@connection_options
@click.option("--tool", type=str, help="Tool to call.")
@click.option("--resource", type=str, help="Resource URI to read.")
@click.option("--prompt", type=str, help="Prompt to render.")
@click.option("--method", type=str, help="Arbitrary JSON-RPC method to call.")
@click.option("--params", "params_json", type=str, help="Arguments/params as a JSON object.")
@click.option("--traffic-file", type=OUTPUT_FILE, help="Save the traffic log to this file.")
def invoke(
    tool: str | None,
    resource: str | None,
    prompt: str | None,
    method: str | None,
    params_json: str | None,
    traffic_file: Path | None,
    **options: Any,
) -> None:
    """Call one tool, resource, prompt or raw method and print the result."""
    targets = (tool, resource, prompt, method)
    if sum(1 for value in targets if value) != 1:
        raise click.UsageError("Give exactly one of --tool, --resource, --prompt or --method.")
    params = _parse_json_object(params_json, "--params")
    config = build_config(**options)

    async def _invoke(client: Any) -> None:
        if tool:
            result = await client.call_tool(tool, params)
        elif resource:
            result = await client.read_resource(resource)
        elif prompt:
            result = await client.get_prompt(prompt, params)
        else:
            result = await client.send_raw(method, params)
        click.echo(json.dumps(result, indent=2))

    asyncio.run(_run_session(config, traffic_file, _invoke))


async def _run_session(
    config: TransportConfig,
    traffic_file: Path | None,
    action: Callable[[Any], Any],
) -> None:
    """Connect, run ``action(client)``, then disconnect and save traffic.

    Raises:
        click.ClickException: On any client failure.
    """
    from mcp_pentester.client import McpClient

    client = McpClient(config)
    try:
        await client.connect()
        await action(client)
    except McpPentesterError as exc:
        raise click.ClickException(str(exc)) from exc
    finally:
        await client.disconnect()
        if traffic_file is not None:
            client.traffic_log.save(traffic_file)
            click.echo(f"Traffic saved to {traffic_file}", err=True)


async def _print_capabilities(client: Any) -> None:
    state = client.state
    if state.server_info is not None:
        click.echo(f"Server: {state.server_info.name} {state.server_info.version}")
    if state.protocol_version:
        click.echo(f"Protocol: {state.protocol_version}")

    click.echo(f"Tools ({len(state.tools)}):")
    for tool in state.tools:
        click.echo(f"  - {tool.name}" + (f": {tool.description}" if tool.description else ""))
    click.echo(f"Resources ({len(state.resources)}):")
    for resource in state.resources:
        line = f"  - {resource.name} ({resource.uri})"
        click.echo(line + (f": {resource.description}" if resource.description else ""))
    click.echo(f"Prompts ({len(state.prompts)}):")
    for prompt in state.prompts:
        click.echo(f"  - {prompt.name}" + (f": {prompt.description}" if prompt.description else ""))


@main.command()
@click.option("--traffic-file", type=click.Path(exists=True, dir_okay=False, path_type=Path), required=True)
@click.option("--verbose", "-v", is_flag=True, default=False, help="Show full JSON payloads.")
@click.option("--all", "show_all", is_flag=True, default=False, help="Include unsupported-listing noise.")
def inspect(traffic_file: Path, verbose: bool, show_all: bool) -> None:
    """Print a saved traffic log as correlated exchanges (non-interactive)."""
    from mcp_pentester.feed import correlate, format_exchange
    from mcp_pentester.traffic import TrafficLog

    try:
        log = TrafficLog.load(traffic_file)
    except (OSError, ValueError, FramingError) as exc:
        raise click.ClickException(f"Failed to load traffic log: {exc}") from exc

    entries = log.get_entries()
    click.echo(f"Transport: {log.transport.value}")
    if log.target:
        click.echo(f"Target: {log.target}")
    click.echo(f"Messages: {len(entries)}")
    click.echo("---")

    for exchange in correlate(entries, include_suppressed=show_all):
        click.echo(f"  {format_exchange(exchange)}")
        if verbose:
            for entry in (exchange.request, exchange.response):
                if entry is not None:
                    click.echo(f"       {entry.direction.value}: {entry.raw}")


@main.command(name="gen-config")
@click.option(
    "--output",
    "-o",
    type=click.Path(dir_okay=False, path_type=Path),
    default=Path("mcp-config.json"),
    show_default=True,
    help="Output file path.",
)
def gen_config(output: Path) -> None:
    """Write example connection configurations."""
    try:
        output.parent.mkdir(parents=True, exist_ok=True)
        output.write_text(json.dumps(EXAMPLE_CONFIGS, indent=2), encoding="utf-8")
    except OSError as exc:
        raise click.ClickException(f"Failed to write {output}: {exc}") from exc
    click.echo(f"Example configurations written to: {output}")
    click.echo("")
    click.echo("Example usage:")
    click.echo(f"  mcp-pentester connect --config {output} --profile stdio")

