"""Integration smoke tests: McpClient against a real FastMCP server over stdio.

Spawns fixtures/target_server.py with the current interpreter and drives a
full session: handshake, enumeration, tool/resource/prompt calls, a request
for an unimplemented method, traffic correlation and disconnect.
"""

from __future__ import annotations

import sys
from pathlib import Path

import pytest

from mcp_pentester.client import ClientEvent, McpClient
from mcp_pentester.config import TransportConfig
from mcp_pentester.errors import JsonRpcError
from mcp_pentester.feed import correlate
from mcp_pentester.models import ExchangeStatus, TransportType
from mcp_pentester.traffic import TrafficLog

# Path to the FastMCP fixture server
FIXTURE_PATH = Path(__file__).resolve().parent.parent / "fixtures" / "target_server.py"


def _config() -> TransportConfig:
    return TransportConfig(type=TransportType.STDIO, command=sys.executable, args=[str(FIXTURE_PATH)])


class TestStdioSession:
    """End-to-end session against the fixture server."""

    async def test_enumerates_fixture(self) -> None:
        client = McpClient(_config())
        try:
            result = await client.connect()
            assert result["serverInfo"]["name"] == "pentest-target-server"
            state = client.state
            assert {tool.name for tool in state.tools} == {"file_search", "safe_echo"}
            assert [str(resource.uri) for resource in state.resources] == ["config://app"]
            assert [prompt.name for prompt in state.prompts] == ["summarize"]
        finally:
            await client.disconnect()

    async def test_tool_resource_and_prompt(self) -> None:
        client = McpClient(_config())
        try:
            await client.connect()
            called = await client.call_tool("safe_echo", {"message": "'; cat /etc/passwd #"})
            assert called["content"][0]["text"] == "'; cat /etc/passwd #"

            read = await client.read_resource("config://app")
            assert "admin_email" in read["contents"][0]["text"]

            prompt = await client.get_prompt("summarize", {"text": "quarterly numbers"})
            assert "quarterly numbers" in prompt["messages"][0]["content"]["text"]
        finally:
            await client.disconnect()

    async def test_unknown_method_is_json_rpc_error(self) -> None:
        client = McpClient(_config())
        try:
            await client.connect()
            with pytest.raises(JsonRpcError):
                await client.send_raw("admin/dumpSecrets")
        finally:
            await client.disconnect()

    async def test_traffic_is_logged_and_correlated(self, tmp_path: Path) -> None:
        client = McpClient(_config())
        disconnected: list[object] = []
        client.events.on(ClientEvent.DISCONNECTED, disconnected.append)
        try:
            await client.connect()
            await client.call_tool("file_search", {"directory": "/tmp", "pattern": "*.key"})
        finally:
            await client.disconnect()
        assert len(disconnected) == 1

        exchanges = correlate(client.traffic_log.get_entries())
        assert exchanges[0].method == "initialize"
        assert exchanges[0].status == ExchangeStatus.OK
        assert exchanges[1].status == ExchangeStatus.NOTIFICATION
        assert exchanges[-1].method == "tools/call"
        assert exchanges[-1].status == ExchangeStatus.OK

        path = tmp_path / "traffic.json"
        client.traffic_log.save(path)
        assert len(TrafficLog.load(path)) == len(client.traffic_log)
