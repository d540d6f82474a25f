"""Tests for mcp_pentester.feed — request/response correlation over the traffic log."""

from __future__ import annotations

from typing import Any

from mcp.types import (
    ErrorData,
    JSONRPCError,
    JSONRPCMessage,
    JSONRPCNotification,
    JSONRPCRequest,
    JSONRPCResponse,
)

from mcp_pentester.feed import (
    correlate,
    describe_entry,
    find_request,
    find_response,
    format_exchange,
    is_suppressed,
)
from mcp_pentester.models import Direction, ExchangeStatus, TrafficLogEntry, TransportType
from mcp_pentester.traffic import TrafficLog

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _request(msg_id: int | str, method: str = "tools/list", params: dict[str, Any] | None = None) -> JSONRPCMessage:
    if params is None:
        return JSONRPCMessage(JSONRPCRequest(jsonrpc="2.0", id=msg_id, method=method))
    return JSONRPCMessage(JSONRPCRequest(jsonrpc="2.0", id=msg_id, method=method, params=params))


def _response(msg_id: int | str) -> JSONRPCMessage:
    return JSONRPCMessage(JSONRPCResponse(jsonrpc="2.0", id=msg_id, result={}))


def _error(msg_id: int | str, code: int = -32601, message: str = "Method not found") -> JSONRPCMessage:
    return JSONRPCMessage(JSONRPCError(jsonrpc="2.0", id=msg_id, error=ErrorData(code=code, message=message)))


def _notification(method: str) -> JSONRPCMessage:
    return JSONRPCMessage(JSONRPCNotification(jsonrpc="2.0", method=method))


def _log(*items: tuple[Direction, JSONRPCMessage]) -> list[TrafficLogEntry]:
    log = TrafficLog(TransportType.STDIO)
    for direction, message in items:
        log.record(direction, message)
    return log.get_entries()


SENT = Direction.SENT
RECEIVED = Direction.RECEIVED

# ---------------------------------------------------------------------------
# Tests: lookups
# ---------------------------------------------------------------------------


class TestFindResponse:
    """Forward scan from a sent request."""

    def test_found(self) -> None:
        entries = _log((SENT, _request(7)), (RECEIVED, _response(7)))
        assert find_response(entries, 0) is entries[1]

    def test_pending(self) -> None:
        entries = _log((SENT, _request(7)))
        assert find_response(entries, 0) is None

    def test_skips_other_ids(self) -> None:
        entries = _log((SENT, _request(1)), (SENT, _request(2)), (RECEIVED, _response(2)), (RECEIVED, _response(1)))
        assert find_response(entries, 0) is entries[3]

    def test_string_id_does_not_match_int(self) -> None:
        entries = _log((SENT, _request(1)), (RECEIVED, _response("1")))
        assert find_response(entries, 0) is None

    def test_not_a_request(self) -> None:
        entries = _log((RECEIVED, _response(1)))
        assert find_response(entries, 0) is None


class TestFindRequest:
    """Backward scan from a received response."""

    def test_found(self) -> None:
        entries = _log((SENT, _request(3)), (RECEIVED, _response(3)))
        assert find_request(entries, 1) is entries[0]

    def test_orphan(self) -> None:
        entries = _log((RECEIVED, _response(3)))
        assert find_request(entries, 0) is None


# ---------------------------------------------------------------------------
# Tests: correlate
# ---------------------------------------------------------------------------


class TestCorrelate:
    """Exchanges and their statuses."""

    def test_ok_then_pending(self) -> None:
        entries = _log((SENT, _request(7)), (RECEIVED, _response(7)), (SENT, _request(8)))
        exchanges = correlate(entries)
        assert [exchange.status for exchange in exchanges] == [ExchangeStatus.OK, ExchangeStatus.PENDING]
        assert exchanges[0].request is entries[0]
        assert exchanges[0].response is entries[1]
        assert exchanges[1].response is None

    def test_error_response(self) -> None:
        entries = _log((SENT, _request(1, "tools/call")), (RECEIVED, _error(1, -32602, "Invalid params")))
        assert correlate(entries)[0].status == ExchangeStatus.ERROR

    def test_notification(self) -> None:
        entries = _log((SENT, _notification("notifications/initialized")))
        exchange = correlate(entries)[0]
        assert exchange.status == ExchangeStatus.NOTIFICATION
        assert exchange.method == "notifications/initialized"

    def test_inbound_messages(self) -> None:
        entries = _log(
            (RECEIVED, _notification("notifications/tools/list_changed")),
            (RECEIVED, _request("srv-1", "roots/list")),
            (RECEIVED, _response(99)),
        )
        exchanges = correlate(entries)
        assert [exchange.status for exchange in exchanges] == [ExchangeStatus.INBOUND] * 3
        assert all(exchange.request is None for exchange in exchanges)

    def test_strict_id_types(self) -> None:
        entries = _log((SENT, _request(1)), (RECEIVED, _response("1")))
        exchanges = correlate(entries)
        assert [exchange.status for exchange in exchanges] == [ExchangeStatus.PENDING, ExchangeStatus.INBOUND]

    def test_ordered_by_start(self) -> None:
        entries = _log(
            (SENT, _request(1, "tools/list")),
            (SENT, _request(2, "resources/list")),
            (RECEIVED, _response(2)),
            (RECEIVED, _response(1)),
        )
        assert [exchange.method for exchange in correlate(entries)] == ["tools/list", "resources/list"]

    def test_evicted_request_makes_response_inbound(self) -> None:
        log = TrafficLog(TransportType.STDIO, capacity=1)
        log.record(SENT, _request(1))
        log.record(RECEIVED, _response(1))
        assert correlate(log.get_entries())[0].status == ExchangeStatus.INBOUND


class TestSuppression:
    """Unsupported listing calls are hidden by default."""

    def test_method_not_found_listing_hidden(self) -> None:
        entries = _log((SENT, _request(1, "prompts/list")), (RECEIVED, _error(1)))
        assert correlate(entries) == []
        assert len(correlate(entries, include_suppressed=True)) == 1

    def test_not_found_message_hidden(self) -> None:
        entries = _log((SENT, _request(1, "resources/list")), (RECEIVED, _error(1, -32603, "Handler not found")))
        assert correlate(entries) == []

    def test_other_errors_shown(self) -> None:
        entries = _log((SENT, _request(1, "tools/list")), (RECEIVED, _error(1, -32603, "Internal error")))
        assert len(correlate(entries)) == 1

    def test_non_listing_not_found_shown(self) -> None:
        entries = _log((SENT, _request(1, "tools/call")), (RECEIVED, _error(1)))
        assert correlate(entries)[0].status == ExchangeStatus.ERROR

    def test_is_suppressed_requires_both_sides(self) -> None:
        entries = _log((SENT, _request(1, "tools/list")))
        assert is_suppressed(entries[0], None) is False


# ---------------------------------------------------------------------------
# Tests: formatting
# ---------------------------------------------------------------------------


class TestFormatting:
    """One-line feed labels."""

    def test_tool_call(self) -> None:
        entries = _log((SENT, _request(1, "tools/call", {"name": "search", "arguments": {"query": "x", "limit": 5}})))
        assert describe_entry(entries[0]) == "tools/call tool=search args=query,limit"

    def test_tool_call_without_arguments(self) -> None:
        entries = _log((SENT, _request(1, "tools/call", {"name": "status"})))
        assert describe_entry(entries[0]) == "tools/call tool=status"

    def test_resource_read(self) -> None:
        entries = _log((SENT, _request(1, "resources/read", {"uri": "file:///etc/passwd"})))
        assert describe_entry(entries[0]) == "resources/read uri=file:///etc/passwd"

    def test_prompt_get(self) -> None:
        entries = _log((SENT, _request(1, "prompts/get", {"name": "summary"})))
        assert describe_entry(entries[0]) == "prompts/get prompt=summary"

    def test_stray_response(self) -> None:
        entries = _log((RECEIVED, _response(42)))
        assert describe_entry(entries[0]) == "response id=42"

    def test_format_exchange(self) -> None:
        entries = _log((SENT, _request(1, "tools/list")), (RECEIVED, _response(1)))
        line = format_exchange(correlate(entries)[0])
        assert line.startswith("[")
        assert line.endswith("] tools/list → ok")

    def test_format_error_and_pending(self) -> None:
        entries = _log(
            (SENT, _request(1, "tools/call", {"name": "x"})),
            (RECEIVED, _error(1, -32602, "bad")),
            (SENT, _request(2, "ping")),
        )
        error_line, pending_line = (format_exchange(exchange) for exchange in correlate(entries))
        assert error_line.endswith("tools/call tool=x → ERROR")
        assert pending_line.endswith("ping → pending")
