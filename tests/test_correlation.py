"""Tests for mcp_pentester.correlation."""

import json

import pytest
from mcp.types import (
    JSONRPCError,
    JSONRPCMessage,
    JSONRPCNotification,
    JSONRPCRequest,
    JSONRPCResponse,
)
from pydantic import RootModel

from mcp_pentester.correlation import (
    extract_jsonrpc_id,
    extract_method,
    extract_params,
    is_error,
    is_notification,
    is_request,
    is_response,
    make_notification,
    make_request,
    parse_message,
    to_payload,
    to_wire,
    validate_message,
)
from mcp_pentester.errors import FramingError


def _request(method: str = "tools/list", msg_id: int = 1) -> JSONRPCMessage:
    return JSONRPCMessage(JSONRPCRequest(jsonrpc="2.0", id=msg_id, method=method))


def _response(msg_id: int = 1) -> JSONRPCMessage:
    return JSONRPCMessage(JSONRPCResponse(jsonrpc="2.0", id=msg_id, result={}))


def _error(msg_id: int = 1) -> JSONRPCMessage:
    return JSONRPCMessage(
        JSONRPCError(
            jsonrpc="2.0",
            id=msg_id,
            error={"code": -32600, "message": "Invalid Request"},
        )
    )


def _notification(method: str = "notifications/progress") -> JSONRPCMessage:
    return JSONRPCMessage(JSONRPCNotification(jsonrpc="2.0", method=method))


class TestBuilders:
    def test_sdk_message_is_a_root_model(self) -> None:
        assert isinstance(JSONRPCMessage, type)
        assert issubclass(JSONRPCMessage, RootModel)

    def test_request_without_params_omits_key(self) -> None:
        assert to_payload(make_request("tools/list", None, 3)) == {"jsonrpc": "2.0", "id": 3, "method": "tools/list"}

    def test_request_with_params(self) -> None:
        payload = to_payload(make_request("resources/read", {"uri": "file:///etc/hosts"}, 4))
        assert payload["params"] == {"uri": "file:///etc/hosts"}

    def test_notification_has_no_id(self) -> None:
        payload = to_payload(make_notification("notifications/initialized"))
        assert payload == {"jsonrpc": "2.0", "method": "notifications/initialized"}

    def test_wire_is_single_line(self) -> None:
        wire = to_wire(make_request("tools/call", {"name": "x", "arguments": {"a": "1\n2"}}, 1))
        assert "\n" not in wire
        assert json.loads(wire)["params"]["arguments"]["a"] == "1\n2"


class TestParsing:
    def test_parse_request(self) -> None:
        message = parse_message('{"jsonrpc":"2.0","id":1,"method":"ping"}')
        assert is_request(message)

    def test_parse_bytes(self) -> None:
        message = parse_message(b'{"jsonrpc":"2.0","id":"a","result":{}}')
        assert extract_jsonrpc_id(message) == "a"

    def test_parse_invalid_json(self) -> None:
        with pytest.raises(FramingError, match="Failed to parse JSON: nope") as excinfo:
            parse_message("nope")
        assert excinfo.value.raw == "nope"

    def test_parse_non_jsonrpc(self) -> None:
        with pytest.raises(FramingError, match="Invalid JSON-RPC message"):
            parse_message('{"foo": 1}')

    def test_validate_reports_raw_text(self) -> None:
        with pytest.raises(FramingError) as excinfo:
            validate_message([1, 2, 3])
        assert excinfo.value.raw == "[1, 2, 3]"

    def test_payload_round_trip_keeps_keys(self) -> None:
        text = '{"jsonrpc":"2.0","id":9,"result":{"content":[{"type":"text","text":"hi"}],"extra":true}}'
        assert to_payload(parse_message(text)) == json.loads(text)

    @pytest.mark.parametrize("result", [None, [], "ok", 5])
    def test_non_object_result_is_a_response(self, result: object) -> None:
        message = parse_message(json.dumps({"jsonrpc": "2.0", "id": 1, "result": result}))
        assert is_response(message)
        assert not is_error(message)
        assert extract_jsonrpc_id(message) == 1
        assert to_payload(message) == {"jsonrpc": "2.0", "id": 1, "result": result}

    def test_error_with_null_id_is_an_error(self) -> None:
        text = '{"jsonrpc":"2.0","id":null,"error":{"code":-32700,"message":"Parse error"}}'
        message = parse_message(text)
        assert is_error(message)
        assert extract_jsonrpc_id(message) is None
        assert to_payload(message) == json.loads(text)

    def test_response_without_result_or_error_is_rejected(self) -> None:
        with pytest.raises(FramingError, match="Invalid JSON-RPC message"):
            parse_message('{"jsonrpc":"2.0","id":1}')

    def test_request_is_never_read_as_a_response(self) -> None:
        with pytest.raises(FramingError):
            parse_message('{"jsonrpc":"2.0","id":1,"method":7,"result":null}')


class TestExtractJsonrpcId:
    def test_request_id(self) -> None:
        assert extract_jsonrpc_id(_request(msg_id=42)) == 42

    def test_response_id(self) -> None:
        assert extract_jsonrpc_id(_response(msg_id=7)) == 7

    def test_error_id(self) -> None:
        assert extract_jsonrpc_id(_error(msg_id=99)) == 99

    def test_notification_has_no_id(self) -> None:
        assert extract_jsonrpc_id(_notification()) is None

    def test_string_id(self) -> None:
        msg = JSONRPCMessage(JSONRPCRequest(jsonrpc="2.0", id="abc-123", method="test"))
        assert extract_jsonrpc_id(msg) == "abc-123"


class TestExtractMethodAndParams:
    def test_request_method(self) -> None:
        assert extract_method(_request("tools/call")) == "tools/call"

    def test_notification_method(self) -> None:
        assert extract_method(_notification("notifications/cancelled")) == "notifications/cancelled"

    def test_response_has_no_method(self) -> None:
        assert extract_method(_response()) is None

    def test_params(self) -> None:
        message = make_request("tools/call", {"name": "echo", "arguments": {}}, 1)
        assert extract_params(message) == {"name": "echo", "arguments": {}}

    def test_params_missing(self) -> None:
        assert extract_params(_request()) == {}
        assert extract_params(_response()) == {}


class TestMessageClassification:
    def test_request(self) -> None:
        msg = _request()
        assert is_request(msg) is True
        assert is_response(msg) is False
        assert is_notification(msg) is False

    def test_response(self) -> None:
        msg = _response()
        assert is_request(msg) is False
        assert is_response(msg) is True
        assert is_error(msg) is False

    def test_error_is_response(self) -> None:
        msg = _error()
        assert is_response(msg) is True
        assert is_error(msg) is True

    def test_notification(self) -> None:
        msg = _notification()
        assert is_request(msg) is False
        assert is_response(msg) is False
        assert is_notification(msg) is True
