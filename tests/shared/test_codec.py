import json

import pytest

from mcp_client.shared.codec import decode_message, encode_message
from mcp_client.shared.exceptions import DecodeError
from mcp_client.types import (
    ErrorData,
    JSONRPCError,
    JSONRPCMessage,
    JSONRPCNotification,
    JSONRPCRequest,
    JSONRPCResponse,
)


def test_encode_request_is_compact_and_omits_absent_params():
    data = encode_message(JSONRPCRequest(id=1, method="ping"))
    assert data == b'{"jsonrpc":"2.0","id":1,"method":"ping"}'


def test_encode_keeps_nulls_inside_opaque_payloads():
    data = encode_message(JSONRPCResponse(id="a", result={"value": None, "items": [1, None]}))
    assert json.loads(data) == {"jsonrpc": "2.0", "id": "a", "result": {"value": None, "items": [1, None]}}


def test_encode_null_result_and_error_id():
    assert json.loads(encode_message(JSONRPCResponse(id=3, result=None))) == {"jsonrpc": "2.0", "id": 3, "result": None}
    error = JSONRPCError(id=None, error=ErrorData(code=-32700, message="Parse error"))
    assert json.loads(encode_message(error)) == {
        "jsonrpc": "2.0",
        "id": None,
        "error": {"code": -32700, "message": "Parse error"},
    }


def test_encode_is_utf8():
    data = encode_message(JSONRPCNotification(method="notifications/message", params={"data": "你好"}))
    assert "你好".encode() in data


@pytest.mark.parametrize(
    ("raw", "expected_type"),
    [
        (b'{"jsonrpc":"2.0","id":1,"method":"tools/list"}', JSONRPCRequest),
        (b'{"jsonrpc":"2.0","id":"abc","method":"ping","params":{}}', JSONRPCRequest),
        (b'{"jsonrpc":"2.0","method":"notifications/progress","params":{"progress":1}}', JSONRPCNotification),
        (b'{"jsonrpc":"2.0","id":1,"result":{"tools":[]}}', JSONRPCResponse),
        (b'{"jsonrpc":"2.0","id":1,"error":{"code":-32601,"message":"Method not found"}}', JSONRPCError),
    ],
)
def test_decode_message_kinds(raw: bytes, expected_type: type):
    message = decode_message(raw)
    assert isinstance(message, JSONRPCMessage)
    assert isinstance(message.root, expected_type)


def test_decode_keeps_opaque_payload_and_unknown_fields():
    message = decode_message(b'{"jsonrpc":"2.0","id":9,"result":{"nested":{"a":[1,2.5,true,null]}},"extra":1}')
    assert isinstance(message.root, JSONRPCResponse)
    assert message.root.result == {"nested": {"a": [1, 2.5, True, None]}}
    assert message.root.model_extra == {"extra": 1}


def test_round_trip():
    original = JSONRPCRequest(id=42, method="tools/call", params={"name": "add", "arguments": {"a": 1, "b": [True]}})
    assert decode_message(encode_message(original)).root == original


@pytest.mark.parametrize(
    "raw",
    [
        b"not json at all",
        b"\xff\xfe\x00",
        b"[1, 2, 3]",
        b'"just a string"',
        b'{"jsonrpc":"2.0"}',
        b'{"jsonrpc":"1.0","id":1,"method":"ping"}',
        b'{"jsonrpc":"2.0","id":1.5,"method":"ping"}',
        b'{"jsonrpc":"2.0","id":1,"method":42}',
        b'{"jsonrpc":"2.0","id":1,"error":{"message":"no code"}}',
    ],
)
def test_decode_rejects_malformed_payloads(raw: bytes):
    with pytest.raises(DecodeError) as exc_info:
        decode_message(raw)
    assert exc_info.value.raw == raw
