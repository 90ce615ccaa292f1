"""Wire codec: JSON-RPC messages to and from their serialized form.

A message is serialized as one compact UTF-8 JSON object. Transports decide how
messages are framed (newline-delimited for stdio, one frame per message for
WebSocket, one body or event per message for HTTP).
"""

import json

from pydantic import ValidationError

from mcp_client.shared.exceptions import DecodeError
from mcp_client.types import JSONRPCError, JSONRPCMessage, JSONRPCNotification, JSONRPCRequest, JSONRPCResponse

AnyMessage = JSONRPCMessage | JSONRPCRequest | JSONRPCNotification | JSONRPCResponse | JSONRPCError

# Keys that must be written even when their value is null.
_NULLABLE_KEYS = frozenset({"id", "result"})


def encode_message(message: AnyMessage) -> bytes:
    """Serialize a message to its wire form.

    Top-level ``None`` fields (an absent ``params``, say) and an empty error
    ``data`` are left out; opaque payloads are written exactly as given, nulls
    included.
    """
    if isinstance(message, JSONRPCMessage):
        message = message.root
    payload = message.model_dump(mode="json", by_alias=True)
    payload = {key: value for key, value in payload.items() if value is not None or key in _NULLABLE_KEYS}
    if isinstance(payload.get("error"), dict) and payload["error"].get("data") is None:
        payload["error"].pop("data", None)
    return json.dumps(payload, separators=(",", ":"), ensure_ascii=False).encode("utf-8")


def decode_message(data: bytes | str) -> JSONRPCMessage:
    """Parse one serialized message.

    Raises:
        DecodeError: If the payload is not valid JSON or not a JSON-RPC
            request, response, error or notification
    """
    try:
        return JSONRPCMessage.model_validate_json(data)
    except ValidationError as exc:
        raise DecodeError(f"Malformed message from server: {exc.errors()[0]['msg']}", raw=data) from exc
