"""Error taxonomy of the MCP client.

Everything the session engine raises derives from :class:`McpClientError`.
Transports sit below the protocol and report plain I/O failures through
:class:`TransportError`, an :class:`OSError`.
"""

from __future__ import annotations

import re

from mcp_client.types import INVALID_PARAMS, METHOD_NOT_FOUND, RESOURCE_NOT_FOUND, ErrorData, RequestId


class McpClientError(Exception):
    """Base class for errors raised by the MCP client.

    Attributes:
        message: Human readable description of the failure
        method: The protocol method involved, when known
        request_id: The id of the request involved, when known
    """

    def __init__(self, message: str, *, method: str | None = None, request_id: RequestId | None = None):
        super().__init__(message)
        self.message = message
        self.method = method
        self.request_id = request_id


class ConnectError(McpClientError):
    """The transport could not be opened or the handshake failed."""


class NotConnected(McpClientError):
    """A call was attempted while the session was not ready."""


class DecodeError(McpClientError):
    """An inbound payload could not be decoded into a message.

    Attributes:
        raw: The undecodable fragment, kept for diagnostics
    """

    def __init__(self, message: str, *, raw: bytes | str):
        super().__init__(message)
        self.raw = raw


class RequestError(McpClientError):
    """The server answered a request with an error.

    Attributes:
        error: The ErrorData received from the server
    """

    def __init__(self, error: ErrorData, *, method: str | None = None, request_id: RequestId | None = None):
        super().__init__(error.message, method=method, request_id=request_id)
        self.error = error

    @property
    def code(self) -> int:
        return self.error.code

    @property
    def data(self):
        return self.error.data


class ToolNotFound(RequestError):
    """The server does not know the requested tool."""


class InvalidArguments(RequestError):
    """The server rejected the arguments of a tool call."""


class ResourceNotFound(RequestError):
    """The server does not know the requested resource."""


class PromptNotFound(RequestError):
    """The server does not know the requested prompt."""


class RequestTimeout(McpClientError, TimeoutError):
    """No response arrived before the client-side deadline."""


class RequestCancelled(McpClientError):
    """The request was cancelled before a response arrived."""


class ConnectionLost(McpClientError):
    """The transport closed or failed while the request was outstanding."""


class SessionClosed(ConnectionLost):
    """The session was closed locally while the request was outstanding."""


class TransportError(OSError):
    """An I/O failure in a transport."""


class TransportClosed(TransportError):
    """The transport has been closed, locally or by the peer."""


_NOT_FOUND_PATTERN = re.compile(r"not found|unknown|does not exist|no such", re.IGNORECASE)

_NOT_FOUND_ERRORS: dict[str, tuple[type[RequestError], frozenset[int]]] = {
    "tools/call": (ToolNotFound, frozenset({METHOD_NOT_FOUND})),
    "resources/read": (ResourceNotFound, frozenset({RESOURCE_NOT_FOUND})),
    "prompts/get": (PromptNotFound, frozenset({METHOD_NOT_FOUND})),
}


def error_from_response(
    error: ErrorData, *, method: str | None = None, request_id: RequestId | None = None
) -> RequestError:
    """Build the most specific RequestError for an error the server returned.

    Servers disagree on how to report an unknown tool, resource or prompt: some
    use a dedicated code, most answer INVALID_PARAMS with a descriptive message.
    Both are recognized for the methods that address a named capability.
    """
    error_type: type[RequestError] = RequestError
    if method in _NOT_FOUND_ERRORS:
        not_found_type, codes = _NOT_FOUND_ERRORS[method]
        if error.code in codes or (error.code == INVALID_PARAMS and _NOT_FOUND_PATTERN.search(error.message)):
            error_type = not_found_type
        elif error.code == INVALID_PARAMS and method == "tools/call":
            error_type = InvalidArguments
    return error_type(error, method=method, request_id=request_id)
