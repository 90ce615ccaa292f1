"""A client for the Model Context Protocol."""

from mcp_client.client import ClientSession, SessionState, open_session
from mcp_client.client.registry import CapabilityRegistry
from mcp_client.client.transports import (
    HttpServerParameters,
    StdioServerParameters,
    WebSocketServerParameters,
    create_transport,
    parse_server_target,
)
from mcp_client.shared.exceptions import (
    ConnectError,
    ConnectionLost,
    DecodeError,
    InvalidArguments,
    McpClientError,
    NotConnected,
    PromptNotFound,
    RequestCancelled,
    RequestError,
    RequestTimeout,
    ResourceNotFound,
    SessionClosed,
    ToolNotFound,
    TransportClosed,
    TransportError,
)
from mcp_client.types import (
    LATEST_PROTOCOL_VERSION,
    SUPPORTED_PROTOCOL_VERSIONS,
    CallToolResult,
    GetPromptResult,
    Implementation,
    InitializeResult,
    Prompt,
    ReadResourceResult,
    Resource,
    Tool,
)

__version__ = "0.1.0"

__all__ = [
    "LATEST_PROTOCOL_VERSION",
    "SUPPORTED_PROTOCOL_VERSIONS",
    "CallToolResult",
    "CapabilityRegistry",
    "ClientSession",
    "ConnectError",
    "ConnectionLost",
    "DecodeError",
    "GetPromptResult",
    "HttpServerParameters",
    "Implementation",
    "InitializeResult",
    "InvalidArguments",
    "McpClientError",
    "NotConnected",
    "Prompt",
    "PromptNotFound",
    "ReadResourceResult",
    "RequestCancelled",
    "RequestError",
    "RequestTimeout",
    "Resource",
    "ResourceNotFound",
    "SessionClosed",
    "SessionState",
    "StdioServerParameters",
    "Tool",
    "ToolNotFound",
    "TransportClosed",
    "TransportError",
    "WebSocketServerParameters",
    "__version__",
    "create_transport",
    "parse_server_target",
]
