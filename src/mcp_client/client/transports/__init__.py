"""Transports the client can reach a server over, and how to pick one."""

import shlex

from mcp_client.client.transports.base import Transport
from mcp_client.client.transports.http import HttpServerParameters, HttpTransport
from mcp_client.client.transports.memory import MemoryTransport, create_memory_transport
from mcp_client.client.transports.stdio import StdioServerParameters, StdioTransport
from mcp_client.client.transports.websocket import WebSocketServerParameters, WebSocketTransport

ServerParameters = StdioServerParameters | HttpServerParameters | WebSocketServerParameters


def parse_server_target(target: str) -> ServerParameters:
    """Turn a server target string into transport parameters.

    ``http://`` and ``https://`` URLs select HTTP, ``ws://`` and ``wss://``
    select WebSocket; anything else is a command line, split with shell rules,
    for a server spawned over stdio.
    """
    target = target.strip()
    if not target:
        raise ValueError("Server target must not be empty")

    scheme = target.split("://", 1)[0].lower() if "://" in target else ""
    if scheme in ("http", "https"):
        return HttpServerParameters(url=target)
    if scheme in ("ws", "wss"):
        return WebSocketServerParameters(url=target)

    command, *args = shlex.split(target)
    return StdioServerParameters(command=command, args=args)


def create_transport(server: ServerParameters | str) -> Transport:
    """Create the transport matching the given parameters or target string."""
    if isinstance(server, str):
        server = parse_server_target(server)
    if isinstance(server, StdioServerParameters):
        return StdioTransport(server)
    if isinstance(server, HttpServerParameters):
        return HttpTransport(server)
    if isinstance(server, WebSocketServerParameters):
        return WebSocketTransport(server)
    raise TypeError(f"Unsupported server parameters: {type(server).__name__}")


__all__ = [
    "HttpServerParameters",
    "HttpTransport",
    "MemoryTransport",
    "ServerParameters",
    "StdioServerParameters",
    "StdioTransport",
    "Transport",
    "WebSocketServerParameters",
    "WebSocketTransport",
    "create_memory_transport",
    "create_transport",
    "parse_server_target",
]
