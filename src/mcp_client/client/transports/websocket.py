"""WebSocket transport: one text frame per message over a persistent connection."""

import logging

import websockets
from anyio.abc import TaskGroup
from pydantic import BaseModel, Field
from websockets.asyncio.client import ClientConnection
from websockets.exceptions import ConnectionClosed, InvalidHandshake, InvalidURI
from websockets.typing import Subprotocol

from mcp_client.client.transports.base import MAX_MESSAGE_SIZE, Transport
from mcp_client.shared.exceptions import ConnectError, TransportClosed, TransportError

logger = logging.getLogger(__name__)

MCP_SUBPROTOCOL = Subprotocol("mcp")


class WebSocketServerParameters(BaseModel):
    url: str
    """The ws:// or wss:// URL of the server."""

    headers: dict[str, str] = Field(default_factory=dict)
    """Extra headers sent with the opening handshake."""

    open_timeout: float = 10.0
    """Timeout in seconds for the opening handshake."""


class WebSocketTransport(Transport):
    """Client transport over a WebSocket negotiated with the ``mcp`` subprotocol."""

    def __init__(self, server: WebSocketServerParameters) -> None:
        self.server = server
        self._websocket: ClientConnection | None = None
        self._closed = False

    async def open(self, task_group: TaskGroup) -> None:
        if self._websocket is not None or self._closed:
            raise ConnectError("WebSocket transport can only be opened once")
        try:
            self._websocket = await websockets.connect(
                self.server.url,
                subprotocols=[MCP_SUBPROTOCOL],
                additional_headers=self.server.headers or None,
                open_timeout=self.server.open_timeout,
                max_size=MAX_MESSAGE_SIZE,
            )
        except (OSError, TimeoutError, InvalidHandshake, InvalidURI) as exc:
            raise ConnectError(f"Failed to connect to {self.server.url}: {exc}") from exc
        logger.debug("WebSocket connected to %s", self.server.url)

    async def send(self, data: bytes) -> None:
        if self._closed or self._websocket is None:
            raise TransportClosed("WebSocket transport is not open")
        try:
            await self._websocket.send(data.decode("utf-8"))
        except ConnectionClosed as exc:
            raise TransportClosed(f"WebSocket closed: {exc}") from exc

    async def receive(self) -> bytes:
        if self._websocket is None:
            raise TransportClosed("WebSocket transport is not open")
        try:
            message = await self._websocket.recv()
        except ConnectionClosed as exc:
            raise TransportClosed(f"WebSocket closed: {exc}") from exc
        except OSError as exc:
            raise TransportError(f"WebSocket read failed: {exc}") from exc
        return message.encode("utf-8") if isinstance(message, str) else message

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        if self._websocket is not None:
            await self._websocket.close()
            logger.debug("WebSocket to %s closed", self.server.url)
