"""In-memory transport for running a client against an in-process server."""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import anyio
from anyio.abc import TaskGroup
from anyio.streams.memory import MemoryObjectReceiveStream, MemoryObjectSendStream

from mcp_client.client.transports.base import Transport
from mcp_client.shared.exceptions import ConnectError, TransportClosed

ServerStreams = tuple[MemoryObjectReceiveStream[bytes], MemoryObjectSendStream[bytes]]


class MemoryTransport(Transport):
    """Transport over a pair of anyio memory object streams.

    The server side holds the opposite ends; closing its send stream looks to
    the client exactly like a peer hanging up.
    """

    def __init__(self, read_stream: MemoryObjectReceiveStream[bytes], write_stream: MemoryObjectSendStream[bytes]):
        self._read_stream = read_stream
        self._write_stream = write_stream
        self._closed = False
        self.close_count = 0

    @property
    def closed(self) -> bool:
        return self._closed

    async def open(self, task_group: TaskGroup) -> None:
        if self._closed:
            raise ConnectError("Memory transport is closed")

    async def send(self, data: bytes) -> None:
        try:
            await self._write_stream.send(data)
        except (anyio.BrokenResourceError, anyio.ClosedResourceError) as exc:
            raise TransportClosed("Peer is gone") from exc

    async def receive(self) -> bytes:
        try:
            return await self._read_stream.receive()
        except (anyio.EndOfStream, anyio.ClosedResourceError, anyio.BrokenResourceError) as exc:
            raise TransportClosed("Peer closed the connection") from exc

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self.close_count += 1
        await self._write_stream.aclose()
        await self._read_stream.aclose()


@asynccontextmanager
async def create_memory_transport(max_buffer_size: float = 0) -> AsyncIterator[tuple[MemoryTransport, ServerStreams]]:
    """Create a client transport and the server's ends of its streams.

    Yields:
        A tuple of (client transport, (server read stream, server write stream))
    """
    client_to_server_send, client_to_server_receive = anyio.create_memory_object_stream[bytes](max_buffer_size)
    server_to_client_send, server_to_client_receive = anyio.create_memory_object_stream[bytes](max_buffer_size)

    transport = MemoryTransport(server_to_client_receive, client_to_server_send)
    try:
        yield transport, (client_to_server_receive, server_to_client_send)
    finally:
        await transport.close()
        await client_to_server_receive.aclose()
        await server_to_client_send.aclose()
