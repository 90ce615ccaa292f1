"""Base transport for MCP clients."""

from __future__ import annotations

from abc import ABC, abstractmethod

from anyio.abc import TaskGroup

# Largest single message a transport will buffer.
MAX_MESSAGE_SIZE = 16 * 1024 * 1024


class Transport(ABC):
    """A bidirectional channel carrying one serialized message at a time.

    Transports know nothing about the protocol. A session owns exactly one
    transport for its lifetime: it reads from it in a single dispatch task and
    serializes its writes, so implementations need not guard against
    concurrent ``send`` or concurrent ``receive`` calls.

    Example:
        ```python
        class MyTransport(Transport):
            async def open(self, task_group):
                ...  # connect

            async def send(self, data):
                ...  # write one message

            async def receive(self):
                ...  # read one message

            async def close(self):
                ...  # release everything, safe to repeat
        ```
    """

    @abstractmethod
    async def open(self, task_group: TaskGroup) -> None:
        """Connect to the server.

        ``task_group`` belongs to the session and lives until the session is
        closed; transports that need background work run it there.

        Raises:
            ConnectError: If the server cannot be reached
        """

    @abstractmethod
    async def send(self, data: bytes) -> None:
        """Send one complete message.

        Raises:
            TransportError: If the message could not be written
            TransportClosed: If the transport is closed
        """

    @abstractmethod
    async def receive(self) -> bytes:
        """Wait for the next complete message; never returns a partial one.

        Raises:
            TransportClosed: If the peer closed the connection
            TransportError: On any other I/O failure
        """

    @abstractmethod
    async def close(self) -> None:
        """Release the underlying process, socket or connection pool.

        Safe to call more than once.
        """
