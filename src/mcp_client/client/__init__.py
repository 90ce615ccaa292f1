from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

from mcp_client.client.registry import CapabilityRegistry
from mcp_client.client.session import ClientSession, NotificationHandlerFnT, ProgressFnT, SessionState
from mcp_client.client.transports import ServerParameters, Transport


@asynccontextmanager
async def open_session(server: Transport | ServerParameters | str, **kwargs: Any) -> AsyncIterator[ClientSession]:
    """Connect a new session to a server and close it on exit.

    Keyword arguments are passed on to :class:`ClientSession`.

    Example:
        async with open_session("python server.py") as session:
            tools = await session.list_tools()
    """
    async with ClientSession(**kwargs) as session:
        await session.connect(server)
        yield session


__all__ = [
    "CapabilityRegistry",
    "ClientSession",
    "NotificationHandlerFnT",
    "ProgressFnT",
    "SessionState",
    "open_session",
]
