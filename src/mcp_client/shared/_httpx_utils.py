"""Utilities for creating standardized httpx AsyncClient instances."""

from typing import Any, Protocol

import httpx

__all__ = ["McpHttpClientFactory", "create_mcp_http_client"]


class McpHttpClientFactory(Protocol):
    def __call__(self, **kwargs: Any) -> httpx.AsyncClient: ...


def create_mcp_http_client(**kwargs: Any) -> httpx.AsyncClient:
    """Create an httpx AsyncClient with the client's defaults.

    Redirects are followed and the timeout defaults to 30 seconds; any keyword
    argument accepted by httpx.AsyncClient overrides these.

    The returned client must be closed (or used as a context manager) to
    release its connections.

    Examples:
        async with create_mcp_http_client(headers={"Authorization": "Bearer token"}) as client:
            response = await client.get("https://api.example.com")
    """
    default_kwargs: dict[str, Any] = {
        "follow_redirects": True,
        "timeout": httpx.Timeout(30.0),
    }
    default_kwargs.update(kwargs)
    return httpx.AsyncClient(**default_kwargs)
