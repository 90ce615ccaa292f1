"""Client-side cache of the server's tools, resources and prompts.

The cache only serves display and hints. The server stays authoritative:
nothing is ever refused because of what the cache says.
"""

from typing import Literal

from mcp_client.types import Prompt, Resource, Tool

CapabilityKind = Literal["tools", "resources", "prompts"]


class CapabilityRegistry:
    """Last fetched capability lists, replaced wholesale on every refresh."""

    def __init__(self) -> None:
        self._tools: tuple[Tool, ...] | None = None
        self._resources: tuple[Resource, ...] | None = None
        self._prompts: tuple[Prompt, ...] | None = None
        self._stale: set[CapabilityKind] = set()

    def get_cached_tools(self) -> list[Tool]:
        return list(self._tools or ())

    def get_cached_resources(self) -> list[Resource]:
        return list(self._resources or ())

    def get_cached_prompts(self) -> list[Prompt]:
        return list(self._prompts or ())

    def replace_tools(self, tools: list[Tool]) -> None:
        self._tools = tuple(tools)
        self._stale.discard("tools")

    def replace_resources(self, resources: list[Resource]) -> None:
        self._resources = tuple(resources)
        self._stale.discard("resources")

    def replace_prompts(self, prompts: list[Prompt]) -> None:
        self._prompts = tuple(prompts)
        self._stale.discard("prompts")

    def fetched(self, kind: CapabilityKind) -> bool:
        """Whether the given list was fetched at least once."""
        return getattr(self, f"_{kind}") is not None

    def has_tool(self, name: str) -> bool:
        return any(tool.name == name for tool in self._tools or ())

    def invalidate(self, kind: CapabilityKind) -> None:
        """Mark a list as outdated, e.g. after a list_changed notification."""
        self._stale.add(kind)

    def is_stale(self, kind: CapabilityKind) -> bool:
        return kind in self._stale
