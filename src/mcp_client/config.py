"""Client defaults, read from ``MCP_CLIENT_*`` environment variables or a ``.env`` file."""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from mcp_client.types import Implementation
from mcp_client.utilities.logging import LogLevel


class ClientSettings(BaseSettings):
    """Settings for the MCP client.

    All settings can be configured via environment variables with the prefix
    MCP_CLIENT_. For example, MCP_CLIENT_INIT_TIMEOUT=5 sets the handshake
    timeout to five seconds.
    """

    model_config = SettingsConfigDict(
        env_prefix="MCP_CLIENT_",
        env_file=".env",
        extra="ignore",
    )

    server: str = "./server"
    """Server to connect to: a URL or a command line."""

    init_timeout: float = Field(default=10.0, gt=0)
    """Seconds to wait for the handshake to complete."""

    request_timeout: float | None = Field(default=None, gt=0)
    """Default per-request timeout in seconds; None waits indefinitely."""

    log_level: LogLevel = "WARNING"

    client_name: str = "mcp-client"
    client_version: str = "0.1.0"

    @property
    def client_info(self) -> Implementation:
        return Implementation(name=self.client_name, version=self.client_version)
