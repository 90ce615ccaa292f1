"""Logging utilities for the MCP client."""

import logging
from typing import Literal

from rich.console import Console
from rich.logging import RichHandler

LogLevel = Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]


def get_logger(name: str) -> logging.Logger:
    """Get a logger nested under the ``mcp_client`` namespace.

    Args:
        name: the name of the logger, prefixed with ``mcp_client.`` unless it
            already is

    Returns:
        a logger instance
    """
    if name != "mcp_client" and not name.startswith("mcp_client."):
        name = f"mcp_client.{name}"
    return logging.getLogger(name)


def configure_logging(level: LogLevel = "INFO") -> None:
    """Configure logging for the MCP client.

    Log records go to stderr so they never mix with command output on stdout.

    Args:
        level: the log level to use
    """
    logging.basicConfig(
        level=level,
        format="%(message)s",
        handlers=[RichHandler(console=Console(stderr=True), rich_tracebacks=True)],
        force=True,
    )
