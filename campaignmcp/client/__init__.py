"""Outbound MCP client and stdio bridge."""

from campaignmcp.client.client import (
    McpAuthError,
    McpClient,
    McpClientError,
    McpRemoteError,
    McpTimeoutError,
    McpTransportError,
)

__all__ = [
    "McpClient",
    "McpClientError",
    "McpAuthError",
    "McpRemoteError",
    "McpTimeoutError",
    "McpTransportError",
]
