"""
campaignmcp - MCP bridge over campaign performance data.
"""

__version__ = "1.0.0"
__logo__ = "📊"

SERVER_NAME = "Campaign Performance MCP Server"
SERVER_DESCRIPTION = (
    "MCP server for Campaign Performance API - provides access to campaign data, metrics, and analytics"
)
PROTOCOL_VERSION = "2024-11-05"
