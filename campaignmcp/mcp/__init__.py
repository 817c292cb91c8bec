"""MCP wire protocol."""
