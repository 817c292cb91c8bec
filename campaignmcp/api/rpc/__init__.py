"""MCP dispatch over the duplex transport."""
