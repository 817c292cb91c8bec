"""Stdio bridge: desktop assistants speak MCP on stdin/stdout, we forward to the server."""

from __future__ import annotations

import asyncio
import json
import sys
from typing import Any, Callable, TextIO

from loguru import logger

from campaignmcp import PROTOCOL_VERSION, SERVER_NAME, __version__
from campaignmcp.client.client import McpClient, McpClientError
from campaignmcp.mcp.protocol import ErrorCode, make_error, make_result

FORWARDED_METHODS = ("tools/list", "tools/call")


class StdioBridge:
    """
    Answers initialize locally and forwards tools/list and tools/call through
    an already-connected McpClient. Everything else gets an InternalError.
    Logs go to stderr (loguru default) so stdout only carries frames.
    """

    def __init__(self, client: McpClient):
        self._client = client

    async def handle(self, message: dict[str, Any]) -> dict[str, Any] | None:
        """One inbound message -> one response frame, or None for notifications."""
        if "id" not in message:
            logger.debug("Bridge ignoring notification {}", message.get("method"))
            return None
        request_id = message.get("id")
        method = message.get("method")
        try:
            if not self._client.initialized:
                raise McpClientError("MCP server not initialized")
            if method == "initialize":
                return make_result(
                    request_id,
                    {
                        "protocolVersion": PROTOCOL_VERSION,
                        "capabilities": {"tools": {}},
                        "serverInfo": {"name": SERVER_NAME, "version": __version__},
                    },
                )
            if method in FORWARDED_METHODS:
                params = message.get("params")
                result = await self._client.send_request(method, params if isinstance(params, dict) else {})
                return make_result(request_id, result)
            raise McpClientError(f"Unknown method: {method}")
        except McpClientError as e:
            return make_error(request_id, ErrorCode.INTERNAL_ERROR, str(e))

    async def handle_line(self, line: str) -> dict[str, Any] | None:
        line = line.strip()
        if not line:
            return None
        try:
            message = json.loads(line)
        except json.JSONDecodeError as e:
            logger.error("Error processing message from client: {}", e)
            return None
        if not isinstance(message, dict):
            logger.error("Error processing message from client: not an object")
            return None
        return await self.handle(message)

    async def run(
        self,
        *,
        stdin: TextIO | None = None,
        stdout: TextIO | None = None,
        readline: Callable[[], str] | None = None,
    ) -> None:
        """Pump newline-delimited JSON until stdin closes."""
        stdin = stdin or sys.stdin
        stdout = stdout or sys.stdout
        readline = readline or stdin.readline
        loop = asyncio.get_running_loop()
        logger.info("MCP bridge ready")
        while True:
            line = await loop.run_in_executor(None, readline)
            if not line:
                break
            response = await self.handle_line(line)
            if response is not None:
                stdout.write(json.dumps(response, ensure_ascii=False) + "\n")
                stdout.flush()
        logger.info("stdin closed; bridge stopping")
