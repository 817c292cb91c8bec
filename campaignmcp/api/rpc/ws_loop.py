"""WebSocket transport loop hosting a ProtocolServer connection."""

from __future__ import annotations

import asyncio
from typing import Any

from fastapi import WebSocket, WebSocketDisconnect
from loguru import logger

from campaignmcp.api.rpc.protocol_server import ProtocolServer, Reply
from campaignmcp.gateway.connections import Connection
from campaignmcp.mcp.protocol import encode


def origin_allowed(origin: str | None, allowed: list[str]) -> bool:
    """Browser-less clients send no Origin; those are let through."""
    if "*" in allowed or not origin:
        return True
    return origin in allowed


async def run_mcp_ws_loop(
    *,
    websocket: WebSocket,
    server: ProtocolServer,
    allowed_origins: list[str],
) -> None:
    """
    Accept the socket, then feed every text frame to the server.

    Requests are dispatched as independent tasks so one slow tool does not
    hold up the rest of the connection; writes are serialized.
    """
    origin = websocket.headers.get("origin")
    if not origin_allowed(origin, allowed_origins):
        logger.warning("Rejected MCP connection from origin {}", origin)
        await websocket.close(code=1008)
        return

    await websocket.accept()
    loop = asyncio.get_running_loop()
    send_lock = asyncio.Lock()
    inflight: set[asyncio.Task[Any]] = set()

    async def hang_up(connection_id: str) -> None:
        logger.info("[{}] Closing socket: subject expired", connection_id)
        try:
            async with send_lock:
                await websocket.close(code=1008, reason="Session expired")
        except (WebSocketDisconnect, RuntimeError) as e:
            logger.debug("[{}] Close after purge failed: {}", connection_id, e)

    def spawn(coro: Any) -> None:
        task = loop.create_task(coro)
        inflight.add(task)
        task.add_done_callback(inflight.discard)

    def on_purge(closed: Connection) -> None:
        # The sweep may run off the loop thread.
        loop.call_soon_threadsafe(spawn, hang_up(closed.id))

    conn = server.open_connection(on_purge=on_purge)

    async def process(raw: str) -> None:
        outcome = await server.handle_message(conn.id, raw)
        if not isinstance(outcome, Reply):
            return
        try:
            async with send_lock:
                await websocket.send_text(encode(outcome.frame))
        except (WebSocketDisconnect, RuntimeError) as e:
            logger.debug("[{}] Could not send response: {}", conn.id, e)

    try:
        while True:
            message = await websocket.receive()
            if message.get("type") == "websocket.disconnect":
                break
            raw = message.get("text")
            if raw is None and message.get("bytes") is not None:
                raw = message["bytes"].decode("utf-8", errors="replace")
            if raw is None:
                continue
            spawn(process(raw))
    except WebSocketDisconnect:
        pass
    except Exception as e:
        logger.error("WebSocket error for connection {}: {}", conn.id, e)
    finally:
        for task in list(inflight):
            task.cancel()
        server.close_connection(conn.id)
