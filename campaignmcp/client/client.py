"""Outbound MCP client: token acquisition, WebSocket transport, response correlation."""

from __future__ import annotations

import asyncio
import itertools
from typing import Any, AsyncIterator, Protocol

import httpx
import websockets
from loguru import logger

from campaignmcp import PROTOCOL_VERSION, __version__
from campaignmcp.config.schema import ClientConfig
from campaignmcp.mcp.protocol import (
    FrameParseError,
    RequestId,
    Response,
    encode,
    make_notification,
    make_request,
    parse_frame,
)


class McpClientError(Exception):
    """Base class for client-side failures."""


class McpAuthError(McpClientError):
    """Token issuance was refused or unreachable."""


class McpTransportError(McpClientError):
    """The duplex connection is not usable (never opened, or dropped)."""


class McpTimeoutError(McpClientError):
    """No response arrived within the request timeout."""


class McpRemoteError(McpClientError):
    """The peer answered with an error object."""

    def __init__(self, code: int, message: str, data: Any = None):
        super().__init__(f"{message} ({code})")
        self.code = code
        self.remote_message = message
        self.data = data


class Transport(Protocol):
    """What the client needs from a duplex connection (a websockets connection fits)."""

    async def send(self, message: str) -> None: ...

    async def close(self) -> None: ...

    def __aiter__(self) -> AsyncIterator[str | bytes]: ...


class McpClient:
    """
    Speaks MCP to a remote ProtocolServer.

    Requests get ids 1, 2, 3, ... for the life of the instance. Each one waits
    on its own future in the pending table; the reader task resolves futures
    by id, so responses may arrive in any order. A response for an id that is
    no longer pending (timed out, or never sent) is dropped.
    """

    def __init__(
        self,
        config: ClientConfig | None = None,
        *,
        http_client: httpx.AsyncClient | None = None,
    ):
        self.config = config or ClientConfig()
        self.access_token: str | None = None
        self.server_info: dict[str, Any] | None = None
        self.initialized = False
        self._http_client = http_client
        self._transport: Transport | None = None
        self._reader: asyncio.Task[None] | None = None
        self._ids = itertools.count(1)
        self._pending: dict[RequestId, asyncio.Future[Any]] = {}

    @property
    def connected(self) -> bool:
        return self._transport is not None

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    # --- credentials ---------------------------------------------------------

    async def authenticate(self) -> dict[str, Any]:
        """POST /api/v1/mcp/auth/token and keep the access token."""
        url = f"{self.config.base_url.rstrip('/')}/api/v1/mcp/auth/token"
        headers = {"Content-Type": "application/json"}
        if self.config.api_key:
            headers["X-API-Key"] = self.config.api_key
        body = {"client_id": self.config.client_id, "scope": list(self.config.scope)}

        logger.debug("Authenticating with MCP server at {}", url)
        client = self._http_client or httpx.AsyncClient(timeout=self.config.request_timeout_seconds)
        try:
            response = await client.post(url, json=body, headers=headers)
        except httpx.HTTPError as e:
            raise McpAuthError(f"Authentication failed: {e}") from e
        finally:
            if self._http_client is None:
                await client.aclose()

        try:
            payload = response.json()
        except ValueError:
            payload = {}
        if response.status_code >= 400:
            detail = payload.get("message") if isinstance(payload, dict) else None
            raise McpAuthError(f"Authentication failed: {response.status_code} {detail or response.reason_phrase}")
        if not isinstance(payload, dict) or not payload.get("success"):
            message = payload.get("message") if isinstance(payload, dict) else None
            raise McpAuthError(f"Authentication failed: {message or 'unexpected response'}")

        data = payload.get("data") or {}
        token = data.get("access_token")
        if not token:
            raise McpAuthError("Authentication failed: no access_token in response")
        self.access_token = token
        logger.info("Authenticated as client {} (scope {})", self.config.client_id, data.get("scope"))
        return data

    # --- connection ----------------------------------------------------------

    async def connect(self, *, authenticate: bool = True) -> dict[str, Any]:
        """Get a token, open the WebSocket and complete the initialize handshake."""
        if authenticate and not self.access_token:
            await self.authenticate()
        logger.info("Connecting to {}", self.config.ws_url)
        try:
            transport = await websockets.connect(self.config.ws_url)
        except (OSError, websockets.exceptions.WebSocketException) as e:
            raise McpTransportError(f"Could not connect to {self.config.ws_url}: {e}") from e
        return await self.attach(transport)

    async def attach(self, transport: Transport) -> dict[str, Any]:
        """Start reading from an open transport and run the handshake on it."""
        if self._transport is not None:
            raise McpClientError("Client is already connected")
        self._transport = transport
        self._reader = asyncio.create_task(self._read_loop(transport))
        params: dict[str, Any] = {
            "protocolVersion": PROTOCOL_VERSION,
            "capabilities": {},
            "clientInfo": {"name": self.config.client_name, "version": __version__},
        }
        if self.access_token and self.config.handshake_auth:
            params["auth"] = {"token": self.access_token}
        try:
            result = await self.send_request("initialize", params)
        except McpClientError:
            await self.close()
            raise
        self.server_info = result if isinstance(result, dict) else {}
        self.initialized = True
        await self.send_notification("notifications/initialized")
        logger.info("Connected to {}", (self.server_info.get("serverInfo") or {}).get("name", "MCP server"))
        return self.server_info

    async def close(self) -> None:
        transport, self._transport = self._transport, None
        reader, self._reader = self._reader, None
        self.initialized = False
        if reader is not None:
            reader.cancel()
            try:
                await reader
            except asyncio.CancelledError:
                pass
        if transport is not None:
            try:
                await transport.close()
            except Exception as e:
                logger.debug("Error closing transport: {}", e)
        self._fail_pending(McpTransportError("Connection closed"))

    async def __aenter__(self) -> "McpClient":
        await self.connect()
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.close()

    # --- requests ------------------------------------------------------------

    async def send_request(
        self,
        method: str,
        params: dict[str, Any] | None = None,
        *,
        timeout: float | None = None,
    ) -> Any:
        """Send a request and wait for its correlated response."""
        transport = self._transport
        if transport is None:
            raise McpTransportError("Not connected")

        request_id = next(self._ids)
        payload = dict(params or {})
        if self.access_token and method != "initialize":
            payload["auth"] = {"token": self.access_token}

        fut: asyncio.Future[Any] = asyncio.get_running_loop().create_future()
        self._pending[request_id] = fut
        try:
            try:
                await transport.send(encode(make_request(request_id, method, payload)))
            except Exception as e:
                raise McpTransportError(f"Failed to send {method}: {e}") from e
            wait = self.config.request_timeout_seconds if timeout is None else timeout
            return await asyncio.wait_for(fut, timeout=wait)
        except asyncio.TimeoutError as e:
            raise McpTimeoutError(f"Request timeout for {method}") from e
        finally:
            self._pending.pop(request_id, None)

    async def send_notification(self, method: str, params: dict[str, Any] | None = None) -> None:
        if self._transport is None:
            raise McpTransportError("Not connected")
        await self._transport.send(encode(make_notification(method, params)))

    def handle_message(self, raw: str | bytes) -> bool:
        """Resolve the pending call a response belongs to. False when dropped."""
        try:
            frame = parse_frame(raw)
        except FrameParseError as e:
            logger.debug("Ignoring malformed frame from server: {}", e.message)
            return False
        if not isinstance(frame, Response):
            logger.debug("Ignoring non-response frame from server")
            return False

        fut = self._pending.pop(frame.id, None)
        if fut is None or fut.done():
            logger.debug("Dropping response for unknown id {}", frame.id)
            return False
        if frame.error is not None:
            fut.set_exception(
                McpRemoteError(
                    frame.error.get("code", 0),
                    str(frame.error.get("message", "")),
                    frame.error.get("data"),
                )
            )
        else:
            fut.set_result(frame.result)
        return True

    async def _read_loop(self, transport: Transport) -> None:
        try:
            async for message in transport:
                self.handle_message(message)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.warning("MCP connection lost: {}", e)
        else:
            logger.info("MCP connection closed by server")
        if self._transport is transport:
            self._transport = None
            self.initialized = False
        self._fail_pending(McpTransportError("Connection closed"))

    def _fail_pending(self, exc: McpClientError) -> None:
        pending, self._pending = self._pending, {}
        for fut in pending.values():
            if not fut.done():
                fut.set_exception(exc)

    # --- MCP conveniences ----------------------------------------------------

    async def list_tools(self) -> list[dict[str, Any]]:
        result = await self.send_request("tools/list", {})
        return list((result or {}).get("tools") or [])

    async def call_tool(self, name: str, arguments: dict[str, Any] | None = None) -> dict[str, Any]:
        return await self.send_request("tools/call", {"name": name, "arguments": dict(arguments or {})})
