"""MCP dispatch: handshake, method table and per-connection state machine.

The server is transport-agnostic. A transport calls ``open_connection`` when
a link is accepted, feeds every inbound text message to ``handle_message``
and writes back whatever ``Reply`` it gets, then calls ``close_connection``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Union

from loguru import logger
from pydantic import ValidationError as PydanticValidationError

from campaignmcp import PROTOCOL_VERSION, SERVER_NAME, __version__
from campaignmcp.api.rpc.error_boundary import (
    RpcResult,
    campaign_error_result,
    invalid_params_result,
    rpc_error,
    rpc_exception_result,
    unhandled_exception_result,
    unknown_method_result,
)
from campaignmcp.config.schema import Config
from campaignmcp.gateway.connect_auth import extract_token, try_authorize_handshake, try_authorize_request
from campaignmcp.gateway.connections import Connection, ConnectionRegistry, ConnectionState
from campaignmcp.gateway.token_service import TokenService
from campaignmcp.mcp.protocol import (
    CallToolParams,
    ErrorCode,
    FrameParseError,
    InitializeParams,
    Notification,
    Request,
    RequestId,
    Response,
    RpcError,
    make_error,
    make_result,
    parse_frame,
)
from campaignmcp.tools.registry import ToolRegistry
from campaignmcp.utils.exceptions import CampaignMcpError

SERVER_CAPABILITIES: dict[str, Any] = {
    "tools": {"listChanged": False},
    "logging": {},
}


@dataclass(frozen=True, slots=True)
class RequestContext:
    connection_id: str
    method: str
    params: dict[str, Any] = field(default_factory=dict)
    request_id: RequestId | None = None


@dataclass(frozen=True, slots=True)
class Reply:
    """A frame to write back on the connection."""
    frame: dict[str, Any]


class NoReply:
    """Nothing goes back on the wire (notifications, client responses, garbage)."""

    __slots__ = ()

    def __repr__(self) -> str:
        return "NO_REPLY"


NO_REPLY = NoReply()

Outcome = Union[Reply, NoReply]
RequestHandler = Callable[[RequestContext], Awaitable[Any]]
NotificationHandler = Callable[[RequestContext], Awaitable[None]]


class ProtocolServer:
    """
    Owns the dispatch tables and drives Connected -> Initialized -> Closed.

    Authentication is orthogonal to the state machine: with the default
    lenient handshake a connection can be Initialized but unauthenticated.
    """

    def __init__(
        self,
        *,
        config: Config,
        token_service: TokenService,
        connections: ConnectionRegistry,
        tools: ToolRegistry,
    ):
        self._config = config
        self._token_service = token_service
        self._connections = connections
        self._tools = tools
        self._handlers: dict[str, RequestHandler] = {
            "initialize": self._handle_initialize,
            "tools/list": self._handle_list_tools,
            "tools/call": self._handle_call_tool,
            "resources/list": self._handle_list_resources,
            "prompts/list": self._handle_list_prompts,
        }
        self._notification_handlers: dict[str, NotificationHandler] = {
            "notifications/initialized": self._on_initialized,
        }

    @property
    def connections(self) -> ConnectionRegistry:
        return self._connections

    @property
    def tools(self) -> ToolRegistry:
        return self._tools

    @property
    def token_service(self) -> TokenService:
        return self._token_service

    @property
    def methods(self) -> list[str]:
        return list(self._handlers)

    # --- connection lifecycle ------------------------------------------------

    def open_connection(
        self,
        connection_id: str | None = None,
        *,
        on_purge: Callable[[Connection], None] | None = None,
    ) -> Connection:
        """
        Register a transport link. on_purge is called if the server drops the
        connection on its own (its subject was swept); the transport should
        hang up when that happens.
        """
        conn = self._connections.create(connection_id, on_purge=on_purge)
        logger.info("New MCP connection: {}", conn.id)
        return conn

    def close_connection(self, connection_id: str) -> None:
        """Terminal. Safe to call more than once."""
        if self._connections.remove(connection_id) is not None:
            logger.info("MCP connection closed: {}", connection_id)

    def _refresh_subject(self, ctx: RequestContext) -> None:
        # Traffic keeps the bound subject (and any attached token's subject) out of the sweep.
        conn = self._connections.get(ctx.connection_id)
        if conn is not None and conn.subject_id:
            self._token_service.touch(conn.subject_id)
        token = extract_token(ctx.params)
        if token:
            self._token_service.validate(token)

    def stats(self) -> dict[str, int]:
        return {
            "activeConnections": len(self._connections),
            "authenticatedConnections": self._connections.authenticated_count(),
            "totalSubjects": self._token_service.subject_count,
        }

    # --- inbound -------------------------------------------------------------

    async def handle_message(self, connection_id: str, raw: str | bytes) -> Outcome:
        """Process one inbound wire message."""
        if self._connections.get(connection_id) is None:
            logger.warning("No connection found for {}; dropping message", connection_id)
            return NO_REPLY

        try:
            frame = parse_frame(raw)
        except FrameParseError as e:
            if e.recovered_id is None:
                logger.warning("[{}] Dropping unaddressable frame: {}", connection_id, e.message)
                return NO_REPLY
            logger.warning("[{}] Malformed frame for id {}: {}", connection_id, e.recovered_id, e.message)
            return Reply(make_error(e.recovered_id, e.code, e.message))

        if isinstance(frame, Request):
            return Reply(await self.handle_request(connection_id, frame))
        if isinstance(frame, Notification):
            await self.handle_notification(connection_id, frame)
            return NO_REPLY
        if isinstance(frame, Response):
            logger.debug("[{}] Ignoring response frame from client (id={})", connection_id, frame.id)
        return NO_REPLY

    async def handle_request(self, connection_id: str, request: Request) -> dict[str, Any]:
        """Dispatch a request. Always returns exactly one response frame."""
        ok, payload, error = await self._dispatch(connection_id, request)
        if ok:
            return make_result(request.id, payload)
        error = error or rpc_error(ErrorCode.INTERNAL_ERROR, "Internal error")
        return make_error(request.id, error["code"], error["message"], error.get("data"))

    async def handle_notification(self, connection_id: str, notification: Notification) -> NoReply:
        """Run a notification handler; failures are logged, never answered."""
        handler = self._notification_handlers.get(notification.method)
        if handler is None:
            logger.debug("[{}] Received notification: {}", connection_id, notification.method)
            return NO_REPLY
        ctx = RequestContext(connection_id=connection_id, method=notification.method, params=notification.params)
        try:
            await handler(ctx)
        except Exception as e:
            logger.warning("[{}] Notification {} failed: {}", connection_id, notification.method, e)
        return NO_REPLY

    async def _dispatch(self, connection_id: str, request: Request) -> RpcResult:
        method = request.method
        ctx = RequestContext(
            connection_id=connection_id,
            method=method,
            params=request.params,
            request_id=request.id,
        )

        if self._config.auth_enabled:
            self._refresh_subject(ctx)

        gate = self._gate(ctx)
        if gate is not None:
            return False, None, gate

        handler = self._handlers.get(method)
        if handler is None:
            logger.info("[{}] Unknown method: {}", connection_id, method)
            return unknown_method_result(method=method)

        try:
            return True, await handler(ctx), None
        except RpcError as e:
            return rpc_exception_result(method=method, exc=e, log_info=logger.info)
        except PydanticValidationError as e:
            return invalid_params_result(method=method, exc=e, log_info=logger.info)
        except CampaignMcpError as e:
            return campaign_error_result(method=method, exc=e, log_warning=logger.warning)
        except Exception as e:
            return unhandled_exception_result(method=method, exc=e, log_exception=logger.exception)

    def _gate(self, ctx: RequestContext) -> dict[str, Any] | None:
        """Pre-dispatch checks that are off unless configured."""
        if ctx.method == "initialize":
            return None
        auth = self._config.auth
        if auth.require_initialize:
            conn = self._connections.get(ctx.connection_id)
            if conn is None or conn.state != ConnectionState.INITIALIZED:
                return rpc_error(ErrorCode.INVALID_REQUEST, "Connection not initialized")
        if self._config.auth_enabled and auth.enforce_requests:
            return try_authorize_request(
                method=ctx.method,
                params=ctx.params,
                connection_id=ctx.connection_id,
                registry=self._connections,
                token_service=self._token_service,
            )
        return None

    # --- method handlers -----------------------------------------------------

    async def _handle_initialize(self, ctx: RequestContext) -> dict[str, Any]:
        params = InitializeParams.model_validate(ctx.params)
        if params.protocol_version and params.protocol_version != PROTOCOL_VERSION:
            logger.warning(
                "[{}] Client protocol version {} differs from {}",
                ctx.connection_id,
                params.protocol_version,
                PROTOCOL_VERSION,
            )

        if self._config.auth_enabled:
            error = try_authorize_handshake(
                params=ctx.params,
                connection_id=ctx.connection_id,
                registry=self._connections,
                token_service=self._token_service,
                strict=self._config.auth.strict_handshake,
            )
            if error is not None:
                raise RpcError(error["code"], error["message"])

        conn = self._connections.get(ctx.connection_id)
        if conn is not None and conn.state == ConnectionState.INITIALIZED:
            logger.info("[{}] Re-initialize from {}", ctx.connection_id, params.client_info.name)

        self._connections.update(
            ctx.connection_id,
            state=ConnectionState.INITIALIZED,
            client_info=params.client_info.model_dump(),
            capabilities=dict(params.capabilities),
            protocol_version=params.protocol_version,
        )
        logger.info(
            "[{}] Initialized {} {}",
            ctx.connection_id,
            params.client_info.name,
            params.client_info.version,
        )
        return {
            "protocolVersion": PROTOCOL_VERSION,
            "capabilities": SERVER_CAPABILITIES,
            "serverInfo": {"name": SERVER_NAME, "version": __version__},
        }

    async def _handle_list_tools(self, ctx: RequestContext) -> dict[str, Any]:
        return {"tools": self._tools.list()}

    async def _handle_call_tool(self, ctx: RequestContext) -> dict[str, Any]:
        params = CallToolParams.model_validate(ctx.params)
        result = await self._tools.execute(params.name, params.arguments)
        return result.to_dict()

    async def _handle_list_resources(self, ctx: RequestContext) -> dict[str, Any]:
        return {"resources": []}

    async def _handle_list_prompts(self, ctx: RequestContext) -> dict[str, Any]:
        return {"prompts": []}

    async def _on_initialized(self, ctx: RequestContext) -> None:
        logger.info("Client {} initialized successfully", ctx.connection_id)


def create_protocol_server(
    config: Config,
    *,
    token_service: TokenService | None = None,
    tools: ToolRegistry | None = None,
) -> ProtocolServer:
    """Wire a ProtocolServer with its collaborators from config."""
    token_service = token_service or TokenService(config.auth)
    if tools is None:
        from campaignmcp.campaigns.provider import InMemoryCampaignProvider
        from campaignmcp.tools.campaign_tools import create_campaign_tool_registry

        provider = InMemoryCampaignProvider.from_path(
            config.data.campaigns_path,
            exports_dir=config.exports_path,
            base_url=config.server.base_url,
        )
        tools = create_campaign_tool_registry(provider)
    return ProtocolServer(
        config=config,
        token_service=token_service,
        connections=ConnectionRegistry(token_service),
        tools=tools,
    )
