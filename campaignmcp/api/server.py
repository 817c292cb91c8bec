"""FastAPI server: MCP WebSocket endpoint plus the HTTP auth/discovery routes.

One process hosts the ProtocolServer on the WebSocket path and exposes token
issuance, token validation, server info and health over HTTP.
"""

import asyncio
import hmac
from contextlib import asynccontextmanager, suppress
from datetime import datetime, timezone
from typing import Any

import uvicorn
from fastapi import APIRouter, FastAPI, Request, WebSocket
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles
from loguru import logger
from pydantic import BaseModel

from campaignmcp import PROTOCOL_VERSION, SERVER_DESCRIPTION, SERVER_NAME, __version__
from campaignmcp.api.rpc.error_boundary import classify_http_status
from campaignmcp.api.rpc.protocol_server import SERVER_CAPABILITIES, ProtocolServer, create_protocol_server
from campaignmcp.api.rpc.ws_loop import run_mcp_ws_loop
from campaignmcp.config.loader import validate_environment
from campaignmcp.config.schema import Config
from campaignmcp.gateway.auth_rate_limit import IssuanceRateLimiter
from campaignmcp.utils.exceptions import (
    CampaignMcpError,
    ClientNotAllowedError,
    RateLimitError,
    classify_exception,
    sanitize_error_message,
)


class TokenRequest(BaseModel):
    client_id: str | None = None
    scope: list[str] | str | None = None
    redirect_uri: str | None = None


class ValidateRequest(BaseModel):
    token: str | None = None


def _envelope(
    status_code: int,
    *,
    data: Any = None,
    error: str | None = None,
    message: str | None = None,
    headers: dict[str, str] | None = None,
) -> JSONResponse:
    content: dict[str, Any] = {"success": error is None}
    if data is not None:
        content["data"] = data
    if error is not None:
        content["error"] = error
    if message is not None:
        content["message"] = message
    return JSONResponse(status_code=status_code, content=content, headers=headers)


def _normalize_scope(scope: list[str] | str | None) -> list[str]:
    if scope is None:
        return []
    if isinstance(scope, str):
        scope = scope.replace(",", " ").split()
    return [str(s).strip() for s in scope if str(s).strip()]


def _server_info() -> dict[str, Any]:
    return {
        "name": SERVER_NAME,
        "version": __version__,
        "description": SERVER_DESCRIPTION,
        "protocolVersion": PROTOCOL_VERSION,
        "capabilities": SERVER_CAPABILITIES,
    }


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


api_router = APIRouter()


@api_router.post("/v1/mcp/auth/token")
async def issue_token(request: Request, body: TokenRequest):
    """Issue a bearer token for an MCP client."""
    config: Config = request.app.state.config
    server: ProtocolServer = request.app.state.mcp_server
    limiter: IssuanceRateLimiter = request.app.state.rate_limiter

    expected_key = config.server.api_key
    if expected_key:
        given = request.headers.get("x-api-key") or ""
        if not hmac.compare_digest(given.encode("utf-8"), expected_key.encode("utf-8")):
            return _envelope(401, error="Unauthorized", message="Invalid or missing API key")

    client_id = (body.client_id or "").strip()
    if not client_id:
        return _envelope(400, error="Bad Request", message="client_id is required")

    check = limiter.hit(client_id)
    if not check.allowed:
        limited = RateLimitError(client_id, max(1, check.retry_after_ms // 1000))
        logger.warning("{}", limited.message)
        return _envelope(
            429,
            error="Too Many Requests",
            message=limited.message,
            headers={"Retry-After": str(limited.retry_after_seconds)},
        )

    try:
        credential = server.token_service.issue(client_id, _normalize_scope(body.scope))
    except ClientNotAllowedError as e:
        return _envelope(400, error="Authentication Failed", message=e.message)
    return _envelope(200, data=credential.to_dict())


@api_router.post("/v1/mcp/auth/validate")
async def validate_token(request: Request, body: ValidateRequest | None = None):
    """Validate a token from the body or an Authorization: Bearer header."""
    server: ProtocolServer = request.app.state.mcp_server
    token = body.token if body is not None else None
    if not token:
        header = request.headers.get("authorization") or ""
        if header.lower().startswith("bearer "):
            token = header[7:].strip()
    if not token:
        return _envelope(400, error="Bad Request", message="Token is required")

    subject = server.token_service.validate(token)
    if subject is None:
        return _envelope(401, error="Unauthorized", message="Invalid or expired token")
    return _envelope(
        200,
        data={
            "valid": True,
            "user": {
                "id": subject.id,
                "clientId": subject.client_id,
                "permissions": list(subject.permissions),
                "createdAt": datetime.fromtimestamp(subject.created_at, timezone.utc).isoformat(),
                "lastAccessAt": datetime.fromtimestamp(subject.last_access_at, timezone.utc).isoformat(),
            },
        },
    )


@api_router.get("/v1/mcp/info")
async def mcp_info(request: Request):
    config: Config = request.app.state.config
    server: ProtocolServer = request.app.state.mcp_server
    valid, errors = validate_environment(config)
    return _envelope(
        200,
        data={
            "serverInfo": _server_info(),
            "config": {
                "path": config.server.path,
                "authEnabled": config.auth_enabled,
                "allowedClients": list(config.auth.allowed_clients),
                "corsOrigin": config.cors_origins,
            },
            "validation": {"valid": valid, "errors": errors},
            "stats": server.stats(),
        },
    )


@api_router.get("/v1/mcp/connections")
async def mcp_connections(request: Request):
    server: ProtocolServer = request.app.state.mcp_server
    connections = server.connections.list_connections()
    return _envelope(
        200,
        data={"connections": [c.to_dict() for c in connections], "total": len(connections)},
    )


@api_router.get("/v1/mcp/tools")
async def mcp_tools(request: Request):
    server: ProtocolServer = request.app.state.mcp_server
    tools = server.tools.list()
    return _envelope(200, data={"tools": tools, "total": len(tools)})


@api_router.get("/v1/mcp/health")
async def mcp_health(request: Request):
    config: Config = request.app.state.config
    server: ProtocolServer = request.app.state.mcp_server
    valid, errors = validate_environment(config)
    data = {
        "status": "healthy" if valid else "unhealthy",
        "timestamp": _now_iso(),
        "server": _server_info(),
        "stats": server.stats(),
        "validation": {"valid": valid, "errors": errors},
    }
    if valid:
        return _envelope(200, data=data)
    return JSONResponse(
        status_code=503,
        content={"success": False, "data": data, "error": "Unhealthy", "message": "; ".join(errors)},
    )


@api_router.get("/v1/health")
async def health():
    return {
        "success": True,
        "message": "Campaign Performance API is running",
        "timestamp": _now_iso(),
        "version": __version__,
    }


async def campaign_error_handler(request: Request, exc: CampaignMcpError):
    return _envelope(classify_http_status(exc), error=exc.code, message=exc.message)


async def generic_exception_handler(request: Request, exc: Exception):
    code, _, _ = classify_exception(exc)
    sanitized = sanitize_error_message(str(exc))
    logger.exception("Unhandled exception [{}]: {}", code, sanitized)
    return _envelope(500, error="Internal Server Error", message="An unexpected error occurred")


def create_app(config: Config | None = None, *, server: ProtocolServer | None = None) -> FastAPI:
    """Create the FastAPI application bound to config."""
    config = config or Config()
    server = server or create_protocol_server(config)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("Starting {} v{}", SERVER_NAME, __version__)
        valid, errors = validate_environment(config)
        for error in errors:
            logger.warning("Environment check: {}", error)
        sweep_task = asyncio.create_task(server.token_service.run_periodic_sweep())
        try:
            yield
        finally:
            sweep_task.cancel()
            with suppress(asyncio.CancelledError):
                await sweep_task
            logger.info("{} stopped", SERVER_NAME)

    app = FastAPI(
        title=SERVER_NAME,
        description=SERVER_DESCRIPTION,
        version=__version__,
        lifespan=lifespan,
    )
    app.state.config = config
    app.state.mcp_server = server
    app.state.rate_limiter = IssuanceRateLimiter(
        lambda client_id: (config.rate_limit_for(client_id).window_ms, config.rate_limit_for(client_id).max)
    )

    app.add_exception_handler(CampaignMcpError, campaign_error_handler)
    app.add_exception_handler(Exception, generic_exception_handler)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    async def mcp_websocket(websocket: WebSocket):
        """MCP JSON-RPC over WebSocket."""
        await run_mcp_ws_loop(
            websocket=websocket,
            server=websocket.app.state.mcp_server,
            allowed_origins=config.cors_origins,
        )

    app.add_api_websocket_route(config.server.path, mcp_websocket)
    app.include_router(api_router, prefix="/api")

    exports_dir = config.exports_path
    try:
        exports_dir.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        logger.warning("Export directory {} unavailable: {}", exports_dir, e)
    app.mount("/exports", StaticFiles(directory=str(exports_dir), check_dir=False), name="exports")
    return app


def run_server(config: Config):
    """Run the API server."""
    uvicorn.run(
        create_app(config),
        host=config.server.host,
        port=config.server.port,
        timeout_keep_alive=30,
        timeout_graceful_shutdown=10,
        log_level="warning",
    )
