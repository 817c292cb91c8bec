"""Handshake and per-request authorization for MCP connections."""

from __future__ import annotations

from typing import Any

from loguru import logger

from campaignmcp.gateway.connections import Connection, ConnectionRegistry
from campaignmcp.gateway.token_service import Subject, TokenService
from campaignmcp.mcp.protocol import ErrorCode
from campaignmcp.utils.exceptions import PermissionDeniedError

# Tool name -> permission the caller must hold when per-request checks are on.
TOOL_PERMISSIONS: dict[str, str] = {
    "list_campaigns": "campaigns:read",
    "get_campaign": "campaigns:read",
    "aggregate_metrics": "metrics:read",
    "export_campaigns": "exports:create",
    "health_check": "health:read",
}


def required_permission(tool_name: str) -> str | None:
    return TOOL_PERMISSIONS.get(tool_name)


def extract_token(params: dict[str, Any] | None) -> str | None:
    """Token carried as params.auth.token."""
    auth = (params or {}).get("auth")
    if not isinstance(auth, dict):
        return None
    token = auth.get("token")
    if not isinstance(token, str):
        return None
    return token.strip() or None


def bind_subject(registry: ConnectionRegistry, connection_id: str, subject: Subject) -> Connection | None:
    """Mark the connection authenticated as subject (one replace, no torn state)."""
    return registry.update(
        connection_id,
        authenticated=True,
        subject_id=subject.id,
        client_id=subject.client_id,
        permissions=subject.permissions,
    )


def try_authorize_handshake(
    *,
    params: dict[str, Any],
    connection_id: str,
    registry: ConnectionRegistry,
    token_service: TokenService,
    strict: bool,
) -> dict[str, Any] | None:
    """
    Authenticate the initialize payload.

    On success the connection is bound to the subject and None is returned.
    On failure: strict mode returns an error dict; lenient mode logs and
    returns None, leaving the connection as it was (never downgraded).
    """
    token = extract_token(params)
    if not token:
        reason = "Authentication token required"
    else:
        subject = token_service.validate(token)
        if subject is not None:
            bind_subject(registry, connection_id, subject)
            logger.info("Connection {} authenticated during initialization as {}", connection_id, subject.id)
            return None
        reason = "Invalid or expired authentication token"

    if strict:
        logger.warning("Handshake rejected for {}: {}", connection_id, reason)
        return {"code": int(ErrorCode.UNAUTHORIZED), "message": reason}
    logger.info("Authentication failed during initialization for {}: {} (admitted unauthenticated)", connection_id, reason)
    return None


def try_authorize_request(
    *,
    method: str,
    params: dict[str, Any],
    connection_id: str,
    registry: ConnectionRegistry,
    token_service: TokenService,
) -> dict[str, Any] | None:
    """
    Per-request credential and permission check. Returns an error dict or None.

    A token in params wins; otherwise the subject bound at handshake is used
    as long as it is still live.
    """
    subject: Subject | None = None
    token = extract_token(params)
    if token:
        subject = token_service.validate(token)
        if subject is None:
            return {"code": int(ErrorCode.UNAUTHORIZED), "message": "Invalid or expired authentication token"}
        bind_subject(registry, connection_id, subject)
    else:
        conn = registry.get(connection_id)
        if conn is not None and conn.authenticated and conn.subject_id:
            subject = token_service.get_subject(conn.subject_id)
        if subject is None:
            return {"code": int(ErrorCode.UNAUTHORIZED), "message": "Authentication token required"}

    if method == "tools/call":
        permission = required_permission(str(params.get("name") or ""))
        if permission and not token_service.has_permission(subject, permission):
            logger.info("Subject {} denied {} (missing {})", subject.id, params.get("name"), permission)
            return {"code": int(ErrorCode.FORBIDDEN), "message": PermissionDeniedError(permission).message}
    return None
