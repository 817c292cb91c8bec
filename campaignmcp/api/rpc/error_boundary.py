"""Common RPC error-boundary helpers for MCP dispatch."""

from __future__ import annotations

from typing import Any, Callable

from pydantic import ValidationError as PydanticValidationError

from campaignmcp.mcp.protocol import ErrorCode, RpcError
from campaignmcp.utils.exceptions import (
    CampaignMcpError,
    ErrorCategory,
    classify_exception,
    sanitize_error_message,
)


RpcResult = tuple[bool, Any | None, dict[str, Any] | None]

_CATEGORY_TO_CODE = {
    ErrorCategory.AUTH: ErrorCode.UNAUTHORIZED,
    ErrorCategory.PERMISSION: ErrorCode.FORBIDDEN,
    ErrorCategory.NOT_FOUND: ErrorCode.NOT_FOUND,
    ErrorCategory.VALIDATION: ErrorCode.INVALID_PARAMS,
    ErrorCategory.TIMEOUT: ErrorCode.TIMEOUT,
}


def rpc_error(code: int, message: str, data: Any = None) -> dict[str, Any]:
    err: dict[str, Any] = {"code": int(code), "message": message}
    if data is not None:
        err["data"] = data
    return err


def unknown_method_result(*, method: str) -> RpcResult:
    """Build standardized unknown-method response."""
    return False, None, rpc_error(ErrorCode.METHOD_NOT_FOUND, f"Unknown method: {method}")


def rpc_exception_result(
    *,
    method: str,
    exc: RpcError,
    log_info: Callable[..., None],
) -> RpcResult:
    log_info("RPC method {} returned error {}: {}", method, exc.code, exc.message)
    return False, None, exc.to_dict()


def invalid_params_result(
    *,
    method: str,
    exc: PydanticValidationError,
    log_info: Callable[..., None],
) -> RpcResult:
    """Map params validation failures to InvalidParams."""
    problems = [
        {"loc": ".".join(str(p) for p in err.get("loc", ())), "msg": err.get("msg", "invalid")}
        for err in exc.errors()
    ]
    log_info("RPC method {} invalid params: {}", method, problems)
    return False, None, rpc_error(ErrorCode.INVALID_PARAMS, f"Invalid params for {method}", problems)


def campaign_error_result(
    *,
    method: str,
    exc: CampaignMcpError,
    log_warning: Callable[..., None],
) -> RpcResult:
    """Map CampaignMcpError to RPC error payloads by category."""
    log_warning("RPC method {} failed with {}: {}", method, exc.code, exc.message)
    code = _CATEGORY_TO_CODE.get(exc.category, ErrorCode.INTERNAL_ERROR)
    return False, None, rpc_error(code, exc.message, {"error_code": exc.code, **exc.details} if exc.details else None)


def unhandled_exception_result(
    *,
    method: str,
    exc: Exception,
    log_exception: Callable[..., None],
) -> RpcResult:
    """Map unexpected exceptions to standardized InternalError responses."""
    code, category, _ = classify_exception(exc)
    sanitized = sanitize_error_message(str(exc)) or "Internal error"
    log_exception("RPC method {} failed with [{}]: {}", method, code, sanitized)
    details = {"error_code": code, "category": category.value}
    return False, None, rpc_error(ErrorCode.INTERNAL_ERROR, sanitized, details)


def classify_http_status(exc: Exception) -> int:
    """Map exception to appropriate HTTP status code."""
    if isinstance(exc, CampaignMcpError):
        category = exc.category
    else:
        _, category, _ = classify_exception(exc)
    category_to_status = {
        ErrorCategory.VALIDATION: 400,
        ErrorCategory.NOT_FOUND: 404,
        ErrorCategory.AUTH: 401,
        ErrorCategory.PERMISSION: 403,
        ErrorCategory.TIMEOUT: 504,
        ErrorCategory.RATE_LIMIT: 429,
        ErrorCategory.RETRYABLE: 503,
        ErrorCategory.TRANSPORT: 502,
    }
    return category_to_status.get(category, 500)
