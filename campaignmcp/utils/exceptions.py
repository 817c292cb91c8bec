"""
Error taxonomy shared by the server, the tools and the HTTP layer.

Every domain failure is a CampaignMcpError carrying a stable string code and
an ErrorCategory; the RPC error boundary and the HTTP exception handler map
the category onto a JSON-RPC code or an HTTP status. Messages that may end
up in logs or on the wire go through sanitize_error_message first.
"""

from __future__ import annotations

import asyncio
import json
import re
from enum import Enum
from typing import Any


class ErrorCategory(Enum):
    RECOVERABLE = "recoverable"
    RETRYABLE = "retryable"
    FATAL = "fatal"
    VALIDATION = "validation"
    NOT_FOUND = "not_found"
    PERMISSION = "permission"
    AUTH = "auth"
    TIMEOUT = "timeout"
    RATE_LIMIT = "rate_limit"
    TRANSPORT = "transport"


class CampaignMcpError(Exception):
    """Base for campaignmcp failures: message, code, category, details."""

    def __init__(
        self,
        message: str,
        code: str = "UNKNOWN_ERROR",
        category: ErrorCategory = ErrorCategory.FATAL,
        details: dict[str, Any] | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.code = code
        self.category = category
        self.details = dict(details or {})

    def to_dict(self) -> dict[str, Any]:
        return {
            "error": self.code,
            "message": self.message,
            "category": self.category.value,
            "details": self.details,
        }

    def __str__(self) -> str:
        return f"[{self.code}] {self.message}"


class ValidationError(CampaignMcpError):
    """Bad tool or HTTP input that passed schema checks but is still unusable."""

    def __init__(self, message: str, field: str | None = None):
        super().__init__(
            message,
            code="VALIDATION_ERROR",
            category=ErrorCategory.VALIDATION,
            details={"field": field} if field else None,
        )


class NotFoundError(CampaignMcpError):
    def __init__(self, resource_type: str, resource_id: str):
        super().__init__(
            f"{resource_type} not found: {resource_id}",
            code="NOT_FOUND",
            category=ErrorCategory.NOT_FOUND,
            details={"resource_type": resource_type, "resource_id": resource_id},
        )


class AuthError(CampaignMcpError):
    """Missing, invalid or expired credential."""

    def __init__(self, message: str, code: str = "UNAUTHORIZED", details: dict[str, Any] | None = None):
        super().__init__(message, code=code, category=ErrorCategory.AUTH, details=details)


class ClientNotAllowedError(AuthError):
    """Token requested for a client id outside auth.allowed_clients."""

    def __init__(self, client_id: str):
        super().__init__(
            f"Client '{client_id}' is not allowed",
            code="CLIENT_NOT_ALLOWED",
            details={"client_id": client_id},
        )


class PermissionDeniedError(CampaignMcpError):
    """Authenticated subject lacks the permission a tool needs."""

    def __init__(self, permission: str):
        super().__init__(
            f"Permission '{permission}' required",
            code="PERMISSION_DENIED",
            category=ErrorCategory.PERMISSION,
            details={"permission": permission},
        )


class RateLimitError(CampaignMcpError):
    """Token issuance refused until the client's window frees up."""

    def __init__(self, client_id: str, retry_after_seconds: int | None = None):
        super().__init__(
            f"Token issuance rate limit exceeded for {client_id}",
            code="RATE_LIMIT",
            category=ErrorCategory.RATE_LIMIT,
            details={"client_id": client_id, "retry_after_seconds": retry_after_seconds},
        )
        self.retry_after_seconds = retry_after_seconds


class ToolError(CampaignMcpError):
    """Failure reported back to the caller as an isError tool result."""

    def __init__(self, tool_name: str, message: str):
        super().__init__(
            f"Error executing tool '{tool_name}': {message}",
            code="TOOL_ERROR",
            category=ErrorCategory.RECOVERABLE,
            details={"tool_name": tool_name},
        )


# Credentials that must never reach a log line or an error payload.
_REDACT = (
    re.compile(r"(api[_-]?key|token|secret|password|auth)[=:]\s*['\"]?([^\s'\"]+)['\"]?", re.IGNORECASE),
    re.compile(r"bearer\s+[a-zA-Z0-9\-._~+/]+=*", re.IGNORECASE),
    re.compile(r"eyJ[a-zA-Z0-9_-]+\.[a-zA-Z0-9_-]+\.[a-zA-Z0-9_-]+"),
)


def sanitize_error_message(message: str, replacement: str = "[REDACTED]") -> str:
    for pattern in _REDACT:
        message = pattern.sub(replacement, message)
    return message


# Checked in order; the first matching type wins.
_TYPE_RULES: tuple[tuple[Any, str, ErrorCategory, bool], ...] = (
    (asyncio.TimeoutError, "TIMEOUT", ErrorCategory.TIMEOUT, True),
    (ConnectionError, "CONNECTION_ERROR", ErrorCategory.TRANSPORT, True),
    (json.JSONDecodeError, "JSON_PARSE_ERROR", ErrorCategory.VALIDATION, False),
    (FileNotFoundError, "FILE_NOT_FOUND", ErrorCategory.NOT_FOUND, False),
    (PermissionError, "PERMISSION_DENIED", ErrorCategory.PERMISSION, False),
    ((ValueError, TypeError, KeyError), "INVALID_VALUE", ErrorCategory.VALIDATION, False),
)

_TEXT_RULES: tuple[tuple[tuple[str, ...], str, ErrorCategory, bool], ...] = (
    (("timeout", "timed out"), "TIMEOUT", ErrorCategory.TIMEOUT, True),
    (("not found",), "NOT_FOUND", ErrorCategory.NOT_FOUND, False),
    (("unauthorized", "forbidden"), "UNAUTHORIZED", ErrorCategory.AUTH, False),
)


def classify_exception(exc: BaseException) -> tuple[str, ErrorCategory, bool]:
    """(error_code, category, should_retry) for any exception."""
    if isinstance(exc, CampaignMcpError):
        return exc.code, exc.category, exc.category in (ErrorCategory.RETRYABLE, ErrorCategory.RATE_LIMIT)

    for types, code, category, retry in _TYPE_RULES:
        if isinstance(exc, types):
            return code, category, retry

    text = str(exc).lower()
    for needles, code, category, retry in _TEXT_RULES:
        if any(n in text for n in needles):
            return code, category, retry

    return "INTERNAL_ERROR", ErrorCategory.FATAL, False
