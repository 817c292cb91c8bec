import asyncio
import json

from campaignmcp.utils.exceptions import (
    ClientNotAllowedError,
    ErrorCategory,
    NotFoundError,
    PermissionDeniedError,
    RateLimitError,
    classify_exception,
    sanitize_error_message,
)


def test_error_to_dict_and_str():
    err = NotFoundError("Campaign", "42")
    assert err.message == "Campaign not found: 42"
    assert str(err) == "[NOT_FOUND] Campaign not found: 42"
    assert err.to_dict() == {
        "error": "NOT_FOUND",
        "message": "Campaign not found: 42",
        "category": "not_found",
        "details": {"resource_type": "Campaign", "resource_id": "42"},
    }


def test_client_not_allowed_is_auth_category():
    err = ClientNotAllowedError("mallory")
    assert err.category == ErrorCategory.AUTH
    assert err.details == {"client_id": "mallory"}


def test_classify_exception():
    assert classify_exception(RateLimitError("claude", 3)) == ("RATE_LIMIT", ErrorCategory.RATE_LIMIT, True)
    assert classify_exception(PermissionDeniedError("x"))[1] == ErrorCategory.PERMISSION
    assert classify_exception(asyncio.TimeoutError())[1] == ErrorCategory.TIMEOUT
    assert classify_exception(ConnectionResetError())[1] == ErrorCategory.TRANSPORT
    assert classify_exception(json.JSONDecodeError("bad", "x", 0))[0] == "JSON_PARSE_ERROR"
    assert classify_exception(RuntimeError("thing not found"))[1] == ErrorCategory.NOT_FOUND
    assert classify_exception(RuntimeError("boom")) == ("INTERNAL_ERROR", ErrorCategory.FATAL, False)


def test_sanitize_error_message():
    raw = "call failed: Bearer abc.def.ghi api_key=sk-123 eyJhbGciOi.eyJzdWIi.c2lnbmF0dXJl"
    clean = sanitize_error_message(raw)
    assert "sk-123" not in clean
    assert "abc.def.ghi" not in clean
    assert "eyJhbGciOi" not in clean
    assert clean.startswith("call failed: ")
