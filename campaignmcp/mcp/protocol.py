"""JSON-RPC 2.0 frames as spoken over the MCP duplex connection.

Inbound text is parsed into one of three frame kinds (Request, Notification,
Response). Outbound frames are built as plain dicts by the ``make_*`` helpers
so that a ``null`` result is never confused with an absent one.
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass, field
from enum import IntEnum
from typing import Any, Union

from pydantic import BaseModel, ConfigDict, Field

JSONRPC_VERSION = "2.0"

RequestId = Union[str, int]


class ErrorCode(IntEnum):
    """Numeric error codes (JSON-RPC namespace plus MCP server extensions)."""

    PARSE_ERROR = -32700
    INVALID_REQUEST = -32600
    METHOD_NOT_FOUND = -32601
    INVALID_PARAMS = -32602
    INTERNAL_ERROR = -32603
    UNAUTHORIZED = -32001
    FORBIDDEN = -32002
    NOT_FOUND = -32003
    TIMEOUT = -32004


class RpcError(Exception):
    """Raised inside a request handler; becomes an error Response."""

    def __init__(self, code: int, message: str, data: Any = None):
        super().__init__(message)
        self.code = int(code)
        self.message = message
        self.data = data

    def to_dict(self) -> dict[str, Any]:
        err: dict[str, Any] = {"code": self.code, "message": self.message}
        if self.data is not None:
            err["data"] = self.data
        return err


@dataclass(frozen=True, slots=True)
class Request:
    id: RequestId
    method: str
    params: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class Notification:
    method: str
    params: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class Response:
    id: RequestId
    result: Any = None
    error: dict[str, Any] | None = None

    @property
    def is_error(self) -> bool:
        return self.error is not None


Frame = Union[Request, Notification, Response]


class FrameParseError(Exception):
    """Inbound text could not be turned into a frame.

    ``recovered_id`` is the best-effort request id (None when unaddressable).
    """

    def __init__(self, code: int, message: str, recovered_id: RequestId | None = None):
        super().__init__(message)
        self.code = int(code)
        self.message = message
        self.recovered_id = recovered_id


_ID_PATTERN = re.compile(r'"id"\s*:\s*(?:"((?:[^"\\]|\\.)*)"|(-?\d+))')


def _is_valid_id(value: Any) -> bool:
    return isinstance(value, (str, int)) and not isinstance(value, bool)


def recover_id(raw: str) -> RequestId | None:
    """Pull an id out of text that is not valid JSON."""
    match = _ID_PATTERN.search(raw or "")
    if not match:
        return None
    text_id, num_id = match.groups()
    if text_id is not None:
        try:
            return json.loads(f'"{text_id}"')
        except json.JSONDecodeError:
            return text_id
    return int(num_id)


def parse_frame(raw: str | bytes) -> Frame:
    """Parse one wire message. Raises FrameParseError on malformed input."""
    if isinstance(raw, (bytes, bytearray)):
        try:
            raw = raw.decode("utf-8")
        except UnicodeDecodeError as e:
            raise FrameParseError(ErrorCode.PARSE_ERROR, "Failed to parse message") from e
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as e:
        raise FrameParseError(ErrorCode.PARSE_ERROR, "Failed to parse message", recover_id(raw)) from e

    if not isinstance(data, dict):
        raise FrameParseError(ErrorCode.INVALID_REQUEST, "message must be a JSON object")

    msg_id = data.get("id")
    has_id = "id" in data and _is_valid_id(msg_id)
    addr = msg_id if has_id else None

    version = data.get("jsonrpc", JSONRPC_VERSION)
    if version != JSONRPC_VERSION:
        raise FrameParseError(ErrorCode.INVALID_REQUEST, f"unsupported jsonrpc version: {version!r}", addr)

    if "method" in data:
        method = data.get("method")
        if not isinstance(method, str) or not method:
            raise FrameParseError(ErrorCode.INVALID_REQUEST, "method must be a non-empty string", addr)
        params = data.get("params")
        if params is None:
            params = {}
        if not isinstance(params, dict):
            raise FrameParseError(ErrorCode.INVALID_REQUEST, "params must be an object", addr)
        if "id" not in data:
            return Notification(method=method, params=params)
        if not has_id:
            raise FrameParseError(ErrorCode.INVALID_REQUEST, "id must be a string or number")
        return Request(id=msg_id, method=method, params=params)

    if "result" in data or "error" in data:
        if not has_id:
            raise FrameParseError(ErrorCode.INVALID_REQUEST, "response without a usable id")
        error = data.get("error")
        if error is not None:
            if not isinstance(error, dict):
                error = {"code": int(ErrorCode.INTERNAL_ERROR), "message": str(error)}
            return Response(id=msg_id, error=error)
        return Response(id=msg_id, result=data.get("result"))

    raise FrameParseError(ErrorCode.INVALID_REQUEST, "unknown message type", addr)


def make_request(request_id: RequestId, method: str, params: dict[str, Any] | None = None) -> dict[str, Any]:
    frame: dict[str, Any] = {"jsonrpc": JSONRPC_VERSION, "id": request_id, "method": method}
    if params is not None:
        frame["params"] = params
    return frame


def make_notification(method: str, params: dict[str, Any] | None = None) -> dict[str, Any]:
    frame: dict[str, Any] = {"jsonrpc": JSONRPC_VERSION, "method": method}
    if params is not None:
        frame["params"] = params
    return frame


def make_result(request_id: RequestId, result: Any) -> dict[str, Any]:
    return {"jsonrpc": JSONRPC_VERSION, "id": request_id, "result": result}


def make_error(request_id: RequestId, code: int, message: str, data: Any = None) -> dict[str, Any]:
    err: dict[str, Any] = {"code": int(code), "message": message}
    if data is not None:
        err["data"] = data
    return {"jsonrpc": JSONRPC_VERSION, "id": request_id, "error": err}


def encode(frame: dict[str, Any]) -> str:
    return json.dumps(frame, ensure_ascii=False)


# --- Method params -----------------------------------------------------------


class PeerInfo(BaseModel):
    """clientInfo / serverInfo."""
    name: str = "unknown"
    version: str = "0.0.0"


class AuthParams(BaseModel):
    token: str | None = None


class InitializeParams(BaseModel):
    """Params of ``initialize``. Unknown keys are kept out of the way, not rejected."""
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    protocol_version: str | None = Field(default=None, alias="protocolVersion")
    capabilities: dict[str, Any] = Field(default_factory=dict)
    client_info: PeerInfo = Field(default_factory=PeerInfo, alias="clientInfo")
    auth: AuthParams | None = None


class CallToolParams(BaseModel):
    """Params of ``tools/call``."""
    model_config = ConfigDict(extra="ignore")

    name: str
    arguments: dict[str, Any] = Field(default_factory=dict)
