import json

import pytest

from campaignmcp.mcp.protocol import (
    ErrorCode,
    FrameParseError,
    Notification,
    Request,
    Response,
    encode,
    make_error,
    make_result,
    parse_frame,
    recover_id,
)


def test_parse_request():
    frame = parse_frame('{"jsonrpc":"2.0","id":7,"method":"tools/list","params":{}}')
    assert frame == Request(id=7, method="tools/list", params={})


def test_parse_notification_without_params():
    frame = parse_frame('{"jsonrpc":"2.0","method":"notifications/initialized"}')
    assert isinstance(frame, Notification)
    assert frame.params == {}


def test_parse_response_with_error():
    frame = parse_frame('{"jsonrpc":"2.0","id":"a","error":{"code":-32601,"message":"nope"}}')
    assert isinstance(frame, Response)
    assert frame.is_error
    assert frame.error["code"] == -32601


def test_parse_response_with_null_result():
    frame = parse_frame(b'{"jsonrpc":"2.0","id":3,"result":null}')
    assert frame == Response(id=3, result=None)
    assert not frame.is_error


def test_bad_json_recovers_id():
    with pytest.raises(FrameParseError) as exc_info:
        parse_frame('{"jsonrpc":"2.0","id":42,"method":')
    assert exc_info.value.code == ErrorCode.PARSE_ERROR
    assert exc_info.value.recovered_id == 42


def test_bad_json_without_id():
    with pytest.raises(FrameParseError) as exc_info:
        parse_frame("garbage")
    assert exc_info.value.recovered_id is None


@pytest.mark.parametrize(
    "raw",
    [
        "[1, 2]",
        '{"jsonrpc":"1.0","id":1,"method":"x"}',
        '{"jsonrpc":"2.0","id":1,"method":""}',
        '{"jsonrpc":"2.0","id":1,"method":"x","params":[1]}',
        '{"jsonrpc":"2.0","id":true,"method":"x"}',
        '{"jsonrpc":"2.0","id":1}',
    ],
)
def test_structurally_invalid_frames(raw):
    with pytest.raises(FrameParseError) as exc_info:
        parse_frame(raw)
    assert exc_info.value.code == ErrorCode.INVALID_REQUEST


def test_recover_string_id():
    assert recover_id('{"id": "req-1", "method": ') == "req-1"
    assert recover_id("{}") is None


def test_builders_keep_null_result_distinct_from_error():
    assert make_result(1, None) == {"jsonrpc": "2.0", "id": 1, "result": None}
    err = make_error(1, ErrorCode.METHOD_NOT_FOUND, "Unknown method: x")
    assert err["error"] == {"code": -32601, "message": "Unknown method: x"}
    assert "result" not in err
    assert json.loads(encode(err)) == err
