import json

import pytest
from fastapi import WebSocketDisconnect
from fastapi.testclient import TestClient

from campaignmcp.api.rpc.protocol_server import create_protocol_server
from campaignmcp.api.server import create_app


def _frame(request_id, method, params=None):
    frame = {"jsonrpc": "2.0", "id": request_id, "method": method}
    if params is not None:
        frame["params"] = params
    return json.dumps(frame)


def _init(token=None):
    params = {"protocolVersion": "2024-11-05", "clientInfo": {"name": "pytest", "version": "1"}}
    if token:
        params["auth"] = {"token": token}
    return _frame(1, "initialize", params)


@pytest.fixture
def server(config, token_service):
    return create_protocol_server(config, token_service=token_service)


@pytest.fixture
def client(config, server):
    with TestClient(create_app(config, server=server)) as c:
        yield c


def _connection_total(client):
    return client.get("/api/v1/mcp/connections").json()["data"]["total"]


def test_concurrent_requests_are_answered_by_id(client):
    with client.websocket_connect("/mcp") as ws:
        ws.send_text(_init())
        assert json.loads(ws.receive_text())["id"] == 1

        ws.send_text(_frame(10, "tools/list"))
        ws.send_text(_frame(11, "tools/call", {"name": "health_check", "arguments": {}}))
        ws.send_text(_frame(12, "tools/call", {"name": "get_campaign", "arguments": {"id": "1"}}))
        ws.send_text(_frame(13, "no/such/method"))

        replies = {}
        for _ in range(4):
            reply = json.loads(ws.receive_text())
            replies[reply["id"]] = reply

    assert sorted(replies) == [10, 11, 12, 13]
    assert len(replies[10]["result"]["tools"]) == 5
    assert "isError" not in replies[11]["result"]
    assert json.loads(replies[12]["result"]["content"][0]["text"])["id"] == "1"
    assert replies[13]["error"]["code"] == -32601


def test_binary_frames_are_decoded_as_text(client):
    with client.websocket_connect("/mcp") as ws:
        ws.send_bytes(_init().encode("utf-8"))
        reply = json.loads(ws.receive_text())
        assert reply["id"] == 1
        assert reply["result"]["protocolVersion"] == "2024-11-05"

        ws.send_bytes(_frame(2, "prompts/list").encode("utf-8"))
        assert json.loads(ws.receive_text())["result"] == {"prompts": []}


def test_parse_error_keeps_socket_open(client):
    with client.websocket_connect("/mcp") as ws:
        ws.send_text('{"jsonrpc":"2.0","id":7,"method":')
        reply = json.loads(ws.receive_text())
        assert reply["id"] == 7
        assert reply["error"]["code"] == -32700

        ws.send_text(_frame(8, "resources/list"))
        assert json.loads(ws.receive_text())["result"] == {"resources": []}


def test_closing_the_socket_removes_the_connection(client):
    with client.websocket_connect("/mcp") as ws:
        ws.send_text(_init())
        ws.receive_text()
        assert _connection_total(client) == 1

    assert _connection_total(client) == 0


def test_disallowed_origin_is_refused(client):
    with pytest.raises(WebSocketDisconnect) as exc_info:
        with client.websocket_connect("/mcp", headers={"origin": "https://evil.example"}):
            pass
    assert exc_info.value.code == 1008
    assert _connection_total(client) == 0


def test_swept_subject_closes_its_socket(client, server, token_service, clock):
    cred = token_service.issue("claude")
    with client.websocket_connect("/mcp") as ws:
        ws.send_text(_init(token=cred.access_token))
        ws.receive_text()
        [record] = server.connections.list_connections()
        assert record.authenticated is True

        clock.advance(25 * 3600)
        assert token_service.sweep() == {record.subject_id}

        with pytest.raises(WebSocketDisconnect) as exc_info:
            ws.receive_text()
        assert exc_info.value.code == 1008

    assert _connection_total(client) == 0
