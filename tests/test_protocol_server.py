import json

import pytest

from campaignmcp.api.rpc.protocol_server import NO_REPLY, Reply, create_protocol_server
from campaignmcp.gateway.connections import ConnectionState


def _req(request_id, method, params=None):
    frame = {"jsonrpc": "2.0", "id": request_id, "method": method}
    if params is not None:
        frame["params"] = params
    return json.dumps(frame)


def _init_params(token=None):
    params = {
        "protocolVersion": "2024-11-05",
        "capabilities": {},
        "clientInfo": {"name": "pytest", "version": "1.0"},
    }
    if token:
        params["auth"] = {"token": token}
    return params


@pytest.fixture
def server(config, token_service):
    return create_protocol_server(config, token_service=token_service)


async def _send(server, conn_id, raw):
    outcome = await server.handle_message(conn_id, raw)
    assert isinstance(outcome, Reply)
    return outcome.frame


@pytest.mark.asyncio
async def test_initialize_returns_server_info(server):
    conn = server.open_connection()
    frame = await _send(server, conn.id, _req(1, "initialize", _init_params()))
    result = frame["result"]
    assert result["protocolVersion"] == "2024-11-05"
    assert result["capabilities"] == {"tools": {"listChanged": False}, "logging": {}}
    assert result["serverInfo"]["name"] == "Campaign Performance MCP Server"
    assert server.connections.get(conn.id).state == ConnectionState.INITIALIZED


@pytest.mark.asyncio
async def test_second_initialize_is_accepted(server):
    conn = server.open_connection()
    first = await _send(server, conn.id, _req(1, "initialize", _init_params()))
    params = _init_params()
    params["clientInfo"] = {"name": "renamed", "version": "2.0"}
    second = await _send(server, conn.id, _req(2, "initialize", params))
    assert "result" in first and "result" in second
    assert server.connections.get(conn.id).client_info["name"] == "renamed"


@pytest.mark.asyncio
async def test_lenient_handshake_admits_unauthenticated(server):
    conn = server.open_connection()
    frame = await _send(server, conn.id, _req(1, "initialize", _init_params(token="bogus")))
    assert "result" in frame
    record = server.connections.get(conn.id)
    assert record.state == ConnectionState.INITIALIZED
    assert record.authenticated is False


@pytest.mark.asyncio
async def test_handshake_with_valid_token_binds_subject(server, token_service):
    cred = token_service.issue("claude", ["campaigns:read"])
    conn = server.open_connection()
    await _send(server, conn.id, _req(1, "initialize", _init_params(token=cred.access_token)))
    record = server.connections.get(conn.id)
    assert record.authenticated is True
    assert record.client_id == "claude"
    assert record.permissions == ("campaigns:read",)
    assert server.stats() == {"activeConnections": 1, "authenticatedConnections": 1, "totalSubjects": 1}


@pytest.mark.asyncio
async def test_strict_handshake_rejects_and_stays_connected(config, token_service):
    config.auth.strict_handshake = True
    server = create_protocol_server(config, token_service=token_service)
    conn = server.open_connection()
    frame = await _send(server, conn.id, _req(1, "initialize", _init_params()))
    assert frame["error"] == {"code": -32001, "message": "Authentication token required"}
    assert server.connections.get(conn.id).state == ConnectionState.CONNECTED


@pytest.mark.asyncio
async def test_unknown_method(server):
    conn = server.open_connection()
    frame = await _send(server, conn.id, _req(5, "resources/read"))
    assert frame["id"] == 5
    assert frame["error"]["code"] == -32601
    assert frame["error"]["message"] == "Unknown method: resources/read"


@pytest.mark.asyncio
async def test_empty_resource_and_prompt_lists(server):
    conn = server.open_connection()
    assert (await _send(server, conn.id, _req(1, "resources/list")))["result"] == {"resources": []}
    assert (await _send(server, conn.id, _req(2, "prompts/list")))["result"] == {"prompts": []}


@pytest.mark.asyncio
async def test_parse_error_with_recoverable_id(server):
    conn = server.open_connection()
    frame = await _send(server, conn.id, '{"jsonrpc":"2.0","id":9,"method":')
    assert frame["id"] == 9
    assert frame["error"]["code"] == -32700


@pytest.mark.asyncio
async def test_unaddressable_garbage_is_dropped(server):
    conn = server.open_connection()
    assert await server.handle_message(conn.id, "garbage") is NO_REPLY


@pytest.mark.asyncio
async def test_notifications_and_responses_get_no_reply(server):
    conn = server.open_connection()
    note = json.dumps({"jsonrpc": "2.0", "method": "notifications/initialized"})
    assert await server.handle_message(conn.id, note) is NO_REPLY
    resp = json.dumps({"jsonrpc": "2.0", "id": 1, "result": {}})
    assert await server.handle_message(conn.id, resp) is NO_REPLY


@pytest.mark.asyncio
async def test_message_for_closed_connection_is_dropped(server):
    conn = server.open_connection()
    server.close_connection(conn.id)
    server.close_connection(conn.id)
    assert await server.handle_message(conn.id, _req(1, "tools/list")) is NO_REPLY


@pytest.mark.asyncio
async def test_tools_list_is_idempotent(server):
    conn = server.open_connection()
    first = await _send(server, conn.id, _req(1, "tools/list"))
    second = await _send(server, conn.id, _req(2, "tools/list"))
    assert first["result"] == second["result"]
    assert len(first["result"]["tools"]) == 5


@pytest.mark.asyncio
async def test_tools_call_health_check(server):
    conn = server.open_connection()
    frame = await _send(server, conn.id, _req(1, "tools/call", {"name": "health_check", "arguments": {}}))
    payload = json.loads(frame["result"]["content"][0]["text"])
    assert payload["success"] is True


@pytest.mark.asyncio
async def test_tools_call_unknown_tool_is_result_not_error(server):
    conn = server.open_connection()
    frame = await _send(server, conn.id, _req(1, "tools/call", {"name": "nope"}))
    assert frame["result"]["isError"] is True
    assert "error" not in frame


@pytest.mark.asyncio
async def test_tools_call_without_name_is_invalid_params(server):
    conn = server.open_connection()
    frame = await _send(server, conn.id, _req(1, "tools/call", {}))
    assert frame["error"]["code"] == -32602


@pytest.mark.asyncio
async def test_require_initialize_gates_requests(config, token_service):
    config.auth.require_initialize = True
    server = create_protocol_server(config, token_service=token_service)
    conn = server.open_connection()
    frame = await _send(server, conn.id, _req(1, "tools/list"))
    assert frame["error"] == {"code": -32600, "message": "Connection not initialized"}
    await _send(server, conn.id, _req(2, "initialize", _init_params()))
    frame = await _send(server, conn.id, _req(3, "tools/list"))
    assert "result" in frame


@pytest.mark.asyncio
async def test_enforced_requests_check_tool_permissions(config, token_service):
    config.auth.enforce_requests = True
    server = create_protocol_server(config, token_service=token_service)
    conn = server.open_connection()

    frame = await _send(server, conn.id, _req(1, "tools/list"))
    assert frame["error"]["code"] == -32001

    cred = token_service.issue("claude", ["campaigns:read"])
    await _send(server, conn.id, _req(2, "initialize", _init_params(token=cred.access_token)))

    frame = await _send(server, conn.id, _req(3, "tools/call", {"name": "get_campaign", "arguments": {"id": "1"}}))
    assert "result" in frame

    frame = await _send(server, conn.id, _req(4, "tools/call", {"name": "health_check", "arguments": {}}))
    assert frame["error"] == {"code": -32002, "message": "Permission 'health:read' required"}


@pytest.mark.asyncio
async def test_busy_authenticated_connection_survives_the_sweep(server, token_service, clock):
    cred = token_service.issue("claude", ["campaigns:read"])
    conn = server.open_connection()
    await _send(server, conn.id, _req(1, "initialize", _init_params(token=cred.access_token)))

    for hour in range(25):
        clock.advance(3600)
        frame = await _send(server, conn.id, _req(hour + 2, "tools/list", {"auth": {"token": cred.access_token}}))
        assert "result" in frame
        token_service.sweep()

    frame = await _send(server, conn.id, _req(100, "tools/list"))
    assert frame["id"] == 100
    record = server.connections.get(conn.id)
    assert record is not None
    assert record.authenticated is True


@pytest.mark.asyncio
async def test_idle_connection_is_handed_back_to_its_transport_when_swept(server, token_service, clock):
    cred = token_service.issue("claude")
    purged = []
    conn = server.open_connection(on_purge=purged.append)
    anon = server.open_connection(on_purge=purged.append)
    await _send(server, conn.id, _req(1, "initialize", _init_params(token=cred.access_token)))

    clock.advance(25 * 3600)
    token_service.sweep()

    assert [c.id for c in purged] == [conn.id]
    assert purged[0].state == ConnectionState.CLOSED
    assert server.connections.get(conn.id) is None
    assert server.connections.get(anon.id) is not None
