import dataclasses

import pytest

from campaignmcp.gateway.connections import ConnectionRegistry, ConnectionState


def test_create_assigns_fresh_ids():
    registry = ConnectionRegistry()
    a = registry.create()
    b = registry.create()
    assert a.id != b.id
    assert a.id.startswith("conn_")
    assert a.state == ConnectionState.CONNECTED
    assert a.authenticated is False
    assert len(registry) == 2


def test_update_replaces_the_record():
    registry = ConnectionRegistry()
    before = registry.create("conn_1")
    after = registry.update("conn_1", authenticated=True, subject_id="s1", permissions=["campaigns:read"])
    assert after.authenticated is True
    assert after.permissions == ("campaigns:read",)
    assert before.authenticated is False
    assert registry.get("conn_1") is after
    assert registry.authenticated_count() == 1


def test_records_are_immutable():
    conn = ConnectionRegistry().create()
    with pytest.raises(dataclasses.FrozenInstanceError):
        conn.authenticated = True


def test_update_unknown_connection_returns_none():
    assert ConnectionRegistry().update("nope", authenticated=True) is None


def test_remove_is_idempotent():
    registry = ConnectionRegistry()
    registry.create("conn_1")
    closed = registry.remove("conn_1")
    assert closed.id == "conn_1"
    assert closed.state == ConnectionState.CLOSED
    assert registry.remove("conn_1") is None
    assert len(registry) == 0


def test_to_dict_uses_wire_keys():
    registry = ConnectionRegistry()
    registry.create("conn_1")
    conn = registry.update("conn_1", state=ConnectionState.INITIALIZED, client_info={"name": "cli"})
    data = conn.to_dict()
    assert data["id"] == "conn_1"
    assert data["state"] == "initialized"
    assert data["clientInfo"] == {"name": "cli"}
    assert data["subjectId"] is None


def test_remove_for_subjects_only_touches_bound_connections():
    registry = ConnectionRegistry()
    registry.create("a")
    registry.update("a", subject_id="s1", authenticated=True)
    registry.create("b")
    registry.update("b", subject_id="s2", authenticated=True)
    registry.create("c")
    assert registry.remove_for_subjects({"s1"}) == ["a"]
    assert sorted(c.id for c in registry.list_connections()) == ["b", "c"]


def test_purge_hook_runs_only_for_swept_connections():
    registry = ConnectionRegistry()
    purged = []
    registry.create("a", on_purge=purged.append)
    registry.update("a", subject_id="s1", authenticated=True)
    registry.create("b", on_purge=purged.append)
    registry.update("b", subject_id="s2", authenticated=True)

    registry.remove("b")
    registry.remove_for_subjects({"s1", "s2"})

    assert [c.id for c in purged] == ["a"]
    assert purged[0].state == ConnectionState.CLOSED
    assert purged[0].subject_id == "s1"


def test_failing_purge_hook_does_not_stop_the_cascade():
    registry = ConnectionRegistry()
    purged = []

    def broken(_conn):
        raise RuntimeError("socket already gone")

    registry.create("a", on_purge=broken)
    registry.update("a", subject_id="s1")
    registry.create("b", on_purge=purged.append)
    registry.update("b", subject_id="s1")

    assert sorted(registry.remove_for_subjects({"s1"})) == ["a", "b"]
    assert [c.id for c in purged] == ["b"]
    assert len(registry) == 0
