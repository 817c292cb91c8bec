"""Live duplex connections and their handshake/auth state."""

from __future__ import annotations

import dataclasses
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Iterable

from loguru import logger

from campaignmcp.utils.helpers import now_ms


class ConnectionState(str, Enum):
    CONNECTED = "connected"
    INITIALIZED = "initialized"
    CLOSED = "closed"


@dataclass(frozen=True, slots=True)
class Connection:
    """
    Snapshot of one connection. Records are immutable; updates replace the
    whole record so readers never see a half-applied change.
    """
    id: str
    state: ConnectionState = ConnectionState.CONNECTED
    authenticated: bool = False
    subject_id: str | None = None
    client_id: str | None = None
    permissions: tuple[str, ...] = ()
    client_info: dict[str, Any] | None = None
    capabilities: dict[str, Any] | None = None
    protocol_version: str | None = None
    created_at_ms: int = field(default_factory=now_ms)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "state": self.state.value,
            "authenticated": self.authenticated,
            "subjectId": self.subject_id,
            "clientId": self.client_id,
            "permissions": list(self.permissions),
            "clientInfo": self.client_info,
            "createdAtMs": self.created_at_ms,
        }


def new_connection_id() -> str:
    return f"conn_{uuid.uuid4().hex[:16]}"


PurgeHook = Callable[[Connection], None]


class ConnectionRegistry:
    """
    Owns the connection table; everything else goes through these methods.

    Removing a record is the terminal transition: the record handed back
    carries ConnectionState.CLOSED and the id is never looked up again.
    """

    def __init__(self, token_service: Any | None = None):
        self._connections: dict[str, Connection] = {}
        self._purge_hooks: dict[str, PurgeHook] = {}
        if token_service is not None:
            token_service.add_sweep_listener(self.remove_for_subjects)

    def create(self, connection_id: str | None = None, *, on_purge: PurgeHook | None = None) -> Connection:
        """
        Register a new connection. on_purge runs when the record is dropped
        by the registry itself (swept subject) so the transport can hang up.
        """
        conn = Connection(id=connection_id or new_connection_id())
        self._connections[conn.id] = conn
        if on_purge is not None:
            self._purge_hooks[conn.id] = on_purge
        return conn

    def get(self, connection_id: str) -> Connection | None:
        return self._connections.get(connection_id)

    def update(self, connection_id: str, **changes: Any) -> Connection | None:
        """Merge changes into the record. Unknown connection -> None."""
        conn = self._connections.get(connection_id)
        if conn is None:
            return None
        if "permissions" in changes:
            changes["permissions"] = tuple(changes["permissions"] or ())
        updated = dataclasses.replace(conn, **changes)
        self._connections[connection_id] = updated
        return updated

    def _close(self, connection_id: str) -> Connection | None:
        conn = self._connections.pop(connection_id, None)
        if conn is None:
            return None
        return dataclasses.replace(conn, state=ConnectionState.CLOSED)

    def remove(self, connection_id: str) -> Connection | None:
        """Transport-initiated close. Idempotent: an unknown id returns None."""
        self._purge_hooks.pop(connection_id, None)
        return self._close(connection_id)

    def remove_for_subjects(self, subject_ids: Iterable[str]) -> list[str]:
        """Close every connection bound to one of subject_ids and notify its transport."""
        ids = set(subject_ids)
        doomed = [cid for cid, c in self._connections.items() if c.subject_id and c.subject_id in ids]
        for cid in doomed:
            hook = self._purge_hooks.pop(cid, None)
            closed = self._close(cid)
            if hook is None or closed is None:
                continue
            try:
                hook(closed)
            except Exception as e:
                logger.warning("Purge hook for connection {} failed: {}", cid, e)
        if doomed:
            logger.info("Dropped {} connection(s) bound to swept subjects", len(doomed))
        return doomed

    def list_connections(self) -> list[Connection]:
        return list(self._connections.values())

    def __len__(self) -> int:
        return len(self._connections)

    def authenticated_count(self) -> int:
        return sum(1 for c in self._connections.values() if c.authenticated)
