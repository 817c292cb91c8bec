"""Bearer token issuance / validation and the subject table behind it."""

from __future__ import annotations

import asyncio
import time
import uuid
from dataclasses import dataclass, field
from typing import Any, Callable, Iterable

from jose import JWTError, jwt
from loguru import logger

from campaignmcp.config.schema import AuthConfig
from campaignmcp.utils.exceptions import ClientNotAllowedError

WILDCARD = "*"

SweepListener = Callable[[set[str]], Any]


@dataclass(slots=True)
class Subject:
    """Identity created per token issuance."""
    id: str
    client_id: str
    permissions: list[str]
    created_at: float = field(default_factory=time.time)
    last_access_at: float = field(default_factory=time.time)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "client_id": self.client_id,
            "permissions": list(self.permissions),
            "created_at": self.created_at,
            "last_access_at": self.last_access_at,
        }


@dataclass(slots=True)
class Credential:
    access_token: str
    expires_in: int
    scope: list[str]
    token_type: str = "Bearer"

    def to_dict(self) -> dict[str, Any]:
        return {
            "access_token": self.access_token,
            "token_type": self.token_type,
            "expires_in": self.expires_in,
            "scope": list(self.scope),
        }


def _grant(requested: Iterable[str], ceiling: list[str]) -> list[str]:
    """Requested scope intersected with the ceiling; unknown entries are dropped."""
    allow_all = WILDCARD in ceiling
    granted: list[str] = []
    for perm in requested:
        perm = str(perm or "").strip()
        if not perm or perm in granted:
            continue
        if allow_all or perm in ceiling:
            granted.append(perm)
    return granted


class TokenService:
    """
    Issues signed expiring credentials and keeps the subjects they refer to.

    Subjects live in memory only; a credential whose subject is gone (process
    restart, sweep) no longer validates even if its signature is still good.
    """

    def __init__(self, auth: AuthConfig, *, clock: Callable[[], float] = time.time):
        self._auth = auth
        self._clock = clock
        self._subjects: dict[str, Subject] = {}
        self._sweep_listeners: list[SweepListener] = []

    @property
    def subject_count(self) -> int:
        return len(self._subjects)

    def is_allowed_client(self, client_id: str) -> bool:
        allowed = self._auth.allowed_clients
        return client_id in allowed or WILDCARD in allowed

    def issue(self, client_id: str, requested_scope: list[str] | None = None) -> Credential:
        """Sign a credential for client_id. Raises ClientNotAllowedError."""
        client_id = (client_id or "").strip()
        if not client_id or not self.is_allowed_client(client_id):
            raise ClientNotAllowedError(client_id)

        ceiling = self._auth.permissions_for(client_id)
        if requested_scope:
            permissions = _grant(requested_scope, ceiling)
        else:
            permissions = list(ceiling)

        now = self._clock()
        subject = Subject(
            id=str(uuid.uuid4()),
            client_id=client_id,
            permissions=permissions,
            created_at=now,
            last_access_at=now,
        )
        self._subjects[subject.id] = subject

        iat = int(now)
        exp = iat + self._auth.token_lifetime_seconds()
        claims = {
            "sub": subject.id,
            "client_id": client_id,
            "permissions": permissions,
            "iat": iat,
            "exp": exp,
        }
        token = jwt.encode(claims, self._auth.jwt_secret, algorithm=self._auth.algorithm)
        logger.info("Issued token for client {} (subject {}, scope {})", client_id, subject.id, permissions)
        return Credential(access_token=token, expires_in=exp - iat, scope=permissions)

    def validate(self, token: str | None) -> Subject | None:
        """Return the live subject behind token, or None. Never raises."""
        if not token or not isinstance(token, str):
            return None
        try:
            claims = jwt.decode(
                token,
                self._auth.jwt_secret,
                algorithms=[self._auth.algorithm],
                options={"verify_exp": False},
            )
        except JWTError as e:
            logger.debug("Token validation failed: {}", e)
            return None

        # Expiry is checked against our clock so tests can move time.
        exp = claims.get("exp")
        if not isinstance(exp, (int, float)) or self._clock() >= exp:
            logger.debug("Token validation failed: expired")
            return None

        subject = self._subjects.get(str(claims.get("sub") or ""))
        if subject is None:
            logger.debug("Token validation failed: unknown subject")
            return None
        subject.last_access_at = self._clock()
        return subject

    def has_permission(self, subject: Subject | None, permission: str) -> bool:
        if subject is None:
            return False
        return permission in subject.permissions or WILDCARD in subject.permissions

    def get_subject(self, subject_id: str) -> Subject | None:
        return self._subjects.get(subject_id)

    def touch(self, subject_id: str | None) -> Subject | None:
        """Mark a live subject as used now (traffic on a bound connection)."""
        subject = self._subjects.get(subject_id or "")
        if subject is not None:
            subject.last_access_at = self._clock()
        return subject

    def add_sweep_listener(self, listener: SweepListener) -> None:
        """listener(removed_subject_ids) runs after every sweep that removed something."""
        self._sweep_listeners.append(listener)

    def sweep(self) -> set[str]:
        """Drop subjects idle longer than the inactivity window; notify listeners."""
        cutoff = self._clock() - self._auth.inactivity_window_seconds
        removed = {sid for sid, s in self._subjects.items() if s.last_access_at < cutoff}
        for sid in removed:
            self._subjects.pop(sid, None)
        if removed:
            logger.info("Swept {} inactive subject(s)", len(removed))
            for listener in list(self._sweep_listeners):
                try:
                    listener(removed)
                except Exception as e:
                    logger.warning("Sweep listener failed: {}", e)
        return removed

    async def run_periodic_sweep(self, interval_seconds: float | None = None) -> None:
        """Background tick; cancel the task to stop it."""
        interval = interval_seconds or self._auth.sweep_interval_seconds
        logger.debug("Subject sweep every {}s", interval)
        while True:
            await asyncio.sleep(interval)
            try:
                self.sweep()
            except Exception as e:
                logger.exception("Subject sweep failed: {}", e)
