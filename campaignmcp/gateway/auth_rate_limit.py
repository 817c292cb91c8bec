"""In-memory sliding-window limiter for token issuance, keyed by client id."""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Callable


@dataclass
class RateLimitEntry:
    attempts: list[float] = field(default_factory=list)


@dataclass
class RateLimitCheckResult:
    allowed: bool
    remaining: int
    retry_after_ms: int


class IssuanceRateLimiter:
    """
    Counts issuance attempts per client id inside a sliding window.

    Window and ceiling come from ``limits_for(client_id)`` so known clients
    can carry their own limits; the callable returns (window_ms, max).
    """

    def __init__(
        self,
        limits_for: Callable[[str], tuple[int, int]],
        *,
        clock: Callable[[], float] = time.time,
    ):
        self._limits_for = limits_for
        self._clock = clock
        self._entries: dict[str, RateLimitEntry] = {}

    def _key(self, client_id: str | None) -> str:
        return (client_id or "").strip() or "unknown"

    def _slide(self, entry: RateLimitEntry, now: float, window_ms: int) -> None:
        cutoff = now - (window_ms / 1000.0)
        entry.attempts = [t for t in entry.attempts if t > cutoff]

    def check(self, client_id: str | None) -> RateLimitCheckResult:
        key = self._key(client_id)
        window_ms, max_attempts = self._limits_for(key)
        entry = self._entries.get(key)
        if not entry:
            return RateLimitCheckResult(allowed=True, remaining=max_attempts, retry_after_ms=0)
        now = self._clock()
        self._slide(entry, now, window_ms)
        remaining = max(0, max_attempts - len(entry.attempts))
        retry_after_ms = 0
        if remaining == 0 and entry.attempts:
            retry_after_ms = max(0, int((entry.attempts[0] + window_ms / 1000.0 - now) * 1000))
        return RateLimitCheckResult(allowed=remaining > 0, remaining=remaining, retry_after_ms=retry_after_ms)

    def hit(self, client_id: str | None) -> RateLimitCheckResult:
        """Check, and count the attempt when it is allowed."""
        result = self.check(client_id)
        if not result.allowed:
            return result
        key = self._key(client_id)
        window_ms, _ = self._limits_for(key)
        entry = self._entries.setdefault(key, RateLimitEntry())
        now = self._clock()
        self._slide(entry, now, window_ms)
        entry.attempts.append(now)
        return RateLimitCheckResult(allowed=True, remaining=max(0, result.remaining - 1), retry_after_ms=0)

    def reset(self, client_id: str | None) -> None:
        self._entries.pop(self._key(client_id), None)

    def size(self) -> int:
        return len(self._entries)
