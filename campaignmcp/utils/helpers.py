"""Small shared helpers."""

from __future__ import annotations

import re
import time
from pathlib import Path

_DURATION_RE = re.compile(r"^\s*(\d+(?:\.\d+)?)\s*([smhd]?)\s*$", re.IGNORECASE)
_DURATION_UNITS = {"": 1, "s": 1, "m": 60, "h": 3600, "d": 86400}


def parse_duration(value: str | int | float) -> int:
    """Parse "24h" / "30m" / "45s" / "7d" / 3600 into whole seconds."""
    if isinstance(value, bool):
        raise ValueError(f"invalid duration: {value!r}")
    if isinstance(value, (int, float)):
        seconds = int(value)
    else:
        match = _DURATION_RE.match(str(value))
        if not match:
            raise ValueError(f"invalid duration: {value!r}")
        amount, unit = match.groups()
        seconds = int(float(amount) * _DURATION_UNITS[unit.lower()])
    if seconds <= 0:
        raise ValueError(f"duration must be positive: {value!r}")
    return seconds


def now_ms() -> int:
    return int(time.time() * 1000)


def get_data_path() -> Path:
    """~/.campaignmcp, created on demand."""
    path = Path.home() / ".campaignmcp"
    path.mkdir(parents=True, exist_ok=True)
    return path
