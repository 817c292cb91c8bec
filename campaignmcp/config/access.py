"""Process-wide config handle used by the CLI and server entry points."""

from __future__ import annotations

import os
import threading
from pathlib import Path

from campaignmcp.config.loader import get_config_path, load_config
from campaignmcp.config.schema import Config

CONFIG_PATH_ENV = "CAMPAIGN_MCP_CONFIG"

_lock = threading.RLock()
_cache: dict[Path, Config] = {}


def resolve_config_path(config_path: Path | str | None = None) -> Path:
    """Explicit path, then $CAMPAIGN_MCP_CONFIG, then ~/.campaignmcp/config.json."""
    raw = config_path or os.environ.get(CONFIG_PATH_ENV) or get_config_path()
    return Path(raw).expanduser().resolve()


def get_config(*, config_path: Path | str | None = None, force_reload: bool = False) -> Config:
    """Load once per path; later calls reuse the parsed config."""
    path = resolve_config_path(config_path)
    with _lock:
        cached = _cache.get(path)
        if cached is None or force_reload:
            cached = load_config(path)
            _cache[path] = cached
        return cached


def set_config(config: Config, *, config_path: Path | str | None = None) -> None:
    """Pin an already-built config (CLI overrides) for later get_config calls."""
    with _lock:
        _cache[resolve_config_path(config_path)] = config


def clear_config_cache(*, config_path: Path | str | None = None) -> None:
    with _lock:
        if config_path is None:
            _cache.clear()
        else:
            _cache.pop(resolve_config_path(config_path), None)
