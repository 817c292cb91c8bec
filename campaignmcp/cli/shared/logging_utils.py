"""Loguru sinks for CLI commands."""

from __future__ import annotations

import sys
from pathlib import Path

from loguru import logger

from campaignmcp.utils.helpers import get_data_path

_FILE_SINKS: dict[str, int] = {}


def configure_console_logging(level: str = "INFO") -> None:
    """Replace loguru's default handler with a stderr sink at level.

    stdout stays clean for commands that speak protocol on it (bridge).
    """
    logger.remove()
    logger.add(sys.stderr, level=level, backtrace=False, diagnose=False)


def ensure_rotating_log_file(name: str, level: str = "INFO") -> Path:
    """Add (once per command name) a rotating file sink under ~/.campaignmcp/logs."""
    log_path = get_data_path() / "logs" / f"{name}.log"
    if name in _FILE_SINKS:
        return log_path
    log_path.parent.mkdir(parents=True, exist_ok=True)
    _FILE_SINKS[name] = logger.add(
        str(log_path),
        level=level,
        rotation="10 MB",
        retention="14 days",
        enqueue=True,
        encoding="utf-8",
        backtrace=False,
        diagnose=False,
    )
    return log_path
