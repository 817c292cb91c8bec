"""Reading, writing and sanity-checking the JSON config file."""

import json
import re
from pathlib import Path
from typing import Any

from loguru import logger

from campaignmcp.config.schema import DEFAULT_JWT_SECRET, Config

_CAMEL_BOUNDARY = re.compile(r"(?<!^)(?=[A-Z])")


def get_config_path() -> Path:
    return Path.home() / ".campaignmcp" / "config.json"


def load_config(config_path: Path | None = None) -> Config:
    """
    Build a Config from the JSON file at config_path (default
    ~/.campaignmcp/config.json).

    Keys may be camelCase or snake_case. Values in the file win over
    ``CAMPAIGN_MCP_*`` environment variables; anything the file leaves out
    comes from the environment, then the defaults. A missing file is not an
    error. An unreadable or non-object file raises ValueError.
    """
    path = Path(config_path or get_config_path())
    if not path.exists():
        return Config()

    try:
        data = json.loads(path.read_text(encoding="utf-8"))
        if not isinstance(data, dict):
            raise ValueError("top level must be a JSON object")
        config = Config(**convert_keys(data))
    except (json.JSONDecodeError, ValueError) as e:
        raise ValueError(f"Failed to load config from {path}: {e}") from e
    logger.debug("Loaded config from {}", path)
    return config


def save_config(config: Config, config_path: Path | None = None) -> Path:
    """Write config as camelCase JSON and drop any cached copy for that path."""
    from campaignmcp.config.access import clear_config_cache

    path = Path(config_path or get_config_path())
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(convert_to_camel(config.model_dump()), indent=2), encoding="utf-8")
    clear_config_cache(config_path=path)
    return path


def validate_environment(config: Config) -> tuple[bool, list[str]]:
    """Settings that must hold before serving. Returns (valid, errors)."""
    errors: list[str] = []

    if config.is_production:
        secret = config.auth.jwt_secret
        if not secret:
            errors.append("auth.jwt_secret must be set in production")
        elif secret == DEFAULT_JWT_SECRET:
            errors.append("Default JWT secret detected in production - please set CAMPAIGN_MCP_AUTH__JWT_SECRET")

    if not 1 <= config.server.port <= 65535:
        errors.append("Invalid server.port - must be a number between 1 and 65535")
    if config.rate_limit.window_ms < 1000:
        errors.append("Invalid rate_limit.window_ms - must be at least 1000ms")
    if config.rate_limit.max < 1:
        errors.append("Invalid rate_limit.max - must be at least 1")

    try:
        config.auth.token_lifetime_seconds()
    except ValueError as e:
        errors.append(f"Invalid auth.token_expiry - {e}")

    return not errors, errors


def camel_to_snake(name: str) -> str:
    return _CAMEL_BOUNDARY.sub("_", name).lower()


def snake_to_camel(name: str) -> str:
    head, *rest = name.split("_")
    return head + "".join(part.capitalize() for part in rest)


def _rekey(data: Any, fn) -> Any:
    if isinstance(data, dict):
        return {fn(k): _rekey(v, fn) for k, v in data.items()}
    if isinstance(data, list):
        return [_rekey(item, fn) for item in data]
    return data


def convert_keys(data: Any) -> Any:
    """camelCase keys -> snake_case, recursively."""
    return _rekey(data, camel_to_snake)


def convert_to_camel(data: Any) -> Any:
    """snake_case keys -> camelCase, recursively."""
    return _rekey(data, snake_to_camel)
