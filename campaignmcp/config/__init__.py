"""Configuration module for campaignmcp."""

from campaignmcp.config.loader import load_config, get_config_path, validate_environment
from campaignmcp.config.schema import Config
from campaignmcp.config.access import get_config, set_config, clear_config_cache

__all__ = ["Config", "load_config", "get_config_path", "validate_environment", "get_config", "set_config", "clear_config_cache"]
