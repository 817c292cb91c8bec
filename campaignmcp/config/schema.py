"""Configuration schema using Pydantic.

Single data model for the MCP bridge: HTTP/WebSocket server, token auth,
token issuance limits, campaign data source and outbound client defaults.
Persisted (optionally) to ~/.campaignmcp/config.json; env vars override.
"""

from pathlib import Path
from typing import Literal

from pydantic import BaseModel, Field, ConfigDict
from pydantic_settings import BaseSettings

from campaignmcp.utils.helpers import parse_duration

DEFAULT_JWT_SECRET = "default-secret-change-in-production"

DEFAULT_PERMISSIONS: list[str] = [
    "campaigns:read",
    "metrics:read",
    "exports:create",
    "health:read",
]


class RateLimitConfig(BaseModel):
    """Sliding window for token issuance per client id."""
    window_ms: int = 900_000  # 15 minutes
    max: int = 100


class ClientProfile(BaseModel):
    """Known MCP client: display name, permission ceiling, issuance limit."""
    name: str
    permissions: list[str] = Field(default_factory=lambda: list(DEFAULT_PERMISSIONS))
    rate_limit: RateLimitConfig | None = None


def _default_client_profiles() -> dict[str, ClientProfile]:
    return {
        "claude": ClientProfile(name="Claude", rate_limit=RateLimitConfig(max=200)),
        "chatgpt": ClientProfile(name="ChatGPT", rate_limit=RateLimitConfig(max=150)),
        "cursor": ClientProfile(name="Cursor", rate_limit=RateLimitConfig(max=100)),
        "vscode": ClientProfile(name="VS Code", rate_limit=RateLimitConfig(max=100)),
        "continue": ClientProfile(name="Continue", rate_limit=RateLimitConfig(max=100)),
    }


class ServerConfig(BaseModel):
    """HTTP + WebSocket server configuration."""
    host: str = "0.0.0.0"
    port: int = 3000
    path: str = "/mcp"  # WebSocket path for the MCP endpoint
    base_url: str = "http://localhost:3000"  # Used to build export download URLs
    api_key: str = ""  # When set, POST /mcp/auth/token requires a matching X-API-Key header
    environment: Literal["development", "production", "test"] = "development"


class AuthConfig(BaseModel):
    """Bearer token issuance and validation."""
    # None means "on in production, off elsewhere".
    enabled: bool | None = None
    jwt_secret: str = DEFAULT_JWT_SECRET
    algorithm: str = "HS256"
    token_expiry: str | int = "24h"  # "24h", "30m", "3600s", "7d" or integer seconds
    allowed_clients: list[str] = Field(
        default_factory=lambda: ["claude", "chatgpt", "cursor", "vscode", "continue"]
    )
    clients: dict[str, ClientProfile] = Field(default_factory=_default_client_profiles)
    default_permissions: list[str] = Field(default_factory=lambda: list(DEFAULT_PERMISSIONS))
    # Reject the handshake instead of admitting the connection unauthenticated.
    strict_handshake: bool = False
    # Check credentials/permissions on every request, not only at handshake.
    enforce_requests: bool = False
    # Answer InvalidRequest to anything but initialize before the handshake.
    require_initialize: bool = False
    sweep_interval_seconds: float = 3600.0
    inactivity_window_seconds: float = 24 * 60 * 60

    def token_lifetime_seconds(self) -> int:
        return parse_duration(self.token_expiry)

    def permissions_for(self, client_id: str) -> list[str]:
        """Permission ceiling for a client; unknown clients get the defaults."""
        profile = self.clients.get(client_id)
        if profile is None:
            return list(self.default_permissions)
        return list(profile.permissions)


class CorsConfig(BaseModel):
    """Origins allowed to open the MCP WebSocket."""
    origins: list[str] = Field(
        default_factory=lambda: ["https://claude.ai", "https://chat.openai.com", "https://cursor.sh"]
    )


class DataConfig(BaseModel):
    """Campaign data source and export target."""
    campaigns_path: str = "./data/campaigns.json"
    exports_dir: str = "./exports"


class ClientConfig(BaseModel):
    """Defaults for the outbound ProtocolClient / stdio bridge."""
    base_url: str = "http://localhost:3000"
    ws_url: str = "ws://localhost:3000/mcp"
    client_id: str = "claude"
    scope: list[str] = Field(default_factory=lambda: ["campaigns:read", "campaigns:export", "tools:call"])
    api_key: str = ""
    request_timeout_seconds: float = 30.0
    client_name: str = "Campaign MCP Python Client"
    # Also send the token inside initialize (needed when the server runs a strict handshake).
    handshake_auth: bool = False


class Config(BaseSettings):
    """Root configuration for campaignmcp."""
    server: ServerConfig = Field(default_factory=ServerConfig)
    auth: AuthConfig = Field(default_factory=AuthConfig)
    cors: CorsConfig = Field(default_factory=CorsConfig)
    rate_limit: RateLimitConfig = Field(default_factory=RateLimitConfig)
    data: DataConfig = Field(default_factory=DataConfig)
    client: ClientConfig = Field(default_factory=ClientConfig)

    @property
    def is_production(self) -> bool:
        return self.server.environment == "production"

    @property
    def auth_enabled(self) -> bool:
        """Explicit auth.enabled wins; otherwise auth is on only in production."""
        if self.auth.enabled is not None:
            return self.auth.enabled
        return self.is_production

    @property
    def cors_origins(self) -> list[str]:
        if self.server.environment == "development":
            return ["*"]
        return list(self.cors.origins)

    @property
    def exports_path(self) -> Path:
        return Path(self.data.exports_dir).expanduser()

    def rate_limit_for(self, client_id: str) -> RateLimitConfig:
        profile = self.auth.clients.get(client_id)
        if profile is not None and profile.rate_limit is not None:
            return profile.rate_limit
        return self.rate_limit

    model_config = ConfigDict(
        env_prefix="CAMPAIGN_MCP_",
        env_nested_delimiter="__"
    )
