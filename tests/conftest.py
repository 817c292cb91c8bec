"""Pytest hooks and fixtures."""

import pytest

from campaignmcp.campaigns.provider import InMemoryCampaignProvider
from campaignmcp.config.schema import AuthConfig, ClientProfile, Config, DataConfig, ServerConfig
from campaignmcp.gateway.token_service import TokenService


class FakeClock:
    """Callable clock the tests can move forward."""

    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def auth_config():
    return AuthConfig(
        enabled=True,
        jwt_secret="test-secret",
        token_expiry="1h",
        clients={
            "claude": ClientProfile(
                name="Claude",
                permissions=["campaigns:read", "campaigns:export", "tools:call"],
            ),
        },
    )


@pytest.fixture
def token_service(auth_config, clock):
    return TokenService(auth_config, clock=clock)


@pytest.fixture
def config(tmp_path, auth_config):
    return Config(
        server=ServerConfig(environment="test", base_url="http://testserver"),
        auth=auth_config,
        data=DataConfig(
            campaigns_path=str(tmp_path / "missing.json"),
            exports_dir=str(tmp_path / "exports"),
        ),
    )


@pytest.fixture
def provider(tmp_path):
    return InMemoryCampaignProvider(exports_dir=tmp_path / "exports", base_url="http://testserver")
