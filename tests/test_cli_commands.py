import json

import pytest
from typer.testing import CliRunner

from campaignmcp.cli.commands import app
from campaignmcp.config.access import clear_config_cache

runner = CliRunner()


@pytest.fixture(autouse=True)
def _isolated_cache():
    clear_config_cache()
    yield
    clear_config_cache()


@pytest.fixture
def config_file(tmp_path):
    path = tmp_path / "config.json"
    path.write_text(json.dumps({"data": {"exportsDir": str(tmp_path / "exports")}}))
    return path


def test_version():
    result = runner.invoke(app, ["--version"])
    assert result.exit_code == 0
    assert "campaignmcp v1.0.0" in result.stdout


def test_check_valid(config_file):
    result = runner.invoke(app, ["check", "--config", str(config_file)])
    assert result.exit_code == 0
    assert "Configuration is valid" in result.stdout


def test_check_invalid(tmp_path):
    path = tmp_path / "config.json"
    path.write_text(json.dumps({"server": {"environment": "production"}}))
    result = runner.invoke(app, ["check", "--config", str(path)])
    assert result.exit_code == 1
    assert "Default JWT secret" in result.stdout


def test_token_issues_locally(config_file):
    result = runner.invoke(app, ["token", "claude", "--scope", "campaigns:read", "--config", str(config_file)])
    assert result.exit_code == 0
    payload = json.loads(result.stdout)
    assert payload["scope"] == ["campaigns:read"]
    assert payload["token_type"] == "Bearer"


def test_token_for_disallowed_client(config_file):
    result = runner.invoke(app, ["token", "mallory", "--config", str(config_file)])
    assert result.exit_code == 1


def test_tools_table(config_file):
    result = runner.invoke(app, ["tools", "--config", str(config_file)])
    assert result.exit_code == 0
    assert "MCP Tools" in result.stdout


def test_call_rejects_non_object_args(config_file):
    result = runner.invoke(app, ["call", "health_check", "--args", "[1]", "--config", str(config_file)])
    assert result.exit_code == 2
