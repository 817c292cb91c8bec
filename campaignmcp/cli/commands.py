"""CLI commands for campaignmcp.

serve runs the HTTP + MCP WebSocket server; token/tools/check work locally
against the configuration; call and bridge connect to a running server.
"""

import asyncio
import json
from pathlib import Path

import typer
from rich.console import Console
from rich.table import Table

from campaignmcp import __logo__, __version__
from campaignmcp.cli.shared.logging_utils import configure_console_logging, ensure_rotating_log_file
from campaignmcp.cli.shared.network_utils import is_port_in_use
from campaignmcp.config.access import get_config, set_config
from campaignmcp.config.loader import validate_environment
from campaignmcp.config.schema import Config

app = typer.Typer(
    name="campaignmcp",
    help=f"{__logo__} campaignmcp - MCP bridge for campaign performance data",
    no_args_is_help=True,
)

console = Console()
err_console = Console(stderr=True)


def version_callback(value: bool):
    if value:
        console.print(f"{__logo__} campaignmcp v{__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool = typer.Option(
        None, "--version", "-V", callback=version_callback, is_eager=True
    ),
):
    """campaignmcp - MCP bridge for campaign performance data."""


def _load(config_path: Path | None) -> Config:
    try:
        return get_config(config_path=config_path)
    except ValueError as e:
        err_console.print(f"[red]{e}[/red]")
        raise typer.Exit(1)


def _apply_client_overrides(
    config: Config,
    *,
    base_url: str | None,
    ws_url: str | None,
    client_id: str | None,
    api_key: str | None,
) -> None:
    if base_url:
        config.client.base_url = base_url
    if ws_url:
        config.client.ws_url = ws_url
    if client_id:
        config.client.client_id = client_id
    if api_key:
        config.client.api_key = api_key


# ============================================================================
# Server
# ============================================================================


@app.command()
def serve(
    host: str = typer.Option(None, "--host", "-h", help="Bind host (default from config)"),
    port: int = typer.Option(None, "--port", "-p", help="HTTP/WebSocket port (default from config)"),
    config_path: Path = typer.Option(None, "--config", "-c", help="Config file (JSON)"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging"),
):
    """Start the HTTP API and the MCP WebSocket endpoint."""
    from campaignmcp.api.server import run_server

    config = _load(config_path)
    if host:
        config.server.host = host
    if port:
        config.server.port = port
    set_config(config, config_path=config_path)

    if is_port_in_use(config.server.host, config.server.port):
        console.print(
            f"[red]Port {config.server.port} is already in use.[/red] "
            f"Use [cyan]--port[/cyan] to pick another one."
        )
        raise typer.Exit(1)

    valid, errors = validate_environment(config)
    if not valid:
        for error in errors:
            console.print(f"[yellow]![/yellow] {error}")
        if config.is_production:
            console.print("[red]Refusing to start in production with an invalid environment.[/red]")
            raise typer.Exit(1)

    configure_console_logging("DEBUG" if verbose else "INFO")
    log_path = ensure_rotating_log_file("serve", level="DEBUG" if verbose else "INFO")
    server = config.server
    console.print(f"{__logo__} Starting campaignmcp on {server.host}:{server.port}")
    console.print(f"[dim]MCP endpoint: ws://{server.host}:{server.port}{server.path}[/dim]")
    console.print(f"[dim]Auth: {'enabled' if config.auth_enabled else 'disabled'} | Logs: {log_path}[/dim]")
    run_server(config)


@app.command()
def check(
    config_path: Path = typer.Option(None, "--config", "-c", help="Config file (JSON)"),
):
    """Validate the environment/configuration the server would start with."""
    config = _load(config_path)
    valid, errors = validate_environment(config)
    if valid:
        console.print(f"[green]✓[/green] Configuration is valid ({config.server.environment})")
        return
    for error in errors:
        console.print(f"[red]✗[/red] {error}")
    raise typer.Exit(1)


# ============================================================================
# Local helpers
# ============================================================================


@app.command()
def token(
    client_id: str = typer.Argument(..., help="Client id (e.g. claude, cursor)"),
    scope: list[str] = typer.Option(None, "--scope", "-s", help="Requested permission (repeatable)"),
    config_path: Path = typer.Option(None, "--config", "-c", help="Config file (JSON)"),
):
    """Sign a token locally with the configured secret.

    The subject only lives in this process, so a running server will not
    accept it; use it to inspect claims and lifetimes.
    """
    from campaignmcp.gateway.token_service import TokenService
    from campaignmcp.utils.exceptions import ClientNotAllowedError

    config = _load(config_path)
    try:
        credential = TokenService(config.auth).issue(client_id, list(scope or []))
    except ClientNotAllowedError as e:
        console.print(f"[red]{e.message}[/red]")
        raise typer.Exit(1)
    console.print_json(json.dumps(credential.to_dict()))


@app.command()
def tools(
    config_path: Path = typer.Option(None, "--config", "-c", help="Config file (JSON)"),
):
    """List the tool catalog."""
    from campaignmcp.campaigns.provider import InMemoryCampaignProvider
    from campaignmcp.tools.campaign_tools import create_campaign_tool_registry

    config = _load(config_path)
    registry = create_campaign_tool_registry(
        InMemoryCampaignProvider(exports_dir=config.exports_path, base_url=config.server.base_url)
    )
    table = Table(title="MCP Tools")
    table.add_column("Name", style="cyan")
    table.add_column("Description")
    table.add_column("Required", style="dim")
    for descriptor in registry.list():
        required = ", ".join(descriptor["inputSchema"].get("required", []))
        table.add_row(descriptor["name"], descriptor["description"], required or "-")
    console.print(table)


# ============================================================================
# Client side
# ============================================================================


@app.command()
def call(
    name: str = typer.Argument(..., help="Tool name"),
    arguments: str = typer.Option("{}", "--args", "-a", help="Tool arguments as a JSON object"),
    base_url: str = typer.Option(None, "--url", help="Server base URL for token issuance"),
    ws_url: str = typer.Option(None, "--ws-url", help="MCP WebSocket URL"),
    client_id: str = typer.Option(None, "--client-id", help="Client id to request a token for"),
    api_key: str = typer.Option(None, "--api-key", envvar="CAMPAIGN_MCP_API_KEY", help="X-API-Key for token issuance"),
    config_path: Path = typer.Option(None, "--config", "-c", help="Config file (JSON)"),
):
    """Connect to a running server and invoke one tool."""
    from campaignmcp.client.client import McpClient, McpClientError

    try:
        parsed = json.loads(arguments)
    except json.JSONDecodeError as e:
        console.print(f"[red]--args is not valid JSON: {e}[/red]")
        raise typer.Exit(2)
    if not isinstance(parsed, dict):
        console.print("[red]--args must be a JSON object[/red]")
        raise typer.Exit(2)

    config = _load(config_path)
    _apply_client_overrides(config, base_url=base_url, ws_url=ws_url, client_id=client_id, api_key=api_key)
    configure_console_logging("WARNING")

    async def _run() -> dict:
        client = McpClient(config.client)
        await client.connect()
        try:
            return await client.call_tool(name, parsed)
        finally:
            await client.close()

    try:
        result = asyncio.run(_run())
    except McpClientError as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(1)

    for block in result.get("content", []):
        text = block.get("text", "")
        try:
            console.print_json(text)
        except (json.JSONDecodeError, TypeError):
            console.print(text)
    if result.get("isError"):
        raise typer.Exit(1)


@app.command()
def bridge(
    base_url: str = typer.Option(None, "--url", help="Server base URL for token issuance"),
    ws_url: str = typer.Option(None, "--ws-url", help="MCP WebSocket URL"),
    client_id: str = typer.Option(None, "--client-id", help="Client id to request a token for"),
    api_key: str = typer.Option(None, "--api-key", envvar="CAMPAIGN_MCP_API_KEY", help="X-API-Key for token issuance"),
    config_path: Path = typer.Option(None, "--config", "-c", help="Config file (JSON)"),
):
    """Stdio bridge for desktop assistants (newline-delimited JSON-RPC)."""
    from campaignmcp.client.bridge import StdioBridge
    from campaignmcp.client.client import McpClient, McpClientError

    config = _load(config_path)
    _apply_client_overrides(config, base_url=base_url, ws_url=ws_url, client_id=client_id, api_key=api_key)
    configure_console_logging("INFO")
    ensure_rotating_log_file("bridge")

    async def _run() -> None:
        client = McpClient(config.client)
        await client.connect()
        try:
            await StdioBridge(client).run()
        finally:
            await client.close()

    try:
        asyncio.run(_run())
    except McpClientError as e:
        err_console.print(f"[red]Failed to connect to MCP server: {e}[/red]")
        raise typer.Exit(1)
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    app()
