"""Fleetwire CLI.

Unified entry point for running the API server, operating WhatsApp
connections and triggering notification sweeps.

Usage:
    fleetwire serve                      Start the API server
    fleetwire whatsapp status -o acme    Show connection status
    fleetwire whatsapp initialize -o acme
    fleetwire sweep invoices             Run invoice reminders for all organizations
"""

import asyncio
import logging
import os
from typing import Optional

import typer
import yaml
from rich.console import Console

from fleetwire.cli.config import load_config, load_effective_config
from fleetwire.cli.http_client import FleetwireClientError, HttpClient
from fleetwire.cli.output import format_status, format_sweep

_log = logging.getLogger(__name__)

app = typer.Typer(
    name="fleetwire",
    help="WhatsApp notification bridge for the logistics back-office",
    no_args_is_help=True,
)
whatsapp_app = typer.Typer(help="Operate WhatsApp connections")
sweep_app = typer.Typer(help="Trigger notification sweeps")
config_app = typer.Typer(help="Configuration management")

app.add_typer(whatsapp_app, name="whatsapp")
app.add_typer(sweep_app, name="sweep")
app.add_typer(config_app, name="config")

console = Console()

# --- Global state ---
_config_path: str | None = None
_base_url: str | None = None


@app.callback()
def main(
    config: Optional[str] = typer.Option(
        None, "--config", help="Path to fleetwire.yaml config file"
    ),
    url: Optional[str] = typer.Option(
        None, "--url", envvar="FLEETWIRE_URL", help="Fleetwire API base URL"
    ),
):
    """Fleetwire CLI."""
    global _config_path, _base_url
    _config_path = config
    _base_url = url


def _client() -> HttpClient:
    if _base_url:
        return HttpClient(base_url=_base_url)
    cfg = load_effective_config(_config_path)
    return HttpClient(base_url=f"http://{cfg.server.host}:{cfg.server.port}")


def _run(coro) -> None:
    """Run a client coroutine, converting client errors into exit code 1."""
    try:
        asyncio.run(coro)
    except FleetwireClientError as e:
        code = f" [{e.code}]" if e.code else ""
        console.print(f"[red]Error{code}:[/red] {e.message}")
        raise typer.Exit(1)


# --- Version ---


@app.command()
def version():
    """Show Fleetwire version."""
    from fleetwire import __version__

    console.print(f"[bold]Fleetwire[/bold] v{__version__}")
    try:
        import neonize  # noqa: F401

        console.print("  WhatsApp transport: neonize")
    except ImportError:
        console.print("  WhatsApp transport: [red]not installed[/red] (pip install 'fleetwire[whatsapp]')")


# --- Server ---


@app.command()
def serve(
    host: Optional[str] = typer.Option(None, "--host", help="Bind address"),
    port: Optional[int] = typer.Option(None, "--port", help="Bind port"),
):
    """Start the Fleetwire API server (single worker)."""
    import uvicorn

    cfg = load_effective_config(_config_path)
    final_host = host or cfg.server.host
    final_port = port or cfg.server.port

    # The app's lifespan reads the same file
    if _config_path:
        os.environ["FLEETWIRE_CONFIG"] = str(_config_path)

    console.print(f"[bold]Starting Fleetwire on {final_host}:{final_port}[/bold]")
    uvicorn.run(
        "fleetwire.api.main:app",
        host=final_host,
        port=final_port,
        workers=1,
        log_level=cfg.server.log_level,
        lifespan="on",
    )


# --- WhatsApp commands ---


@whatsapp_app.command("status")
def whatsapp_status(
    organization: Optional[str] = typer.Option(None, "--org", "-o", help="Organization id"),
    json_output: bool = typer.Option(False, "--json", help="Output as JSON"),
):
    """Show connection status and dispatch counters."""
    async def _go():
        async with _client() as client:
            status = await client.get_status(organization)
            console.print(format_status(status, as_json=json_output))

    _run(_go())


@whatsapp_app.command("initialize")
def whatsapp_initialize(
    organization: Optional[str] = typer.Option(None, "--org", "-o", help="Organization id"),
):
    """Start pairing or reconnecting a WhatsApp client."""
    async def _go():
        async with _client() as client:
            result = await client.initialize(organization)
            console.print(f"[green]Client starting[/green] (status: {result['status']})")
            console.print("Run 'fleetwire whatsapp status' to fetch the QR code.")

    _run(_go())


@whatsapp_app.command("disconnect")
def whatsapp_disconnect(
    organization: Optional[str] = typer.Option(None, "--org", "-o", help="Organization id"),
    logout: bool = typer.Option(False, "--logout", help="Unlink the device and delete stored credentials"),
):
    """Stop a WhatsApp client."""
    if logout:
        typer.confirm("This unlinks the device; the next initialize needs a new QR scan. Continue?", abort=True)

    async def _go():
        async with _client() as client:
            result = await client.disconnect(organization, logout=logout)
            console.print(f"[yellow]Disconnected[/yellow] (status: {result['status']})")

    _run(_go())


@whatsapp_app.command("send")
def whatsapp_send(
    phone_number: str = typer.Argument(help="Recipient phone number"),
    message: str = typer.Argument(help="Message text"),
    organization: Optional[str] = typer.Option(None, "--org", "-o", help="Organization id"),
):
    """Send a text message through the organization's connection."""
    async def _go():
        async with _client() as client:
            result = await client.send(phone_number, message, organization)
            console.print(f"[green]Sent[/green] (message id: {result.get('messageId', '-')})")

    _run(_go())


# --- Sweep commands ---


def _sweep(path: str, organization: str | None, json_output: bool) -> None:
    async def _go():
        async with _client() as client:
            result = await client.run_sweep(path, organization)
            console.print(format_sweep(result, as_json=json_output))

    _run(_go())


@sweep_app.command("invoices")
def sweep_invoices(
    organization: Optional[str] = typer.Option(None, "--org", "-o", help="Organization id (default: all)"),
    json_output: bool = typer.Option(False, "--json", help="Output as JSON"),
):
    """Send due invoice payment reminders."""
    _sweep("invoice-reminders", organization, json_output)


@sweep_app.command("trips")
def sweep_trips(
    organization: Optional[str] = typer.Option(None, "--org", "-o", help="Organization id (default: all)"),
    json_output: bool = typer.Option(False, "--json", help="Output as JSON"),
):
    """Notify drivers about upcoming trips."""
    _sweep("trip-notifications", organization, json_output)


# --- Config commands ---


@config_app.command("show")
def config_show():
    """Display resolved configuration."""
    cfg = load_effective_config(_config_path)

    console.print("[bold]Server:[/bold]")
    console.print(f"  host: {cfg.server.host}")
    console.print(f"  port: {cfg.server.port}")
    console.print(f"  log_level: {cfg.server.log_level}")
    console.print(f"  default_organization: {cfg.server.default_organization or '-'}")
    console.print(f"  send_timeout_seconds: {cfg.server.send_timeout_seconds:g}")
    console.print(f"  auto_initialize: {cfg.server.auto_initialize}")

    n = cfg.notifications
    console.print("\n[bold]Notifications:[/bold]")
    console.print(f"  cooldown_days: {n.cooldown_days}")
    console.print(f"  batch_size: {n.batch_size}")
    console.print(f"  min_days_overdue: {n.min_days_overdue}")
    console.print(f"  trip_days_ahead: {n.trip_days_ahead}")
    console.print(f"  recipient_unavailable_terminal: {n.recipient_unavailable_terminal}")

    s = cfg.scheduler
    console.print("\n[bold]Scheduler:[/bold]")
    console.print(f"  enabled: {s.enabled}")
    if s.enabled:
        console.print(f"  timezone: {s.timezone}")
        console.print(f"  invoice reminders at {s.invoice_reminder_hour:02d}:00")
        console.print(f"  trip notifications at {s.trip_notification_hour:02d}:00")
        if s.daily_summary_enabled:
            console.print(f"  daily summary at {s.daily_summary_hour:02d}:00")


@config_app.command("validate")
def config_validate(
    config: Optional[str] = typer.Option(None, "--config", help="Config file path"),
):
    """Validate a config file without starting the server."""
    path = config or _config_path
    try:
        cfg = load_config(config_path=path)
        if cfg is None:
            console.print("[red]No config file found.[/red]")
            console.print("Searched: ./fleetwire.yaml, ~/.fleetwire/config.yaml")
            raise typer.Exit(1)
        console.print("[green]Config is valid.[/green]")
        console.print(f"  Scheduler: {'enabled' if cfg.scheduler.enabled else 'disabled'}")
    except FileNotFoundError as e:
        console.print(f"[red]Config file not found:[/red] {e}")
        raise typer.Exit(1)
    except (ValueError, TypeError) as e:
        console.print(f"[red]Config validation failed:[/red] {e}")
        raise typer.Exit(1)
    except yaml.YAMLError as e:
        console.print(f"[red]Config is not valid YAML:[/red] {e}")
        raise typer.Exit(1)


if __name__ == "__main__":
    app()
