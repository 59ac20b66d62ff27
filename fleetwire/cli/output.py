"""Rich rendering for CLI output."""

import json
from typing import Any

from rich.console import Console
from rich.table import Table

console = Console()

# Connection status color map
STATUS_COLORS = {
    "ready": "green",
    "authenticated": "cyan",
    "connecting": "yellow",
    "qr_ready": "yellow",
    "auth_failure": "red",
    "disconnected": "dim",
}


def _render(renderable: Any) -> str:
    with console.capture() as capture:
        console.print(renderable)
    return capture.get()


def format_status(status: dict[str, Any], as_json: bool = False) -> str:
    """Render a /whatsapp/status response."""
    if as_json:
        return json.dumps(status, indent=2)

    value = status.get("status", "unknown")
    color = STATUS_COLORS.get(value, "white")
    table = Table(show_header=False, box=None)
    table.add_column("Field", style="bold")
    table.add_column("Value")
    table.add_row("Status", f"[{color}]{value}[/{color}]")
    table.add_row("Phone", status.get("phoneNumber") or "-")
    table.add_row("Messages sent", str(status.get("messagesSent", 0)))
    table.add_row("Queued", str(status.get("queuedMessages", 0)))
    if status.get("lastError"):
        table.add_row("Last error", f"[red]{status['lastError']}[/red]")
    if status.get("qrCode"):
        table.add_row("QR code", status["qrCode"])
    return _render(table)


def format_sweep(result: dict[str, Any], as_json: bool = False) -> str:
    """Render a cron sweep response, one row per organization."""
    if as_json:
        return json.dumps(result, indent=2)

    table = Table(title=f"Sweep: {result.get('sweep', '?')}", show_lines=False)
    table.add_column("Organization")
    table.add_column("Processed", justify="right")
    table.add_column("Sent", justify="right", style="green")
    table.add_column("Failed", justify="right", style="red")
    for org in result.get("organizations", []):
        table.add_row(
            org.get("organization_id", "?"),
            str(org.get("processed", 0)),
            str(org.get("sent", 0)),
            str(org.get("failed", 0)),
        )
    output = _render(table)
    errors = result.get("errors") or []
    if errors:
        output += "\nErrors:\n" + "\n".join(f"  - {e}" for e in errors)
    return output
