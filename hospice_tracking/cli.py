"""
Command-line interface for the tracking service.
Provides commands for serving the API, bulk registration and ad-hoc lookups.
"""

import asyncio
from pathlib import Path

import click
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from hospice_tracking import __version__

console = Console()


def _load(config_path):
    from hospice_tracking.config import init_config
    from hospice_tracking.logging_config import setup_logging

    config = init_config(config_path)
    setup_logging(config, console=False)
    return config


def _manager(config):
    from hospice_tracking.storage import DeliveryStore
    from hospice_tracking.tracking import TrackingManager

    store = DeliveryStore.from_config(config)
    store.init_schema()
    return TrackingManager(config, store)


@click.group()
@click.version_option(version=__version__, prog_name="Hospice Delivery Tracking")
@click.option(
    "--config", "-c",
    type=click.Path(exists=True),
    help="Path to configuration file"
)
@click.pass_context
def cli(ctx, config):
    """Hospice Delivery Tracking - carrier tracking for family deliveries"""
    ctx.ensure_object(dict)
    ctx.obj["config_path"] = config


@cli.command()
@click.option("--host", default=None, help="Bind address (default from config)")
@click.option("--port", type=int, default=None, help="Port (default from config)")
@click.pass_context
def serve(ctx, host, port):
    """Run the HTTP API (webhook, tracking and delivery endpoints)."""
    import uvicorn
    from hospice_tracking.api import create_app
    from hospice_tracking.config import init_config
    from hospice_tracking.logging_config import setup_logging

    config = init_config(ctx.obj["config_path"])
    setup_logging(config, console=True)

    host = host or config.server_host
    port = port or config.server_port

    console.print(Panel.fit(
        f"[bold blue]Hospice Delivery Tracking v{__version__}[/bold blue]\n"
        f"Listening on {host}:{port}\n"
        "Press Ctrl+C to stop",
        title="Starting Server"
    ))

    for warning in config.validate():
        console.print(f"[yellow]! {warning}[/yellow]")

    uvicorn.run(create_app(config), host=host, port=port)


@cli.command("register-all")
@click.option("--delay", type=float, default=None, help="Seconds between provider calls")
@click.pass_context
def register_all(ctx, delay):
    """Register every undelivered delivery that has a tracking link."""
    config = _load(ctx.obj["config_path"])
    manager = _manager(config)

    console.print("[bold]Registering tracking numbers...[/bold]")
    result = asyncio.run(manager.register_all(delay=delay))

    table = Table(title="Registration Results")
    table.add_column("Total", style="cyan")
    table.add_column("Registered", style="green")
    table.add_column("Failed", style="red")
    table.add_row(str(result.total), str(result.registered), str(result.failed))
    console.print(table)

    for error in result.errors:
        console.print(f"[red]✗ {error}[/red]")


@cli.command()
@click.argument("delivery_id")
@click.pass_context
def refresh(ctx, delivery_id):
    """Pull the current status of one delivery from the provider."""
    config = _load(ctx.obj["config_path"])
    manager = _manager(config)

    result = asyncio.run(manager.refresh_delivery(delivery_id))

    if result.success:
        change = "updated" if result.updated else "unchanged"
        console.print(f"[green]✓ Status {result.status} ({change})[/green]")
    else:
        console.print(f"[red]✗ Refresh failed: {result.error}[/red]")


@cli.command()
@click.argument("tracking_url")
@click.option("--delivery-id", "-d", default=None, help="Delivery to read from / write back to")
@click.pass_context
def track(ctx, tracking_url, delivery_id):
    """Show tracking for a carrier tracking URL."""
    config = _load(ctx.obj["config_path"])
    manager = _manager(config)

    response = asyncio.run(manager.track(tracking_url=tracking_url, delivery_id=delivery_id))

    console.print(Panel.fit(
        f"[bold]{response.current_status}[/bold]\n"
        f"Carrier: {response.carrier or '-'}\n"
        f"Tracking #: {response.tracking_number or '-'}\n"
        f"Estimated: {response.estimated_delivery or '-'}",
        title="Tracking"
    ))

    table = Table(title="Timeline")
    table.add_column("Step", style="cyan")
    table.add_column("Location")
    table.add_column("Time")
    table.add_column("Done", style="green")
    for event in response.events:
        table.add_row(event.status, event.location or "", event.timestamp, "✓" if event.is_completed else "")
    console.print(table)

    if response.error:
        console.print(f"[yellow]{response.error}[/yellow]")


@cli.command()
@click.argument("value")
def detect(value):
    """Detect carrier and tracking number from a URL or a bare number."""
    from hospice_tracking.tracking.carriers import detect_carrier, display_name, extract_tracking_number

    is_url = "/" in value or "=" in value
    number = extract_tracking_number(value) if is_url else value.strip()
    carrier = detect_carrier(value if is_url else None, number)

    table = Table(title="Detection")
    table.add_column("Field", style="cyan")
    table.add_column("Value", style="green")
    table.add_row("Tracking Number", number or "[dim]Not found[/dim]")
    table.add_row("Carrier", display_name(carrier))
    table.add_row("Carrier Code", str(carrier.code) if carrier and carrier.code else "[dim]auto-detect[/dim]")
    console.print(table)


@cli.command()
@click.pass_context
def status(ctx):
    """Show configuration status."""
    from hospice_tracking.config import TrackingConfig

    config = TrackingConfig.from_env(ctx.obj["config_path"])

    console.print(Panel.fit(
        f"[bold]Hospice Delivery Tracking v{__version__}[/bold]",
        title="Status"
    ))

    table = Table(title="Configuration")
    table.add_column("Setting", style="cyan")
    table.add_column("Value", style="green")

    table.add_row("Tracking API", "configured" if config.api_configured else "[yellow]Not set[/yellow]")
    table.add_row("API URL", config.tracking_api_url)
    table.add_row("Webhook Signature", "verified" if config.signature_required else "[yellow]Not verified[/yellow]")
    table.add_row("Database", config.database_url)
    table.add_row("Request Timeout", f"{config.request_timeout}s")
    table.add_row("Registration Delay", f"{config.registration_delay}s")
    table.add_row("Log File", config.log_file)

    console.print(table)

    for warning in config.validate():
        console.print(f"[yellow]! {warning}[/yellow]")


@cli.command()
@click.argument("config_path", type=click.Path())
def init(config_path):
    """Initialize configuration file."""
    config_path = Path(config_path)

    if config_path.exists():
        if not click.confirm(f"{config_path} already exists. Overwrite?"):
            return

    template = '''# Hospice Delivery Tracking Configuration

# External tracking provider (leave empty to disable live tracking)
TRACKING_API_KEY=
TRACKING_API_URL=https://api.17track.net/track/v2.4
TRACKING_REQUEST_TIMEOUT=15
TRACKING_REGISTRATION_DELAY=0.2

# Shared secret for webhook signatures (leave empty to skip verification)
TRACKING_WEBHOOK_SECRET=

# Storage
DATABASE_URL=sqlite:///./hospice_tracking.db

# Server
SERVER_HOST=0.0.0.0
SERVER_PORT=8000

# Logging
LOG_LEVEL=INFO
LOG_FILE=./logs/tracking.log
'''

    config_path.write_text(template, encoding='utf-8')
    console.print(f"[green]✓ Configuration file created: {config_path}[/green]")
    console.print("\nEdit this file with your settings, then run:")
    console.print(f"  hospice-tracking --config {config_path} serve")


@cli.command()
@click.pass_context
def logs(ctx):
    """View recent logs."""
    from hospice_tracking.config import TrackingConfig
    config = TrackingConfig.from_env(ctx.obj["config_path"])

    log_file = Path(config.log_file)

    if not log_file.exists():
        console.print(f"[yellow]Log file not found: {log_file}[/yellow]")
        return

    console.print(f"[bold]Recent logs from {log_file}:[/bold]\n")

    with open(log_file, "r") as f:
        lines = f.readlines()
        recent = lines[-50:] if len(lines) > 50 else lines

        for line in recent:
            if "ERROR" in line:
                console.print(f"[red]{line.rstrip()}[/red]")
            elif "WARNING" in line:
                console.print(f"[yellow]{line.rstrip()}[/yellow]")
            elif "INFO" in line:
                console.print(f"[green]{line.rstrip()}[/green]")
            else:
                console.print(line.rstrip())


def main():
    """Main entry point."""
    cli()


if __name__ == "__main__":
    main()
