from __future__ import annotations

import typer
from rich.console import Console

from .common import build_database, load_settings_or_exit, resolve_config_path_or_exit


def register(app: typer.Typer) -> None:
    @app.command()
    def info() -> None:
        """Show IRPro data directory info and stats."""
        settings = load_settings_or_exit()
        db = build_database(settings)
        try:
            peripherals = db.load_peripherals()
            signals = db.load_signals()
            client_key = db.load_client_key()
        except ValueError as exc:
            typer.echo(str(exc), err=True)
            raise typer.Exit(1) from exc

        config_path, config_exists = resolve_config_path_or_exit(allow_missing=True)

        console = Console()

        console.print("[bold]IRPro Info[/bold]\n")
        console.print(f"Data directory: {db.path}")
        console.print(f"Config file: {config_path if config_exists else 'defaults'}")

        console.print("\n[bold]Configuration[/bold]")
        console.print(f"Relay: {settings.relay.base_url}")
        console.print(f"API key: {'set' if settings.relay.api_key else 'not set'}")
        console.print(f"Wi-Fi interface: {settings.radio.interface}")

        console.print("\n[bold]Statistics[/bold]")
        console.print(f"Devices: {len(peripherals)}")
        console.print(f"Signals: {len(signals)}")
        registered = "registered" if client_key else "not registered"
        console.print(f"Relay client: {registered}")
