from __future__ import annotations

import logging
import time
from typing import Annotated

import typer
from rich.console import Console
from rich.table import Table

from .common import build_context, load_settings_or_exit

logger = logging.getLogger(__name__)


def register(app: typer.Typer) -> None:
    @app.command()
    def discover(
        timeout: Annotated[
            float,
            typer.Option("--timeout", "-t", min=0.5, help="Seconds to browse"),
        ] = 10.0,
    ) -> None:
        """Browse the LAN for IRKit devices over mDNS."""
        console = Console()

        settings = load_settings_or_exit()
        ctx = build_context(settings)

        with ctx:
            console.print(
                f"Browsing for {settings.discovery.service_type} for {timeout:.0f}s..."
            )
            ctx.discovery.start()
            try:
                time.sleep(timeout)
            finally:
                ctx.discovery.stop()

            found = [p for p in ctx.peripherals.all() if p.is_local_address_resolved()]
            if not found:
                console.print("No IRKit devices found.")
                return

            table = Table()
            table.add_column("Hostname", style="cyan")
            table.add_column("Address", style="green")
            table.add_column("Device ID")
            table.add_column("Model")
            for peripheral in found:
                table.add_row(
                    peripheral.hostname,
                    peripheral.device_api_endpoint() or "",
                    peripheral.device_id or "(pending)",
                    peripheral.model_name or "",
                )
            console.print(table)
            console.print(f"\n[green]Found {len(found)} device(s)[/green]")
            logger.debug("Known devices: %d", len(ctx.peripherals))
