from __future__ import annotations

import typer
from rich.console import Console
from rich.table import Table

from .common import build_context, load_settings_or_exit

app = typer.Typer(no_args_is_help=True, help="Manage known IRKit devices.")


@app.command("list")
def list_devices() -> None:
    """List known devices."""
    settings = load_settings_or_exit()
    ctx = build_context(settings)

    console = Console()
    with ctx:
        peripherals = ctx.peripherals.all()
        if not peripherals:
            console.print("No devices known yet.")
            console.print("Run 'irpro setup' or 'irpro discover' to add one.")
            return

        table = Table()
        table.add_column("Hostname", style="cyan")
        table.add_column("Name", style="green")
        table.add_column("Device ID")
        table.add_column("Model")
        table.add_column("Firmware")
        table.add_column("Found")

        for peripheral in sorted(peripherals, key=lambda p: p.hostname.lower()):
            table.add_row(
                peripheral.hostname,
                peripheral.display_name,
                peripheral.device_id or "",
                peripheral.model_name or "",
                peripheral.firmware_version or "",
                peripheral.found_date.strftime("%Y-%m-%d %H:%M"),
            )
        console.print(table)


@app.command("rename")
def rename_device(
    hostname: str = typer.Argument(..., help="Device hostname"),
    name: str = typer.Argument(..., help="New display name"),
) -> None:
    """Give a device a friendlier name."""
    settings = load_settings_or_exit()
    ctx = build_context(settings)

    console = Console()
    with ctx:
        peripheral = ctx.peripherals.get(hostname)
        if peripheral is None:
            console.print(f"[yellow]![/yellow] Device '{hostname}' not found")
            raise typer.Exit(1)
        peripheral.customized_name = name
        ctx.peripherals.save()
    console.print(f"[green]✓[/green] Renamed '{hostname}' → '{name}'")


@app.command("remove")
def remove_device(
    hostname: str = typer.Argument(..., help="Device hostname"),
) -> None:
    """Forget a device and the signals learned with it."""
    settings = load_settings_or_exit()
    ctx = build_context(settings)

    console = Console()
    with ctx:
        peripheral = ctx.peripherals.remove(hostname)
        if peripheral is None:
            console.print(f"[yellow]![/yellow] Device '{hostname}' not found")
            raise typer.Exit(1)
        ctx.peripherals.save()

        dropped = 0
        if peripheral.device_id:
            dropped = ctx.signals.remove_for_device(peripheral.device_id)
            if dropped:
                ctx.signals.save()
    console.print(f"[green]✓[/green] Removed device '{peripheral.hostname}'")
    if dropped:
        console.print(f"  • also removed {dropped} signal(s)")
