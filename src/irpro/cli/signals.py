from __future__ import annotations

import threading
import time
from typing import Annotated

import typer
from rich.console import Console
from rich.table import Table

from irpro.errors import CancellationError, IRProError
from irpro.models import Peripheral, Signal
from irpro.services import AppContext

from .common import build_context, load_settings_or_exit

app = typer.Typer(no_args_is_help=True, help="Learn, send and manage IR signals.")


class _SendResult:
    def __init__(self) -> None:
        self.done = threading.Event()
        self.error: str | None = None

    def on_success(self) -> None:
        self.done.set()

    def on_error(self, message: str) -> None:
        self.error = message
        self.done.set()


@app.command("list")
def list_signals() -> None:
    """List saved signals."""
    settings = load_settings_or_exit()
    ctx = build_context(settings)

    console = Console()
    with ctx:
        signals = ctx.signals.all()
        if not signals:
            console.print("No signals saved. Use 'irpro signals learn' to add one.")
            return

        table = Table()
        table.add_column("ID", style="cyan")
        table.add_column("Name", style="green")
        table.add_column("Device")
        table.add_column("Format")
        table.add_column("Freq (kHz)")
        table.add_column("Length")
        for signal in signals:
            device = ""
            if signal.device_id:
                peripheral = ctx.peripherals.get_by_device_id(signal.device_id)
                device = peripheral.display_name if peripheral else signal.device_id
            table.add_row(
                signal.id[:8],
                signal.name,
                device,
                signal.format,
                f"{signal.frequency:g}",
                str(len(signal.data)),
            )
        console.print(table)


def _wait_for_local_device(
    ctx: AppContext, hostname: str, cancelled: threading.Event
) -> Peripheral:
    while True:
        peripheral = ctx.peripherals.get(hostname)
        if peripheral is not None and peripheral.is_local_address_resolved():
            return peripheral
        if cancelled.wait(0.2):
            raise CancellationError(f"{hostname} was not found on the local network")


@app.command("learn")
def learn_signal(
    name: str = typer.Argument(..., help="Name for the new signal"),
    timeout: Annotated[
        float,
        typer.Option("--timeout", "-t", min=1.0, help="Seconds to wait for a signal"),
    ] = 60.0,
    device: Annotated[
        str | None,
        typer.Option(
            "--device",
            help="Learn straight from this device on the LAN instead of the relay",
        ),
    ] = None,
) -> None:
    """Wait for a remote to be pointed at a device and save what it receives."""
    settings = load_settings_or_exit()
    ctx = build_context(settings)

    console = Console()
    cancelled = threading.Event()
    timer = threading.Timer(timeout, cancelled.set)
    timer.daemon = True
    with ctx:
        timer.start()
        try:
            if device:
                ctx.discovery.start()
                peripheral = _wait_for_local_device(ctx, device, cancelled)
                endpoint = peripheral.device_api_endpoint()
                assert endpoint is not None
                console.print("Point a remote at your IRKit and press a button...")
                message = ctx.device_client.wait_for_signal(endpoint, cancelled)
                signal = Signal.from_message(
                    message, device_id=peripheral.device_id, name=name
                )
            else:
                console.print("Point a remote at your IRKit and press a button...")
                ctx.relay_client.ensure_client_key()
                signal = ctx.relay_client.wait_for_signal(cancelled).to_signal(name)
        except CancellationError as exc:
            console.print(f"[yellow]![/yellow] No signal received: {exc}")
            raise typer.Exit(1) from exc
        except IRProError as exc:
            console.print(f"[red]✗[/red] {exc}")
            raise typer.Exit(1) from exc
        finally:
            timer.cancel()
            if device:
                ctx.discovery.stop()

        ctx.signals.add(signal)
        ctx.signals.save()
    console.print(
        f"[green]✓[/green] Saved '{name}' ({len(signal.data)} pulses) as {signal.id}"
    )


@app.command("send")
def send_signal(
    name_or_id: str = typer.Argument(..., help="Signal name or id"),
    discover: Annotated[
        float,
        typer.Option(
            "--discover",
            min=0.0,
            help="Seconds to browse the LAN first so the signal can go direct",
        ),
    ] = 0.0,
) -> None:
    """Send a saved signal, directly on the LAN when possible."""
    settings = load_settings_or_exit()
    ctx = build_context(settings)

    console = Console()
    with ctx:
        signal = ctx.signals.find(name_or_id)
        if signal is None:
            console.print(f"[yellow]![/yellow] Signal '{name_or_id}' not found")
            raise typer.Exit(1)

        if discover > 0:
            ctx.discovery.start()
            time.sleep(discover)

        result = _SendResult()
        ctx.dispatch.send(signal, result)
        result.done.wait()
        ctx.discovery.stop()

    if result.error is not None:
        console.print(f"[red]✗[/red] Failed to send '{signal.name}': {result.error}")
        raise typer.Exit(1)
    console.print(f"[green]✓[/green] Sent '{signal.name or signal.id}'")


@app.command("remove")
def remove_signal(
    name_or_id: str = typer.Argument(..., help="Signal name or id"),
) -> None:
    """Delete a saved signal."""
    settings = load_settings_or_exit()
    ctx = build_context(settings)

    console = Console()
    with ctx:
        signal = ctx.signals.find(name_or_id)
        if signal is None or not ctx.signals.remove(signal.id):
            console.print(f"[yellow]![/yellow] Signal '{name_or_id}' not found")
            raise typer.Exit(1)
        ctx.signals.save()
    console.print(f"[green]✓[/green] Removed signal '{signal.name or signal.id}'")
