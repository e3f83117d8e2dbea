from __future__ import annotations

import logging
from typing import Annotated

import typer
from pydantic import ValidationError
from rich.console import Console

from irpro.core.provisioning import SetupRequest
from irpro.models import SecurityMode, WifiCredentials

from .common import build_context, load_settings_or_exit

logger = logging.getLogger(__name__)


class ConsoleListener:
    def __init__(self, console: Console) -> None:
        self.console = console
        self.error: str | None = None
        self.completed = False

    def on_status(self, message: str) -> None:
        self.console.print(f"  … {message}")

    def on_error(self, message: str) -> None:
        self.error = message

    def on_complete(self) -> None:
        self.completed = True


def register(app: typer.Typer) -> None:
    @app.command()
    def setup(
        ssid: Annotated[
            str,
            typer.Option("--ssid", "-s", help="Home network the device should join"),
        ],
        password: Annotated[
            str,
            typer.Option(
                "--password",
                "-p",
                prompt=True,
                hide_input=True,
                prompt_required=False,
                help="Home network password",
            ),
        ] = "",
        security: Annotated[
            SecurityMode,
            typer.Option(
                "--security", case_sensitive=False, help="Home network security"
            ),
        ] = SecurityMode.WPA_WPA2,
        ap_password: Annotated[
            str | None,
            typer.Option(
                "--ap-password",
                help="Password of the device's own Wi-Fi (printed on the device)",
            ),
        ] = None,
        country: Annotated[
            str,
            typer.Option("--country", help="Two-letter country code for the radio"),
        ] = "",
    ) -> None:
        """Move a new IRKit from its own Wi-Fi onto your network."""
        console = Console()

        settings = load_settings_or_exit()
        try:
            credentials = WifiCredentials(
                ssid=ssid, password=password, security=security
            )
        except ValidationError as exc:
            console.print(f"[red]✗[/red] {exc.errors()[0]['msg']}")
            raise typer.Exit(1) from exc

        request = SetupRequest(
            credentials=credentials,
            ap_password=ap_password or settings.device.ap_password,
            country_code=country,
        )
        listener = ConsoleListener(console)
        ctx = build_context(settings)

        with ctx:
            if settings.provisioning.require_local_discovery:
                ctx.discovery.start()
            console.print(f"Setting up IRKit on [cyan]{ssid}[/cyan]")
            session = ctx.provisioner.start(request, listener)
            try:
                while not session.wait(0.5):
                    pass
            except KeyboardInterrupt:
                console.print("\nCancelling setup...")
                ctx.provisioner.cancel()
                session.wait(5.0)
                raise typer.Exit(130) from None
            finally:
                ctx.discovery.stop()

        if listener.error is not None:
            console.print(f"[red]✗[/red] Setup failed: {listener.error}")
            raise typer.Exit(1)
        lease = session.lease
        console.print("[green]✓[/green] Device is online")
        if session.ap_ssid and lease is not None:
            console.print(f"  • {session.ap_ssid} → device id {lease.device_id}")
        logger.debug("Setup finished in phase %s", session.phase.value)
