from __future__ import annotations

from typing import Annotated

import typer

from irpro.utils.logging import setup_logging

from . import config as config_cmd
from . import devices as devices_cmd
from . import signals as signals_cmd
from .discover import register as register_discover
from .info import register as register_info
from .init_cmd import register as register_init
from .setup import register as register_setup

app = typer.Typer(
    help="IRPro - set up and drive IRKit infrared bridges", no_args_is_help=True
)

app.add_typer(config_cmd.app, name="config")
app.add_typer(devices_cmd.app, name="devices")
app.add_typer(signals_cmd.app, name="signals")

register_init(app)
register_info(app)
register_discover(app)
register_setup(app)


@app.callback(invoke_without_command=True)
def main(
    version: Annotated[
        bool,
        typer.Option("--version", "-v", help="Show version and exit"),
    ] = False,
) -> None:
    """IRPro CLI."""
    setup_logging()

    if version:
        from importlib.metadata import version as get_version

        typer.echo(f"irpro version {get_version('irpro')}")
        raise typer.Exit()
