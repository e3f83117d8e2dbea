from __future__ import annotations

from typing import Annotated

import typer

from irpro.config import Settings, render_settings_toml, write_settings

from .common import load_settings_or_exit, resolve_config_path_or_exit

app = typer.Typer(no_args_is_help=True, help="Show or create the config file.")


@app.command("show")
def show_config() -> None:
    settings = load_settings_or_exit()
    path, exists = resolve_config_path_or_exit(allow_missing=True)

    source = str(path) if exists else "defaults"
    typer.echo(f"Config source: {source}")
    typer.echo(render_settings_toml(settings))


@app.command("init")
def init_config(
    force: Annotated[
        bool,
        typer.Option("--force", "-f", help="Overwrite existing config"),
    ] = False,
    api_key: Annotated[
        str,
        typer.Option("--api-key", help="Relay API key to store in the config"),
    ] = "",
) -> None:
    path, exists = resolve_config_path_or_exit(allow_missing=True)

    if exists and not force:
        typer.echo(f"Config already exists at {path}")
        return

    settings = Settings()
    if api_key:
        settings = settings.model_copy(
            update={"relay": settings.relay.model_copy(update={"api_key": api_key})}
        )
    write_settings(settings, path)
    typer.echo(f"Wrote default config to {path}")
