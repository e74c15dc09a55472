"""config command group."""

from __future__ import annotations

import json
from pathlib import Path

import typer
from rich.console import Console

from plughost.cli.shared.context import load_cli_config
from plughost.config.loader import convert_to_camel, get_config_path, save_config
from plughost.config.schema import Config


def register_config_commands(app: typer.Typer, console: Console) -> None:
    """Register config init/show/path."""
    config_app = typer.Typer(help="Config helpers (init/show/path)")
    app.add_typer(config_app, name="config")

    def _path(ctx: typer.Context) -> Path:
        obj = ctx.find_root().obj or {}
        raw = obj.get("config_path")
        return Path(raw).expanduser() if raw else get_config_path()

    @config_app.command("init")
    def config_init(
        ctx: typer.Context,
        force: bool = typer.Option(False, "--force", "-f", help="Overwrite an existing file with defaults"),
    ) -> None:
        """Write a config file with default values."""
        path = _path(ctx)
        if path.exists() and not force:
            console.print(f"[yellow]Config already exists at {path}[/yellow] (use --force to overwrite)")
            raise typer.Exit(1)
        save_config(Config(), path)
        console.print(f"[green]✓[/green] Wrote {path}")

    @config_app.command("show")
    def config_show(ctx: typer.Context) -> None:
        """Print the effective configuration."""
        config = load_cli_config(ctx, console)
        console.print_json(json.dumps(convert_to_camel(config.model_dump())))

    @config_app.command("path")
    def config_path(ctx: typer.Context) -> None:
        """Print the config file location."""
        console.print(str(_path(ctx)))
