"""Per-invocation CLI state carried on the typer context."""

from __future__ import annotations

from pathlib import Path

import typer
from rich.console import Console
from rich.markup import escape

from plughost.config.loader import load_config
from plughost.config.schema import Config
from plughost.utils.exceptions import PlughostError, sanitize_error_message


def load_cli_config(ctx: typer.Context, console: Console) -> Config:
    """Load config from the `--config` path given to the root command (or the default)."""
    obj = ctx.find_root().obj or {}
    path = obj.get("config_path")
    try:
        return load_config(Path(path).expanduser() if path else None)
    except ValueError as e:
        console.print(f"[red]{escape(sanitize_error_message(str(e)))}[/red]", soft_wrap=True)
        raise typer.Exit(1) from e


def fail(console: Console, error: PlughostError) -> typer.Exit:
    """Print a surfaced error and return the Exit to raise."""
    console.print(f"[red]Error:[/red] {escape(sanitize_error_message(str(error)))}", soft_wrap=True)
    return typer.Exit(1)
