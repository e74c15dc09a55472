"""Registry for grouped CLI command modules."""

from __future__ import annotations

import typer
from rich.console import Console

from .config_commands import register_config_commands
from .plugin_commands import register_plugin_commands
from .release_commands import register_release_commands


def register_command_groups(app: typer.Typer, console: Console) -> None:
    """Attach grouped command modules to the main app."""
    register_plugin_commands(app=app, console=console)
    register_release_commands(app=app, console=console)
    register_config_commands(app=app, console=console)
