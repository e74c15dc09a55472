"""CLI commands for plughost.

The CLI is the single entry point: the root callback sets up logging and the
config path, and command groups register discover, launch, handshake, targets,
package, fetch and config.
"""

from pathlib import Path

import typer
from rich.console import Console

from plughost import __logo__, __version__
from plughost.cli.command_groups.group_registry import register_command_groups
from plughost.cli.shared.logging_utils import configure_cli_logging, ensure_rotating_log_file
from plughost.config.loader import load_config

app = typer.Typer(
    name="plughost",
    help=f"{__logo__} plughost - out-of-process plugin host",
    no_args_is_help=True,
)

console = Console()


def version_callback(value: bool):
    if value:
        console.print(f"{__logo__} plughost v{__version__}")
        raise typer.Exit()


@app.callback()
def main(
    ctx: typer.Context,
    version: bool = typer.Option(
        None, "--version", "-V", callback=version_callback, is_eager=True
    ),
    config_path: Path = typer.Option(None, "--config", "-c", help="Config file (default ~/.plughost/config.json)"),
    log_level: str = typer.Option(None, "--log-level", "-l", help="Log level for stderr output"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Shortcut for --log-level DEBUG"),
):
    """plughost - out-of-process plugin host."""
    ctx.obj = {"config_path": str(config_path) if config_path else None}
    try:
        logging_cfg = load_config(config_path).logging
    except ValueError:
        # Commands report the broken file themselves; keep default logging here.
        logging_cfg = None
    level = "DEBUG" if verbose else (log_level or (logging_cfg.level if logging_cfg else "INFO"))
    configure_cli_logging(level)
    if logging_cfg is not None and logging_cfg.file:
        ensure_rotating_log_file(logging_cfg.file_name, level)


register_command_groups(app, console)


if __name__ == "__main__":
    app()
