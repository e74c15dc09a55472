"""discover / launch / handshake commands."""

from __future__ import annotations

import json
import sys

import typer
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from plughost.cli.shared.context import fail, load_cli_config
from plughost.handshake import HandshakeLine, decode_handshake
from plughost.host import PluginHost
from plughost.utils.exceptions import HandshakeError, PlughostError, PluginNotFound


def _handshake_table(handshake: HandshakeLine, title: str) -> Table:
    table = Table(title=title)
    table.add_column("Field", style="cyan")
    table.add_column("Value")
    for key, value in handshake.as_dict().items():
        table.add_row(key, str(value))
    return table


def register_plugin_commands(app: typer.Typer, console: Console) -> None:
    """Register discover, launch and handshake."""

    @app.command("discover")
    def discover(
        ctx: typer.Context,
        name: str = typer.Argument(..., help="Plugin executable name"),
        show_all: bool = typer.Option(False, "--all", "-a", help="List every candidate in search order"),
    ) -> None:
        """Resolve a plugin name against the search path."""
        host = PluginHost(load_cli_config(ctx, console))
        search_path = host.search_path()
        try:
            if show_all:
                found = host.candidates(name)
                if not found:
                    raise PluginNotFound(name, [str(d) for d in search_path])
            else:
                found = [host.discover(name)]
        except PluginNotFound as e:
            console.print(f"[red]Plugin not found:[/red] {name}")
            console.print(f"Searched {len(search_path)} directories:")
            for directory in search_path:
                console.print(f"  {directory}", soft_wrap=True)
            raise typer.Exit(1) from e
        except ValueError as e:
            console.print(f"[red]{escape(str(e))}[/red]")
            raise typer.Exit(1) from e

        table = Table(title=f"Candidates for {name} ({len(found)})")
        table.add_column("#", style="cyan")
        table.add_column("Executable")
        table.add_column("Directory")
        for idx, descriptor in enumerate(found, 1):
            table.add_row(str(idx), str(descriptor.executable_path), str(descriptor.search_dir))
        console.print(table)

    @app.command("launch")
    def launch(
        ctx: typer.Context,
        name: str = typer.Argument(..., help="Plugin executable name"),
        args: list[str] = typer.Argument(None, help="Arguments passed to the plugin"),
        wait: bool = typer.Option(True, "--wait/--no-wait", help="Keep the plugin running until it exits or Ctrl+C"),
        as_json: bool = typer.Option(False, "--json", help="Print the handshake as JSON"),
        timeout: float = typer.Option(None, "--timeout", "-t", help="Startup timeout in seconds"),
    ) -> None:
        """Launch a plugin, wait for its handshake and report the endpoint."""
        config = load_cli_config(ctx, console)
        if timeout is not None:
            config.launch.startup_timeout_seconds = timeout
        with PluginHost(config) as host:
            try:
                plugin = host.launch(name, args or [])
            except PlughostError as e:
                raise fail(console, e) from e
            except ValueError as e:
                console.print(f"[red]{escape(str(e))}[/red]")
                raise typer.Exit(1) from e

            if as_json:
                console.print_json(json.dumps({"pid": plugin.pid, **plugin.handshake.as_dict()}))
            else:
                console.print(_handshake_table(plugin.handshake, f"{name} (pid {plugin.pid})"))
            if not wait:
                return
            console.print("[dim]Press Ctrl+C to stop[/dim]")
            try:
                code = plugin.wait()
            except KeyboardInterrupt:
                console.print("\nStopping plugin...")
                return
            try:
                plugin.check_handshake_stream()
            except PlughostError as e:
                raise fail(console, e) from e
            if code != 0:
                console.print(f"[yellow]Plugin exited with code {code}[/yellow]")
                raise typer.Exit(1)

    @app.command("handshake")
    def handshake(
        line: str = typer.Argument(..., help="Handshake line to decode, or '-' to read one line from stdin"),
        max_core: int = typer.Option(1, "--max-core", help="Highest core protocol version accepted"),
        expect_app: int = typer.Option(None, "--expect-app", help="Required app protocol version"),
        as_json: bool = typer.Option(False, "--json", help="Print the decoded fields as JSON"),
    ) -> None:
        """Decode and validate a handshake line."""
        raw = sys.stdin.readline() if line == "-" else line
        try:
            decoded = decode_handshake(raw, max_core_version=max_core, expected_app_version=expect_app)
        except HandshakeError as e:
            raise fail(console, e) from e
        if as_json:
            console.print_json(json.dumps(decoded.as_dict()))
        else:
            console.print(_handshake_table(decoded, "Handshake"))
