"""targets / package / fetch commands."""

from __future__ import annotations

import json
from pathlib import Path

import typer
from rich.console import Console
from rich.table import Table

from plughost.cli.shared.context import fail, load_cli_config
from plughost.release import (
    TARGET_TAGS,
    ReleaseFetcher,
    ReleasePackager,
    TargetStatus,
    asset_for_target,
    host_target_triple,
)
from plughost.utils.exceptions import PlughostError, UnrecognizedPlatformTarget

_STATUS_STYLE = {
    TargetStatus.PACKAGED: "green",
    TargetStatus.SKIPPED: "yellow",
    TargetStatus.FAILED: "red",
}


def register_release_commands(app: typer.Typer, console: Console) -> None:
    """Register targets, package and fetch."""

    @app.command("targets")
    def targets(
        ctx: typer.Context,
        name: str = typer.Option("", "--name", "-n", help="Plugin name used for asset names"),
        as_json: bool = typer.Option(False, "--json", help="Print the table as JSON"),
    ) -> None:
        """Show the target triple to release tag table."""
        plugin_name = name or load_cli_config(ctx, console).release.plugin_name or "<name>"
        try:
            host = host_target_triple()
        except UnrecognizedPlatformTarget:
            host = ""
        rows = [
            {
                "target": triple,
                "arch": arch_tag,
                "os": os_tag,
                "asset": f"{plugin_name}-{arch_tag}-{os_tag}.zip",
                "host": triple == host,
            }
            for triple, (arch_tag, os_tag) in TARGET_TAGS.items()
        ]
        if as_json:
            console.print_json(json.dumps(rows))
            return
        table = Table(title="Release targets")
        table.add_column("Target", style="cyan")
        table.add_column("Arch")
        table.add_column("OS")
        table.add_column("Asset")
        for row in rows:
            label = f"{row['target']} (host)" if row["host"] else row["target"]
            table.add_row(label, row["arch"], row["os"], row["asset"])
        console.print(table)

    @app.command("package")
    def package(
        ctx: typer.Context,
        target: list[str] = typer.Option(None, "--target", "-t", help="Target triple (repeatable)"),
        name: str = typer.Option("", "--name", "-n", help="Plugin binary name"),
        project_dir: Path = typer.Option(Path("."), "--project-dir", "-C", help="Project to build"),
        output_dir: str = typer.Option("", "--output-dir", "-o", help="Where archives are written"),
        strict: bool = typer.Option(False, "--strict", help="Abort when a target has no tag mapping"),
        no_toolchain: bool = typer.Option(False, "--no-toolchain", help="Skip the toolchain setup step"),
    ) -> None:
        """Build each target and zip its binary as a release asset."""
        config = load_cli_config(ctx, console)
        release = config.release
        plugin_name = name or release.plugin_name
        if not plugin_name:
            console.print("[red]No plugin name: pass --name or set release.pluginName[/red]")
            raise typer.Exit(1)
        packager = ReleasePackager(
            plugin_name,
            project_dir=project_dir,
            build_command=release.build_command,
            toolchain_command=None if no_toolchain else release.toolchain_command,
            artifact_path=release.artifact_path,
            output_dir=output_dir or release.output_dir,
            strict=strict,
        )
        try:
            report = packager.run(target or release.targets)
        except PlughostError as e:
            raise fail(console, e) from e

        table = Table(title=f"Release packaging: {plugin_name}")
        table.add_column("Target", style="cyan")
        table.add_column("Status")
        table.add_column("Detail")
        for outcome in report.outcomes:
            style = _STATUS_STYLE[outcome.status]
            detail = str(outcome.archive_path) if outcome.archive_path else outcome.reason
            table.add_row(outcome.target, f"[{style}]{outcome.status.value}[/{style}]", detail)
        console.print(table)
        if report.exit_code:
            raise typer.Exit(report.exit_code)

    @app.command("fetch")
    def fetch(
        ctx: typer.Context,
        name: str = typer.Argument(..., help="Plugin binary name"),
        tag: str = typer.Option(..., "--tag", help="Release tag, e.g. v1.2.0"),
        repo: str = typer.Option("", "--repo", "-r", help="owner/name of the release repository"),
        target: str = typer.Option("", "--target", "-t", help="Target triple (default: host)"),
        install_dir: Path = typer.Option(None, "--install-dir", help="Install directory"),
    ) -> None:
        """Download a release asset and install its binary."""
        config = load_cli_config(ctx, console)
        repo = repo or config.release.repo
        if not repo:
            console.print("[red]No repository: pass --repo or set release.repo[/red]")
            raise typer.Exit(1)
        fetcher = ReleaseFetcher(
            install_dir or config.install_dir,
            config.release.download_url_template,
        )
        try:
            asset = asset_for_target(name, target or host_target_triple())
            path = fetcher.fetch(name, repo, tag, target=target or None)
        except PlughostError as e:
            raise fail(console, e) from e
        console.print(f"[green]✓[/green] Installed {asset.archive_name} -> {path}")
