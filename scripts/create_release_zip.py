"""Build the release binary for the host platform and zip it as a release asset.

Usage, from the root of a plugin repository::

    python scripts/create_release_zip.py my-plugin

The archive lands in target/release/<name>-<arch>-<os>.zip, ready to attach to
a GitHub release where `plughost fetch` can find it.
"""

from __future__ import annotations

import argparse
from pathlib import Path

from loguru import logger

from plughost.cli.shared.logging_utils import configure_cli_logging
from plughost.release import ReleasePackager, host_target_triple


def main() -> int:
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[0])
    parser.add_argument("name", help="plugin binary name (the Cargo package name)")
    parser.add_argument("--project-dir", default=".", help="plugin repository root")
    parser.add_argument("--target", action="append", default=[], help="target triple (repeatable, default: host)")
    args = parser.parse_args()

    configure_cli_logging("INFO")
    targets = args.target or [host_target_triple()]
    # A host-only build uses the plain release profile, like `cargo build --release`.
    host_only = not args.target
    packager = ReleasePackager(
        args.name,
        project_dir=Path(args.project_dir),
        build_command="cargo build --release" if host_only else "cargo build --release --target {target}",
        toolchain_command=None if host_only else "rustup target add {target}",
        artifact_path="target/release/{name}" if host_only else "target/{target}/release/{name}",
    )
    report = packager.run(targets)
    for outcome in report.packaged:
        logger.info("Release asset created at: {}", outcome.archive_path)
    return report.exit_code


if __name__ == "__main__":
    raise SystemExit(main())
