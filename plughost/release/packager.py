"""Build each target of a release matrix and zip its binary under the asset name."""

from __future__ import annotations

import os
import shlex
import subprocess
import tempfile
import time
import zipfile
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Iterable

from loguru import logger

from plughost.release.targets import asset_for_target, host_target_triple, validate_matrix
from plughost.utils.exceptions import (
    ArtifactMissing,
    PlughostError,
    ToolchainFailed,
    UnrecognizedPlatformTarget,
)

DEFAULT_BUILD_COMMAND = "cargo build --release --target {target}"
DEFAULT_TOOLCHAIN_COMMAND = "rustup target add {target}"
DEFAULT_ARTIFACT_PATH = "target/{target}/release/{name}"
DEFAULT_OUTPUT_DIR = "target/release"

_ENTRY_MODE = 0o755
_OUTPUT_TAIL_LINES = 20


class TargetStatus(str, Enum):
    PACKAGED = "packaged"
    SKIPPED = "skipped"
    FAILED = "failed"


@dataclass(slots=True)
class TargetOutcome:
    target: str
    status: TargetStatus
    reason: str = ""
    archive_path: Path | None = None
    error: PlughostError | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "target": self.target,
            "status": self.status.value,
            "reason": self.reason,
            "archive": str(self.archive_path) if self.archive_path else None,
            "code": self.error.code if self.error else None,
        }


@dataclass(slots=True)
class PackageReport:
    plugin_name: str
    outcomes: list[TargetOutcome] = field(default_factory=list)

    def _with(self, status: TargetStatus) -> list[TargetOutcome]:
        return [o for o in self.outcomes if o.status is status]

    @property
    def packaged(self) -> list[TargetOutcome]:
        return self._with(TargetStatus.PACKAGED)

    @property
    def skipped(self) -> list[TargetOutcome]:
        return self._with(TargetStatus.SKIPPED)

    @property
    def failed(self) -> list[TargetOutcome]:
        return self._with(TargetStatus.FAILED)

    @property
    def exit_code(self) -> int:
        return 1 if self.failed else 0


def _render(template: str, *, target: str, name: str) -> list[str]:
    return [token.format(target=target, name=name) for token in shlex.split(template)]


def _tail(output: str | None) -> str:
    if not output:
        return ""
    lines = output.strip().splitlines()
    return "\n".join(lines[-_OUTPUT_TAIL_LINES:])


def write_archive(binary: Path, archive_path: Path, entry_name: str) -> Path:
    """
    Zip `binary` as the single root entry `entry_name` with mode 0755.

    The archive is written next to its destination and renamed into place, so a
    reader never sees a partial file and a re-run replaces the previous archive.
    """
    archive_path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(prefix=".plughost-", suffix=".zip.tmp", dir=archive_path.parent)
    os.close(fd)
    tmp = Path(tmp_name)
    try:
        info = zipfile.ZipInfo(entry_name, date_time=time.localtime(binary.stat().st_mtime)[:6])
        info.external_attr = (0o100000 | _ENTRY_MODE) << 16
        info.compress_type = zipfile.ZIP_DEFLATED
        with zipfile.ZipFile(tmp, "w") as zf:
            zf.writestr(info, binary.read_bytes())
        os.replace(tmp, archive_path)
    except BaseException:
        tmp.unlink(missing_ok=True)
        raise
    return archive_path


class ReleasePackager:
    """Runs the per-target build, artifact check and archive steps for one plugin."""

    def __init__(
        self,
        plugin_name: str,
        *,
        project_dir: str | os.PathLike[str] = ".",
        build_command: str = DEFAULT_BUILD_COMMAND,
        toolchain_command: str | None = DEFAULT_TOOLCHAIN_COMMAND,
        artifact_path: str = DEFAULT_ARTIFACT_PATH,
        output_dir: str | os.PathLike[str] = DEFAULT_OUTPUT_DIR,
        strict: bool = False,
        timeout_seconds: float | None = None,
    ):
        if not plugin_name:
            raise ValueError("plugin_name is required")
        self.plugin_name = plugin_name
        self.project_dir = Path(project_dir).expanduser()
        self.build_command = build_command
        self.toolchain_command = toolchain_command or None
        self.artifact_path = artifact_path
        self.output_dir = Path(output_dir)
        self.strict = strict
        self.timeout_seconds = timeout_seconds

    @classmethod
    def from_config(cls, config: Any, *, project_dir: str | os.PathLike[str] = ".", strict: bool = False) -> "ReleasePackager":
        release = config.release
        return cls(
            release.plugin_name,
            project_dir=project_dir,
            build_command=release.build_command,
            toolchain_command=release.toolchain_command,
            artifact_path=release.artifact_path,
            output_dir=release.output_dir,
            strict=strict,
        )

    def _output_dir(self) -> Path:
        return self.output_dir if self.output_dir.is_absolute() else self.project_dir / self.output_dir

    def _artifact(self, target: str) -> Path:
        path = Path(self.artifact_path.format(target=target, name=self.plugin_name))
        return path if path.is_absolute() else self.project_dir / path

    def _run(self, argv: list[str]) -> subprocess.CompletedProcess[str]:
        logger.info("Running: {}", shlex.join(argv))
        return subprocess.run(
            argv,
            cwd=str(self.project_dir),
            stdin=subprocess.DEVNULL,
            capture_output=True,
            text=True,
            timeout=self.timeout_seconds,
        )

    def _prepare_toolchain(self, target: str) -> ToolchainFailed | None:
        if not self.toolchain_command:
            return None
        argv = _render(self.toolchain_command, target=target, name=self.plugin_name)
        try:
            result = self._run(argv)
        except (OSError, subprocess.TimeoutExpired) as exc:
            return ToolchainFailed(target, argv, None, str(exc))
        if result.returncode != 0:
            return ToolchainFailed(target, argv, result.returncode, _tail(result.stderr))
        return None

    def _build(self, target: str) -> bool:
        argv = _render(self.build_command, target=target, name=self.plugin_name)
        try:
            result = self._run(argv)
        except (OSError, subprocess.TimeoutExpired) as exc:
            logger.error("Build for {} could not run: {}", target, exc)
            return False
        if result.returncode != 0:
            logger.error("Build for {} exited with {}:\n{}", target, result.returncode, _tail(result.stderr))
            return False
        logger.debug("Build for {} finished", target)
        return True

    def package_target(self, target: str) -> TargetOutcome:
        """Build, check and archive one target. Errors stay within the returned outcome."""
        try:
            asset = asset_for_target(self.plugin_name, target)
        except UnrecognizedPlatformTarget as exc:
            logger.error("Skipping {}: {}", target, exc.message)
            return TargetOutcome(target, TargetStatus.SKIPPED, exc.message, error=exc)

        toolchain_error = self._prepare_toolchain(target)
        if toolchain_error is not None:
            logger.error("{}", toolchain_error)
            return TargetOutcome(target, TargetStatus.FAILED, toolchain_error.message, error=toolchain_error)

        binary = self._artifact(target)
        # An artifact left over from a failed build is stale.
        if not self._build(target) or not binary.is_file():
            missing = ArtifactMissing(target, str(binary))
            logger.warning("Skipping {}: {}", target, missing.message)
            return TargetOutcome(target, TargetStatus.SKIPPED, missing.message, error=missing)

        archive = self._output_dir() / asset.archive_name
        try:
            write_archive(binary, archive, self.plugin_name)
        except OSError as exc:
            logger.error("Failed to write {}: {}", archive, exc)
            return TargetOutcome(target, TargetStatus.FAILED, str(exc))
        logger.info("Packaged {} -> {}", target, archive)
        return TargetOutcome(target, TargetStatus.PACKAGED, archive_path=archive)

    def run(self, targets: Iterable[str] = ()) -> PackageReport:
        """Package every target in order; an empty matrix means the host platform."""
        matrix = list(dict.fromkeys(t.strip() for t in targets if t and t.strip()))
        if not matrix:
            matrix = [host_target_triple()]
            logger.info("No targets configured, packaging host target {}", matrix[0])

        unmapped = validate_matrix(matrix)
        for target in unmapped:
            logger.error("Target {} has no release tag mapping and will be skipped", target)
        if unmapped and self.strict:
            raise UnrecognizedPlatformTarget(unmapped[0])

        report = PackageReport(self.plugin_name)
        for target in matrix:
            report.outcomes.append(self.package_target(target))
        logger.info(
            "Packaging {}: {} packaged, {} skipped, {} failed",
            self.plugin_name,
            len(report.packaged),
            len(report.skipped),
            len(report.failed),
        )
        return report
