"""Tests for ReleasePackager with a stand-in build command."""

from __future__ import annotations

import shlex
import stat
import sys
import zipfile
from pathlib import Path

import pytest

from plughost.release.packager import ReleasePackager, TargetStatus, write_archive
from plughost.utils.exceptions import UnrecognizedPlatformTarget

pytestmark = pytest.mark.subprocess

# Writes target/<target>/release/<name> like cargo would.
FAKE_BUILD = (
    "import os, sys; "
    "target, name = sys.argv[1], sys.argv[2]; "
    "d = os.path.join('target', target, 'release'); "
    "os.makedirs(d, exist_ok=True); "
    "open(os.path.join(d, name), 'wb').write(b'binary-for-' + target.encode())"
)


def _build_command() -> str:
    return f"{shlex.quote(sys.executable)} -c {shlex.quote(FAKE_BUILD)} {{target}} {{name}}"


def _ok_command() -> str:
    return f"{shlex.quote(sys.executable)} -c pass"


def _fail_command() -> str:
    return f"{shlex.quote(sys.executable)} -c {shlex.quote('import sys; sys.exit(4)')}"


def _packager(project: Path, **overrides) -> ReleasePackager:
    kwargs = dict(
        project_dir=project,
        build_command=_build_command(),
        toolchain_command=_ok_command(),
    )
    kwargs.update(overrides)
    return ReleasePackager("foo", **kwargs)


def test_packages_single_binary_at_archive_root(tmp_path):
    report = _packager(tmp_path).run(["aarch64-apple-darwin"])
    assert report.exit_code == 0
    [outcome] = report.outcomes
    assert outcome.status is TargetStatus.PACKAGED
    assert outcome.archive_path == tmp_path / "target" / "release" / "foo-arm64-apple-darwin.zip"
    with zipfile.ZipFile(outcome.archive_path) as zf:
        [info] = zf.infolist()
        assert info.filename == "foo"
        assert zf.read(info) == b"binary-for-aarch64-apple-darwin"
        assert stat.S_IMODE(info.external_attr >> 16) == 0o755


def test_unmapped_target_skipped_others_packaged(tmp_path):
    report = _packager(tmp_path).run(["x86_64-pc-windows-msvc", "x86_64-unknown-linux-gnu"])
    assert report.exit_code == 0
    assert [o.status for o in report.outcomes] == [TargetStatus.SKIPPED, TargetStatus.PACKAGED]
    assert report.outcomes[0].error is not None
    assert report.outcomes[0].error.code == "UNRECOGNIZED_PLATFORM_TARGET"
    assert not list((tmp_path / "target" / "release").glob("*windows*"))


def test_strict_mode_aborts_before_building(tmp_path):
    with pytest.raises(UnrecognizedPlatformTarget):
        _packager(tmp_path, strict=True).run(["x86_64-unknown-linux-gnu", "wasm32-unknown-unknown"])
    assert not (tmp_path / "target").exists()


def test_missing_artifact_is_skipped(tmp_path):
    report = _packager(tmp_path, build_command=_fail_command()).run(["x86_64-unknown-linux-gnu"])
    [outcome] = report.outcomes
    assert outcome.status is TargetStatus.SKIPPED
    assert outcome.error is not None and outcome.error.code == "ARTIFACT_MISSING"
    assert report.exit_code == 0


def test_failed_build_does_not_ship_stale_artifact(tmp_path):
    stale = tmp_path / "target" / "x86_64-unknown-linux-gnu" / "release" / "foo"
    stale.parent.mkdir(parents=True)
    stale.write_bytes(b"old-binary")
    report = _packager(tmp_path, build_command=_fail_command()).run(["x86_64-unknown-linux-gnu"])
    [outcome] = report.outcomes
    assert outcome.status is TargetStatus.SKIPPED
    assert outcome.archive_path is None
    assert outcome.error is not None and outcome.error.code == "ARTIFACT_MISSING"
    assert not (tmp_path / "target" / "release" / "foo-x86_64-unknown-linux-gnu.zip").exists()


def test_build_that_cannot_start_is_skipped(tmp_path):
    stale = tmp_path / "target" / "x86_64-apple-darwin" / "release" / "foo"
    stale.parent.mkdir(parents=True)
    stale.write_bytes(b"old-binary")
    packager = _packager(tmp_path, build_command=str(tmp_path / "no-such-build-tool"), toolchain_command=None)
    [outcome] = packager.run(["x86_64-apple-darwin"]).outcomes
    assert outcome.status is TargetStatus.SKIPPED


def test_toolchain_failure_marks_target_failed(tmp_path):
    report = _packager(tmp_path, toolchain_command=_fail_command()).run(
        ["x86_64-unknown-linux-gnu", "aarch64-unknown-linux-gnu"]
    )
    assert [o.status for o in report.outcomes] == [TargetStatus.FAILED, TargetStatus.FAILED]
    assert report.exit_code == 1


def test_rerun_overwrites_archive(tmp_path):
    packager = _packager(tmp_path, toolchain_command=None)
    first = packager.run(["x86_64-apple-darwin"]).outcomes[0].archive_path
    second = packager.run(["x86_64-apple-darwin"]).outcomes[0].archive_path
    assert first == second
    with zipfile.ZipFile(second) as zf:
        assert zf.namelist() == ["foo"]
    assert not list(second.parent.glob("*.tmp"))


def test_duplicate_targets_built_once(tmp_path):
    report = _packager(tmp_path, toolchain_command=None).run(["x86_64-apple-darwin", "x86_64-apple-darwin"])
    assert len(report.outcomes) == 1


def test_write_archive_entry_name(tmp_path):
    binary = tmp_path / "build" / "some-binary"
    binary.parent.mkdir()
    binary.write_bytes(b"\x7fELF")
    archive = write_archive(binary, tmp_path / "out" / "x.zip", "plugin")
    with zipfile.ZipFile(archive) as zf:
        assert zf.namelist() == ["plugin"]
