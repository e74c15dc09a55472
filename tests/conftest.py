"""Pytest hooks and fixtures."""

import os
import stat
import sys
import textwrap
from pathlib import Path

import pytest

REPO_ROOT = Path(__file__).resolve().parents[1]


def pytest_configure(config):
    """Register custom markers (also in pyproject.toml)."""
    config.addinivalue_line(
        "markers",
        "subprocess: spawns real child processes",
    )


def pytest_collection_modifyitems(config, items):
    """Skip subprocess tests on platforms without POSIX signals."""
    if os.name == "posix":
        return
    skip = pytest.mark.skip(reason="Requires POSIX process semantics")
    for item in items:
        if "subprocess" in item.keywords:
            item.add_marker(skip)


@pytest.fixture
def plugin_env() -> dict[str, str]:
    """Environment for child plugins: plughost importable from the checkout."""
    env = dict(os.environ)
    env["PYTHONPATH"] = os.pathsep.join(filter(None, [str(REPO_ROOT), env.get("PYTHONPATH", "")]))
    env["PYTHONUNBUFFERED"] = "1"
    return env


@pytest.fixture
def make_plugin(tmp_path: Path):
    """Write an executable Python script and return its path."""

    def _make(body: str, name: str = "plugin", directory: Path | None = None) -> Path:
        target_dir = directory or tmp_path
        target_dir.mkdir(parents=True, exist_ok=True)
        path = target_dir / name
        path.write_text(f"#!{sys.executable}\n" + textwrap.dedent(body), encoding="utf-8")
        path.chmod(path.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
        return path

    return _make


@pytest.fixture
def restore_logger():
    """Put loguru back to a single stderr sink after a test reconfigures it."""
    yield
    from loguru import logger

    logger.remove()
    logger.add(sys.stderr)
