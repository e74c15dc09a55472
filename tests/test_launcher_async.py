"""Tests for launch_plugin_async."""

from __future__ import annotations

import asyncio
import os
from pathlib import Path

import pytest

from plughost.launcher import LaunchOptions, launch_plugin_async
from plughost.utils.exceptions import (
    ExecutableNotFound,
    HandshakeStreamViolation,
    HandshakeTimeout,
    MalformedHandshake,
    PluginExited,
)

pytestmark = pytest.mark.subprocess

READY = """
import sys, time
sys.stderr.write("async plugin up\\n")
sys.stderr.flush()
print("1|1|unix|/tmp/async-plugin.sock|grpc", flush=True)
time.sleep(30)
"""

PID_PREFIX = """
import os, sys, time
with open(sys.argv[1], "w") as fh:
    fh.write(str(os.getpid()))
"""


def _opts(**overrides) -> LaunchOptions:
    values = dict(startup_timeout_seconds=5.0, terminate_grace_seconds=1.0)
    values.update(overrides)
    return LaunchOptions(**values)


def _assert_dead(pid_file: Path) -> None:
    with pytest.raises(ProcessLookupError):
        os.kill(int(pid_file.read_text()), 0)


@pytest.mark.asyncio
async def test_async_launch_ready(make_plugin):
    exe = make_plugin(READY)
    async with await launch_plugin_async(exe, options=_opts()) as plugin:
        assert plugin.handshake.network_type == "unix"
        assert plugin.handshake.address == "/tmp/async-plugin.sock"
        assert plugin.returncode is None
        for _ in range(50):
            if plugin.stderr_tail():
                break
            await asyncio.sleep(0.05)
        assert plugin.stderr_tail() == ["async plugin up"]
    assert plugin.returncode is not None


@pytest.mark.asyncio
async def test_async_timeout_kills_child(make_plugin, tmp_path):
    exe = make_plugin(PID_PREFIX + "time.sleep(30)\n")
    pid_file = tmp_path / "pid"
    with pytest.raises(HandshakeTimeout):
        await launch_plugin_async(exe, [str(pid_file)], options=_opts(startup_timeout_seconds=1.5))
    _assert_dead(pid_file)


@pytest.mark.asyncio
async def test_cancelling_launch_kills_child(make_plugin, tmp_path):
    exe = make_plugin(PID_PREFIX + "time.sleep(30)\n")
    pid_file = tmp_path / "pid"
    task = asyncio.create_task(launch_plugin_async(exe, [str(pid_file)], options=_opts(startup_timeout_seconds=20.0)))
    for _ in range(100):
        if pid_file.exists() and pid_file.read_text():
            break
        await asyncio.sleep(0.05)
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task
    _assert_dead(pid_file)


@pytest.mark.asyncio
async def test_async_malformed(make_plugin):
    exe = make_plugin("import time\nprint('Listening on :8080', flush=True)\ntime.sleep(30)\n")
    with pytest.raises(MalformedHandshake):
        await launch_plugin_async(exe, options=_opts())


@pytest.mark.asyncio
async def test_async_oversized_line(make_plugin):
    exe = make_plugin("import sys, time\nsys.stdout.write('x' * 10000)\nsys.stdout.flush()\ntime.sleep(30)\n")
    with pytest.raises(MalformedHandshake) as exc_info:
        await launch_plugin_async(exe, options=_opts(max_line_bytes=128))
    assert exc_info.value.details["raw_line"].startswith("x" * 100)
    assert "128 bytes" in exc_info.value.reason


@pytest.mark.asyncio
async def test_async_early_exit(make_plugin):
    exe = make_plugin("import sys\nsys.stderr.write('missing config\\n')\nsys.exit(2)\n")
    with pytest.raises(PluginExited) as exc_info:
        await launch_plugin_async(exe, options=_opts())
    assert exc_info.value.returncode == 2
    assert "missing config" in exc_info.value.details["stderr_tail"]


@pytest.mark.asyncio
async def test_async_stdout_violation(make_plugin):
    exe = make_plugin(READY.replace("time.sleep(30)", "time.sleep(0.2)\nprint('oops', flush=True)\ntime.sleep(30)"))
    plugin = await launch_plugin_async(exe, options=_opts())
    try:
        await asyncio.wait_for(plugin.wait(), timeout=10)
        with pytest.raises(HandshakeStreamViolation):
            plugin.check_handshake_stream()
    finally:
        await plugin.terminate()


@pytest.mark.asyncio
async def test_async_missing_executable(tmp_path):
    with pytest.raises(ExecutableNotFound):
        await launch_plugin_async(tmp_path / "absent")
