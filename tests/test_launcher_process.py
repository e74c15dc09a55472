"""Launcher tests against real child processes."""

from __future__ import annotations

import os
import threading
import time
from pathlib import Path

import pytest

from plughost.launcher import LaunchOptions, PluginLauncher, launch_plugin
from plughost.launcher import process as process_module
from plughost.utils.exceptions import (
    ExecutableNotFound,
    HandshakeStreamViolation,
    HandshakeTimeout,
    LaunchCancelled,
    MalformedHandshake,
    PluginExited,
    SpawnFailed,
    UnsupportedProtocolVersion,
)

pytestmark = pytest.mark.subprocess

GOOD_PLUGIN = """
import sys, time
sys.stderr.write("booting\\n")
sys.stderr.flush()
sys.stdout.write("1|1|tcp|127.0.0.1:4567|grpc\\n")
sys.stdout.flush()
time.sleep(30)
"""

PID_PREFIX = """
import os, sys, time
with open(sys.argv[1], "w") as fh:
    fh.write(str(os.getpid()))
"""


def _fast(**overrides) -> LaunchOptions:
    opts = dict(startup_timeout_seconds=5.0, terminate_grace_seconds=1.0)
    opts.update(overrides)
    return LaunchOptions(**opts)


def _assert_dead(pid_file: Path) -> None:
    pid = int(pid_file.read_text())
    with pytest.raises(ProcessLookupError):
        os.kill(pid, 0)


def _wait_for(predicate, timeout: float = 5.0) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.05)
    return predicate()


def test_launch_returns_decoded_handshake(make_plugin):
    exe = make_plugin(GOOD_PLUGIN)
    with launch_plugin(exe, options=_fast()) as plugin:
        assert plugin.handshake.address == "127.0.0.1:4567"
        assert plugin.handshake.rpc_protocol == "grpc"
        assert plugin.is_running
        assert plugin.diagnostics.mode == "forward"
        assert _wait_for(lambda: "booting" in plugin.diagnostics.tail())
        plugin.check_handshake_stream()
    assert plugin.poll() is not None


def test_inherit_diagnostics(make_plugin):
    exe = make_plugin(GOOD_PLUGIN)
    with launch_plugin(exe, options=_fast(diagnostics="inherit")) as plugin:
        assert plugin.diagnostics.mode == "inherit"
        assert plugin.diagnostics.tail() == []


def test_silent_plugin_times_out_and_is_killed(make_plugin, tmp_path):
    exe = make_plugin(PID_PREFIX + "time.sleep(30)\n")
    pid_file = tmp_path / "pid"
    started = time.monotonic()
    with pytest.raises(HandshakeTimeout) as exc_info:
        launch_plugin(exe, [str(pid_file)], options=_fast(startup_timeout_seconds=1.5))
    assert time.monotonic() - started < 8.0
    assert exc_info.value.details["timeout_seconds"] == 1.5
    _assert_dead(pid_file)


def test_sigterm_ignored_falls_back_to_kill(make_plugin, tmp_path):
    body = PID_PREFIX + "import signal\nsignal.signal(signal.SIGTERM, signal.SIG_IGN)\ntime.sleep(30)\n"
    exe = make_plugin(body)
    pid_file = tmp_path / "pid"
    with pytest.raises(HandshakeTimeout):
        launch_plugin(exe, [str(pid_file)], options=_fast(startup_timeout_seconds=1.5, terminate_grace_seconds=0.2))
    _assert_dead(pid_file)


def test_log_line_on_stdout_is_malformed(make_plugin, tmp_path):
    exe = make_plugin(PID_PREFIX + "print('starting server on port 8080', flush=True)\ntime.sleep(30)\n")
    pid_file = tmp_path / "pid"
    with pytest.raises(MalformedHandshake) as exc_info:
        launch_plugin(exe, [str(pid_file)], options=_fast())
    assert "starting server" in exc_info.value.details["raw_line"]
    _assert_dead(pid_file)


def test_unsupported_core_version_rejected(make_plugin):
    exe = make_plugin("import sys, time\nprint('2|1|tcp|127.0.0.1:1|grpc', flush=True)\ntime.sleep(30)\n")
    with pytest.raises(UnsupportedProtocolVersion):
        launch_plugin(exe, options=_fast())


def test_early_exit_reports_code_and_stderr(make_plugin):
    exe = make_plugin("import sys\nsys.stderr.write('bind failed: address in use\\n')\nsys.exit(3)\n")
    with pytest.raises(PluginExited) as exc_info:
        launch_plugin(exe, options=_fast())
    assert exc_info.value.returncode == 3
    assert "bind failed: address in use" in exc_info.value.details["stderr_tail"]


def test_stdout_after_handshake_terminates_plugin(make_plugin):
    body = GOOD_PLUGIN.replace(
        "time.sleep(30)",
        "time.sleep(0.2)\nprint('debug: leaked', flush=True)\ntime.sleep(30)",
    )
    exe = make_plugin(body)
    plugin = launch_plugin(exe, options=_fast())
    try:
        plugin.wait(timeout=10)
        assert plugin.handshake_stream is not None
        assert b"leaked" in (plugin.handshake_stream.violation or b"")
        with pytest.raises(HandshakeStreamViolation):
            plugin.check_handshake_stream()
    finally:
        plugin.terminate()


def test_stdout_violation_log_policy_keeps_plugin(make_plugin):
    body = GOOD_PLUGIN.replace("time.sleep(30)", "print('leak', flush=True)\ntime.sleep(30)")
    exe = make_plugin(body)
    with launch_plugin(exe, options=_fast(on_stdout_violation="log")) as plugin:
        assert _wait_for(lambda: plugin.handshake_stream.violation is not None)
        assert plugin.is_running


def test_cancel_event_terminates_child(make_plugin, tmp_path):
    exe = make_plugin(PID_PREFIX + "time.sleep(30)\n")
    pid_file = tmp_path / "pid"
    cancel = threading.Event()
    threading.Timer(1.0, cancel.set).start()
    launcher = PluginLauncher(_fast(startup_timeout_seconds=20.0))
    with pytest.raises(LaunchCancelled):
        launcher.launch(exe, [str(pid_file)], cancel_event=cancel)
    _assert_dead(pid_file)


def test_interrupt_while_waiting_terminates_child(make_plugin, tmp_path, monkeypatch):
    exe = make_plugin(PID_PREFIX + "time.sleep(30)\n")
    pid_file = tmp_path / "pid"

    def interrupted_read(*args, **kwargs):
        assert _wait_for(lambda: pid_file.exists() and pid_file.read_text() != "")
        raise KeyboardInterrupt

    monkeypatch.setattr(process_module, "read_first_line", interrupted_read)
    with pytest.raises(KeyboardInterrupt):
        launch_plugin(exe, [str(pid_file)], options=_fast())
    _assert_dead(pid_file)


def test_diagnostics_thread_failure_terminates_child(make_plugin, tmp_path, monkeypatch):
    exe = make_plugin(PID_PREFIX + "time.sleep(30)\n")
    pid_file = tmp_path / "pid"

    def failing_start(self):
        assert _wait_for(lambda: pid_file.exists() and pid_file.read_text() != "")
        raise RuntimeError("can't start new thread")

    monkeypatch.setattr(process_module.DiagnosticsStream, "start", failing_start)
    with pytest.raises(RuntimeError):
        launch_plugin(exe, [str(pid_file)], options=_fast())
    _assert_dead(pid_file)


def test_missing_executable(tmp_path):
    with pytest.raises(ExecutableNotFound):
        launch_plugin(tmp_path / "nope")


def test_non_executable_file(tmp_path):
    path = tmp_path / "plugin"
    path.write_text("#!/bin/sh\n", encoding="utf-8")
    path.chmod(0o644)
    with pytest.raises(SpawnFailed):
        launch_plugin(path)
    with pytest.raises(SpawnFailed):
        launch_plugin(tmp_path)


def test_concurrent_launches_are_independent(make_plugin, tmp_path):
    good = make_plugin(GOOD_PLUGIN, name="good")
    bad = make_plugin("import time\nprint('nope', flush=True)\ntime.sleep(30)\n", name="bad")
    launcher = PluginLauncher(_fast())
    results: dict[str, object] = {}

    def _run(key: str, exe: Path) -> None:
        try:
            results[key] = launcher.launch(exe)
        except Exception as exc:  # collected for assertions
            results[key] = exc

    threads = [threading.Thread(target=_run, args=(k, p)) for k, p in (("good", good), ("bad", bad))]
    for t in threads:
        t.start()
    for t in threads:
        t.join(20)
    assert isinstance(results["bad"], MalformedHandshake)
    plugin = results["good"]
    try:
        assert plugin.handshake.address == "127.0.0.1:4567"
    finally:
        plugin.terminate()
