"""Spawn a plugin executable and wait for its handshake."""

from __future__ import annotations

import os
import subprocess
import threading
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Literal, Sequence

from loguru import logger

from plughost.handshake.codec import decode_handshake
from plughost.handshake.reader import ReadOutcome, check_first_line, read_first_line
from plughost.handshake.types import CORE_PROTOCOL_VERSION, DEFAULT_MAX_LINE_BYTES, HandshakeLine
from plughost.launcher.streams import DiagnosticsStream, HandshakeStream
from plughost.utils.exceptions import (
    ExecutableNotFound,
    HandshakeError,
    HandshakeStreamViolation,
    HandshakeTimeout,
    LaunchCancelled,
    PluginExited,
    SpawnFailed,
)


@dataclass(slots=True)
class LaunchOptions:
    """Per-launch knobs; one instance may be shared, it is never mutated by a launch."""

    startup_timeout_seconds: float = 10.0
    terminate_grace_seconds: float = 2.0
    diagnostics: Literal["forward", "inherit"] = "forward"
    diagnostics_level: str = "INFO"
    on_stdout_violation: Literal["terminate", "log"] = "terminate"
    max_core_protocol_version: int = CORE_PROTOCOL_VERSION
    expected_app_protocol_version: int | None = None
    max_line_bytes: int = DEFAULT_MAX_LINE_BYTES

    @classmethod
    def from_config(cls, config: Any) -> "LaunchOptions":
        """Build options from a plughost Config (handshake + launch sections)."""
        return cls(
            startup_timeout_seconds=config.launch.startup_timeout_seconds,
            terminate_grace_seconds=config.launch.terminate_grace_seconds,
            diagnostics=config.launch.diagnostics,
            diagnostics_level=config.launch.diagnostics_level,
            on_stdout_violation=config.launch.on_stdout_violation,
            max_core_protocol_version=config.handshake.max_core_protocol_version,
            expected_app_protocol_version=config.handshake.expected_app_protocol_version,
            max_line_bytes=config.handshake.max_line_bytes,
        )


def terminate_process(proc: subprocess.Popen[bytes], grace_seconds: float) -> int | None:
    """SIGTERM, wait up to `grace_seconds`, then SIGKILL. Returns the exit code."""
    if proc.poll() is None:
        try:
            proc.terminate()
            proc.wait(timeout=grace_seconds)
        except subprocess.TimeoutExpired:
            logger.warning("Plugin pid {} ignored SIGTERM, killing", proc.pid)
            proc.kill()
            proc.wait()
        except ProcessLookupError:
            pass
    return proc.returncode


class PluginProcess:
    """A live plugin that completed its handshake."""

    def __init__(
        self,
        *,
        name: str,
        executable_path: Path,
        process: subprocess.Popen[bytes],
        handshake: HandshakeLine,
        diagnostics: DiagnosticsStream,
        grace_seconds: float,
    ):
        self.name = name
        self.executable_path = executable_path
        self.handshake = handshake
        self.diagnostics = diagnostics
        self.handshake_stream: HandshakeStream | None = None
        self.descriptor: Any = None  # PluginDescriptor when launched through PluginHost
        self._process = process
        self._grace_seconds = grace_seconds
        self._terminate_lock = threading.Lock()

    @property
    def pid(self) -> int:
        return self._process.pid

    @property
    def returncode(self) -> int | None:
        return self._process.returncode

    @property
    def is_running(self) -> bool:
        return self._process.poll() is None

    def poll(self) -> int | None:
        return self._process.poll()

    def wait(self, timeout: float | None = None) -> int:
        return self._process.wait(timeout=timeout)

    def check_handshake_stream(self) -> None:
        """Raise HandshakeStreamViolation if the plugin wrote to stdout after its handshake."""
        if self.handshake_stream is not None:
            self.handshake_stream.check()

    def terminate(self, timeout: float | None = None) -> int | None:
        """Stop the plugin and wait for it; safe to call more than once."""
        with self._terminate_lock:
            grace = self._grace_seconds if timeout is None else timeout
            code = terminate_process(self._process, grace)
        if self.handshake_stream is not None:
            self.handshake_stream.join(1.0)
        self.diagnostics.join(1.0)
        return code

    def _handle_violation(self, error: HandshakeStreamViolation) -> None:
        logger.error("Terminating plugin {} after stdout violation", self.name)
        self.terminate()

    def __enter__(self) -> "PluginProcess":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.terminate()

    def __repr__(self) -> str:
        return f"PluginProcess(name={self.name!r}, pid={self.pid}, address={self.handshake.address!r})"


class PluginLauncher:
    """Spawns plugins; holds no per-launch state so one instance serves concurrent launches."""

    def __init__(self, options: LaunchOptions | None = None):
        self.options = options or LaunchOptions()

    def launch(
        self,
        executable: str | os.PathLike[str],
        args: Sequence[str] = (),
        *,
        name: str | None = None,
        env: dict[str, str] | None = None,
        cwd: str | os.PathLike[str] | None = None,
        cancel_event: threading.Event | None = None,
    ) -> PluginProcess:
        opts = self.options
        path = Path(executable)
        label = name or path.name
        if not path.exists():
            raise ExecutableNotFound(str(path))
        if path.is_dir() or not os.access(path, os.X_OK):
            raise SpawnFailed(str(path), "not an executable file")

        command = [str(path), *args]
        logger.debug("Starting plugin {}: {}", label, command)
        try:
            proc = subprocess.Popen(
                command,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE if opts.diagnostics == "forward" else None,
                cwd=str(cwd) if cwd is not None else None,
                env=env,
            )
        except FileNotFoundError as exc:
            raise ExecutableNotFound(str(path)) from exc
        except OSError as exc:
            raise SpawnFailed(str(path), str(exc)) from exc

        # No path out of here may leave the child running without a handle.
        try:
            diagnostics = DiagnosticsStream(proc.stderr, label, level=opts.diagnostics_level)
            diagnostics.start()
            handshake = self._await_handshake(proc, path, label, diagnostics, cancel_event)

            plugin = PluginProcess(
                name=label,
                executable_path=path,
                process=proc,
                handshake=handshake,
                diagnostics=diagnostics,
                grace_seconds=opts.terminate_grace_seconds,
            )
            on_violation = plugin._handle_violation if opts.on_stdout_violation == "terminate" else None
            plugin.handshake_stream = HandshakeStream(proc.stdout, label, on_violation=on_violation)
            plugin.handshake_stream.start()
        except BaseException:
            terminate_process(proc, opts.terminate_grace_seconds)
            raise
        logger.info(
            "Plugin {} ready (pid {}): {} {} via {}",
            label,
            proc.pid,
            handshake.network_type,
            handshake.address,
            handshake.rpc_protocol,
        )
        return plugin

    def _await_handshake(
        self,
        proc: subprocess.Popen[bytes],
        path: Path,
        label: str,
        diagnostics: DiagnosticsStream,
        cancel_event: threading.Event | None,
    ) -> HandshakeLine:
        opts = self.options
        assert proc.stdout is not None
        result = read_first_line(
            proc.stdout,
            opts.startup_timeout_seconds,
            max_bytes=opts.max_line_bytes,
            cancel_event=cancel_event,
        )

        if result.outcome is ReadOutcome.TIMEOUT:
            terminate_process(proc, opts.terminate_grace_seconds)
            diagnostics.join(0.5)
            raise HandshakeTimeout(
                str(path),
                opts.startup_timeout_seconds,
                result.elapsed_seconds,
                diagnostics.tail(),
            )
        if result.outcome is ReadOutcome.CANCELLED:
            terminate_process(proc, opts.terminate_grace_seconds)
            raise LaunchCancelled(str(path), result.elapsed_seconds)
        if result.outcome is ReadOutcome.EOF and not result.data:
            try:
                proc.wait(timeout=opts.terminate_grace_seconds)
            except subprocess.TimeoutExpired:
                pass
            code = terminate_process(proc, opts.terminate_grace_seconds)
            diagnostics.join(0.5)
            raise PluginExited(str(path), code, result.elapsed_seconds, diagnostics.tail())

        try:
            line = check_first_line(result, max_bytes=opts.max_line_bytes)
            return decode_handshake(
                line,
                max_core_version=opts.max_core_protocol_version,
                expected_app_version=opts.expected_app_protocol_version,
            )
        except HandshakeError as exc:
            logger.error("Rejecting plugin {}: {}", label, exc)
            terminate_process(proc, opts.terminate_grace_seconds)
            raise


def launch_plugin(
    executable: str | os.PathLike[str],
    args: Sequence[str] = (),
    *,
    options: LaunchOptions | None = None,
    **kwargs: Any,
) -> PluginProcess:
    """Convenience wrapper around PluginLauncher(options).launch(...)."""
    return PluginLauncher(options).launch(executable, args, **kwargs)
