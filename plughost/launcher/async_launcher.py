"""asyncio variant of the launcher: cancelling the awaiting task kills the child."""

from __future__ import annotations

import asyncio
import os
import time
from collections import deque
from pathlib import Path
from typing import Sequence

from loguru import logger

from plughost.handshake.codec import decode_handshake
from plughost.handshake.reader import FirstLine, ReadOutcome, check_first_line
from plughost.handshake.types import HandshakeLine
from plughost.launcher.process import LaunchOptions
from plughost.launcher.streams import DEFAULT_TAIL_LINES
from plughost.utils.exceptions import (
    ExecutableNotFound,
    HandshakeError,
    HandshakeStreamViolation,
    HandshakeTimeout,
    MalformedHandshake,
    PluginExited,
    SpawnFailed,
)


def _kill_now(proc: asyncio.subprocess.Process) -> None:
    if proc.returncode is None:
        try:
            proc.kill()
        except ProcessLookupError:
            pass


async def _terminate(proc: asyncio.subprocess.Process, grace_seconds: float) -> int | None:
    if proc.returncode is None:
        try:
            proc.terminate()
        except ProcessLookupError:
            pass
        try:
            await asyncio.wait_for(proc.wait(), timeout=grace_seconds)
        except asyncio.TimeoutError:
            logger.warning("Plugin pid {} ignored SIGTERM, killing", proc.pid)
            _kill_now(proc)
            await proc.wait()
    return proc.returncode


async def _drain(task: asyncio.Task[None] | None, timeout: float = 0.5) -> None:
    if task is None:
        return
    try:
        await asyncio.wait_for(asyncio.shield(task), timeout=timeout)
    except (asyncio.TimeoutError, asyncio.CancelledError):
        pass


async def _forward_stderr(stream: asyncio.StreamReader, label: str, level: str, tail: deque[str]) -> None:
    while True:
        try:
            raw = await stream.readline()
        except (ValueError, asyncio.LimitOverrunError):
            continue
        if not raw:
            return
        text = raw.decode("utf-8", errors="replace").rstrip("\r\n")
        if text:
            tail.append(text)
            logger.log(level, "[plugin:{}] {}", label, text)


async def _read_first_line(stream: asyncio.StreamReader, max_bytes: int) -> tuple[ReadOutcome, bytes]:
    try:
        return ReadOutcome.LINE, await stream.readuntil(b"\n")
    except asyncio.IncompleteReadError as exc:
        return ReadOutcome.EOF, exc.partial
    except asyncio.LimitOverrunError:
        # The overrun bytes are still buffered.
        received = await stream.read(max_bytes + 1)
        raise MalformedHandshake(received, f"line exceeds {max_bytes} bytes without a newline") from None


class AsyncPluginProcess:
    """A live plugin launched on the event loop."""

    def __init__(
        self,
        *,
        name: str,
        executable_path: Path,
        process: asyncio.subprocess.Process,
        handshake: HandshakeLine,
        stderr_tail: deque[str],
        stderr_task: asyncio.Task[None] | None,
        grace_seconds: float,
        terminate_on_violation: bool,
    ):
        self.name = name
        self.executable_path = executable_path
        self.handshake = handshake
        self._process = process
        self._stderr_tail = stderr_tail
        self._stderr_task = stderr_task
        self._grace_seconds = grace_seconds
        self._terminate_on_violation = terminate_on_violation
        self._violation: bytes | None = None
        self._stdout_task: asyncio.Task[None] | None = None

    @property
    def pid(self) -> int:
        return self._process.pid

    @property
    def returncode(self) -> int | None:
        return self._process.returncode

    @property
    def violation(self) -> bytes | None:
        return self._violation

    def stderr_tail(self) -> list[str]:
        return list(self._stderr_tail)

    def _start_monitor(self) -> None:
        if self._process.stdout is not None:
            self._stdout_task = asyncio.create_task(self._monitor_stdout(self._process.stdout))

    async def _monitor_stdout(self, stream: asyncio.StreamReader) -> None:
        while True:
            chunk = await stream.read(4096)
            if not chunk:
                return
            first = self._violation is None
            self._violation = ((self._violation or b"") + chunk)[:4096]
            if first:
                logger.error("{}", HandshakeStreamViolation(self.name, chunk))
                if self._terminate_on_violation:
                    logger.error("Terminating plugin {} after stdout violation", self.name)
                    await _terminate(self._process, self._grace_seconds)

    def check_handshake_stream(self) -> None:
        if self._violation:
            raise HandshakeStreamViolation(self.name, self._violation)

    async def wait(self) -> int:
        return await self._process.wait()

    async def terminate(self, timeout: float | None = None) -> int | None:
        grace = self._grace_seconds if timeout is None else timeout
        code = await _terminate(self._process, grace)
        for task in (self._stdout_task, self._stderr_task):
            if task is not None and task is not asyncio.current_task():
                try:
                    await asyncio.wait_for(task, timeout=1.0)
                except (asyncio.TimeoutError, asyncio.CancelledError):
                    pass
        return code

    async def __aenter__(self) -> "AsyncPluginProcess":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.terminate()


async def launch_plugin_async(
    executable: str | os.PathLike[str],
    args: Sequence[str] = (),
    *,
    options: LaunchOptions | None = None,
    name: str | None = None,
    env: dict[str, str] | None = None,
    cwd: str | os.PathLike[str] | None = None,
) -> AsyncPluginProcess:
    """Spawn a plugin and await its handshake within the startup deadline."""
    opts = options or LaunchOptions()
    path = Path(executable)
    label = name or path.name
    if not path.exists():
        raise ExecutableNotFound(str(path))
    if path.is_dir() or not os.access(path, os.X_OK):
        raise SpawnFailed(str(path), "not an executable file")

    forward = opts.diagnostics == "forward"
    try:
        proc = await asyncio.create_subprocess_exec(
            str(path),
            *args,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE if forward else None,
            cwd=str(cwd) if cwd is not None else None,
            env=env,
            limit=opts.max_line_bytes + 1,
        )
    except FileNotFoundError as exc:
        raise ExecutableNotFound(str(path)) from exc
    except OSError as exc:
        raise SpawnFailed(str(path), str(exc)) from exc

    tail: deque[str] = deque(maxlen=DEFAULT_TAIL_LINES)
    stderr_task = (
        asyncio.create_task(_forward_stderr(proc.stderr, label, opts.diagnostics_level, tail))
        if proc.stderr is not None
        else None
    )
    assert proc.stdout is not None
    started = time.monotonic()
    try:
        outcome, data = await asyncio.wait_for(
            _read_first_line(proc.stdout, opts.max_line_bytes),
            timeout=opts.startup_timeout_seconds,
        )
        elapsed = time.monotonic() - started
        if outcome is ReadOutcome.EOF and not data:
            try:
                await asyncio.wait_for(proc.wait(), timeout=opts.terminate_grace_seconds)
            except asyncio.TimeoutError:
                pass
            code = await _terminate(proc, opts.terminate_grace_seconds)
            await _drain(stderr_task)
            raise PluginExited(str(path), code, elapsed, list(tail))
        line = check_first_line(FirstLine(outcome, data, elapsed), max_bytes=opts.max_line_bytes)
        handshake = decode_handshake(
            line,
            max_core_version=opts.max_core_protocol_version,
            expected_app_version=opts.expected_app_protocol_version,
        )
    except asyncio.TimeoutError:
        await _terminate(proc, opts.terminate_grace_seconds)
        await _drain(stderr_task)
        raise HandshakeTimeout(
            str(path),
            opts.startup_timeout_seconds,
            time.monotonic() - started,
            list(tail),
        ) from None
    except asyncio.CancelledError:
        _kill_now(proc)
        await asyncio.shield(proc.wait())
        raise
    except HandshakeError as exc:
        logger.error("Rejecting plugin {}: {}", label, exc)
        await _terminate(proc, opts.terminate_grace_seconds)
        raise
    except BaseException:
        _kill_now(proc)
        await asyncio.shield(proc.wait())
        raise

    plugin = AsyncPluginProcess(
        name=label,
        executable_path=path,
        process=proc,
        handshake=handshake,
        stderr_tail=tail,
        stderr_task=stderr_task,
        grace_seconds=opts.terminate_grace_seconds,
        terminate_on_violation=opts.on_stdout_violation == "terminate",
    )
    plugin._start_monitor()
    logger.info("Plugin {} ready (pid {}): {} {}", label, proc.pid, handshake.network_type, handshake.address)
    return plugin
