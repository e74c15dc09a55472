"""Role-typed handles for a plugin's two output streams.

stdout and stderr are never interchangeable: `HandshakeStream` only ever carries
the handshake line and is watched for violations afterwards, `DiagnosticsStream`
only ever carries logs. Each runs on its own thread so a stall on one never
blocks the other.
"""

from __future__ import annotations

import threading
from collections import deque
from typing import IO, Callable

from loguru import logger

from plughost.utils.exceptions import HandshakeStreamViolation

DEFAULT_TAIL_LINES = 50
_MAX_VIOLATION_BYTES = 4096
_READ_CHUNK = 4096


class HandshakeStream:
    """Plugin stdout once the handshake has been decoded; any further byte is a violation."""

    def __init__(
        self,
        stream: IO[bytes] | None,
        label: str,
        on_violation: Callable[[HandshakeStreamViolation], None] | None = None,
    ):
        self._stream = stream
        self._label = label
        self._on_violation = on_violation
        self._lock = threading.Lock()
        self._violation: bytes | None = None
        self._thread: threading.Thread | None = None

    @property
    def violation(self) -> bytes | None:
        with self._lock:
            return self._violation

    def start(self) -> None:
        if self._stream is None or self._thread is not None:
            return
        self._thread = threading.Thread(
            target=self._monitor,
            name=f"plughost-stdout-{self._label}",
            daemon=True,
        )
        self._thread.start()

    def _read(self) -> bytes:
        assert self._stream is not None
        read1 = getattr(self._stream, "read1", None)
        if read1 is not None:
            return read1(_READ_CHUNK)
        return self._stream.read(1)

    def _monitor(self) -> None:
        while True:
            try:
                chunk = self._read()
            except (OSError, ValueError):
                return
            if not chunk:
                return
            with self._lock:
                first = self._violation is None
                collected = (self._violation or b"") + chunk
                self._violation = collected[:_MAX_VIOLATION_BYTES]
            if first:
                error = HandshakeStreamViolation(self._label, chunk)
                logger.error("{}", error)
                if self._on_violation is not None:
                    self._on_violation(error)

    def check(self) -> None:
        """Raise HandshakeStreamViolation if anything was written after the handshake."""
        data = self.violation
        if data:
            raise HandshakeStreamViolation(self._label, data)

    def join(self, timeout: float | None = None) -> None:
        thread = self._thread
        if thread is None or thread is threading.current_thread():
            return
        thread.join(timeout)


class DiagnosticsStream:
    """Plugin stderr: forwarded line by line into the host log, or inherited untouched."""

    def __init__(
        self,
        stream: IO[bytes] | None,
        label: str,
        *,
        level: str = "INFO",
        tail_lines: int = DEFAULT_TAIL_LINES,
    ):
        self._stream = stream
        self._label = label
        self._level = level
        self._tail: deque[str] = deque(maxlen=tail_lines)
        self._lock = threading.Lock()
        self._thread: threading.Thread | None = None

    @property
    def mode(self) -> str:
        return "forward" if self._stream is not None else "inherit"

    def start(self) -> None:
        if self._stream is None or self._thread is not None:
            return
        self._thread = threading.Thread(
            target=self._forward,
            name=f"plughost-stderr-{self._label}",
            daemon=True,
        )
        self._thread.start()

    def _forward(self) -> None:
        assert self._stream is not None
        try:
            for raw in iter(self._stream.readline, b""):
                text = raw.decode("utf-8", errors="replace").rstrip("\r\n")
                if not text:
                    continue
                with self._lock:
                    self._tail.append(text)
                logger.log(self._level, "[plugin:{}] {}", self._label, text)
        except (OSError, ValueError):
            return

    def tail(self) -> list[str]:
        """Most recent stderr lines, oldest first; empty when stderr is inherited."""
        with self._lock:
            return list(self._tail)

    def join(self, timeout: float | None = None) -> None:
        thread = self._thread
        if thread is None or thread is threading.current_thread():
            return
        thread.join(timeout)
