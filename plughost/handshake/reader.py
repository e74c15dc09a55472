"""Bounded, cancellable read of the first line of a plugin's stdout."""

from __future__ import annotations

import queue
import threading
import time
from dataclasses import dataclass
from enum import Enum
from typing import IO

from plughost.handshake.codec import decode_handshake
from plughost.handshake.types import CORE_PROTOCOL_VERSION, DEFAULT_MAX_LINE_BYTES, HandshakeLine
from plughost.utils.exceptions import HandshakeTimeout, LaunchCancelled, MalformedHandshake

POLL_INTERVAL_SECONDS = 0.05


class ReadOutcome(Enum):
    LINE = "line"
    EOF = "eof"
    TIMEOUT = "timeout"
    CANCELLED = "cancelled"


@dataclass(slots=True)
class FirstLine:
    """Result of waiting for the first line; `data` keeps the raw bytes read so far."""

    outcome: ReadOutcome
    data: bytes
    elapsed_seconds: float


def _reader(stream: IO[bytes], limit: int, out: queue.Queue[bytes]) -> None:
    try:
        data = stream.readline(limit)
    except (OSError, ValueError):
        data = b""
    if isinstance(data, str):
        data = data.encode("utf-8")
    out.put(data)


def read_first_line(
    stream: IO[bytes],
    timeout: float,
    *,
    max_bytes: int = DEFAULT_MAX_LINE_BYTES,
    cancel_event: threading.Event | None = None,
) -> FirstLine:
    """
    Wait up to `timeout` seconds for the first line on `stream`.

    The blocking readline runs on a daemon thread so the wait stays bounded and
    can be cancelled. On TIMEOUT or CANCELLED that thread is still parked in
    readline; it returns once the writer side closes, so callers owning the
    child process must terminate it.
    """
    started = time.monotonic()
    deadline = started + max(0.0, timeout)
    results: queue.Queue[bytes] = queue.Queue(maxsize=1)
    thread = threading.Thread(
        target=_reader,
        args=(stream, max_bytes + 1, results),
        name="plughost-handshake-reader",
        daemon=True,
    )
    thread.start()
    while True:
        if cancel_event is not None and cancel_event.is_set():
            return FirstLine(ReadOutcome.CANCELLED, b"", time.monotonic() - started)
        remaining = deadline - time.monotonic()
        if remaining <= 0:
            return FirstLine(ReadOutcome.TIMEOUT, b"", time.monotonic() - started)
        try:
            data = results.get(timeout=min(POLL_INTERVAL_SECONDS, remaining))
        except queue.Empty:
            continue
        elapsed = time.monotonic() - started
        if data.endswith(b"\n"):
            return FirstLine(ReadOutcome.LINE, data, elapsed)
        if len(data) > max_bytes:
            # readline hit the size limit without finding a newline
            return FirstLine(ReadOutcome.LINE, data, elapsed)
        return FirstLine(ReadOutcome.EOF, data, elapsed)


def check_first_line(result: FirstLine, *, max_bytes: int = DEFAULT_MAX_LINE_BYTES) -> bytes:
    """Return the complete line from a LINE/EOF result or raise MalformedHandshake."""
    if len(result.data) > max_bytes:
        raise MalformedHandshake(result.data, f"line exceeds {max_bytes} bytes without a newline")
    if result.outcome is ReadOutcome.EOF:
        if not result.data:
            raise MalformedHandshake(b"", "stream closed before any output")
        raise MalformedHandshake(result.data, "stream closed before the newline terminator")
    return result.data


def read_handshake(
    stream: IO[bytes],
    timeout: float,
    *,
    label: str = "plugin",
    max_core_version: int = CORE_PROTOCOL_VERSION,
    expected_app_version: int | None = None,
    max_bytes: int = DEFAULT_MAX_LINE_BYTES,
    cancel_event: threading.Event | None = None,
) -> HandshakeLine:
    """Read and decode the handshake from a byte stream; nothing after the first line is consumed."""
    result = read_first_line(stream, timeout, max_bytes=max_bytes, cancel_event=cancel_event)
    if result.outcome is ReadOutcome.TIMEOUT:
        raise HandshakeTimeout(label, timeout, result.elapsed_seconds)
    if result.outcome is ReadOutcome.CANCELLED:
        raise LaunchCancelled(label, result.elapsed_seconds)
    line = check_first_line(result, max_bytes=max_bytes)
    return decode_handshake(
        line,
        max_core_version=max_core_version,
        expected_app_version=expected_app_version,
    )
