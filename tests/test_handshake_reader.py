"""Tests for the bounded first-line reader."""

from __future__ import annotations

import io
import os
import threading
import time

import pytest

from plughost.handshake.reader import ReadOutcome, check_first_line, read_first_line, read_handshake
from plughost.utils.exceptions import HandshakeTimeout, LaunchCancelled, MalformedHandshake


@pytest.fixture
def pipe():
    read_fd, write_fd = os.pipe()
    reader = os.fdopen(read_fd, "rb")
    writer = os.fdopen(write_fd, "wb")
    yield reader, writer
    for fh in (writer, reader):
        try:
            fh.close()
        except OSError:
            pass


def test_reads_complete_line():
    stream = io.BytesIO(b"1|1|tcp|127.0.0.1:9000|grpc\nleftover")
    result = read_first_line(stream, 1.0)
    assert result.outcome is ReadOutcome.LINE
    assert result.data == b"1|1|tcp|127.0.0.1:9000|grpc\n"
    assert stream.read() == b"leftover"


def test_eof_without_output():
    result = read_first_line(io.BytesIO(b""), 1.0)
    assert result.outcome is ReadOutcome.EOF
    assert result.data == b""
    with pytest.raises(MalformedHandshake):
        check_first_line(result)


def test_eof_before_newline_is_malformed():
    result = read_first_line(io.BytesIO(b"1|1|tcp|127.0.0.1:9000|grpc"), 1.0)
    assert result.outcome is ReadOutcome.EOF
    with pytest.raises(MalformedHandshake) as exc_info:
        check_first_line(result)
    assert "newline" in exc_info.value.reason


def test_oversized_line_is_malformed():
    result = read_first_line(io.BytesIO(b"x" * 200), 1.0, max_bytes=64)
    with pytest.raises(MalformedHandshake) as exc_info:
        check_first_line(result, max_bytes=64)
    assert "64 bytes" in exc_info.value.reason


def test_timeout_when_writer_stays_silent(pipe):
    reader, _writer = pipe
    started = time.monotonic()
    result = read_first_line(reader, 0.2)
    assert result.outcome is ReadOutcome.TIMEOUT
    assert time.monotonic() - started < 2.0


def test_cancel_event_interrupts_wait(pipe):
    reader, _writer = pipe
    cancel = threading.Event()
    threading.Timer(0.1, cancel.set).start()
    result = read_first_line(reader, 10.0, cancel_event=cancel)
    assert result.outcome is ReadOutcome.CANCELLED
    assert result.elapsed_seconds < 5.0


def test_read_handshake_maps_outcomes(pipe):
    reader, writer = pipe
    with pytest.raises(HandshakeTimeout) as exc_info:
        read_handshake(reader, 0.1, label="silent")
    assert exc_info.value.details["executable"] == "silent"

    cancel = threading.Event()
    cancel.set()
    with pytest.raises(LaunchCancelled):
        read_handshake(io.BytesIO(b""), 1.0, cancel_event=cancel)


def test_read_handshake_decodes_delayed_line(pipe):
    reader, writer = pipe

    def _write_later():
        time.sleep(0.1)
        writer.write(b"1|2|unix|/tmp/p.sock|grpc\n")
        writer.flush()

    threading.Thread(target=_write_later, daemon=True).start()
    line = read_handshake(reader, 5.0, expected_app_version=2)
    assert line.network_type == "unix"
    assert line.app_protocol_version == 2
