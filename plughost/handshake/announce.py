"""Plugin-side handshake: bind, announce once on stdout, then keep stdout silent.

A plugin built on this module looks like::

    from plughost.handshake.announce import run_plugin

    def serve(listener):
        ...  # accept connections on the bound socket

    if __name__ == "__main__":
        raise SystemExit(run_plugin(serve))

Everything the plugin logs goes to stderr. The only bytes that ever reach stdout
are the handshake line and its newline.
"""

from __future__ import annotations

import io
import os
import shutil
import socket
import sys
import tempfile
import threading
from typing import Callable, TextIO

from loguru import logger

from plughost.handshake.codec import encode_handshake
from plughost.handshake.types import (
    CORE_PROTOCOL_VERSION,
    NETWORK_TCP,
    NETWORK_TYPES,
    NETWORK_UNIX,
    RPC_GRPC,
    HandshakeLine,
)

PLUGIN_LOG_FORMAT = "{time:HH:mm:ss.SSS} | {level: <8} | {name}:{function}:{line} - {message}"


def configure_plugin_logging(level: str = "INFO") -> None:
    """Route all loguru output to stderr and nowhere else."""
    logger.remove()
    logger.add(sys.stderr, level=level, format=PLUGIN_LOG_FORMAT, backtrace=False, diagnose=False)


class _DivertedStdout(io.TextIOBase):
    """Stand-in for sys.stdout after the handshake; forwards writes to stderr."""

    def __init__(self, target: TextIO):
        self._target = target
        self._warned = False

    def writable(self) -> bool:
        return True

    def write(self, text: str) -> int:
        if text and not self._warned:
            self._warned = True
            logger.warning("stdout is reserved for the handshake line; diverting writes to stderr")
        self._target.write(text)
        return len(text)

    def flush(self) -> None:
        self._target.flush()


class PluginAnnouncer:
    """Writes the handshake exactly once and then seals the stream."""

    def __init__(self, stream: TextIO | None = None):
        self._stream = stream
        self._lock = threading.Lock()
        self._announced = False

    @property
    def announced(self) -> bool:
        return self._announced

    def _target(self) -> TextIO:
        if self._stream is not None:
            return self._stream
        return sys.__stdout__ if sys.__stdout__ is not None else sys.stdout

    def announce(self, line: HandshakeLine) -> str:
        with self._lock:
            if self._announced:
                raise RuntimeError("handshake already announced; stdout carries exactly one line")
            payload = encode_handshake(line)
            target = self._target()
            target.write(payload + "\n")
            target.flush()
            self._announced = True
        logger.debug("Handshake announced: {}", payload)
        return payload

    def seal_stdout(self, *, redirect_fd: bool = False) -> None:
        """
        Divert later writes to sys.stdout onto stderr.

        With `redirect_fd`, file descriptor 1 is also pointed at stderr so output
        from native code or child processes cannot reach the host either.
        """
        if not self._announced:
            raise RuntimeError("seal_stdout called before the handshake was announced")
        sys.stdout = _DivertedStdout(sys.stderr)
        if redirect_fd:
            os.dup2(sys.stderr.fileno(), 1)


def bind_listener(
    network_type: str = NETWORK_TCP,
    *,
    host: str = "127.0.0.1",
    port: int = 0,
    unix_path: str | None = None,
) -> socket.socket:
    """Bind and listen; port 0 lets the OS pick a free port."""
    if network_type not in NETWORK_TYPES:
        raise ValueError(f"unsupported network type: {network_type}")
    if network_type == NETWORK_TCP:
        family = socket.AF_INET6 if ":" in host else socket.AF_INET
        return socket.create_server((host, port), family=family)
    path = unix_path or os.path.join(tempfile.mkdtemp(prefix="plughost-"), "plugin.sock")
    sock = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
    try:
        sock.bind(path)
        sock.listen()
    except OSError:
        sock.close()
        raise
    return sock


def handshake_for_listener(
    sock: socket.socket,
    *,
    app_protocol_version: int = 1,
    rpc_protocol: str = RPC_GRPC,
    core_protocol_version: int = CORE_PROTOCOL_VERSION,
) -> HandshakeLine:
    """Describe a bound listener as a handshake line."""
    if sock.family == getattr(socket, "AF_UNIX", None):
        network_type = NETWORK_UNIX
        address = str(sock.getsockname())
    else:
        network_type = NETWORK_TCP
        host, port = sock.getsockname()[:2]
        address = f"[{host}]:{port}" if sock.family == socket.AF_INET6 else f"{host}:{port}"
    return HandshakeLine(
        core_protocol_version=core_protocol_version,
        app_protocol_version=app_protocol_version,
        network_type=network_type,
        address=address,
        rpc_protocol=rpc_protocol,
    )


def _cleanup_unix_socket(sock: socket.socket) -> None:
    if sock.family != getattr(socket, "AF_UNIX", None):
        return
    path = sock.getsockname()
    if not path:
        return
    try:
        os.unlink(path)
    except FileNotFoundError:
        return
    parent = os.path.dirname(path)
    if os.path.basename(parent).startswith("plughost-"):
        shutil.rmtree(parent, ignore_errors=True)


def run_plugin(
    serve: Callable[[socket.socket], None],
    *,
    network_type: str = NETWORK_TCP,
    host: str = "127.0.0.1",
    port: int = 0,
    unix_path: str | None = None,
    app_protocol_version: int = 1,
    rpc_protocol: str = RPC_GRPC,
    log_level: str = "INFO",
    redirect_fd: bool = True,
) -> int:
    """
    Plugin entry point: bind, announce, seal stdout, serve.

    Returns the process exit code. A bind failure returns 1 without writing a
    handshake, so the host reports the plugin as exited rather than misreading
    partial output.
    """
    configure_plugin_logging(log_level)
    try:
        listener = bind_listener(network_type, host=host, port=port, unix_path=unix_path)
    except OSError as exc:
        logger.error("Failed to bind {} listener: {}", network_type, exc)
        return 1
    announcer = PluginAnnouncer()
    try:
        announcer.announce(
            handshake_for_listener(
                listener,
                app_protocol_version=app_protocol_version,
                rpc_protocol=rpc_protocol,
            )
        )
        announcer.seal_stdout(redirect_fd=redirect_fd)
        serve(listener)
        return 0
    except KeyboardInterrupt:
        logger.info("Plugin interrupted, shutting down")
        return 0
    finally:
        _cleanup_unix_socket(listener)
        listener.close()
