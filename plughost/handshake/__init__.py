"""Handshake line model, codec, host-side reader and plugin-side announcer."""

from .announce import PluginAnnouncer, bind_listener, configure_plugin_logging, handshake_for_listener, run_plugin
from .codec import decode_handshake, encode_handshake
from .reader import FirstLine, ReadOutcome, read_first_line, read_handshake
from .types import (
    CORE_PROTOCOL_VERSION,
    NETWORK_TCP,
    NETWORK_TYPES,
    NETWORK_UNIX,
    RPC_PROTOCOLS,
    HandshakeLine,
)

__all__ = [
    "CORE_PROTOCOL_VERSION",
    "FirstLine",
    "HandshakeLine",
    "NETWORK_TCP",
    "NETWORK_TYPES",
    "NETWORK_UNIX",
    "PluginAnnouncer",
    "RPC_PROTOCOLS",
    "ReadOutcome",
    "bind_listener",
    "configure_plugin_logging",
    "decode_handshake",
    "encode_handshake",
    "handshake_for_listener",
    "read_first_line",
    "read_handshake",
    "run_plugin",
]
