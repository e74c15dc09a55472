"""Encode and decode the plugin handshake line.

Wire format (one line, first bytes ever written to the plugin's stdout)::

    <core>|<app>|<network>|<address>|<rpc>\\n

Decoding checks, in order: field count, integer versions, core version support,
network type, address, rpc protocol, and finally the optional app version pin.
"""

from __future__ import annotations

import ipaddress
import os
import re

from plughost.handshake.types import (
    CORE_PROTOCOL_VERSION,
    FIELD_COUNT,
    FIELD_DELIMITER,
    NETWORK_TCP,
    NETWORK_TYPES,
    RPC_PROTOCOLS,
    HandshakeLine,
)
from plughost.utils.exceptions import (
    InvalidAddress,
    MalformedHandshake,
    UnknownNetworkType,
    UnsupportedProtocolVersion,
)

_VERSION_RE = re.compile(r"0|[1-9][0-9]*")
_PORT_RE = re.compile(r"[0-9]{1,5}")
_HOSTNAME_RE = re.compile(
    r"(?=.{1,253}$)[A-Za-z0-9]([A-Za-z0-9-]{0,61}[A-Za-z0-9])?(\.[A-Za-z0-9]([A-Za-z0-9-]{0,61}[A-Za-z0-9])?)*"
)


def encode_handshake(line: HandshakeLine) -> str:
    """Serialize a handshake without the trailing newline."""
    fields = [
        str(line.core_protocol_version),
        str(line.app_protocol_version),
        line.network_type,
        line.address,
        line.rpc_protocol,
    ]
    for value in fields[2:]:
        if FIELD_DELIMITER in value or "\n" in value or "\r" in value:
            raise ValueError(f"handshake field may not contain '|' or line breaks: {value!r}")
    return FIELD_DELIMITER.join(fields)


def _strip_terminator(text: str) -> str:
    if text.endswith("\n"):
        text = text[:-1]
        if text.endswith("\r"):
            text = text[:-1]
    return text


def _parse_version(raw_line: str, name: str, value: str) -> int:
    if not _VERSION_RE.fullmatch(value):
        raise MalformedHandshake(raw_line, f"{name} protocol version {value!r} is not a canonical decimal integer")
    version = int(value)
    if version < 1:
        raise MalformedHandshake(raw_line, f"{name} protocol version must be positive")
    return version


def validate_tcp_address(address: str) -> str | None:
    """Return the reason a tcp address is invalid, or None when it parses."""
    host, sep, port = address.rpartition(":")
    if not sep or not host:
        return "expected HOST:PORT"
    if not _PORT_RE.fullmatch(port) or not 1 <= int(port) <= 65535:
        return f"port {port!r} is not in 1..65535"
    if host.startswith("[") and host.endswith("]"):
        try:
            ipaddress.IPv6Address(host[1:-1])
        except ValueError:
            return f"{host} is not an IPv6 address"
        return None
    if ":" in host:
        return "IPv6 hosts must be bracketed"
    try:
        ipaddress.IPv4Address(host)
        return None
    except ValueError:
        pass
    if host.replace(".", "").isdigit():
        return f"{host} is not an IPv4 address"
    if not _HOSTNAME_RE.fullmatch(host):
        return f"{host!r} is not a valid host name"
    return None


def validate_unix_address(address: str) -> str | None:
    """Return the reason a unix socket path is invalid, or None when it is usable."""
    if not address:
        return "socket path is empty"
    if "\x00" in address:
        return "socket path contains NUL"
    if not os.path.isabs(address):
        return "socket path must be absolute"
    return None


def decode_handshake(
    raw: str | bytes,
    *,
    max_core_version: int = CORE_PROTOCOL_VERSION,
    expected_app_version: int | None = None,
) -> HandshakeLine:
    """Parse and validate one handshake line (a trailing newline is optional)."""
    if isinstance(raw, bytes):
        try:
            text = raw.decode("utf-8")
        except UnicodeDecodeError:
            raise MalformedHandshake(raw, "line is not valid UTF-8") from None
    else:
        text = raw
    line = _strip_terminator(text)
    if "\n" in line:
        raise MalformedHandshake(text, "more than one line")
    if not line:
        raise MalformedHandshake(text, "empty line")

    fields = line.split(FIELD_DELIMITER)
    if len(fields) != FIELD_COUNT:
        raise MalformedHandshake(line, f"expected {FIELD_COUNT} fields, got {len(fields)}")
    core_raw, app_raw, network_type, address, rpc_protocol = fields

    core = _parse_version(line, "core", core_raw)
    app = _parse_version(line, "app", app_raw)
    if core > max_core_version:
        raise UnsupportedProtocolVersion(line, "core", core, max_core_version)

    if network_type not in NETWORK_TYPES:
        raise UnknownNetworkType(line, network_type, NETWORK_TYPES)

    if network_type == NETWORK_TCP:
        reason = validate_tcp_address(address)
    else:
        reason = validate_unix_address(address)
    if reason is not None:
        raise InvalidAddress(line, network_type, address, reason)

    if rpc_protocol not in RPC_PROTOCOLS:
        raise MalformedHandshake(line, f"unknown rpc protocol {rpc_protocol!r}")

    if expected_app_version is not None and app != expected_app_version:
        raise UnsupportedProtocolVersion(line, "app", app, expected_app_version)

    return HandshakeLine(
        core_protocol_version=core,
        app_protocol_version=app,
        network_type=network_type,
        address=address,
        rpc_protocol=rpc_protocol,
    )
