"""Handshake line model shared by the plugin-side encoder and host-side decoder."""

from __future__ import annotations

from dataclasses import dataclass

CORE_PROTOCOL_VERSION = 1
FIELD_DELIMITER = "|"
FIELD_COUNT = 5
DEFAULT_MAX_LINE_BYTES = 4096

NETWORK_TCP = "tcp"
NETWORK_UNIX = "unix"
NETWORK_TYPES: tuple[str, ...] = (NETWORK_TCP, NETWORK_UNIX)

RPC_GRPC = "grpc"
RPC_NETRPC = "netrpc"
RPC_PROTOCOLS: tuple[str, ...] = (RPC_GRPC, RPC_NETRPC)


@dataclass(frozen=True, slots=True)
class HandshakeLine:
    """The single descriptor a ready plugin writes to stdout."""

    core_protocol_version: int
    app_protocol_version: int
    network_type: str
    address: str
    rpc_protocol: str

    def as_dict(self) -> dict[str, object]:
        return {
            "core": self.core_protocol_version,
            "app": self.app_protocol_version,
            "network": self.network_type,
            "address": self.address,
            "rpc": self.rpc_protocol,
        }

    def tcp_endpoint(self) -> tuple[str, int]:
        """Split a tcp address into (host, port); brackets are stripped from IPv6 hosts."""
        if self.network_type != NETWORK_TCP:
            raise ValueError(f"not a tcp handshake: {self.network_type}")
        host, _, port = self.address.rpartition(":")
        if host.startswith("[") and host.endswith("]"):
            host = host[1:-1]
        return host, int(port)
