"""
Exception hierarchy for plughost.

Provides:
- A base error carrying a stable code, a category and a details dict
- The handshake, launch, discovery and packaging error taxonomy
- Safe error message formatting for CLI output (no secret leak from URLs or env)

Every error is fatal to the attempt that raised it. Nothing here is retried:
a bad handshake means a build or configuration defect, not a transient fault.
"""

from __future__ import annotations

import re
from enum import Enum
from typing import Any


class ErrorCategory(Enum):
    """Error categories for classification."""
    PROTOCOL = "protocol"
    VERSION = "version"
    TIMEOUT = "timeout"
    NOT_FOUND = "not_found"
    LIFECYCLE = "lifecycle"
    CANCELLED = "cancelled"
    PACKAGING = "packaging"
    NETWORK = "network"
    FATAL = "fatal"


class PlughostError(Exception):
    """Base exception for all plughost errors."""

    def __init__(
        self,
        message: str,
        code: str = "UNKNOWN_ERROR",
        category: ErrorCategory = ErrorCategory.FATAL,
        details: dict[str, Any] | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.code = code
        self.category = category
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        return {
            "error": self.code,
            "message": self.message,
            "category": self.category.value,
            "details": self.details,
        }

    def __str__(self) -> str:
        return f"[{self.code}] {self.message}"


def _preview(raw: str | bytes, limit: int = 200) -> str:
    if isinstance(raw, bytes):
        raw = raw.decode("utf-8", errors="replace")
    return raw if len(raw) <= limit else raw[:limit] + "..."


# ---------------------------------------------------------------------------
# Handshake
# ---------------------------------------------------------------------------


class HandshakeError(PlughostError):
    """Base class for errors raised while decoding a handshake."""


class MalformedHandshake(HandshakeError):
    """Output was received on stdout but is not a handshake line."""

    def __init__(self, raw_line: str | bytes, reason: str):
        preview = _preview(raw_line)
        super().__init__(
            f"Malformed handshake ({reason}); got {preview!r}. "
            "Something other than the handshake reached stdout, check that plugin logs go to stderr",
            code="MALFORMED_HANDSHAKE",
            category=ErrorCategory.PROTOCOL,
            details={"raw_line": preview, "reason": reason},
        )
        self.raw_line = raw_line
        self.reason = reason


class UnsupportedProtocolVersion(HandshakeError):
    """Handshake parsed but advertises a protocol version the host cannot speak."""

    def __init__(self, raw_line: str, field: str, version: int, supported: int):
        if field == "core":
            detail = f"core protocol version {version} is newer than supported maximum {supported}"
        else:
            detail = f"app protocol version {version} does not match expected {supported}"
        super().__init__(
            f"Unsupported protocol version: {detail}. Upgrade the host or rebuild the plugin",
            code="UNSUPPORTED_PROTOCOL_VERSION",
            category=ErrorCategory.VERSION,
            details={"raw_line": raw_line, "field": field, "version": version, "supported": supported},
        )
        self.field = field
        self.version = version
        self.supported = supported


class UnknownNetworkType(HandshakeError):
    """Handshake network type is not one of the recognised values."""

    def __init__(self, raw_line: str, network_type: str, known: tuple[str, ...]):
        super().__init__(
            f"Unknown network type {network_type!r}; expected one of {', '.join(known)}",
            code="UNKNOWN_NETWORK_TYPE",
            category=ErrorCategory.PROTOCOL,
            details={"raw_line": raw_line, "network_type": network_type},
        )
        self.network_type = network_type


class InvalidAddress(HandshakeError):
    """Handshake address does not parse for its network type."""

    def __init__(self, raw_line: str, network_type: str, address: str, reason: str):
        super().__init__(
            f"Invalid {network_type} address {address!r}: {reason}",
            code="INVALID_ADDRESS",
            category=ErrorCategory.PROTOCOL,
            details={"raw_line": raw_line, "network_type": network_type, "address": address, "reason": reason},
        )
        self.address = address
        self.reason = reason


class HandshakeTimeout(HandshakeError):
    """No handshake line arrived on stdout before the startup deadline."""

    def __init__(
        self,
        executable: str,
        timeout_seconds: float,
        elapsed_seconds: float,
        stderr_tail: list[str] | None = None,
    ):
        super().__init__(
            f"No handshake output from {executable} within {timeout_seconds}s "
            f"(waited {elapsed_seconds:.2f}s); the plugin may have failed to start or bind",
            code="HANDSHAKE_TIMEOUT",
            category=ErrorCategory.TIMEOUT,
            details={
                "executable": executable,
                "timeout_seconds": timeout_seconds,
                "elapsed_seconds": round(elapsed_seconds, 3),
                "stderr_tail": list(stderr_tail or []),
            },
        )
        self.timeout_seconds = timeout_seconds
        self.elapsed_seconds = elapsed_seconds


class HandshakeStreamViolation(HandshakeError):
    """Bytes appeared on stdout after the handshake line."""

    def __init__(self, executable: str, data: bytes):
        preview = _preview(data)
        super().__init__(
            f"Plugin {executable} wrote to stdout after the handshake: {preview!r}. "
            "Logs are leaking onto stdout",
            code="HANDSHAKE_STREAM_VIOLATION",
            category=ErrorCategory.PROTOCOL,
            details={"executable": executable, "data": preview},
        )
        self.data = data


# ---------------------------------------------------------------------------
# Launch
# ---------------------------------------------------------------------------


class LaunchError(PlughostError):
    """Base class for plugin process lifecycle errors."""


class ExecutableNotFound(LaunchError):
    def __init__(self, executable: str):
        super().__init__(
            f"Plugin executable not found: {executable}",
            code="EXECUTABLE_NOT_FOUND",
            category=ErrorCategory.NOT_FOUND,
            details={"executable": executable},
        )
        self.executable = executable


class SpawnFailed(LaunchError):
    def __init__(self, executable: str, reason: str):
        super().__init__(
            f"Failed to spawn plugin {executable}: {reason}",
            code="SPAWN_FAILED",
            category=ErrorCategory.LIFECYCLE,
            details={"executable": executable, "reason": reason},
        )
        self.executable = executable


class PluginExited(LaunchError):
    """The child exited before writing a handshake line."""

    def __init__(
        self,
        executable: str,
        returncode: int | None,
        elapsed_seconds: float,
        stderr_tail: list[str] | None = None,
    ):
        super().__init__(
            f"Plugin {executable} exited with code {returncode} before writing a handshake "
            f"(after {elapsed_seconds:.2f}s)",
            code="PLUGIN_EXITED",
            category=ErrorCategory.LIFECYCLE,
            details={
                "executable": executable,
                "returncode": returncode,
                "elapsed_seconds": round(elapsed_seconds, 3),
                "stderr_tail": list(stderr_tail or []),
            },
        )
        self.returncode = returncode


class LaunchCancelled(LaunchError):
    def __init__(self, executable: str, elapsed_seconds: float):
        super().__init__(
            f"Launch of {executable} cancelled after {elapsed_seconds:.2f}s; process terminated",
            code="LAUNCH_CANCELLED",
            category=ErrorCategory.CANCELLED,
            details={"executable": executable, "elapsed_seconds": round(elapsed_seconds, 3)},
        )


# ---------------------------------------------------------------------------
# Discovery
# ---------------------------------------------------------------------------


class PluginNotFound(PlughostError):
    def __init__(self, name: str, searched_dirs: list[str]):
        shown = ", ".join(searched_dirs) if searched_dirs else "(empty search path)"
        super().__init__(
            f"Plugin {name!r} not found in search path: {shown}",
            code="PLUGIN_NOT_FOUND",
            category=ErrorCategory.NOT_FOUND,
            details={"name": name, "searched_dirs": list(searched_dirs)},
        )
        self.name = name
        self.searched_dirs = list(searched_dirs)


# ---------------------------------------------------------------------------
# Release packaging and fetching
# ---------------------------------------------------------------------------


class PackagingError(PlughostError):
    """Base class for release packaging errors."""


class UnrecognizedPlatformTarget(PackagingError):
    def __init__(self, target: str):
        super().__init__(
            f"Target {target!r} has no entry in the release tag table",
            code="UNRECOGNIZED_PLATFORM_TARGET",
            category=ErrorCategory.PACKAGING,
            details={"target": target},
        )
        self.target = target


class ArtifactMissing(PackagingError):
    def __init__(self, target: str, path: str):
        super().__init__(
            f"Build for {target} produced no binary at {path}",
            code="ARTIFACT_MISSING",
            category=ErrorCategory.PACKAGING,
            details={"target": target, "path": path},
        )
        self.target = target
        self.path = path


class ToolchainFailed(PackagingError):
    def __init__(self, target: str, command: list[str], returncode: int | None, reason: str = ""):
        super().__init__(
            f"Toolchain setup for {target} failed: {' '.join(command)} "
            f"(exit {returncode}){': ' + reason if reason else ''}",
            code="TOOLCHAIN_FAILED",
            category=ErrorCategory.PACKAGING,
            details={"target": target, "command": list(command), "returncode": returncode},
        )


class InvalidReleaseAsset(PackagingError):
    def __init__(self, asset: str, reason: str):
        super().__init__(
            f"Release asset {asset} is invalid: {reason}",
            code="INVALID_RELEASE_ASSET",
            category=ErrorCategory.PACKAGING,
            details={"asset": asset, "reason": reason},
        )


class ReleaseDownloadFailed(PlughostError):
    def __init__(self, url: str, reason: str):
        super().__init__(
            f"Failed to download {url}: {reason}",
            code="RELEASE_DOWNLOAD_FAILED",
            category=ErrorCategory.NETWORK,
            details={"url": url, "reason": reason},
        )


_SENSITIVE_PATTERNS = [
    re.compile(r"(api[_-]?key|token|secret|password|auth)[=:]\s*['\"]?([^\s'\"]+)['\"]?", re.IGNORECASE),
    re.compile(r"bearer\s+[a-zA-Z0-9\-._~+/]+=*", re.IGNORECASE),
    re.compile(r"gh[pousr]_[a-zA-Z0-9]{20,}"),
]


def sanitize_error_message(message: str, replacement: str = "[REDACTED]") -> str:
    """Remove sensitive information from error messages."""
    sanitized = message
    for pattern in _SENSITIVE_PATTERNS:
        sanitized = pattern.sub(replacement, sanitized)
    return sanitized
