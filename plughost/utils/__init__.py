"""Utility functions for plughost."""

from plughost.utils.exceptions import (
    ArtifactMissing,
    ErrorCategory,
    ExecutableNotFound,
    HandshakeError,
    HandshakeStreamViolation,
    HandshakeTimeout,
    InvalidAddress,
    InvalidReleaseAsset,
    LaunchCancelled,
    LaunchError,
    MalformedHandshake,
    PackagingError,
    PlughostError,
    PluginExited,
    PluginNotFound,
    ReleaseDownloadFailed,
    SpawnFailed,
    ToolchainFailed,
    UnknownNetworkType,
    UnrecognizedPlatformTarget,
    UnsupportedProtocolVersion,
    sanitize_error_message,
)

__all__ = [
    "ArtifactMissing",
    "ErrorCategory",
    "ExecutableNotFound",
    "HandshakeError",
    "HandshakeStreamViolation",
    "HandshakeTimeout",
    "InvalidAddress",
    "InvalidReleaseAsset",
    "LaunchCancelled",
    "LaunchError",
    "MalformedHandshake",
    "PackagingError",
    "PlughostError",
    "PluginExited",
    "PluginNotFound",
    "ReleaseDownloadFailed",
    "SpawnFailed",
    "ToolchainFailed",
    "UnknownNetworkType",
    "UnrecognizedPlatformTarget",
    "UnsupportedProtocolVersion",
    "sanitize_error_message",
]
