"""Plugin process launcher: spawn, await the handshake, keep the streams apart."""

from .async_launcher import AsyncPluginProcess, launch_plugin_async
from .process import LaunchOptions, PluginLauncher, PluginProcess, launch_plugin, terminate_process
from .streams import DiagnosticsStream, HandshakeStream

__all__ = [
    "AsyncPluginProcess",
    "DiagnosticsStream",
    "HandshakeStream",
    "LaunchOptions",
    "PluginLauncher",
    "PluginProcess",
    "launch_plugin",
    "launch_plugin_async",
    "terminate_process",
]
