"""Discovery plus launch with a registry of live plugins for orderly shutdown."""

from __future__ import annotations

import threading
from pathlib import Path
from typing import Sequence

from loguru import logger

from plughost.config.schema import Config
from plughost.discovery import PluginDescriptor, build_search_path, find_all_plugins, find_plugin
from plughost.launcher import LaunchOptions, PluginLauncher, PluginProcess
from plughost.utils.exceptions import LaunchCancelled


class PluginHost:
    """
    Host-side facade: resolve a plugin by name, launch it, track it.

    Every `launch` rescans the search path; nothing about which binary a name
    resolves to is remembered between calls. The only shared state is the set
    of live handles and in-flight cancel events, both guarded by one lock.
    """

    def __init__(self, config: Config | None = None, *, launcher: PluginLauncher | None = None):
        self.config = config or Config()
        self.launcher = launcher or PluginLauncher(LaunchOptions.from_config(self.config))
        self._lock = threading.Lock()
        self._live: dict[int, PluginProcess] = {}
        self._pending: set[threading.Event] = set()
        self._closed = False

    def search_path(self) -> list[Path]:
        discovery = self.config.discovery
        return build_search_path(
            discovery.env_var,
            override_dir=discovery.override_dir,
            extra_dirs=discovery.paths,
            install_dir=self.config.install_dir if discovery.include_install_dir else None,
        )

    def discover(self, name: str) -> PluginDescriptor:
        return find_plugin(name, self.search_path())

    def candidates(self, name: str) -> list[PluginDescriptor]:
        return find_all_plugins(name, self.search_path())

    def launch(
        self,
        name: str,
        args: Sequence[str] = (),
        *,
        env: dict[str, str] | None = None,
        cwd: str | Path | None = None,
    ) -> PluginProcess:
        """Resolve `name` afresh, launch it and register the live handle."""
        descriptor = self.discover(name)
        cancel = threading.Event()
        with self._lock:
            if self._closed:
                raise RuntimeError("plugin host is shut down")
            self._pending.add(cancel)
        try:
            plugin = self.launcher.launch(
                descriptor.executable_path,
                args,
                name=name,
                env=env,
                cwd=cwd,
                cancel_event=cancel,
            )
        finally:
            with self._lock:
                self._pending.discard(cancel)
        plugin.descriptor = descriptor.with_handshake(plugin.handshake)
        with self._lock:
            if self._closed:
                plugin.terminate()
                raise LaunchCancelled(str(descriptor.executable_path), 0.0)
            self._live[plugin.pid] = plugin
        return plugin

    def live(self) -> list[PluginProcess]:
        """Registered plugins that are still running."""
        with self._lock:
            for pid in [pid for pid, p in self._live.items() if not p.is_running]:
                self._live.pop(pid)
            return list(self._live.values())

    def release(self, plugin: PluginProcess) -> int | None:
        """Terminate one plugin and drop it from the registry."""
        with self._lock:
            self._live.pop(plugin.pid, None)
        return plugin.terminate()

    def shutdown(self) -> None:
        """Cancel in-flight launches and terminate every live plugin."""
        with self._lock:
            self._closed = True
            pending = list(self._pending)
            live = list(self._live.values())
            self._live.clear()
        for event in pending:
            event.set()
        for plugin in live:
            logger.debug("Stopping plugin {} (pid {})", plugin.name, plugin.pid)
            plugin.terminate()
        if live or pending:
            logger.info("Plugin host stopped {} plugin(s), cancelled {} launch(es)", len(live), len(pending))

    def __enter__(self) -> "PluginHost":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.shutdown()
