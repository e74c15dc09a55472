"""Plugin executable discovery."""

from .resolver import PluginDescriptor, build_search_path, find_all_plugins, find_plugin

__all__ = ["PluginDescriptor", "build_search_path", "find_all_plugins", "find_plugin"]
