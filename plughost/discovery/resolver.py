"""Find plugin executables by exact name across an ordered list of directories."""

from __future__ import annotations

import os
import stat
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Iterable, Mapping

from loguru import logger

from plughost.handshake.types import HandshakeLine
from plughost.utils.exceptions import PluginNotFound


@dataclass(frozen=True, slots=True)
class PluginDescriptor:
    """A discovered executable. Built per scan and handed to the launcher once."""

    name: str
    executable_path: Path
    search_dir: Path
    handshake: HandshakeLine | None = None

    def with_handshake(self, handshake: HandshakeLine) -> "PluginDescriptor":
        return replace(self, handshake=handshake)


def _dedupe(paths: Iterable[Path]) -> list[Path]:
    out: list[Path] = []
    seen: set[str] = set()
    for path in paths:
        try:
            key = str(path.resolve())
        except OSError:
            key = str(path.absolute())
        if key in seen:
            continue
        seen.add(key)
        out.append(path)
    return out


def build_search_path(
    env_var: str = "PATH",
    *,
    override_dir: str | os.PathLike[str] | None = None,
    extra_dirs: Iterable[str | os.PathLike[str]] = (),
    install_dir: str | os.PathLike[str] | None = None,
    environ: Mapping[str, str] | None = None,
) -> list[Path]:
    """
    Return the directories to scan, in priority order.

    Order: override dir, configured extra dirs, entries of `env_var`, install dir.
    Empty entries are dropped and duplicates (by resolved path) keep their first
    position.
    """
    env = os.environ if environ is None else environ
    candidates: list[Path] = []
    if override_dir:
        candidates.append(Path(override_dir).expanduser())
    candidates.extend(Path(d).expanduser() for d in extra_dirs if str(d).strip())
    raw = env.get(env_var, "")
    candidates.extend(Path(entry).expanduser() for entry in raw.split(os.pathsep) if entry.strip())
    if install_dir:
        candidates.append(Path(install_dir).expanduser())
    return _dedupe(candidates)


def _check_name(name: str) -> None:
    if not name or name in (".", ".."):
        raise ValueError(f"invalid plugin name: {name!r}")
    separators = {os.sep, "/"} | ({os.altsep} if os.altsep else set())
    if any(sep in name for sep in separators):
        raise ValueError(f"plugin name must not contain a path separator: {name!r}")


def _is_executable_file(path: Path) -> bool:
    try:
        st = path.stat()
    except OSError:
        return False
    if not stat.S_ISREG(st.st_mode):
        return False
    return bool(st.st_mode & (stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)) and os.access(path, os.X_OK)


def _listed_exactly(base: Path, name: str) -> bool:
    # Case-insensitive filesystems resolve `Plugin` for `plugin`.
    try:
        return name in os.listdir(base)
    except OSError:
        return False


def find_all_plugins(name: str, search_path: Iterable[str | os.PathLike[str]]) -> list[PluginDescriptor]:
    """Every executable named `name`, in search order. Nothing is executed."""
    _check_name(name)
    found: list[PluginDescriptor] = []
    for directory in search_path:
        base = Path(directory)
        if not base.is_dir():
            continue
        candidate = base / name
        if _is_executable_file(candidate) and _listed_exactly(base, name):
            found.append(PluginDescriptor(name=name, executable_path=candidate, search_dir=base))
    return found


def find_plugin(name: str, search_path: Iterable[str | os.PathLike[str]]) -> PluginDescriptor:
    """First executable named `name`; raises PluginNotFound listing every directory searched."""
    dirs = [Path(d) for d in search_path]
    matches = find_all_plugins(name, dirs)
    if not matches:
        raise PluginNotFound(name, [str(d) for d in dirs])
    chosen = matches[0]
    if len(matches) > 1:
        logger.warning(
            "Plugin {} resolved to {}; shadowed: {}",
            name,
            chosen.executable_path,
            ", ".join(str(m.executable_path) for m in matches[1:]),
        )
    else:
        logger.debug("Plugin {} resolved to {}", name, chosen.executable_path)
    return chosen
