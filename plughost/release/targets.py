"""Target triple to release-asset tag mapping.

The table is the single source of truth for asset names. A triple missing from
it is never guessed at; callers skip it and say so.
"""

from __future__ import annotations

import platform
from dataclasses import dataclass
from typing import Iterable

from plughost.utils.exceptions import UnrecognizedPlatformTarget

ARCH_TAGS = ("arm64", "x86_64")
OS_TAGS = ("apple-darwin", "unknown-linux-gnu")

TARGET_TAGS: dict[str, tuple[str, str]] = {
    "aarch64-apple-darwin": ("arm64", "apple-darwin"),
    "x86_64-apple-darwin": ("x86_64", "apple-darwin"),
    "aarch64-unknown-linux-gnu": ("arm64", "unknown-linux-gnu"),
    "x86_64-unknown-linux-gnu": ("x86_64", "unknown-linux-gnu"),
}

_MACHINE_ARCH = {
    "arm64": "aarch64",
    "aarch64": "aarch64",
    "x86_64": "x86_64",
    "amd64": "x86_64",
}
_SYSTEM_OS = {
    "darwin": "apple-darwin",
    "linux": "unknown-linux-gnu",
}


@dataclass(frozen=True, slots=True)
class ReleaseAsset:
    plugin_name: str
    arch_tag: str
    os_tag: str

    def __post_init__(self) -> None:
        if not self.plugin_name or "/" in self.plugin_name:
            raise ValueError(f"invalid plugin name: {self.plugin_name!r}")
        if self.arch_tag not in ARCH_TAGS:
            raise ValueError(f"unknown arch tag: {self.arch_tag!r}")
        if self.os_tag not in OS_TAGS:
            raise ValueError(f"unknown os tag: {self.os_tag!r}")

    @property
    def archive_name(self) -> str:
        return f"{self.plugin_name}-{self.arch_tag}-{self.os_tag}.zip"


def asset_for_target(plugin_name: str, target: str) -> ReleaseAsset:
    """Release asset for `target`; raises UnrecognizedPlatformTarget for unmapped triples."""
    tags = TARGET_TAGS.get(target)
    if tags is None:
        raise UnrecognizedPlatformTarget(target)
    arch_tag, os_tag = tags
    return ReleaseAsset(plugin_name=plugin_name, arch_tag=arch_tag, os_tag=os_tag)


def validate_matrix(targets: Iterable[str]) -> list[str]:
    """Return the triples in `targets` that have no table entry, in input order."""
    return [t for t in targets if t not in TARGET_TAGS]


def host_target_triple(system: str | None = None, machine: str | None = None) -> str:
    """Triple for the running platform (or the given uname values)."""
    sys_name = (system if system is not None else platform.system()).lower()
    mach = (machine if machine is not None else platform.machine()).lower()
    arch = _MACHINE_ARCH.get(mach)
    os_tag = _SYSTEM_OS.get(sys_name)
    if arch is None or os_tag is None:
        raise UnrecognizedPlatformTarget(f"{mach}-{sys_name}")
    return f"{arch}-{os_tag}"
