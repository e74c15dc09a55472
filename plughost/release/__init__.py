"""Release packaging (build time) and fetching (install time)."""

from .fetcher import DEFAULT_URL_TEMPLATE, ReleaseFetcher, asset_download_url
from .packager import PackageReport, ReleasePackager, TargetOutcome, TargetStatus, write_archive
from .targets import (
    ARCH_TAGS,
    OS_TAGS,
    TARGET_TAGS,
    ReleaseAsset,
    asset_for_target,
    host_target_triple,
    validate_matrix,
)

__all__ = [
    "ARCH_TAGS",
    "DEFAULT_URL_TEMPLATE",
    "OS_TAGS",
    "PackageReport",
    "ReleaseAsset",
    "ReleaseFetcher",
    "ReleasePackager",
    "TARGET_TAGS",
    "TargetOutcome",
    "TargetStatus",
    "asset_download_url",
    "asset_for_target",
    "host_target_triple",
    "validate_matrix",
    "write_archive",
]
