"""Download a packaged release asset and install its binary where discovery finds it."""

from __future__ import annotations

import os
import tempfile
import zipfile
from pathlib import Path

import httpx
from loguru import logger

from plughost.release.targets import asset_for_target, host_target_triple
from plughost.utils.exceptions import InvalidReleaseAsset, ReleaseDownloadFailed

DEFAULT_URL_TEMPLATE = "https://github.com/{repo}/releases/download/{tag}/{asset}"
_DOWNLOAD_TIMEOUT = 60.0
_CHUNK_SIZE = 64 * 1024


def asset_download_url(template: str, repo: str, tag: str, asset: str) -> str:
    return template.format(repo=repo, tag=tag, asset=asset)


def _extract_single_entry(archive: Path, asset_name: str, plugin_name: str) -> bytes:
    try:
        with zipfile.ZipFile(archive) as zf:
            entries = zf.infolist()
            if len(entries) != 1:
                raise InvalidReleaseAsset(asset_name, f"expected exactly one entry, found {len(entries)}")
            entry = entries[0]
            if entry.is_dir() or entry.filename != plugin_name:
                raise InvalidReleaseAsset(
                    asset_name, f"expected a single file {plugin_name!r} at the archive root, found {entry.filename!r}"
                )
            return zf.read(entry)
    except zipfile.BadZipFile as exc:
        raise InvalidReleaseAsset(asset_name, f"not a zip archive: {exc}") from exc


class ReleaseFetcher:
    """Fetches `<name>-<arch>-<os>.zip` for a target and installs the binary it holds."""

    def __init__(
        self,
        install_dir: str | os.PathLike[str],
        url_template: str = DEFAULT_URL_TEMPLATE,
        client: httpx.Client | None = None,
    ):
        self.install_dir = Path(install_dir).expanduser()
        self.url_template = url_template
        self._client = client

    def _download(self, client: httpx.Client, url: str, dest: Path) -> None:
        try:
            with client.stream("GET", url) as response:
                response.raise_for_status()
                with dest.open("wb") as fh:
                    for chunk in response.iter_bytes(_CHUNK_SIZE):
                        fh.write(chunk)
        except httpx.HTTPStatusError as exc:
            raise ReleaseDownloadFailed(url, f"HTTP {exc.response.status_code}") from exc
        except httpx.RequestError as exc:
            raise ReleaseDownloadFailed(url, str(exc) or type(exc).__name__) from exc

    def fetch(self, plugin_name: str, repo: str, tag: str, *, target: str | None = None) -> Path:
        """Download, verify and install; returns the installed executable path."""
        asset = asset_for_target(plugin_name, target or host_target_triple())
        url = asset_download_url(self.url_template, repo, tag, asset.archive_name)
        logger.info("Fetching {}", url)

        self.install_dir.mkdir(parents=True, exist_ok=True)
        with tempfile.TemporaryDirectory(prefix="plughost-fetch-") as tmp:
            archive = Path(tmp) / asset.archive_name
            if self._client is not None:
                self._download(self._client, url, archive)
            else:
                with httpx.Client(follow_redirects=True, timeout=_DOWNLOAD_TIMEOUT) as client:
                    self._download(client, url, archive)
            payload = _extract_single_entry(archive, asset.archive_name, plugin_name)

        dest = self.install_dir / plugin_name
        fd, staging = tempfile.mkstemp(prefix=f".{plugin_name}-", dir=self.install_dir)
        try:
            with os.fdopen(fd, "wb") as fh:
                fh.write(payload)
            os.chmod(staging, 0o755)
            os.replace(staging, dest)
        except BaseException:
            Path(staging).unlink(missing_ok=True)
            raise
        logger.info("Installed {} ({} bytes) to {}", plugin_name, len(payload), dest)
        return dest
