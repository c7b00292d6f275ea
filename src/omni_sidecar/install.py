"""Fetching the omni-cache binary into a local tool cache."""

from __future__ import annotations

import os
import shutil
import tempfile
from collections.abc import Callable
from datetime import datetime, timezone
from pathlib import Path

import httpx

from omni_sidecar.cli.sidecar.logging import SidecarLogComponent, get_logger
from omni_sidecar.constants import TOOL_NAME
from omni_sidecar.errors import DownloadError
from omni_sidecar.models import ResolvedBinary
from omni_sidecar.platform import binary_identifier, download_url, get_arch
from omni_sidecar.utils import ensure_dir

logger = get_logger(SidecarLogComponent.INSTALL)

DOWNLOAD_TIMEOUT = 120.0


def default_tool_cache() -> Path:
    runner_cache = os.environ.get("RUNNER_TOOL_CACHE")
    if runner_cache:
        return Path(runner_cache)
    return Path.home() / ".cache" / "omni-cache-sidecar" / "tools"


class BinaryResolver:
    """Turns a version specifier into a local executable.

    Pinned versions are reused from the tool cache; ``latest`` is downloaded
    every time because it cannot be matched against a cached version.
    """

    def __init__(
        self,
        tool_cache: Path | None = None,
        client: httpx.Client | None = None,
        identifier: Callable[[], str] = binary_identifier,
        today: Callable[[], str] | None = None,
    ):
        self.tool_cache: Path = tool_cache or default_tool_cache()
        self._client: httpx.Client | None = client
        self._identifier: Callable[[], str] = identifier
        self._today: Callable[[], str] = today or (
            lambda: datetime.now(timezone.utc).strftime("%Y-%m-%d")
        )

    def _cache_dir(self, version: str) -> Path:
        return self.tool_cache / TOOL_NAME / version / get_arch()

    def find_cached(self, version: str, binary_name: str) -> Path | None:
        cache_dir = self._cache_dir(version)
        marker = cache_dir.parent / f"{cache_dir.name}.complete"
        binary = cache_dir / binary_name
        if marker.exists() and binary.exists():
            return binary
        return None

    def _download(self, url: str, dest: Path) -> None:
        client = self._client or httpx.Client(
            timeout=DOWNLOAD_TIMEOUT, follow_redirects=True
        )
        try:
            with client.stream("GET", url) as response:
                response.raise_for_status()
                with open(dest, "wb") as fh:
                    for chunk in response.iter_bytes():
                        fh.write(chunk)
        except (httpx.HTTPError, OSError) as e:
            raise DownloadError(url, str(e)) from e
        finally:
            if self._client is None:
                client.close()

    def resolve(self, version_spec: str) -> ResolvedBinary:
        binary_name = self._identifier()

        if version_spec != "latest":
            cached = self.find_cached(version_spec, binary_name)
            if cached is not None:
                logger.info(f"Found cached omni-cache {version_spec} at {cached.parent}")
                return ResolvedBinary(
                    path=cached, version=version_spec, directory=cached.parent
                )

        url = download_url(version_spec, binary_name)
        logger.info(f"Downloading omni-cache from {url}")

        with tempfile.TemporaryDirectory(prefix="omni-cache-install-") as tmp:
            downloaded = Path(tmp) / binary_name
            self._download(url, downloaded)
            if os.name != "nt":
                downloaded.chmod(0o755)

            resolved_version = version_spec
            if version_spec == "latest":
                resolved_version = f"latest-{self._today()}"

            cache_dir = self._cache_dir(resolved_version)
            ensure_dir(cache_dir)
            final_path = cache_dir / binary_name
            shutil.move(str(downloaded), final_path)
            (cache_dir.parent / f"{cache_dir.name}.complete").touch()

        logger.info(f"omni-cache installed to {final_path}")
        return ResolvedBinary(path=final_path, version=resolved_version, directory=cache_dir)
