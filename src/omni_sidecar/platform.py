"""Mapping the running platform onto published omni-cache binary names."""

from __future__ import annotations

import platform as _platform

from omni_sidecar.constants import RELEASES_URL, TOOL_NAME
from omni_sidecar.errors import UnsupportedPlatformError

_PLATFORMS: dict[str, str] = {
    "darwin": "darwin",
    "linux": "linux",
    "freebsd": "freebsd",
    "netbsd": "netbsd",
    "openbsd": "openbsd",
}

_ARCHITECTURES: dict[str, str] = {
    "x86_64": "amd64",
    "amd64": "amd64",
    "x64": "amd64",
    "arm64": "arm64",
    "aarch64": "arm64",
    "arm": "arm",
    "armv6l": "arm",
    "armv7l": "arm",
    "s390x": "s390x",
}


def get_platform(system: str | None = None) -> str:
    system = (system if system is not None else _platform.system()).lower()
    mapped = _PLATFORMS.get(system)
    if mapped is None:
        raise UnsupportedPlatformError(
            f"Unsupported platform: {system}. omni-cache supports: "
            + ", ".join(_PLATFORMS)
        )
    return mapped


def get_arch(machine: str | None = None) -> str:
    machine = (machine if machine is not None else _platform.machine()).lower()
    mapped = _ARCHITECTURES.get(machine)
    if mapped is None:
        raise UnsupportedPlatformError(
            f"Unsupported architecture: {machine}. omni-cache supports: "
            "x86_64 (amd64), arm64, arm, s390x"
        )
    return mapped


def binary_identifier(system: str | None = None, machine: str | None = None) -> str:
    """Name of the release asset for this host, e.g. ``omni-cache-linux-amd64``."""
    return f"{TOOL_NAME}-{get_platform(system)}-{get_arch(machine)}"


def download_url(version: str, identifier: str) -> str:
    if version == "latest":
        return f"{RELEASES_URL}/latest/download/{identifier}"
    return f"{RELEASES_URL}/download/{version}/{identifier}"
