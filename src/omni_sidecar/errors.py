"""Exceptions raised by omni-sidecar."""


class SidecarError(Exception):
    """Base class for sidecar lifecycle failures."""


class DownloadError(SidecarError):
    """The sidecar binary could not be fetched."""

    def __init__(self, url: str, reason: str):
        super().__init__(f"Failed to download omni-cache from {url}: {reason}")
        self.url: str = url


class UnsupportedPlatformError(SidecarError):
    """The current OS or CPU architecture has no published binary."""


class HealthCheckError(SidecarError):
    """The sidecar never answered its health endpoint."""

    def __init__(self, attempts: int):
        super().__init__(
            f"omni-cache failed to become healthy after {attempts} attempts"
        )
        self.attempts: int = attempts
