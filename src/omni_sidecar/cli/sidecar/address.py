"""Canonical host:port handling for user input and log-derived addresses."""

from __future__ import annotations

from urllib.parse import urlsplit

_SCHEMES = ("http://", "https://")


def normalize_address(host_or_url: str | None) -> str:
    """Collapse a host or URL into ``host:port``.

    Bare values are returned trimmed, URLs lose their scheme and path, and
    blank input yields an empty string.
    """
    value = (host_or_url or "").strip()
    if not value:
        return ""

    lowered = value.lower()
    scheme = next((s for s in _SCHEMES if lowered.startswith(s)), None)
    if scheme is None:
        return value

    try:
        netloc = urlsplit(value).netloc
    except ValueError:
        netloc = ""
    if netloc:
        return netloc

    # Unparsable URL: drop the scheme textually.
    return value[len(scheme) :].split("/", 1)[0]


def base_url(host: str) -> str:
    """Return an http base URL for a host, honouring an explicit scheme."""
    host = host.strip().rstrip("/")
    if host.lower().startswith(_SCHEMES):
        return host
    return f"http://{host}"
