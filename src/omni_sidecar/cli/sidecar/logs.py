"""Reading the sidecar's log file: address discovery and log surfacing."""

from __future__ import annotations

import json
import re
from pathlib import Path

from omni_sidecar.constants import STARTUP_MARKER
from omni_sidecar.cli.sidecar.logging import (
    SidecarLogComponent,
    get_logger,
    log_group,
)

logger = get_logger(SidecarLogComponent.STARTUP)

# addr="1.2.3.4:5" or addr=1.2.3.4:5
_ADDR_TOKEN = re.compile(r'(?:^|\s)addr=(?:"([^"]*)"|(\S+))')


def _address_from_json(line: str) -> str | None:
    try:
        record = json.loads(line)
    except ValueError:
        return None
    if not isinstance(record, dict):
        return None
    if record.get("msg") != STARTUP_MARKER:
        return None
    addr = record.get("addr")
    if addr is None:
        return None
    return str(addr)


def _address_from_text(line: str) -> str | None:
    match = _ADDR_TOKEN.search(line)
    if match is None:
        return None
    return match.group(1) if match.group(1) is not None else match.group(2)


def extract_address(log_text: str) -> str:
    """Return the address from the newest startup announcement, or ``""``.

    Both structured JSON lines and ``key=value`` lines are understood; a line
    that looks like JSON but does not parse falls back to the text pattern.
    """
    for raw in reversed(log_text.splitlines()):
        line = raw.strip()
        if STARTUP_MARKER not in line:
            continue

        address = None
        if line.startswith("{"):
            address = _address_from_json(line)
        if address is None:
            address = _address_from_text(line)
        if address:
            return address
    return ""


def read_log(log_file: Path | str | None) -> str:
    """Snapshot the whole log file; missing or unreadable files read as empty."""
    if not log_file:
        return ""
    try:
        return Path(log_file).read_text(encoding="utf-8", errors="replace")
    except OSError as e:
        logger.debug(f"Could not read log file: {e}")
        return ""


def display_logs(log_file: Path | str | None, title: str = "omni-cache logs") -> None:
    """Surface the log file inside a collapsible group if it has content."""
    logs = read_log(log_file)
    if not logs.strip():
        return
    with log_group(title):
        logger.info(logs.rstrip("\n"))
