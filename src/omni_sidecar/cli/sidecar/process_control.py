"""Spawning and probing the sidecar process.

Design goals:
- The sidecar outlives the command that started it (new session, no pipes).
- Only signal processes we started (tracked by pid + create_time).
- Liveness is always re-probed, never assumed from stored state.

Residual risk: a pid is only meaningful while the OS has not recycled it.
When the create time could not be recorded, a recycled pid is
indistinguishable from our sidecar and the signal-0 probe will report it
alive.
"""

from __future__ import annotations

import os
import re
import subprocess
from collections.abc import Callable, Mapping
from pathlib import Path

import psutil

from omni_sidecar.cli.sidecar.logging import SidecarLogComponent, get_logger
from omni_sidecar.utils import ensure_dir

logger = get_logger(SidecarLogComponent.PROCESS_CONTROL)

KillFn = Callable[[int, int], None]

_VERSION_PATTERN = re.compile(r"version\s+v?(\S+)", re.IGNORECASE)


def spawn_sidecar(
    executable: Path,
    args: list[str],
    env: Mapping[str, str],
    log_file: Path,
) -> int:
    """Start the sidecar detached from our session with output in log_file.

    Returns the child's pid. The Popen handle is dropped on purpose so
    nothing ties our exit to the child.
    """
    ensure_dir(log_file.parent)
    popen_kwargs: dict[str, object] = {}
    if os.name == "nt":
        popen_kwargs["creationflags"] = subprocess.CREATE_NEW_PROCESS_GROUP  # type: ignore[attr-defined]
    else:
        popen_kwargs["start_new_session"] = True

    with open(log_file, "ab") as log_fd:
        proc = subprocess.Popen(
            [str(executable), *args],
            env=dict(env),
            stdin=subprocess.DEVNULL,
            stdout=log_fd,
            stderr=log_fd,
            close_fds=True,
            **popen_kwargs,  # type: ignore[arg-type]
        )
    logger.debug(f"Spawned {executable} pid={proc.pid}")
    return proc.pid


def process_create_time(pid: int) -> float | None:
    """Record when pid started, or None if it is already gone."""
    try:
        return float(psutil.Process(pid).create_time())
    except (psutil.NoSuchProcess, psutil.AccessDenied, psutil.ZombieProcess):
        return None


def is_recycled(pid: int, create_time: float | None) -> bool:
    """True if a live process holds pid but is not the one we started."""
    if create_time is None:
        return False
    try:
        current = float(psutil.Process(pid).create_time())
    except (psutil.NoSuchProcess, psutil.AccessDenied):
        return False
    return abs(current - create_time) > 0.001


def _is_zombie(pid: int) -> bool:
    try:
        return psutil.Process(pid).status() == psutil.STATUS_ZOMBIE
    except (psutil.NoSuchProcess, psutil.AccessDenied):
        return False


def probe_liveness(pid: int, kill: KillFn = os.kill) -> bool:
    """Send signal 0 to pid; a missing process means it has exited.

    A permission error still proves the pid exists. Zombies count as exited.
    """
    try:
        kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        return True
    if kill is os.kill and _is_zombie(pid):
        return False
    return True


def detect_binary_version(executable: Path, timeout: float = 10.0) -> str | None:
    """Ask the binary for its version (``omni-cache version 0.9.0-808310f``)."""
    try:
        result = subprocess.run(
            [str(executable), "--version"],
            capture_output=True,
            text=True,
            timeout=timeout,
        )
    except (OSError, subprocess.SubprocessError) as e:
        logger.debug(f"Could not query omni-cache version: {e}")
        return None
    if result.returncode != 0:
        return None
    match = _VERSION_PATTERN.search(result.stdout or "")
    return match.group(1) if match else None
