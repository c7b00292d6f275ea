"""Sidecar lifecycle commands for the omni-sidecar CLI."""

from omni_sidecar.cli.sidecar.address import normalize_address
from omni_sidecar.cli.sidecar.logs import extract_address
from omni_sidecar.cli.sidecar.runtime import ActionsRuntime
from omni_sidecar.cli.sidecar.shutdown import ShutdownCoordinator, run_stop
from omni_sidecar.cli.sidecar.startup import StartupCoordinator
from omni_sidecar.cli.sidecar.stats import fetch_stats

__all__ = [
    "ActionsRuntime",
    "ShutdownCoordinator",
    "StartupCoordinator",
    "extract_address",
    "fetch_stats",
    "normalize_address",
    "run_stop",
]
