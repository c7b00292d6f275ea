"""Stop phase: statistics, log surfacing and signal escalation."""

from __future__ import annotations

import os
import signal
import time
from collections.abc import Callable

import httpx

from omni_sidecar.cli.sidecar.logging import SidecarLogComponent, get_logger
from omni_sidecar.cli.sidecar.logs import display_logs
from omni_sidecar.cli.sidecar.process_control import (
    KillFn,
    is_recycled,
    probe_liveness,
)
from omni_sidecar.cli.sidecar.runtime import ActionsRuntime, FileStateStore
from omni_sidecar.cli.sidecar.stats import fetch_stats
from omni_sidecar.constants import (
    DEFAULT_HOST,
    SHUTDOWN_POLL_INTERVAL,
    SHUTDOWN_TIMEOUT,
    STATE_CREATE_TIME,
    STATE_HOST,
    STATE_LOG,
    STATE_PID,
)
from omni_sidecar.models import ShutdownOutcome

logger = get_logger(SidecarLogComponent.SHUTDOWN)

# POSIX only; the sidecar is not published for Windows.
_FORCE_SIGNAL = getattr(signal, "SIGKILL", signal.SIGTERM)


def parse_pid(value: str | None) -> int | None:
    if value is None:
        return None
    try:
        pid = int(value.strip())
    except ValueError:
        return None
    return pid if pid > 0 else None


def _parse_create_time(value: str) -> float | None:
    try:
        return float(value) if value else None
    except ValueError:
        return None


class ShutdownCoordinator:
    """SIGTERM, wait for the process to disappear, then SIGKILL.

    Each call produces exactly one ShutdownOutcome (or None when there was
    nothing valid to signal) and never raises.
    """

    def __init__(
        self,
        *,
        timeout: float = SHUTDOWN_TIMEOUT,
        poll_interval: float = SHUTDOWN_POLL_INTERVAL,
        kill: KillFn = os.kill,
        probe: Callable[[int], bool] | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.timeout: float = timeout
        self.poll_interval: float = poll_interval
        self._kill: KillFn = kill
        self._probe: Callable[[int], bool] = probe or (
            lambda pid: probe_liveness(pid, kill=self._kill)
        )
        self._sleep: Callable[[float], None] = sleep

    def shutdown(
        self, pid: int | None, create_time: float | None = None
    ) -> ShutdownOutcome | None:
        if pid is None:
            logger.warning("No valid PID found for omni-cache")
            return None

        if is_recycled(pid, create_time):
            logger.info(
                f"omni-cache process already terminated (PID {pid} now belongs to another process)"
            )
            return ShutdownOutcome.ALREADY_TERMINATED

        logger.info(f"Shutting down omni-cache (PID: {pid})...")

        try:
            self._kill(pid, signal.SIGTERM)
        except ProcessLookupError:
            logger.info("omni-cache process already terminated")
            return ShutdownOutcome.ALREADY_TERMINATED
        except OSError as e:
            logger.warning(f"Error shutting down omni-cache: {e}")
            return None

        waited = 0.0
        while waited < self.timeout:
            if not self._probe(pid):
                logger.info("omni-cache shutdown complete")
                return ShutdownOutcome.GRACEFUL_EXIT
            self._sleep(self.poll_interval)
            waited += self.poll_interval

        logger.warning("omni-cache did not respond to SIGTERM, sending SIGKILL")
        try:
            self._kill(pid, _FORCE_SIGNAL)
        except OSError:
            # Exited between the last probe and the kill.
            pass
        return ShutdownOutcome.FORCED_EXIT


def run_stop(
    runtime: ActionsRuntime,
    *,
    coordinator: ShutdownCoordinator | None = None,
    http_client: httpx.Client | None = None,
) -> ShutdownOutcome | None:
    """Post-job cleanup; never fails the surrounding workflow."""
    try:
        pid_str = runtime.load_state(STATE_PID)
        host = runtime.load_state(STATE_HOST) or DEFAULT_HOST
        log_file = runtime.load_state(STATE_LOG)

        if not pid_str:
            logger.info("No omni-cache process to clean up")
            return None

        # Reporting is best-effort; the process must be stopped regardless.
        try:
            fetch_stats(host, client=http_client, runtime=runtime)
        except Exception as e:
            logger.warning(f"Could not report cache statistics: {e}")
        try:
            display_logs(log_file)
        except Exception as e:
            logger.warning(f"Could not display omni-cache logs: {e}")

        coordinator = coordinator or ShutdownCoordinator()
        outcome = coordinator.shutdown(
            parse_pid(pid_str),
            _parse_create_time(runtime.load_state(STATE_CREATE_TIME)),
        )
        if isinstance(runtime.state, FileStateStore):
            runtime.state.clear()
        return outcome
    except Exception as e:
        logger.warning(f"Post action error: {e}")
        return None
