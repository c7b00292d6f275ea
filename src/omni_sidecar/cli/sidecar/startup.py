"""Start phase: resolve, spawn, discover the bind address, wait for health.

Every step runs sequentially; the two polling loops sleep between attempts
and cannot be interrupted once started. Anything persisted to the state
store before a failure stays there so the stop phase can still clean up.
"""

from __future__ import annotations

import os
import time
from collections.abc import Callable, Mapping
from pathlib import Path
from typing import Protocol

import httpx

from omni_sidecar.cli.sidecar.address import base_url, normalize_address
from omni_sidecar.cli.sidecar.logging import SidecarLogComponent, get_logger
from omni_sidecar.cli.sidecar.logs import display_logs, extract_address, read_log
from omni_sidecar.cli.sidecar.process_control import (
    detect_binary_version,
    process_create_time,
    spawn_sidecar,
)
from omni_sidecar.cli.sidecar.runtime import ActionsRuntime
from omni_sidecar.constants import (
    ENV_ADDRESS,
    HEALTH_PATH,
    HTTP_TIMEOUT,
    OUTPUT_ADDRESS,
    OUTPUT_ENDPOINT,
    OUTPUT_SOCKET,
    OUTPUT_VERSION,
    SOCKET_DIR_NAME,
    SOCKET_FILE_NAME,
    STATE_CREATE_TIME,
    STATE_HOST,
    STATE_LOG,
    STATE_PID,
)
from omni_sidecar.errors import HealthCheckError
from omni_sidecar.models import (
    HealthState,
    PollSettings,
    ProcessHandle,
    ResolvedBinary,
    SidecarConfig,
    StartResult,
)

logger = get_logger(SidecarLogComponent.STARTUP)

Spawner = Callable[[Path, list[str], Mapping[str, str], Path], int]


class Resolver(Protocol):
    def resolve(self, version_spec: str) -> ResolvedBinary: ...


def sidecar_socket_path(home: Path | None = None) -> Path:
    """Where the sidecar binds its unix socket; we never create it."""
    return (home or Path.home()) / SOCKET_DIR_NAME / SOCKET_FILE_NAME


class StartupCoordinator:
    """Brings the sidecar up and publishes how to reach it."""

    def __init__(
        self,
        runtime: ActionsRuntime,
        resolver: Resolver,
        *,
        spawner: Spawner = spawn_sidecar,
        http_client: httpx.Client | None = None,
        sleep: Callable[[float], None] = time.sleep,
        version_probe: Callable[[Path], str | None] = detect_binary_version,
        base_env: Mapping[str, str] | None = None,
        home: Path | None = None,
    ):
        self.runtime: ActionsRuntime = runtime
        self._resolver: Resolver = resolver
        self._spawner: Spawner = spawner
        self._http_client: httpx.Client | None = http_client
        self._sleep: Callable[[float], None] = sleep
        self._version_probe: Callable[[Path], str | None] = version_probe
        self._base_env: Mapping[str, str] = (
            os.environ if base_env is None else base_env
        )
        self._home: Path | None = home
        self.health: HealthState = HealthState.UNKNOWN

    def start(self, config: SidecarConfig) -> StartResult:
        logger.info(f"Setting up omni-cache {config.version_spec}...")
        binary = self._resolver.resolve(config.version_spec)
        if binary.directory is not None:
            self.runtime.add_path(binary.directory)

        handle = self.launch(binary, config)

        address = self.discover_address(config)
        if address:
            self.runtime.save_state(STATE_HOST, address)

        self.wait_for_healthy(address or config.host, config.health, config.log_file)

        version = self._version_probe(binary.path) or binary.version
        result = StartResult(
            address=address,
            socket_path=sidecar_socket_path(self._home),
            version=version,
            process=handle,
            health=self.health,
        )
        self.publish(result)
        return result

    def launch(self, binary: ResolvedBinary, config: SidecarConfig) -> ProcessHandle:
        """Spawn the sidecar and persist its handle before anything else."""
        env = {**self._base_env, **config.sidecar_env()}

        logger.info("Starting omni-cache sidecar...")
        pid = self._spawner(binary.path, config.sidecar_args(), env, config.log_file)

        self.runtime.save_state(STATE_PID, str(pid))
        self.runtime.save_state(STATE_HOST, config.host)
        self.runtime.save_state(STATE_LOG, str(config.log_file))
        logger.info(f"omni-cache started with PID {pid}")

        create_time = process_create_time(pid)
        if create_time is not None:
            self.runtime.save_state(STATE_CREATE_TIME, repr(create_time))
        return ProcessHandle(pid=pid, log_file=config.log_file, create_time=create_time)

    def discover_address(self, config: SidecarConfig) -> str:
        """Poll the log for the address the sidecar actually bound.

        Falls back to the configured host when no announcement shows up.
        """
        settings = config.discovery
        for attempt in range(1, settings.attempts + 1):
            address = normalize_address(extract_address(read_log(config.log_file)))
            if address:
                logger.info(f"omni-cache reported listen address {address}")
                return address
            if attempt < settings.attempts:
                self._sleep(settings.interval)

        fallback = normalize_address(config.host)
        if settings.attempts:
            logger.warning(
                f"Could not find omni-cache listen address in logs after "
                f"{settings.attempts} attempts, using {fallback or config.host!r}"
            )
        return fallback

    def wait_for_healthy(
        self, target: str, settings: PollSettings, log_file: Path | None = None
    ) -> None:
        url = f"{base_url(normalize_address(target) or target)}{HEALTH_PATH}"
        client = self._http_client or httpx.Client(timeout=HTTP_TIMEOUT)
        try:
            for attempt in range(1, settings.attempts + 1):
                try:
                    response = client.get(url)
                    if response.is_success:
                        self.health = HealthState.HEALTHY
                        logger.info(f"omni-cache is healthy after {attempt} attempt(s)")
                        return
                    logger.debug(
                        f"Health check attempt {attempt}/{settings.attempts}: "
                        f"HTTP {response.status_code}"
                    )
                except (httpx.HTTPError, httpx.InvalidURL) as e:
                    logger.debug(
                        f"Health check attempt {attempt}/{settings.attempts} failed: {e}"
                    )
                if attempt < settings.attempts:
                    self._sleep(settings.interval)
        finally:
            if self._http_client is None:
                client.close()

        self.health = HealthState.FAILED
        display_logs(log_file)
        raise HealthCheckError(settings.attempts)

    def publish(self, result: StartResult) -> None:
        if result.address:
            self.runtime.set_output(OUTPUT_ADDRESS, result.address)
            self.runtime.set_output(OUTPUT_ENDPOINT, base_url(result.address))
            self.runtime.export_variable(ENV_ADDRESS, result.address)
        else:
            logger.warning(
                f"No omni-cache address could be resolved; not exporting {ENV_ADDRESS}"
            )
        self.runtime.set_output(OUTPUT_SOCKET, str(result.socket_path))
        self.runtime.set_output(OUTPUT_VERSION, result.version)

        logger.info("omni-cache is ready!")
        if result.address:
            logger.info(f"  HTTP endpoint: {base_url(result.address)}")
        logger.info(f"  Unix socket: {result.socket_path}")
