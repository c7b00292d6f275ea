"""Start/stop commands for the omni-sidecar CLI."""

from pathlib import Path
from typing import Annotated

from pydantic import ValidationError
from typer import Exit, Option

from omni_sidecar.cli.sidecar.logging import configure_logging
from omni_sidecar.cli.sidecar.runtime import ActionsRuntime
from omni_sidecar.cli.sidecar.shutdown import ShutdownCoordinator, run_stop
from omni_sidecar.cli.sidecar.startup import StartupCoordinator
from omni_sidecar.constants import (
    DISCOVERY_ATTEMPTS,
    DISCOVERY_INTERVAL,
    HEALTH_ATTEMPTS,
    HEALTH_INTERVAL,
    SHUTDOWN_TIMEOUT,
)
from omni_sidecar.install import BinaryResolver
from omni_sidecar.models import PollSettings, SidecarConfig


def _validation_message(error: ValidationError) -> str:
    first = error.errors()[0]
    return str(first.get("msg", error)).removeprefix("Value error, ")


def start(
    bucket: Annotated[
        str, Option(envvar="INPUT_BUCKET", help="Bucket backing the cache")
    ] = "",
    prefix: Annotated[
        str, Option(envvar="INPUT_PREFIX", help="Key prefix inside the bucket")
    ] = "",
    host: Annotated[
        str,
        Option(envvar="INPUT_HOST", help="Address the sidecar should listen on"),
    ] = "",
    s3_endpoint: Annotated[
        str,
        Option(
            "--s3-endpoint",
            envvar="INPUT_S3-ENDPOINT",
            help="Custom S3-compatible storage endpoint",
        ),
    ] = "",
    version: Annotated[
        str,
        Option(
            "--version",
            envvar="INPUT_VERSION",
            help="omni-cache version to install (e.g. v0.7.0 or latest)",
        ),
    ] = "",
    log_file: Annotated[
        Path | None, Option(help="File receiving the sidecar's stdout/stderr")
    ] = None,
    discovery_attempts: Annotated[
        int, Option(min=0, help="Log polls for the listen address (0 disables)")
    ] = DISCOVERY_ATTEMPTS,
    discovery_interval: Annotated[
        float, Option(min=0.0, help="Seconds between log polls")
    ] = DISCOVERY_INTERVAL,
    health_attempts: Annotated[
        int, Option(min=1, help="Health probes before giving up")
    ] = HEALTH_ATTEMPTS,
    health_interval: Annotated[
        float, Option(min=0.0, help="Seconds between health probes")
    ] = HEALTH_INTERVAL,
    state_file: Annotated[
        Path | None,
        Option(help="Local state file used outside GitHub Actions"),
    ] = None,
    verbose: Annotated[bool, Option("--verbose", "-v", help="Debug output")] = False,
) -> None:
    """Install omni-cache, start it in the background and wait until it is healthy."""
    runtime = ActionsRuntime.from_env(state_file=state_file)
    configure_logging(workflow_commands=runtime.in_workflow, verbose=verbose)

    try:
        settings: dict[str, object] = {
            "bucket": bucket,
            "prefix": prefix,
            "host": host,
            "storage_endpoint": s3_endpoint,
            "version_spec": version,
            "discovery": PollSettings(
                attempts=discovery_attempts, interval=discovery_interval
            ),
            "health": PollSettings(attempts=health_attempts, interval=health_interval),
        }
        if log_file is not None:
            settings["log_file"] = log_file
        config = SidecarConfig.model_validate(settings)
    except ValidationError as e:
        runtime.set_failed(_validation_message(e))
        raise Exit(code=1)

    coordinator = StartupCoordinator(runtime, BinaryResolver())
    try:
        coordinator.start(config)
    except Exception as e:
        runtime.set_failed(str(e))
        raise Exit(code=1)


def stop(
    timeout: Annotated[
        float, Option(min=0.0, help="Seconds to wait after SIGTERM before SIGKILL")
    ] = SHUTDOWN_TIMEOUT,
    state_file: Annotated[
        Path | None,
        Option(help="Local state file used outside GitHub Actions"),
    ] = None,
    verbose: Annotated[bool, Option("--verbose", "-v", help="Debug output")] = False,
) -> None:
    """Print cache statistics and logs, then shut the sidecar down."""
    runtime = ActionsRuntime.from_env(state_file=state_file)
    configure_logging(workflow_commands=runtime.in_workflow, verbose=verbose)
    run_stop(runtime, coordinator=ShutdownCoordinator(timeout=timeout))
