"""Centralized logging for the sidecar commands (routing and CLI formatting).

Under GitHub Actions records are rendered as workflow commands so warnings
and debug lines show up as annotations; elsewhere they go through the rich
console with a per-component prefix.
"""

from __future__ import annotations

import contextlib
import logging
import sys
from collections.abc import Generator
from enum import Enum
from typing import ClassVar

from pydantic import BaseModel, ConfigDict
from typing_extensions import override

from omni_sidecar.utils import PrefixedLogHandler, console

ROOT_LOGGER_NAME = "omni_sidecar"


class SidecarLogComponent(str, Enum):
    """Where a log originated (used for prefixes and per-component loggers)."""

    INSTALL = "install"
    STARTUP = "startup"
    PROCESS_CONTROL = "process_control"
    STATS = "stats"
    SHUTDOWN = "shutdown"
    RUNTIME = "runtime"


_COMPONENT_COLOR: dict[SidecarLogComponent, str] = {
    SidecarLogComponent.INSTALL: "magenta",
    SidecarLogComponent.STARTUP: "bright_blue",
    SidecarLogComponent.PROCESS_CONTROL: "cyan",
    SidecarLogComponent.STATS: "green",
    SidecarLogComponent.SHUTDOWN: "bright_blue",
    SidecarLogComponent.RUNTIME: "white",
}


class _SidecarLogState(BaseModel):
    model_config: ClassVar[ConfigDict] = ConfigDict(frozen=False)

    configured: bool = False
    workflow_commands: bool = False


_STATE = _SidecarLogState()


def escape_command_data(message: str) -> str:
    """Escape a message so it survives as workflow command data."""
    return message.replace("%", "%25").replace("\r", "%0D").replace("\n", "%0A")


class WorkflowCommandHandler(logging.Handler):
    """Render records as GitHub Actions workflow commands on stdout."""

    @override
    def emit(self, record: logging.LogRecord) -> None:
        try:
            msg = self.format(record)
            if record.levelno >= logging.ERROR:
                line = f"::error::{escape_command_data(msg)}"
            elif record.levelno >= logging.WARNING:
                line = f"::warning::{escape_command_data(msg)}"
            elif record.levelno <= logging.DEBUG:
                line = f"::debug::{escape_command_data(msg)}"
            else:
                line = msg
            sys.stdout.write(line + "\n")
            sys.stdout.flush()
        except Exception:
            self.handleError(record)


def configure_logging(*, workflow_commands: bool, verbose: bool = False) -> None:
    """Configure component loggers once per command invocation."""
    level = logging.DEBUG if verbose or workflow_commands else logging.INFO

    for component in SidecarLogComponent:
        logger = logging.getLogger(f"{ROOT_LOGGER_NAME}.{component.value}")
        logger.setLevel(level)
        logger.handlers.clear()
        if workflow_commands:
            handler: logging.Handler = WorkflowCommandHandler()
        else:
            handler = PrefixedLogHandler(
                component.value, _COMPONENT_COLOR[component], width=15
            )
        handler.setFormatter(logging.Formatter("%(message)s"))
        logger.addHandler(handler)
        logger.propagate = False

    _STATE.workflow_commands = workflow_commands
    _STATE.configured = True


def get_logger(component: SidecarLogComponent) -> logging.Logger:
    """Get the logger for a component (do not call stdlib logging directly)."""
    return logging.getLogger(f"{ROOT_LOGGER_NAME}.{component.value}")


@contextlib.contextmanager
def log_group(title: str) -> Generator[None, None, None]:
    """Fold everything printed inside the block under a collapsible title."""
    if _STATE.workflow_commands:
        sys.stdout.write(f"::group::{title}\n")
        sys.stdout.flush()
        try:
            yield
        finally:
            sys.stdout.write("::endgroup::\n")
            sys.stdout.flush()
        return

    console.rule(f"[bold]{title}[/bold]")
    try:
        yield
    finally:
        console.rule()
