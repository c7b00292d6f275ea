"""Hosting environment plumbing: phase state, outputs and exported variables.

Under GitHub Actions every value goes through the runner's environment files
(``GITHUB_STATE``, ``GITHUB_OUTPUT``, ``GITHUB_ENV``, ``GITHUB_PATH`` and
``GITHUB_STEP_SUMMARY``); the state saved by the start phase comes back to
the stop phase as ``STATE_<key>`` variables. Outside a runner, state lives
in a local JSON file and outputs are printed.
"""

from __future__ import annotations

import os
import tempfile
import uuid
from collections.abc import Mapping, MutableMapping
from pathlib import Path
from typing import Protocol

from pydantic import BaseModel, Field

from omni_sidecar.constants import STATE_FILE_NAME
from omni_sidecar.cli.sidecar.logging import SidecarLogComponent, get_logger
from omni_sidecar.utils import console, ensure_dir

logger = get_logger(SidecarLogComponent.RUNTIME)


class StateStore(Protocol):
    """Key/value channel between the start and stop phases."""

    def save(self, key: str, value: str) -> None: ...

    def load(self, key: str) -> str: ...


def _file_command_record(key: str, value: str) -> str:
    delimiter = f"ghadelimiter_{uuid.uuid4()}"
    if delimiter in key or delimiter in value:
        raise ValueError("Unexpected input: value should not contain the delimiter")
    return f"{key}<<{delimiter}\n{value}\n{delimiter}\n"


def _append(path: str | os.PathLike[str], text: str) -> None:
    with open(path, "a", encoding="utf-8") as fh:
        fh.write(text)


class ActionsStateStore:
    """State kept by the runner between the main and post steps."""

    def __init__(self, state_file: Path, environ: Mapping[str, str] | None = None):
        self.state_file: Path = state_file
        self._environ: Mapping[str, str] = os.environ if environ is None else environ
        self._written: dict[str, str] = {}

    def save(self, key: str, value: str) -> None:
        _append(self.state_file, _file_command_record(key, value))
        self._written[key] = value

    def load(self, key: str) -> str:
        if key in self._written:
            return self._written[key]
        return self._environ.get(f"STATE_{key}", "")


class _StateFileModel(BaseModel):
    values: dict[str, str] = Field(default_factory=dict)


class FileStateStore:
    """State persisted to a JSON file for runs outside a CI runner."""

    def __init__(self, path: Path):
        self.path: Path = path

    def _read(self) -> _StateFileModel:
        if not self.path.exists():
            return _StateFileModel()
        try:
            return _StateFileModel.model_validate_json(self.path.read_text())
        except ValueError as e:
            logger.warning(f"Ignoring unreadable state file {self.path}: {e}")
            return _StateFileModel()

    def save(self, key: str, value: str) -> None:
        model = self._read()
        model.values[key] = value
        ensure_dir(self.path.parent)
        self.path.write_text(model.model_dump_json(indent=2))

    def load(self, key: str) -> str:
        return self._read().values.get(key, "")

    def clear(self) -> None:
        self.path.unlink(missing_ok=True)


def default_state_file() -> Path:
    return Path(tempfile.gettempdir()) / STATE_FILE_NAME


class ActionsRuntime:
    """Opaque key/value plumbing towards the hosting environment."""

    def __init__(
        self,
        state: StateStore,
        environ: MutableMapping[str, str] | None = None,
    ):
        self.state: StateStore = state
        self.environ: MutableMapping[str, str] = (
            os.environ if environ is None else environ
        )

    @classmethod
    def from_env(
        cls,
        environ: MutableMapping[str, str] | None = None,
        state_file: Path | None = None,
    ) -> ActionsRuntime:
        """Pick the runner-backed state store when running inside a workflow."""
        env = os.environ if environ is None else environ
        if env.get("GITHUB_STATE"):
            store: StateStore = ActionsStateStore(Path(env["GITHUB_STATE"]), env)
        else:
            store = FileStateStore(state_file or default_state_file())
        return cls(store, env)

    @property
    def in_workflow(self) -> bool:
        return self.environ.get("GITHUB_ACTIONS") == "true" or bool(
            self.environ.get("GITHUB_STATE")
        )

    # === State ===

    def save_state(self, key: str, value: str) -> None:
        self.state.save(key, value)

    def load_state(self, key: str) -> str:
        return self.state.load(key)

    # === Outputs ===

    def set_output(self, name: str, value: str) -> None:
        output_file = self.environ.get("GITHUB_OUTPUT")
        if output_file:
            _append(output_file, _file_command_record(name, value))
        else:
            console.print(f"[cyan]{name}[/cyan]={value}", highlight=False)

    def export_variable(self, name: str, value: str) -> None:
        """Make a variable visible to this process and to later workflow steps."""
        self.environ[name] = value
        env_file = self.environ.get("GITHUB_ENV")
        if env_file:
            _append(env_file, _file_command_record(name, value))
        else:
            console.print(f"export {name}={value}", highlight=False, markup=False)

    def add_path(self, directory: Path) -> None:
        path_file = self.environ.get("GITHUB_PATH")
        if path_file:
            _append(path_file, f"{directory}\n")
        current = self.environ.get("PATH", "")
        self.environ["PATH"] = (
            f"{directory}{os.pathsep}{current}" if current else str(directory)
        )

    def append_summary(self, markdown: str) -> bool:
        """Append to the job summary; returns False when there is none."""
        summary_file = self.environ.get("GITHUB_STEP_SUMMARY")
        if not summary_file:
            return False
        _append(summary_file, markdown if markdown.endswith("\n") else markdown + "\n")
        return True

    def set_failed(self, message: str) -> None:
        """Report the phase's single terminal failure."""
        logger.error(message)


def markdown_table(header: tuple[str, str], rows: list[tuple[str, str]]) -> str:
    lines = [f"| {header[0]} | {header[1]} |", "| --- | --- |"]
    lines += [f"| {metric} | {value} |" for metric, value in rows]
    return "\n".join(lines) + "\n"
