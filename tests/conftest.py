from __future__ import annotations

import logging
import os
from collections.abc import Iterator
from pathlib import Path

import httpx
import pytest

from omni_sidecar.cli.sidecar import logging as sidecar_logging
from omni_sidecar.cli.sidecar.logging import SidecarLogComponent, get_logger
from omni_sidecar.cli.sidecar.runtime import ActionsRuntime

STARTED_LINE = (
    'time=2026-01-30T12:34:56Z level=INFO msg="omni-cache started" '
    "addr=127.0.0.1:12321 socket=/home/user/.cirruslabs/omni-cache.sock bucket=test-bucket"
)

_RUNNER_FILES = {
    "GITHUB_STATE": "state",
    "GITHUB_OUTPUT": "output",
    "GITHUB_ENV": "env",
    "GITHUB_PATH": "path",
    "GITHUB_STEP_SUMMARY": "summary.md",
}


def parse_file_commands(text: str) -> dict[str, str]:
    """Parse ``key<<delimiter`` records; later records win."""
    values: dict[str, str] = {}
    lines = text.splitlines()
    i = 0
    while i < len(lines):
        key, _, delimiter = lines[i].partition("<<")
        i += 1
        body: list[str] = []
        while lines[i] != delimiter:
            body.append(lines[i])
            i += 1
        i += 1
        values[key] = "\n".join(body)
    return values


class ActionsFiles:
    """Environment files of a fake GitHub Actions runner."""

    def __init__(self, root: Path):
        self.root: Path = root
        self.environ: dict[str, str] = {"GITHUB_ACTIONS": "true", "PATH": "/usr/bin"}
        for var, name in _RUNNER_FILES.items():
            path = root / name
            path.touch()
            self.environ[var] = str(path)

    def read(self, var: str) -> dict[str, str]:
        return parse_file_commands(Path(self.environ[var]).read_text())

    def text(self, var: str) -> str:
        return Path(self.environ[var]).read_text()

    def runtime(self) -> ActionsRuntime:
        return ActionsRuntime.from_env(environ=self.environ)

    def post_runtime(self) -> ActionsRuntime:
        """Runtime of the post step, seeing the main step's saved state."""
        environ = dict(self.environ)
        for key, value in self.read("GITHUB_STATE").items():
            environ[f"STATE_{key}"] = value
        return ActionsRuntime.from_env(environ=environ)


@pytest.fixture
def actions(tmp_path: Path) -> ActionsFiles:
    root = tmp_path / "runner"
    root.mkdir()
    return ActionsFiles(root)


def mock_client(handler) -> httpx.Client:
    return httpx.Client(transport=httpx.MockTransport(handler))


@pytest.fixture(autouse=True)
def isolate_host_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    """Never write to a real runner's files when the suite itself runs in CI."""
    for var in list(os.environ):
        if var.startswith(("GITHUB_", "INPUT_", "STATE_", "OMNI_CACHE_")):
            monkeypatch.delenv(var, raising=False)


@pytest.fixture(autouse=True)
def reset_sidecar_logging() -> Iterator[None]:
    yield
    for component in SidecarLogComponent:
        logger = get_logger(component)
        logger.handlers.clear()
        logger.setLevel(logging.NOTSET)
        logger.propagate = True
    sidecar_logging._STATE.configured = False
    sidecar_logging._STATE.workflow_commands = False
