"""Tests for the start phase coordinator."""

from __future__ import annotations

import json
import logging
from collections.abc import Mapping
from pathlib import Path

import httpx
import pytest

from conftest import STARTED_LINE, ActionsFiles, mock_client
from omni_sidecar.cli.sidecar.startup import StartupCoordinator, sidecar_socket_path
from omni_sidecar.constants import (
    ENV_ADDRESS,
    STATE_HOST,
    STATE_LOG,
    STATE_PID,
)
from omni_sidecar.errors import DownloadError, HealthCheckError
from omni_sidecar.models import (
    HealthState,
    PollSettings,
    ProcessHandle,
    ResolvedBinary,
    SidecarConfig,
    StartResult,
)

FAKE_PID = 4999999


class FakeResolver:
    def __init__(self, binary: ResolvedBinary | None = None, error: Exception | None = None):
        self.binary = binary
        self.error = error
        self.requested: list[str] = []

    def resolve(self, version_spec: str) -> ResolvedBinary:
        self.requested.append(version_spec)
        if self.error is not None:
            raise self.error
        assert self.binary is not None
        return self.binary


class FakeSpawner:
    """Records the launch and writes what the sidecar would log."""

    def __init__(self, *log_lines: str):
        self.log_lines = log_lines
        self.calls: list[tuple[Path, list[str], dict[str, str], Path]] = []

    def __call__(
        self, executable: Path, args: list[str], env: Mapping[str, str], log_file: Path
    ) -> int:
        self.calls.append((executable, args, dict(env), log_file))
        log_file.write_text("".join(f"{line}\n" for line in self.log_lines))
        return FAKE_PID


class HealthEndpoint:
    def __init__(self, *statuses: int):
        self.statuses = list(statuses)
        self.urls: list[str] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.urls.append(str(request.url))
        status = self.statuses.pop(0) if len(self.statuses) > 1 else self.statuses[0]
        return httpx.Response(status, text="ok")


@pytest.fixture
def binary(tmp_path: Path) -> ResolvedBinary:
    bin_dir = tmp_path / "bin"
    bin_dir.mkdir()
    return ResolvedBinary(
        path=bin_dir / "omni-cache-linux-amd64", version="v0.9.0", directory=bin_dir
    )


def make_config(tmp_path: Path, **overrides: object) -> SidecarConfig:
    settings: dict[str, object] = {
        "bucket": "test-bucket",
        "log_file": tmp_path / "omni-cache.log",
        "discovery": PollSettings(attempts=3, interval=0.25),
        "health": PollSettings(attempts=3, interval=1.0),
    }
    settings.update(overrides)
    return SidecarConfig.model_validate(settings)


def make_coordinator(
    actions: ActionsFiles,
    tmp_path: Path,
    binary: ResolvedBinary,
    spawner: FakeSpawner,
    health: HealthEndpoint,
    sleeps: list[float],
    version: str | None = "0.9.0-808310f",
) -> StartupCoordinator:
    return StartupCoordinator(
        actions.runtime(),
        FakeResolver(binary),
        spawner=spawner,
        http_client=mock_client(health),
        sleep=sleeps.append,
        version_probe=lambda path: version,
        base_env={"PATH": "/usr/bin", "HOME": str(tmp_path)},
        home=tmp_path,
    )


class TestStart:
    def test_log_address_wins_over_configured_host(
        self, actions: ActionsFiles, tmp_path: Path, binary: ResolvedBinary
    ) -> None:
        spawner = FakeSpawner(STARTED_LINE.replace("127.0.0.1:12321", "127.0.0.1:45678"))
        health = HealthEndpoint(200)
        sleeps: list[float] = []
        coordinator = make_coordinator(actions, tmp_path, binary, spawner, health, sleeps)

        result = coordinator.start(make_config(tmp_path))

        assert result.address == "127.0.0.1:45678"
        assert result.health is HealthState.HEALTHY
        assert result.process.pid == FAKE_PID
        assert health.urls == ["http://127.0.0.1:45678/stats"]
        assert sleeps == []

        outputs = actions.read("GITHUB_OUTPUT")
        assert outputs["cache-address"] == "127.0.0.1:45678"
        assert outputs["cache-endpoint"] == "http://127.0.0.1:45678"
        assert outputs["cache-socket"] == str(tmp_path / ".cirruslabs" / "omni-cache.sock")
        assert outputs["version"] == "0.9.0-808310f"

        assert actions.read("GITHUB_ENV") == {ENV_ADDRESS: "127.0.0.1:45678"}
        assert actions.environ[ENV_ADDRESS] == "127.0.0.1:45678"
        assert actions.text("GITHUB_PATH") == f"{binary.directory}\n"

        state = actions.read("GITHUB_STATE")
        assert state[STATE_PID] == str(FAKE_PID)
        assert state[STATE_HOST] == "127.0.0.1:45678"
        assert state[STATE_LOG] == str(tmp_path / "omni-cache.log")

    def test_spawn_environment_and_arguments(
        self, actions: ActionsFiles, tmp_path: Path, binary: ResolvedBinary
    ) -> None:
        spawner = FakeSpawner(STARTED_LINE)
        coordinator = make_coordinator(
            actions, tmp_path, binary, spawner, HealthEndpoint(200), []
        )

        coordinator.start(make_config(tmp_path, prefix="ci/", storage_endpoint=" "))

        executable, args, env, log_file = spawner.calls[0]
        assert executable == binary.path
        assert args == [
            "sidecar",
            "--bucket",
            "test-bucket",
            "--listen-addr",
            "localhost:12321",
            "--prefix",
            "ci/",
        ]
        assert env["PATH"] == "/usr/bin"
        assert env["OMNI_CACHE_BUCKET"] == "test-bucket"
        assert env["OMNI_CACHE_HOST"] == "localhost:12321"
        assert env["OMNI_CACHE_PREFIX"] == "ci/"
        assert "OMNI_CACHE_S3_ENDPOINT" not in env
        assert log_file == tmp_path / "omni-cache.log"

    def test_resolver_failure_spawns_nothing(
        self, actions: ActionsFiles, tmp_path: Path
    ) -> None:
        spawner = FakeSpawner()
        error = DownloadError("https://example.invalid/omni-cache", "HTTP 404")
        coordinator = StartupCoordinator(
            actions.runtime(), FakeResolver(error=error), spawner=spawner
        )

        with pytest.raises(DownloadError):
            coordinator.start(make_config(tmp_path, version_spec="v9.9.9"))

        assert spawner.calls == []
        assert actions.read("GITHUB_STATE") == {}
        assert actions.read("GITHUB_OUTPUT") == {}

    def test_health_exhaustion_surfaces_logs(
        self,
        actions: ActionsFiles,
        tmp_path: Path,
        binary: ResolvedBinary,
        caplog: pytest.LogCaptureFixture,
    ) -> None:
        caplog.set_level(logging.INFO)
        spawner = FakeSpawner(STARTED_LINE, "panic: bucket not found")
        health = HealthEndpoint(503)
        sleeps: list[float] = []
        coordinator = make_coordinator(actions, tmp_path, binary, spawner, health, sleeps)

        with pytest.raises(HealthCheckError, match="after 3 attempts"):
            coordinator.start(make_config(tmp_path))

        assert coordinator.health is HealthState.FAILED
        assert len(health.urls) == 3
        assert sleeps == [1.0, 1.0]
        assert any("panic: bucket not found" in m for m in caplog.messages)
        # The stop phase still needs these to clean up.
        assert actions.read("GITHUB_STATE")[STATE_PID] == str(FAKE_PID)
        assert actions.read("GITHUB_OUTPUT") == {}

    def test_health_recovers_after_unavailable(
        self, actions: ActionsFiles, tmp_path: Path, binary: ResolvedBinary
    ) -> None:
        health = HealthEndpoint(503, 200)
        sleeps: list[float] = []
        coordinator = make_coordinator(
            actions, tmp_path, binary, FakeSpawner(STARTED_LINE), health, sleeps
        )

        result = coordinator.start(make_config(tmp_path))

        assert result.health is HealthState.HEALTHY
        assert len(health.urls) == 2
        assert sleeps == [1.0]

    def test_connection_errors_are_retried(
        self, actions: ActionsFiles, tmp_path: Path, binary: ResolvedBinary
    ) -> None:
        calls: list[int] = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(1)
            if len(calls) == 1:
                raise httpx.ConnectError("Connection refused", request=request)
            return httpx.Response(200)

        coordinator = StartupCoordinator(
            actions.runtime(),
            FakeResolver(binary),
            spawner=FakeSpawner(STARTED_LINE),
            http_client=mock_client(handler),
            sleep=lambda _: None,
            version_probe=lambda path: None,
            home=tmp_path,
        )

        result = coordinator.start(make_config(tmp_path))

        assert len(calls) == 2
        assert result.version == "v0.9.0"

    def test_missing_announcement_falls_back_to_host(
        self,
        actions: ActionsFiles,
        tmp_path: Path,
        binary: ResolvedBinary,
        caplog: pytest.LogCaptureFixture,
    ) -> None:
        health = HealthEndpoint(200)
        sleeps: list[float] = []
        coordinator = make_coordinator(
            actions, tmp_path, binary, FakeSpawner("booting"), health, sleeps
        )

        result = coordinator.start(
            make_config(tmp_path, host="http://cache.internal:8080/")
        )

        assert result.address == "cache.internal:8080"
        assert sleeps == [0.25, 0.25]
        assert health.urls == ["http://cache.internal:8080/stats"]
        assert any(
            "Could not find omni-cache listen address in logs after 3 attempts" in m
            for m in caplog.messages
        )

    def test_discovery_disabled(
        self,
        actions: ActionsFiles,
        tmp_path: Path,
        binary: ResolvedBinary,
        caplog: pytest.LogCaptureFixture,
    ) -> None:
        sleeps: list[float] = []
        coordinator = make_coordinator(
            actions, tmp_path, binary, FakeSpawner(STARTED_LINE), HealthEndpoint(200), sleeps
        )

        result = coordinator.start(
            make_config(tmp_path, discovery=PollSettings(attempts=0, interval=0.25))
        )

        assert result.address == "localhost:12321"
        assert sleeps == []
        assert not [r for r in caplog.records if r.levelno >= logging.WARNING]

    def test_json_announcement(
        self, actions: ActionsFiles, tmp_path: Path, binary: ResolvedBinary
    ) -> None:
        line = json.dumps(
            {"level": "INFO", "msg": "omni-cache started", "addr": "127.0.0.2:4000"}
        )
        health = HealthEndpoint(200)
        coordinator = make_coordinator(
            actions, tmp_path, binary, FakeSpawner(line), health, []
        )

        result = coordinator.start(make_config(tmp_path))

        assert result.address == "127.0.0.2:4000"
        assert health.urls == ["http://127.0.0.2:4000/stats"]


    def test_malformed_health_target_fails_like_exhaustion(
        self, actions: ActionsFiles, tmp_path: Path, caplog: pytest.LogCaptureFixture
    ) -> None:
        caplog.set_level(logging.INFO)
        log_file = tmp_path / "omni-cache.log"
        log_file.write_text("listen tcp: address host:abc: invalid port\n")
        sleeps: list[float] = []
        coordinator = StartupCoordinator(
            actions.runtime(),
            FakeResolver(),
            http_client=mock_client(lambda request: httpx.Response(200)),
            sleep=sleeps.append,
        )

        with pytest.raises(HealthCheckError, match="after 2 attempts"):
            coordinator.wait_for_healthy(
                "host:abc", PollSettings(attempts=2, interval=0.0), log_file
            )

        assert coordinator.health is HealthState.FAILED
        assert sleeps == [0.0]
        assert any("invalid port" in m for m in caplog.messages)


class TestPublish:
    def test_without_address_skips_export(
        self, actions: ActionsFiles, tmp_path: Path, caplog: pytest.LogCaptureFixture
    ) -> None:
        runtime = actions.runtime()
        coordinator = StartupCoordinator(runtime, FakeResolver())
        result = StartResult(
            address="",
            socket_path=sidecar_socket_path(tmp_path),
            version="v0.9.0",
            process=ProcessHandle(pid=FAKE_PID, log_file=tmp_path / "omni-cache.log"),
        )

        coordinator.publish(result)

        outputs = actions.read("GITHUB_OUTPUT")
        assert "cache-address" not in outputs
        assert outputs["version"] == "v0.9.0"
        assert ENV_ADDRESS not in actions.environ
        assert actions.read("GITHUB_ENV") == {}
        assert any("not exporting OMNI_CACHE_ADDRESS" in m for m in caplog.messages)


def test_socket_path(tmp_path: Path) -> None:
    assert sidecar_socket_path(tmp_path) == tmp_path / ".cirruslabs" / "omni-cache.sock"
