"""Pytest configuration and fixtures."""

from __future__ import annotations

import sys
import textwrap
from pathlib import Path
from typing import Any, Generator

import pytest
from docker.errors import NotFound

from migration_harness.config import HarnessConfig
from migration_harness.core.cleanup import CleanupRegistry
from migration_harness.core.exceptions import DatabaseQueryError


# =============================================================================
# DOCKER DOUBLES
# =============================================================================


class FakeContainer:
    """Stands in for docker.models.containers.Container."""

    def __init__(self, name: str, containers: "FakeContainers"):
        self.name = name
        self.status = "running"
        self._containers = containers

    def stop(self) -> None:
        self.status = "exited"
        self._containers.stopped.append(self.name)

    def remove(self, force: bool = False) -> None:
        self._containers.existing.pop(self.name, None)
        self._containers.removed.append(self.name)


class FakeContainers:
    def __init__(self) -> None:
        self.existing: dict[str, FakeContainer] = {}
        self.run_calls: list[dict[str, Any]] = []
        self.stopped: list[str] = []
        self.removed: list[str] = []

    def get(self, name: str) -> FakeContainer:
        if name not in self.existing:
            raise NotFound(f"No such container: {name}")
        return self.existing[name]

    def run(self, image: str, **kwargs: Any) -> FakeContainer:
        self.run_calls.append({"image": image, **kwargs})
        container = FakeContainer(kwargs["name"], self)
        self.existing[container.name] = container
        return container


class FakeDockerClient:
    def __init__(self) -> None:
        self.containers = FakeContainers()


# =============================================================================
# DATABASE DOUBLE
# =============================================================================


class FakeSnapshot:
    """
    DatabaseSnapshot double holding the post-migration state a test wants
    the verifier to see.
    """

    def __init__(
        self,
        tables: set[str] | None = None,
        legacy_remaining: int = 0,
        session_rows: list[tuple[Any, ...]] | None = None,
        probe_failures: int = 0,
    ):
        self.tables = {"meta", "sessions"} if tables is None else tables
        self.legacy_remaining = legacy_remaining
        self.session_rows = session_rows or []
        self.probe_failures = probe_failures
        self.queries: list[str] = []
        self.executed: list[str] = []
        self.existence_checks: list[str] = []
        self.raw_reads: list[bool] = []

    def query(self, sql: str) -> Any:
        self.queries.append(sql)
        if self.probe_failures > 0:
            self.probe_failures -= 1
            raise DatabaseQueryError("could not connect to server")
        return None

    def execute(self, sql: str) -> None:
        self.executed.append(sql)

    def query_all(self, sql: str, raw: bool = False) -> list[tuple[Any, ...]]:
        self.queries.append(sql)
        self.raw_reads.append(raw)
        return list(self.session_rows)

    def table_exists(self, table: str) -> bool:
        self.existence_checks.append(table)
        return table in self.tables

    def table_count(self, table: str, where: str | None = None) -> int:
        if table == "sessions":
            return len(self.session_rows)
        return self.legacy_remaining


# =============================================================================
# CONFIGURATION
# =============================================================================


@pytest.fixture
def harness_config(tmp_path: Path) -> HarnessConfig:
    """Config with short timeouts rooted in a temporary workdir."""
    return HarnessConfig(
        _env_file=None,
        workdir=tmp_path,
        startup_timeout=10.0,
        startup_poll_interval=0.05,
        stop_grace_period=2.0,
        migration_settle_seconds=0,
        db_ready_timeout=1.0,
        db_ready_interval=0.01,
        build_timeout=30.0,
    )


@pytest.fixture
def cleanup() -> Generator[CleanupRegistry, None, None]:
    registry = CleanupRegistry()
    yield registry
    registry.run_all()


@pytest.fixture
def fake_docker() -> FakeDockerClient:
    return FakeDockerClient()


# =============================================================================
# CHILD PROCESS SCRIPTS
# =============================================================================


@pytest.fixture
def write_script(tmp_path: Path):
    """Write a python script into the workdir and return its command line."""

    def _write(name: str, body: str) -> list[str]:
        path = tmp_path / name
        path.write_text(textwrap.dedent(body), encoding="utf-8")
        return [sys.executable, str(path)]

    return _write
