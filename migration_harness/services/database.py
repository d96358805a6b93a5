"""
Database Provisioner - ephemeral postgres container lifecycle.

Lifecycle:
1. ensure()      - remove any container with the same name, start a fresh one,
                   register its teardown immediately
2. wait_ready()  - bounded ``SELECT 1`` probe
3. teardown()    - stop + remove, tolerating an already-absent container
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Callable

import docker
from docker.errors import APIError, DockerException, NotFound

from migration_harness.config import HarnessConfig
from migration_harness.core.cleanup import CleanupRegistry
from migration_harness.core.exceptions import (
    DatabaseQueryError,
    ProvisionError,
    ProvisionTimeout,
)
from migration_harness.core.logging import get_logger
from migration_harness.services.db_state import DatabaseSnapshot

if TYPE_CHECKING:
    from docker.models.containers import Container

logger = get_logger("database")


class ContainerState(str, Enum):
    ABSENT = "absent"
    STARTING = "starting"
    READY = "ready"
    STOPPED = "stopped"


@dataclass
class ContainerDescriptor:
    """The harness database container."""

    name: str
    image: str
    ports: dict[str, int]
    environment: dict[str, str]
    state: ContainerState = ContainerState.ABSENT
    container: "Container | None" = field(default=None, repr=False)

    @classmethod
    def from_config(cls, config: HarnessConfig) -> "ContainerDescriptor":
        return cls(
            name=config.container_name,
            image=config.image_ref,
            ports={"5432/tcp": config.db_port},
            environment=config.container_environment(),
        )


class PostgresProvisioner:
    """
    Manage the harness database container.

    Usage:
        provisioner = PostgresProvisioner(docker.from_env(), config, cleanup)
        descriptor = provisioner.ensure(ContainerDescriptor.from_config(config))
        provisioner.wait_ready(descriptor)
    """

    def __init__(
        self,
        client: docker.DockerClient,
        config: HarnessConfig,
        cleanup: CleanupRegistry,
        snapshot_factory: Callable[[ContainerDescriptor], DatabaseSnapshot] | None = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.client = client
        self.config = config
        self.cleanup = cleanup
        self._snapshot_factory = snapshot_factory
        self._sleep = sleep
        self._clock = clock

    def ensure(self, descriptor: ContainerDescriptor) -> ContainerDescriptor:
        """Start a fresh container, replacing any leftover with the same name."""
        try:
            self._remove_existing(descriptor.name)
            descriptor.state = ContainerState.STARTING
            descriptor.container = self.client.containers.run(
                descriptor.image,
                name=descriptor.name,
                environment=descriptor.environment,
                ports=descriptor.ports,
                detach=True,
            )
        except DockerException as e:
            descriptor.state = ContainerState.ABSENT
            raise ProvisionError(
                f"Failed to start container '{descriptor.name}': {e}",
                details={"image": descriptor.image},
            ) from e

        self.cleanup.register(
            f"remove container {descriptor.name}",
            lambda: self.teardown(descriptor),
        )
        logger.info("Started container %s (%s)", descriptor.name, descriptor.image)
        return descriptor

    def wait_ready(self, descriptor: ContainerDescriptor) -> None:
        """
        Probe the database with ``SELECT 1`` until it answers.

        Raises:
            ProvisionTimeout: no successful probe within ``db_ready_timeout``
        """
        snapshot = self.snapshot(descriptor)
        timeout = self.config.db_ready_timeout
        start = self._clock()
        last_error: str | None = None

        while True:
            try:
                snapshot.query("SELECT 1")
                descriptor.state = ContainerState.READY
                logger.info("Database in %s is accepting queries", descriptor.name)
                return
            except DatabaseQueryError as e:
                last_error = e.message

            if self._clock() - start >= timeout:
                break
            self._sleep(self.config.db_ready_interval)

        raise ProvisionTimeout(
            f"Database in '{descriptor.name}' not ready after {timeout}s",
            details={"last_error": last_error},
        )

    def teardown(self, descriptor: ContainerDescriptor) -> None:
        """Stop and remove the container; an absent container is fine."""
        try:
            container = self.client.containers.get(descriptor.name)
        except NotFound:
            descriptor.state = ContainerState.STOPPED
            return

        self._stop_and_remove(container)
        descriptor.state = ContainerState.STOPPED

    def snapshot(self, descriptor: ContainerDescriptor) -> DatabaseSnapshot:
        if self._snapshot_factory is not None:
            return self._snapshot_factory(descriptor)
        return DatabaseSnapshot(
            descriptor.name,
            database=self.config.db_name,
            user=self.config.db_user,
            timeout=self.config.query_timeout,
            password=self.config.db_password,
        )

    def _remove_existing(self, name: str) -> None:
        try:
            existing = self.client.containers.get(name)
        except NotFound:
            return

        logger.info("Container %s already exists, removing it first", name)
        self._stop_and_remove(existing)

    def _stop_and_remove(self, container: "Container") -> None:
        try:
            container.stop()
        except NotFound:
            return
        except APIError as e:
            # Already stopped containers can refuse stop(); remove(force) still works.
            logger.debug("Stopping %s failed: %s", container.name, e)

        try:
            container.remove(force=True)
        except NotFound:
            pass
