"""
Harness runner - the session migration check, end to end.

Pipeline:
    privilege guard -> database -> env file -> build -> initial boot
    -> seed fixtures -> migration boot -> verification

Every resource registers its teardown with the cleanup registry the moment
it is acquired, so the registry unwinds exactly what exists no matter where
the pipeline stops.
"""

from __future__ import annotations

import shutil
import time
from pathlib import Path
from typing import Callable

import docker
from docker.errors import DockerException

from migration_harness.config import HarnessConfig
from migration_harness.core.cleanup import CleanupRegistry
from migration_harness.core.exceptions import (
    BuildFailure,
    HarnessError,
    ProvisionError,
    VerificationFailure,
)
from migration_harness.core.logging import get_logger
from migration_harness.core.privilege import check_privileges
from migration_harness.reporters.console import (
    print_block,
    print_error,
    print_header,
    print_info,
    print_success,
)
from migration_harness.services.build import BuildController
from migration_harness.services.database import ContainerDescriptor, PostgresProvisioner
from migration_harness.services.db_state import DatabaseSnapshot
from migration_harness.services.env_file import load_env_file, write_env_file
from migration_harness.services.session_fixtures import SessionSeeder, make_session_fixtures
from migration_harness.services.subject import ProcessSupervisor
from migration_harness.services.verification import MigrationVerifier, VerificationReport

logger = get_logger("runner")


class HarnessRunner:
    """
    Run the whole check once.

    Collaborators that touch the outside world can be injected; by default
    the runner talks to the local docker daemon and the real filesystem.
    """

    def __init__(
        self,
        config: HarnessConfig,
        docker_client: docker.DockerClient | None = None,
        snapshot_factory: Callable[[ContainerDescriptor], DatabaseSnapshot] | None = None,
        privilege_check: Callable[[], None] = check_privileges,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.config = config
        self._docker_client = docker_client
        self._snapshot_factory = snapshot_factory
        self._privilege_check = privilege_check
        self._sleep = sleep

    def run(self) -> int:
        """Run the pipeline; returns the process exit code."""
        with CleanupRegistry() as cleanup:
            try:
                report = self._run_pipeline(cleanup)
            except HarnessError as e:
                print_error(e.message)
                print_block(e.diagnostics())
                logger.error(
                    "Harness failed: %s", e.error_code, extra={"extra_fields": e.to_dict()}
                )
                exit_code = e.exit_code
            else:
                print_header("Verification Results")
                print_block(report.render())
                exit_code = 0
            print_header("Cleaning Up")

        if exit_code == 0:
            print_success("Session migration verified")
        return exit_code

    def _run_pipeline(self, cleanup: CleanupRegistry) -> VerificationReport:
        config = self.config

        # Step 0: identity
        self._privilege_check()

        # Step 1: database
        print_header("Step 1: Starting PostgreSQL Container")
        provisioner = PostgresProvisioner(
            self._client(),
            config,
            cleanup,
            snapshot_factory=self._snapshot_factory,
            sleep=self._sleep,
        )
        descriptor = provisioner.ensure(ContainerDescriptor.from_config(config))
        print_info("Waiting for PostgreSQL to be ready...")
        provisioner.wait_ready(descriptor)
        print_success("PostgreSQL is running and accessible")
        snapshot = provisioner.snapshot(descriptor)

        # Step 2: configuration
        print_header("Step 2: Creating Test Configuration")
        env_path = config.artifact(config.env_file)
        write_env_file(config.subject_environment(), env_path)
        cleanup.register(f"remove {env_path.name}", lambda: env_path.unlink(missing_ok=True))
        data_dir = config.artifact(config.data_dir)
        cleanup.register(
            f"remove {data_dir.name} directory",
            lambda: shutil.rmtree(data_dir, ignore_errors=True),
        )
        print_success("Configuration file created")

        # Step 3: build
        print_header("Step 3: Building Subject")
        print_info("This may take a few minutes...")
        build = BuildController(config, cleanup).run()
        if not build.success:
            raise BuildFailure(
                "Build completed with errors" if build.exit_code == 0 else "Build process failed",
                details={
                    "exit_code": build.exit_code,
                    "error_lines": build.error_lines or build.display_lines,
                    "log": str(build.log_path),
                },
            )
        self._check_subject_binary()
        print_success("Build completed successfully")

        supervisor = ProcessSupervisor(config, cleanup, sleep=self._sleep)
        subject_env = load_env_file(env_path)
        verifier = MigrationVerifier(snapshot, config)

        # Step 4: initial boot creates the legacy schema
        print_header("Step 4: Initializing Database")
        self._boot_subject(supervisor, subject_env, config.artifact(config.init_log))
        initial = verifier.check_initial_schema()
        if not initial.passed:
            raise VerificationFailure(initial, "Legacy table not found after initial boot")
        print_success(f"{config.legacy_table} table created")

        # Step 5: seed legacy sessions and rewind the migration
        print_header("Step 5: Seeding Legacy Sessions")
        fixtures = make_session_fixtures(config.fixture_count)
        seeder = SessionSeeder(snapshot, config)
        seeder.seed(fixtures)
        seeder.rewind()
        print_success(f"Inserted {len(fixtures)} {config.migrated_module} row(s)")

        # Step 6: migration boot
        print_header("Step 6: Running Session Migration")
        self._boot_subject(supervisor, subject_env, config.artifact(config.migration_log))

        # Step 7: verify
        print_header("Step 7: Verifying Migration")
        report = verifier.run(fixtures)
        if not report.passed:
            raise VerificationFailure(report)
        return report

    def _boot_subject(
        self,
        supervisor: ProcessSupervisor,
        env: dict[str, str],
        log_path: Path,
    ) -> None:
        """Start the subject, wait for readiness, let migrations finish, stop."""
        handle = supervisor.start(env, log_path)
        print_info(f"Subject PID: {handle.pid}")
        print_info(f"Waiting for server to start (up to {self.config.startup_timeout:g} seconds)...")
        supervisor.wait_ready(handle)
        print_success("Subject server started")
        supervisor.settle()
        supervisor.stop(handle)

    def _check_subject_binary(self) -> None:
        executable = self.config.subject_command[0]
        candidate = Path(executable)
        if not candidate.is_absolute():
            candidate = self.config.workdir / candidate
        if candidate.exists() or shutil.which(executable):
            return
        raise BuildFailure(
            f"Subject binary not found at {executable}",
            details={"error_lines": [f"missing: {candidate}"]},
        )

    def _client(self) -> docker.DockerClient:
        if self._docker_client is None:
            try:
                self._docker_client = docker.from_env()
            except DockerException as e:
                raise ProvisionError(f"Cannot connect to docker: {e}") from e
        return self._docker_client
