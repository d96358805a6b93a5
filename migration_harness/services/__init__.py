"""
Harness services package.
"""

from migration_harness.services.build import BuildController, BuildReport
from migration_harness.services.database import (
    ContainerDescriptor,
    ContainerState,
    PostgresProvisioner,
)
from migration_harness.services.db_state import DatabaseSnapshot
from migration_harness.services.session_fixtures import SessionFixture, SessionSeeder
from migration_harness.services.subject import ProcessState, ProcessSupervisor, SubjectProcess
from migration_harness.services.verification import MigrationVerifier, VerificationReport

__all__ = [
    "BuildController",
    "BuildReport",
    "ContainerDescriptor",
    "ContainerState",
    "PostgresProvisioner",
    "DatabaseSnapshot",
    "SessionFixture",
    "SessionSeeder",
    "ProcessState",
    "ProcessSupervisor",
    "SubjectProcess",
    "MigrationVerifier",
    "VerificationReport",
]
