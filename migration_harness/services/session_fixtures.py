"""
Session fixtures - seed legacy session rows and rewind the sessions migration.

Legacy rows look exactly like the subject writes them: the session id lives
in ``key2`` and ``value`` is the JSON-encoded access token.
"""

from __future__ import annotations

import json
import uuid
from dataclasses import dataclass

from migration_harness.config import HarnessConfig
from migration_harness.core.logging import get_logger
from migration_harness.services.db_state import DatabaseSnapshot, quote_literal

logger = get_logger("fixtures")

_FIXTURE_NAMESPACE = uuid.UUID("6f1d3c2a-6a4b-4f4e-9f57-1f0f5e5c7a11")


@dataclass(frozen=True)
class SessionFixture:
    session_id: str
    access_token: str


def make_session_fixtures(count: int) -> list[SessionFixture]:
    """Deterministic fixtures: same ids and tokens on every run."""
    return [
        SessionFixture(
            session_id=str(uuid.uuid5(_FIXTURE_NAMESPACE, f"session-{i}")),
            access_token=f"fixture-access-token-{i}",
        )
        for i in range(1, count + 1)
    ]


class SessionSeeder:
    """Prepare the database so the subject's next boot migrates real data."""

    def __init__(self, snapshot: DatabaseSnapshot, config: HarnessConfig):
        self.snapshot = snapshot
        self.config = config

    def seed(self, fixtures: list[SessionFixture]) -> int:
        """Insert fixtures into the legacy table under the migrated module."""
        if not fixtures:
            return 0

        values = ",\n".join(
            "({module}, '', {key2}, 0, {value})".format(
                module=quote_literal(self.config.migrated_module),
                key2=quote_literal(f.session_id),
                value=quote_literal(json.dumps(f.access_token)),
            )
            for f in fixtures
        )
        self.snapshot.execute(
            f"INSERT INTO {self.config.legacy_table} "
            f"(module, key1, key2, start_dt, value) VALUES\n{values}"
        )
        logger.info(
            "Seeded %d %s row(s) into %s",
            len(fixtures), self.config.migrated_module, self.config.legacy_table,
        )
        return len(fixtures)

    def rewind(self, versions: list[str] | None = None) -> None:
        """
        Drop the sessions table and forget the given migration versions so
        the subject re-applies them on its next start.
        """
        versions = self.config.rewind_migrations if versions is None else versions
        self.snapshot.execute(f"DROP TABLE IF EXISTS {self.config.sessions_table}")
        if versions:
            in_list = ", ".join(quote_literal(v) for v in versions)
            self.snapshot.execute(
                f"DELETE FROM {self.config.migration_ledger_table} "
                f"WHERE version IN ({in_list})"
            )
        logger.info("Rewound migrations: %s", ", ".join(versions) or "(none)")
