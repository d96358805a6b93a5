"""
Migration Verifier - check the database after the subject migrated it.

Checks run in a fixed order. Table existence is fatal: if either table is
missing nothing else is meaningful and the sequence stops. Content checks
always all run, so one report lists every discrepancy.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable

from migration_harness.config import HarnessConfig
from migration_harness.core.logging import get_logger
from migration_harness.services.db_state import DatabaseSnapshot, quote_literal
from migration_harness.services.session_fixtures import SessionFixture

logger = get_logger("verification")


@dataclass
class CheckResult:
    """Outcome of one verification check."""

    name: str
    passed: bool
    expected: Any
    actual: Any
    fatal: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "passed": self.passed,
            "expected": self.expected,
            "actual": self.actual,
            "fatal": self.fatal,
        }


@dataclass
class VerificationReport:
    checks: list[CheckResult] = field(default_factory=list)
    aborted: bool = False

    @property
    def passed(self) -> bool:
        return not self.aborted and all(c.passed for c in self.checks)

    @property
    def failures(self) -> list[CheckResult]:
        return [c for c in self.checks if not c.passed]

    def to_dict(self) -> dict[str, Any]:
        return {
            "passed": self.passed,
            "aborted": self.aborted,
            "checks": [c.to_dict() for c in self.checks],
        }

    def render(self, failures_only: bool = False) -> str:
        """Expected-vs-actual table for the console."""
        checks = self.failures if failures_only else self.checks
        lines = []
        for check in checks:
            icon = "✅" if check.passed else "❌"
            lines.append(f"  {icon} {check.name}")
            if not check.passed:
                lines.append(f"       expected: {check.expected}")
                lines.append(f"       actual:   {check.actual}")
        if self.aborted:
            lines.append("  ⚠️  Remaining checks skipped: required tables are missing")
        return "\n".join(lines)


class MigrationVerifier:
    """
    Verify that legacy session rows moved into the sessions table.

    Usage:
        verifier = MigrationVerifier(snapshot, config)
        report = verifier.run(fixtures)
        if not report.passed:
            raise VerificationFailure(report)
    """

    def __init__(self, snapshot: DatabaseSnapshot, config: HarnessConfig):
        self.snapshot = snapshot
        self.config = config

    def check_initial_schema(self) -> VerificationReport:
        """After the first boot only the legacy table is required."""
        report = VerificationReport()
        check = self._table_check(self.config.legacy_table, "legacy_table_exists")
        report.checks.append(check)
        report.aborted = not check.passed
        return report

    def run(self, fixtures: list[SessionFixture]) -> VerificationReport:
        report = VerificationReport()

        for table, name in (
            (self.config.legacy_table, "legacy_table_exists"),
            (self.config.sessions_table, "sessions_table_exists"),
        ):
            report.checks.append(self._table_check(table, name))

        if report.failures:
            report.aborted = True
            logger.error("Required tables missing, skipping content checks")
            return report

        content_checks: list[Callable[[], CheckResult]] = [
            self._legacy_rows_remaining,
            lambda: self._sessions_row_count(fixtures),
            lambda: self._sessions_content(fixtures),
        ]
        for check in content_checks:
            report.checks.append(check())

        for result in report.checks:
            log = logger.info if result.passed else logger.error
            log(
                "Check %s: %s (expected=%s actual=%s)",
                result.name,
                "pass" if result.passed else "FAIL",
                result.expected,
                result.actual,
            )
        return report

    def _table_check(self, table: str, name: str) -> CheckResult:
        exists = self.snapshot.table_exists(table)
        return CheckResult(name=name, passed=exists, expected=True, actual=exists, fatal=True)

    def _legacy_rows_remaining(self) -> CheckResult:
        remaining = self.snapshot.table_count(
            self.config.legacy_table,
            where=f"module = {quote_literal(self.config.migrated_module)}",
        )
        return CheckResult(
            name="legacy_rows_remaining",
            passed=remaining == 0,
            expected=0,
            actual=remaining,
        )

    def _sessions_row_count(self, fixtures: list[SessionFixture]) -> CheckResult:
        count = self.snapshot.table_count(self.config.sessions_table)
        return CheckResult(
            name="sessions_row_count",
            passed=count == len(fixtures),
            expected=len(fixtures),
            actual=count,
        )

    def _sessions_content(self, fixtures: list[SessionFixture]) -> CheckResult:
        rows = self.snapshot.query_all(
            f"SELECT session_id, access_token FROM {self.config.sessions_table} ORDER BY id",
            raw=True,
        )
        stored = {row[0]: row[1] for row in rows}

        mismatches: dict[str, Any] = {}
        for fixture in fixtures:
            if fixture.session_id not in stored:
                mismatches[fixture.session_id] = "missing"
            elif stored[fixture.session_id] != fixture.access_token:
                mismatches[fixture.session_id] = f"access_token={stored[fixture.session_id]!r}"

        return CheckResult(
            name="sessions_content",
            passed=not mismatches,
            expected={f.session_id: f.access_token for f in fixtures},
            actual=mismatches or "all fixtures present",
        )
