"""Harness exceptions.

Every fatal condition of a run is a ``HarnessError`` subclass. The runner
catches them at the top level, prints ``diagnostics()`` and exits non-zero.
"""

from __future__ import annotations

from typing import Any


class HarnessError(Exception):
    """Base harness exception with a structured payload."""

    error_code: str = "HARNESS_ERROR"
    message: str = "Harness run failed"
    exit_code: int = 1

    def __init__(
        self,
        message: str | None = None,
        error_code: str | None = None,
        details: dict[str, Any] | None = None,
    ):
        self.message = message or self.message
        self.error_code = error_code or self.error_code
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> dict[str, Any]:
        return {
            "error": self.error_code,
            "message": self.message,
            **({"details": self.details} if self.details else {}),
        }

    def diagnostics(self) -> str:
        """Human-readable payload printed before the process exits."""
        return ""


class PrivilegeViolation(HarnessError):
    """Harness invoked with an elevated (root) identity."""

    error_code = "PRIVILEGE_VIOLATION"
    message = "Do not run the harness as root"

    def diagnostics(self) -> str:
        return self.details.get("remediation", "")


class ProvisionError(HarnessError):
    """The database container could not be created."""

    error_code = "PROVISION_ERROR"
    message = "Failed to start the database container"


class ProvisionTimeout(ProvisionError):
    """The database never answered within the readiness ceiling."""

    error_code = "PROVISION_TIMEOUT"
    message = "Database did not become ready in time"

    def diagnostics(self) -> str:
        last_error = self.details.get("last_error")
        return f"Last probe error: {last_error}" if last_error else ""


class BuildFailure(HarnessError):
    """Subject build exited non-zero or emitted error lines."""

    error_code = "BUILD_FAILURE"
    message = "Subject build failed"

    def diagnostics(self) -> str:
        lines = self.details.get("error_lines") or []
        if not lines:
            return ""
        return "Errors found:\n" + "\n".join(lines)


class StartupTimeout(HarnessError):
    """Subject never printed its readiness marker."""

    error_code = "STARTUP_TIMEOUT"
    message = "Subject did not become ready in time"

    def diagnostics(self) -> str:
        log_text = self.details.get("log", "")
        return f"Full subject log:\n{log_text}" if log_text else ""


class VerificationFailure(HarnessError):
    """Database state after the migration is not what was expected."""

    error_code = "VERIFICATION_FAILURE"
    message = "Migration verification failed"

    def __init__(self, report: Any, message: str | None = None):
        self.report = report
        super().__init__(message, details={"checks": report.to_dict()["checks"]})

    def diagnostics(self) -> str:
        return self.report.render(failures_only=True)


class DatabaseQueryError(HarnessError):
    """psql returned an error or timed out."""

    error_code = "DATABASE_QUERY_ERROR"
    message = "Database query failed"
