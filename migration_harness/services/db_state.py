"""
Database State - run SQL inside the postgres container.

Queries go through ``docker exec ... psql`` so the harness needs no database
driver and reaches the server exactly as an operator would.
"""

from __future__ import annotations

import subprocess
from dataclasses import dataclass
from typing import Any

from migration_harness.core.exceptions import DatabaseQueryError


@dataclass
class QueryResult:
    """Result of a database query."""

    query: str
    rows: list[tuple[Any, ...]]

    @property
    def scalar(self) -> Any:
        """Get single scalar value from result."""
        if not self.rows:
            return None
        return self.rows[0][0]

    @property
    def count(self) -> int:
        return len(self.rows)


def quote_literal(value: str) -> str:
    """Quote a value as a SQL string literal."""
    return "'" + str(value).replace("'", "''") + "'"


def _raw_value(value: str) -> str | None:
    return None if value == "" else value


class DatabaseSnapshot:
    """
    Run queries against the harness database.

    Usage:
        snapshot = DatabaseSnapshot("openobserve-postgres-test", "openobserve", "openobserve")
        snapshot.table_exists("meta")
        snapshot.table_count("meta", where="module = 'user_sessions'")
    """

    def __init__(
        self,
        container_name: str,
        database: str,
        user: str,
        timeout: float = 10.0,
        host: str | None = "127.0.0.1",
        password: str | None = None,
    ):
        self.container_name = container_name
        self.database = database
        self.user = user
        self.timeout = timeout
        self.host = host
        self.password = password

    def _command(self, sql: str) -> list[str]:
        # TCP, not the unix socket: the image's init server answers on the
        # socket only, before the real server listens on the published port.
        env = ["-e", f"PGPASSWORD={self.password}"] if self.password else []
        host = ["-h", self.host] if self.host else []
        return [
            "docker", "exec", *env, self.container_name,
            "psql", *host, "-U", self.user, "-d", self.database,
            "-v", "ON_ERROR_STOP=1",
            "-t", "-A", "-F", "|",  # Tuples only, unaligned, pipe separator
            "-c", sql,
        ]

    def query(self, sql: str, raw: bool = False) -> QueryResult:
        """
        Execute a SQL statement and return its rows.

        With ``raw`` every field stays a string (NULL is still None).

        Raises:
            DatabaseQueryError: psql exited non-zero or timed out
        """
        try:
            result = subprocess.run(
                self._command(sql),
                capture_output=True,
                text=True,
                timeout=self.timeout,
            )
        except subprocess.TimeoutExpired as e:
            raise DatabaseQueryError(
                f"Query timed out after {self.timeout}s",
                details={"sql": sql},
            ) from e
        except OSError as e:
            raise DatabaseQueryError(
                f"Could not run psql: {e}",
                details={"sql": sql},
            ) from e

        if result.returncode != 0:
            raise DatabaseQueryError(
                f"Query failed: {result.stderr.strip()}",
                details={"sql": sql, "returncode": result.returncode},
            )

        output = result.stdout.strip()
        if not output:
            return QueryResult(query=sql, rows=[])

        rows = []
        for line in output.split("\n"):
            if line.strip():
                parse = _raw_value if raw else self._parse_value
                values = tuple(parse(v) for v in line.split("|"))
                rows.append(values)

        return QueryResult(query=sql, rows=rows)

    def execute(self, sql: str) -> None:
        """Execute a statement whose output is not needed."""
        self.query(sql)

    def query_scalar(self, sql: str) -> Any:
        return self.query(sql).scalar

    def query_all(self, sql: str, raw: bool = False) -> list[tuple[Any, ...]]:
        return self.query(sql, raw=raw).rows

    def table_count(self, table: str, where: str | None = None) -> int:
        """Get row count for a table, optionally filtered."""
        sql = f"SELECT COUNT(*) FROM {table}"
        if where:
            sql += f" WHERE {where}"
        result = self.query_scalar(sql)
        return int(result) if result else 0

    def table_exists(self, table: str) -> bool:
        result = self.query_scalar(
            "SELECT EXISTS (SELECT FROM information_schema.tables "
            f"WHERE table_name = {quote_literal(table)})"
        )
        return result is True

    def _parse_value(self, value: str) -> Any:
        """Parse a psql field to a Python value."""
        if value == "":
            return None

        try:
            return int(value)
        except ValueError:
            pass

        if value == "t":
            return True
        if value == "f":
            return False

        return value
