"""
Harness configuration.

Built once by the entry point and handed to every component. Settings come
from ``HARNESS_*`` environment variables (or ``.env.harness``); the defaults
reproduce the standard local session-migration check.
"""

from __future__ import annotations

from pathlib import Path
from typing import Dict, List

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class HarnessConfig(BaseSettings):
    """Settings for one harness run."""

    model_config = SettingsConfigDict(
        env_prefix="HARNESS_",
        env_file=".env.harness",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Database container
    container_name: str = Field(default="openobserve-postgres-test", min_length=1)
    postgres_image: str = Field(default="postgres")
    postgres_version: str = Field(default="15")
    db_user: str = Field(default="openobserve")
    db_password: str = Field(default="openobserve123")
    db_name: str = Field(default="openobserve")
    db_port: int = Field(
        default=5433, ge=1, le=65535, description="Host port (non-standard to avoid conflicts)"
    )
    db_host: str = Field(default="localhost")

    # Subject identity and environment
    root_user_email: str = Field(default="root@example.com")
    root_user_password: str = Field(default="Complexpass#123")
    rust_log: str = Field(default="info,openobserve=debug,sea_orm=debug")
    subject_extra_env: Dict[str, str] = Field(default_factory=dict)

    # Working directory and transient artifacts (relative to workdir)
    workdir: Path = Field(default_factory=Path.cwd)
    env_file: str = Field(default=".env.test")
    build_log: str = Field(default="build_errors.log")
    init_log: str = Field(default="init.log")
    migration_log: str = Field(default="migration_test.log")
    data_dir: str = Field(default="./data_test")

    # Build
    build_command: List[str] = Field(default_factory=lambda: ["cargo", "build"])
    build_timeout: float = Field(default=3600.0, gt=0)
    build_display_patterns: List[str] = Field(
        default_factory=lambda: [r"Compiling", r"Finished", r"error:"]
    )
    build_error_patterns: List[str] = Field(default_factory=lambda: [r"error:"])
    build_error_context_lines: int = Field(default=3, ge=0)
    build_display_tail: int = Field(default=20, ge=1)

    # Subject process
    subject_command: List[str] = Field(
        default_factory=lambda: ["./target/debug/openobserve"]
    )
    readiness_marker: str = Field(default="Starting HTTP server", min_length=1)
    startup_timeout: float = Field(default=60.0, gt=0)
    startup_poll_interval: float = Field(default=1.0, gt=0)
    stop_grace_period: float = Field(default=5.0, gt=0)
    migration_settle_seconds: float = Field(default=3.0, ge=0)

    # Database readiness
    db_ready_timeout: float = Field(default=10.0, gt=0)
    db_ready_interval: float = Field(default=1.0, gt=0)
    query_timeout: float = Field(default=10.0, gt=0)

    # Migration under test
    legacy_table: str = Field(default="meta")
    sessions_table: str = Field(default="sessions")
    migrated_module: str = Field(default="user_sessions")
    fixture_count: int = Field(default=3, ge=0)
    migration_ledger_table: str = Field(default="seaql_migrations")
    rewind_migrations: List[str] = Field(
        default_factory=lambda: [
            "m20251118_000001_create_sessions_table",
            "m20251118_000002_populate_sessions_table",
        ]
    )

    # Harness logging
    log_level: str = Field(default="INFO")
    log_format: str = Field(default="text")

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        valid = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        if v.upper() not in valid:
            raise ValueError(f"Log level must be one of {valid}")
        return v.upper()

    @field_validator("log_format")
    @classmethod
    def validate_log_format(cls, v: str) -> str:
        if v not in {"text", "json"}:
            raise ValueError("Log format must be 'text' or 'json'")
        return v

    @field_validator("build_command", "subject_command")
    @classmethod
    def validate_command(cls, v: List[str]) -> List[str]:
        if not v:
            raise ValueError("Command must not be empty")
        return v

    @property
    def image_ref(self) -> str:
        return f"{self.postgres_image}:{self.postgres_version}"

    @property
    def postgres_dsn(self) -> str:
        return (
            f"postgres://{self.db_user}:{self.db_password}"
            f"@{self.db_host}:{self.db_port}/{self.db_name}"
        )

    def artifact(self, name: str) -> Path:
        """Resolve an artifact name against the working directory."""
        return (self.workdir / name).resolve()

    def subject_environment(self) -> Dict[str, str]:
        """Environment consumed by the subject process."""
        env = {
            "ZO_ROOT_USER_EMAIL": self.root_user_email,
            "ZO_ROOT_USER_PASSWORD": self.root_user_password,
            "ZO_META_STORE": "postgres",
            "ZO_META_POSTGRES_DSN": self.postgres_dsn,
            "ZO_DATA_DIR": self.data_dir,
            "ZO_LOCAL_MODE": "true",
            "RUST_LOG": self.rust_log,
            "ZO_S3_PROVIDER": "local",
        }
        env.update(self.subject_extra_env)
        return env

    def container_environment(self) -> Dict[str, str]:
        """Environment for the postgres image."""
        return {
            "POSTGRES_USER": self.db_user,
            "POSTGRES_PASSWORD": self.db_password,
            "POSTGRES_DB": self.db_name,
        }
