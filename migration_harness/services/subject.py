"""
Process Supervisor - run the subject and wait for its readiness marker.

State machine:
    unstarted -> starting -> {ready | timed_out} -> terminated

Readiness is the literal marker string appearing in the subject's combined
output. The wait is a single bounded poll; it is never retried.
"""

from __future__ import annotations

import os
import subprocess
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Callable, Mapping

from migration_harness.config import HarnessConfig
from migration_harness.core.cleanup import CleanupRegistry
from migration_harness.core.exceptions import StartupTimeout
from migration_harness.core.logging import get_logger
from migration_harness.reporters.log_scanner import LogFollower, LogScanner

logger = get_logger("subject")


class ProcessState(str, Enum):
    UNSTARTED = "unstarted"
    STARTING = "starting"
    READY = "ready"
    TIMED_OUT = "timed_out"
    TERMINATED = "terminated"


@dataclass
class SubjectProcess:
    """Handle for one subject process."""

    log_path: Path
    pid: int | None = None
    started_at: datetime | None = None
    state: ProcessState = ProcessState.UNSTARTED
    exit_code: int | None = None
    proc: "subprocess.Popen[bytes] | None" = field(default=None, repr=False)

    @property
    def alive(self) -> bool:
        return self.proc is not None and self.proc.poll() is None


class ProcessSupervisor:
    """
    Spawn, watch and stop the subject process.

    Usage:
        supervisor = ProcessSupervisor(config, cleanup)
        handle = supervisor.start(env, config.artifact(config.init_log))
        supervisor.wait_ready(handle)
        supervisor.stop(handle)
    """

    def __init__(
        self,
        config: HarnessConfig,
        cleanup: CleanupRegistry,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.config = config
        self.cleanup = cleanup
        self.scanner = LogScanner(readiness_marker=config.readiness_marker)
        self._sleep = sleep
        self._clock = clock

    def start(self, env: Mapping[str, str], log_path: Path) -> SubjectProcess:
        """Launch the subject with ``env`` overlaid on the harness environment."""
        handle = SubjectProcess(log_path=log_path)
        command = list(self.config.subject_command)

        full_env = dict(os.environ)
        full_env.update(env)

        log = open(log_path, "wb")
        self.cleanup.register(
            f"remove {log_path.name}",
            lambda: log_path.unlink(missing_ok=True),
        )
        try:
            handle.proc = subprocess.Popen(
                command,
                cwd=self.config.workdir,
                env=full_env,
                stdout=log,
                stderr=subprocess.STDOUT,
            )
        except OSError as e:
            raise StartupTimeout(
                f"Could not launch subject {command[0]!r}: {e}",
                details={"command": command},
            ) from e
        finally:
            # The child holds its own descriptor.
            log.close()

        handle.pid = handle.proc.pid
        handle.started_at = datetime.now(timezone.utc)
        handle.state = ProcessState.STARTING
        self.cleanup.register(
            f"stop subject (PID: {handle.pid})",
            lambda: self.stop(handle),
        )
        logger.info("Subject started (PID: %s), logging to %s", handle.pid, log_path.name)
        return handle

    def wait_ready(
        self,
        handle: SubjectProcess,
        marker: str | None = None,
        max_wait: float | None = None,
    ) -> None:
        """
        Poll the subject log for the readiness marker.

        Raises:
            StartupTimeout: marker not seen within ``max_wait`` seconds, or the
                subject exited before printing it. Carries the full log.
        """
        scanner = self.scanner if marker is None else LogScanner(readiness_marker=marker)
        max_wait = max_wait if max_wait is not None else self.config.startup_timeout
        follower = LogFollower(handle.log_path)
        start = self._clock()

        logger.info("Waiting up to %ss for %r", max_wait, scanner.readiness_marker)
        while True:
            if any(scanner.is_ready(line) for line in follower.read_new_lines()):
                handle.state = ProcessState.READY
                logger.info("Subject ready after %.1fs", self._clock() - start)
                return

            if handle.proc is not None and handle.proc.poll() is not None:
                # Pick up anything written between the last read and the exit.
                if any(scanner.is_ready(line) for line in follower.read_new_lines()):
                    handle.state = ProcessState.READY
                    return
                handle.exit_code = handle.proc.returncode
                handle.state = ProcessState.TERMINATED
                raise StartupTimeout(
                    f"Subject exited with code {handle.exit_code} before becoming ready",
                    details={"log": follower.read_all(), "exit_code": handle.exit_code},
                )

            if self._clock() - start >= max_wait:
                break
            self._sleep(self.config.startup_poll_interval)

        handle.state = ProcessState.TIMED_OUT
        raise StartupTimeout(
            f"Subject failed to start within {max_wait} seconds",
            details={"log": follower.read_all()},
        )

    def settle(self) -> None:
        """Give post-bind migration work time to finish."""
        if self.config.migration_settle_seconds:
            self._sleep(self.config.migration_settle_seconds)

    def stop(self, handle: SubjectProcess) -> None:
        """Terminate gracefully, then kill after the grace period."""
        proc = handle.proc
        if proc is None or handle.state == ProcessState.UNSTARTED:
            return

        if proc.poll() is None:
            logger.info("Stopping subject (PID: %s)...", handle.pid)
            try:
                proc.terminate()
                proc.wait(timeout=self.config.stop_grace_period)
            except subprocess.TimeoutExpired:
                logger.warning(
                    "Subject ignored SIGTERM for %ss, killing it",
                    self.config.stop_grace_period,
                )
                proc.kill()
                proc.wait(timeout=self.config.stop_grace_period)
            except ProcessLookupError:
                pass

        handle.exit_code = proc.returncode
        handle.state = ProcessState.TERMINATED
