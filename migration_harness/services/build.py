"""
Build Controller - compile the subject and classify the outcome.

A build succeeds only when it exits zero AND none of its output matches an
error pattern: some toolchains exit zero while still printing errors.
"""

from __future__ import annotations

import os
import signal
import subprocess
import threading
from collections import deque
from dataclasses import dataclass, field
from pathlib import Path
from typing import IO, Sequence, cast

from migration_harness.config import HarnessConfig
from migration_harness.core.cleanup import CleanupRegistry
from migration_harness.core.logging import get_logger
from migration_harness.reporters.log_scanner import LogScanner, extract_error_snippets

logger = get_logger("build")


def _kill_process_group(proc: subprocess.Popen) -> None:
    """SIGKILL the build and every process it spawned."""
    try:
        os.killpg(proc.pid, signal.SIGKILL)
    except (ProcessLookupError, PermissionError):
        pass


@dataclass
class BuildReport:
    """Outcome of one build invocation."""

    success: bool
    exit_code: int | None
    log_path: Path
    error_lines: list[str] = field(default_factory=list)
    display_lines: list[str] = field(default_factory=list)
    timed_out: bool = False


class BuildController:
    """Run the subject build, tee its output to a log, and judge it."""

    def __init__(self, config: HarnessConfig, cleanup: CleanupRegistry):
        self.config = config
        self.cleanup = cleanup
        self.scanner = LogScanner(
            readiness_marker=config.readiness_marker,
            error_patterns=config.build_error_patterns,
            display_patterns=config.build_display_patterns,
        )

    def run(self, command: Sequence[str] | None = None) -> BuildReport:
        command = list(command or self.config.build_command)
        log_path = self.config.artifact(self.config.build_log)
        timeout = self.config.build_timeout

        logger.info("Building subject: %s", " ".join(command))

        all_lines: list[str] = []
        display = deque(maxlen=self.config.build_display_tail)

        with open(log_path, "w", encoding="utf-8") as log:
            self.cleanup.register(
                f"remove {log_path.name}",
                lambda: log_path.unlink(missing_ok=True),
            )
            try:
                proc = subprocess.Popen(
                    command,
                    cwd=self.config.workdir,
                    stdout=subprocess.PIPE,
                    stderr=subprocess.STDOUT,
                    text=True,
                    errors="replace",
                    bufsize=1,
                    start_new_session=True,
                )
            except OSError as e:
                log.write(f"{e}\n")
                return BuildReport(
                    success=False,
                    exit_code=None,
                    log_path=log_path,
                    error_lines=[f"Could not run build command {command[0]!r}: {e}"],
                )

            timed_out = threading.Event()

            def _on_timeout() -> None:
                timed_out.set()
                _kill_process_group(proc)

            watchdog = threading.Timer(timeout, _on_timeout)
            watchdog.daemon = True
            watchdog.start()
            try:
                for raw in cast(IO[str], proc.stdout):
                    if timed_out.is_set():
                        break
                    line = raw.rstrip("\n")
                    log.write(raw)
                    all_lines.append(line)
                    if self.scanner.is_display(line):
                        display.append(line)
                        logger.info("%s", line)
                exit_code = proc.wait()
            finally:
                watchdog.cancel()
                # Compiler workers outlive the driver and hold the pipe open.
                _kill_process_group(proc)
                proc.wait()

        error_lines = [
            text
            for snippet in extract_error_snippets(
                all_lines, self.scanner, self.config.build_error_context_lines
            )
            for text in snippet.to_lines()
        ]
        if timed_out.is_set():
            error_lines.append(f"Build did not finish within {timeout}s and was killed")

        success = exit_code == 0 and not error_lines and not timed_out.is_set()
        if success:
            logger.info("Build completed successfully")
        elif exit_code == 0:
            logger.error("Build exited 0 but printed %d error line(s)", len(error_lines))
        else:
            logger.error("Build process failed with exit code %s", exit_code)

        return BuildReport(
            success=success,
            exit_code=exit_code,
            log_path=log_path,
            error_lines=error_lines,
            display_lines=list(display),
            timed_out=timed_out.is_set(),
        )
