"""
Log Scanner - typed predicates over unstructured subject and build output.

Readiness and error detection are substring/regex matches against free text.
Keeping them behind ``LogScanner`` lets the matching be tested without
spawning any process.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable


class LogScanner:
    """
    Classify log lines.

    Usage:
        scanner = LogScanner(
            readiness_marker="Starting HTTP server",
            error_patterns=[r"error:"],
            display_patterns=[r"Compiling", r"Finished", r"error:"],
        )
        scanner.is_ready(line)
        scanner.is_error(line)
    """

    def __init__(
        self,
        readiness_marker: str,
        error_patterns: Iterable[str] = (),
        display_patterns: Iterable[str] = (),
    ):
        self.readiness_marker = readiness_marker
        self._error_patterns = [re.compile(p) for p in error_patterns]
        self._display_patterns = [re.compile(p) for p in display_patterns]

    def is_ready(self, line: str) -> bool:
        """Literal readiness marker match."""
        return self.readiness_marker in line

    def is_error(self, line: str) -> bool:
        return any(p.search(line) for p in self._error_patterns)

    def is_display(self, line: str) -> bool:
        return any(p.search(line) for p in self._display_patterns)


class LogFollower:
    """
    Incrementally read a log file that another process is still writing.

    Only complete lines are returned; a trailing partial line is kept until
    its newline arrives.
    """

    def __init__(self, path: Path):
        self.path = path
        self._offset = 0
        self._partial = ""

    def read_new_lines(self) -> list[str]:
        try:
            with open(self.path, "r", encoding="utf-8", errors="replace") as handle:
                handle.seek(self._offset)
                chunk = handle.read()
                self._offset = handle.tell()
        except FileNotFoundError:
            return []

        if not chunk:
            return []

        data = self._partial + chunk
        lines = data.split("\n")
        self._partial = lines.pop()
        return [line.rstrip("\r") for line in lines]

    def read_all(self) -> str:
        """Whole log contents, for diagnostics dumps."""
        try:
            return self.path.read_text(encoding="utf-8", errors="replace")
        except FileNotFoundError:
            return ""


@dataclass
class LogSnippet:
    """An error line with the lines that follow it."""

    error_line: str
    context_after: list[str]
    line_number: int

    def to_lines(self) -> list[str]:
        return [self.error_line, *self.context_after]


def extract_error_snippets(
    lines: list[str],
    scanner: LogScanner,
    context_lines: int = 3,
) -> list[LogSnippet]:
    """
    Extract each error line with ``context_lines`` lines after it.

    Overlapping matches are merged the way ``grep -A`` merges them, so a
    line is never reported twice.
    """
    snippets: list[LogSnippet] = []
    covered_until = -1

    for i, line in enumerate(lines):
        if not scanner.is_error(line):
            continue

        end = min(len(lines), i + context_lines + 1)
        if i <= covered_until:
            # Error inside the previous snippet's context: extend that one.
            previous = snippets[-1]
            first = previous.line_number  # index of first context line
            previous.context_after = lines[first:end]
            covered_until = end - 1
            continue

        context_after = lines[i + 1:end]
        snippets.append(LogSnippet(
            error_line=line,
            context_after=context_after,
            line_number=i + 1,  # 1-based
        ))
        covered_until = end - 1

    return snippets
