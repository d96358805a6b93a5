"""Operator-facing console output."""

from __future__ import annotations

import sys
from typing import TextIO


def print_header(title: str, stream: TextIO | None = None) -> None:
    stream = stream or sys.stdout
    print("\n" + "=" * 60, file=stream)
    print(title, file=stream)
    print("=" * 60 + "\n", file=stream)


def print_success(message: str, stream: TextIO | None = None) -> None:
    print(f"  ✅ {message}", file=stream or sys.stdout)


def print_error(message: str, stream: TextIO | None = None) -> None:
    print(f"  ❌ {message}", file=stream or sys.stdout)


def print_info(message: str, stream: TextIO | None = None) -> None:
    print(f"  ℹ️  {message}", file=stream or sys.stdout)


def print_block(text: str, stream: TextIO | None = None) -> None:
    """Print a multi-line diagnostics payload verbatim."""
    if text:
        print(text, file=stream or sys.stdout)
