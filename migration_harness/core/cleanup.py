"""
Cleanup Registry - ordered teardown of everything a run acquires.

Each resource pushes its teardown action the moment it becomes live.
``run_all()`` unwinds the stack in reverse order exactly once, on success,
on failure and on operator interrupt alike.

Usage:
    with CleanupRegistry() as cleanup:
        container = provisioner.ensure(descriptor)   # registers its own teardown
        cleanup.register("remove env file", lambda: path.unlink(missing_ok=True))
        ...
    # every registered action has run here
"""

from __future__ import annotations

import signal
import threading
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Callable, Iterator

from migration_harness.core.logging import get_logger

logger = get_logger("cleanup")

# Signals that should unwind the run the same way a failure does.
_TERMINATING_SIGNALS = ("SIGTERM", "SIGHUP")
_DEFERRED_SIGNALS = ("SIGINT", "SIGTERM", "SIGHUP")


@dataclass
class CleanupAction:
    """A named teardown callable."""

    name: str
    action: Callable[[], Any]


@dataclass
class CleanupOutcome:
    """Result of running one teardown action."""

    name: str
    ok: bool
    error: str | None = None


class CleanupRegistry:
    """Stack of teardown actions, unwound in reverse acquisition order."""

    def __init__(self) -> None:
        self._actions: list[CleanupAction] = []
        self._running = False

    def __enter__(self) -> "CleanupRegistry":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.run_all()

    def __len__(self) -> int:
        return len(self._actions)

    def register(self, name: str, action: Callable[[], Any]) -> None:
        """Push a teardown action for a resource that just became live."""
        self._actions.append(CleanupAction(name=name, action=action))
        logger.debug("Registered cleanup action: %s", name)

    def run_all(self) -> list[CleanupOutcome]:
        """
        Pop and run every registered action, newest first.

        Failures are logged and recorded, never raised, so one broken
        teardown cannot keep the others from running. Calling this again
        after the stack is empty does nothing.
        """
        if self._running:
            return []

        outcomes: list[CleanupOutcome] = []
        self._running = True
        try:
            with _signals_deferred():
                while self._actions:
                    entry = self._actions.pop()
                    try:
                        entry.action()
                        outcomes.append(CleanupOutcome(name=entry.name, ok=True))
                        logger.info("Cleanup: %s", entry.name)
                    except Exception as e:
                        outcomes.append(
                            CleanupOutcome(name=entry.name, ok=False, error=str(e))
                        )
                        logger.error("Cleanup action '%s' failed: %s", entry.name, e)
        finally:
            self._running = False

        return outcomes


@contextmanager
def _signals_deferred() -> Iterator[None]:
    """Ignore interrupt signals while teardown is in progress."""
    previous: dict[int, Any] = {}
    if threading.current_thread() is threading.main_thread():
        for sig_name in _DEFERRED_SIGNALS:
            sig = getattr(signal, sig_name, None)
            if sig is None:
                continue
            try:
                previous[sig] = signal.signal(sig, signal.SIG_IGN)
            except (ValueError, OSError, RuntimeError, TypeError):
                continue
    try:
        yield
    finally:
        for sig, handler in previous.items():
            try:
                signal.signal(sig, handler)
            except (ValueError, OSError, RuntimeError, TypeError):
                continue


def _raise_system_exit(signum: int, frame: Any) -> None:
    try:
        sig_name = signal.Signals(signum).name
    except ValueError:
        sig_name = str(signum)
    logger.warning("Received %s; unwinding acquired resources", sig_name)
    raise SystemExit(128 + signum)


def install_signal_handlers() -> dict[int, Any]:
    """
    Route SIGTERM/SIGHUP through ``SystemExit`` so they unwind like failures.

    SIGINT already surfaces as ``KeyboardInterrupt``. Returns the previous
    handlers for ``restore_signal_handlers``.
    """
    previous: dict[int, Any] = {}
    for sig_name in _TERMINATING_SIGNALS:
        sig = getattr(signal, sig_name, None)
        if sig is None:
            continue
        try:
            previous[sig] = signal.signal(sig, _raise_system_exit)
        except (ValueError, OSError, RuntimeError, TypeError):
            continue
    return previous


def restore_signal_handlers(previous: dict[int, Any]) -> None:
    for sig, handler in previous.items():
        try:
            signal.signal(sig, handler)
        except (ValueError, OSError, RuntimeError, TypeError):
            continue
