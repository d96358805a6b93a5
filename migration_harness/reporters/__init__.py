"""
Harness reporters package.
"""

from migration_harness.reporters.log_scanner import LogFollower, LogScanner

__all__ = ["LogFollower", "LogScanner"]
