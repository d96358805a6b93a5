#!/usr/bin/env python
"""Run the session migration check: ``python -m migration_harness``."""

from __future__ import annotations

import sys

from pydantic import ValidationError
from pydantic_settings import SettingsError

from migration_harness.config import HarnessConfig
from migration_harness.core.cleanup import install_signal_handlers, restore_signal_handlers
from migration_harness.core.logging import get_logger, setup_logging
from migration_harness.runner import HarnessRunner

logger = get_logger("main")


def main() -> int:
    try:
        config = HarnessConfig()
    except (ValidationError, SettingsError) as e:
        print(f"Invalid harness configuration:\n{e}", file=sys.stderr)
        return 2

    setup_logging(config.log_level, config.log_format)

    previous = install_signal_handlers()
    try:
        return HarnessRunner(config).run()
    except KeyboardInterrupt:
        logger.warning("Interrupted; acquired resources were released")
        return 130
    finally:
        restore_signal_handlers(previous)


if __name__ == "__main__":
    sys.exit(main())
