"""Refuse to run under an elevated identity."""

from __future__ import annotations

import os
from typing import Callable

from migration_harness.core.exceptions import PrivilegeViolation

REMEDIATION = """\
If docker requires sudo, fix it by adding your user to the docker group:
  sudo usermod -aG docker $USER
  newgrp docker

Then run the harness again without sudo."""


def check_privileges(geteuid: Callable[[], int] | None = None) -> None:
    """Raise PrivilegeViolation when the effective uid is root.

    Platforms without ``os.geteuid`` have no root identity to refuse.
    """
    geteuid = geteuid or getattr(os, "geteuid", None)
    if geteuid is None:
        return

    euid = geteuid()
    if euid == 0:
        raise PrivilegeViolation(
            "Do not run the harness with sudo or as root",
            details={"euid": euid, "remediation": REMEDIATION},
        )
