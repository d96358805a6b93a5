"""Write and read the subject's environment file."""

from __future__ import annotations

import os
import re
import tempfile
from pathlib import Path
from typing import Mapping

_KEY_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


def write_env_file(values: Mapping[str, str], path: Path) -> Path:
    """
    Serialize ``values`` as sorted ``KEY=value`` lines.

    The file is written next to its destination and moved into place with
    ``os.replace``, so readers see either the old file or the complete new one.
    Values are written in clear text.
    """
    lines = []
    for key in sorted(values):
        value = str(values[key])
        if not _KEY_RE.match(key):
            raise ValueError(f"Invalid environment variable name: {key!r}")
        if "\n" in value or "\r" in value:
            raise ValueError(f"Value for {key} contains a newline")
        lines.append(f"{key}={value}\n")

    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            handle.writelines(lines)
            handle.flush()
            os.fsync(handle.fileno())
        os.replace(tmp_name, path)
    except BaseException:
        Path(tmp_name).unlink(missing_ok=True)
        raise

    return path


def load_env_file(path: Path) -> dict[str, str]:
    """Parse a file written by ``write_env_file``; ``#`` lines are comments."""
    env: dict[str, str] = {}
    for raw in Path(path).read_text(encoding="utf-8").splitlines():
        line = raw.strip()
        if not line or line.startswith("#"):
            continue
        key, sep, value = line.partition("=")
        if not sep:
            continue
        env[key.strip()] = value
    return env
