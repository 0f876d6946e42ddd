# src/manuscript_pipeline/logging/handlers.py — v1
"""Size-based rotation for the worker log file."""

from __future__ import annotations

import re
from logging.handlers import RotatingFileHandler
from pathlib import Path

_UNITS = {"KB": 1 << 10, "MB": 1 << 20, "GB": 1 << 30}
_SIZE_RE = re.compile(r"(?P<count>\d+)\s*(?P<unit>[KMG]B)", re.IGNORECASE)


def parse_size(size_str: str) -> int:
    """Bytes for a human size such as ``"10MB"`` or ``"512 kb"``."""
    found = _SIZE_RE.fullmatch(size_str.strip())
    if found is None:
        raise ValueError(
            f"Invalid size {size_str!r}: expected a whole number followed by KB, MB or GB"
        )
    return int(found["count"]) * _UNITS[found["unit"].upper()]


def create_rotating_handler(
    log_file: str | Path,
    rotation: str = "10MB",
    retention: int = 30,
) -> RotatingFileHandler:
    """Open ``log_file`` for appending, rolling over past ``rotation`` bytes.

    Missing parent directories are created. ``retention`` is the number of
    rolled files kept next to the live one.
    """
    target = Path(log_file).expanduser()
    target.parent.mkdir(parents=True, exist_ok=True)
    return RotatingFileHandler(
        target,
        maxBytes=parse_size(rotation),
        backupCount=retention,
        encoding="utf-8",
    )
