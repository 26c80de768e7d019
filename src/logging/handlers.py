# src/logging/handlers.py — v2
"""Handlers and filters shared by the console and worker log files.

RunContextFilter copies the current run context onto every record so
that plain ``%(run_id)s`` format strings and external log shippers see
the same run_id / account_id / step as the JSON formatter.
"""

from __future__ import annotations

import logging
import re
from logging.handlers import RotatingFileHandler
from pathlib import Path

from fitscore.logging.context import get_context

_SIZE_PATTERN = re.compile(r"^(\d+(?:\.\d+)?)\s*([KMG]?)(?:I?B)?$", re.IGNORECASE)
_SIZE_POWERS = {"": 0, "K": 1, "M": 2, "G": 3}


def parse_size(size_str: str) -> int:
    """Bytes for '10MB', '1.5 GB', '512k' or a bare byte count; '0' never rotates."""
    match = _SIZE_PATTERN.match(size_str.strip())
    if not match:
        raise ValueError(f"Invalid size format: {size_str!r}. Use e.g. '10MB'.")
    number, unit = match.groups()
    return int(float(number) * 1024 ** _SIZE_POWERS[unit.upper()])


class RunContextFilter(logging.Filter):
    """Attach run_id, account_id and step to each record (None outside a run)."""

    def filter(self, record: logging.LogRecord) -> bool:
        ctx = get_context()
        record.run_id = ctx.run_id
        record.account_id = ctx.account_id
        record.step = ctx.step
        return True


def create_rotating_handler(
    log_file: str,
    rotation: str = "10MB",
    retention: int = 30,
) -> RotatingFileHandler:
    """Rotating worker log file with the run context filter installed.

    Parent directories are created up front; the file itself is opened on
    the first record.
    """
    path = Path(log_file).expanduser()
    path.parent.mkdir(parents=True, exist_ok=True)

    handler = RotatingFileHandler(
        filename=str(path),
        maxBytes=parse_size(rotation),
        backupCount=retention,
        encoding="utf-8",
        delay=True,
    )
    handler.addFilter(RunContextFilter())
    return handler
