"""
logger.py
---------
Logging setup for pg2lite.

Engine modules call ``get_logger(__name__)`` and log freely; nothing is
emitted until the CLI calls ``configure_logging`` with the resolved level.
Console output goes to stderr so stdout stays free for progress lines.
An optional log file always receives DEBUG records, including the
generated SQL.
"""
from __future__ import annotations

import logging
import sys
from pathlib import Path

ROOT_LOGGER = "pg2lite"

_CONSOLE_FORMAT = "%(asctime)s [%(levelname)-8s] %(name)s: %(message)s"
_FILE_FORMAT = "%(asctime)s [%(levelname)s] %(name)s (%(filename)s:%(lineno)d): %(message)s"
_DATE_FORMAT = "%Y-%m-%dT%H:%M:%S"

_configured = False


def _handler(handler: logging.Handler, level: int, fmt: str) -> logging.Handler:
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(fmt=fmt, datefmt=_DATE_FORMAT))
    return handler


def configure_logging(level: int = logging.INFO, log_file: str | None = None) -> None:
    """
    Attach handlers to the ``pg2lite`` logger.  Only the first call counts.

    Args:
        level:    Console threshold.
        log_file: Optional path; parent directories are created.  A file
                  that cannot be opened is reported and skipped.
    """
    global _configured
    if _configured:
        return
    _configured = True

    root = logging.getLogger(ROOT_LOGGER)
    root.setLevel(logging.DEBUG if log_file else level)
    root.addHandler(_handler(logging.StreamHandler(sys.stderr), level, _CONSOLE_FORMAT))

    if not log_file:
        return
    path = Path(log_file)
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(path, encoding="utf-8")
    except OSError as exc:
        root.warning("Could not open log file '%s': %s", path, exc)
        return
    root.addHandler(_handler(file_handler, logging.DEBUG, _FILE_FORMAT))


def get_logger(name: str) -> logging.Logger:
    """Return *name* as a logger under ``pg2lite`` (``pg2lite.<name>``)."""
    if name == ROOT_LOGGER or name.startswith(ROOT_LOGGER + "."):
        return logging.getLogger(name)
    return logging.getLogger(f"{ROOT_LOGGER}.{name}")
