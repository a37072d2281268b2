"""Logging setup for dbdock.

Modules log through ``logging.getLogger(__name__)``; this module only wires
handlers onto the ``dbdock`` package logger.
"""

from __future__ import annotations

import logging
import os
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path

from dbdock.shared.core.store import CONFIG_DIR

LOG_FILE_NAME = "dbdock.log"
LOG_ROTATE_MAX_BYTES = 10 * 1024 * 1024
LOG_ROTATE_MAX_BACKUPS = 10
LOG_FORMAT = "%(asctime)s.%(msecs)03d [%(levelname)s] %(name)s: %(message)s"
LOG_DATE_FORMAT = "%Y/%m/%d %H:%M:%S"

_configured_path: Path | None = None


def resolve_log_dir() -> Path:
    override = os.environ.get("DBDOCK_LOG_DIR", "").strip()
    if override:
        return Path(override).expanduser()
    return CONFIG_DIR / "logs"


def configure_logging(
    level: int = logging.INFO,
    *,
    log_dir: Path | None = None,
    stderr: bool = False,
) -> Path | None:
    """Attach a rotating file handler (and optionally stderr) to the package logger.

    Calling this more than once is a no-op. If the log directory cannot be
    created, logging falls back to stderr and None is returned.

    Returns:
        Path of the log file, or None when only stderr logging is active.
    """
    global _configured_path

    root = logging.getLogger("dbdock")
    if root.handlers:
        return _configured_path

    root.setLevel(level)
    formatter = logging.Formatter(LOG_FORMAT, datefmt=LOG_DATE_FORMAT)

    directory = log_dir or resolve_log_dir()
    path: Path | None = directory / LOG_FILE_NAME
    try:
        directory.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(
            path,
            maxBytes=LOG_ROTATE_MAX_BYTES,
            backupCount=LOG_ROTATE_MAX_BACKUPS,
            encoding="utf-8",
        )
    except OSError as exc:
        path = None
        stderr = True
        print(f"dbdock: cannot open log file in {directory}: {exc}", file=sys.stderr)
    else:
        file_handler.setFormatter(formatter)
        root.addHandler(file_handler)

    if stderr:
        stream_handler = logging.StreamHandler(sys.stderr)
        stream_handler.setFormatter(formatter)
        root.addHandler(stream_handler)

    _configured_path = path
    if path is not None:
        root.info("Logging initialised, log file: %s", path)
    return path


def reset_logging() -> None:
    """Remove and close all handlers installed by configure_logging (for tests)."""
    global _configured_path

    root = logging.getLogger("dbdock")
    for handler in list(root.handlers):
        root.removeHandler(handler)
        handler.close()
    _configured_path = None
