"""
logger.py
---------
Logging setup for the table sync tool.

Design Decisions:
    * Everything logs under one "tablesync" logger; modules take a child
      via ``get_logger(__name__)``. Setup happens lazily on the first
      ``get_logger`` call, from CONFIG.
    * ``configure_logging`` may be called again (CLI, tests); it swaps
      out the handlers it installed earlier instead of stacking them.
    * With LOG_FILE set the file receives DEBUG, including batch SQL,
      while the console stays at LOG_LEVEL.
    * Long-running copies report through ``progress_logger``, which turns
      the engine's ``(message, current, total)`` callback into INFO lines.
"""
from __future__ import annotations

import logging
import sys
from pathlib import Path
from typing import Callable

from config import CONFIG, get_log_level

_ROOT_LOGGER_NAME = "tablesync"
_CONSOLE_FORMAT = "%(asctime)s [%(levelname)-8s] %(name)s: %(message)s"
_FILE_FORMAT = "%(asctime)s [%(levelname)s] %(name)s (%(filename)s:%(lineno)d): %(message)s"
_DATE_FORMAT = "%Y-%m-%dT%H:%M:%S"

_installed: list[logging.Handler] = []


def _handler(handler: logging.Handler, level: int, fmt: str) -> logging.Handler:
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(fmt=fmt, datefmt=_DATE_FORMAT))
    return handler


def configure_logging(level: int | None = None, log_file: str | None = None) -> logging.Logger:
    """
    Install console (and optional file) handlers on the 'tablesync' logger.

    Args:
        level:    Console level; defaults to LOG_LEVEL.
        log_file: Path for a DEBUG-level log file; defaults to LOG_FILE.

    Returns:
        The configured 'tablesync' logger.
    """
    root = logging.getLogger(_ROOT_LOGGER_NAME)
    while _installed:
        old = _installed.pop()
        root.removeHandler(old)
        old.close()

    console_level = get_log_level() if level is None else level
    log_file = CONFIG.sync.log_file if log_file is None else log_file

    _installed.append(_handler(logging.StreamHandler(sys.stderr), console_level, _CONSOLE_FORMAT))
    if log_file:
        log_path = Path(log_file)
        try:
            log_path.parent.mkdir(parents=True, exist_ok=True)
            _installed.append(
                _handler(logging.FileHandler(log_path, encoding="utf-8"), logging.DEBUG, _FILE_FORMAT)
            )
        except OSError as exc:
            root.warning("Could not create log file '%s': %s", log_path, exc)

    for handler in _installed:
        root.addHandler(handler)
    root.setLevel(min(h.level for h in _installed))
    return root


def get_logger(name: str) -> logging.Logger:
    """
    Return a child logger under 'tablesync', configuring logging on first use.

    Example::

        log = get_logger(__name__)
        log.info("Sync started")
        log.warning("Index %s could not be created: %s", name, exc)
    """
    if not _installed:
        configure_logging()
    if name == _ROOT_LOGGER_NAME or name.startswith(f"{_ROOT_LOGGER_NAME}."):
        return logging.getLogger(name)
    return logging.getLogger(f"{_ROOT_LOGGER_NAME}.{name}")


def progress_logger(name: str = "progress") -> Callable[[str, int, int], None]:
    """Build a progress callback that logs ``message: current/total (pct%)``."""
    log = get_logger(name)

    def report(message: str, current: int, total: int) -> None:
        if total:
            log.info("%s: %d/%d (%.1f%%)", message, current, total, 100.0 * current / total)
        else:
            log.info("%s: %d", message, current)

    return report
