from __future__ import annotations

import logging
import os
from logging.handlers import RotatingFileHandler
from typing import Iterable

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"
LOG_FILE = "navpi.log"

# One line per SSE poll and position push is too chatty at INFO
NOISY_LOGGERS = ("aiohttp.access",)


def _resolve_level(level: str) -> int:
    resolved = logging.getLevelName(level.upper())
    return resolved if isinstance(resolved, int) else logging.INFO


def _file_handler(log_dir: str, formatter: logging.Formatter) -> RotatingFileHandler | None:
    """Rotating navpi.log, or None when the directory cannot be written (dev boxes without /var/log access)."""
    try:
        os.makedirs(log_dir, exist_ok=True)
        handler = RotatingFileHandler(os.path.join(log_dir, LOG_FILE), maxBytes=5 * 1024 * 1024, backupCount=3)
    except OSError:
        return None
    handler.setFormatter(formatter)
    return handler


def setup_logging(log_dir: str, level: str = "INFO", quiet: Iterable[str] = NOISY_LOGGERS) -> None:
    log_level = _resolve_level(level)
    formatter = logging.Formatter(fmt=LOG_FORMAT, datefmt="%Y-%m-%d %H:%M:%S")
    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)

    # Re-invocation only adjusts levels; handlers are installed once
    has_file = any(isinstance(h, RotatingFileHandler) for h in root_logger.handlers)
    has_console = any(type(h) is logging.StreamHandler for h in root_logger.handlers)

    file_handler = None
    if not has_file:
        file_handler = _file_handler(log_dir, formatter)
        if file_handler is not None:
            root_logger.addHandler(file_handler)
    if not has_console:
        console_handler = logging.StreamHandler()
        console_handler.setFormatter(formatter)
        root_logger.addHandler(console_handler)
    for handler in root_logger.handlers:
        if isinstance(handler, RotatingFileHandler) or type(handler) is logging.StreamHandler:
            handler.setLevel(log_level)

    for name in quiet:
        logging.getLogger(name).setLevel(logging.WARNING)

    if not has_file and file_handler is None:
        logging.getLogger(__name__).warning("Cannot write logs to %s; logging to console only", log_dir)
