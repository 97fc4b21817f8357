"""
Logging utilities.
"""

import logging
import os
import sys
from typing import Any

ROOT_LOGGER = "threadstate"


def get_logger(name: str) -> logging.Logger:
    """
    Get a logger with the given name.

    Handlers are attached to the ``threadstate`` root logger only, so
    module loggers propagate to a single stderr handler.

    Args:
        name: Logger name (usually __name__)

    Returns:
        Configured logger
    """
    root = logging.getLogger(ROOT_LOGGER)

    if not root.handlers:
        handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(logging.Formatter(
            '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
        ))
        root.addHandler(handler)
        root.setLevel(_level_from_env())

    return logging.getLogger(name)


def set_log_level(level: int | str) -> None:
    """
    Set the package log level.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    """
    if isinstance(level, str):
        level = getattr(logging, level.upper())

    logging.getLogger(ROOT_LOGGER).setLevel(level)


def safe_log(
    logger: logging.Logger,
    level: int,
    message: str,
    *args: Any,
    **kwargs: Any,
) -> None:
    """
    Log without letting a handler failure escape.

    Used on error paths, where a broken handler must not replace the
    error being reported.
    """
    try:
        logger.log(level, message, *args, **kwargs)
    except Exception:  # noqa: BLE001
        pass


def _level_from_env() -> int:
    name = os.environ.get("LOG_LEVEL", "INFO").upper()
    level = logging.getLevelName(name)
    return level if isinstance(level, int) else logging.INFO
