"""Centralized logging configuration for the ``recurwise`` package.

Library modules never attach their own handlers. They call
``get_logger(__name__)`` and rely on the host application calling
``configure_logging()`` once at startup.
"""

import logging
import sys
from typing import IO, Optional, Union

from recurwise.config import settings

_PKG_LOGGER_NAME = "recurwise"
_CONFIGURED = False


def _parse_level(level: Union[int, str, None]) -> int:
    if isinstance(level, int):
        return level
    if level is None:
        level = settings.log_level
    level = level.strip().upper()
    if level.isdigit():
        return int(level)
    numeric = getattr(logging, level, None)
    if isinstance(numeric, int):
        return numeric
    return logging.INFO


def configure_logging(
    level: Union[int, str, None] = None,
    fmt: Optional[str] = None,
    stream: IO[str] = sys.stderr,
) -> None:
    """Attach a single StreamHandler to the package logger, exactly once.

    ``level`` defaults to ``settings.log_level``.
    """
    global _CONFIGURED
    if _CONFIGURED:
        return

    logger = logging.getLogger(_PKG_LOGGER_NAME)

    for h in list(logger.handlers):
        if isinstance(h, logging.NullHandler):
            logger.removeHandler(h)

    handler = logging.StreamHandler(stream)
    handler.setFormatter(
        logging.Formatter(fmt or "%(asctime)s %(name)s %(levelname)s %(message)s")
    )

    logger.setLevel(_parse_level(level))
    logger.addHandler(handler)
    logger.propagate = False

    _CONFIGURED = True


def get_logger(name: str) -> logging.Logger:
    """Return a logger, keeping the package silent until logging is configured."""
    pkg_logger = logging.getLogger(_PKG_LOGGER_NAME)
    if not _CONFIGURED and not pkg_logger.handlers:
        pkg_logger.addHandler(logging.NullHandler())
    return logging.getLogger(name)
