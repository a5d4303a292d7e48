"""Loguru sink setup for processes embedding the semantic store."""

from __future__ import annotations

import sys
from typing import Any, TextIO

from loguru import logger

LOG_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | <level>{level: <8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{function}</cyan> - <level>{message}</level>"
)


def configure_logging(level: str = "INFO", sink: TextIO | Any = None) -> int:
    """Replace loguru's default handler with a single sink.

    Args:
        level: Minimum level name (DEBUG, INFO, WARNING, ...)
        sink: Any loguru sink; defaults to stderr

    Returns:
        Handler id, usable with ``logger.remove``
    """
    logger.remove()
    return logger.add(sink or sys.stderr, level=level.upper(), format=LOG_FORMAT)
