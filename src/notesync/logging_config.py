"""loguru setup shared by the services."""

from __future__ import annotations

import sys
from typing import Any

from loguru import logger

_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss}</green> [<level>{level: <8}</level>] "
    "<cyan>{name}</cyan>:<cyan>{line}</cyan> : {message}"
)


def configure_logging(level: str = "INFO", sink: Any = sys.stderr) -> int:
    """Replace loguru's default handler with a single formatted one.

    Returns the handler id so callers can ``logger.remove()`` it again.
    """
    logger.remove()
    return logger.add(sink, level=level.upper(), format=_FORMAT, backtrace=False, diagnose=False)
