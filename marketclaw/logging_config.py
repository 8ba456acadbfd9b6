"""Loguru logging setup."""

import os
import sys

from loguru import logger


def setup_logging(level: str | None = None) -> None:
    """Configure the loguru log level (defaults to MARKETCLAW_LOG_LEVEL or INFO)."""
    if level is None:
        level = os.environ.get("MARKETCLAW_LOG_LEVEL", "INFO").upper()

    logger.remove()
    logger.add(
        sys.stderr,
        format="<level>{time:YYYY-MM-DD HH:mm:ss} | {name}:{function}:{line} | {message}</level>",
        level=level,
        colorize=True,
        backtrace=True,
        diagnose=False,
    )
