"""Core logging implementation for asset-timeline."""

import logging
import sys
from typing import Optional

__all__ = ["get_logger", "setup_logging", "LOG_FORMAT"]

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def setup_logging(level: int | str | None = None, stream=sys.stderr) -> None:
    """Configure basic logging.

    Args:
        level: Logging level. Accepts an int or a level name such as "DEBUG".
            Defaults to the ASSET_LOG_LEVEL environment setting.
        stream: Output stream.
    """
    if level is None:
        from src.config import get_log_level

        level = get_log_level()
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
        if not isinstance(level, int):
            level = logging.INFO

    logging.basicConfig(level=level, format=LOG_FORMAT, stream=stream)


def get_logger(name: Optional[str] = None) -> logging.Logger:
    """Get a logger instance.

    Args:
        name: Name of the logger.

    Returns:
        Logger instance.
    """
    return logging.getLogger(name or "asset-timeline")
