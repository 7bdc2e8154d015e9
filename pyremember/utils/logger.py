"""
Logger module - Centralized logging configuration for pyremember.
"""

import logging
import sys
from typing import Optional, Union


def get_logger(name: str, level: Optional[Union[int, str]] = None) -> logging.Logger:
    """
    Get a configured logger instance.

    Args:
        name: Logger name (typically __name__ of the calling module)
        level: Optional logging level, as an int or a level name (defaults to INFO)

    Returns:
        Configured logger instance
    """
    logger = logging.getLogger(name)

    if not logger.handlers:
        handler = logging.StreamHandler(sys.stdout)
        formatter = logging.Formatter(
            "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S"
        )
        handler.setFormatter(formatter)
        logger.addHandler(handler)

    if level is not None:
        logger.setLevel(level.upper() if isinstance(level, str) else level)
    elif logger.level == logging.NOTSET:
        logger.setLevel(logging.INFO)

    return logger


def set_level(level: Union[int, str]) -> None:
    """Apply a level to the package logger and every pyremember child logger."""
    resolved = level.upper() if isinstance(level, str) else level
    logging.getLogger("pyremember").setLevel(resolved)
    for name, existing in logging.root.manager.loggerDict.items():
        if name.startswith("pyremember.") and isinstance(existing, logging.Logger):
            existing.setLevel(resolved)

