"""
Logging Utilities

This module sets up logging for the project. Every module creates its own
logger with ``setup_logger(__name__)``; ``configure_logging`` applies the
level and optional log file from the application config to all of them.
"""

import logging
import sys
from pathlib import Path
from typing import Optional, Union

PACKAGE_LOGGER = "map_merge"


def setup_logger(name: str,
                 level: int = logging.INFO,
                 log_file: Optional[str] = None) -> logging.Logger:
    """
    Set up a logger with consistent formatting.

    Args:
        name: Logger name (usually __name__)
        level: Logging level (default: logging.INFO)
        log_file: Optional log file path. If provided, logs will be written to this file

    Returns:
        Configured logger instance
    """
    logger = logging.getLogger(name)

    # Avoid adding multiple handlers
    if logger.handlers:
        return logger

    logger.setLevel(level)

    console_formatter = logging.Formatter(
        '%(asctime)s | %(levelname)s | %(name)s | %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(level)
    console_handler.setFormatter(console_formatter)
    logger.addHandler(console_handler)

    if log_file:
        _add_file_handler(logger, log_file, level)

    return logger


def _add_file_handler(logger: logging.Logger, log_file: str, level: int) -> None:
    # Worker processes of the pairwise pool write to the same file
    file_formatter = logging.Formatter(
        '%(asctime)s | %(levelname)s | %(processName)s[%(process)d] | %(name)s | %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )
    log_path = Path(log_file)
    log_path.parent.mkdir(parents=True, exist_ok=True)

    file_handler = logging.FileHandler(log_file)
    file_handler.setLevel(level)
    file_handler.setFormatter(file_formatter)
    logger.addHandler(file_handler)


def configure_logging(level: Union[int, str] = logging.INFO,
                      log_file: Optional[str] = None) -> None:
    """
    Apply a level (and optionally a log file) to every map_merge logger.

    Args:
        level: Logging level, either numeric or a name such as "DEBUG"
        log_file: Optional path of a log file shared by all module loggers
    """
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())

    names = [PACKAGE_LOGGER] + [
        n for n in logging.root.manager.loggerDict if n.startswith(PACKAGE_LOGGER + ".")
    ]
    for name in names:
        logger = logging.getLogger(name)
        logger.setLevel(level)
        for handler in logger.handlers:
            handler.setLevel(level)
        if log_file and not any(isinstance(h, logging.FileHandler) for h in logger.handlers):
            if logger.handlers:
                _add_file_handler(logger, log_file, level)
