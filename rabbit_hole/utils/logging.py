"""
Logging utilities for the relay.
"""

import logging
import sys
from typing import Optional


DEFAULT_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

# aio_pika and aiormq are chatty at DEBUG; only opened up from -vv
TRANSPORT_LOGGERS = ("aio_pika", "aiormq")


def level_for_verbosity(verbosity: int) -> tuple[int, int]:
    """Map the CLI ``-v`` count to (relay level, transport level).

    0 -> INFO/WARNING, 1 -> DEBUG/WARNING, 2+ -> DEBUG/DEBUG.
    """
    if verbosity <= 0:
        return logging.INFO, logging.WARNING
    if verbosity == 1:
        return logging.DEBUG, logging.WARNING
    return logging.DEBUG, logging.DEBUG


def setup_logging(
    verbosity: int = 0,
    format_string: Optional[str] = None,
) -> None:
    """
    Setup logging configuration for the relay process.

    Args:
        verbosity: Number of ``-v`` flags given on the command line
        format_string: Custom format string for log messages
    """
    if format_string is None:
        format_string = DEFAULT_FORMAT

    relay_level, transport_level = level_for_verbosity(verbosity)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(logging.Formatter(format_string))

    root_logger = logging.getLogger()
    root_logger.handlers = [console_handler]
    root_logger.setLevel(relay_level)

    for name in TRANSPORT_LOGGERS:
        logging.getLogger(name).setLevel(transport_level)


def get_logger(name: str) -> logging.Logger:
    """
    Get a logger instance with the specified name.

    Args:
        name: Logger name (typically __name__)

    Returns:
        Logger instance
    """
    return logging.getLogger(name)
