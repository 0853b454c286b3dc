"""
Logging setup shared by the Flask service and the command line tool.
"""

import logging
import sys
from typing import Optional, TextIO

JSON_FORMAT = (
    '{"timestamp": "%(asctime)s", "level": "%(levelname)s", '
    '"logger": "%(name)s", "message": "%(message)s"}'
)
TEXT_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def configure_logging(
    level: str = "INFO",
    log_format: str = "text",
    stream: Optional[TextIO] = None,
) -> None:
    """
    Configure the root logger with a single stream handler.

    Args:
        level: Log level name (e.g. "INFO", "DEBUG").
        log_format: "json" or "text".
        stream: Output stream. Defaults to stdout.
    """
    log_level = getattr(logging, level.upper(), logging.INFO)
    formatter = logging.Formatter(JSON_FORMAT if log_format == "json" else TEXT_FORMAT)

    logging.disable(logging.NOTSET)
    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)

    # Remove existing handlers
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    stream_handler = logging.StreamHandler(stream or sys.stdout)
    stream_handler.setFormatter(formatter)
    stream_handler.setLevel(log_level)
    root_logger.addHandler(stream_handler)


def disable_logging() -> None:
    """Silence all logging, leaving stdout for program output only."""
    root_logger = logging.getLogger()
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)
    root_logger.addHandler(logging.NullHandler())
    logging.disable(logging.CRITICAL)
