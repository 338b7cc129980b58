"""
Logging setup for the SCADA protocol layer.

Every module logs through ``logging.getLogger(__name__)`` under the
``scada_protocols`` namespace. Applications call setup_logging() once to get
console (and optionally file) output in the standard format.
"""

import logging
from typing import Optional

from scada_protocols.config import LOGGING_CONFIG

ROOT_LOGGER_NAME = "scada_protocols"


def setup_logging(level: Optional[str] = None,
                  log_file: Optional[str] = None,
                  log_format: Optional[str] = None) -> logging.Logger:
    """
    Configure the package logger.

    Args:
        level: Logging level name (defaults to LOG_LEVEL env / INFO)
        log_file: Optional file path to also write logs to
        log_format: Optional custom format string

    Returns:
        The configured ``scada_protocols`` logger
    """
    level = level or LOGGING_CONFIG["level"]
    log_file = log_file or LOGGING_CONFIG["file_path"]
    formatter = logging.Formatter(log_format or LOGGING_CONFIG["format"])

    logger = logging.getLogger(ROOT_LOGGER_NAME)
    logger.setLevel(getattr(logging, level.upper(), logging.INFO))

    # Replace handlers so repeated calls don't duplicate output
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    console = logging.StreamHandler()
    console.setFormatter(formatter)
    logger.addHandler(console)

    if log_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

    return logger
