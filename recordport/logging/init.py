from __future__ import annotations

import logging
import sys

"""Logging initialization with labeled prefixes.

Every line written by the application logger carries a level label
(INFO|WARN|ERROR|SUMMARY) followed by the message. Module loggers created
with ``logging.getLogger(__name__)`` inside the ``recordport`` package are
children of the application logger and share its handler.

Per-row failures are additionally written as JSON Lines by
``recordport.logging.error_log``.
"""

__all__ = [
    "APP_LOGGER_NAME",
    "SUMMARY_LEVEL",
    "LabeledFormatter",
    "setup_logging",
    "get_logger",
    "log_summary",
    "reset_logging",
]

APP_LOGGER_NAME = "recordport"

# Custom SUMMARY level (between INFO=20 and WARNING=30)
SUMMARY_LEVEL = 25

_logger: logging.Logger | None = None


class LabeledFormatter(logging.Formatter):
    """Formats records as ``LABEL message``."""

    LEVEL_LABELS = {
        logging.DEBUG: "DEBUG",
        logging.INFO: "INFO",
        logging.WARNING: "WARN",
        logging.ERROR: "ERROR",
        logging.CRITICAL: "CRITICAL",
        SUMMARY_LEVEL: "SUMMARY",
    }

    def format(self, record: logging.LogRecord) -> str:
        level_label = self.LEVEL_LABELS.get(record.levelno, record.levelname)
        message = f"{level_label} {record.getMessage()}"
        if record.exc_info:
            message = f"{message}\n{self.formatException(record.exc_info)}"
        return message


def setup_logging(debug: bool = False) -> logging.Logger:
    """Configure the application logger (idempotent).

    Output goes to stdout for consistency with the CLI contract. A second call
    returns the already configured logger; ``debug=True`` on any call lowers
    the level to DEBUG.

    Returns:
        Configured logger instance for the application
    """
    global _logger

    if _logger is None:
        logging.addLevelName(SUMMARY_LEVEL, "SUMMARY")

        logger = logging.getLogger(APP_LOGGER_NAME)
        logger.setLevel(logging.INFO)

        # Clear any existing handlers to avoid duplication
        for handler in logger.handlers[:]:
            logger.removeHandler(handler)

        handler = logging.StreamHandler(sys.stdout)
        handler.setLevel(logging.INFO)
        handler.setFormatter(LabeledFormatter())
        logger.addHandler(handler)

        # Prevent propagation to root logger to avoid duplicate output
        logger.propagate = False
        _logger = logger

    if debug:
        for h in _logger.handlers:
            h.setLevel(logging.DEBUG)
        _logger.setLevel(logging.DEBUG)
        _logger.debug("debug mode enabled")
    return _logger


def get_logger() -> logging.Logger:
    """Return the application logger, configuring it on first use."""
    if _logger is None:
        return setup_logging()
    return _logger


def log_summary(message: str) -> None:
    """Log a message at SUMMARY level."""
    get_logger().log(SUMMARY_LEVEL, message)


def reset_logging() -> None:
    """Reset the global logger state. Mainly for testing purposes."""
    global _logger
    if _logger is not None:
        for handler in _logger.handlers[:]:
            _logger.removeHandler(handler)
        _logger.propagate = True
        _logger.setLevel(logging.NOTSET)
    _logger = None
