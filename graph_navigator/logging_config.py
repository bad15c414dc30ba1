"""
Logging Configuration Module

Centralized logging configuration for the graph navigator. Every handler
installed here carries the secret redaction filter so that database URIs,
provider keys and passwords never reach the log output.
"""

import logging
import sys
from typing import Optional
from graph_navigator.security.redaction import SecretRedactionFilter


def setup_logging(
    log_level: str = "INFO",
    log_format: Optional[str] = None,
    enable_redaction: bool = True
) -> logging.Logger:
    """
    Configure application logging with secret redaction.

    Call once at application startup. Sets up console output with the
    structured format, the redaction filter (if enabled) and a consistent
    level for the application logger.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_format: Custom format string. If None, uses default structured format.
        enable_redaction: Whether to attach the secret redaction filter (default: True)

    Returns:
        Configured root logger instance
    """
    if log_format is None:
        log_format = (
            '%(asctime)s - %(name)s - %(levelname)s - '
            '%(filename)s:%(lineno)d - %(message)s'
        )

    level = getattr(logging, log_level.upper(), logging.INFO)

    root_logger = logging.getLogger()
    root_logger.setLevel(level)

    # Remove existing handlers to avoid duplicates
    root_logger.handlers.clear()

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(level)
    console_handler.setFormatter(logging.Formatter(log_format, datefmt='%Y-%m-%d %H:%M:%S'))

    if enable_redaction:
        console_handler.addFilter(SecretRedactionFilter())

    root_logger.addHandler(console_handler)

    if enable_redaction:
        root_logger.info("Secret redaction filter enabled for all logs")

    logging.getLogger("graph_navigator").setLevel(level)

    return root_logger


def get_logger(name: str = "graph_navigator") -> logging.Logger:
    """
    Get a logger instance with the specified name.

    The logger inherits the redaction filter from the root handler when
    setup_logging() has been called.
    """
    return logging.getLogger(name)
