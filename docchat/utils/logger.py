"""
Logging configuration and utilities.

This module provides structured logging capabilities with support for both
development and production environments, including JSON formatting and
contextual metadata.
"""

import sys
import logging
from typing import Any
from pathlib import Path
import structlog
from structlog.typing import FilteringBoundLogger

from docchat.config.settings import settings


def setup_logging() -> None:
    """
    Configure application logging with structured logging support.

    Sets up logging configuration based on application settings including
    log level, format, and output destinations.
    """
    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            # Use JSON formatter for production, console for development
            structlog.processors.JSONRenderer() if settings.log_format == "json"
            else structlog.dev.ConsoleRenderer(colors=False)
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    # Configure standard logging
    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, settings.log_level))

    # Remove existing handlers
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    # structlog renders the event itself; plain records from libraries get a prefix
    if settings.log_format == "json":
        formatter = logging.Formatter(fmt="%(message)s")
    else:
        formatter = logging.Formatter(
            fmt="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S"
        )

    # Console handler
    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(formatter)
    console_handler.setLevel(getattr(logging, settings.log_level))
    root_logger.addHandler(console_handler)

    # File handler (if specified)
    if settings.log_file:
        log_file_path = Path(settings.log_file)
        log_file_path.parent.mkdir(parents=True, exist_ok=True)

        file_handler = logging.FileHandler(log_file_path)
        file_handler.setFormatter(formatter)
        file_handler.setLevel(getattr(logging, settings.log_level))
        root_logger.addHandler(file_handler)


def get_logger(name: str, **context: Any) -> FilteringBoundLogger:
    """
    Get a structured logger instance with optional context.

    Args:
        name: Logger name (typically __name__)
        **context: Additional context to include in all log messages

    Returns:
        Configured logger instance

    Examples:
        >>> logger = get_logger(__name__, component="registry")
        >>> logger.info("Store persisted", store="alice_policy", chunks=3)
    """
    logger = structlog.get_logger(name)
    if context:
        logger = logger.bind(**context)
    return logger


# Initialize logging on module import
setup_logging()
