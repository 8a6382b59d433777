"""
Structured logging configuration for the masking job

Provides JSON-formatted logging with contextual information (table and
column being masked) and console output for interactive runs.

Usage:
    import logging

    from utils.logging import setup_logging

    # Setup logging (call once at process startup)
    setup_logging(level="INFO", log_file="/var/log/masking/run.log")

    # Get logger for your module
    logger = logging.getLogger(__name__)

    # Log with context
    logger.info("Masked column", extra={
        "table_name": "member",
        "column": "email",
        "rows": 1200,
    })
"""

from .config import configure_from_env, setup_logging, shutdown_logging
from .formatters import ConsoleFormatter, JSONFormatter
from .handlers import ContextLogger

__all__ = [
    "setup_logging",
    "configure_from_env",
    "shutdown_logging",
    "JSONFormatter",
    "ConsoleFormatter",
    "ContextLogger",
]
