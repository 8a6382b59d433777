"""
Logging configuration for the masking job.

Provides setup functions for configuring process-wide logging with
support for file rotation, console output, and JSON formatting.
"""

import logging
import logging.handlers
import os
import sys

from .formatters import ConsoleFormatter, JSONFormatter

DEFAULT_APP_NAME = "db-masking"


def setup_logging(
    level: str = "INFO",
    log_file: str | None = None,
    console_output: bool = True,
    json_format: bool = False,
    app_name: str = DEFAULT_APP_NAME,
    max_bytes: int = 50 * 1024 * 1024,  # 50MB
    backup_count: int = 5,
) -> None:
    """
    Configure logging for the process

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_file: Path to log file (if None, file logging is disabled)
        console_output: Whether to output to console (stderr)
        json_format: Use JSON format for both console and file logs
        app_name: Application name for log context
        max_bytes: Maximum log file size before rotation
        backup_count: Number of rotated log files to keep
    """
    numeric_level = getattr(logging, level.upper(), logging.INFO)

    root_logger = logging.getLogger()
    root_logger.setLevel(numeric_level)

    # Clear existing handlers
    root_logger.handlers.clear()

    if console_output:
        console_handler = logging.StreamHandler(sys.stderr)
        console_handler.setLevel(numeric_level)

        if json_format:
            console_handler.setFormatter(
                JSONFormatter(
                    include_timestamp=True,
                    include_hostname=True,
                    app_name=app_name,
                )
            )
        else:
            console_handler.setFormatter(ConsoleFormatter(use_colors=True))

        root_logger.addHandler(console_handler)

    if log_file:
        log_dir = os.path.dirname(log_file)
        if log_dir and not os.path.exists(log_dir):
            os.makedirs(log_dir, exist_ok=True)

        file_handler = logging.handlers.RotatingFileHandler(
            filename=log_file,
            maxBytes=max_bytes,
            backupCount=backup_count,
            encoding="utf-8",
        )
        file_handler.setLevel(numeric_level)

        if json_format:
            file_handler.setFormatter(
                JSONFormatter(
                    include_timestamp=True,
                    include_hostname=True,
                    app_name=app_name,
                )
            )
        else:
            file_handler.setFormatter(
                logging.Formatter(
                    fmt="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
                    datefmt="%Y-%m-%d %H:%M:%S",
                )
            )

        root_logger.addHandler(file_handler)

    # Faker logs every locale/provider lookup at DEBUG
    logging.getLogger("faker").setLevel(logging.WARNING)
    logging.getLogger("urllib3").setLevel(logging.WARNING)
    logging.getLogger("requests").setLevel(logging.WARNING)

    logger = logging.getLogger(__name__)
    logger.debug(
        f"Logging initialized: level={level}, file={log_file or 'none'}, "
        f"console={console_output}, json={json_format}"
    )


def shutdown_logging() -> None:
    """
    Flush and close every root handler.

    Call during process shutdown so rotating file handles are released.
    """
    root_logger = logging.getLogger()

    for handler in root_logger.handlers[:]:
        handler.close()
        root_logger.removeHandler(handler)


def configure_from_env(
    level: str | None = None,
    log_file: str | None = None,
    json_format: bool | None = None,
) -> None:
    """
    Configure logging from environment variables

    Arguments that are given (command-line flags) take precedence over
    the environment.

    Environment variables:
        LOG_LEVEL: Log level (default: INFO)
        LOG_FILE: Log file path (default: none)
        LOG_JSON: Use JSON format (default: false)
        LOG_CONSOLE: Enable console output (default: true)
    """
    level = level or os.getenv("LOG_LEVEL", "INFO")
    log_file = log_file or os.getenv("LOG_FILE")
    if json_format is None:
        json_format = os.getenv("LOG_JSON", "false").lower() in ("true", "1", "yes")
    console_output = os.getenv("LOG_CONSOLE", "true").lower() in ("true", "1", "yes")

    setup_logging(
        level=level,
        log_file=log_file,
        console_output=console_output,
        json_format=json_format,
    )
