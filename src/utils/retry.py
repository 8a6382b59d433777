"""
Retry decorator with exponential backoff for database connections

Only the connection bootstrap is retried. Statements inside the masking
transaction are never retried: a failed statement aborts the transaction
and the whole run is rolled back.

Usage:
    from utils.retry import retry_database_operation

    @retry_database_operation(max_retries=3, base_delay=1.0)
    def connect():
        return psycopg2.connect(dsn)
"""

import logging
import random
import time
from functools import wraps
from typing import Any, Callable, Optional, Tuple, Type

logger = logging.getLogger(__name__)


def retry_with_backoff(
    max_retries: int = 3,
    base_delay: float = 1.0,
    max_delay: float = 60.0,
    exponential_base: float = 2.0,
    jitter: bool = True,
    retryable_exceptions: Optional[Tuple[Type[Exception], ...]] = None,
    retry_if: Optional[Callable[[Exception], bool]] = None,
    on_retry: Optional[Callable[[int, Exception, float], None]] = None,
):
    """
    Decorator that retries a function with exponential backoff

    Args:
        max_retries: Maximum number of retry attempts (default: 3)
        base_delay: Initial delay in seconds (default: 1.0)
        max_delay: Maximum delay in seconds (default: 60.0)
        exponential_base: Base for exponential backoff (default: 2.0)
        jitter: Add +/-25% random jitter to each delay (default: True)
        retryable_exceptions: Exception types to retry (default: all exceptions)
        retry_if: Predicate deciding whether a raised exception is retryable
        on_retry: Callback function(attempt, exception, delay) called on each retry

    Returns:
        Decorated function with retry logic
    """
    def decorator(func: Callable) -> Callable:
        @wraps(func)
        def wrapper(*args, **kwargs) -> Any:
            func_name = getattr(func, "__name__", "function")

            for attempt in range(max_retries + 1):
                try:
                    return func(*args, **kwargs)

                except Exception as e:
                    retryable = (
                        (retryable_exceptions is None or isinstance(e, retryable_exceptions))
                        and (retry_if is None or retry_if(e))
                    )
                    if not retryable:
                        logger.error(
                            f"Non-retryable exception in {func_name}: {type(e).__name__}: {e}"
                        )
                        raise

                    if attempt == max_retries:
                        logger.error(
                            f"Max retries ({max_retries}) exceeded for {func_name}: "
                            f"{type(e).__name__}: {e}"
                        )
                        raise

                    delay = min(base_delay * (exponential_base ** attempt), max_delay)
                    if jitter:
                        jitter_amount = delay * 0.25
                        delay = max(0.1, delay + random.uniform(-jitter_amount, jitter_amount))

                    logger.warning(
                        f"Attempt {attempt + 1}/{max_retries} failed for {func_name}: "
                        f"{type(e).__name__}: {e}. Retrying in {delay:.2f}s..."
                    )

                    if on_retry:
                        on_retry(attempt + 1, e, delay)

                    time.sleep(delay)

            raise RuntimeError(f"Unexpected error in retry logic for {func_name}")

        return wrapper
    return decorator


_RETRYABLE_PATTERNS = (
    "connection refused",
    "connection reset",
    "could not connect",
    "timeout expired",
    "server closed the connection",
    "the database system is starting up",
    "too many connections",
    "network is unreachable",
    "could not translate host name",
)

_RETRYABLE_TYPES = ("operationalerror", "interfaceerror", "connectionerror", "timeouterror")


def is_retryable_db_exception(exception: Exception) -> bool:
    """
    Determine if a connection-time database exception is transient.

    Authentication failures and unknown databases are OperationalErrors too,
    so the message is checked before the exception type.

    Args:
        exception: The exception to check

    Returns:
        True if the exception is retryable, False otherwise
    """
    message = str(exception).lower()

    if "authentication failed" in message or "does not exist" in message:
        return False

    if any(pattern in message for pattern in _RETRYABLE_PATTERNS):
        return True

    return type(exception).__name__.lower() in _RETRYABLE_TYPES


def retry_database_operation(
    max_retries: int = 3,
    base_delay: float = 1.0,
    on_retry: Optional[Callable[[int, Exception, float], None]] = None,
):
    """
    Retry decorator that only retries transient database errors.

    Args:
        max_retries: Maximum number of retry attempts (default: 3)
        base_delay: Initial delay in seconds (default: 1.0)
        on_retry: Callback function(attempt, exception, delay) called on each retry
    """
    return retry_with_backoff(
        max_retries=max_retries,
        base_delay=base_delay,
        retry_if=is_retryable_db_exception,
        on_retry=on_retry,
    )
