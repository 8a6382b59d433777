"""
Transaction coordinator.

Wraps one masking run in a single store transaction with a time budget:

    with TransactionCoordinator(store, timeout_seconds=60) as tx:
        tx.check_deadline("load rows")
        ...

The transaction is committed only when the block exits cleanly within the
budget. Every other exit path (exception, timeout, dry run) rolls back.
"""

import logging
import time
from collections.abc import Callable
from types import TracebackType

from .errors import MaskingTimeoutError
from .store import Store

logger = logging.getLogger(__name__)


class TransactionCoordinator:
    """Scoped begin / commit-or-rollback around one masking run."""

    def __init__(
        self,
        store: Store,
        timeout_seconds: float,
        dry_run: bool = False,
        clock: Callable[[], float] = time.monotonic,
    ):
        if timeout_seconds <= 0:
            raise ValueError(f"timeout_seconds must be positive, got {timeout_seconds}")

        self.store = store
        self.timeout_seconds = timeout_seconds
        self.dry_run = dry_run
        self._clock = clock
        self._started_at: float | None = None
        self.committed = False
        self.rolled_back = False

    @property
    def active(self) -> bool:
        return self._started_at is not None and not (self.committed or self.rolled_back)

    def elapsed(self) -> float:
        if self._started_at is None:
            return 0.0
        return self._clock() - self._started_at

    def remaining(self) -> float:
        return max(0.0, self.timeout_seconds - self.elapsed())

    def check_deadline(self, operation: str = "operation") -> None:
        """
        Raise if the run has used up its budget.

        Raises:
            MaskingTimeoutError: When the elapsed time exceeds the timeout
        """
        elapsed = self.elapsed()
        if elapsed > self.timeout_seconds:
            raise MaskingTimeoutError(
                f"transaction exceeded {self.timeout_seconds:g}s timeout "
                f"before {operation} ({elapsed:.2f}s elapsed)"
            )

    def start_statement(self, operation: str = "operation") -> None:
        """
        Check the deadline, then cap the next statement at the time left.

        The server-side statement_timeout never extends past the run's deadline.

        Raises:
            MaskingTimeoutError: When the elapsed time exceeds the timeout
        """
        self.check_deadline(operation)
        self.store.set_statement_timeout(self.remaining())

    def __enter__(self) -> "TransactionCoordinator":
        self.store.begin()
        self._started_at = self._clock()
        logger.debug(f"Transaction started (timeout {self.timeout_seconds:g}s)")

        try:
            self.store.set_statement_timeout(self.timeout_seconds)
        except Exception:
            self._rollback_quietly()
            raise
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> bool:
        if exc_type is not None:
            logger.warning(f"Rolling back transaction: {exc}")
            self._rollback_quietly()
            return False

        if self.dry_run:
            self.store.rollback()
            self.rolled_back = True
            logger.info("Dry run - transaction rolled back")
            return False

        try:
            self.check_deadline("commit")
        except MaskingTimeoutError:
            self._rollback_quietly()
            raise

        self.store.commit()
        self.committed = True
        logger.debug(f"Transaction committed after {self.elapsed():.2f}s")
        return False

    def _rollback_quietly(self) -> None:
        # A failing rollback must not mask the error that triggered it
        try:
            self.store.rollback()
        except Exception as rollback_error:
            logger.error(f"Rollback failed: {rollback_error}")
        finally:
            self.rolled_back = True
