"""
Masking engine.

Runs every column rule of the registry inside one transaction:

1. validate the registry against the live schema;
2. load the protected identities once;
3. per table, resolve the rows to skip (cached for the run);
4. per column, generate replacement values and write them back in batched
   set-based UPDATEs.

Any failure aborts the run; the transaction rolls back so no table is left
partially masked.
"""

import logging
import math
import random
import time
from collections.abc import Callable
from dataclasses import asdict, dataclass, field
from typing import Any

from utils.logging import ContextLogger
from utils.tracing import add_span_attributes, trace_operation

from .allowlist import AllowlistResolver, RowKey, SkipSet, load_protected_identities, row_key
from .config.rules import ColumnRule, MaskValue, RuleRegistry
from .config.settings import MaskingSettings
from .errors import ConfigurationError, GeneratorError, MaskingError
from .executor import BatchRow, apply_batch, effective_batch_size
from .metrics import COLUMNS_PROCESSED, ROWS_PROCESSED, RUN_SECONDS
from .store import Store
from .transaction import TransactionCoordinator

logger = logging.getLogger(__name__)


@dataclass
class ColumnResult:
    """Outcome of masking one column."""

    table: str
    column: str
    rows_total: int = 0
    rows_masked: int = 0
    rows_skipped: int = 0
    rows_nulled: int = 0
    batches: int = 0


@dataclass
class RunSummary:
    """Outcome of a successful run."""

    columns_masked: int
    elapsed_seconds: float
    columns: list[ColumnResult] = field(default_factory=list)
    dry_run: bool = False

    @property
    def rows_masked(self) -> int:
        return sum(result.rows_masked for result in self.columns)

    @property
    def rows_skipped(self) -> int:
        return sum(result.rows_skipped for result in self.columns)

    @property
    def batches(self) -> int:
        return sum(result.batches for result in self.columns)

    def to_dict(self) -> dict[str, Any]:
        return {
            "columns_masked": self.columns_masked,
            "rows_masked": self.rows_masked,
            "rows_skipped": self.rows_skipped,
            "batches": self.batches,
            "elapsed_seconds": round(self.elapsed_seconds, 3),
            "dry_run": self.dry_run,
            "columns": [asdict(result) for result in self.columns],
        }


class MaskingEngine:
    """
    Masks the registry's columns in place.

    Args:
        store: Store to mask; used for exactly one transaction per ``run``
        registry: Tables, primary keys and column rules
        settings: Timeout, batch size and dry-run flag
        rng: Random source for null-injection draws (default: seeded from
            ``settings.seed``)
    """

    def __init__(
        self,
        store: Store,
        registry: RuleRegistry,
        settings: MaskingSettings | None = None,
        rng: random.Random | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.store = store
        self.registry = registry
        self.settings = settings or MaskingSettings()
        self.rng = rng if rng is not None else random.Random(self.settings.seed)
        self.resolver = AllowlistResolver(store, registry)
        self._clock = clock
        self._transaction: TransactionCoordinator | None = None

    def run(self) -> RunSummary:
        """
        Mask every configured column in one transaction.

        Returns:
            RunSummary of the committed (or, in dry-run mode, rolled back) run

        Raises:
            MaskingError: On the first failure; the transaction is rolled back
        """
        logger.info("=" * 60)
        logger.info("Starting data obfuscation")
        logger.info("=" * 60)

        started_at = self._clock()
        results: list[ColumnResult] = []
        outcome = "failure"

        try:
            with trace_operation(
                "masking_run",
                tables=len(self.registry),
                columns=self.registry.column_count(),
                dry_run=self.settings.dry_run,
            ):
                with TransactionCoordinator(
                    self.store,
                    self.settings.timeout_seconds,
                    dry_run=self.settings.dry_run,
                    clock=self._clock,
                ) as transaction:
                    self._transaction = transaction
                    results = self._mask_all()
            outcome = "dry_run" if self.settings.dry_run else "success"
        finally:
            self._transaction = None
            RUN_SECONDS.labels(outcome=outcome).observe(self._clock() - started_at)

        summary = RunSummary(
            columns_masked=len(results),
            elapsed_seconds=self._clock() - started_at,
            columns=results,
            dry_run=self.settings.dry_run,
        )
        logger.info(
            f"Obfuscation completed in {summary.elapsed_seconds:.2f}s - "
            f"{summary.columns_masked} columns masked"
            + (" (dry run, rolled back)" if summary.dry_run else "")
        )
        return summary

    def _mask_all(self) -> list[ColumnResult]:
        column_types = self.validate_schema()

        protected_identities: frozenset[str] = frozenset()
        if self.registry.protected_tables:
            self._check_deadline("loading protected identities")
            protected_identities = load_protected_identities(self.store, self.registry)

        cache: dict[str, SkipSet] = {}
        results = []

        for table, config in self.registry:
            with trace_operation("mask_table", table=table, columns=len(config.columns)):
                self._check_deadline(f"resolving allowlist of {table}")
                try:
                    skip_set = self.resolver.resolve(table, protected_identities, cache)
                except MaskingError as e:
                    logger.error(f"Failed to resolve allowlist of {table}: {e}")
                    raise e.locate(table)

                for column, rule in config.columns.items():
                    try:
                        result = self.mask_column(
                            table,
                            column,
                            rule,
                            skip_set,
                            config.primary_key,
                            column_type=column_types.get(table, {}).get(column),
                        )
                    except MaskingError as e:
                        COLUMNS_PROCESSED.labels(table=table, status="failed").inc()
                        logger.error(f"Failed to mask {table}.{column}: {e}")
                        raise e.locate(table, column)

                    COLUMNS_PROCESSED.labels(
                        table=table, status="masked" if result.rows_total else "empty"
                    ).inc()
                    results.append(result)

        return results

    def validate_schema(self) -> dict[str, dict[str, str]]:
        """
        Check that every table and column the registry names exists.

        Returns:
            table -> {column: type name} for each registry table

        Raises:
            ConfigurationError: Naming the first missing table or column
        """
        column_types: dict[str, dict[str, str]] = {}

        if self.registry.protected_tables:
            identity_table = self.registry.identity_table
            self._check_deadline(f"describing {identity_table}")
            self._require_columns(
                identity_table,
                self.store.describe_table(identity_table),
                [self.registry.identity_column],
                "identity column",
            )

        for table, config in self.registry:
            self._check_deadline(f"describing {table}")
            described = self.store.describe_table(table)
            self._require_columns(table, described, config.pk_fields, "primary key field")
            self._require_columns(table, described, config.columns, "column")
            if self.registry.requires_identity_match(table):
                self._require_columns(table, described, [self.registry.match_column], "match column")
            column_types[table] = described

        logger.info(f"Validated {len(self.registry)} tables against the database schema")
        return column_types

    @staticmethod
    def _require_columns(table: str, described: dict[str, str], columns, what: str) -> None:
        if not described:
            raise ConfigurationError("table does not exist", table=table)
        for column in columns:
            if column not in described:
                raise ConfigurationError(f"{what} does not exist", table=table, column=column)

    def mask_column(
        self,
        table: str,
        column: str,
        rule: ColumnRule,
        skip_set: SkipSet,
        primary_key: str | tuple[str, ...],
        column_type: str | None = None,
    ) -> ColumnResult:
        """
        Replace every non-protected value of ``table.column``.

        Args:
            table: Table name
            column: Column to mask
            rule: Generator and null frequency for the column
            skip_set: Row keys that must keep their value
            primary_key: Primary key field, or fields in key order
            column_type: Catalog type of the column, used to cast new values

        Returns:
            ColumnResult with row and batch counts

        Raises:
            StoreReadError: Loading the rows failed
            StoreWriteError: A batch update failed
            GeneratorError: The rule's generator raised
            MaskingTimeoutError: The run budget ran out
        """
        pk_fields = (primary_key,) if isinstance(primary_key, str) else tuple(primary_key)
        log = ContextLogger(__name__, table=table, column=column)
        result = ColumnResult(table=table, column=column)

        with trace_operation("mask_column", table=table, column=column):
            self._check_deadline(f"loading {table}.{column}")
            rows = self.store.fetch_rows(table, [*pk_fields, column])
            result.rows_total = len(rows)

            if not rows:
                log.warning(f"No data in {table}.{column} - skipping")
                return result

            to_mask: list[tuple[RowKey, tuple[Any, ...]]] = []
            for row in rows:
                key = row_key(row, pk_fields)
                if key in skip_set:
                    result.rows_skipped += 1
                else:
                    to_mask.append((key, tuple(row[pk_field] for pk_field in pk_fields)))

            if result.rows_skipped:
                log.info(f"Skipped {result.rows_skipped} protected rows", skipped=result.rows_skipped)
                ROWS_PROCESSED.labels(table=table, column=column, outcome="skipped").inc(
                    result.rows_skipped
                )

            if not to_mask:
                log.info("All rows protected - nothing to mask")
                return result

            updates: list[BatchRow] = []
            for _, pk_values in to_mask:
                new_value = self.choose_value(rule, table, column)
                if new_value is None:
                    result.rows_nulled += 1
                updates.append((pk_values, new_value))

            batch_size = effective_batch_size(self.settings.batch_size, len(pk_fields))
            expected_batches = math.ceil(len(updates) / batch_size)
            log.debug(f"Writing {len(updates)} rows in {expected_batches} batches of up to {batch_size}")

            for start in range(0, len(updates), batch_size):
                self._check_deadline(f"updating {table}.{column}")
                apply_batch(
                    self.store,
                    table,
                    column,
                    pk_fields,
                    updates[start:start + batch_size],
                    column_type=column_type,
                )
                result.batches += 1

            result.rows_masked = len(updates)
            ROWS_PROCESSED.labels(table=table, column=column, outcome="masked").inc(
                result.rows_masked - result.rows_nulled
            )
            ROWS_PROCESSED.labels(table=table, column=column, outcome="nulled").inc(result.rows_nulled)
            add_span_attributes(rows_masked=result.rows_masked, batches=result.batches)

        log.info(
            f"Masked {result.rows_masked} rows in {table}.{column}",
            rows_masked=result.rows_masked,
            rows_nulled=result.rows_nulled,
        )
        return result

    def choose_value(self, rule: ColumnRule, table: str | None = None, column: str | None = None) -> MaskValue:
        """
        Decide one row's replacement: NULL with probability ``null_frequency``,
        otherwise the generator's output.

        A random draw is taken for every row, so a seeded run produces the
        same decisions whatever the rule's frequency.
        """
        draw = self.rng.random()
        if rule.null_frequency > 0 and draw < rule.null_frequency:
            return None
        try:
            return rule.generator()
        except Exception as e:
            raise GeneratorError(f"generator failed: {e}", table=table, column=column) from e

    def _check_deadline(self, operation: str) -> None:
        if self._transaction is not None and self._transaction.active:
            self._transaction.start_statement(operation)
