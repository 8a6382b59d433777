"""
Bulk update executor.

Turns a batch of (primary key values, new value) pairs into one set-based
UPDATE joined to a VALUES list, so a batch costs one round trip instead of
one statement per row:

    UPDATE "member" AS t
    SET "email" = CAST(v.new_value AS text)
    FROM (VALUES (%s, %s), (%s, %s)) AS v(pk_0, new_value)
    WHERE t."id"::text = v.pk_0::text

Composite keys AND together one equality per key field. Both sides of each
key comparison are cast to text so uuid/integer keys compare against the
bound parameters without type errors. Identifiers are validated and quoted;
every row value is a bound parameter.
"""

import logging
from collections.abc import Sequence
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from opentelemetry import trace

from utils.sql_safety import (
    quote_identifier,
    quote_schema_table,
    validate_type_name,
)
from utils.tracing import add_span_event, trace_operation

from .errors import ConfigurationError
from .metrics import BATCH_SECONDS, BATCHES_EXECUTED

if TYPE_CHECKING:
    from .store import Store

logger = logging.getLogger(__name__)

# PostgreSQL's wire protocol limit on bind parameters per statement
MAX_PARAMETERS = 65535

# (primary key values in pk field order, replacement value)
BatchRow = tuple[tuple[Any, ...], Any]


@dataclass(frozen=True)
class BulkUpdate:
    """One rendered UPDATE statement and the batch it was built from."""

    table: str
    column: str
    pk_fields: tuple[str, ...]
    rows: tuple[BatchRow, ...]
    sql: str
    params: tuple[Any, ...]

    def __len__(self) -> int:
        return len(self.rows)


def max_batch_size(pk_count: int) -> int:
    """Largest batch whose parameters (pk fields + new value per row) fit one statement."""
    return MAX_PARAMETERS // (pk_count + 1)


def effective_batch_size(batch_size: int, pk_count: int) -> int:
    """Clamp the configured batch size to the parameter limit."""
    return max(1, min(batch_size, max_batch_size(pk_count)))


def build_bulk_update(
    table: str,
    column: str,
    pk_fields: Sequence[str],
    batch: Sequence[BatchRow],
    column_type: str | None = None,
) -> BulkUpdate:
    """
    Render the UPDATE statement for one batch.

    Args:
        table: Target table (``table`` or ``schema.table``)
        column: Column receiving the new values
        pk_fields: Primary key field names, in key order
        batch: Non-empty sequence of (pk values, new value)
        column_type: Catalog type of ``column``; new values are cast to it
            so all-NULL or string batches still assign to typed columns

    Returns:
        BulkUpdate holding the SQL and its flat parameter list

    Raises:
        ValueError: On an empty/oversized batch or a row whose key arity is wrong
        ConfigurationError: On an invalid identifier or type name
    """
    pk_fields = tuple(pk_fields)
    if not batch:
        raise ValueError("bulk update batch must not be empty")
    if not pk_fields:
        raise ValueError("bulk update needs at least one primary key field")
    if len(batch) > max_batch_size(len(pk_fields)):
        raise ValueError(
            f"batch of {len(batch)} rows exceeds the {MAX_PARAMETERS} parameter limit"
        )

    try:
        quoted_table = quote_schema_table(table)
        quoted_column = quote_identifier(column)
        quoted_pks = [quote_identifier(pk_field) for pk_field in pk_fields]
        if column_type is not None:
            validate_type_name(column_type)
    except ValueError as e:
        raise ConfigurationError(str(e), table=table, column=column) from e

    row_placeholder = "(" + ", ".join(["%s"] * (len(pk_fields) + 1)) + ")"
    params: list[Any] = []
    for pk_values, new_value in batch:
        if len(pk_values) != len(pk_fields):
            raise ValueError(
                f"row key {pk_values!r} does not match primary key {pk_fields!r}"
            )
        params.extend(pk_values)
        params.append(new_value)

    pk_aliases = ", ".join(f"pk_{i}" for i in range(len(pk_fields)))
    values_list = ", ".join([row_placeholder] * len(batch))
    set_expr = f"CAST(v.new_value AS {column_type})" if column_type else "v.new_value"
    where_clause = " AND ".join(
        f"t.{quoted_pk}::text = v.pk_{i}::text" for i, quoted_pk in enumerate(quoted_pks)
    )

    sql = (
        f"UPDATE {quoted_table} AS t\n"
        f"SET {quoted_column} = {set_expr}\n"
        f"FROM (VALUES {values_list}) AS v({pk_aliases}, new_value)\n"
        f"WHERE {where_clause}"
    )

    return BulkUpdate(
        table=table,
        column=column,
        pk_fields=pk_fields,
        rows=tuple((tuple(pk_values), new_value) for pk_values, new_value in batch),
        sql=sql,
        params=tuple(params),
    )


def apply_batch(
    store: "Store",
    table: str,
    column: str,
    pk_fields: Sequence[str],
    batch: Sequence[BatchRow],
    column_type: str | None = None,
) -> int:
    """
    Build and execute the UPDATE for one batch.

    Returns:
        Number of rows the store reports as updated

    Raises:
        StoreWriteError: If the statement fails (raised by the store)
    """
    update = build_bulk_update(table, column, pk_fields, batch, column_type)

    with trace_operation(
        "bulk_update",
        kind=trace.SpanKind.CLIENT,
        table=table,
        column=column,
        rows=len(update),
    ):
        with BATCH_SECONDS.labels(table=table).time():
            updated = store.execute_update(update)
        if updated != len(update):
            add_span_event("row_count_mismatch", updated=updated, expected=len(update))

    BATCHES_EXECUTED.labels(table=table).inc()

    if updated != len(update):
        logger.warning(
            f"Batch update of {table}.{column} touched {updated} rows, expected {len(update)}"
        )
    else:
        logger.debug(f"Updated {updated} rows in {table}.{column}")

    return updated
