"""
Store interface and its PostgreSQL implementation.

The engine only talks to a ``Store``: transaction control, schema lookup,
projected row loads and execution of rendered bulk updates. ``PostgresStore``
implements it over a single psycopg2 connection; every statement of a run
goes through that one connection, one at a time.
"""

import logging
from collections.abc import Sequence
from typing import Any, Protocol

import psycopg2
import psycopg2.extensions
from opentelemetry import trace

from utils.retry import retry_database_operation
from utils.sql_safety import quote_identifier, quote_schema_table
from utils.tracing import trace_operation

from .errors import ConfigurationError, MaskingTimeoutError, StoreReadError, StoreWriteError
from .executor import BulkUpdate

logger = logging.getLogger(__name__)

APPLICATION_NAME = "db-masking"

DESCRIBE_TABLE_SQL = """
    SELECT a.attname, format_type(a.atttypid, a.atttypmod)
    FROM pg_catalog.pg_attribute AS a
    WHERE a.attrelid = to_regclass(%s)
      AND a.attnum > 0
      AND NOT a.attisdropped
    ORDER BY a.attnum
"""


class Store(Protocol):
    """Operations the masking engine needs from a relational store."""

    def begin(self) -> None: ...

    def commit(self) -> None: ...

    def rollback(self) -> None: ...

    def set_statement_timeout(self, seconds: float) -> None: ...

    def describe_table(self, table: str) -> dict[str, str]:
        """Column name -> type name; empty when the table does not exist."""
        ...

    def fetch_rows(self, table: str, columns: Sequence[str]) -> list[dict[str, Any]]: ...

    def execute_update(self, update: BulkUpdate) -> int:
        """Execute a rendered bulk update; return the number of rows updated."""
        ...


class PostgresStore:
    """Store backed by one psycopg2 connection."""

    def __init__(self, connection: psycopg2.extensions.connection):
        self.connection = connection

    @classmethod
    def connect(cls, dsn: str, connect_timeout: int = 10) -> "PostgresStore":
        """
        Open a connection, retrying transient failures.

        Use a direct (non-pooled) connection string: transaction-mode
        poolers such as PgBouncer break session state like SET LOCAL.
        """

        @retry_database_operation(max_retries=3, base_delay=1.0)
        def _connect() -> psycopg2.extensions.connection:
            return psycopg2.connect(
                dsn,
                connect_timeout=connect_timeout,
                application_name=APPLICATION_NAME,
            )

        with trace_operation("postgres_connect", kind=trace.SpanKind.CLIENT):
            connection = _connect()

        logger.info("Connected to database")
        return cls(connection)

    def close(self) -> None:
        if self.connection is not None and not self.connection.closed:
            self.connection.close()
            logger.info("Disconnected from database")

    def begin(self) -> None:
        # psycopg2 opens the transaction implicitly on the first statement
        self.connection.autocommit = False

    def commit(self) -> None:
        try:
            self.connection.commit()
        except psycopg2.Error as e:
            raise StoreWriteError(f"commit failed: {_describe_error(e)}") from e

    def rollback(self) -> None:
        self.connection.rollback()

    def set_statement_timeout(self, seconds: float) -> None:
        milliseconds = max(1, int(seconds * 1000))
        self._execute(
            "SET LOCAL statement_timeout = %s", (milliseconds,), StoreReadError, "SET statement_timeout"
        )

    def describe_table(self, table: str) -> dict[str, str]:
        try:
            quoted = quote_schema_table(table)
        except ValueError as e:
            raise ConfigurationError(str(e), table=table) from e

        with trace_operation("describe_table", kind=trace.SpanKind.CLIENT, table=table):
            with self.connection.cursor() as cursor:
                self._run(cursor, DESCRIBE_TABLE_SQL, (quoted,), StoreReadError, f"describe {table}")
                return {name: type_name for name, type_name in cursor.fetchall()}

    def fetch_rows(self, table: str, columns: Sequence[str]) -> list[dict[str, Any]]:
        try:
            select_list = ", ".join(quote_identifier(column) for column in columns)
            query = f"SELECT {select_list} FROM {quote_schema_table(table)}"
        except ValueError as e:
            raise ConfigurationError(str(e), table=table) from e

        with trace_operation(
            "fetch_rows", kind=trace.SpanKind.CLIENT, table=table, columns=",".join(columns)
        ):
            with self.connection.cursor() as cursor:
                self._run(cursor, query, None, StoreReadError, f"load {table}")
                names = [desc[0] for desc in cursor.description]
                rows = [dict(zip(names, row)) for row in cursor.fetchall()]

        logger.debug(f"Fetched {len(rows)} rows from {table}")
        return rows

    def execute_update(self, update: BulkUpdate) -> int:
        with self.connection.cursor() as cursor:
            self._run(
                cursor, update.sql, update.params, StoreWriteError,
                f"update {update.table}.{update.column}",
            )
            return cursor.rowcount

    def _execute(self, sql: str, params: Any, error_type: type, action: str) -> None:
        with self.connection.cursor() as cursor:
            self._run(cursor, sql, params, error_type, action)

    @staticmethod
    def _run(cursor: Any, sql: str, params: Any, error_type: type, action: str) -> None:
        try:
            cursor.execute(sql, params)
        except psycopg2.extensions.QueryCanceledError as e:
            raise MaskingTimeoutError(f"{action} cancelled by statement_timeout") from e
        except psycopg2.Error as e:
            raise error_type(f"{action} failed: {_describe_error(e)}") from e


def _describe_error(error: psycopg2.Error) -> str:
    message = (error.pgerror or str(error)).strip()
    return f"[{error.pgcode}] {message}" if error.pgcode else message
