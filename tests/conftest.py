"""
Pytest configuration and fixtures for masking tests.
Provides an in-memory store with transactional semantics and shared registries.
"""

import copy
import itertools
from typing import Any

import pytest

from masking.config.rules import ColumnRule, RuleRegistry, TableConfig
from masking.errors import StoreReadError, StoreWriteError
from masking.executor import BulkUpdate


def pytest_configure(config: pytest.Config) -> None:
    """Configure pytest with custom markers."""
    config.addinivalue_line("markers", "integration: test against a real PostgreSQL (needs MASKING_TEST_DSN)")
    config.addinivalue_line("markers", "slow: mark test as slow running")


@pytest.fixture(autouse=True)
def clean_masking_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep developer environment variables out of unit tests."""
    for key in (
        "MASKING_TIMEOUT_SECONDS",
        "MASKING_BATCH_SIZE",
        "MASKING_SEED",
        "MASKING_DRY_RUN",
        "DIRECT_URL",
        "DATABASE_URL",
        "OTLP_ENDPOINT",
        "LOG_LEVEL",
        "LOG_FILE",
        "LOG_JSON",
        "LOG_CONSOLE",
    ):
        monkeypatch.delenv(key, raising=False)


class InMemoryStore:
    """
    Store holding tables as lists of dicts.

    ``begin`` snapshots every table and ``rollback`` restores the snapshot,
    so tests can assert all-or-nothing behaviour. Every call is recorded in
    ``calls``; executed updates are kept in ``updates``.
    """

    def __init__(
        self,
        tables: dict[str, list[dict[str, Any]]],
        columns: dict[str, list[str]] | None = None,
        types: dict[str, dict[str, str]] | None = None,
    ):
        self.tables = {name: [dict(row) for row in rows] for name, rows in tables.items()}
        self.columns = {
            name: list((columns or {}).get(name) or (rows[0].keys() if rows else []))
            for name, rows in tables.items()
        }
        self.types = types or {}
        self.calls: list[tuple] = []
        self.updates: list[BulkUpdate] = []
        self.fail_update_on: tuple[str, str] | None = None
        self.fail_fetch_on: str | None = None
        self.statement_timeout: float | None = None
        self.statement_timeouts: list[float] = []
        self.closed = False
        self.committed = False
        self._snapshot: dict[str, list[dict[str, Any]]] | None = None

    @property
    def in_transaction(self) -> bool:
        return self._snapshot is not None

    def begin(self) -> None:
        self.calls.append(("begin",))
        self._snapshot = copy.deepcopy(self.tables)

    def commit(self) -> None:
        self.calls.append(("commit",))
        self._snapshot = None
        self.committed = True

    def rollback(self) -> None:
        self.calls.append(("rollback",))
        if self._snapshot is not None:
            self.tables = self._snapshot
        self._snapshot = None

    def set_statement_timeout(self, seconds: float) -> None:
        self.calls.append(("set_statement_timeout", seconds))
        self.statement_timeout = seconds
        self.statement_timeouts.append(seconds)

    def describe_table(self, table: str) -> dict[str, str]:
        self.calls.append(("describe_table", table))
        if table not in self.tables:
            return {}
        table_types = self.types.get(table, {})
        return {column: table_types.get(column, "text") for column in self.columns[table]}

    def fetch_rows(self, table: str, columns: list[str]) -> list[dict[str, Any]]:
        self.calls.append(("fetch_rows", table, tuple(columns)))
        if table == self.fail_fetch_on or table not in self.tables:
            raise StoreReadError(f"relation \"{table}\" cannot be read")
        missing = [column for column in columns if column not in self.columns[table]]
        if missing:
            raise StoreReadError(f"column \"{missing[0]}\" does not exist")
        return [{column: row.get(column) for column in columns} for row in self.tables[table]]

    def execute_update(self, update: BulkUpdate) -> int:
        self.calls.append(("execute_update", update.table, update.column, len(update)))
        self.updates.append(update)
        if self.fail_update_on == (update.table, update.column):
            raise StoreWriteError("simulated write failure")

        updated = 0
        for pk_values, new_value in update.rows:
            wanted = tuple(str(value) for value in pk_values)
            for row in self.tables[update.table]:
                if tuple(str(row[field]) for field in update.pk_fields) == wanted:
                    row[update.column] = new_value
                    updated += 1
        return updated

    def close(self) -> None:
        self.calls.append(("close",))
        self.closed = True

    def row(self, table: str, **key: Any) -> dict[str, Any]:
        """Return the single row of ``table`` matching ``key``."""
        matches = [
            row for row in self.tables[table]
            if all(row.get(field) == value for field, value in key.items())
        ]
        assert len(matches) == 1, f"expected one row for {key}, found {len(matches)}"
        return matches[0]


def counter_generator(prefix: str = "masked"):
    """Deterministic generator producing masked-1, masked-2, ..."""
    counter = itertools.count(1)

    def generate() -> str:
        return f"{prefix}-{next(counter)}"

    return generate


@pytest.fixture
def member_store() -> InMemoryStore:
    """Members (two protected by email) and the user table holding identities."""
    return InMemoryStore(
        {
            "user": [
                {"id": 1, "email": "Staff@Example.com "},
                {"id": 2, "email": "tester@example.com"},
                {"id": 3, "email": None},
                {"id": 4, "email": "   "},
            ],
            "member": [
                {"id": 1, "name": "Alice", "email": "staff@example.com"},
                {"id": 2, "name": "Bob", "email": "bob@example.com"},
                {"id": 3, "name": "Carol", "email": " TESTER@example.com"},
                {"id": 4, "name": "Dave", "email": None},
                {"id": 5, "name": "Eve", "email": ""},
            ],
        }
    )


@pytest.fixture
def member_registry() -> RuleRegistry:
    return RuleRegistry(
        tables={
            "member": TableConfig(columns={"name": ColumnRule(counter_generator("name"))}),
        },
        protected_tables=frozenset({"member"}),
    )


@pytest.fixture
def make_store():
    """Factory fixture: ``make_store(tables, columns=None, types=None)``."""
    return InMemoryStore


@pytest.fixture
def make_counter():
    """Factory fixture for deterministic generators."""
    return counter_generator
