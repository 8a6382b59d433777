"""
Rule registry types.

The registry is a static, declarative map of table name -> primary key +
per-column masking rule. It is built once at process start (from Python or
YAML) and only read by the engine.
"""

from collections.abc import Callable, Iterator, Mapping
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Union

from utils.sql_safety import validate_identifier, validate_schema_table

from ..errors import ConfigurationError

MaskValue = Union[str, int, float, date, datetime, None]

# A generator takes no arguments and returns one replacement value
Generator = Callable[[], MaskValue]

DEFAULT_PRIMARY_KEY = "id"


def _check_identifier(identifier: str, what: str, table: str | None = None) -> None:
    try:
        validate_identifier(identifier)
    except ValueError as e:
        raise ConfigurationError(f"invalid {what}: {e}", table=table) from e


@dataclass(frozen=True)
class ColumnRule:
    """
    How to mask one column.

    Attributes:
        generator: Produces one replacement value per call
        null_frequency: Probability in [0, 1] that a row gets NULL instead
    """

    generator: Generator
    null_frequency: float = 0.0

    def __post_init__(self) -> None:
        if not callable(self.generator):
            raise ConfigurationError(f"generator must be callable, got {self.generator!r}")
        if isinstance(self.null_frequency, bool) or not isinstance(self.null_frequency, (int, float)):
            raise ConfigurationError(
                f"null_frequency must be a number, got {self.null_frequency!r}"
            )
        if not 0.0 <= self.null_frequency <= 1.0:
            raise ConfigurationError(
                f"null_frequency must be within [0, 1], got {self.null_frequency}"
            )


@dataclass(frozen=True)
class TableConfig:
    """Primary key definition and column rules of one table."""

    columns: Mapping[str, ColumnRule]
    primary_key: str | tuple[str, ...] = DEFAULT_PRIMARY_KEY

    def __post_init__(self) -> None:
        if isinstance(self.primary_key, list):
            object.__setattr__(self, "primary_key", tuple(self.primary_key))
        object.__setattr__(self, "columns", dict(self.columns))

        if not self.pk_fields:
            raise ConfigurationError("primary key must name at least one field")
        if len(set(self.pk_fields)) != len(self.pk_fields):
            raise ConfigurationError(f"duplicate primary key fields: {self.pk_fields}")
        for pk_field in self.pk_fields:
            _check_identifier(pk_field, "primary key field")

        for column, rule in self.columns.items():
            _check_identifier(column, "column name")
            if column in self.pk_fields:
                raise ConfigurationError(f"primary key field {column!r} cannot be masked")
            if not isinstance(rule, ColumnRule):
                raise ConfigurationError(f"rule for {column!r} must be a ColumnRule")

    @property
    def pk_fields(self) -> tuple[str, ...]:
        """Primary key as an ordered tuple of field names."""
        if isinstance(self.primary_key, str):
            return (self.primary_key,)
        return tuple(self.primary_key)


@dataclass(frozen=True)
class RuleRegistry:
    """
    Every table to mask, in processing order, plus the allowlist settings.

    Attributes:
        tables: table name -> TableConfig; iteration order is processing order
        protected_tables: tables whose rows are matched against protected identities
        identity_table: trusted table holding the protected identities
        identity_column: column of ``identity_table`` holding the identity (email)
        match_column: column of each protected table compared to the identities
    """

    tables: Mapping[str, TableConfig]
    protected_tables: frozenset[str] = field(default_factory=frozenset)
    identity_table: str = "user"
    identity_column: str = "email"
    match_column: str = "email"

    def __post_init__(self) -> None:
        object.__setattr__(self, "tables", dict(self.tables))
        object.__setattr__(self, "protected_tables", frozenset(self.protected_tables))

        for table, config in self.tables.items():
            try:
                validate_schema_table(table)
            except ValueError as e:
                raise ConfigurationError(f"invalid table name: {e}") from e
            if not isinstance(config, TableConfig):
                raise ConfigurationError("table rules must be a TableConfig", table=table)

        unknown = self.protected_tables - set(self.tables)
        if unknown:
            raise ConfigurationError(
                f"protected tables not in registry: {', '.join(sorted(unknown))}"
            )

        try:
            validate_schema_table(self.identity_table)
        except ValueError as e:
            raise ConfigurationError(f"invalid identity table: {e}") from e
        _check_identifier(self.identity_column, "identity column")
        _check_identifier(self.match_column, "match column")

    def __iter__(self) -> Iterator[tuple[str, TableConfig]]:
        return iter(self.tables.items())

    def __len__(self) -> int:
        return len(self.tables)

    def requires_identity_match(self, table: str) -> bool:
        return table in self.protected_tables

    def column_count(self) -> int:
        return sum(len(config.columns) for config in self.tables.values())

    def select(self, tables: list[str]) -> "RuleRegistry":
        """
        Restrict the registry to ``tables``, keeping registry order.

        Raises:
            ConfigurationError: If a requested table is not in the registry
        """
        unknown = [table for table in tables if table not in self.tables]
        if unknown:
            raise ConfigurationError(f"tables not in registry: {', '.join(unknown)}")

        wanted = set(tables)
        return RuleRegistry(
            tables={name: config for name, config in self.tables.items() if name in wanted},
            protected_tables=self.protected_tables & wanted,
            identity_table=self.identity_table,
            identity_column=self.identity_column,
            match_column=self.match_column,
        )
