"""
YAML rule registry loader.

File format::

    identity:
      table: user          # trusted source of protected identities
      column: email
    match_column: email    # identity field inside protected tables

    tables:
      member:
        primary_key: id
        protect_identities: true
        columns:
          name:
            provider: name
            locale: ko_KR
            null_frequency: 0.2
          dob:
            provider: date_of_birth
            kwargs: {minimum_age: 18, maximum_age: 45}
      group_meeting_record:
        primary_key: [group_meeting_id, member_id]
        columns:
          prayer_request: {provider: sentence, null_frequency: 0.4}

Tables are processed in file order. ``provider`` names a Faker provider
method.
"""

import logging
from pathlib import Path
from typing import Any

import yaml

from ..errors import ConfigurationError
from ..generators import FakerGenerators
from .rules import DEFAULT_PRIMARY_KEY, ColumnRule, RuleRegistry, TableConfig

logger = logging.getLogger(__name__)

_COLUMN_KEYS = {"provider", "locale", "kwargs", "null_frequency"}
_TABLE_KEYS = {"primary_key", "protect_identities", "columns"}


def load_registry(path: str | Path, generators: FakerGenerators) -> RuleRegistry:
    """
    Load a rule registry from a YAML file.

    Args:
        path: YAML file path
        generators: Factory binding provider names to seeded Faker instances

    Returns:
        Validated RuleRegistry

    Raises:
        ConfigurationError: If the file is missing, malformed, or names unknown providers
    """
    path = Path(path)
    try:
        with path.open(encoding="utf-8") as f:
            document = yaml.safe_load(f)
    except OSError as e:
        raise ConfigurationError(f"cannot read rule file {path}: {e}") from e
    except yaml.YAMLError as e:
        raise ConfigurationError(f"invalid YAML in {path}: {e}") from e

    registry = parse_registry(document, generators)
    logger.info(
        f"Loaded {len(registry)} tables / {registry.column_count()} columns from {path}"
    )
    return registry


def parse_registry(document: Any, generators: FakerGenerators) -> RuleRegistry:
    """Build a RuleRegistry from an already parsed YAML document."""
    if not isinstance(document, dict):
        raise ConfigurationError("rule file must contain a mapping")

    tables_doc = document.get("tables")
    if not isinstance(tables_doc, dict) or not tables_doc:
        raise ConfigurationError("rule file must define a non-empty 'tables' mapping")

    identity = document.get("identity") or {}
    if not isinstance(identity, dict):
        raise ConfigurationError("'identity' must be a mapping")

    tables: dict[str, TableConfig] = {}
    protected: set[str] = set()

    for table, table_doc in tables_doc.items():
        if not isinstance(table_doc, dict):
            raise ConfigurationError("table entry must be a mapping", table=table)
        unknown = set(table_doc) - _TABLE_KEYS
        if unknown:
            raise ConfigurationError(f"unknown keys: {', '.join(sorted(unknown))}", table=table)

        tables[table] = _parse_table(table, table_doc, generators)
        if table_doc.get("protect_identities", False):
            protected.add(table)

    return RuleRegistry(
        tables=tables,
        protected_tables=frozenset(protected),
        identity_table=identity.get("table", "user"),
        identity_column=identity.get("column", "email"),
        match_column=document.get("match_column", "email"),
    )


def _parse_table(table: str, table_doc: dict, generators: FakerGenerators) -> TableConfig:
    columns_doc = table_doc.get("columns")
    if not isinstance(columns_doc, dict) or not columns_doc:
        raise ConfigurationError("'columns' must be a non-empty mapping", table=table)

    primary_key = table_doc.get("primary_key", DEFAULT_PRIMARY_KEY)
    if isinstance(primary_key, list):
        primary_key = tuple(primary_key)

    columns = {}
    for column, column_doc in columns_doc.items():
        try:
            columns[column] = _parse_column(column_doc, generators)
        except ConfigurationError as e:
            raise e.locate(table, column)

    try:
        return TableConfig(columns=columns, primary_key=primary_key)
    except ConfigurationError as e:
        raise e.locate(table)


def _parse_column(column_doc: Any, generators: FakerGenerators) -> ColumnRule:
    if isinstance(column_doc, str):
        column_doc = {"provider": column_doc}
    if not isinstance(column_doc, dict):
        raise ConfigurationError("column rule must be a provider name or a mapping")

    unknown = set(column_doc) - _COLUMN_KEYS
    if unknown:
        raise ConfigurationError(f"unknown keys: {', '.join(sorted(unknown))}")

    provider = column_doc.get("provider")
    if not provider:
        raise ConfigurationError("column rule needs a 'provider'")

    kwargs = column_doc.get("kwargs") or {}
    if not isinstance(kwargs, dict):
        raise ConfigurationError("'kwargs' must be a mapping")

    generator = generators.provider(provider, locale=column_doc.get("locale"), **kwargs)
    return ColumnRule(generator=generator, null_frequency=column_doc.get("null_frequency", 0.0))
