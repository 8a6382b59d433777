"""
Allowlist resolution.

Rows whose identity (e.g. email) belongs to a protected identity, such as a
staff or test account registered as an application user, must survive a
masking run unchanged. The resolver turns the protected identity set into
the per-table set of row keys to skip.
"""

import logging
from collections.abc import Iterable, Mapping, MutableMapping
from typing import Any

from .config.rules import RuleRegistry
from .errors import ConfigurationError
from .metrics import PROTECTED_ROWS
from .store import Store

logger = logging.getLogger(__name__)

# Primary key values, stringified, in primary key order
RowKey = tuple[str, ...]
SkipSet = frozenset[RowKey]


def normalize_identity(value: Any) -> str | None:
    """Trim and lower-case an identity; empty or missing values never match."""
    if value is None:
        return None
    normalized = str(value).strip().lower()
    return normalized or None


def row_key(row: Mapping[str, Any], pk_fields: Iterable[str]) -> RowKey:
    """
    Derive the RowKey of ``row``.

    Values are compared as text, the same way the bulk UPDATE joins on
    ``pk::text``, and kept as a tuple so composite keys cannot collide.

    Raises:
        ConfigurationError: If a primary key field is missing from the row
    """
    try:
        return tuple(str(row[pk_field]) for pk_field in pk_fields)
    except KeyError as e:
        raise ConfigurationError(f"primary key field {e.args[0]!r} missing from fetched row") from e


def load_protected_identities(store: Store, registry: RuleRegistry) -> frozenset[str]:
    """Load the normalized identities of the registry's identity table."""
    rows = store.fetch_rows(registry.identity_table, [registry.identity_column])
    identities = frozenset(
        identity
        for identity in (normalize_identity(row.get(registry.identity_column)) for row in rows)
        if identity is not None
    )
    logger.info(
        f"Loaded {len(identities)} protected identities from "
        f"{registry.identity_table}.{registry.identity_column}"
    )
    return identities


class AllowlistResolver:
    """Computes the skip set of each table, at most once per run."""

    def __init__(self, store: Store, registry: RuleRegistry):
        self.store = store
        self.registry = registry

    def resolve(
        self,
        table: str,
        protected_identities: frozenset[str],
        cache: MutableMapping[str, SkipSet],
    ) -> SkipSet:
        """
        Return the row keys of ``table`` that must not be masked.

        Args:
            table: Registry table name
            protected_identities: Normalized protected identities
            cache: Run-scoped table -> skip set cache, filled on first use

        Raises:
            StoreReadError: If loading the table's rows fails
        """
        if not self.registry.requires_identity_match(table):
            return frozenset()

        if table in cache:
            return cache[table]

        pk_fields = self.registry.tables[table].pk_fields
        match_column = self.registry.match_column
        rows = self.store.fetch_rows(table, [*pk_fields, match_column])

        skipped = set()
        for row in rows:
            identity = normalize_identity(row.get(match_column))
            if identity is not None and identity in protected_identities:
                key = row_key(row, pk_fields)
                skipped.add(key)
                logger.info(f"Skipping protected row: {table}.{'/'.join(pk_fields)}={'/'.join(key)}")

        skip_set = frozenset(skipped)
        PROTECTED_ROWS.labels(table=table).set(len(skip_set))
        cache[table] = skip_set
        return skip_set
