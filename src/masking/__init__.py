"""
In-place masking of sensitive PostgreSQL columns.

Replaces real values with Faker-generated ones inside a single transaction,
leaving rows that belong to protected identities untouched.

Usage:
    from masking import MaskingEngine, PostgresStore
    from masking.config.defaults import build_default_registry
    from masking.generators import FakerGenerators

    store = PostgresStore.connect(dsn)
    registry = build_default_registry(FakerGenerators(seed=42))
    summary = MaskingEngine(store, registry).run()
"""

from .allowlist import AllowlistResolver, load_protected_identities, normalize_identity, row_key
from .config import ColumnRule, MaskingSettings, RuleRegistry, TableConfig
from .engine import ColumnResult, MaskingEngine, RunSummary
from .errors import (
    ConfigurationError,
    GeneratorError,
    MaskingError,
    MaskingTimeoutError,
    StoreReadError,
    StoreWriteError,
)
from .executor import BulkUpdate, apply_batch, build_bulk_update
from .store import PostgresStore, Store
from .transaction import TransactionCoordinator

__version__ = "1.0.0"

__all__ = [
    "MaskingEngine",
    "RunSummary",
    "ColumnResult",
    "AllowlistResolver",
    "load_protected_identities",
    "normalize_identity",
    "row_key",
    "ColumnRule",
    "TableConfig",
    "RuleRegistry",
    "MaskingSettings",
    "BulkUpdate",
    "build_bulk_update",
    "apply_batch",
    "Store",
    "PostgresStore",
    "TransactionCoordinator",
    "MaskingError",
    "ConfigurationError",
    "StoreReadError",
    "StoreWriteError",
    "GeneratorError",
    "MaskingTimeoutError",
]
