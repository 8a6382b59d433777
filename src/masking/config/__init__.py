"""
Masking configuration: rule registry types and run settings.

The built-in registry lives in ``masking.config.defaults`` and the YAML
loader in ``masking.config.loader``; both need a ``FakerGenerators``
instance and are imported explicitly.
"""

from .rules import ColumnRule, Generator, MaskValue, RuleRegistry, TableConfig
from .settings import DEFAULT_BATCH_SIZE, DEFAULT_TIMEOUT_SECONDS, MaskingSettings

__all__ = [
    "ColumnRule",
    "Generator",
    "MaskValue",
    "RuleRegistry",
    "TableConfig",
    "MaskingSettings",
    "DEFAULT_BATCH_SIZE",
    "DEFAULT_TIMEOUT_SECONDS",
]
