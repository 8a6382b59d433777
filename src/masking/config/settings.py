"""
Run settings for the masking job.

Defaults come from the environment and are overridden by CLI flags.
"""

import logging
import os
from dataclasses import dataclass, replace

from utils.sql_safety import validate_integer_param

from ..errors import ConfigurationError

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 60.0

# Rows per UPDATE statement. Each row binds one parameter per primary key
# field plus one for the new value, so 500 rows stay far below PostgreSQL's
# 65535 bind-parameter limit even for wide composite keys.
DEFAULT_BATCH_SIZE = 500


@dataclass(frozen=True)
class MaskingSettings:
    """
    Attributes:
        timeout_seconds: Budget for the whole masking transaction
        batch_size: Rows per UPDATE statement
        dry_run: Roll the transaction back instead of committing
        seed: Seed for the engine's random source and Faker (None = random)
    """

    timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS
    batch_size: int = DEFAULT_BATCH_SIZE
    dry_run: bool = False
    seed: int | None = None

    def __post_init__(self) -> None:
        try:
            validate_integer_param(self.batch_size, "batch_size", min_value=1)
        except ValueError as e:
            raise ConfigurationError(str(e)) from e
        if self.timeout_seconds <= 0:
            raise ConfigurationError(
                f"timeout_seconds must be positive, got {self.timeout_seconds}"
            )

    @classmethod
    def from_env(cls) -> "MaskingSettings":
        """
        Build settings from environment variables

        Environment variables:
            MASKING_TIMEOUT_SECONDS: transaction budget (default: 60)
            MASKING_BATCH_SIZE: rows per UPDATE (default: 500)
            MASKING_SEED: integer seed (default: unseeded)
            MASKING_DRY_RUN: roll back instead of commit (default: false)
        """
        try:
            seed = os.getenv("MASKING_SEED")
            return cls(
                timeout_seconds=float(os.getenv("MASKING_TIMEOUT_SECONDS", DEFAULT_TIMEOUT_SECONDS)),
                batch_size=int(os.getenv("MASKING_BATCH_SIZE", DEFAULT_BATCH_SIZE)),
                dry_run=os.getenv("MASKING_DRY_RUN", "false").lower() in ("true", "1", "yes"),
                seed=int(seed) if seed else None,
            )
        except ValueError as e:
            raise ConfigurationError(f"invalid masking environment setting: {e}") from e

    def override(self, **changes) -> "MaskingSettings":
        """Return a copy with every non-None value of ``changes`` applied."""
        return replace(self, **{key: value for key, value in changes.items() if value is not None})
