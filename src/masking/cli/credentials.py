"""
Connection string resolution for the CLI.

The engine never reads the environment; the CLI resolves the DSN from,
in order: ``--dsn``, Vault when ``--use-vault`` is given, ``DIRECT_URL``,
then ``DATABASE_URL``.
"""

import argparse
import logging
import os

from psycopg2.extensions import make_dsn

from utils.vault_client import DEFAULT_SECRET_PATH, VaultClient

logger = logging.getLogger(__name__)

# DIRECT_URL first: DATABASE_URL often points at a transaction pooler,
# which does not keep SET LOCAL for the whole transaction
DSN_ENV_VARS = ("DIRECT_URL", "DATABASE_URL")


def get_dsn_from_vault(secret_path: str | None = None) -> str:
    """
    Build a DSN from the PostgreSQL secret stored in Vault

    Raises:
        ValueError: If Vault is not configured or the secret is incomplete
        requests.RequestException: If the Vault request fails
    """
    credentials = VaultClient().get_database_credentials(secret_path or DEFAULT_SECRET_PATH)
    if "dsn" in credentials:
        return credentials["dsn"]

    return make_dsn(
        host=credentials["host"],
        port=credentials["port"],
        dbname=credentials["database"],
        user=credentials["username"],
        password=credentials["password"],
    )


def resolve_dsn(args: argparse.Namespace) -> str:
    """
    Resolve the connection string for a run

    Args:
        args: Parsed command-line arguments

    Returns:
        libpq connection string or URL

    Raises:
        ValueError: If no source provides a connection string
    """
    if getattr(args, "dsn", None):
        return args.dsn

    if getattr(args, "use_vault", False):
        dsn = get_dsn_from_vault(getattr(args, "vault_path", None))
        logger.info("Using database credentials from Vault")
        return dsn

    for env_var in DSN_ENV_VARS:
        dsn = os.getenv(env_var)
        if dsn:
            logger.info(f"Using connection string from {env_var}")
            return dsn

    raise ValueError(
        "No database connection configured. Pass --dsn, --use-vault, "
        "or set DIRECT_URL / DATABASE_URL."
    )
