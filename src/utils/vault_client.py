"""
HashiCorp Vault client for fetching database credentials

Fetches the PostgreSQL credentials of the database to mask from the
KV v2 secrets engine, so connection strings never sit in the environment
of the masking job.
"""

import logging
import os
import re
from typing import Any, Dict, Optional

import requests

logger = logging.getLogger(__name__)

DEFAULT_SECRET_PATH = "secret/database/postgresql"


class VaultClient:
    """
    HashiCorp Vault client for secrets management (KV v2).
    """

    def __init__(
        self,
        vault_addr: Optional[str] = None,
        vault_token: Optional[str] = None,
        namespace: Optional[str] = None,
    ):
        """
        Initialize Vault client

        Args:
            vault_addr: Vault server address (default: from VAULT_ADDR env var)
            vault_token: Vault authentication token (default: from VAULT_TOKEN env var)
            namespace: Vault namespace (optional, for Vault Enterprise)

        Raises:
            ValueError: If vault_addr or vault_token are not provided
        """
        self.vault_addr = vault_addr or os.getenv("VAULT_ADDR")
        self.vault_token = vault_token or os.getenv("VAULT_TOKEN")
        self.namespace = namespace

        if not self.vault_addr:
            raise ValueError(
                "Vault address not provided. Set VAULT_ADDR environment variable "
                "or pass vault_addr parameter."
            )

        if not self.vault_token:
            raise ValueError(
                "Vault token not provided. Set VAULT_TOKEN environment variable "
                "or pass vault_token parameter."
            )

        self.vault_addr = self.vault_addr.rstrip("/")

        self.headers = {
            "X-Vault-Token": self.vault_token,
            "Content-Type": "application/json",
        }

        if self.namespace:
            self.headers["X-Vault-Namespace"] = self.namespace

        logger.info(f"Initialized Vault client for {self.vault_addr}")

    def get_secret(self, secret_path: str) -> Dict[str, Any]:
        """
        Fetch secret from Vault KV v2 secrets engine

        Args:
            secret_path: Path to secret (e.g., "secret/database/postgresql")

        Returns:
            Dictionary containing secret data

        Raises:
            ValueError: If secret_path is invalid or the secret is empty/missing
            requests.RequestException: If Vault request fails
        """
        if not secret_path or not isinstance(secret_path, str):
            raise ValueError("secret_path must be a non-empty string")

        if ".." in secret_path or secret_path.startswith("//"):
            raise ValueError(
                f"Invalid secret_path: {secret_path}. "
                "Path traversal attempts are not allowed."
            )

        if not re.match(r"^[a-zA-Z0-9/_-]+$", secret_path):
            raise ValueError(
                f"Invalid secret_path: {secret_path}. "
                "Only alphanumeric characters, slashes, underscores, and hyphens are allowed."
            )

        # KV v2 requires /data/ after the mount point
        if "/data/" not in secret_path:
            parts = secret_path.split("/", 1)
            if len(parts) == 2:
                secret_path = f"{parts[0]}/data/{parts[1]}"
            else:
                secret_path = f"{secret_path}/data"

        url = f"{self.vault_addr}/v1/{secret_path}"
        logger.debug(f"Fetching secret from: {url}")

        response = requests.get(url, headers=self.headers, timeout=10)

        if response.status_code == 404:
            raise ValueError(f"Secret not found at path: {secret_path}")

        response.raise_for_status()

        secret_data = response.json().get("data", {}).get("data", {})

        if not secret_data:
            raise ValueError(f"No data found in secret at path: {secret_path}")

        return secret_data

    def get_database_credentials(self, secret_path: str = DEFAULT_SECRET_PATH) -> Dict[str, Any]:
        """
        Fetch PostgreSQL credentials from Vault

        The secret either carries a complete ``dsn`` or the individual
        ``host``/``database``/``username``/``password`` (and optional ``port``).

        Args:
            secret_path: KV path of the credentials secret

        Returns:
            Dictionary of credentials, ``port`` defaulted to 5432

        Raises:
            ValueError: If required fields are missing
        """
        secret_data = self.get_secret(secret_path)

        if "dsn" in secret_data:
            logger.info("Fetched PostgreSQL DSN from Vault")
            return secret_data

        required_fields = ["host", "database", "username", "password"]
        missing_fields = [field for field in required_fields if field not in secret_data]

        if missing_fields:
            raise ValueError(
                f"Missing required fields in secret: {', '.join(missing_fields)}"
            )

        secret_data.setdefault("port", 5432)

        logger.info("Fetched PostgreSQL credentials from Vault")
        return secret_data
