"""
Vault Credential Lookup

Reads database credentials for the relational and document stores from
HashiCorp Vault's KV v2 engine.
"""

import logging
import os
from dataclasses import dataclass
from typing import Any, Dict, Optional

import hvac
from hvac.exceptions import InvalidPath, VaultError

logger = logging.getLogger(__name__)

CREDENTIAL_PATHS = {
    "postgres": "postgres-credentials",
    "scylla": "scylla-credentials",
}


@dataclass
class HealthStatus:
    """
    Vault reachability as seen by this process.

    Attributes:
        healthy: Authenticated and unsealed
        authenticated: Token accepted
        sealed: Vault reports itself sealed
        error: Failure description, if any
    """

    healthy: bool
    authenticated: bool
    sealed: bool
    error: Optional[str] = None

    def __bool__(self) -> bool:
        return self.healthy


class VaultClient:
    """Thin wrapper over hvac for credential retrieval."""

    def __init__(
        self,
        vault_url: Optional[str] = None,
        vault_token: Optional[str] = None,
        verify_ssl: bool = True,
        mount_point: str = "secret"
    ):
        """
        Connect to Vault.

        Args:
            vault_url: Vault address (defaults to VAULT_ADDR)
            vault_token: Token (defaults to VAULT_TOKEN)
            verify_ssl: Verify TLS certificates
            mount_point: KV v2 mount point

        Raises:
            ValueError: If the address or token is missing
            VaultError: If the token is rejected or Vault is unreachable
        """
        self.vault_url = vault_url or os.getenv("VAULT_ADDR")
        self.vault_token = vault_token or os.getenv("VAULT_TOKEN")
        self.mount_point = mount_point

        if not self.vault_url:
            raise ValueError("Vault URL must be provided via parameter or VAULT_ADDR environment variable")
        if not self.vault_token:
            raise ValueError("Vault token must be provided via parameter or VAULT_TOKEN environment variable")

        try:
            self.client = hvac.Client(url=self.vault_url, token=self.vault_token, verify=verify_ssl)
            authenticated = self.client.is_authenticated()
        except Exception as e:
            logger.error(f"Failed to initialize Vault client: {e}")
            raise VaultError(f"Vault initialization failed: {e}") from e

        if not authenticated:
            raise VaultError("Failed to authenticate with Vault")

        logger.info(f"Connected to Vault at {self.vault_url}")

    def get_secret(self, path: str) -> Dict[str, Any]:
        """
        Read one KV v2 secret.

        Raises:
            InvalidPath: If nothing is stored at path
            VaultError: If the read fails
        """
        try:
            response = self.client.secrets.kv.v2.read_secret_version(
                path=path,
                mount_point=self.mount_point
            )
        except InvalidPath:
            logger.error(f"Secret not found at path: {path}")
            raise
        except Exception as e:
            logger.error(f"Failed to retrieve secret from {path}: {e}")
            raise VaultError(f"Secret retrieval failed: {e}") from e

        if not response or "data" not in response:
            raise InvalidPath(f"No data found at path: {path}")

        logger.debug(f"Retrieved secret from {self.mount_point}/{path}")
        return response["data"].get("data", {})

    def get_database_credentials(self, database: str) -> Dict[str, Any]:
        """
        Read credentials for one store.

        Args:
            database: "postgres" or "scylla"

        Raises:
            ValueError: If database is not a known store
        """
        if database not in CREDENTIAL_PATHS:
            raise ValueError(f"Invalid database: {database}. Must be one of {sorted(CREDENTIAL_PATHS)}")
        return self.get_secret(CREDENTIAL_PATHS[database])

    def health_check(self) -> HealthStatus:
        """Report authentication and seal status without raising."""
        try:
            if not self.client.is_authenticated():
                logger.warning("Vault authentication check failed")
                return HealthStatus(healthy=False, authenticated=False, sealed=True, error="Not authenticated")

            sealed = self.client.sys.read_health_status(method="GET").get("sealed", True)
        except Exception as e:
            logger.error(f"Vault health check failed: {e}")
            return HealthStatus(healthy=False, authenticated=False, sealed=True, error=str(e))

        if sealed:
            logger.warning("Vault is sealed")
        return HealthStatus(
            healthy=not sealed,
            authenticated=True,
            sealed=sealed,
            error="Vault is sealed" if sealed else None
        )

    def close(self):
        self.client = None

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
