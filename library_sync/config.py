"""
Configuration

Settings are layered, later layers winning:

1. Built-in defaults
2. Optional YAML file (sections: relational, document, scan, metrics, logging)
3. Environment variables
4. HashiCorp Vault credentials, when VAULT_ADDR is set
"""

import logging
import os
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import yaml

logger = logging.getLogger(__name__)


@dataclass
class RelationalSettings:
    host: str = "localhost"
    port: int = 5432
    database: str = "library"
    user: str = "postgres"
    password: str = "postgres"
    pool_size: int = 10
    connect_timeout: int = 5
    statement_timeout_ms: int = 5000
    pool_wait_seconds: float = 10.0


@dataclass
class DocumentSettings:
    hosts: List[str] = field(default_factory=lambda: ["localhost"])
    port: int = 9042
    keyspace: str = "library_content"
    user: Optional[str] = None
    password: Optional[str] = None
    timeout: float = 5.0
    in_chunk_size: int = 100


@dataclass
class Settings:
    """Complete process configuration."""

    relational: RelationalSettings = field(default_factory=RelationalSettings)
    document: DocumentSettings = field(default_factory=DocumentSettings)
    scan_batch_size: int = 1000
    metrics_port: Optional[int] = None
    json_logging: bool = False
    log_level: str = "INFO"

    @classmethod
    def load(
        cls,
        path: Optional[str] = None,
        environ: Optional[Dict[str, str]] = None,
        use_vault: bool = True
    ) -> "Settings":
        """
        Build settings from every layer.

        Args:
            path: Optional YAML file
            environ: Environment mapping (defaults to os.environ)
            use_vault: Read credentials from Vault when VAULT_ADDR is set

        Returns:
            Validated Settings

        Raises:
            ValueError: If any value is malformed or out of range
        """
        environ = os.environ if environ is None else environ
        settings = cls()

        if path:
            settings._apply_file(path)
        settings._apply_env(environ)
        if use_vault and environ.get("VAULT_ADDR"):
            settings._apply_vault(environ)

        settings.validate()
        return settings

    def _apply_file(self, path: str) -> None:
        with open(path, "r") as f:
            data = yaml.safe_load(f) or {}

        if not isinstance(data, dict):
            raise ValueError(f"Configuration file {path} must contain a mapping")

        _update(self.relational, data.get("relational") or {})
        _update(self.document, data.get("document") or {})

        scan = data.get("scan") or {}
        if "batch_size" in scan:
            self.scan_batch_size = scan["batch_size"]

        metrics = data.get("metrics") or {}
        if "port" in metrics:
            self.metrics_port = metrics["port"]

        log = data.get("logging") or {}
        if "json" in log:
            self.json_logging = bool(log["json"])
        if "level" in log:
            self.log_level = str(log["level"]).upper()

        logger.debug(f"Loaded configuration file {path}")

    def _apply_env(self, environ: Dict[str, str]) -> None:
        rel = self.relational
        rel.host = environ.get("POSTGRES_HOST", rel.host)
        rel.port = _int(environ, "POSTGRES_PORT", rel.port)
        rel.database = environ.get("POSTGRES_DB", rel.database)
        rel.user = environ.get("POSTGRES_USER", rel.user)
        rel.password = environ.get("POSTGRES_PASSWORD", rel.password)
        rel.pool_size = _int(environ, "POSTGRES_POOL_SIZE", rel.pool_size)
        rel.connect_timeout = _int(environ, "POSTGRES_CONNECT_TIMEOUT", rel.connect_timeout)

        doc = self.document
        if environ.get("SCYLLA_HOSTS"):
            doc.hosts = [h.strip() for h in environ["SCYLLA_HOSTS"].split(",") if h.strip()]
        doc.port = _int(environ, "SCYLLA_PORT", doc.port)
        doc.keyspace = environ.get("SCYLLA_KEYSPACE", doc.keyspace)
        doc.user = environ.get("SCYLLA_USER", doc.user)
        doc.password = environ.get("SCYLLA_PASSWORD", doc.password)
        if environ.get("SCYLLA_TIMEOUT"):
            doc.timeout = _float(environ, "SCYLLA_TIMEOUT", doc.timeout)

        self.scan_batch_size = _int(environ, "SCAN_BATCH_SIZE", self.scan_batch_size)
        if environ.get("METRICS_PORT"):
            self.metrics_port = _int(environ, "METRICS_PORT", 0)
        if "JSON_LOGGING" in environ:
            self.json_logging = environ["JSON_LOGGING"].lower() == "true"
        self.log_level = environ.get("LOG_LEVEL", self.log_level).upper()

    def _apply_vault(self, environ: Dict[str, str]) -> None:
        from library_sync.utils.vault_client import VaultClient

        vault = VaultClient(vault_url=environ.get("VAULT_ADDR"), vault_token=environ.get("VAULT_TOKEN"))
        try:
            postgres = vault.get_database_credentials("postgres")
            scylla = vault.get_database_credentials("scylla")
        finally:
            vault.close()

        self.relational.user = postgres.get("username", self.relational.user)
        self.relational.password = postgres.get("password", self.relational.password)
        self.document.user = scylla.get("username", self.document.user)
        self.document.password = scylla.get("password", self.document.password)
        logger.info("Database credentials loaded from Vault")

    def validate(self) -> None:
        """
        Raises:
            ValueError: On the first invalid value
        """
        for name, value in (
            ("relational.port", self.relational.port),
            ("document.port", self.document.port),
        ):
            if not 0 < int(value) < 65536:
                raise ValueError(f"{name} must be a valid TCP port, got {value}")

        if self.relational.pool_size < 1:
            raise ValueError("relational.pool_size must be at least 1")
        if self.relational.connect_timeout <= 0:
            raise ValueError("relational.connect_timeout must be positive")
        if not self.document.hosts:
            raise ValueError("document.hosts cannot be empty")
        if self.document.in_chunk_size < 1:
            raise ValueError("document.in_chunk_size must be at least 1")
        if self.scan_batch_size < 1:
            raise ValueError("scan_batch_size must be at least 1")
        if self.metrics_port is not None and not 0 < int(self.metrics_port) < 65536:
            raise ValueError(f"metrics_port must be a valid TCP port, got {self.metrics_port}")
        if not isinstance(logging.getLevelName(self.log_level), int):
            raise ValueError(f"Unknown log level: {self.log_level}")


def _update(target: Any, values: Dict[str, Any]) -> None:
    for key, value in values.items():
        if not hasattr(target, key):
            raise ValueError(f"Unknown configuration key: {key}")
        setattr(target, key, value)


def _int(environ: Dict[str, str], name: str, default: int) -> int:
    raw = environ.get(name)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from None


def _float(environ: Dict[str, str], name: str, default: float) -> float:
    raw = environ.get(name)
    if raw is None or raw == "":
        return default
    try:
        return float(raw)
    except ValueError:
        raise ValueError(f"{name} must be a number, got {raw!r}") from None
