"""
Configuration management for the eVault bridge.

All configuration is done via environment variables - no config files inside containers.
This module provides typed configuration classes with validation.

Invariants:
    - All settings have sensible defaults for local development
    - Production deployments MUST set an explicit NEO4J_PASSWORD
    - Secrets are never logged or exposed in error messages

How to change safely:
    - Add new settings with defaults that maintain backward compatibility
    - Keep variable names shared with the eVault deployment templates
      (NEO4J_URI, NEO4J_USER, NEO4J_PASSWORD)
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path

logger = logging.getLogger(__name__)


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() == "true"


@dataclass(frozen=True)
class GraphConfig:
    """Graph backend (Neo4j) connection and bootstrap configuration.

    Attributes:
        uri: Bolt/neo4j URI of the graph backend
        user: Username
        password: Password (never logged)
        max_retries: Maximum connection attempts during bootstrap
        retry_delay_ms: Fixed delay between attempts
        bootstrap_timeout_s: Upper bound on the whole bootstrap, None for no cap
        connection_timeout_s: Driver-level socket connection timeout
    """

    uri: str = "bolt://localhost:7687"
    user: str = "neo4j"
    password: str = field(default="", repr=False)
    max_retries: int = 30
    retry_delay_ms: int = 5000
    bootstrap_timeout_s: float | None = None
    connection_timeout_s: float = 30.0

    @classmethod
    def from_env(cls) -> GraphConfig:
        """Load configuration from environment variables."""
        timeout = os.getenv("NEO4J_BOOTSTRAP_TIMEOUT_S")
        return cls(
            uri=os.getenv("NEO4J_URI", "bolt://localhost:7687"),
            user=os.getenv("NEO4J_USER", "neo4j"),
            password=os.getenv("NEO4J_PASSWORD", ""),
            max_retries=int(os.getenv("NEO4J_MAX_RETRIES", "30")),
            retry_delay_ms=int(os.getenv("NEO4J_RETRY_DELAY_MS", "5000")),
            bootstrap_timeout_s=float(timeout) if timeout else None,
            connection_timeout_s=float(os.getenv("NEO4J_CONNECTION_TIMEOUT_S", "30")),
        )


@dataclass(frozen=True)
class StorageConfig:
    """Local mapping storage configuration.

    Attributes:
        data_dir: Directory holding the mapping SQLite files
        mapping_db_name: File name of the flat local/global mapping store
        meta_envelope_db_name: File name of the meta-envelope map
        wal_mode: SQLite WAL mode enabled
        busy_timeout_ms: SQLite busy timeout in milliseconds
        cache_size_pages: SQLite cache size in pages (negative = KB)
    """

    data_dir: str = "/var/lib/evault-bridge"
    mapping_db_name: str = "mappings.db"
    meta_envelope_db_name: str = "meta_envelope_maps.db"
    wal_mode: bool = True
    busy_timeout_ms: int = 5000
    cache_size_pages: int = -16000  # 16MB

    @classmethod
    def from_env(cls) -> StorageConfig:
        """Load configuration from environment variables."""
        return cls(
            data_dir=os.getenv("MAPPING_DB_PATH", "/var/lib/evault-bridge"),
            mapping_db_name=os.getenv("MAPPING_DB_NAME", "mappings.db"),
            meta_envelope_db_name=os.getenv("META_ENVELOPE_DB_NAME", "meta_envelope_maps.db"),
            wal_mode=_env_bool("SQLITE_WAL_MODE", "true"),
            busy_timeout_ms=int(os.getenv("SQLITE_BUSY_TIMEOUT_MS", "5000")),
            cache_size_pages=int(os.getenv("SQLITE_CACHE_SIZE", "-16000")),
        )

    @property
    def mapping_db_path(self) -> Path:
        return Path(self.data_dir) / self.mapping_db_name

    @property
    def meta_envelope_db_path(self) -> Path:
        return Path(self.data_dir) / self.meta_envelope_db_name


@dataclass(frozen=True)
class ObservabilityConfig:
    """Logging configuration.

    Attributes:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
        log_format: Log format (json, text)
    """

    log_level: str = "INFO"
    log_format: str = "json"

    @classmethod
    def from_env(cls) -> ObservabilityConfig:
        """Load configuration from environment variables."""
        return cls(
            log_level=os.getenv("LOG_LEVEL", "INFO"),
            log_format=os.getenv("LOG_FORMAT", "json"),
        )


@dataclass
class BridgeConfig:
    """Complete bridge configuration.

    Attributes:
        graph: Graph backend configuration
        storage: Local mapping storage configuration
        observability: Logging configuration
    """

    graph: GraphConfig = field(default_factory=GraphConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    observability: ObservabilityConfig = field(default_factory=ObservabilityConfig)

    @classmethod
    def from_env(cls) -> BridgeConfig:
        """Load complete configuration from environment variables.

        Returns:
            BridgeConfig with all sections populated from environment.

        Raises:
            ValueError: If required configuration is missing or invalid.
        """
        config = cls(
            graph=GraphConfig.from_env(),
            storage=StorageConfig.from_env(),
            observability=ObservabilityConfig.from_env(),
        )

        config.validate()
        return config

    def validate(self) -> None:
        """Validate configuration consistency.

        Raises:
            ValueError: If configuration is invalid.
        """
        if not self.graph.uri:
            raise ValueError("NEO4J_URI is required")
        if self.graph.max_retries < 1:
            raise ValueError("NEO4J_MAX_RETRIES must be at least 1")
        if self.graph.retry_delay_ms < 0:
            raise ValueError("NEO4J_RETRY_DELAY_MS must not be negative")
        if self.graph.bootstrap_timeout_s is not None and self.graph.bootstrap_timeout_s <= 0:
            raise ValueError("NEO4J_BOOTSTRAP_TIMEOUT_S must be positive when set")

        if not self.storage.data_dir:
            raise ValueError("MAPPING_DB_PATH is required")
        if self.storage.mapping_db_name == self.storage.meta_envelope_db_name:
            raise ValueError("MAPPING_DB_NAME and META_ENVELOPE_DB_NAME must differ")

        if self.observability.log_format not in ("json", "text"):
            raise ValueError(
                f"Invalid LOG_FORMAT '{self.observability.log_format}'. Must be one of: json, text"
            )

        if not self.graph.password:
            logger.warning("NEO4J_PASSWORD is empty")

        if not os.path.exists(self.storage.data_dir):
            logger.warning(
                f"Data directory does not exist: {self.storage.data_dir}. "
                "It will be created when the stores are opened."
            )

    def log_config(self) -> None:
        """Log configuration (redacting secrets)."""
        logger.info(
            "Bridge configuration loaded",
            extra={
                "neo4j_uri": self.graph.uri,
                "neo4j_user": self.graph.user,
                "max_retries": self.graph.max_retries,
                "retry_delay_ms": self.graph.retry_delay_ms,
                "bootstrap_timeout_s": self.graph.bootstrap_timeout_s,
                "data_dir": self.storage.data_dir,
                "log_level": self.observability.log_level,
            },
        )
