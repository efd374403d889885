"""
Configuration management for repocore.

Configuration is read from environment variables into typed, frozen
dataclasses. Hosts may also construct the dataclasses directly.

Invariants:
    - All settings have sensible defaults for local development
    - Ciphers are never part of this configuration and never logged
    - current_version is a positive integer

How to change safely:
    - Add new settings with defaults that keep existing deployments working
    - Document new environment variables in the class docstrings
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field

logger = logging.getLogger(__name__)


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() == "true"


@dataclass(frozen=True)
class StorageConfig:
    """Local storage configuration.

    Attributes:
        data_dir: Directory holding the repository database files
        driver: sqlite3-compatible DB-API module (sqlite3, sqlcipher3)
        busy_timeout_ms: SQLite busy timeout in milliseconds
        wal_mode: SQLite WAL mode enabled
    """

    data_dir: str = "./data"
    driver: str = "sqlite3"
    busy_timeout_ms: int = 5000
    wal_mode: bool = True

    @classmethod
    def from_env(cls) -> StorageConfig:
        """Load configuration from environment variables."""
        return cls(
            data_dir=os.getenv("REPOCORE_DATA_DIR", "./data"),
            driver=os.getenv("REPOCORE_SQLITE_DRIVER", "sqlite3"),
            busy_timeout_ms=int(os.getenv("REPOCORE_SQLITE_BUSY_TIMEOUT_MS", "5000")),
            wal_mode=_env_bool("REPOCORE_SQLITE_WAL_MODE", "true"),
        )

    def database_path(self, name: str) -> str:
        """Path of a repository database inside data_dir."""
        safe_name = "".join(c for c in name if c.isalnum() or c in "-_.")
        return os.path.join(self.data_dir, f"{safe_name}.db")


@dataclass(frozen=True)
class CompatibilityConfig:
    """Schema version bookkeeping.

    Attributes:
        current_version: Schema version the running code is built against
        version_file: JSON file holding the last used version
        clamp_to_current: Skip patches above current_version
    """

    current_version: int = 1
    version_file: str = "./data/version.json"
    clamp_to_current: bool = False

    @classmethod
    def from_env(cls) -> CompatibilityConfig:
        """Load configuration from environment variables."""
        return cls(
            current_version=int(os.getenv("REPOCORE_CURRENT_VERSION", "1")),
            version_file=os.getenv("REPOCORE_VERSION_FILE", "./data/version.json"),
            clamp_to_current=_env_bool("REPOCORE_CLAMP_PATCHES", "false"),
        )


@dataclass(frozen=True)
class ObservabilityConfig:
    """Logging configuration.

    Attributes:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
        log_format: Log format (json, text)
    """

    log_level: str = "INFO"
    log_format: str = "text"

    @classmethod
    def from_env(cls) -> ObservabilityConfig:
        """Load configuration from environment variables."""
        return cls(
            log_level=os.getenv("LOG_LEVEL", "INFO"),
            log_format=os.getenv("LOG_FORMAT", "text"),
        )


@dataclass
class DataLayerConfig:
    """Complete data layer configuration.

    Attributes:
        storage: Local storage configuration
        compatibility: Schema version configuration
        observability: Logging configuration
    """

    storage: StorageConfig = field(default_factory=StorageConfig)
    compatibility: CompatibilityConfig = field(default_factory=CompatibilityConfig)
    observability: ObservabilityConfig = field(default_factory=ObservabilityConfig)

    @classmethod
    def from_env(cls) -> DataLayerConfig:
        """Load complete configuration from environment variables.

        Raises:
            ValueError: If configuration is invalid.
        """
        config = cls(
            storage=StorageConfig.from_env(),
            compatibility=CompatibilityConfig.from_env(),
            observability=ObservabilityConfig.from_env(),
        )
        config.validate()
        return config

    def validate(self) -> None:
        """Validate configuration consistency.

        Raises:
            ValueError: If configuration is invalid.
        """
        if self.compatibility.current_version <= 0:
            raise ValueError(
                f"REPOCORE_CURRENT_VERSION must be positive, got {self.compatibility.current_version}"
            )
        if self.storage.busy_timeout_ms < 0:
            raise ValueError("REPOCORE_SQLITE_BUSY_TIMEOUT_MS must not be negative")
        if self.observability.log_format not in ("json", "text"):
            raise ValueError(
                f"Invalid LOG_FORMAT '{self.observability.log_format}'. Must be one of: json, text"
            )

        if not os.path.exists(self.storage.data_dir):
            logger.warning(
                f"Data directory does not exist: {self.storage.data_dir}. "
                "It will be created on first provision."
            )

    def log_config(self) -> None:
        """Log configuration."""
        logger.info(
            "Data layer configuration loaded",
            extra={
                "data_dir": self.storage.data_dir,
                "driver": self.storage.driver,
                "wal_mode": self.storage.wal_mode,
                "current_version": self.compatibility.current_version,
                "version_file": self.compatibility.version_file,
                "clamp_to_current": self.compatibility.clamp_to_current,
                "log_level": self.observability.log_level,
            },
        )
