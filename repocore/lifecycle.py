"""
Data layer lifecycle.

DataLayer strings the core together the way a host application uses it:

    start: registry.initialize_all -> compat.update_last_used_version
    stop:  registry.close_all

Invariants:
    - The last used version is advanced only when initialize_all succeeded
    - stop() never raises and may be called after a failed start()
    - A failed start() may be retried; patches resume where they stopped

How to change safely:
    - Register every repository before start()
    - Keep version persistence inside CompatibilityService implementations
"""

from __future__ import annotations

import logging
from typing import Optional

import json_log_formatter

from .compat import CompatibilityService, JsonFileCompatibilityService
from .config import DataLayerConfig, ObservabilityConfig
from .diagnostics import Context, LoginFailedHook
from .repository import Repository, RepositoryRegistry
from .sqlite import SqliteAuthenticator, SqliteConnectionString, SqliteIntegrityValidator

logger = logging.getLogger(__name__)


def setup_logging(config: ObservabilityConfig) -> None:
    """Configure logging based on configuration.

    Args:
        config: Observability configuration
    """
    level = getattr(logging, config.log_level.upper(), logging.INFO)

    if config.log_format == "json":
        formatter: logging.Formatter = json_log_formatter.JSONFormatter()
    else:
        formatter = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")

    handler = logging.StreamHandler()
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers = [handler]


class DataLayer:
    """Lifecycle orchestrator for a set of repositories.

    Attributes:
        config: Data layer configuration
        registry: Repositories managed by this data layer
        compat: Compatibility service for version patches
        authenticator: Cipher check built from the storage configuration
        integrity_validator: Integrity check built from the storage configuration

    Example:
        >>> layer = DataLayer.from_config(DataLayerConfig.from_env())
        >>> layer.register(ctx, NotesRepository(layer.connection_string("notes", cipher)))
        >>> if not await layer.start(ctx, on_login_failed=ask_for_password):
        ...     ...
        >>> await layer.stop(ctx)
    """

    def __init__(
        self,
        config: DataLayerConfig,
        registry: RepositoryRegistry,
        compat: CompatibilityService,
    ) -> None:
        self.config = config
        self.registry = registry
        self.compat = compat
        self.authenticator = SqliteAuthenticator(
            driver=config.storage.driver,
            busy_timeout_ms=config.storage.busy_timeout_ms,
        )
        self.integrity_validator = SqliteIntegrityValidator(
            driver=config.storage.driver,
            busy_timeout_ms=config.storage.busy_timeout_ms,
        )
        self._started: Optional[bool] = None

    @classmethod
    def from_config(cls, config: DataLayerConfig) -> DataLayer:
        """Build a data layer with a file-backed compatibility service."""
        compat = JsonFileCompatibilityService(
            config.compatibility.version_file,
            current_version=config.compatibility.current_version,
            clamp_to_current=config.compatibility.clamp_to_current,
        )
        return cls(config, RepositoryRegistry(), compat)

    @property
    def started(self) -> bool:
        return bool(self._started)

    def connection_string(
        self, name: str, cipher: Optional[str] = None, create: bool = False
    ) -> SqliteConnectionString:
        """Descriptor for a repository database under the configured storage."""
        return SqliteConnectionString.from_storage(self.config.storage, name, cipher, create)

    def register(self, ctx: Context, repository: Repository) -> bool:
        return self.registry.register(ctx, repository)

    async def start(self, ctx: Context, on_login_failed: Optional[LoginFailedHook] = None) -> bool:
        """Initialize every repository and record the schema version.

        Returns:
            True if every repository initialized and patched
        """
        if self._started:
            logger.warning("Data layer already started")
            return True
        if self._started is False:
            logger.info("Retrying data layer start after failure")

        logger.info("Starting data layer")
        self.config.log_config()

        ok = await self.registry.initialize_all(ctx, self.compat, on_login_failed)
        if ok:
            self.compat.update_last_used_version(ctx)
            logger.info(f"Data layer started at schema version {self.compat.current_version()}")
        else:
            logger.error("Data layer failed to start")

        self._started = ok
        return ok

    async def stop(self, ctx: Context) -> None:
        """Close every repository."""
        logger.info("Stopping data layer")
        await self.registry.close_all(ctx)
        self._started = None
