"""
SQLite connection descriptors.

A SqliteConnectionString describes how a repository opens its database:
file location, optional cipher, DB-API driver module and connection pragmas.
The driver is any sqlite3-compatible module; ``sqlite3`` for plain files,
``sqlcipher3`` for encrypted ones.

Invariants:
    - Connections are opened in autocommit mode; transactions are explicit
    - PRAGMA key is the first statement on a keyed connection
    - A wrong cipher surfaces as AuthenticationFailedError, never as a raw
      driver DatabaseError
    - The cipher never appears in logs or reprs
"""

from __future__ import annotations

import importlib
import logging
import sqlite3
from dataclasses import dataclass, field
from pathlib import Path
from types import ModuleType
from typing import Optional

from ..config import StorageConfig
from ..errors import AuthenticationFailedError, InvalidStateError

logger = logging.getLogger(__name__)

MEMORY_DATABASE = ":memory:"
META_TABLE = "META"
META_PROBE = f"SELECT name FROM sqlite_master WHERE type='table' AND name='{META_TABLE}'"


def quote_literal(value: str) -> str:
    """Quote a string as an SQL literal (PRAGMA does not take parameters)."""
    return "'" + value.replace("'", "''") + "'"


@dataclass(frozen=True)
class SqliteConnectionString:
    """How to open one SQLite database.

    Attributes:
        database: Path to the database file, or ":memory:"
        cipher: Encryption key applied with PRAGMA key (None for plain files)
        driver: Name of the sqlite3-compatible DB-API module
        busy_timeout_ms: SQLite busy timeout
        wal_mode: Enable WAL journal mode
        create: Create the file if it does not exist
    """

    database: str
    cipher: Optional[str] = field(default=None, repr=False)
    driver: str = "sqlite3"
    busy_timeout_ms: int = 5000
    wal_mode: bool = True
    create: bool = False

    @classmethod
    def from_storage(
        cls,
        storage: StorageConfig,
        name: str,
        cipher: Optional[str] = None,
        create: bool = False,
    ) -> SqliteConnectionString:
        """Descriptor for the database ``name`` inside storage.data_dir.

        Driver, busy timeout and WAL mode come from the storage configuration.
        """
        return cls(
            database=storage.database_path(name),
            cipher=cipher,
            driver=storage.driver,
            busy_timeout_ms=storage.busy_timeout_ms,
            wal_mode=storage.wal_mode,
            create=create,
        )

    @property
    def path(self) -> Optional[Path]:
        if self.database == MEMORY_DATABASE:
            return None
        return Path(self.database)

    def load_driver(self) -> ModuleType:
        """Import the configured DB-API module."""
        return importlib.import_module(self.driver)

    def open(self, create: Optional[bool] = None) -> sqlite3.Connection:
        """Open and configure a connection.

        Args:
            create: Override the descriptor's create flag

        Returns:
            Open connection in autocommit mode

        Raises:
            InvalidStateError: If the file is missing and creation is not allowed
            AuthenticationFailedError: If the cipher does not unlock the file
        """
        allow_create = self.create if create is None else create
        path = self.path

        if path is not None:
            if not allow_create and not path.exists():
                raise InvalidStateError(f"Database file not found: {self.database}")
            path.parent.mkdir(parents=True, exist_ok=True)

        driver = self.load_driver()
        conn = driver.connect(
            self.database,
            timeout=self.busy_timeout_ms / 1000.0,
            isolation_level=None,  # Autocommit by default, explicit transactions
        )
        conn.row_factory = driver.Row

        try:
            if self.cipher:
                conn.execute(f"PRAGMA key = {quote_literal(self.cipher)}")
            conn.execute(f"PRAGMA busy_timeout = {self.busy_timeout_ms}")
            if self.wal_mode and path is not None:
                conn.execute("PRAGMA journal_mode = WAL")
            conn.execute("PRAGMA foreign_keys = ON")
        except driver.OperationalError:
            conn.close()
            raise
        except driver.DatabaseError as exc:
            conn.close()
            raise AuthenticationFailedError(
                f"Unable to unlock database: {exc}", database=self.database
            ) from exc

        logger.debug(f"Opened database {self.database} with driver {self.driver}")
        return conn
