"""
SQLite authenticator.

Checks whether a cipher unlocks a database file by opening a keyed
connection and executing a statement against the schema table.
"""

from __future__ import annotations

import logging
from typing import Optional

from ..errors import AuthenticationFailedError, InvalidStateError
from ..provider import Authenticator
from .connection import SqliteConnectionString

logger = logging.getLogger(__name__)


class SqliteAuthenticator(Authenticator):
    """Authenticator for SQLite / SQLCipher files.

    Example:
        >>> auth = SqliteAuthenticator("/var/lib/app/notes.db", driver="sqlcipher3")
        >>> await auth.authenticate("s3cret")
        True
    """

    def __init__(
        self,
        default_db_path: Optional[str] = None,
        driver: str = "sqlite3",
        busy_timeout_ms: int = 5000,
    ) -> None:
        self.default_db_path = default_db_path
        self.driver = driver
        self.busy_timeout_ms = busy_timeout_ms

    async def authenticate(self, cipher: str, db_path: Optional[str] = None) -> bool:
        path = db_path or self.default_db_path
        if path is None:
            raise ValueError("No database path given and no default configured")

        descriptor = SqliteConnectionString(
            database=path,
            cipher=cipher,
            driver=self.driver,
            busy_timeout_ms=self.busy_timeout_ms,
            wal_mode=False,
        )
        driver = descriptor.load_driver()

        try:
            conn = descriptor.open()
        except (AuthenticationFailedError, InvalidStateError) as exc:
            logger.info(f"Authentication rejected for {path}: {exc.message}")
            return False
        except driver.DatabaseError as exc:
            logger.info(f"Unable to open {path}: {exc}")
            return False

        try:
            conn.execute("SELECT count(*) FROM sqlite_master").fetchone()
            return True
        except driver.DatabaseError as exc:
            logger.info(f"Authentication rejected for {path}: {exc}")
            return False
        finally:
            conn.close()
