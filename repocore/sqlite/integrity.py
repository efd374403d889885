"""
SQLite integrity validator.

Runs PRAGMA integrity_check on a database file and compares the result with
the "ok" sentinel.
"""

from __future__ import annotations

import logging
from typing import Optional

from ..diagnostics import Context
from ..errors import IntegrityFailedError
from ..provider import IntegrityValidator, is_integrity_ok
from .connection import SqliteConnectionString

logger = logging.getLogger(__name__)


class SqliteIntegrityValidator(IntegrityValidator):
    """Integrity validator for SQLite / SQLCipher files."""

    def __init__(self, driver: str = "sqlite3", busy_timeout_ms: int = 5000) -> None:
        self.driver = driver
        self.busy_timeout_ms = busy_timeout_ms

    async def validate(self, ctx: Context, cipher: Optional[str], db_path: str) -> bool:
        descriptor = SqliteConnectionString(
            database=db_path,
            cipher=cipher,
            driver=self.driver,
            busy_timeout_ms=self.busy_timeout_ms,
            wal_mode=False,
        )
        logger.debug(f"Checking integrity of {db_path}")

        try:
            conn = descriptor.open()
            try:
                row = conn.execute("PRAGMA integrity_check").fetchone()
            finally:
                conn.close()
        except Exception as exc:
            ctx.log(exc)
            return False

        result = None if row is None else row[0]
        ctx.log(f"Database integrity check=[{result}]")
        if is_integrity_ok(result):
            return True
        ctx.log(IntegrityFailedError(db_path, result))
        return False
