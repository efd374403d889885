"""
SQLite repository base class.

SqliteRepository provides the connection handling every concrete SQLite
repository needs:
- Lazy connection opening from a SqliteConnectionString
- Connection validation through the META table probe
- Integrity checking with PRAGMA integrity_check
- Audited execution: caller-supplied actions run inside a transaction the
  adapter owns, with commit on success and rollback on error

Invariants:
    - is_valid is set only after a successful META probe
    - An audited call owns the transaction only if none is open; nested
      calls join the outer transaction and never commit or roll back
    - Errors inside audit() are logged to the context, not raised
    - Data access while not valid raises InvalidStateError
    - An integrity failure does not change is_valid: the connection is
      fine, the data is suspect

Thread safety:
    Not thread-safe. At most one caller may have an operation in flight
    against a repository; transaction ownership assumes it.

Example:
    >>> class NotesRepository(SqliteRepository):
    ...     repository_tag = "notes"
    ...     entity_tags = ("notes",)
    ...
    ...     def __init__(self, path, cipher):
    ...         super().__init__()
    ...         self.path, self.cipher = path, cipher
    ...
    ...     def connection_string(self):
    ...         return SqliteConnectionString(self.path, cipher=self.cipher)
    ...
    ...     def count(self, ctx):
    ...         return self.audit(ctx, "SELECT count(*) FROM notes", lambda c: c.scalar())
"""

from __future__ import annotations

import logging
import sqlite3
from abc import abstractmethod
from dataclasses import dataclass
from types import ModuleType
from typing import Any, Callable, Iterable, List, Optional, Sequence, TypeVar

from ..diagnostics import Context
from ..errors import (
    AuthenticationFailedError,
    BackendError,
    IntegrityFailedError,
    InvalidStateError,
)
from ..provider import is_integrity_ok
from ..repository import Repository
from .connection import META_PROBE, META_TABLE, SqliteConnectionString

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class SqliteCommand:
    """An SQL statement bound to a connection.

    Handed to audited actions; every call runs ``sql`` with the given
    parameters inside the audit's transaction.
    """

    connection: sqlite3.Connection
    sql: str

    def execute(self, *params: Any) -> int:
        """Execute and return the affected row count."""
        return self.connection.execute(self.sql, params).rowcount

    def execute_many(self, rows: Iterable[Sequence[Any]]) -> int:
        return self.connection.executemany(self.sql, rows).rowcount

    def scalar(self, *params: Any) -> Any:
        """Return the first column of the first row, or None."""
        row = self.connection.execute(self.sql, params).fetchone()
        return None if row is None else row[0]

    def query(self, *params: Any) -> List[Any]:
        return self.connection.execute(self.sql, params).fetchall()


class SqliteRepository(Repository):
    """Repository backed by one SQLite database file."""

    def __init__(self) -> None:
        super().__init__()
        self._connection: Optional[sqlite3.Connection] = None
        self._descriptor: Optional[SqliteConnectionString] = None
        self._driver: Optional[ModuleType] = None

    @abstractmethod
    def connection_string(self) -> SqliteConnectionString:
        """Describe how to open this repository's database."""

    @property
    def connection(self) -> sqlite3.Connection:
        """The validated connection.

        Raises:
            InvalidStateError: If the repository is not valid
        """
        self.ensure_valid()
        assert self._connection is not None
        return self._connection

    @property
    def database(self) -> Optional[str]:
        return self._descriptor.database if self._descriptor else None

    def _open(self, create: Optional[bool] = None) -> sqlite3.Connection:
        if self._connection is None:
            self._descriptor = self.connection_string()
            self._driver = self._descriptor.load_driver()
            self._connection = self._descriptor.open(create=create)
        return self._connection

    def _release(self) -> None:
        self._set_valid(False)
        conn, self._connection = self._connection, None
        if conn is not None:
            conn.close()

    async def validate_connection(self) -> None:
        """Probe the connection for the META table.

        Executing a statement is the only way to learn whether the cipher
        was correct.

        Raises:
            InvalidStateError: If not opened, or META is missing
            AuthenticationFailedError: If the database cannot be read
        """
        if self._connection is None:
            raise InvalidStateError("Database is not initialized", repository=self.tag)

        self._set_valid(False)
        try:
            row = self._connection.execute(META_PROBE).fetchone()
        except self._driver.OperationalError as exc:
            raise InvalidStateError(
                f"Database is not in a valid state: {exc}", repository=self.tag
            ) from exc
        except self._driver.DatabaseError as exc:
            raise AuthenticationFailedError(
                f"Unable to read database: {exc}", database=self.database
            ) from exc

        if row is None or not row[0]:
            raise InvalidStateError(
                f"Database is not in a valid state: {META_TABLE} table missing",
                repository=self.tag,
            )
        self._set_valid(True)

    async def initialize(self, ctx: Context) -> bool:
        """Open the database and validate the connection.

        On authentication failure the context's login-failed hook fires
        once and the error propagates.

        Raises:
            InvalidStateError: If closed, the file is missing, or the probe fails
            AuthenticationFailedError: If the cipher is rejected
        """
        self.ensure_open()
        try:
            self._open()
            await self.validate_connection()
        except AuthenticationFailedError:
            self._release()
            ctx.log(f"Authentication failed for repository=[{self.tag}]")
            ctx.login_failed()
            raise
        except Exception:
            self._release()
            raise

        logger.info(f"Initialized repository {self.tag} ({self.database})")
        return True

    async def provision(self, ctx: Context) -> bool:
        """Create the database file and META table, then initialize.

        Raises:
            AuthenticationFailedError: If an existing file rejects the cipher
        """
        self.ensure_open()
        conn = self._open(create=True)
        try:
            conn.execute(f"CREATE TABLE IF NOT EXISTS {META_TABLE} (name TEXT)")
        except self._driver.OperationalError:
            self._release()
            raise
        except self._driver.DatabaseError as exc:
            self._release()
            raise AuthenticationFailedError(
                f"Unable to provision database: {exc}", database=self.database
            ) from exc
        ctx.log(f"Provisioned database for repository=[{self.tag}]")
        return await self.initialize(ctx)

    async def validate_integrity(self, ctx: Context) -> bool:
        """Run PRAGMA integrity_check.

        Returns:
            True iff the probe returned "ok" (case-insensitive). Errors are
            logged and reported as False.
        """
        try:
            if self._connection is None:
                raise InvalidStateError("Database is not initialized", repository=self.tag)

            row = self._connection.execute("PRAGMA integrity_check").fetchone()
            result = None if row is None else row[0]
            ctx.log(f"Database integrity check=[{result}]")
            if is_integrity_ok(result):
                return True
            ctx.log(IntegrityFailedError(self.database, result))
        except Exception as exc:
            ctx.log(exc)

        return False

    def audit(
        self,
        ctx: Context,
        sql: str,
        action: Callable[[SqliteCommand], T],
    ) -> Optional[T]:
        """Run ``action`` against ``sql`` inside a managed transaction.

        The transaction is rolled back automatically on errors.

        Returns:
            The action's result, or None if sql was empty or anything failed

        Raises:
            InvalidStateError: If the repository is not valid
        """
        results = self._audited(ctx, sql, (action,))
        return None if results is None else results[0]

    def audit_many(
        self,
        ctx: Context,
        sql: str,
        *actions: Callable[[SqliteCommand], Any],
    ) -> Optional[List[Any]]:
        """Run several actions against ``sql`` in one transaction.

        Returns:
            The actions' results in order, or None if any failed (in which
            case the shared transaction was rolled back)
        """
        return self._audited(ctx, sql, actions)

    def _audited(
        self,
        ctx: Context,
        sql: str,
        actions: Sequence[Callable[[SqliteCommand], Any]],
    ) -> Optional[List[Any]]:
        if not sql:
            ctx.log(BackendError("Command text is empty"))
            return None

        conn = self.connection
        own_transaction = not conn.in_transaction

        try:
            if own_transaction:
                conn.execute("BEGIN")

            command = SqliteCommand(conn, sql)
            results = [action(command) for action in actions]

            if own_transaction:
                conn.execute("COMMIT")
            return results

        except Exception as exc:
            if own_transaction and conn.in_transaction:
                conn.execute("ROLLBACK")
            ctx.log(f"Audit failed for repository=[{self.tag}] sql=[{sql}]")
            ctx.log(exc)

        return None

    async def close(self) -> None:
        """Close the connection. Safe to call repeatedly or before opening."""
        self._closed = True
        if self._connection is None:
            self._set_valid(False)
            return
        self._release()
        logger.info(f"Closed repository {self.tag}")
