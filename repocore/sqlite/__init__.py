"""
SQLite backend for repocore.

- SqliteConnectionString: how to open (and key) one database file
- SqliteRepository: lazy connection, META probe, audited transactions
- SqliteAuthenticator / SqliteIntegrityValidator: backend probes

Invariants:
    - One database file per repository, exclusively owned
    - The META table's presence means "cipher correct and database initialized"
"""

from .authenticator import SqliteAuthenticator
from .connection import META_PROBE, META_TABLE, SqliteConnectionString
from .integrity import SqliteIntegrityValidator
from .repository import SqliteCommand, SqliteRepository

__all__ = [
    "META_PROBE",
    "META_TABLE",
    "SqliteAuthenticator",
    "SqliteCommand",
    "SqliteConnectionString",
    "SqliteIntegrityValidator",
    "SqliteRepository",
]
