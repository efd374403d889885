"""
Backend contracts for data providers.

These contracts are bound to an embedded SQL backend but not to a vendor:
- Authenticator: does a cipher unlock a database file?
- IntegrityValidator: does the backend's integrity probe report ok?

Invariants:
    - Authenticators must execute a statement; embedded engines usually
      report a bad cipher only at first statement execution
    - The integrity sentinel is the string "ok", compared case-insensitively
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Optional

from ..diagnostics import Context

INTEGRITY_OK = "ok"


def is_integrity_ok(result: Optional[str]) -> bool:
    """Whether an integrity probe result is the ok sentinel."""
    if result is None:
        return False
    return str(result).lower() == INTEGRITY_OK


class Authenticator(ABC):
    """Validates that a cipher unlocks a database."""

    @abstractmethod
    async def authenticate(self, cipher: str, db_path: Optional[str] = None) -> bool:
        """Authenticate with ``cipher``.

        Args:
            cipher: Encryption key to test
            db_path: Database to test; None means the authenticator's default

        Returns:
            True iff the cipher unlocks the database
        """


class IntegrityValidator(ABC):
    """Runs a backend-specific integrity probe."""

    @abstractmethod
    async def validate(self, ctx: Context, cipher: Optional[str], db_path: str) -> bool:
        """Validate the integrity of a database.

        Returns:
            True iff the probe returned the ok sentinel
        """
