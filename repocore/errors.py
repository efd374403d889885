"""
Error types for repocore.

This module defines the exception types used by the repository core:
- RepoCoreError: Base exception
- InvalidStateError: Data access on a repository that is not valid
- DuplicateRepositoryError: Repository tag registered twice
- AuthenticationFailedError: Cipher does not unlock a database file
- IntegrityFailedError: Integrity probe did not return the ok sentinel
- PatchFailedError: A version patch step failed
- BackendError: Any other backend failure inside an audited call

Invariants:
    - All errors inherit from RepoCoreError
    - Errors never carry cipher material in message or details
"""

from __future__ import annotations

from typing import Any, Dict, Optional


class RepoCoreError(Exception):
    """Base exception for all repocore errors.

    Attributes:
        message: Error message
        code: Error code for programmatic handling
        details: Additional error context
    """

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code or "REPOCORE_ERROR"
        self.details = details or {}


class InvalidStateError(RepoCoreError):
    """Repository is not in a valid state for the requested operation.

    Raised when:
    - Data is accessed while the connection is not validated
    - A closed repository is initialized again
    """

    def __init__(self, message: str, repository: Optional[str] = None) -> None:
        super().__init__(
            message,
            code="INVALID_STATE",
            details={"repository": repository},
        )
        self.repository = repository


class DuplicateRepositoryError(RepoCoreError):
    """A repository with the same tag is already registered."""

    def __init__(self, tag: str) -> None:
        super().__init__(
            f"Repository '{tag}' is already registered",
            code="DUPLICATE_REPOSITORY",
            details={"tag": tag},
        )
        self.tag = tag


class AuthenticationFailedError(RepoCoreError):
    """The supplied cipher does not unlock the database.

    An embedded engine usually reports a wrong key only when the first
    statement runs, so this is raised from the connection probe.
    """

    def __init__(self, message: str, database: Optional[str] = None) -> None:
        super().__init__(
            message,
            code="AUTHENTICATION_FAILED",
            details={"database": database},
        )
        self.database = database


class IntegrityFailedError(RepoCoreError):
    """The integrity probe returned something other than ``ok``."""

    def __init__(self, database: Optional[str], result: Optional[str]) -> None:
        super().__init__(
            f"Database integrity check failed: {result!r}",
            code="INTEGRITY_FAILED",
            details={"database": database, "result": result},
        )
        self.database = database
        self.result = result


class PatchFailedError(RepoCoreError):
    """A step of a version patch returned failure or raised.

    Attributes:
        version: Version of the failing patch
        step_index: Zero-based index of the failing step
    """

    def __init__(self, version: int, step_index: int, reason: Optional[str] = None) -> None:
        message = f"Patch version={version} failed at step {step_index}"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(
            message,
            code="PATCH_FAILED",
            details={"version": version, "step_index": step_index},
        )
        self.version = version
        self.step_index = step_index


class BackendError(RepoCoreError):
    """Backend failure observed inside an audited call."""

    def __init__(self, message: str, sql: Optional[str] = None) -> None:
        super().__init__(
            message,
            code="BACKEND_ERROR",
            details={"sql": sql},
        )
        self.sql = sql
