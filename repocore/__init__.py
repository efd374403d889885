"""
repocore - Lifecycle and version-patch core for local SQLite repositories.

This package registers, initializes, version-migrates and closes a set of
local persistent repositories backed by an embedded SQLite engine
(optionally SQLCipher-encrypted).

Architecture:
    ┌──────────────┐  register   ┌─────────────────────┐
    │  Bootstrap   │────────────▶│ RepositoryRegistry  │
    │  (DataLayer) │             └──────────┬──────────┘
    └──────┬───────┘                        │ initialize_all
           │                                ▼
           │                 ┌──────────────────────────────┐
           │                 │ Repository (SqliteRepository)│
           │                 │  initialize -> META probe    │
           │                 │  register_patches            │
           │                 │  execute_patches             │
           │                 └──────────────┬───────────────┘
           │                                │ patches_for
           ▼                                ▼
    ┌──────────────────────┐     ┌──────────────────────┐
    │ update_last_used_    │◀────│ CompatibilityService │
    │ version (on success) │     │  + VersionPatch      │
    └──────────────────────┘     └──────────────────────┘

Invariants:
    - Initialization is all-or-nothing; close is best-effort
    - The last used version advances only after a successful initialization
    - A patch step that succeeded is never run twice by the same patch
    - Data access on an invalid repository raises InvalidStateError

How to change safely:
    - Patch steps must be idempotent
    - Register patches in ascending version order
    - Never register patches above the current version

Version: see _version.py.
"""

from ._version import __version__

__all__ = ["__version__"]
