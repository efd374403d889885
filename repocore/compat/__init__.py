"""
Compatibility module for repocore.

This module provides the schema version-patch engine:
- VersionPatch: ordered, resumable migration steps for one target version
- CompatibilityService: per-entity patch catalogue and version bookkeeping

Invariants:
    - Patches at or below the last-used version never run again
    - The last-used version advances only after a successful initialization
"""

from .patch import PatchStep, VersionPatch
from .service import (
    CompatibilityService,
    InMemoryCompatibilityService,
    JsonFileCompatibilityService,
)

__all__ = [
    "PatchStep",
    "VersionPatch",
    "CompatibilityService",
    "InMemoryCompatibilityService",
    "JsonFileCompatibilityService",
]
