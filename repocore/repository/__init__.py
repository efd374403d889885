"""
Repository module for repocore.

- Repository: abstract persistent store with a validated lifecycle
- RepositoryRegistry: keyed set of repositories with all-or-nothing
  initialization and best-effort close
"""

from .base import Repository
from .registry import RepositoryRegistry, get_registry, reset_registry

__all__ = [
    "Repository",
    "RepositoryRegistry",
    "get_registry",
    "reset_registry",
]
