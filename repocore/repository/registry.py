"""
Repository registry.

The RepositoryRegistry owns the set of live repositories keyed by their tag
and drives initialization and teardown across the whole set.

Invariants:
    - At most one repository per tag; duplicates are logged, never raised
    - Initialization is all-or-nothing: the first failure stops the sequence
    - close_all is best-effort and never raises
    - Insertion order is initialization order and close order

How to change safely:
    - Construct one registry at startup and pass it around; the global
      accessor exists for legacy call sites only
    - Serialize lifecycle calls: the registry is not safe under concurrent
      register/close_all

Example:
    >>> registry = RepositoryRegistry()
    >>> registry.register(ctx, NotesRepository(path, cipher))
    >>> if await registry.initialize_all(ctx, compat, on_login_failed=show_login):
    ...     compat.update_last_used_version(ctx)
    >>> await registry.close_all(ctx)
"""

from __future__ import annotations

import logging
import threading
from typing import Dict, Iterator, List, Optional, Type, TypeVar

from ..compat import CompatibilityService
from ..diagnostics import Context, LoginFailedHook
from ..errors import DuplicateRepositoryError, InvalidStateError
from .base import Repository

logger = logging.getLogger(__name__)

R = TypeVar("R", bound=Repository)

# Global registry instance
_global_registry: Optional[RepositoryRegistry] = None
_registry_lock = threading.Lock()


class RepositoryRegistry:
    """Registry of repositories keyed by tag.

    Thread-safety:
        None. Lifecycle operations must be serialized by the caller.
    """

    def __init__(self) -> None:
        self._repositories: Dict[str, Repository] = {}

    def __len__(self) -> int:
        return len(self._repositories)

    def __contains__(self, tag: object) -> bool:
        return tag in self._repositories

    def __iter__(self) -> Iterator[Repository]:
        return iter(list(self._repositories.values()))

    def tags(self) -> List[str]:
        return list(self._repositories)

    def register(self, ctx: Context, repository: Repository) -> bool:
        """Register a repository under its tag.

        Args:
            ctx: Diagnostics context
            repository: The repository to register

        Returns:
            True if registered, False if the tag was already present
        """
        tag = repository.tag
        if tag in self._repositories:
            ctx.log(DuplicateRepositoryError(tag))
            return False

        self._repositories[tag] = repository
        logger.debug(f"Registered repository: {tag}")
        return True

    def get(self, tag: str) -> Optional[Repository]:
        """Return the repository registered under ``tag``, if any."""
        return self._repositories.get(tag)

    def resolve(self, repository_type: Type[R]) -> Optional[R]:
        """Return the first registered repository of the given type."""
        for repository in self._repositories.values():
            if isinstance(repository, repository_type):
                return repository
        return None

    async def initialize_all(
        self,
        ctx: Context,
        compat: CompatibilityService,
        on_login_failed: Optional[LoginFailedHook] = None,
    ) -> bool:
        """Initialize, register patches for, and patch every repository.

        Args:
            ctx: Diagnostics context
            compat: Compatibility service receiving and yielding patches
            on_login_failed: Hook concrete repositories fire when their
                cipher is rejected

        Returns:
            True only if every repository completed all three steps
        """
        bound = ctx.bind(on_login_failed=on_login_failed)

        for repository in list(self._repositories.values()):
            try:
                if not await repository.initialize(bound):
                    raise InvalidStateError(
                        f"Repository '{repository.tag}' failed to initialize",
                        repository=repository.tag,
                    )
                repository.register_patches(bound, compat)
                await repository.execute_patches(bound, compat)
            except Exception as exc:
                bound.log(f"Unable to initialize repository=[{repository.tag}]")
                bound.log(exc)
                return False

        logger.info(f"Initialized {len(self._repositories)} repositories")
        return True

    async def close_all(self, ctx: Context) -> None:
        """Close every registered repository, logging individual failures."""
        if not self._repositories:
            return

        for repository in list(self._repositories.values()):
            try:
                await repository.close()
            except Exception as exc:
                ctx.log(f"Unable to close repository=[{repository.tag}]")
                ctx.log(exc)

    def clear(self) -> None:
        """Drop every entry without closing it."""
        self._repositories.clear()


def get_registry() -> RepositoryRegistry:
    """Get the process-wide registry, creating it on first use."""
    global _global_registry
    with _registry_lock:
        if _global_registry is None:
            _global_registry = RepositoryRegistry()
        return _global_registry


def reset_registry() -> None:
    """Reset the process-wide registry (for testing only).

    Repositories still registered are not closed.
    """
    global _global_registry
    with _registry_lock:
        _global_registry = None
