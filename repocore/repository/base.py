"""
Abstract repository contract.

A Repository owns a single persistent store. Its lifecycle is:

    created -> registered -> initialized -> (patched)* -> closed

Invariants:
    - is_valid is True only while the backing connection is open and has
      answered the validation probe
    - Data access refuses to run while is_valid is False (InvalidStateError)
    - register_patches runs at most once per lifecycle
    - close() is terminal and idempotent

How to change safely:
    - Give concrete repositories an explicit repository_tag; renaming the
      class otherwise changes the registry key
    - List every entity the repository migrates in entity_tags
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import ClassVar, Optional, Tuple

from ..compat import CompatibilityService
from ..diagnostics import Context
from ..errors import InvalidStateError

logger = logging.getLogger(__name__)


class Repository(ABC):
    """Base class for persistent repositories.

    Subclasses implement initialize(), close() and contribute_patches().
    execute_patches() has a default that runs every outstanding patch of
    every entity in entity_tags.

    Attributes:
        repository_tag: Registry key (defaults to the qualified class name)
        entity_tags: Entity namespaces this repository owns patches for
    """

    repository_tag: ClassVar[Optional[str]] = None
    entity_tags: ClassVar[Tuple[str, ...]] = ()

    def __init__(self) -> None:
        self._valid = False
        self._closed = False
        self._patches_registered = False

    @property
    def tag(self) -> str:
        """Registry key of this repository."""
        cls = type(self)
        return cls.repository_tag or f"{cls.__module__}.{cls.__qualname__}"

    @property
    def is_valid(self) -> bool:
        return self._valid

    @property
    def is_closed(self) -> bool:
        return self._closed

    def _set_valid(self, valid: bool) -> None:
        self._valid = valid

    def ensure_valid(self) -> None:
        """Raise unless the repository is usable.

        Raises:
            InvalidStateError: If not valid
        """
        if not self._valid:
            raise InvalidStateError("Database is not in a valid state", repository=self.tag)

    def ensure_open(self) -> None:
        """Raise if the repository has been closed.

        Raises:
            InvalidStateError: If closed
        """
        if self._closed:
            raise InvalidStateError("Repository is closed", repository=self.tag)

    @abstractmethod
    async def initialize(self, ctx: Context) -> bool:
        """Open backing resources and validate them.

        Returns:
            True on success. Failures leave is_valid False.
        """

    def register_patches(self, ctx: Context, compat: CompatibilityService) -> None:
        """Contribute this repository's patches to ``compat``.

        A second call in the same lifecycle is logged and ignored.
        """
        if self._patches_registered:
            ctx.log(f"Patches for repository=[{self.tag}] already registered")
            return
        self.contribute_patches(ctx, compat)
        self._patches_registered = True

    def contribute_patches(self, ctx: Context, compat: CompatibilityService) -> None:
        """Register VersionPatches with ``compat``. Override in subclasses."""

    async def execute_patches(self, ctx: Context, compat: CompatibilityService) -> None:
        """Run every outstanding patch, entity by entity.

        Raises:
            PatchFailedError: On the first failing step (later patches for
                the entity are not attempted)
        """
        for entity in self.entity_tags:
            for patch in compat.patches_for(ctx, entity):
                await patch.patch(ctx)
                logger.info(f"Applied patch version={patch.version} for={entity} in {self.tag}")

    @abstractmethod
    async def close(self) -> None:
        """Release backing resources. Idempotent."""

    def __repr__(self) -> str:
        return f"{type(self).__name__}(tag={self.tag!r}, valid={self._valid}, closed={self._closed})"
