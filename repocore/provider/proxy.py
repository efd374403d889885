"""
Data proxy and patcher.

A DataProxy hands out repositories on request, together with the patcher and
authenticator belonging to its backend. The registry-backed implementations
here resolve from a RepositoryRegistry and build missing repositories from
registered factories.

Invariants:
    - request() never returns a repository when the running schema version
      is below the caller's minimum_version
    - A repository built by request() is registered before it is returned
    - A built repository whose tag is held by another type is rejected
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Callable, Dict, Optional, Type, TypeVar

from ..compat import CompatibilityService
from ..diagnostics import Context
from ..errors import InvalidStateError
from ..repository import Repository, RepositoryRegistry
from .contracts import Authenticator

logger = logging.getLogger(__name__)

R = TypeVar("R", bound=Repository)


@dataclass(frozen=True)
class ProxyParameter:
    """Parameters considered when requesting a repository.

    Attributes:
        minimum_version: Lowest schema version the caller can work with
    """

    minimum_version: int = 0


class DataProviderPatcher(ABC):
    """Registers and executes patches for a data provider."""

    @abstractmethod
    def register_patches(self, ctx: Context, service: CompatibilityService) -> None:
        ...

    @abstractmethod
    async def execute_patches(self, ctx: Context, service: CompatibilityService) -> None:
        ...


class DataProxy(ABC):
    """Provides access to repositories of one backend."""

    @abstractmethod
    def request(self, repository_type: Type[R], parameter: Optional[ProxyParameter] = None) -> R:
        ...

    @abstractmethod
    def request_patcher(self) -> DataProviderPatcher:
        ...

    @abstractmethod
    def request_authenticator(self) -> Authenticator:
        ...


class RegistryPatcher(DataProviderPatcher):
    """Patcher covering every repository of a registry, in registry order."""

    def __init__(self, registry: RepositoryRegistry) -> None:
        self.registry = registry

    def register_patches(self, ctx: Context, service: CompatibilityService) -> None:
        for repository in self.registry:
            repository.register_patches(ctx, service)

    async def execute_patches(self, ctx: Context, service: CompatibilityService) -> None:
        for repository in self.registry:
            await repository.execute_patches(ctx, service)


class RegistryDataProxy(DataProxy):
    """DataProxy backed by a RepositoryRegistry.

    Example:
        >>> proxy = RegistryDataProxy(ctx, registry, compat, SqliteAuthenticator(path))
        >>> proxy.add_factory(NotesRepository, lambda: NotesRepository(path, cipher))
        >>> notes = proxy.request(NotesRepository, ProxyParameter(minimum_version=3))
    """

    def __init__(
        self,
        ctx: Context,
        registry: RepositoryRegistry,
        compat: CompatibilityService,
        authenticator: Authenticator,
    ) -> None:
        self.ctx = ctx
        self.registry = registry
        self.compat = compat
        self.authenticator = authenticator
        self._factories: Dict[type, Callable[[], Repository]] = {}

    def add_factory(self, repository_type: Type[R], factory: Callable[[], R]) -> None:
        """Register how to build a repository type on first request."""
        self._factories[repository_type] = factory

    def request(self, repository_type: Type[R], parameter: Optional[ProxyParameter] = None) -> R:
        """Return the repository of the given type.

        Raises:
            InvalidStateError: If the running schema version is below
                parameter.minimum_version, or no factory is known, or the
                built repository's tag is already taken
        """
        parameter = parameter or ProxyParameter()
        current = self.compat.current_version()
        if current < parameter.minimum_version:
            raise InvalidStateError(
                f"Schema version {current} is below required {parameter.minimum_version} "
                f"for {repository_type.__name__}"
            )

        existing = self.registry.resolve(repository_type)
        if existing is not None:
            return existing

        factory = self._factories.get(repository_type)
        if factory is None:
            raise InvalidStateError(f"No repository registered for {repository_type.__name__}")

        repository = factory()
        if not self.registry.register(self.ctx, repository):
            holder = self.registry.get(repository.tag)
            raise InvalidStateError(
                f"Tag '{repository.tag}' of {repository_type.__name__} is held by "
                f"{type(holder).__name__}",
                repository=repository.tag,
            )

        logger.info(f"Created repository {repository.tag} on request")
        return repository  # type: ignore[return-value]

    def request_patcher(self) -> DataProviderPatcher:
        return RegistryPatcher(self.registry)

    def request_authenticator(self) -> Authenticator:
        return self.authenticator
