"""
Compatibility service.

The compatibility service owns the per-entity catalogue of VersionPatches and
answers "which patches must run now?" by comparing each patch's version with
the durable last-used version.

Invariants:
    - Patches with version <= last_used_version are never yielded
    - Patches are yielded in ascending version; equal versions keep
      registration order
    - last_used_version only advances through update_last_used_version(),
      which the host calls after a fully successful initialization
    - last_used_version <= current_version after a successful update

How to change safely:
    - Register patches in ascending version order
    - Do not register patches above current_version unless clamp_to_current
      is enabled; without it they are yielded and executed
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Dict, Iterator, List

from ..diagnostics import Context
from .patch import VersionPatch

logger = logging.getLogger(__name__)


class CompatibilityService(ABC):
    """Per-entity registry of version patches.

    Subclasses supply the two versions and persist the last-used one.

    Attributes:
        clamp_to_current: Skip patches whose version exceeds current_version()
    """

    def __init__(self, clamp_to_current: bool = False) -> None:
        self._patches: Dict[str, List[VersionPatch]] = {}
        self.clamp_to_current = clamp_to_current

    def register_patch(self, entity: str, patch: VersionPatch) -> None:
        """Append a patch to an entity's catalogue.

        Args:
            entity: Entity tag the patch migrates
            patch: The patch to register
        """
        self._patches.setdefault(entity, []).append(patch)
        logger.debug(f"Registered patch version={patch.version} for={entity}")

    def registered_entities(self) -> List[str]:
        return list(self._patches)

    def patches_for(self, ctx: Context, entity: str) -> Iterator[VersionPatch]:
        """Yield the patches that must run for an entity.

        The last-used version is read when iteration starts, not when the
        generator is created.

        Args:
            ctx: Diagnostics context
            entity: Entity tag

        Yields:
            Patches with version > last_used_version(), ascending
        """
        patches = self._patches.get(entity)
        if not patches:
            ctx.log(f"no patches for {entity}")
            return

        from_version = self.last_used_version()
        ceiling = self.current_version() if self.clamp_to_current else None

        # sorted() is stable, so equal versions keep registration order
        for patch in sorted(patches, key=lambda p: p.version):
            if patch.version <= from_version:
                continue
            if ceiling is not None and patch.version > ceiling:
                ctx.log(
                    f"patch version={patch.version} skipped, above current={ceiling}, for={entity}"
                )
                continue
            ctx.log(f"patch version={patch.version}, from={from_version}, for={entity}")
            yield patch

    @abstractmethod
    def current_version(self) -> int:
        """Schema version the running code is built against."""

    @abstractmethod
    def last_used_version(self) -> int:
        """Durable last-observed schema version."""

    @abstractmethod
    def update_last_used_version(self, ctx: Context) -> None:
        """Advance last_used_version to current_version.

        Must only be called after a fully successful initialization.
        """


class InMemoryCompatibilityService(CompatibilityService):
    """Compatibility service holding the last-used version in memory.

    Intended for tests and for hosts that persist the version themselves
    (read it before constructing, store it after update).

    Example:
        >>> compat = InMemoryCompatibilityService(current_version=5, last_used_version=2)
        >>> compat.register_patch("notes", VersionPatch(4, step))
    """

    def __init__(
        self,
        current_version: int,
        last_used_version: int = 0,
        clamp_to_current: bool = False,
    ) -> None:
        super().__init__(clamp_to_current=clamp_to_current)
        self._current_version = current_version
        self._last_used_version = last_used_version

    def current_version(self) -> int:
        return self._current_version

    def last_used_version(self) -> int:
        return self._last_used_version

    def update_last_used_version(self, ctx: Context) -> None:
        previous = self._last_used_version
        self._last_used_version = self._current_version
        ctx.log(f"last used version updated from={previous} to={self._current_version}")


class JsonFileCompatibilityService(CompatibilityService):
    """Compatibility service persisting the last-used version to a JSON file.

    File format::

        {"last_used_version": 5}

    A missing file means version 0. Writes go to a temporary file in the same
    directory followed by os.replace(), so a crash never leaves a torn file.
    """

    def __init__(
        self,
        path: str | Path,
        current_version: int,
        clamp_to_current: bool = False,
    ) -> None:
        super().__init__(clamp_to_current=clamp_to_current)
        self.path = Path(path)
        self._current_version = current_version

    def current_version(self) -> int:
        return self._current_version

    def last_used_version(self) -> int:
        if not self.path.exists():
            return 0
        data = json.loads(self.path.read_text(encoding="utf-8"))
        if not isinstance(data, dict):
            raise ValueError(f"Version file {self.path} must hold a JSON object")
        return int(data.get("last_used_version", 0))

    def update_last_used_version(self, ctx: Context) -> None:
        previous = self.last_used_version()
        self.path.parent.mkdir(parents=True, exist_ok=True)

        fd, tmp_name = tempfile.mkstemp(dir=self.path.parent, prefix=".version-", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                json.dump({"last_used_version": self._current_version}, fh)
                fh.flush()
                os.fsync(fh.fileno())
            os.replace(tmp_name, self.path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise

        ctx.log(f"last used version updated from={previous} to={self._current_version}")
        logger.info(f"Persisted last used version {self._current_version} to {self.path}")
