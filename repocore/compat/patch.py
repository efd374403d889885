"""
Version patches.

A VersionPatch is an ordered bundle of migration steps that promote an
entity's persisted schema to ``version``. Each step is an async callable
taking a Context and returning True on success.

Invariants:
    - version > 0
    - Step order is fixed at construction (plus appends before execution)
    - A step that succeeded is never run again by the same patch object
    - A failing step stays unapplied and aborts the patch

How to change safely:
    - Steps must be idempotent: the engine skips steps after success, but the
      backend may have committed part of a step before a crash
    - Never reuse a version number for different steps
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Iterator

from ..diagnostics import Context
from ..errors import PatchFailedError

logger = logging.getLogger(__name__)

PatchStep = Callable[[Context], Awaitable[bool]]


@dataclass
class _StepInstance:
    """A step plus the engine-tracked applied flag."""

    func: PatchStep
    applied: bool = False


class VersionPatch:
    """Ordered, resumable bundle of migration steps.

    Example:
        >>> async def add_column(ctx):
        ...     repo.audit(ctx, "ALTER TABLE notes ADD COLUMN tags TEXT", lambda c: c.execute())
        ...     return True
        >>> patch = VersionPatch(4, add_column)
        >>> await patch.patch(ctx)
    """

    def __init__(self, version: int, *steps: PatchStep) -> None:
        if version <= 0:
            raise ValueError(f"Patch version must be positive, got {version}")
        self._version = version
        self._steps = [_StepInstance(step) for step in steps]
        self._started = False

    @property
    def version(self) -> int:
        """Target schema version of this patch."""
        return self._version

    @property
    def is_applied(self) -> bool:
        """True when every step has completed successfully."""
        return all(step.applied for step in self._steps)

    @property
    def pending_steps(self) -> int:
        return sum(1 for step in self._steps if not step.applied)

    def __len__(self) -> int:
        return len(self._steps)

    def __iter__(self) -> Iterator[PatchStep]:
        return (step.func for step in self._steps)

    def __repr__(self) -> str:
        return (
            f"VersionPatch(version={self._version}, steps={len(self._steps)}, "
            f"pending={self.pending_steps})"
        )

    def add_step(self, step: PatchStep) -> None:
        """Append a step.

        Raises:
            RuntimeError: If the patch has already been executed
        """
        if self._started:
            raise RuntimeError(
                f"Cannot add a step to patch version={self._version} after execution began"
            )
        self._steps.append(_StepInstance(step))

    async def patch(self, ctx: Context) -> None:
        """Run every unapplied step in order.

        Args:
            ctx: Diagnostics context handed to each step

        Raises:
            PatchFailedError: If a step returns a falsy value or raises
        """
        self._started = True

        for index, step in enumerate(self._steps):
            if step.applied:
                continue

            try:
                ok = await step.func(ctx)
            except Exception as exc:
                raise PatchFailedError(self._version, index, str(exc)) from exc

            if not ok:
                raise PatchFailedError(self._version, index, "step reported failure")

            step.applied = True
            logger.debug(f"Applied step {index} of patch version={self._version}")
