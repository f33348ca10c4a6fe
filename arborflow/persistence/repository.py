"""Sink abstraction for checkpoint persistence."""

from __future__ import annotations

from typing import Protocol, runtime_checkable

from .models import CheckpointSnapshot


@runtime_checkable
class CheckpointSink(Protocol):
    """Protocol for checkpoint persistence backends.

    ``write`` must be idempotent: writing the same snapshot twice leaves the
    backend in the same state as writing it once.
    """

    async def write(self, snapshot: CheckpointSnapshot) -> None:
        """Persist the latest snapshot of a run."""


@runtime_checkable
class CheckpointStore(CheckpointSink, Protocol):
    """A sink whose snapshots can be read back."""

    async def get_execution(self, execution_id: str) -> CheckpointSnapshot | None:
        """Retrieve the latest snapshot of a run by id."""

    async def list_executions(self) -> list[CheckpointSnapshot]:
        """Return the latest snapshot of every persisted run."""
