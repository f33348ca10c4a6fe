"""In-memory implementation of the checkpoint store."""

from __future__ import annotations

from typing import Dict, List

from .models import CheckpointSnapshot
from .repository import CheckpointStore


class InMemoryCheckpointStore(CheckpointStore):
    """Store checkpoint snapshots in local memory.

    Useful for tests or when no database is configured. Only the latest
    version of each run is kept; ``history`` records every acknowledged write.
    """

    def __init__(self, keep_history: bool = False) -> None:
        self._executions: Dict[str, CheckpointSnapshot] = {}
        self._keep_history = keep_history
        self.history: List[CheckpointSnapshot] = []

    # ------------------------------------------------------------------
    async def write(self, snapshot: CheckpointSnapshot) -> None:
        current = self._executions.get(snapshot.execution_id)
        # ignore stale versions arriving late
        if current is not None and current.version > snapshot.version:
            return
        self._executions[snapshot.execution_id] = snapshot
        if self._keep_history:
            self.history.append(snapshot)

    async def get_execution(self, execution_id: str) -> CheckpointSnapshot | None:
        return self._executions.get(execution_id)

    async def list_executions(self) -> list[CheckpointSnapshot]:
        return list(self._executions.values())
