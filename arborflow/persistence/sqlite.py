"""SQLite implementation of the checkpoint store."""

from __future__ import annotations

import asyncio
import json
import sqlite3
from datetime import datetime
from pathlib import Path
from typing import Any

from .models import CheckpointSnapshot
from .repository import CheckpointStore

_COLUMNS = (
    "execution_id, workflow_name, version, updated_at, started_at, "
    "completed_at, steps, root"
)


class SQLiteCheckpointStore(CheckpointStore):
    """Persist checkpoint snapshots using SQLite."""

    def __init__(self, db_path: str | Path):
        self.db_path = str(db_path)
        self._conn = sqlite3.connect(self.db_path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._ensure_schema()

    # ------------------------------------------------------------------
    # Schema management
    def _ensure_schema(self) -> None:
        cur = self._conn.cursor()
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS checkpoints (
                execution_id TEXT PRIMARY KEY,
                workflow_name TEXT,
                version INTEGER NOT NULL,
                updated_at TEXT NOT NULL,
                started_at TEXT,
                completed_at TEXT,
                steps INTEGER NOT NULL,
                root TEXT NOT NULL
            )
            """
        )
        self._conn.commit()

    # ------------------------------------------------------------------
    # Helper methods
    def _execute(self, query: str, *params: Any) -> None:
        cur = self._conn.cursor()
        cur.execute(query, params)
        self._conn.commit()

    def _fetchone(self, query: str, *params: Any) -> sqlite3.Row | None:
        cur = self._conn.cursor()
        cur.execute(query, params)
        return cur.fetchone()

    def _fetchall(self, query: str, *params: Any) -> list[sqlite3.Row]:
        cur = self._conn.cursor()
        cur.execute(query, params)
        return cur.fetchall()

    @staticmethod
    def _to_snapshot(row: sqlite3.Row) -> CheckpointSnapshot:
        return CheckpointSnapshot(
            execution_id=row["execution_id"],
            workflow_name=row["workflow_name"],
            version=row["version"],
            updated_at=datetime.fromisoformat(row["updated_at"]),
            started_at=datetime.fromisoformat(row["started_at"]) if row["started_at"] else None,
            completed_at=datetime.fromisoformat(row["completed_at"]) if row["completed_at"] else None,
            steps=row["steps"],
            root=json.loads(row["root"]),
        )

    # ------------------------------------------------------------------
    # Store API
    async def write(self, snapshot: CheckpointSnapshot) -> None:
        await asyncio.to_thread(
            self._execute,
            f"""
            INSERT INTO checkpoints ({_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(execution_id) DO UPDATE SET
                workflow_name = excluded.workflow_name,
                version = excluded.version,
                updated_at = excluded.updated_at,
                started_at = excluded.started_at,
                completed_at = excluded.completed_at,
                steps = excluded.steps,
                root = excluded.root
            WHERE excluded.version >= checkpoints.version
            """,
            snapshot.execution_id,
            snapshot.workflow_name,
            snapshot.version,
            snapshot.updated_at.isoformat(),
            snapshot.started_at.isoformat() if snapshot.started_at else None,
            snapshot.completed_at.isoformat() if snapshot.completed_at else None,
            snapshot.steps,
            json.dumps(snapshot.root),
        )

    async def get_execution(self, execution_id: str) -> CheckpointSnapshot | None:
        row = await asyncio.to_thread(
            self._fetchone,
            f"SELECT {_COLUMNS} FROM checkpoints WHERE execution_id = ?",
            execution_id,
        )
        if not row:
            return None
        return self._to_snapshot(row)

    async def list_executions(self) -> list[CheckpointSnapshot]:
        rows = await asyncio.to_thread(
            self._fetchall,
            f"SELECT {_COLUMNS} FROM checkpoints ORDER BY updated_at",
        )
        return [self._to_snapshot(row) for row in rows]
