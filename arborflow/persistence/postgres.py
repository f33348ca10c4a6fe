"""PostgreSQL implementation of the checkpoint store."""

from __future__ import annotations

import json

import asyncpg

from .models import CheckpointSnapshot
from .repository import CheckpointStore


class PostgresCheckpointStore(CheckpointStore):
    """Persist checkpoint snapshots using PostgreSQL."""

    def __init__(self, dsn: str):
        self._dsn = dsn
        self._initialized = False

    async def _connect(self) -> asyncpg.Connection:
        conn = await asyncpg.connect(self._dsn)
        if not self._initialized:
            await self._ensure_schema(conn)
            self._initialized = True
        return conn

    async def _ensure_schema(self, conn: asyncpg.Connection) -> None:
        await conn.execute(
            """
            CREATE TABLE IF NOT EXISTS checkpoints (
                execution_id TEXT PRIMARY KEY,
                workflow_name TEXT,
                version INTEGER NOT NULL,
                updated_at TIMESTAMPTZ NOT NULL,
                started_at TIMESTAMPTZ,
                completed_at TIMESTAMPTZ,
                steps INTEGER NOT NULL,
                root JSONB NOT NULL
            )
            """
        )

    @staticmethod
    def _to_snapshot(row: asyncpg.Record) -> CheckpointSnapshot:
        root = row["root"]
        return CheckpointSnapshot(
            execution_id=row["execution_id"],
            workflow_name=row["workflow_name"],
            version=row["version"],
            updated_at=row["updated_at"],
            started_at=row["started_at"],
            completed_at=row["completed_at"],
            steps=row["steps"],
            root=json.loads(root) if isinstance(root, str) else root,
        )

    # ------------------------------------------------------------------
    async def write(self, snapshot: CheckpointSnapshot) -> None:
        conn = await self._connect()
        try:
            await conn.execute(
                """
                INSERT INTO checkpoints (
                    execution_id, workflow_name, version, updated_at,
                    started_at, completed_at, steps, root
                ) VALUES ($1, $2, $3, $4, $5, $6, $7, $8)
                ON CONFLICT (execution_id) DO UPDATE SET
                    workflow_name = EXCLUDED.workflow_name,
                    version = EXCLUDED.version,
                    updated_at = EXCLUDED.updated_at,
                    started_at = EXCLUDED.started_at,
                    completed_at = EXCLUDED.completed_at,
                    steps = EXCLUDED.steps,
                    root = EXCLUDED.root
                WHERE EXCLUDED.version >= checkpoints.version
                """,
                snapshot.execution_id,
                snapshot.workflow_name,
                snapshot.version,
                snapshot.updated_at,
                snapshot.started_at,
                snapshot.completed_at,
                snapshot.steps,
                json.dumps(snapshot.root),
            )
        finally:
            await conn.close()

    async def get_execution(self, execution_id: str) -> CheckpointSnapshot | None:
        conn = await self._connect()
        try:
            row = await conn.fetchrow(
                "SELECT * FROM checkpoints WHERE execution_id = $1", execution_id
            )
        finally:
            await conn.close()
        if not row:
            return None
        return self._to_snapshot(row)

    async def list_executions(self) -> list[CheckpointSnapshot]:
        conn = await self._connect()
        try:
            rows = await conn.fetch("SELECT * FROM checkpoints ORDER BY updated_at")
        finally:
            await conn.close()
        return [self._to_snapshot(row) for row in rows]
