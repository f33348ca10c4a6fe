"""Persistence layer for arborflow checkpoints."""

from __future__ import annotations

from typing import Optional

from ..config import ArborflowConfig, load_config
from .http import HttpCheckpointSink
from .inmemory import InMemoryCheckpointStore
from .models import CheckpointSnapshot, ExecutionNode
from .repository import CheckpointSink, CheckpointStore
from .sqlite import SQLiteCheckpointStore

try:  # pragma: no cover - optional dependency
    from .postgres import PostgresCheckpointStore
except Exception:  # pragma: no cover - optional dependency
    PostgresCheckpointStore = None  # type: ignore

_sink_instance: CheckpointSink | None = None


def get_sink(
    database_url: Optional[str] = None, config: Optional[ArborflowConfig] = None
) -> CheckpointSink | None:
    """Factory function to obtain a checkpoint sink.

    The backend is selected based on ``database_url`` which can be provided
    explicitly, via environment variable ``ARBORFLOW_DATABASE_URL``, or from
    loaded configuration. When checkpoints are disabled ``None`` is returned;
    when no URL is configured a process-wide in-memory store is used.
    """

    global _sink_instance
    if _sink_instance is not None and database_url is None and config is None:
        return _sink_instance

    config = config or load_config()
    checkpoints = config.checkpoints
    if not checkpoints.enabled and database_url is None:
        return None

    database_url = database_url or checkpoints.database_url

    if not database_url or database_url == "memory://":
        if not isinstance(_sink_instance, InMemoryCheckpointStore):
            _sink_instance = InMemoryCheckpointStore()
        return _sink_instance

    if database_url.startswith("sqlite://"):
        path = database_url.replace("sqlite://", "", 1)
        _sink_instance = SQLiteCheckpointStore(path)
    elif database_url.startswith("postgres://") or database_url.startswith(
        "postgresql://"
    ):
        if PostgresCheckpointStore is None:
            raise RuntimeError("Postgres support not available")
        _sink_instance = PostgresCheckpointStore(database_url)
    elif database_url.startswith("http://") or database_url.startswith("https://"):
        api = checkpoints.api.model_copy(update={"base_url": database_url})
        _sink_instance = HttpCheckpointSink(api)
    else:
        raise ValueError(f"Unsupported checkpoint backend: {database_url}")

    return _sink_instance


def reset_sink() -> None:
    """Forget the cached process-wide sink."""
    global _sink_instance
    _sink_instance = None


__all__ = [
    "CheckpointSink",
    "CheckpointSnapshot",
    "CheckpointStore",
    "ExecutionNode",
    "HttpCheckpointSink",
    "InMemoryCheckpointStore",
    "PostgresCheckpointStore",
    "SQLiteCheckpointStore",
    "get_sink",
    "reset_sink",
]
