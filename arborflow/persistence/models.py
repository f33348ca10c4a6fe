"""Data models for the checkpoint tree and its persisted snapshots."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, Iterator, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from ..contracts import ComponentOptions


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ExecutionNode(BaseModel):
    """One component invocation in the checkpoint tree.

    ``props`` and ``output`` hold the real values for the duration of a run;
    masking happens only when a snapshot is taken.
    """

    model_config = ConfigDict(arbitrary_types_allowed=True)

    id: str
    parent_id: Optional[str] = None
    component_name: str
    props: Dict[str, Any] = Field(default_factory=dict)
    output: Any = None
    started_at: datetime = Field(default_factory=utcnow)
    completed_at: Optional[datetime] = None
    completed: bool = False
    error: Optional[Dict[str, Any]] = None
    children: List["ExecutionNode"] = Field(default_factory=list)
    metadata: Dict[str, Any] = Field(default_factory=dict)
    sequence: int = 0
    options: Optional[ComponentOptions] = Field(default=None, exclude=True)

    @property
    def child_ids(self) -> List[str]:
        return [child.id for child in self.children]

    def walk(self) -> Iterator["ExecutionNode"]:
        """Yield this node and its descendants depth first."""
        yield self
        for child in self.children:
            yield from child.walk()

    def find(self, node_id: str) -> Optional["ExecutionNode"]:
        return next((node for node in self.walk() if node.id == node_id), None)


class CheckpointSnapshot(BaseModel):
    """Masked, JSON-compatible state of a run handed to a checkpoint sink."""

    execution_id: str
    workflow_name: Optional[str] = None
    version: int = 1
    updated_at: datetime = Field(default_factory=utcnow)
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    steps: int = 0
    root: Dict[str, Any] = Field(default_factory=dict)

    def to_json(self) -> str:
        return self.model_dump_json()

    def root_node(self) -> ExecutionNode:
        """Rebuild the (masked) execution tree, e.g. to replay from it."""
        return ExecutionNode.model_validate(self.root)
