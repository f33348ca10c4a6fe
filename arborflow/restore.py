"""Named, restorable pause points inside a run."""

from __future__ import annotations

import logging
from typing import Any, Dict, Generic, Optional, TypeVar, Union

from .component import Component
from .constants import DEFAULT_MAX_RESTORES
from .context import get_current_context
from .contracts import ComponentOptions
from .errors import (
    CheckpointNotFoundError,
    DuplicateCheckpointError,
    RestoreLimitExceededError,
)
from .persistence.models import CheckpointSnapshot, ExecutionNode
from .workflow import get_workflow_context

logger = logging.getLogger(__name__)

T = TypeVar("T")


def _checkpoint_marker(max_restores: int = DEFAULT_MAX_RESTORES) -> Dict[str, Any]:
    node = get_current_context().current_node
    if node is None:
        raise RuntimeError("No current node found for checkpoint marker")
    return {
        "feedback": None,
        "restore_count": 0,
        "max_restores": max_restores,
        "node_id": node.id,
    }


CheckpointMarkerComponent = Component(_checkpoint_marker, name="CheckpointMarker")


class CheckpointMarker(Generic[T]):
    """Handle returned by :func:`create_checkpoint`.

    ``feedback`` is ``None`` on the first run and holds whatever the host
    supplied when the run is replayed after a restore.
    """

    def __init__(
        self,
        label: str,
        node: ExecutionNode,
        feedback: Optional[T] = None,
        restore_count: int = 0,
    ) -> None:
        self.label = label
        self.node = node
        self.feedback = feedback
        self.restore_count = restore_count

    async def restore(self, feedback: T) -> None:
        await _restore_node(self.node, feedback)

    def __repr__(self) -> str:
        return f"CheckpointMarker(label={self.label!r}, node_id={self.node.id!r})"


async def create_checkpoint(
    label: Optional[str] = None, max_restores: int = DEFAULT_MAX_RESTORES
) -> CheckpointMarker:
    """Record a restorable marker under the current node.

    Raises:
        DuplicateCheckpointError: If ``label`` was already created in this run.
        RestoreLimitExceededError: If the marker was restored ``max_restores``
            times already.
    """
    workflow_context = get_workflow_context()
    manager = workflow_context.checkpoint_manager
    if label is None:
        label = f"checkpoint-marker-{manager.node_sequence_number}"
    if label in workflow_context.checkpoint_label_map:
        raise DuplicateCheckpointError(label)

    # the label travels as metadata so it does not change the node id
    result = await CheckpointMarkerComponent(
        max_restores=max_restores,
        component_opts=ComponentOptions(
            metadata={"label": label, "max_restores": max_restores}
        ),
    )
    node = manager.get_node(result["node_id"])
    if node is None:
        # replayed under a different id; the marker is the newest child
        parent = get_current_context().current_node
        siblings = parent.children if parent is not None else []
        node = next(
            (n for n in reversed(siblings) if n.component_name == "CheckpointMarker"),
            None,
        )
    if node is None:
        raise RuntimeError(f"Checkpoint marker node {result['node_id']} was not recorded")
    workflow_context.checkpoint_label_map[label] = node

    restore_count = result.get("restore_count", 0)
    if restore_count >= result.get("max_restores", max_restores):
        raise RestoreLimitExceededError(label, result.get("max_restores", max_restores))

    return CheckpointMarker(label, node, result.get("feedback"), restore_count)


async def restore_checkpoint(label: str, feedback: Any) -> None:
    """Ask the host to restore the run to the marker created as ``label``."""
    workflow_context = get_workflow_context()
    node = workflow_context.checkpoint_label_map.get(label)
    if node is None:
        raise CheckpointNotFoundError(label)
    await _restore_node(node, feedback)


async def _restore_node(node: ExecutionNode, feedback: Any) -> None:
    workflow_context = get_workflow_context()
    await workflow_context.checkpoint_manager.wait_for_pending_updates()
    logger.info(f"Requesting restore of checkpoint {node.id}")
    await workflow_context.restore_checkpoint(node, feedback)


def rewind_checkpoint(
    checkpoint: Union[CheckpointSnapshot, ExecutionNode, Dict[str, Any]],
    node_id: str,
    feedback: Any,
) -> ExecutionNode:
    """Return a copy of ``checkpoint`` prepared to resume at marker ``node_id``.

    Hosts call this from their restore handler: the marker's cached output
    receives ``feedback`` and an incremented restore count, every node started
    after the marker is dropped, and the marker's ancestors are reopened so
    replaying the tree re-runs them from that point.
    """
    if isinstance(checkpoint, CheckpointSnapshot):
        root = checkpoint.root_node()
    elif isinstance(checkpoint, ExecutionNode):
        root = checkpoint.model_copy(deep=True)
    else:
        root = ExecutionNode.model_validate(checkpoint)

    marker = root.find(node_id)
    if marker is None:
        raise CheckpointNotFoundError(node_id)

    output = dict(marker.output or {})
    output["feedback"] = feedback
    output["restore_count"] = output.get("restore_count", 0) + 1
    marker.output = output

    ancestors = set()
    parent_id = marker.parent_id
    while parent_id is not None:
        ancestors.add(parent_id)
        parent = root.find(parent_id)
        parent_id = parent.parent_id if parent else None

    def prune(node: ExecutionNode) -> None:
        node.children = [
            child for child in node.children if child.sequence <= marker.sequence
        ]
        if node.id in ancestors:
            node.completed = False
            node.completed_at = None
            node.output = None
            node.error = None
        for child in node.children:
            prune(child)

    prune(root)
    return root
