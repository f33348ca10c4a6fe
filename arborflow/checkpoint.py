"""Checkpoint tree bookkeeping and non-blocking persistence."""

from __future__ import annotations

import asyncio
import logging
import uuid
from typing import Any, Dict, List, Mapping, Optional, Set, Union

from .constants import MIN_SECRET_LENGTH, SECRET_PLACEHOLDER
from .contracts import ComponentOptions
from .errors import serialize_error
from .persistence.models import CheckpointSnapshot, ExecutionNode, utcnow
from .persistence.repository import CheckpointSink
from .utils.node_id import compute_content_id, generate_node_id, get_path_id, parse_node_id
from .utils.serialization import get_value_at_path, is_streamable, to_jsonable

logger = logging.getLogger(__name__)

ReplaySource = Union[CheckpointSnapshot, ExecutionNode, Mapping[str, Any]]


class CheckpointManager:
    """Own the execution tree of one run and persist it in the background.

    Every mutation marks the tree dirty and makes sure a single writer task is
    running. The writer takes a snapshot when a write starts, so any number of
    mutations made while a write is in flight collapse into one follow-up
    write.
    """

    def __init__(
        self,
        sink: Optional[CheckpointSink] = None,
        *,
        enabled: bool = True,
        workflow_name: Optional[str] = None,
        execution_id: Optional[str] = None,
        checkpoint: Optional[ReplaySource] = None,
        debounce_seconds: float = 0.0,
    ) -> None:
        self.sink = sink
        self.enabled = enabled and sink is not None
        self.workflow_name = workflow_name
        self.execution_id = execution_id or str(uuid.uuid4())
        self.debounce_seconds = debounce_seconds
        self.root: Optional[ExecutionNode] = None

        self._nodes: Dict[str, ExecutionNode] = {}
        self._call_counters: Dict[str, int] = {}
        self._sequence = 0
        self._version = 1
        self._secrets: Set[str] = set()
        self._dirty = False
        self._writer: Optional[asyncio.Task] = None
        self._replay_lookup: List[ExecutionNode] = []
        if checkpoint is not None:
            self._build_replay_lookup(checkpoint)

    # ------------------------------------------------------------------
    # Identity
    def get_next_call_index(
        self,
        parent_path: str,
        component_name: str,
        props: Optional[Mapping[str, Any]],
        id_props_keys: Optional[List[str]] = None,
    ) -> int:
        content_id = compute_content_id(component_name, props, id_props_keys)
        key = f"{parent_path}-{component_name}:{content_id}"
        current = self._call_counters.get(key, 0)
        self._call_counters[key] = current + 1
        return current

    @property
    def node_sequence_number(self) -> int:
        return self._sequence

    @property
    def version(self) -> int:
        return self._version

    def get_node(self, node_id: str) -> Optional[ExecutionNode]:
        return self._nodes.get(node_id)

    # ------------------------------------------------------------------
    # Tree mutation
    def add_node(
        self,
        node_id: str,
        component_name: str,
        props: Optional[Mapping[str, Any]] = None,
        parent: Optional[ExecutionNode] = None,
        options: Optional[ComponentOptions] = None,
    ) -> ExecutionNode:
        self._sequence += 1
        node = ExecutionNode(
            id=node_id,
            parent_id=parent.id if parent else None,
            component_name=component_name,
            props=dict(props or {}),
            metadata=dict(options.metadata) if options else {},
            sequence=self._sequence,
            options=options,
        )
        if options and options.secret_props:
            self._register_secret_props(node.props, options.secret_props)
        self._attach(node, parent)
        self._schedule_write()
        return node

    def complete_node(self, node: ExecutionNode, output: Any) -> None:
        node.output = output
        node.completed = True
        node.completed_at = utcnow()
        if node.options and node.options.secret_outputs and not is_streamable(output):
            self._collect_secrets(to_jsonable(output))
        self._schedule_write()

    def fail_node(
        self, node: ExecutionNode, error: Union[BaseException, Dict[str, Any]]
    ) -> None:
        if isinstance(error, BaseException):
            error = serialize_error(error)
        node.error = error
        node.completed_at = utcnow()
        self._schedule_write()

    def update_node(self, node: ExecutionNode, **fields: Any) -> None:
        for name, value in fields.items():
            setattr(node, name, value)
        self._schedule_write()

    def add_metadata(self, node: ExecutionNode, data: Mapping[str, Any]) -> None:
        node.metadata = {**node.metadata, **data}
        self._schedule_write()

    def _attach(self, node: ExecutionNode, parent: Optional[ExecutionNode]) -> None:
        self._nodes[node.id] = node
        if parent is not None:
            parent.children.append(node)
        elif self.root is None:
            self.root = node
        else:
            logger.debug(
                f"Node {node.id} has no parent and the tree already has root {self.root.id}; it is not persisted"
            )

    # ------------------------------------------------------------------
    # Writes
    def write(self) -> None:
        """Schedule a write of the current tree without waiting for it."""
        self._schedule_write()

    def _schedule_write(self) -> None:
        if not self.enabled or self.root is None:
            return
        self._dirty = True
        if self._writer is not None and not self._writer.done():
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # picked up by the next wait_for_pending_updates()
            return
        self._writer = loop.create_task(self._drain_writes())

    async def _drain_writes(self) -> None:
        while self._dirty:
            if self.debounce_seconds:
                await asyncio.sleep(self.debounce_seconds)
            self._dirty = False
            snapshot = self.snapshot()
            try:
                await self.sink.write(snapshot)
            except Exception:
                logger.exception(
                    f"Failed to save checkpoint version {snapshot.version} for {self.execution_id}"
                )
            finally:
                self._version += 1

    async def wait_for_pending_updates(self) -> None:
        """Return once every write scheduled so far has been acknowledged."""
        while True:
            writer = self._writer
            if writer is not None and not writer.done():
                await asyncio.shield(writer)
                continue
            if self._dirty and self.enabled and self.root is not None:
                self._schedule_write()
                continue
            return

    # ------------------------------------------------------------------
    # Snapshots and masking
    def snapshot(self) -> CheckpointSnapshot:
        """Return the masked, JSON-compatible state of the tree."""
        root = self.root
        return CheckpointSnapshot(
            execution_id=self.execution_id,
            workflow_name=self.workflow_name or (root.component_name if root else None),
            version=self._version,
            started_at=root.started_at if root else None,
            completed_at=root.completed_at if root else None,
            steps=sum(1 for _ in root.walk()) if root else 0,
            root=self._mask_node(root) if root else {},
        )

    def _mask_node(self, node: ExecutionNode) -> Dict[str, Any]:
        options = node.options
        props = to_jsonable(node.props)
        if options:
            for path in options.secret_props:
                _redact_path(props, path)

        if options and options.secret_outputs and node.output is not None:
            output: Any = SECRET_PLACEHOLDER
        else:
            output = to_jsonable(node.output)

        data = node.model_dump(
            mode="json", exclude={"props", "output", "metadata", "children"}
        )
        data.update(
            props=self._scrub(props),
            output=self._scrub(output),
            metadata=self._scrub(to_jsonable(node.metadata)),
            error=self._scrub(node.error),
            children=[self._mask_node(child) for child in node.children],
        )
        return data

    def _register_secret_props(self, props: Dict[str, Any], paths: List[str]) -> None:
        jsonable = to_jsonable(props)
        for path in paths:
            value = get_value_at_path(jsonable, path)
            if value is not None:
                self._collect_secrets(value)

    def _collect_secrets(self, value: Any) -> None:
        if isinstance(value, str):
            if value:
                self._secrets.add(value)
        elif isinstance(value, dict):
            for item in value.values():
                self._collect_secrets(item)
        elif isinstance(value, list):
            for item in value:
                self._collect_secrets(item)

    def _scrub(self, value: Any) -> Any:
        if not self._secrets:
            return value
        if isinstance(value, str):
            if value in self._secrets:
                return SECRET_PLACEHOLDER
            # longest first so overlapping secrets are fully replaced
            for secret in sorted(self._secrets, key=len, reverse=True):
                if len(secret) >= MIN_SECRET_LENGTH and secret in value:
                    value = value.replace(secret, SECRET_PLACEHOLDER)
            return value
        if isinstance(value, dict):
            return {key: self._scrub(item) for key, item in value.items()}
        if isinstance(value, list):
            return [self._scrub(item) for item in value]
        return value

    # ------------------------------------------------------------------
    # Replay
    def _build_replay_lookup(self, checkpoint: ReplaySource) -> None:
        if isinstance(checkpoint, CheckpointSnapshot):
            root = checkpoint.root_node()
        elif isinstance(checkpoint, ExecutionNode):
            root = checkpoint
        else:
            root = ExecutionNode.model_validate(checkpoint)
        # replay consumes nodes in the order they were started
        self._replay_lookup = sorted(
            root.walk(), key=lambda node: (node.started_at, node.sequence)
        )

    def get_node_from_checkpoint(self, node_id: str) -> Optional[ExecutionNode]:
        """Find and consume the replay node matching ``node_id``.

        Exact ids win; otherwise a node with the same path and content but a
        different call index, then a node with the same component name and
        content anywhere in the tree.
        """
        if not self._replay_lookup:
            return None

        path_id, content_id, _ = parse_node_id(node_id)
        component_name = path_id.rsplit("-", 1)[-1]

        for index, node in enumerate(self._replay_lookup):
            if node.id == node_id:
                if index != 0:
                    logger.debug(
                        f"Non-deterministic replay: {node_id} is not the next node in the checkpoint (next: {self._replay_lookup[0].id})"
                    )
                return self._replay_lookup.pop(index)

        for index, node in enumerate(self._replay_lookup):
            candidate_path, candidate_content, _ = parse_node_id(node.id)
            if candidate_path == path_id and candidate_content == content_id:
                logger.debug(
                    f"Non-deterministic replay: same path and content but different call index (target: {node_id}, found: {node.id})"
                )
                return self._replay_lookup.pop(index)

        for index, node in enumerate(self._replay_lookup):
            candidate_content = parse_node_id(node.id).content_id
            if node.component_name == component_name and candidate_content == content_id:
                logger.debug(
                    f"Non-deterministic replay: same content but different path (target: {node_id}, found: {node.id})"
                )
                return self._replay_lookup.pop(index)

        logger.debug(
            f"No replay match for {node_id}; {len(self._replay_lookup)} checkpoint nodes remain unused"
        )
        return None

    def add_cached_subtree(
        self,
        node: ExecutionNode,
        node_id: str,
        parent: Optional[ExecutionNode] = None,
        options: Optional[ComponentOptions] = None,
    ) -> Optional[ExecutionNode]:
        """Copy a completed replay subtree into this run's tree under ``node_id``."""
        if not node.completed:
            return None
        logger.debug(f"Adding cached subtree for {node.component_name} ({node_id})")
        copy = self._add_cached_node(node, node_id, parent, options)
        self._schedule_write()
        return copy

    def _add_cached_node(
        self,
        node: ExecutionNode,
        node_id: str,
        parent: Optional[ExecutionNode],
        options: Optional[ComponentOptions],
    ) -> Optional[ExecutionNode]:
        if node_id in self._nodes:
            logger.debug(f"Node {node_id} already exists, skipping cached subtree")
            return None
        self._sequence += 1
        copy = node.model_copy(
            update={
                "id": node_id,
                "parent_id": parent.id if parent else None,
                "children": [],
                "started_at": utcnow(),
                "sequence": self._sequence,
                "options": options if options is not None else node.options,
            }
        )
        self._attach(copy, parent)

        path_id = get_path_id(node_id)
        for child in node.children:
            if not child.completed:
                continue
            child_keys = child.options.id_props_keys if child.options else None
            child_id = generate_node_id(
                child.component_name,
                child.props,
                child_keys,
                path_id,
                self.get_next_call_index(
                    path_id, child.component_name, child.props, child_keys
                ),
            )
            self._add_cached_node(child, child_id, copy, None)
        return copy


def _redact_path(data: Any, path: str) -> None:
    parts = path.split(".")
    parent = get_value_at_path(data, ".".join(parts[:-1])) if len(parts) > 1 else data
    last = parts[-1]
    if isinstance(parent, dict) and last in parent:
        parent[last] = SECRET_PLACEHOLDER
    elif isinstance(parent, list) and last.isdigit() and int(last) < len(parent):
        parent[int(last)] = SECRET_PLACEHOLDER
