"""Per-run workflow state, host hooks and progress events."""

from __future__ import annotations

import asyncio
import inspect
import logging
from collections import deque
from typing import Any, Awaitable, Callable, Deque, Dict, List, Mapping, Optional, Union

from .checkpoint import CheckpointManager
from .context import get_current_context
from .contracts import (
    DataMessage,
    EventMessage,
    ProgressMessage,
    WorkflowMessage,
)
from .persistence.models import ExecutionNode

logger = logging.getLogger(__name__)

MessageListener = Callable[[WorkflowMessage], Any]
InputRequestHandler = Callable[[Dict[str, Any]], Union[Any, Awaitable[Any]]]
RestoreHandler = Callable[[ExecutionNode, Any], Union[None, Awaitable[None]]]


def _default_send_message(message: WorkflowMessage) -> None:
    logger.debug(f"No message listener configured, dropping {message.type} message")


def _default_on_request_input(request: Dict[str, Any]) -> None:
    logger.warning(
        f"Input was requested for node {request.get('nodeId')} but no input handler is configured"
    )
    return None


def _default_on_restore_checkpoint(node: ExecutionNode, feedback: Any) -> None:
    logger.warning(
        f"Restoring checkpoint {node.id} is not supported without a restore handler"
    )


class WorkflowContext:
    """State shared by every invocation of one workflow run."""

    def __init__(
        self,
        checkpoint_manager: Optional[CheckpointManager] = None,
        send_message: Optional[MessageListener] = None,
        on_request_input: Optional[InputRequestHandler] = None,
        on_restore_checkpoint: Optional[RestoreHandler] = None,
        execution_scope: Optional[Mapping[str, Any]] = None,
    ) -> None:
        self.checkpoint_manager = checkpoint_manager or CheckpointManager()
        self.send_message = send_message or _default_send_message
        self.on_request_input = on_request_input or _default_on_request_input
        self.on_restore_checkpoint = (
            on_restore_checkpoint or _default_on_restore_checkpoint
        )
        self.execution_scope: Dict[str, Any] = dict(execution_scope or {})
        self.checkpoint_label_map: Dict[str, ExecutionNode] = {}
        self._listeners: List[MessageListener] = []
        self._deliveries: Deque[Awaitable[Any]] = deque()
        self._deliverer: Optional[asyncio.Task] = None

    def add_listener(self, listener: MessageListener) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: MessageListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def send_workflow_message(self, message: WorkflowMessage) -> None:
        """Deliver ``message`` to the host hook and every listener, in order."""
        for target in (self.send_message, *self._listeners):
            try:
                result = target(message)
            except Exception:
                logger.exception(f"Message listener failed on {message.type} message")
                continue
            if inspect.isawaitable(result):
                self._schedule_delivery(result)

    def _schedule_delivery(self, delivery: Awaitable[Any]) -> None:
        self._deliveries.append(delivery)
        if self._deliverer is not None and not self._deliverer.done():
            return
        self._deliverer = asyncio.get_running_loop().create_task(
            self._drain_deliveries()
        )

    async def _drain_deliveries(self) -> None:
        # one delivery at a time keeps async listeners in send order
        while self._deliveries:
            delivery = self._deliveries.popleft()
            try:
                await delivery
            except Exception:
                logger.exception("Async message listener failed")

    async def wait_for_pending_messages(self) -> None:
        """Return once every async listener delivery sent so far has finished."""
        while self._deliverer is not None and not self._deliverer.done():
            await asyncio.shield(self._deliverer)

    async def request_input(self, request: Dict[str, Any]) -> Any:
        result = self.on_request_input(request)
        if inspect.isawaitable(result):
            result = await result
        return result

    async def restore_checkpoint(self, node: ExecutionNode, feedback: Any) -> None:
        result = self.on_restore_checkpoint(node, feedback)
        if inspect.isawaitable(result):
            await result


class EventStream:
    """Collect workflow messages and expose them as an async iterator.

    Pass an instance as ``message_listener``; iteration stops after the
    ``end`` message has been yielded.
    """

    def __init__(self) -> None:
        self._queue: asyncio.Queue[WorkflowMessage] = asyncio.Queue()
        self._closed = False
        self.messages: List[WorkflowMessage] = []

    def __call__(self, message: WorkflowMessage) -> None:
        self.messages.append(message)
        self._queue.put_nowait(message)

    def __aiter__(self) -> "EventStream":
        return self

    async def __anext__(self) -> WorkflowMessage:
        if self._closed:
            raise StopAsyncIteration
        message = await self._queue.get()
        if message.type == "end":
            self._closed = True
        return message


def get_workflow_context() -> WorkflowContext:
    """Return the workflow context of the running invocation."""
    workflow_context = get_current_context().workflow_context
    if workflow_context is None:
        raise RuntimeError("No workflow context found; call this from inside a component")
    return workflow_context


def emit_progress(data: Union[str, Mapping[str, Any]]) -> None:
    """Send a ``progress`` message from inside a component.

    Strings are sent as ``{"type": "progress", "data": ...}``; mappings are
    spread into the message.
    """
    payload = {"data": data} if isinstance(data, str) else dict(data)
    payload.pop("type", None)
    get_workflow_context().send_workflow_message(ProgressMessage(**payload))


def publish_data(data: Any) -> None:
    get_workflow_context().send_workflow_message(DataMessage(data=data))


def publish_event(label: str, data: Any = None) -> None:
    get_workflow_context().send_workflow_message(EventMessage(label=label, data=data))
