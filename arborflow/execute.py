"""Workflow entrypoint: run a component tree as one checkpointed execution."""

from __future__ import annotations

import logging
from typing import Any, Callable, Dict, Hashable, Mapping, Optional, Union

from .checkpoint import CheckpointManager, ReplaySource
from .component import Component
from .config import load_config
from .context import ExecutionContext, get_current_context, scoped_context
from .contracts import (
    ComponentOptions,
    Element,
    EndMessage,
    ErrorMessage,
    StartMessage,
)
from .persistence import get_sink
from .persistence.repository import CheckpointSink
from .resolve import resolve_deep
from .workflow import (
    InputRequestHandler,
    MessageListener,
    RestoreHandler,
    WorkflowContext,
)

logger = logging.getLogger(__name__)

DEFAULT_SINK: Any = object()


class Workflow:
    """A named entrypoint wrapping a component or plain function.

    Example:
        >>> @workflow(name="Research")
        ... async def research(topic: str):
        ...     return await summarize(text=await search(query=topic))
        >>> await research.run({"topic": "tides"})
    """

    def __init__(
        self,
        name: str,
        target: Union[Component, Callable[..., Any]],
        metadata: Optional[Mapping[str, Any]] = None,
    ) -> None:
        self.name = name
        if isinstance(target, Component):
            self.component = Component(target.fn, name=name, options=target.options)
        else:
            self.component = Component(target, name=name)
        self.metadata: Dict[str, Any] = dict(metadata or {})

    async def run(
        self,
        props: Optional[Mapping[str, Any]] = None,
        *,
        stream: bool = False,
        message_listener: Optional[MessageListener] = None,
        on_request_input: Optional[InputRequestHandler] = None,
        on_restore_checkpoint: Optional[RestoreHandler] = None,
        checkpoint: Optional[ReplaySource] = None,
        metadata: Optional[Mapping[str, Any]] = None,
        execution_id: Optional[str] = None,
        sink: Optional[CheckpointSink] = DEFAULT_SINK,
        context: Optional[Mapping[Hashable, Any]] = None,
        execution_scope: Optional[Mapping[str, Any]] = None,
    ) -> Any:
        """Resolve the workflow once and return its result.

        Args:
            props: Keyword arguments for the workflow function.
            stream: Return a streaming result as an async iterator.
            message_listener: Receives every workflow message in order.
            on_request_input: Host answer to input and external tool requests.
            on_restore_checkpoint: Host handler for checkpoint restores.
            checkpoint: Tree of a previous run to replay completed nodes from.
            metadata: Run metadata merged onto the root node.
            execution_id: Id of this run; generated when omitted.
            sink: Where checkpoints go. Defaults to the configured sink,
                ``None`` disables persistence.
            context: Extra execution context values, e.g. injected clients.
            execution_scope: Host values exposed on the workflow context.
        """
        debounce_seconds = 0.0
        if sink is DEFAULT_SINK:
            config = load_config()
            sink = get_sink() if config.checkpoints.enabled else None
            debounce_seconds = config.checkpoints.debounce_seconds

        manager = CheckpointManager(
            sink,
            workflow_name=self.name,
            execution_id=execution_id,
            checkpoint=checkpoint,
            debounce_seconds=debounce_seconds,
        )
        workflow_context = WorkflowContext(
            manager,
            send_message=message_listener,
            on_request_input=on_request_input,
            on_restore_checkpoint=on_restore_checkpoint,
            execution_scope=execution_scope,
        )
        root_context = ExecutionContext.root(workflow_context).extend(context)

        def on_complete() -> None:
            workflow_context.send_workflow_message(EndMessage())

        element = Element(
            component=self.component,
            props=dict(props or {}),
            options=self.component.options.merge(ComponentOptions(name=self.name)),
            on_complete=on_complete,
        )

        logger.info(f"Starting workflow {self.name} ({manager.execution_id})")
        workflow_context.send_workflow_message(
            StartMessage(
                workflow_name=self.name, workflow_execution_id=manager.execution_id
            )
        )
        try:
            with scoped_context(root_context):
                result = await resolve_deep(element, stream=stream)
        except Exception as error:
            logger.info(f"Workflow {self.name} ({manager.execution_id}) failed: {error}")
            workflow_context.send_workflow_message(ErrorMessage(error=str(error)))
            workflow_context.send_workflow_message(EndMessage())
            raise
        finally:
            run_metadata = {**self.metadata, **(metadata or {})}
            if run_metadata and manager.root is not None:
                manager.add_metadata(manager.root, run_metadata)
            await manager.wait_for_pending_updates()
            await workflow_context.wait_for_pending_messages()

        logger.info(f"Workflow {self.name} ({manager.execution_id}) finished")
        return result

    def __call__(self, **props: Any) -> Element:
        """Use the workflow as a component inside another tree."""
        return self.component(**props)

    def __repr__(self) -> str:
        return f"Workflow({self.name!r})"


def workflow(
    fn: Optional[Callable[..., Any]] = None,
    *,
    name: Optional[str] = None,
    metadata: Optional[Mapping[str, Any]] = None,
) -> Any:
    """Decorator turning a function or component into a :class:`Workflow`."""

    def decorator(target: Union[Component, Callable[..., Any]]) -> Workflow:
        workflow_name = name or getattr(target, "name", None) or target.__name__
        return Workflow(workflow_name, target, metadata=metadata)

    if fn is not None:
        return decorator(fn)
    return decorator


async def execute(value: Any) -> Any:
    """Resolve ``value`` in the current context and checkpoint the result."""
    result = await resolve_deep(value)
    workflow_context = get_current_context().workflow_context
    if workflow_context is not None:
        workflow_context.checkpoint_manager.write()
    return result
