"""Deep resolution of component results.

``resolve_deep`` walks any value and returns it with no deferred work left:
elements are invoked, awaitables awaited, streams drained (or passed
through), and containers resolved entry by entry.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from typing import Any, AsyncIterator, List, Optional

from .constants import STREAM_UPDATE_INTERVAL
from .context import (
    WORKFLOW_CONTEXT_KEY,
    ExecutionContext,
    get_current_context,
    scoped_context,
)
from .contracts import (
    ComponentEndMessage,
    ComponentOptions,
    ComponentStartMessage,
    Element,
    Fragment,
    ProgressMessage,
)
from .persistence.models import ExecutionNode
from .utils.node_id import generate_node_id, get_path_id
from .utils.serialization import is_streamable, to_jsonable
from .workflow import WorkflowContext

logger = logging.getLogger(__name__)

_PRIMITIVES = (str, bytes, bytearray, int, float, bool)


async def resolve_deep(value: Any, *, stream: bool = False) -> Any:
    """Resolve ``value`` in the current execution context.

    With ``stream`` set, a streaming result is handed back as an async
    iterator instead of being drained.
    """
    context = get_current_context()
    if context.workflow_context is None:
        ephemeral = context.extend({WORKFLOW_CONTEXT_KEY: WorkflowContext()})
        with scoped_context(ephemeral):
            return await _resolve(value, stream)
    return await _resolve(value, stream)


async def _resolve(value: Any, stream: bool) -> Any:
    if value is None or isinstance(value, _PRIMITIVES):
        return value
    if isinstance(value, Element):
        return await _invoke(value, stream)
    if inspect.isawaitable(value):
        return await _resolve(await value, stream)
    if is_streamable(value):
        if stream:
            return value
        return await _resolve(aggregate_chunks(await _collect(value)), stream)
    if isinstance(value, (list, tuple)):
        return await _resolve_sequence(value, stream)
    if isinstance(value, dict):
        keys = list(value)
        if _is_deferred(value):
            results = await asyncio.gather(
                *(_resolve(value[key], stream) for key in keys)
            )
        else:
            results = [await _resolve(value[key], stream) for key in keys]
        return dict(zip(keys, results))
    return value


def _is_deferred(value: Any) -> bool:
    if isinstance(value, Element) or inspect.isawaitable(value) or is_streamable(value):
        return True
    if isinstance(value, (list, tuple)):
        return any(_is_deferred(item) for item in value)
    if isinstance(value, dict):
        return any(_is_deferred(item) for item in value.values())
    return False


async def _resolve_sequence(value: Any, stream: bool) -> Any:
    if _is_deferred(value):
        results = await asyncio.gather(*(_resolve(item, stream) for item in value))
    else:
        results = [await _resolve(item, stream) for item in value]

    flattened: List[Any] = []
    for result in results:
        if isinstance(result, Fragment):
            flattened.extend(result)
        else:
            flattened.append(result)

    if isinstance(value, Fragment):
        return Fragment(flattened)
    if isinstance(value, tuple):
        return tuple(flattened)
    return flattened


# ----------------------------------------------------------------------
# Element invocation


async def _invoke(element: Element, stream: bool) -> Any:
    context = get_current_context()
    workflow_context: WorkflowContext = context.workflow_context
    manager = workflow_context.checkpoint_manager
    options = element.options or element.component.options
    name = element.name
    parent = context.current_node
    parent_path = get_path_id(parent.id) if parent else ""

    call_index = manager.get_next_call_index(
        parent_path, name, element.props, options.id_props_keys
    )
    node_id = generate_node_id(
        name, element.props, options.id_props_keys, parent_path, call_index
    )

    cached = manager.get_node_from_checkpoint(node_id)
    if cached is not None and cached.completed and cached.error is None:
        logger.debug(f"Using cached result for {node_id}")
        manager.add_cached_subtree(cached, node_id, parent, options)
        if element.on_complete is not None:
            element.on_complete()
        return cached.output

    node = manager.add_node(node_id, name, element.props, parent, options)
    node_context = context.with_current_node(node)
    workflow_context.send_workflow_message(
        ComponentStartMessage(component_name=name, component_id=node_id)
    )

    try:
        with scoped_context(node_context):
            result = element.component.run(element.props)
            while inspect.isawaitable(result) and not isinstance(result, Element):
                result = await result

            if is_streamable(result):
                if stream and element.children is None:
                    return _pass_through(result, element, node, node_context)
                chunks = await _collect(result, node, workflow_context)
                result = _aggregate(chunks, options)

            value = await _resolve(result, stream and element.children is None)
            if element.children is not None:
                value = await _resolve(element.children(value), stream)
    except Exception as error:
        manager.fail_node(node, error)
        _end(workflow_context, name, node_id)
        raise

    manager.complete_node(node, value)
    _end(workflow_context, name, node_id)
    if element.on_complete is not None:
        element.on_complete()
    return value


def _end(workflow_context: WorkflowContext, name: str, node_id: str) -> None:
    workflow_context.send_workflow_message(
        ComponentEndMessage(component_name=name, component_id=node_id)
    )


# ----------------------------------------------------------------------
# Streams


def aggregate_chunks(chunks: List[Any]) -> Any:
    """Join ``str`` or ``bytes`` chunks; any other mix stays a list."""
    if chunks and all(isinstance(chunk, str) for chunk in chunks):
        return "".join(chunks)
    if chunks and all(isinstance(chunk, (bytes, bytearray)) for chunk in chunks):
        return b"".join(chunks)
    return list(chunks)


def _aggregate(chunks: List[Any], options: Optional[ComponentOptions]) -> Any:
    if options is not None and options.aggregator is not None:
        return options.aggregator(list(chunks))
    return aggregate_chunks(chunks)


async def _iterate(stream: Any) -> AsyncIterator[Any]:
    if hasattr(stream, "__aiter__"):
        async for chunk in stream:
            yield chunk
    else:
        for chunk in stream:
            yield chunk


def _emit_chunk(
    workflow_context: WorkflowContext, node: ExecutionNode, chunk: Any
) -> None:
    workflow_context.send_workflow_message(
        ProgressMessage(componentId=node.id, chunk=to_jsonable(chunk))
    )


async def _collect(
    stream: Any,
    node: Optional[ExecutionNode] = None,
    workflow_context: Optional[WorkflowContext] = None,
) -> List[Any]:
    """Drain ``stream``, reporting each chunk when it belongs to a node."""
    chunks: List[Any] = []
    loop = asyncio.get_running_loop()
    last_update = loop.time()
    async for chunk in _iterate(stream):
        chunks.append(chunk)
        if node is None or workflow_context is None:
            continue
        _emit_chunk(workflow_context, node, chunk)
        if loop.time() - last_update >= STREAM_UPDATE_INTERVAL:
            workflow_context.checkpoint_manager.update_node(
                node, output=_aggregate(chunks, node.options)
            )
            last_update = loop.time()
    return chunks


async def _pass_through(
    stream: Any,
    element: Element,
    node: ExecutionNode,
    node_context: ExecutionContext,
) -> AsyncIterator[Any]:
    """Yield the chunks of ``stream`` while keeping ``node`` up to date.

    Each pull runs inside the node's context. The node is closed once the
    stream is exhausted, fails, or the consumer stops iterating, and the
    iterator finishes only after that outcome has been persisted.
    """
    workflow_context: WorkflowContext = node_context.workflow_context
    manager = workflow_context.checkpoint_manager
    options = node.options
    iterator = _iterate(stream).__aiter__()
    chunks: List[Any] = []
    loop = asyncio.get_running_loop()
    last_update = loop.time()
    settled = False
    try:
        while True:
            with scoped_context(node_context):
                try:
                    chunk = await iterator.__anext__()
                except StopAsyncIteration:
                    break
            chunks.append(chunk)
            _emit_chunk(workflow_context, node, chunk)
            if loop.time() - last_update >= STREAM_UPDATE_INTERVAL:
                manager.update_node(node, output=_aggregate(chunks, options))
                last_update = loop.time()
            yield chunk
    except Exception as error:
        settled = True
        manager.fail_node(node, error)
        _end(workflow_context, node.component_name, node.id)
        raise
    finally:
        if not settled:
            manager.complete_node(node, _aggregate(chunks, options))
            _end(workflow_context, node.component_name, node.id)
        # Workflow.run has already returned, so nothing else awaits these
        await manager.wait_for_pending_updates()
        if not settled and element.on_complete is not None:
            element.on_complete()
        await workflow_context.wait_for_pending_messages()
