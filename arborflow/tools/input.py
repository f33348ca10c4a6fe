"""Pausing a run until the host supplies input."""

from __future__ import annotations

import inspect
from typing import Any, Awaitable, Callable, Optional, Union

from ..component import Component
from ..context import get_current_context
from ..workflow import get_workflow_context

Trigger = Callable[[str], Union[None, Awaitable[None]]]


async def _request_input_trigger(node_id: str, trigger: Trigger) -> None:
    result = trigger(node_id)
    if inspect.isawaitable(result):
        await result


RequestInputTrigger = Component(
    _request_input_trigger,
    name="RequestInputTrigger",
    options={"id_props_keys": ["node_id"]},
)


async def _request_input(trigger: Optional[Trigger] = None) -> Any:
    workflow_context = get_workflow_context()
    node = get_current_context().current_node
    if node is None:
        raise RuntimeError("No current node found for input request")
    if trigger is not None:
        await RequestInputTrigger(node_id=node.id, trigger=trigger)

    await workflow_context.checkpoint_manager.wait_for_pending_updates()
    return await workflow_context.request_input(
        {"type": "input-request", "nodeId": node.id}
    )


RequestInput = Component(
    _request_input, name="RequestInput", options={"id_props_keys": []}
)


async def request_input(trigger: Optional[Trigger] = None) -> Any:
    """Suspend until the host answers an ``input-request`` for this node.

    ``trigger`` is called with the node id first, e.g. to notify whoever has
    to provide the input.
    """
    return await RequestInput(trigger=trigger)
