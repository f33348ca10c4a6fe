"""Tools whose implementation lives with the host, outside the process."""

from __future__ import annotations

import logging
from typing import Any, Dict, Mapping, Optional, Type, Union

from pydantic import BaseModel, ValidationError

from ..component import Component
from ..constants import MISSING_TOOL_IMPLEMENTATION
from ..context import get_current_context
from ..contracts import ExternalToolMessage
from ..errors import ToolNotFoundError, ToolNotImplementedError, ToolValidationError
from ..workflow import get_workflow_context

logger = logging.getLogger(__name__)


class ToolDefinition(BaseModel):
    """Parameter and result schemas of one external tool."""

    params: Type[BaseModel]
    result: Type[BaseModel]
    description: Optional[str] = None


Toolbox = Dict[str, ToolDefinition]


def create_toolbox(tools: Mapping[str, Union[ToolDefinition, Mapping[str, Any]]]) -> Toolbox:
    """Build a toolbox, accepting definitions or plain mappings."""
    return {
        name: tool if isinstance(tool, ToolDefinition) else ToolDefinition(**tool)
        for name, tool in tools.items()
    }


async def _send_tool_request(
    tool_name: str, params: Dict[str, Any], definition: ToolDefinition
) -> Any:
    workflow_context = get_workflow_context()
    node = get_current_context().current_node
    if node is None:
        raise RuntimeError("No current node found for external tool call")

    await workflow_context.checkpoint_manager.wait_for_pending_updates()
    workflow_context.send_workflow_message(
        ExternalToolMessage(
            tool_name=tool_name,
            params=params,
            params_schema=definition.params.model_json_schema(),
            result_schema=definition.result.model_json_schema(),
            node_id=node.id,
        )
    )
    logger.info(f"Waiting for host result of external tool {tool_name}")
    return await workflow_context.request_input(
        {"type": "external-tool", "toolName": tool_name, "nodeId": node.id}
    )


async def execute_external_tool(
    toolbox: Toolbox, tool_name: str, params: Union[BaseModel, Mapping[str, Any]]
) -> BaseModel:
    """Ask the host to run ``tool_name`` and return its validated result.

    Raises:
        ToolNotFoundError: If the toolbox has no such tool.
        ToolValidationError: If ``params`` or the host's result do not match
            the tool's schemas. Invalid params fail before anything is sent.
        ToolNotImplementedError: If the host has no implementation.
    """
    definition = toolbox.get(tool_name)
    if definition is None:
        raise ToolNotFoundError(tool_name)

    try:
        if isinstance(params, BaseModel):
            params = params.model_dump()
        validated = definition.params.model_validate(params)
    except ValidationError as error:
        raise ToolValidationError.from_validation_error(
            tool_name, "params", error
        ) from error

    # the definition holds schema classes, so it stays out of the props
    async def external_tool(tool_name: str, params: Dict[str, Any]) -> Any:
        return await _send_tool_request(tool_name, params, definition)

    result = await Component(external_tool, name="ExternalTool")(
        tool_name=tool_name, params=validated.model_dump(mode="json")
    )

    if isinstance(result, Mapping) and result.get(MISSING_TOOL_IMPLEMENTATION):
        raise ToolNotImplementedError(tool_name)

    try:
        return definition.result.model_validate(result)
    except ValidationError as error:
        raise ToolValidationError.from_validation_error(
            tool_name, "result", error
        ) from error
