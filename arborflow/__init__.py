"""arborflow: checkpointed execution of composable component trees."""

__version__ = "0.1.0"

from .checkpoint import CheckpointManager
from .component import Component, component
from .context import ExecutionContext, get_current_context, use_context, with_context
from .contracts import ComponentOptions, Element, Fragment, fragment
from .execute import Workflow, execute, workflow
from .persistence import get_sink
from .resolve import resolve_deep
from .restore import CheckpointMarker, create_checkpoint, restore_checkpoint, rewind_checkpoint
from .tools import ToolDefinition, create_toolbox, execute_external_tool, request_input
from .workflow import (
    EventStream,
    WorkflowContext,
    emit_progress,
    get_workflow_context,
    publish_data,
    publish_event,
)

__all__ = [
    "CheckpointManager",
    "CheckpointMarker",
    "Component",
    "ComponentOptions",
    "Element",
    "EventStream",
    "ExecutionContext",
    "Fragment",
    "ToolDefinition",
    "Workflow",
    "WorkflowContext",
    "component",
    "create_checkpoint",
    "create_toolbox",
    "emit_progress",
    "execute",
    "execute_external_tool",
    "fragment",
    "get_current_context",
    "get_sink",
    "get_workflow_context",
    "publish_data",
    "publish_event",
    "request_input",
    "resolve_deep",
    "restore_checkpoint",
    "rewind_checkpoint",
    "use_context",
    "with_context",
    "workflow",
]
