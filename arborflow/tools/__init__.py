from .external import (
    ToolDefinition,
    Toolbox,
    create_toolbox,
    execute_external_tool,
)
from .input import RequestInput, request_input

__all__ = [
    "RequestInput",
    "ToolDefinition",
    "Toolbox",
    "create_toolbox",
    "execute_external_tool",
    "request_input",
]
