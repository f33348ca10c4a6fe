"""Exception hierarchy for arborflow."""

from __future__ import annotations

import traceback
from typing import Any, Dict, List, Optional

from pydantic import ValidationError


class ArborflowError(Exception):
    """Base class for errors raised by the execution core."""


class MissingContextError(ArborflowError, LookupError):
    """A dependency was read from the execution context but never provided."""

    def __init__(self, key: Any) -> None:
        self.key = key
        super().__init__(f"No value for {key!r} in the current execution context")


class DuplicateCheckpointError(ArborflowError):
    """A checkpoint label was created twice in one run."""

    def __init__(self, label: str) -> None:
        self.label = label
        super().__init__(f"Checkpoint {label} has already been created.")


class CheckpointNotFoundError(ArborflowError, KeyError):
    """A restore was requested for a label that this run never created."""

    def __init__(self, label: str) -> None:
        self.label = label
        super().__init__(f"Checkpoint {label} has not been created.")

    def __str__(self) -> str:
        return self.args[0]


class RestoreLimitExceededError(ArborflowError):
    """A checkpoint marker was restored more often than it allows."""

    def __init__(self, label: str, max_restores: int) -> None:
        self.label = label
        self.max_restores = max_restores
        super().__init__(
            f"Checkpoint {label} has been restored more than {max_restores} times."
        )


class ToolNotFoundError(ArborflowError, KeyError):
    """The requested tool is not declared in the toolbox."""

    def __init__(self, tool_name: str) -> None:
        self.tool_name = tool_name
        super().__init__(f"Tool {tool_name} is not defined in the toolbox.")

    def __str__(self) -> str:
        return self.args[0]


class ToolNotImplementedError(ArborflowError):
    """The host has no implementation for an external tool."""

    def __init__(self, tool_name: str) -> None:
        self.tool_name = tool_name
        super().__init__(f"Tool implementation not found: {tool_name}")


class ToolValidationError(ArborflowError):
    """Tool parameters or results failed schema validation.

    ``schema`` is ``"params"`` or ``"result"``; each entry of ``errors`` holds
    the dotted ``path`` of the offending value and pydantic's message.
    """

    def __init__(
        self,
        tool_name: str,
        schema: str,
        errors: List[Dict[str, Any]],
    ) -> None:
        self.tool_name = tool_name
        self.schema = schema
        self.errors = errors
        details = "; ".join(f"{e['path'] or '<root>'}: {e['message']}" for e in errors)
        super().__init__(f"Invalid {schema} for tool {tool_name}: {details}")

    @property
    def paths(self) -> List[str]:
        return [e["path"] for e in self.errors]

    @classmethod
    def from_validation_error(
        cls, tool_name: str, schema: str, error: ValidationError
    ) -> "ToolValidationError":
        errors = [
            {
                "path": ".".join(str(part) for part in item["loc"]),
                "message": item["msg"],
                "type": item["type"],
            }
            for item in error.errors()
        ]
        return cls(tool_name, schema, errors)


def serialize_error(
    error: BaseException, include_traceback: bool = True
) -> Dict[str, Optional[str]]:
    """Return a JSON-compatible description of ``error`` for checkpoints."""
    data: Dict[str, Optional[str]] = {
        "name": type(error).__name__,
        "message": str(error),
    }
    if include_traceback and error.__traceback__ is not None:
        data["stack"] = "".join(
            traceback.format_exception(type(error), error, error.__traceback__)
        )
    return data
