"""Core data contracts: elements, component options and workflow messages."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import (
    TYPE_CHECKING,
    Any,
    Callable,
    Dict,
    List,
    Literal,
    Mapping,
    Optional,
    Union,
)

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

if TYPE_CHECKING:
    from .component import Component


class ComponentOptions(BaseModel):
    """Checkpointing behaviour of a component.

    Options given to the decorator are merged with options passed at call time
    through ``component_opts``.
    """

    model_config = ConfigDict(arbitrary_types_allowed=True)

    name: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)
    secret_props: List[str] = Field(
        default_factory=list, description="Dotted paths of props to redact"
    )
    secret_outputs: bool = False
    id_props_keys: Optional[List[str]] = Field(
        default=None, description="Dotted paths of props that form the node id"
    )
    aggregator: Optional[Callable[[List[Any]], Any]] = None

    @classmethod
    def coerce(
        cls, value: Union["ComponentOptions", Mapping[str, Any], None]
    ) -> Optional["ComponentOptions"]:
        if value is None or isinstance(value, ComponentOptions):
            return value
        return cls(**value)

    def merge(self, overrides: Optional["ComponentOptions"]) -> "ComponentOptions":
        """Return these options updated with call-time ``overrides``."""
        if overrides is None:
            return self
        secret_props = list(
            dict.fromkeys([*self.secret_props, *overrides.secret_props])
        )
        return ComponentOptions(
            name=overrides.name or self.name,
            metadata={**self.metadata, **overrides.metadata},
            secret_props=secret_props,
            secret_outputs=self.secret_outputs or overrides.secret_outputs,
            id_props_keys=(
                overrides.id_props_keys
                if overrides.id_props_keys is not None
                else self.id_props_keys
            ),
            aggregator=overrides.aggregator or self.aggregator,
        )


@dataclass(frozen=True, eq=False)
class Element:
    """A deferred invocation of ``component`` with ``props``.

    ``children`` is an optional continuation receiving the resolved value; its
    own return value replaces the component's result. Awaiting an element
    resolves it in the current execution context.
    """

    component: "Component"
    props: Dict[str, Any] = field(default_factory=dict)
    children: Optional[Callable[[Any], Any]] = None
    options: Optional[ComponentOptions] = None
    on_complete: Optional[Callable[[], None]] = field(
        default=None, repr=False, compare=False
    )

    @property
    def name(self) -> str:
        if self.options is not None and self.options.name:
            return self.options.name
        return self.component.name

    def __await__(self):
        from .resolve import resolve_deep

        return resolve_deep(self).__await__()


class Fragment(list):
    """A list whose resolved entries are spliced into the enclosing list."""

    def __repr__(self) -> str:
        return f"Fragment({list.__repr__(self)})"


def fragment(*items: Any) -> Fragment:
    return Fragment(items)


# ----------------------------------------------------------------------
# Workflow messages


class WorkflowMessage(BaseModel):
    """Base class for messages streamed to workflow listeners.

    Fields are snake_case in Python and camelCase on the wire.
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    type: str

    def to_wire(self) -> Dict[str, Any]:
        """Serialize message to its wire shape."""
        return self.model_dump(by_alias=True, exclude_none=True, mode="json")

    def to_json(self) -> str:
        """Serialize message to JSON."""
        return self.model_dump_json(by_alias=True, exclude_none=True)


class StartMessage(WorkflowMessage):
    type: Literal["start"] = "start"
    workflow_name: str
    workflow_execution_id: Optional[str] = None


class ComponentStartMessage(WorkflowMessage):
    type: Literal["component-start"] = "component-start"
    component_name: str
    component_id: str


class ComponentEndMessage(WorkflowMessage):
    type: Literal["component-end"] = "component-end"
    component_name: str
    component_id: str


class ProgressMessage(WorkflowMessage):
    """Arbitrary progress payload emitted from inside a component."""

    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, extra="allow"
    )

    type: Literal["progress"] = "progress"


class DataMessage(WorkflowMessage):
    type: Literal["data"] = "data"
    data: Any = None


class EventMessage(WorkflowMessage):
    type: Literal["event"] = "event"
    label: str
    data: Any = None


class ErrorMessage(WorkflowMessage):
    type: Literal["error"] = "error"
    error: str


class EndMessage(WorkflowMessage):
    type: Literal["end"] = "end"


class ExternalToolMessage(WorkflowMessage):
    type: Literal["external-tool"] = "external-tool"
    tool_name: str
    params: Dict[str, Any]
    params_schema: Dict[str, Any]
    result_schema: Dict[str, Any]
    node_id: str
