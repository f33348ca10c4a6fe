"""Immutable, hierarchical execution context.

The active context lives in a :class:`contextvars.ContextVar`. asyncio copies
the current context into every task it creates, so sibling invocations
resolved concurrently each see the context that was active when they were
scheduled and never an extension made by a sibling.
"""

from __future__ import annotations

import inspect
from contextlib import contextmanager
from contextvars import ContextVar
from typing import (
    TYPE_CHECKING,
    Any,
    Awaitable,
    Callable,
    Dict,
    Hashable,
    Iterator,
    Mapping,
    Optional,
    TypeVar,
)

from .errors import MissingContextError

if TYPE_CHECKING:
    from .persistence.models import ExecutionNode
    from .workflow import WorkflowContext

T = TypeVar("T")

WORKFLOW_CONTEXT_KEY = "arborflow.workflow_context"
CURRENT_NODE_KEY = "arborflow.current_node"

MISSING: Any = object()

_current_context: ContextVar[Optional["ExecutionContext"]] = ContextVar(
    "arborflow_execution_context", default=None
)


class ExecutionContext:
    """A read-only key/value environment with parent fallback."""

    __slots__ = ("_values", "_parent")

    def __init__(
        self,
        values: Optional[Mapping[Hashable, Any]] = None,
        parent: Optional["ExecutionContext"] = None,
    ) -> None:
        self._values: Dict[Hashable, Any] = dict(values or {})
        self._parent = parent

    @classmethod
    def root(
        cls, workflow_context: Optional["WorkflowContext"] = None
    ) -> "ExecutionContext":
        """Return a parentless context, optionally bound to ``workflow_context``."""
        if workflow_context is None:
            from .workflow import WorkflowContext

            workflow_context = WorkflowContext()
        return cls({WORKFLOW_CONTEXT_KEY: workflow_context})

    def extend(
        self, extension: Optional[Mapping[Hashable, Any]]
    ) -> "ExecutionContext":
        """Return a child context; keys in ``extension`` shadow the parent's."""
        if not extension:
            return self
        return ExecutionContext(extension, self)

    def get(self, key: Hashable, default: Any = None) -> Any:
        context: Optional[ExecutionContext] = self
        while context is not None:
            if key in context._values:
                return context._values[key]
            context = context._parent
        return default

    def require(self, key: Hashable) -> Any:
        value = self.get(key, MISSING)
        if value is MISSING:
            raise MissingContextError(key)
        return value

    def __contains__(self, key: Hashable) -> bool:
        return self.get(key, MISSING) is not MISSING

    @property
    def parent(self) -> Optional["ExecutionContext"]:
        return self._parent

    @property
    def workflow_context(self) -> Optional["WorkflowContext"]:
        return self.get(WORKFLOW_CONTEXT_KEY)

    @property
    def current_node(self) -> Optional["ExecutionNode"]:
        return self.get(CURRENT_NODE_KEY)

    def with_current_node(self, node: "ExecutionNode") -> "ExecutionContext":
        return self.extend({CURRENT_NODE_KEY: node})


def get_current_context() -> ExecutionContext:
    """Return the context visible to the running invocation."""
    context = _current_context.get()
    if context is None:
        return ExecutionContext()
    return context


def has_current_context() -> bool:
    return _current_context.get() is not None


@contextmanager
def scoped_context(context: ExecutionContext) -> Iterator[ExecutionContext]:
    """Make ``context`` current for the duration of the ``with`` block."""
    token = _current_context.set(context)
    try:
        yield context
    finally:
        _current_context.reset(token)


def with_context(
    extension: Optional[Mapping[Hashable, Any]],
    fn: Callable[..., T],
    *args: Any,
    **kwargs: Any,
) -> T:
    """Call ``fn`` with the current context extended by ``extension``.

    When ``fn`` returns an awaitable (for example because it is a coroutine
    function) the returned awaitable runs inside the extended context too.
    """
    context = get_current_context().extend(extension)
    with scoped_context(context):
        result = fn(*args, **kwargs)
    if inspect.isawaitable(result):
        return _await_in_context(context, result)  # type: ignore[return-value]
    return result


async def _await_in_context(context: ExecutionContext, awaitable: Awaitable[T]) -> T:
    with scoped_context(context):
        return await awaitable


def use_context(key: Hashable, default: Any = MISSING) -> Any:
    """Read an injected dependency from the current context.

    Raises:
        MissingContextError: If ``key`` is not set and no ``default`` is given.
    """
    context = get_current_context()
    if default is MISSING:
        return context.require(key)
    return context.get(key, default)
