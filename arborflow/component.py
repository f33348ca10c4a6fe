"""Component definitions: calling a component produces an :class:`Element`."""

from __future__ import annotations

import functools
from typing import Any, Callable, Mapping, Optional, Union

from .constants import RESERVED_PROPS
from .contracts import ComponentOptions, Element


class Component:
    """Wrap a sync or async function taking keyword arguments.

    ``children`` and ``component_opts`` are reserved keyword arguments: the
    first is the continuation receiving the resolved result, the second holds
    call-time :class:`ComponentOptions`.
    """

    def __init__(
        self,
        fn: Callable[..., Any],
        name: Optional[str] = None,
        options: Union[ComponentOptions, Mapping[str, Any], None] = None,
    ) -> None:
        self.fn = fn
        self.name = name or getattr(fn, "__name__", type(fn).__name__)
        self.options = ComponentOptions.coerce(options) or ComponentOptions()
        functools.update_wrapper(self, fn)

    def __call__(self, **props: Any) -> Element:
        reserved = {key: props.pop(key) for key in RESERVED_PROPS if key in props}
        call_options = ComponentOptions.coerce(reserved.get("component_opts"))
        return Element(
            component=self,
            props=props,
            children=reserved.get("children"),
            options=self.options.merge(call_options),
        )

    def run(self, props: Mapping[str, Any]) -> Any:
        return self.fn(**props)

    def __repr__(self) -> str:
        return f"Component({self.name!r})"


def component(
    fn: Optional[Callable[..., Any]] = None,
    *,
    name: Optional[str] = None,
    **options: Any,
) -> Any:
    """Decorator turning a function into a :class:`Component`.

    Usable bare (``@component``) or with options
    (``@component(name="Fetch", secret_props=["api_key"])``).
    """

    def decorator(func: Callable[..., Any]) -> Component:
        return Component(func, name=name, options=ComponentOptions(**options))

    if fn is not None:
        return decorator(fn)
    return decorator
