"""Conversion of arbitrary component values into JSON-compatible data."""

from __future__ import annotations

import dataclasses
import enum
import inspect
import json
import logging
import uuid
from datetime import date, datetime
from decimal import Decimal
from pathlib import PurePath
from typing import Any, Optional, Set

from pydantic import BaseModel

from ..constants import (
    SCHEMA_PLACEHOLDER,
    SNAPSHOT_FUNCTION_PLACEHOLDER,
    STREAM_PLACEHOLDER,
)

logger = logging.getLogger(__name__)


def is_streamable(value: Any) -> bool:
    """Return ``True`` for lazily produced chunk sequences."""
    return hasattr(value, "__aiter__") or inspect.isgenerator(value)


def is_schema(value: Any) -> bool:
    return inspect.isclass(value) and issubclass(value, BaseModel)


def to_jsonable(
    value: Any,
    function_placeholder: str = SNAPSHOT_FUNCTION_PLACEHOLDER,
    warn: bool = False,
    path: str = "",
    _seen: Optional[Set[int]] = None,
) -> Any:
    """Return a copy of ``value`` made only of JSON types.

    Pydantic models are dumped in JSON mode, tuples and sets become lists,
    schema classes and callables are replaced by placeholders. With ``warn``
    set, every replaced callable is logged together with its dotted path.
    """
    if value is None or isinstance(value, (str, bool, int, float)):
        return value
    if isinstance(value, enum.Enum):
        return to_jsonable(value.value, function_placeholder, warn, path, _seen)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, (bytes, bytearray)):
        return value.decode("utf-8", errors="replace")
    if isinstance(value, (uuid.UUID, Decimal, PurePath)):
        return str(value)
    if is_schema(value):
        if warn:
            logger.warning(
                f"Schema class found at {path or '<root>'}; only its presence is used for node id generation"
            )
        return SCHEMA_PLACEHOLDER
    if callable(value) and not isinstance(value, BaseModel):
        if warn:
            logger.warning(
                f"Function found at {path or '<root>'}; it is not serializable and cannot be used for node id generation"
            )
        return function_placeholder
    if is_streamable(value):
        return STREAM_PLACEHOLDER

    seen = _seen if _seen is not None else set()
    marker = id(value)
    if marker in seen:
        return "[circular]"
    seen.add(marker)
    try:
        if isinstance(value, BaseModel):
            return to_jsonable(
                value.model_dump(mode="json"), function_placeholder, warn, path, seen
            )
        if isinstance(value, dict):
            return {
                str(key): to_jsonable(
                    item, function_placeholder, warn, _join(path, key), seen
                )
                for key, item in value.items()
            }
        if isinstance(value, (list, tuple)):
            return [
                to_jsonable(item, function_placeholder, warn, _join(path, index), seen)
                for index, item in enumerate(value)
            ]
        if isinstance(value, (set, frozenset)):
            items = [
                to_jsonable(item, function_placeholder, warn, path, seen)
                for item in value
            ]
            return sorted(items, key=lambda item: json.dumps(item, sort_keys=True))
        if dataclasses.is_dataclass(value):
            return {
                field.name: to_jsonable(
                    getattr(value, field.name),
                    function_placeholder,
                    warn,
                    _join(path, field.name),
                    seen,
                )
                for field in dataclasses.fields(value)
            }
        if hasattr(value, "__dict__"):
            return to_jsonable(vars(value), function_placeholder, warn, path, seen)
        # str() of such objects usually embeds a memory address
        if warn:
            logger.warning(
                f"Opaque {type(value).__name__} found at {path or '<root>'}; only its type is used for node id generation"
            )
        return f"[{type(value).__name__}]"
    finally:
        seen.discard(marker)


def get_value_at_path(data: Any, path: str) -> Any:
    """Follow a dotted ``path`` through nested dicts and lists."""
    current = data
    for part in path.split("."):
        if isinstance(current, dict):
            if part not in current:
                return None
            current = current[part]
        elif isinstance(current, list) and part.isdigit() and int(part) < len(current):
            current = current[int(part)]
        else:
            return None
    return current


def _join(path: str, key: Any) -> str:
    return f"{path}.{key}" if path else str(key)
