"""Deterministic identifiers for component invocations.

A node id has the form ``pathId:contentId:callIndex``:

* ``pathId`` is the dash-joined chain of component names from the root,
* ``contentId`` is the first eight hex characters of the SHA-1 of the
  component name followed by its canonicalized props,
* ``callIndex`` counts repeat invocations of the same component with the same
  props under the same parent path.
"""

from __future__ import annotations

import hashlib
import json
import logging
from typing import Any, Dict, List, Mapping, NamedTuple, Optional

from ..constants import CONTENT_ID_LENGTH, FUNCTION_PLACEHOLDER
from .serialization import to_jsonable

logger = logging.getLogger(__name__)


class NodeIdParts(NamedTuple):
    path_id: str
    content_id: str
    call_index: int


def generate_node_id(
    component_name: str,
    props: Optional[Mapping[str, Any]],
    id_props_keys: Optional[List[str]] = None,
    parent_path: str = "",
    call_index: int = 0,
) -> str:
    """Return the node id for one invocation of ``component_name``."""
    path_id = f"{parent_path}-{component_name}" if parent_path else component_name
    content_id = compute_content_id(component_name, props, id_props_keys)
    return f"{path_id}:{content_id}:{call_index}"


def compute_content_id(
    component_name: str,
    props: Optional[Mapping[str, Any]],
    id_props_keys: Optional[List[str]] = None,
) -> str:
    digest = hashlib.sha1()
    digest.update(component_name.encode("utf-8"))
    digest.update(stringify_props(props, id_props_keys).encode("utf-8"))
    return digest.hexdigest()[:CONTENT_ID_LENGTH]


def stringify_props(
    props: Optional[Mapping[str, Any]], id_props_keys: Optional[List[str]] = None
) -> str:
    """Serialize ``props`` so that key order is irrelevant and list order is not."""
    if props is None:
        if id_props_keys:
            logger.warning(
                "No props provided for node id generation, but id_props_keys are provided."
            )
        return "null"

    if id_props_keys is None:
        selected = dict(props)
    else:
        selected = filter_props(props, id_props_keys)
    canonical = to_jsonable(
        selected, function_placeholder=FUNCTION_PLACEHOLDER, warn=True
    )
    return json.dumps(
        canonical, sort_keys=True, separators=(",", ":"), ensure_ascii=False
    )


def filter_props(props: Mapping[str, Any], id_props_keys: List[str]) -> Dict[str, Any]:
    """Project the dotted paths in ``id_props_keys`` out of ``props``.

    The nested shape of each selected value is preserved, so ``["user.id"]``
    applied to ``{"user": {"id": 1, "token": "x"}}`` yields ``{"user": {"id": 1}}``.
    Paths that do not exist are skipped.
    """
    result: Dict[str, Any] = {}
    for path in id_props_keys:
        parts = path.split(".")
        current: Any = props
        target = result
        for part in parts[:-1]:
            current = current.get(part) if isinstance(current, Mapping) else None
            if current is None:
                break
            nested = target.get(part)
            if nested is None:
                nested = target[part] = {}
            elif nested is current:
                # the whole parent value was already selected
                break
            target = nested
        else:
            last = parts[-1]
            if isinstance(current, Mapping) and last in current:
                target[last] = current[last]
    return result


def parse_node_id(node_id: str) -> NodeIdParts:
    path_id, content_id, call_index = node_id.rsplit(":", 2)
    return NodeIdParts(path_id, content_id, int(call_index))


def get_path_id(node_id: str) -> str:
    return node_id.rsplit(":", 2)[0]


def get_content_id(node_id: str) -> str:
    return node_id.rsplit(":", 2)[1]
