from .node_id import generate_node_id, get_content_id, get_path_id, parse_node_id
from .serialization import get_value_at_path, is_streamable, to_jsonable

__all__ = [
    "generate_node_id",
    "get_content_id",
    "get_path_id",
    "get_value_at_path",
    "is_streamable",
    "parse_node_id",
    "to_jsonable",
]
