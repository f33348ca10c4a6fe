"""Shared constants for arborflow."""

CONTENT_ID_LENGTH = 8

# Placeholders used when a value cannot take part in identity or snapshots
FUNCTION_PLACEHOLDER = "[Function]"
SCHEMA_PLACEHOLDER = "[Schema]"
SNAPSHOT_FUNCTION_PLACEHOLDER = "[function]"
STREAM_PLACEHOLDER = "[stream]"
SECRET_PLACEHOLDER = "[secret]"

# Secret strings shorter than this are only redacted on exact match
MIN_SECRET_LENGTH = 8

# Minimum seconds between partial-output updates of a streaming node
STREAM_UPDATE_INTERVAL = 0.2

DEFAULT_MAX_RESTORES = 3

# Props that configure an invocation rather than describe its input
RESERVED_PROPS = frozenset({"children", "component_opts"})

MISSING_TOOL_IMPLEMENTATION = "__arborflowMissingToolImplementation"
