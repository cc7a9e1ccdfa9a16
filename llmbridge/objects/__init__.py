"""
llmbridge Objects Module

Structured object generation over any adapter.
"""

from .overlay import (
    DEFAULT_TOOL_DESCRIPTION,
    DEFAULT_TOOL_NAME,
    ObjectMode,
    ObjectOptions,
    ObjectResult,
    ObjectStreamPart,
    ObjectStreamPartType,
    build_object_call,
    generate_object,
    resolve_mode,
    schema_instruction,
    stream_object,
)
from .result import StreamObjectResult

__all__ = [
    "DEFAULT_TOOL_DESCRIPTION",
    "DEFAULT_TOOL_NAME",
    "ObjectMode",
    "ObjectOptions",
    "ObjectResult",
    "ObjectStreamPart",
    "ObjectStreamPartType",
    "StreamObjectResult",
    "build_object_call",
    "generate_object",
    "resolve_mode",
    "schema_instruction",
    "stream_object",
]
