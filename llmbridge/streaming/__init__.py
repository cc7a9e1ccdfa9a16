"""
llmbridge Streaming Module

Normalized stream parts, the per-call stream state machine and the
index-addressed tool call arena shared by all adapters.
"""

from .parts import (
    DELTA_TYPES,
    END_TYPES,
    START_TYPES,
    StreamPart,
    StreamPartType,
)
from .state import StreamStateMachine
from .tool_calls import ToolCallArena, ToolCallRecord, is_valid_json

__all__ = [
    "DELTA_TYPES",
    "END_TYPES",
    "START_TYPES",
    "StreamPart",
    "StreamPartType",
    "StreamStateMachine",
    "ToolCallArena",
    "ToolCallRecord",
    "is_valid_json",
]
