"""
llmbridge - Stream Parts

The normalized event vocabulary every adapter emits while streaming:

- text-start / text-delta / text-end
- reasoning-start / reasoning-delta / reasoning-end
- tool-input-start / tool-input-delta / tool-input-end, then tool-call
- source (standalone citation)
- warnings (at most once, before any content)
- finish or error (exactly one, terminal)
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from ..core.models import CallWarning, FinishReason, SourceType, Usage


class StreamPartType(str, Enum):
    """Stream event types."""
    TEXT_START = "text-start"
    TEXT_DELTA = "text-delta"
    TEXT_END = "text-end"
    REASONING_START = "reasoning-start"
    REASONING_DELTA = "reasoning-delta"
    REASONING_END = "reasoning-end"
    TOOL_INPUT_START = "tool-input-start"
    TOOL_INPUT_DELTA = "tool-input-delta"
    TOOL_INPUT_END = "tool-input-end"
    TOOL_CALL = "tool-call"
    SOURCE = "source"
    WARNINGS = "warnings"
    FINISH = "finish"
    ERROR = "error"

    @property
    def is_terminal(self) -> bool:
        return self in (StreamPartType.FINISH, StreamPartType.ERROR)


START_TYPES = frozenset({
    StreamPartType.TEXT_START,
    StreamPartType.REASONING_START,
    StreamPartType.TOOL_INPUT_START,
})
DELTA_TYPES = frozenset({
    StreamPartType.TEXT_DELTA,
    StreamPartType.REASONING_DELTA,
    StreamPartType.TOOL_INPUT_DELTA,
})
END_TYPES = frozenset({
    StreamPartType.TEXT_END,
    StreamPartType.REASONING_END,
    StreamPartType.TOOL_INPUT_END,
})


@dataclass
class StreamPart:
    """One normalized streaming event. Only the fields relevant to ``type`` are set."""
    type: StreamPartType
    id: str = ""
    delta: str = ""
    tool_name: str = ""
    tool_input: str = ""
    provider_executed: bool = False
    source_type: Optional[SourceType] = None
    url: str = ""
    title: str = ""
    usage: Optional[Usage] = None
    finish_reason: Optional[FinishReason] = None
    error: Optional[BaseException] = None
    warnings: List[CallWarning] = field(default_factory=list)
    provider_metadata: Dict[str, Any] = field(default_factory=dict)


# ============================================================
# Constructors
# ============================================================

def text_start(id: str, provider_metadata: Optional[Dict[str, Any]] = None) -> StreamPart:
    return StreamPart(StreamPartType.TEXT_START, id=id, provider_metadata=provider_metadata or {})


def text_delta(id: str, delta: str) -> StreamPart:
    return StreamPart(StreamPartType.TEXT_DELTA, id=id, delta=delta)


def text_end(id: str, provider_metadata: Optional[Dict[str, Any]] = None) -> StreamPart:
    return StreamPart(StreamPartType.TEXT_END, id=id, provider_metadata=provider_metadata or {})


def reasoning_start(id: str, provider_metadata: Optional[Dict[str, Any]] = None) -> StreamPart:
    return StreamPart(StreamPartType.REASONING_START, id=id, provider_metadata=provider_metadata or {})


def reasoning_delta(id: str, delta: str,
                    provider_metadata: Optional[Dict[str, Any]] = None) -> StreamPart:
    return StreamPart(
        StreamPartType.REASONING_DELTA, id=id, delta=delta,
        provider_metadata=provider_metadata or {},
    )


def reasoning_end(id: str, provider_metadata: Optional[Dict[str, Any]] = None) -> StreamPart:
    return StreamPart(StreamPartType.REASONING_END, id=id, provider_metadata=provider_metadata or {})


def tool_input_start(id: str, tool_name: str, provider_executed: bool = False) -> StreamPart:
    return StreamPart(
        StreamPartType.TOOL_INPUT_START, id=id, tool_name=tool_name,
        provider_executed=provider_executed,
    )


def tool_input_delta(id: str, delta: str) -> StreamPart:
    return StreamPart(StreamPartType.TOOL_INPUT_DELTA, id=id, delta=delta)


def tool_input_end(id: str) -> StreamPart:
    return StreamPart(StreamPartType.TOOL_INPUT_END, id=id)


def tool_call(id: str, tool_name: str, tool_input: str, provider_executed: bool = False,
              provider_metadata: Optional[Dict[str, Any]] = None) -> StreamPart:
    return StreamPart(
        StreamPartType.TOOL_CALL, id=id, tool_name=tool_name, tool_input=tool_input,
        provider_executed=provider_executed, provider_metadata=provider_metadata or {},
    )


def source(id: str, source_type: SourceType, url: str = "", title: str = "",
           provider_metadata: Optional[Dict[str, Any]] = None) -> StreamPart:
    return StreamPart(
        StreamPartType.SOURCE, id=id, source_type=source_type, url=url, title=title,
        provider_metadata=provider_metadata or {},
    )


def warnings(items: List[CallWarning]) -> StreamPart:
    return StreamPart(StreamPartType.WARNINGS, warnings=list(items))


def finish(usage: Usage, finish_reason: FinishReason,
           provider_metadata: Optional[Dict[str, Any]] = None) -> StreamPart:
    return StreamPart(
        StreamPartType.FINISH, usage=usage, finish_reason=finish_reason,
        provider_metadata=provider_metadata or {},
    )


def error(err: BaseException) -> StreamPart:
    return StreamPart(StreamPartType.ERROR, error=err)
