"""
llmbridge - Tool Call Streaming

Accumulates tool calls whose arguments arrive as raw JSON string
fragments (OpenAI chat, OpenAI-compatible, OpenRouter).

Tool calls come in pieces:
1. A first delta at a new vendor index carrying type, id and function name
2. Argument fragments addressed by the same index
3. No explicit "arguments complete" signal

In-flight calls are kept in an arena keyed by the vendor's positional
index; each record separately carries the logical id used in emitted
events. After every fragment the whole buffer is re-parsed, and the
first successful parse closes the call. That is O(n^2) in argument
length per call, acceptable because arguments are bounded by the model
context. A buffer that happens to be valid JSON before the vendor is
done (e.g. "{}" followed by more fragments) is closed early; there is
no better signal to go on.
"""

import json
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from ..core.errors import StreamProtocolError
from . import parts
from .parts import StreamPart


def is_valid_json(text: str) -> bool:
    """Strict JSON validity check used to detect complete arguments."""
    if not text:
        return False
    try:
        json.loads(text)
    except ValueError:
        return False
    return True


@dataclass
class ToolCallRecord:
    """One in-flight tool call."""
    index: Any
    id: str
    name: str
    arguments: str = ""
    closed: bool = False
    provider_executed: bool = False


class ToolCallArena:
    """
    Tracks in-flight tool calls by vendor index.

    ``apply`` returns the stream parts produced by one delta. Structural
    errors on a new index raise StreamProtocolError; the caller turns that
    into a terminal error event.
    """

    def __init__(self, provider: str):
        self.provider = provider
        self._calls: Dict[Any, ToolCallRecord] = {}

    def apply(
        self,
        index: Any,
        id: Optional[str] = None,
        type: Optional[str] = None,
        name: Optional[str] = None,
        arguments: str = "",
    ) -> List[StreamPart]:
        record = self._calls.get(index)

        if record is None:
            if type != "function":
                raise StreamProtocolError(self.provider, "expected 'function' type")
            if not id:
                raise StreamProtocolError(self.provider, "expected 'id' to be a string")
            if not name:
                raise StreamProtocolError(self.provider, "expected 'function.name' to be a string")

            record = ToolCallRecord(index=index, id=id, name=name)
            self._calls[index] = record
            emitted = [parts.tool_input_start(record.id, record.name)]
            emitted.extend(self._append(record, arguments))
            return emitted

        # Some vendors repeat the terminal delta
        if record.closed:
            return []

        return self._append(record, arguments)

    def _append(self, record: ToolCallRecord, fragment: str) -> List[StreamPart]:
        if not fragment:
            return []
        record.arguments += fragment
        emitted = [parts.tool_input_delta(record.id, fragment)]
        if is_valid_json(record.arguments):
            record.closed = True
            emitted.append(parts.tool_input_end(record.id))
            emitted.append(parts.tool_call(record.id, record.name, record.arguments))
        return emitted

    def open_calls(self) -> List[ToolCallRecord]:
        return [c for c in self._calls.values() if not c.closed]

    @property
    def realized_count(self) -> int:
        return sum(1 for c in self._calls.values() if c.closed)
