"""
llmbridge - Stream State Machine

Per-call state shared by every adapter's stream parser. Adapters translate
vendor chunks into calls on this machine; the machine decides which
normalized parts to emit so that, for every vendor:

- every *-start has exactly one matching *-end, and deltas only occur
  inside their span
- a text span is closed before a tool span opens (and vice versa), and
  reasoning is closed before text or tool content resumes
- finish drains open text/reasoning spans, forces finish reason
  tool_calls when any tool call was realized, and reports the latest
  non-empty usage snapshot
- exactly one finish or one error ends the stream; after that every
  method is a no-op

Each method returns the (possibly empty) list of parts to yield, so the
machine itself never blocks and the adapter's async generator stays in
control of suspension and cancellation.
"""

import json
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from ..core.errors import StreamProtocolError
from ..core.models import CallWarning, FinishReason, SourceType, Usage
from ..usage.accumulator import ProviderMetadataAccumulator, UsageAccumulator
from . import parts
from .parts import StreamPart
from .tool_calls import ToolCallArena, is_valid_json


@dataclass
class _ReasoningSpan:
    id: str
    metadata: Dict[str, Any] = field(default_factory=dict)


def _merge_metadata(target: Dict[str, Any], update: Optional[Dict[str, Any]]) -> None:
    """Merge provider -> fields metadata, later values win per field."""
    for provider, values in (update or {}).items():
        if isinstance(values, dict) and isinstance(target.get(provider), dict):
            target[provider] = {**target[provider], **values}
        else:
            target[provider] = values


class StreamStateMachine:
    """Tracks open spans and terminal state for one stream."""

    def __init__(self, provider: str):
        self.provider = provider
        self.tool_calls = ToolCallArena(provider)
        self.usage = UsageAccumulator()
        self.metadata = ProviderMetadataAccumulator()
        self._open_text: Optional[str] = None
        self._open_reasoning: Optional[_ReasoningSpan] = None
        self._open_tools: Dict[str, str] = {}
        self._realized_tool_calls = 0
        self._started = False
        self._done = False

    # ============================================================
    # State inspection
    # ============================================================

    @property
    def done(self) -> bool:
        return self._done

    @property
    def open_text_id(self) -> Optional[str]:
        return self._open_text

    @property
    def open_reasoning_id(self) -> Optional[str]:
        return self._open_reasoning.id if self._open_reasoning else None

    @property
    def realized_tool_calls(self) -> int:
        return self._realized_tool_calls + self.tool_calls.realized_count

    def _tool_span_open(self) -> bool:
        return bool(self._open_tools) or bool(self.tool_calls.open_calls())

    def _out(self, emitted: List[StreamPart]) -> List[StreamPart]:
        if emitted:
            self._started = True
        return emitted

    # ============================================================
    # Warnings
    # ============================================================

    def warnings(self, items: List[CallWarning]) -> List[StreamPart]:
        """Emit warnings once, only before any other part."""
        if self._done or not items or self._started:
            return []
        return self._out([parts.warnings(items)])

    # ============================================================
    # Text
    # ============================================================

    def _close_text(self) -> List[StreamPart]:
        if self._open_text is None:
            return []
        span_id, self._open_text = self._open_text, None
        return [parts.text_end(span_id)]

    def _close_reasoning(self, metadata: Optional[Dict[str, Any]] = None) -> List[StreamPart]:
        if self._open_reasoning is None:
            return []
        span, self._open_reasoning = self._open_reasoning, None
        final = dict(span.metadata)
        # Metadata present at close supersedes anything accumulated
        _merge_metadata(final, metadata)
        return [parts.reasoning_end(span.id, final)]

    def _require_no_tool_span(self, what: str) -> None:
        if self._tool_span_open():
            raise StreamProtocolError(
                self.provider, f"{what} arrived while a tool call input was still open"
            )

    def text_start(self, id: str, provider_metadata: Optional[Dict[str, Any]] = None) -> List[StreamPart]:
        if self._done:
            return []
        self._require_no_tool_span("text")
        emitted = self._close_reasoning()
        if self._open_text == id:
            return self._out(emitted)
        emitted.extend(self._close_text())
        self._open_text = id
        emitted.append(parts.text_start(id, provider_metadata))
        return self._out(emitted)

    def text_delta(self, id: str, delta: str) -> List[StreamPart]:
        """Text content; opens the span if needed."""
        if self._done or not delta:
            return []
        emitted: List[StreamPart] = []
        if self._open_text != id or self._open_reasoning is not None:
            emitted.extend(self.text_start(id))
        emitted.append(parts.text_delta(id, delta))
        return self._out(emitted)

    def text_end(self, id: Optional[str] = None,
                 provider_metadata: Optional[Dict[str, Any]] = None) -> List[StreamPart]:
        if self._done or self._open_text is None:
            return []
        if id is not None and id != self._open_text:
            return []
        span_id, self._open_text = self._open_text, None
        return self._out([parts.text_end(span_id, provider_metadata)])

    # ============================================================
    # Reasoning
    # ============================================================

    def reasoning_start(self, id: str,
                        provider_metadata: Optional[Dict[str, Any]] = None) -> List[StreamPart]:
        if self._done:
            return []
        self._require_no_tool_span("reasoning")
        emitted = self._close_text()
        if self._open_reasoning is not None:
            if self._open_reasoning.id == id:
                _merge_metadata(self._open_reasoning.metadata, provider_metadata)
                return self._out(emitted)
            emitted.extend(self._close_reasoning())
        self._open_reasoning = _ReasoningSpan(id=id, metadata={})
        _merge_metadata(self._open_reasoning.metadata, provider_metadata)
        emitted.append(parts.reasoning_start(id, provider_metadata))
        return self._out(emitted)

    def reasoning_delta(self, id: str, delta: str,
                        provider_metadata: Optional[Dict[str, Any]] = None) -> List[StreamPart]:
        """Reasoning content; opens the span if needed. Metadata accumulates until close."""
        if self._done:
            return []
        if not delta and not provider_metadata:
            return []
        emitted: List[StreamPart] = []
        if self._open_reasoning is None or self._open_reasoning.id != id:
            emitted.extend(self.reasoning_start(id))
        _merge_metadata(self._open_reasoning.metadata, provider_metadata)
        emitted.append(parts.reasoning_delta(id, delta, provider_metadata))
        return self._out(emitted)

    def reasoning_end(self, id: Optional[str] = None,
                      provider_metadata: Optional[Dict[str, Any]] = None) -> List[StreamPart]:
        if self._done or self._open_reasoning is None:
            return []
        if id is not None and id != self._open_reasoning.id:
            return []
        return self._out(self._close_reasoning(provider_metadata))

    # ============================================================
    # Tool calls: explicit lifecycle (Responses, Anthropic, Google)
    # ============================================================

    def tool_input_start(self, id: str, tool_name: str,
                         provider_executed: bool = False) -> List[StreamPart]:
        if self._done:
            return []
        emitted = self._close_text() + self._close_reasoning()
        if id not in self._open_tools:
            self._open_tools[id] = tool_name
            emitted.append(parts.tool_input_start(id, tool_name, provider_executed))
        return self._out(emitted)

    def tool_input_delta(self, id: str, delta: str) -> List[StreamPart]:
        if self._done or not delta:
            return []
        if id not in self._open_tools:
            raise StreamProtocolError(self.provider, f"tool input delta for unknown call {id!r}")
        return self._out([parts.tool_input_delta(id, delta)])

    def tool_input_end(self, id: str) -> List[StreamPart]:
        if self._done or id not in self._open_tools:
            return []
        del self._open_tools[id]
        return self._out([parts.tool_input_end(id)])

    def tool_call(
        self,
        id: str,
        tool_name: str,
        tool_input: str,
        provider_executed: bool = False,
        provider_metadata: Optional[Dict[str, Any]] = None,
    ) -> List[StreamPart]:
        """
        A realized tool call. Closes its input span if still open.

        Empty input is normalized to "{}"; input that is not valid JSON is
        a protocol violation.
        """
        if self._done:
            return []
        tool_input = tool_input or "{}"
        if not is_valid_json(tool_input):
            raise StreamProtocolError(
                self.provider, f"tool call {id!r} input is not valid JSON", chunk=tool_input
            )
        emitted = self._close_text() + self._close_reasoning()
        if id in self._open_tools:
            del self._open_tools[id]
            emitted.append(parts.tool_input_end(id))
        emitted.append(parts.tool_call(id, tool_name, tool_input, provider_executed, provider_metadata))
        self._realized_tool_calls += 1
        return self._out(emitted)

    def complete_tool_call(self, id: str, tool_name: str, arguments: Any,
                           provider_metadata: Optional[Dict[str, Any]] = None) -> List[StreamPart]:
        """
        Emit a whole tool call at once, for vendors that deliver arguments
        as a finished object (Google, Ollama).
        """
        tool_input = arguments if isinstance(arguments, str) else json.dumps(
            arguments if arguments is not None else {}, separators=(",", ":")
        )
        emitted = self.tool_input_start(id, tool_name)
        emitted += self.tool_input_delta(id, tool_input)
        emitted += self.tool_call(id, tool_name, tool_input, provider_metadata=provider_metadata)
        return emitted

    # ============================================================
    # Tool calls: index-addressed fragments (chat completions)
    # ============================================================

    def tool_call_delta(
        self,
        index: Any,
        id: Optional[str] = None,
        type: Optional[str] = None,
        name: Optional[str] = None,
        arguments: str = "",
    ) -> List[StreamPart]:
        if self._done:
            return []
        emitted = self._close_text() + self._close_reasoning()
        emitted.extend(self.tool_calls.apply(index, id=id, type=type, name=name, arguments=arguments))
        return self._out(emitted)

    # ============================================================
    # Sources, usage, metadata
    # ============================================================

    def source(self, id: str, source_type: SourceType, url: str = "", title: str = "",
               provider_metadata: Optional[Dict[str, Any]] = None) -> List[StreamPart]:
        if self._done:
            return []
        return self._out([parts.source(id, source_type, url, title, provider_metadata)])

    def update_usage(self, usage: Optional[Usage]) -> None:
        self.usage.update(usage)

    # ============================================================
    # Terminal events
    # ============================================================

    def finish(
        self,
        finish_reason: FinishReason,
        usage: Optional[Usage] = None,
        provider_metadata: Optional[Dict[str, Any]] = None,
    ) -> List[StreamPart]:
        """
        Drain open spans and emit the terminal finish event.

        Tool inputs that never became valid JSON turn the finish into a
        protocol-violation error.
        """
        if self._done:
            return []
        emitted = self._close_text() + self._close_reasoning()

        unfinished = [c.id for c in self.tool_calls.open_calls()] + list(self._open_tools)
        if unfinished:
            self._done = True
            emitted.append(parts.error(StreamProtocolError(
                self.provider,
                f"tool call input never became valid JSON: {', '.join(unfinished)}",
            )))
            return self._out(emitted)

        if self.realized_tool_calls > 0:
            finish_reason = FinishReason.TOOL_CALLS

        self.usage.update(usage)
        self.metadata.merge(provider_metadata or {})
        self._done = True
        emitted.append(parts.finish(self.usage.result(), finish_reason, self.metadata.result()))
        return self._out(emitted)

    def fail(self, err: BaseException) -> List[StreamPart]:
        """Terminal error. Open spans are left as they are."""
        if self._done:
            return []
        self._done = True
        return self._out([parts.error(err)])
