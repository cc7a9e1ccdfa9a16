"""
llmbridge - Pytest Configuration

Configures:
- Integration test markers (skip by default)
- Mock vendors built on httpx.MockTransport for adapter tests
- SSE / NDJSON body builders and stream collection helpers
"""

import json
import os
from typing import Any, AsyncIterator, Dict, Iterable, List, Optional, Union

import httpx
import pytest

from llmbridge.adapters.base import AdapterConfig
from llmbridge.core.models import Call, user_message
from llmbridge.streaming.parts import StreamPart, StreamPartType


# ============================================================
# Environment Configuration
# ============================================================

def _is_truthy(value: Optional[str]) -> bool:
    """Check if environment variable is truthy."""
    if value is None:
        return False
    return value.lower() in ("1", "true", "yes", "on")


RUN_INTEGRATION = _is_truthy(os.getenv("RUN_INTEGRATION"))


# ============================================================
# Pytest Markers
# ============================================================

def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers",
        "integration: mark test as integration test (requires RUN_INTEGRATION=1)"
    )


def pytest_collection_modifyitems(config, items):
    """Skip integration tests unless RUN_INTEGRATION=1."""
    skip_integration = pytest.mark.skip(
        reason="Integration test - set RUN_INTEGRATION=1 to run"
    )
    for item in items:
        if "integration" in item.keywords and not RUN_INTEGRATION:
            item.add_marker(skip_integration)


# ============================================================
# Body builders
# ============================================================

def sse_body(*events: Union[Dict[str, Any], str], done: bool = True) -> bytes:
    """Server-sent events body, one ``data:`` event per item."""
    lines = []
    for event in events:
        data = event if isinstance(event, str) else json.dumps(event)
        lines.append(f"data: {data}\n\n")
    if done:
        lines.append("data: [DONE]\n\n")
    return "".join(lines).encode("utf-8")


def ndjson_body(*events: Dict[str, Any]) -> bytes:
    return "".join(json.dumps(event) + "\n" for event in events).encode("utf-8")


class TrackedStream(httpx.AsyncByteStream):
    """Response body that records how much was read and whether it was closed."""

    def __init__(self, chunks: Iterable[bytes]):
        self.chunks = list(chunks)
        self.sent = 0
        self.closed = False

    async def __aiter__(self) -> AsyncIterator[bytes]:
        for chunk in self.chunks:
            self.sent += 1
            yield chunk

    async def aclose(self) -> None:
        self.closed = True


# ============================================================
# Mock vendor
# ============================================================

class MockVendor:
    """
    Scripted vendor endpoint.

    Each request consumes the next scripted response; the last one
    repeats. Every request is recorded for payload assertions.
    """

    def __init__(self, *responses: httpx.Response):
        self.responses = list(responses)
        self.requests: List[httpx.Request] = []

    @classmethod
    def json(cls, body: Any, status_code: int = 200,
             headers: Optional[Dict[str, str]] = None) -> "MockVendor":
        return cls(httpx.Response(status_code, json=body, headers=headers))

    @classmethod
    def sse(cls, *events: Union[Dict[str, Any], str], done: bool = True) -> "MockVendor":
        return cls(httpx.Response(
            200, content=sse_body(*events, done=done),
            headers={"content-type": "text/event-stream"},
        ))

    @classmethod
    def ndjson(cls, *events: Dict[str, Any]) -> "MockVendor":
        return cls(httpx.Response(
            200, content=ndjson_body(*events),
            headers={"content-type": "application/x-ndjson"},
        ))

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        index = min(len(self.requests) - 1, len(self.responses) - 1)
        return self.responses[index]

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self.handler))

    @property
    def last_request(self) -> httpx.Request:
        return self.requests[-1]

    @property
    def last_payload(self) -> Dict[str, Any]:
        return json.loads(self.last_request.content)


def make_adapter(adapter_class, vendor: MockVendor, **config: Any):
    """Adapter wired to a mock vendor, with retries off unless asked for."""
    config.setdefault("api_key", "test-api-key")
    config.setdefault("max_retries", 0)
    return adapter_class(AdapterConfig(**config), client=vendor.client())


# ============================================================
# Stream helpers
# ============================================================

async def collect(stream: AsyncIterator[Any]) -> List[Any]:
    return [part async for part in stream]


def part_types(parts: List[StreamPart]) -> List[StreamPartType]:
    return [part.type for part in parts]


def content_types(parts: List[StreamPart]) -> List[StreamPartType]:
    """Part types without the leading warnings part."""
    return [part.type for part in parts if part.type != StreamPartType.WARNINGS]


def assert_well_formed(parts: List[StreamPart]) -> None:
    """
    Check the normalized stream contract on a complete stream:
    paired spans, deltas only inside spans, no overlapping text / tool /
    reasoning spans, and exactly one terminal part at the end.
    """
    open_spans: Dict[str, StreamPartType] = {}
    span_kind = {
        StreamPartType.TEXT_START: "text",
        StreamPartType.TEXT_DELTA: "text",
        StreamPartType.TEXT_END: "text",
        StreamPartType.REASONING_START: "reasoning",
        StreamPartType.REASONING_DELTA: "reasoning",
        StreamPartType.REASONING_END: "reasoning",
        StreamPartType.TOOL_INPUT_START: "tool",
        StreamPartType.TOOL_INPUT_DELTA: "tool",
        StreamPartType.TOOL_INPUT_END: "tool",
    }
    open_kinds: Dict[str, str] = {}
    terminal = [p for p in parts if p.type.is_terminal]
    assert len(terminal) == 1, "exactly one finish or error"
    assert parts[-1].type.is_terminal, "terminal part comes last"

    for part in parts:
        kind = span_kind.get(part.type)
        if kind is None:
            continue
        key = f"{kind}:{part.id}"
        if part.type.value.endswith("-start"):
            assert key not in open_spans, f"{key} started twice"
            others = set(open_kinds.values()) - {kind}
            assert not others, f"{kind} span opened while {others} open"
            open_spans[key] = part.type
            open_kinds[key] = kind
        elif part.type.value.endswith("-delta"):
            assert key in open_spans, f"{key} delta outside its span"
        else:
            assert key in open_spans, f"{key} ended without start"
            del open_spans[key]
            del open_kinds[key]

    if parts[-1].type == StreamPartType.FINISH:
        assert not open_spans, f"unclosed spans at finish: {list(open_spans)}"


# ============================================================
# Fixtures
# ============================================================

@pytest.fixture
def simple_call() -> Call:
    return Call(model="gpt-4o", messages=[user_message("Hello")])
