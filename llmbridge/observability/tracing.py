"""
llmbridge - OpenTelemetry Tracing

Every generate/stream call runs inside a CLIENT span named
"<provider>.<operation>" carrying ai.* attributes. Spans go to whatever
tracer provider the host application installed; ``setup_tracing`` installs
an SDK provider for applications that have none.

Usage:
    from llmbridge.observability.tracing import setup_tracing, trace_provider_call

    setup_tracing(service_name="my-agent", console_export=True)

    with trace_provider_call("anthropic", "claude-sonnet-4", "stream") as span:
        ...
"""

import os
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Dict, Iterator, Optional

from opentelemetry import trace
from opentelemetry.sdk.resources import SERVICE_NAME, SERVICE_VERSION, Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import (
    BatchSpanProcessor,
    ConsoleSpanExporter,
    SimpleSpanProcessor,
    SpanExporter,
)
from opentelemetry.trace import Span, SpanKind, Status, StatusCode

TRACER_NAME = "llmbridge"


@dataclass
class TraceContext:
    """Identifiers of a span, formatted for logs and headers."""
    trace_id: str
    span_id: str
    trace_flags: int = 1

    @classmethod
    def from_span(cls, span: Span) -> "TraceContext":
        ctx = span.get_span_context()
        return cls(
            trace_id=format(ctx.trace_id, "032x"),
            span_id=format(ctx.span_id, "016x"),
            trace_flags=int(ctx.trace_flags),
        )

    def to_traceparent(self) -> str:
        """W3C traceparent header value."""
        return f"00-{self.trace_id}-{self.span_id}-{self.trace_flags:02x}"


class TracingManager:
    """Owns an SDK TracerProvider installed by setup_tracing."""

    def __init__(
        self,
        service_name: str = "llmbridge",
        service_version: str = "0.1.0",
        exporter: Optional[SpanExporter] = None,
        console_export: bool = False,
        set_global: bool = True,
    ):
        resource = Resource.create({
            SERVICE_NAME: service_name,
            SERVICE_VERSION: service_version,
        })
        self.provider = TracerProvider(resource=resource)

        if exporter is not None:
            self.provider.add_span_processor(SimpleSpanProcessor(exporter))
        if console_export:
            self.provider.add_span_processor(BatchSpanProcessor(ConsoleSpanExporter()))

        if set_global:
            trace.set_tracer_provider(self.provider)

        self.tracer = self.provider.get_tracer(TRACER_NAME, service_version)

    def shutdown(self):
        self.provider.shutdown()


_tracing_instance: Optional[TracingManager] = None


def setup_tracing(
    service_name: str = "llmbridge",
    service_version: str = "0.1.0",
    exporter: Optional[SpanExporter] = None,
    console_export: bool = False,
    set_global: bool = True,
) -> TracingManager:
    """
    Install an SDK tracer provider.

    OTEL_CONSOLE_EXPORT=true turns on console export.
    """
    global _tracing_instance

    if os.getenv("OTEL_CONSOLE_EXPORT", "").lower() == "true":
        console_export = True

    _tracing_instance = TracingManager(
        service_name=service_name,
        service_version=service_version,
        exporter=exporter,
        console_export=console_export,
        set_global=set_global,
    )
    return _tracing_instance


def get_tracer() -> trace.Tracer:
    """Tracer from setup_tracing if called, else from the global provider."""
    if _tracing_instance is not None:
        return _tracing_instance.tracer
    return trace.get_tracer(TRACER_NAME)


def record_exception(span: Span, exception: BaseException):
    """Attach an exception to a span and mark it failed."""
    span.record_exception(exception)
    span.set_status(Status(StatusCode.ERROR, str(exception)))


def _provider_attributes(provider: str, model: str, operation: str,
                         attributes: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    attrs: Dict[str, Any] = {
        "ai.provider": provider,
        "ai.model": model,
        "ai.operation": operation,
    }
    attrs.update(attributes or {})
    return attrs


def start_provider_span(
    provider: str,
    model: str,
    operation: str = "stream",
    attributes: Optional[Dict[str, Any]] = None,
) -> Span:
    """
    Start a span that is not made current; the caller must call ``end()``.

    Used for streams, where the span outlives many suspensions of an async
    generator and attaching it to the context would leak across them.
    """
    return get_tracer().start_span(
        f"{provider}.{operation}",
        kind=SpanKind.CLIENT,
        attributes=_provider_attributes(provider, model, operation, attributes),
    )


@contextmanager
def trace_provider_call(
    provider: str,
    model: str,
    operation: str = "generate",
    attributes: Optional[Dict[str, Any]] = None,
) -> Iterator[Span]:
    """
    Span around one vendor call.

    Exceptions escaping the block are recorded on the span and re-raised.

        with trace_provider_call("openai", "gpt-4o", "generate") as span:
            response = await adapter.generate(call)
            span.set_attribute("ai.usage.input_tokens", response.usage.input_tokens)
    """
    with get_tracer().start_as_current_span(
        f"{provider}.{operation}",
        kind=SpanKind.CLIENT,
        attributes=_provider_attributes(provider, model, operation, attributes),
        record_exception=False,
        set_status_on_exception=False,
    ) as span:
        try:
            yield span
        except Exception as e:
            record_exception(span, e)
            raise
