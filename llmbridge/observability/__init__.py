"""
llmbridge Observability Module

- logging: structured JSON logs with call-context injection
- metrics: Prometheus counters and histograms for vendor calls and streams
- tracing: OpenTelemetry spans around vendor calls
"""

from .logging import (
    JSONFormatter,
    LogContext,
    StructuredLogger,
    TimedOperation,
    call_context,
    get_logger,
    setup_logging,
)
from .metrics import (
    ActiveStreamTracker,
    MetricsCollector,
    get_metrics,
    render_metrics,
)
from .tracing import (
    TraceContext,
    TracingManager,
    get_tracer,
    record_exception,
    setup_tracing,
    start_provider_span,
    trace_provider_call,
)

__all__ = [
    # Logging
    "JSONFormatter",
    "LogContext",
    "StructuredLogger",
    "TimedOperation",
    "call_context",
    "get_logger",
    "setup_logging",
    # Metrics
    "ActiveStreamTracker",
    "MetricsCollector",
    "get_metrics",
    "render_metrics",
    # Tracing
    "TraceContext",
    "TracingManager",
    "get_tracer",
    "record_exception",
    "setup_tracing",
    "start_provider_span",
    "trace_provider_call",
]
