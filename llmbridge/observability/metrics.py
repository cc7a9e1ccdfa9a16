"""
llmbridge - Prometheus Metrics

Metrics collection with the Prometheus client library.

Metrics exposed:
- llmbridge_provider_calls_total: Counter of vendor calls by provider, model, operation, status
- llmbridge_provider_call_duration_seconds: Histogram of call latency
- llmbridge_time_to_first_part_seconds: Histogram of latency until the first stream part
- llmbridge_tokens_total: Counter of tokens by kind (input/output/reasoning/cache_read)
- llmbridge_stream_parts_total: Counter of emitted stream parts by type
- llmbridge_warnings_total: Counter of call warnings by type
- llmbridge_retries_total: Counter of transport retries
- llmbridge_active_streams: Gauge of currently open streams

Usage:
    from llmbridge.observability.metrics import get_metrics, render_metrics

    metrics = get_metrics()
    metrics.record_call(provider="openai", model="gpt-4o", operation="generate",
                        status="ok", duration_seconds=1.5)

    body, content_type = render_metrics()
"""

from typing import Optional, Tuple

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    REGISTRY,
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
)


class MetricsCollector:
    """
    Central metrics collector.

    One collector per registry; the process-wide instance lives on the
    default prometheus REGISTRY. Tests pass a fresh CollectorRegistry.
    """

    _instance: Optional["MetricsCollector"] = None

    def __init__(self, registry: CollectorRegistry = REGISTRY):
        self.registry = registry

        self.calls_total = Counter(
            "llmbridge_provider_calls_total",
            "Total number of vendor calls",
            labelnames=["provider", "model", "operation", "status"],
            registry=registry,
        )

        # LLM calls range from sub-second to minutes
        self.call_duration = Histogram(
            "llmbridge_provider_call_duration_seconds",
            "Vendor call duration in seconds",
            labelnames=["provider", "model", "operation"],
            buckets=(0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 25.0, 50.0, 100.0, float("inf")),
            registry=registry,
        )

        self.time_to_first_part = Histogram(
            "llmbridge_time_to_first_part_seconds",
            "Time until the first normalized stream part",
            labelnames=["provider", "model"],
            buckets=(0.05, 0.1, 0.25, 0.5, 1.0, 2.0, 5.0, 10.0, float("inf")),
            registry=registry,
        )

        self.tokens_total = Counter(
            "llmbridge_tokens_total",
            "Total tokens reported by vendors",
            labelnames=["provider", "model", "kind"],
            registry=registry,
        )

        self.stream_parts_total = Counter(
            "llmbridge_stream_parts_total",
            "Normalized stream parts emitted",
            labelnames=["provider", "type"],
            registry=registry,
        )

        self.warnings_total = Counter(
            "llmbridge_warnings_total",
            "Call warnings (dropped or altered settings)",
            labelnames=["provider", "type"],
            registry=registry,
        )

        self.retries_total = Counter(
            "llmbridge_retries_total",
            "Transport retries",
            labelnames=["provider", "reason"],
            registry=registry,
        )

        self.active_streams = Gauge(
            "llmbridge_active_streams",
            "Streams currently open",
            labelnames=["provider"],
            registry=registry,
        )

    @classmethod
    def get_instance(cls) -> "MetricsCollector":
        if cls._instance is None:
            cls._instance = cls()
        return cls._instance

    def record_call(
        self,
        provider: str,
        model: str,
        operation: str,
        status: str,
        duration_seconds: float,
    ):
        self.calls_total.labels(
            provider=provider, model=model, operation=operation, status=status,
        ).inc()
        self.call_duration.labels(
            provider=provider, model=model, operation=operation,
        ).observe(duration_seconds)

    def record_usage(self, provider: str, model: str, usage) -> None:
        """Count tokens from a Usage snapshot; zero counters are skipped."""
        for kind, value in (
            ("input", usage.input_tokens),
            ("output", usage.output_tokens),
            ("reasoning", usage.reasoning_tokens),
            ("cache_read", usage.cache_read_tokens),
            ("cache_creation", usage.cache_creation_tokens),
        ):
            if value > 0:
                self.tokens_total.labels(provider=provider, model=model, kind=kind).inc(value)

    def record_time_to_first_part(self, provider: str, model: str, seconds: float):
        self.time_to_first_part.labels(provider=provider, model=model).observe(seconds)

    def record_stream_part(self, provider: str, part_type: str):
        self.stream_parts_total.labels(provider=provider, type=part_type).inc()

    def record_warning(self, provider: str, warning_type: str):
        self.warnings_total.labels(provider=provider, type=warning_type).inc()

    def record_retry(self, provider: str, reason: str):
        self.retries_total.labels(provider=provider, reason=reason).inc()

    def track_active_stream(self, provider: str) -> "ActiveStreamTracker":
        return ActiveStreamTracker(self, provider)


class ActiveStreamTracker:
    """Context manager keeping llmbridge_active_streams up to date."""

    def __init__(self, collector: MetricsCollector, provider: str):
        self.collector = collector
        self.provider = provider

    def __enter__(self):
        self.collector.active_streams.labels(provider=self.provider).inc()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.collector.active_streams.labels(provider=self.provider).dec()
        return False


def get_metrics() -> MetricsCollector:
    """Get the process-wide metrics collector."""
    return MetricsCollector.get_instance()


def render_metrics(registry: CollectorRegistry = REGISTRY) -> Tuple[bytes, str]:
    """Prometheus text exposition of ``registry`` and its content type."""
    return generate_latest(registry), CONTENT_TYPE_LATEST
