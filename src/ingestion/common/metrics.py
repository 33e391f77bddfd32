"""
Metrics emission for the ingestion pipeline.

The worker, store and sink never touch module-level metric globals; they
receive a MetricsSink and call its record_* methods. Two implementations:

- PrometheusMetrics: collectors bound to a CollectorRegistry passed in by the
  caller (the process registry in production, a fresh one per test)
- NoOpMetrics: discards everything

Metric names:
- messages_processed_total{type}
- messages_failed_total{error_type}
- dlq_count_total
- dlq_push_failures_total
- commit_failures_total
- db_latency_seconds{operation}
- message_processing_duration_seconds
"""

import logging
import socket
from typing import Protocol, runtime_checkable

from prometheus_client import REGISTRY, CollectorRegistry, Counter, Histogram, start_http_server

logger = logging.getLogger(__name__)

DB_LATENCY_BUCKETS = (0.001, 0.0025, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0)
PROCESSING_BUCKETS = (0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0)


@runtime_checkable
class MetricsSink(Protocol):
    """Injected metrics capability."""

    def record_processed(self, event_type: str) -> None: ...

    def record_failed(self, error_type: str) -> None: ...

    def record_dead_lettered(self) -> None: ...

    def record_dlq_push_failure(self) -> None: ...

    def record_commit_failure(self) -> None: ...

    def observe_db_latency(self, operation: str, seconds: float) -> None: ...

    def observe_processing_duration(self, seconds: float) -> None: ...


class NoOpMetrics:
    """No-op metrics sink for tools and tests that don't care about metrics."""

    def record_processed(self, event_type: str) -> None:
        pass

    def record_failed(self, error_type: str) -> None:
        pass

    def record_dead_lettered(self) -> None:
        pass

    def record_dlq_push_failure(self) -> None:
        pass

    def record_commit_failure(self) -> None:
        pass

    def observe_db_latency(self, operation: str, seconds: float) -> None:
        pass

    def observe_processing_duration(self, seconds: float) -> None:
        pass


class PrometheusMetrics:
    """Prometheus-backed MetricsSink.

    Each instance registers its own collectors on the given registry, so two
    instances must not share a registry.
    """

    def __init__(self, registry: CollectorRegistry | None = None):
        self.registry = registry if registry is not None else REGISTRY

        self.messages_processed = Counter(
            "messages_processed_total",
            "Events successfully validated and persisted",
            labelnames=["type"],
            registry=self.registry,
        )
        self.messages_failed = Counter(
            "messages_failed_total",
            "Events that reached a terminal failure",
            labelnames=["error_type"],
            registry=self.registry,
        )
        self.dlq_count = Counter(
            "dlq_count",
            "Dead-letter records written",
            registry=self.registry,
        )
        self.dlq_push_failures = Counter(
            "dlq_push_failures",
            "Dead-letter pushes that failed",
            registry=self.registry,
        )
        self.commit_failures = Counter(
            "commit_failures",
            "Offset commits that failed",
            registry=self.registry,
        )
        self.db_latency = Histogram(
            "db_latency_seconds",
            "Persistence call latency",
            labelnames=["operation"],
            buckets=DB_LATENCY_BUCKETS,
            registry=self.registry,
        )
        self.processing_duration = Histogram(
            "message_processing_duration_seconds",
            "Time from fetch to commit for one envelope",
            buckets=PROCESSING_BUCKETS,
            registry=self.registry,
        )

    def record_processed(self, event_type: str) -> None:
        self.messages_processed.labels(type=event_type).inc()

    def record_failed(self, error_type: str) -> None:
        self.messages_failed.labels(error_type=error_type).inc()

    def record_dead_lettered(self) -> None:
        self.dlq_count.inc()

    def record_dlq_push_failure(self) -> None:
        self.dlq_push_failures.inc()

    def record_commit_failure(self) -> None:
        self.commit_failures.inc()

    def observe_db_latency(self, operation: str, seconds: float) -> None:
        self.db_latency.labels(operation=operation).observe(seconds)

    def observe_processing_duration(self, seconds: float) -> None:
        self.processing_duration.observe(seconds)


def start_metrics_server(preferred_port: int, registry: CollectorRegistry | None = None) -> int:
    """Start Prometheus metrics server with automatic port fallback.
    Returns actual port number that the server is listening on."""
    registry = registry if registry is not None else REGISTRY

    try:
        start_http_server(preferred_port, registry=registry)
        return preferred_port
    except OSError as e:
        if e.errno == 98:
            logger.info(
                "Port already in use, finding available port",
                extra={"preferred_port": preferred_port},
            )

            with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
                s.bind(("", 0))
                s.listen(1)
                available_port = s.getsockname()[1]

            start_http_server(available_port, registry=registry)
            return available_port
        else:
            raise


__all__ = [
    "MetricsSink",
    "NoOpMetrics",
    "PrometheusMetrics",
    "start_metrics_server",
]
