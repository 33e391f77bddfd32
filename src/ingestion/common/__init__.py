"""Common infrastructure for the ingestion pipeline.

This package provides domain-agnostic infrastructure including:
- PartitionedConsumer: per-partition sequential Kafka consumption
- MetricsSink: injected metrics capability
- HealthCheckServer: liveness/readiness probes
- Signal handling for graceful shutdown

Import classes directly from submodules to avoid loading heavy dependencies:
    from ingestion.common.consumer import PartitionedConsumer
    from ingestion.common.metrics import PrometheusMetrics
"""

# Don't import concrete implementations here to avoid loading
# heavy dependencies (aiokafka, aiohttp, etc.) at package import time.

__all__: list[str] = []
