"""
Ingestion: typed business events from Kafka into a relational store.

Subpackages:
    common    - Shared infrastructure (partitioned consumer, metrics, health, signals)
    schemas   - Envelope, per-type payload models and entity records
    handlers  - Envelope validation and per-type dispatch
    storage   - Idempotent persistence (SQLAlchemy async)
    dlq       - Redis dead-letter sink and inspection CLI
    workers   - Event ingester worker (per-envelope state machine)

Architecture:
    events → PartitionedConsumer → EventIngestWorker → parse_envelope → Dispatcher → EntityStore → commit
                                                        ↓ (any terminal failure)
                                                 RedisDeadLetterSink (dlq:{topic}) → commit

Dependencies:
    - core.*: Reusable components (errors, logging, resilience)
    - aiokafka: Kafka consumer
    - pydantic: Payload schema validation
    - sqlalchemy: Relational store
    - redis: Dead-letter sink
"""

__version__ = "0.1.0"
