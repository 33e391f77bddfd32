"""
Dead-letter handling.

Components:
    - RedisDeadLetterSink: records terminal failures in Redis lists
    - DeadLetterRecord: one immutable failure record
    - cli: inspection tool (python -m ingestion.dlq.cli)
"""

from ingestion.dlq.sink import (
    UNKNOWN_EVENT_ID,
    DeadLetterRecord,
    RedisDeadLetterSink,
    build_record,
)

__all__ = [
    "DeadLetterRecord",
    "RedisDeadLetterSink",
    "UNKNOWN_EVENT_ID",
    "build_record",
]
