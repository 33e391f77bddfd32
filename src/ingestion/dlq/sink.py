"""
Redis dead-letter sink.

Each terminal failure becomes one JSON record LPUSHed onto ``{prefix}:{topic}``,
so reading the list from the head returns the newest failure first:

    {"eventId", "topic", "partition", "offset", "payload", "error", "failedAt"}

``payload`` is the decoded envelope when the raw bytes were a JSON object,
otherwise the raw text, so the original message can always be reconstructed.

Optional dedupe: with ``dedupe_by_event_id`` on, a marker key
``{prefix}:seen:{topic}:{eventId}`` is claimed with SET NX EX before pushing
and a second failure for the same eventId is skipped. Records whose eventId
is unknown are never deduplicated.
"""

import json
import logging
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any

from redis.asyncio import ConnectionPool, Redis
from redis.exceptions import RedisError

from config.config import IngestConfig
from core.errors.exceptions import SinkError
from core.utils import json_serializer
from ingestion.handlers.envelope import decode_json_object

logger = logging.getLogger(__name__)

UNKNOWN_EVENT_ID = "unknown"


@dataclass(frozen=True)
class DeadLetterRecord:
    """One terminal failure, immutable once written."""

    event_id: str
    topic: str
    partition: int
    offset: int
    payload: Any
    error: str
    failed_at: datetime

    def to_dict(self) -> dict[str, Any]:
        return {
            "eventId": self.event_id,
            "topic": self.topic,
            "partition": self.partition,
            "offset": self.offset,
            "payload": self.payload,
            "error": self.error,
            "failedAt": self.failed_at.isoformat(),
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), default=json_serializer)

    @classmethod
    def from_json(cls, raw: str | bytes) -> "DeadLetterRecord":
        data = json.loads(raw)
        return cls(
            event_id=data.get("eventId", UNKNOWN_EVENT_ID),
            topic=data["topic"],
            partition=int(data["partition"]),
            offset=int(data["offset"]),
            payload=data.get("payload"),
            error=data.get("error", ""),
            failed_at=datetime.fromisoformat(data["failedAt"]),
        )

    def original_bytes(self) -> bytes:
        """Re-encode the payload as it arrived (byte-identical for text payloads)."""
        if isinstance(self.payload, str):
            return self.payload.encode("utf-8")
        return json.dumps(self.payload).encode("utf-8")


def build_record(
    payload: bytes | None,
    topic: str,
    partition: int,
    offset: int,
    error: Exception | str,
    event_id: str | None = None,
    failed_at: datetime | None = None,
) -> DeadLetterRecord:
    decoded = decode_json_object(payload)
    if event_id is None and decoded is not None and isinstance(decoded.get("eventId"), str):
        event_id = decoded["eventId"]

    if decoded is not None:
        stored: Any = decoded
    elif payload is None:
        stored = None
    else:
        stored = payload.decode("utf-8", errors="replace")

    return DeadLetterRecord(
        event_id=event_id or UNKNOWN_EVENT_ID,
        topic=topic,
        partition=partition,
        offset=offset,
        payload=stored,
        error=str(error),
        failed_at=failed_at or datetime.now(UTC),
    )


class RedisDeadLetterSink:
    """Dead-letter sink backed by Redis lists, one list per source topic."""

    def __init__(
        self,
        client: Redis,
        key_prefix: str = "dlq",
        dedupe_by_event_id: bool = False,
        dedupe_ttl_seconds: int = 7 * 24 * 3600,
    ):
        self.client = client
        self.key_prefix = key_prefix
        self.dedupe_by_event_id = dedupe_by_event_id
        self.dedupe_ttl_seconds = dedupe_ttl_seconds

    @classmethod
    def from_config(cls, config: IngestConfig) -> "RedisDeadLetterSink":
        pool = ConnectionPool.from_url(
            config.redis_url,
            socket_timeout=config.redis_socket_timeout,
            socket_connect_timeout=config.redis_connect_timeout_seconds,
            decode_responses=True,
        )
        return cls(
            Redis(connection_pool=pool),
            key_prefix=config.dlq_key_prefix,
            dedupe_by_event_id=config.dlq_dedupe_by_event_id,
            dedupe_ttl_seconds=config.dlq_dedupe_ttl_seconds,
        )

    def key_for(self, topic: str) -> str:
        return f"{self.key_prefix}:{topic}"

    def seen_key(self, topic: str, event_id: str) -> str:
        return f"{self.key_prefix}:seen:{topic}:{event_id}"

    async def connect(self) -> None:
        """Ping Redis.

        Raises:
            SinkError: Redis is unreachable.
        """
        try:
            await self.client.ping()
        except (RedisError, OSError) as e:
            raise SinkError("Dead-letter sink unreachable", cause=e) from e
        logger.info("Dead-letter sink connected", extra={"dlq_key_prefix": self.key_prefix})

    async def close(self) -> None:
        await self.client.aclose()

    async def push(
        self,
        payload: bytes | None,
        topic: str,
        partition: int,
        offset: int,
        error: Exception | str,
        event_id: str | None = None,
    ) -> bool:
        """Record a terminal failure.

        Returns:
            True if a record was written, False if skipped as a duplicate.

        Raises:
            SinkError: Redis rejected the write or is unreachable.
        """
        record = build_record(payload, topic, partition, offset, error, event_id=event_id)
        key = self.key_for(topic)

        try:
            if self.dedupe_by_event_id and record.event_id != UNKNOWN_EVENT_ID:
                claimed = await self.client.set(
                    self.seen_key(topic, record.event_id),
                    str(offset),
                    nx=True,
                    ex=self.dedupe_ttl_seconds,
                )
                if not claimed:
                    logger.info(
                        "Dead-letter already recorded for event, skipping",
                        extra={"event_id": record.event_id, "topic": topic, "offset": offset},
                    )
                    return False

            await self.client.lpush(key, record.to_json())
        except (RedisError, OSError) as e:
            raise SinkError(
                f"Dead-letter push to '{key}' failed",
                cause=e,
                context={"topic": topic, "partition": partition, "offset": offset},
            ) from e

        logger.debug(
            "Dead-letter record written",
            extra={"event_id": record.event_id, "dlq_key": key, "offset": offset},
        )
        return True

    async def get_records(self, topic: str, start: int = 0, stop: int = -1) -> list[DeadLetterRecord]:
        """Read records newest-first (LRANGE semantics, ``stop`` inclusive)."""
        try:
            raw_items = await self.client.lrange(self.key_for(topic), start, stop)
        except (RedisError, OSError) as e:
            raise SinkError(f"Reading '{self.key_for(topic)}' failed", cause=e) from e

        records = []
        for raw in raw_items:
            try:
                records.append(DeadLetterRecord.from_json(raw))
            except (ValueError, KeyError, TypeError) as e:
                logger.warning(
                    "Skipping malformed dead-letter record",
                    extra={"dlq_key": self.key_for(topic), "error_message": str(e)[:200]},
                )
        return records

    async def count(self, topic: str) -> int:
        try:
            return int(await self.client.llen(self.key_for(topic)))
        except (RedisError, OSError) as e:
            raise SinkError(f"Counting '{self.key_for(topic)}' failed", cause=e) from e


__all__ = [
    "DeadLetterRecord",
    "RedisDeadLetterSink",
    "UNKNOWN_EVENT_ID",
    "build_record",
]
