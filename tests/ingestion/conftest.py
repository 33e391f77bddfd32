"""Shared fixtures for ingestion tests: in-memory store, fake Redis, envelopes."""

import json
from typing import Any

import pytest
import pytest_asyncio
from redis.exceptions import ConnectionError as RedisConnectionError
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.pool import StaticPool

from ingestion.common.types import PipelineMessage
from ingestion.dlq.sink import RedisDeadLetterSink
from ingestion.storage.store import EntityStore


class DummyRedis:
    """In-memory stand-in for the handful of redis.asyncio calls the sink makes."""

    def __init__(self):
        self.lists: dict[str, list[str]] = {}
        self.keys: dict[str, tuple[str, int | None]] = {}
        self.down = False
        self.closed = False

    def _check(self) -> None:
        if self.down:
            raise RedisConnectionError("Connection refused")

    async def ping(self) -> bool:
        self._check()
        return True

    async def lpush(self, key: str, *values: str) -> int:
        self._check()
        items = self.lists.setdefault(key, [])
        for value in values:
            items.insert(0, value)
        return len(items)

    async def lrange(self, key: str, start: int, stop: int) -> list[str]:
        self._check()
        items = self.lists.get(key, [])
        end = len(items) if stop == -1 else stop + 1
        return items[start:end]

    async def llen(self, key: str) -> int:
        self._check()
        return len(self.lists.get(key, []))

    async def set(self, key: str, value: str, nx: bool = False, ex: int | None = None) -> bool | None:
        self._check()
        if nx and key in self.keys:
            return None
        self.keys[key] = (value, ex)
        return True

    async def aclose(self) -> None:
        self.closed = True


def _envelope(
    event_type: str,
    data: dict[str, Any],
    event_id: str = "evt-1",
    timestamp: str = "2024-06-01T10:00:00Z",
) -> bytes:
    return json.dumps(
        {"eventId": event_id, "type": event_type, "timestamp": timestamp, "data": data}
    ).encode("utf-8")


def _message(
    value: bytes | None,
    offset: int = 0,
    partition: int = 0,
    topic: str = "events",
    key: bytes | None = None,
) -> PipelineMessage:
    return PipelineMessage(
        topic=topic,
        partition=partition,
        offset=offset,
        timestamp=1717236000000,
        key=key,
        value=value,
    )


@pytest.fixture
def make_envelope():
    return _envelope


@pytest.fixture
def make_message():
    return _message


@pytest_asyncio.fixture
async def store():
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    entity_store = EntityStore(engine)
    await entity_store.create_schema()
    yield entity_store
    await entity_store.close()


@pytest.fixture
def redis_client():
    return DummyRedis()


@pytest.fixture
def sink(redis_client):
    return RedisDeadLetterSink(redis_client, key_prefix="dlq")
