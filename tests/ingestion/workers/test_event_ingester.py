"""Tests for EventIngestWorker: per-envelope outcomes, commits and counters."""

import json
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock

import pytest

from config.config import IngestConfig
from core.errors.exceptions import CommitError
from ingestion.workers.event_ingester import EventIngestWorker


def _user_event(event_id="evt-u1", name="A", email="a@example.com", created_at="2024-06-01T09:00:00Z"):
    return {"userId": "u1", "name": name, "email": email, "createdAt": created_at}


@pytest.fixture
def config():
    return IngestConfig(database_url="sqlite+aiosqlite:///:memory:")


@pytest.fixture
def consumer():
    mock = MagicMock()
    mock.worker_id = "test"
    mock.commit = AsyncMock()
    mock.start = AsyncMock()
    mock.stop = AsyncMock()
    mock.assigned_partitions = set()
    return mock


@pytest.fixture
def metrics():
    return MagicMock()


@pytest.fixture
def worker(config, store, sink, consumer, metrics):
    return EventIngestWorker(config, store, sink, metrics=metrics, consumer=consumer)


class TestHappyPath:

    async def test_user_created_then_updated(self, worker, store, consumer, make_envelope, make_message):
        await worker.handle_message(make_message(make_envelope("UserCreated", _user_event(name="A")), offset=0))
        await worker.handle_message(
            make_message(make_envelope("UserCreated", _user_event(name="B"), event_id="evt-u2"), offset=1)
        )

        user = await store.get_user("u1")
        assert user.name == "B"
        assert consumer.commit.await_count == 2
        assert [c.args[0].offset for c in consumer.commit.await_args_list] == [0, 1]
        assert worker.stats["succeeded"] == 2

    async def test_metrics_recorded(self, worker, metrics, make_envelope, make_message):
        await worker.handle_message(make_message(make_envelope("UserCreated", _user_event())))

        metrics.record_processed.assert_called_once_with("UserCreated")
        metrics.observe_processing_duration.assert_called_once()
        metrics.record_failed.assert_not_called()

    async def test_inventory_is_additive(self, worker, store, make_envelope, make_message):
        await worker.handle_message(
            make_message(make_envelope("InventoryAdjusted", {"sku": "SKU-1", "delta": 5}, event_id="i1"), offset=0)
        )
        await worker.handle_message(
            make_message(make_envelope("InventoryAdjusted", {"sku": "SKU-1", "delta": -2}, event_id="i2"), offset=1)
        )

        assert (await store.get_inventory("SKU-1")).quantity == 3

    async def test_redelivered_inventory_applies_twice(self, worker, store, make_envelope, make_message):
        raw = make_envelope("InventoryAdjusted", {"sku": "SKU-1", "delta": 4}, event_id="i1")

        await worker.handle_message(make_message(raw, offset=0))
        await worker.handle_message(make_message(raw, offset=0))

        assert (await store.get_inventory("SKU-1")).quantity == 8

    async def test_order_after_user(self, worker, store, make_envelope, make_message):
        await worker.handle_message(make_message(make_envelope("UserCreated", _user_event()), offset=0))
        await worker.handle_message(
            make_message(
                make_envelope("OrderPlaced", {"orderId": "o1", "userId": "u1", "total": 42.5}, event_id="evt-o1"),
                offset=1,
            )
        )

        order = await store.get_order("o1")
        assert order.total == Decimal("42.50")
        assert worker.stats["dead_lettered"] == 0


class TestDeadLetter:

    async def _only_record(self, sink):
        records = await sink.get_records("events")
        assert len(records) == 1
        return records[0]

    async def test_missing_field_dead_lettered_and_committed(
        self, worker, sink, consumer, metrics, make_envelope, make_message
    ):
        raw = make_envelope("OrderPlaced", {"orderId": "o1", "userId": "u1"}, event_id="evt-o1")

        await worker.handle_message(make_message(raw, offset=12, partition=3))

        record = await self._only_record(sink)
        assert record.event_id == "evt-o1"
        assert record.partition == 3
        assert record.offset == 12
        assert "total" in record.error
        assert record.original_bytes() == json.dumps(json.loads(raw)).encode()
        consumer.commit.assert_awaited_once()
        metrics.record_failed.assert_called_once_with("ValidationError")
        metrics.record_dead_lettered.assert_called_once()
        assert worker.stats == {"succeeded": 0, "dead_lettered": 1, "sink_failures": 0, "commit_failures": 0}

    async def test_unknown_type(self, worker, sink, consumer, make_envelope, make_message):
        await worker.handle_message(make_message(make_envelope("OrderCancelled", {"orderId": "o1"})))

        record = await self._only_record(sink)
        assert "Unsupported event type" in record.error
        consumer.commit.assert_awaited_once()

    async def test_unparseable_bytes(self, worker, sink, consumer, make_message):
        await worker.handle_message(make_message(b"\x00not json", offset=4))

        record = await self._only_record(sink)
        assert record.event_id == "unknown"
        assert record.payload == "\x00not json"
        assert record.original_bytes() == b"\x00not json"
        consumer.commit.assert_awaited_once()

    async def test_order_for_missing_user(self, worker, sink, store, make_envelope, make_message):
        raw = make_envelope("OrderPlaced", {"orderId": "o1", "userId": "ghost", "total": 1}, event_id="evt-o1")

        await worker.handle_message(make_message(raw))

        record = await self._only_record(sink)
        assert "upsert_order" in record.error
        assert await store.get_order("o1") is None

    async def test_unexpected_exception_dead_lettered(self, worker, sink, consumer, make_envelope, make_message):
        worker.store.upsert_user = AsyncMock(side_effect=RuntimeError("driver bug"))

        await worker.handle_message(make_message(make_envelope("UserCreated", _user_event())))

        record = await self._only_record(sink)
        assert record.error == "driver bug"
        consumer.commit.assert_awaited_once()

    async def test_fail_policy_dead_letters_bad_timestamp(self, store, sink, consumer, make_envelope, make_message):
        config = IngestConfig(database_url="sqlite+aiosqlite:///:memory:", timestamp_policy="fail")
        worker = EventIngestWorker(config, store, sink, consumer=consumer)

        await worker.handle_message(make_message(make_envelope("UserCreated", _user_event(created_at="tomorrow"))))

        assert await store.get_user("u1") is None
        assert await sink.count("events") == 1

    async def test_sink_down_still_commits(self, worker, redis_client, consumer, metrics, make_envelope, make_message):
        redis_client.down = True

        await worker.handle_message(make_message(make_envelope("OrderCancelled", {})))

        consumer.commit.assert_awaited_once()
        metrics.record_dlq_push_failure.assert_called_once()
        metrics.record_dead_lettered.assert_not_called()
        assert worker.stats["sink_failures"] == 1
        assert worker.stats["dead_lettered"] == 1

    async def test_dedupe_skip_not_counted_as_written(
        self, config, store, redis_client, consumer, metrics, make_envelope, make_message
    ):
        from ingestion.dlq.sink import RedisDeadLetterSink

        sink = RedisDeadLetterSink(redis_client, dedupe_by_event_id=True)
        worker = EventIngestWorker(config, store, sink, metrics=metrics, consumer=consumer)
        raw = make_envelope("OrderCancelled", {}, event_id="evt-x")

        await worker.handle_message(make_message(raw, offset=0))
        await worker.handle_message(make_message(raw, offset=0))

        assert await sink.count("events") == 1
        assert metrics.record_dead_lettered.call_count == 1
        assert consumer.commit.await_count == 2


class TestCommitFailure:

    async def test_commit_failure_counted_not_raised(self, worker, consumer, metrics, make_envelope, make_message):
        consumer.commit.side_effect = CommitError("rebalance in progress")

        await worker.handle_message(make_message(make_envelope("UserCreated", _user_event())))

        metrics.record_commit_failure.assert_called_once()
        assert worker.stats["commit_failures"] == 1
        assert worker.stats["succeeded"] == 1


class TestLifecycle:

    async def test_health_heartbeat_and_assignment(self, config, store, sink, consumer, make_envelope, make_message):
        health = MagicMock()
        worker = EventIngestWorker(config, store, sink, consumer=consumer, health_server=health)

        await worker.handle_message(make_message(make_envelope("UserCreated", _user_event())))
        worker._on_assignment_change(3)

        health.record_heartbeat.assert_called_once()
        health.set_partitions_assigned.assert_called_once_with(3)

    async def test_start_and_stop(self, worker, consumer, redis_client):
        await worker.start()
        consumer.start.assert_awaited_once()
        assert worker._stats_logger is not None

        await worker.stop()

        consumer.stop.assert_awaited_once()
        assert worker._stats_logger is None
        assert redis_client.closed

    async def test_stop_closes_pools_even_if_consumer_fails(self, worker, consumer, redis_client):
        consumer.stop.side_effect = RuntimeError("close failed")

        with pytest.raises(RuntimeError):
            await worker.stop()

        assert redis_client.closed

    def test_cycle_stats(self, worker, consumer):
        consumer.assigned_partitions = {("events", 0), ("events", 1)}

        stats = worker._get_cycle_stats(1)

        assert stats == {
            "records_succeeded": 0,
            "records_dead_lettered": 0,
            "sink_failures": 0,
            "commit_failures": 0,
            "partitions_assigned": 2,
        }

    def test_worker_id_from_consumer(self, worker):
        assert worker.worker_id == "test"
