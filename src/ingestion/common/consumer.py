"""Partitioned Kafka consumer: one supervised, sequential task per assigned partition."""

import asyncio
import logging
from collections.abc import Awaitable, Callable

from aiokafka import AIOKafkaConsumer
from aiokafka.abc import ConsumerRebalanceListener
from aiokafka.errors import ConsumerStoppedError, KafkaError
from aiokafka.structs import ConsumerRecord, TopicPartition

from config.config import IngestConfig
from core.errors.exceptions import CommitError
from core.logging import MessageLogContext
from core.resilience.retry import FETCH_BACKOFF
from core.utils import generate_worker_id
from ingestion.common.kafka_config import build_kafka_security_config
from ingestion.common.types import PipelineMessage, from_consumer_record

logger = logging.getLogger(__name__)

MessageHandler = Callable[[PipelineMessage], Awaitable[None]]


class _RebalanceListener(ConsumerRebalanceListener):
    def __init__(self, owner: "PartitionedConsumer"):
        self._owner = owner

    async def on_partitions_revoked(self, revoked):
        await self._owner._on_partitions_revoked(set(revoked))

    async def on_partitions_assigned(self, assigned):
        await self._owner._on_partitions_assigned(set(assigned))


class PartitionedConsumer:
    """Fetch loop feeding per-partition queues, each drained by its own task.

    - Ordering within a partition is strict; partitions progress in parallel.
    - A partition whose queue reaches ``partition_queue_size`` is paused until
      it drains to half that size.
    - The message handler runs shielded: cancelling a partition task (revoke,
      shutdown) never interrupts an envelope mid-flight; stop waits for it.
    - A partition task that dies is logged, its partition rewound to the
      failed offset, and a fresh task started.

    Commits are explicit: the handler calls ``commit(message)`` once the
    envelope has reached a terminal outcome.
    """

    # Optional consumer config keys forwarded to AIOKafkaConsumer if present
    _OPTIONAL_CONSUMER_KEYS = (
        "heartbeat_interval_ms",
        "fetch_min_bytes",
        "fetch_max_wait_ms",
        "partition_assignment_strategy",
    )

    def __init__(
        self,
        config: IngestConfig,
        message_handler: MessageHandler,
        instance_id: str | None = None,
        on_assignment_change: Callable[[int], None] | None = None,
    ):
        self.config = config
        self.topic = config.topic
        self.group_id = config.group_id
        self.message_handler = message_handler
        self.instance_id = instance_id
        self.on_assignment_change = on_assignment_change
        self.consumer_config = config.get_consumer_config()
        self.high_water = config.partition_queue_size
        self.low_water = max(config.partition_queue_size // 2, 0)

        prefix = f"{config.domain}-{config.worker_name}"
        if instance_id:
            prefix = f"{prefix}-{instance_id}"
        self.worker_id = generate_worker_id(prefix)

        self._consumer: AIOKafkaConsumer | None = None
        self._running = False

        self._queues: dict[TopicPartition, asyncio.Queue] = {}
        self._tasks: dict[TopicPartition, asyncio.Task] = {}
        self._in_flight: dict[TopicPartition, asyncio.Future] = {}
        self._failed_offsets: dict[TopicPartition, int] = {}
        self._paused: set[TopicPartition] = set()
        self._restarts = 0

        logger.info(
            "Initialized partitioned consumer",
            extra={
                "topics": [self.topic],
                "group_id": self.group_id,
                "bootstrap_servers": config.bootstrap_servers,
                "partition_queue_size": self.high_water,
            },
        )

    def _build_kafka_config(self) -> dict:
        """Build the AIOKafkaConsumer configuration dict."""
        client_id = f"{self.config.domain}-{self.config.worker_name}"
        if self.instance_id:
            client_id = f"{client_id}-{self.instance_id}"

        cfg = {
            "bootstrap_servers": self.config.bootstrap_servers,
            "group_id": self.group_id,
            "client_id": client_id,
            "request_timeout_ms": self.config.request_timeout_ms,
            "metadata_max_age_ms": self.config.metadata_max_age_ms,
            "connections_max_idle_ms": self.config.connections_max_idle_ms,
            "enable_auto_commit": False,
            "auto_offset_reset": self.consumer_config.get("auto_offset_reset", "earliest"),
            "max_poll_records": self.consumer_config.get("max_poll_records", 100),
            "max_poll_interval_ms": self.consumer_config.get("max_poll_interval_ms", 300000),
            "session_timeout_ms": self.consumer_config.get("session_timeout_ms", 30000),
        }

        for key in self._OPTIONAL_CONSUMER_KEYS:
            if key in self.consumer_config:
                cfg[key] = self.consumer_config[key]

        cfg.update(build_kafka_security_config(self.config))
        return cfg

    async def start(self) -> None:
        """Start consuming. Returns once stop() is called or the consumer closes."""
        if self._running:
            logger.warning("Consumer already running, ignoring duplicate start call")
            return

        logger.info("Starting partitioned consumer", extra={"topics": [self.topic], "group_id": self.group_id})

        self._consumer = AIOKafkaConsumer(**self._build_kafka_config())
        self._consumer.subscribe([self.topic], listener=_RebalanceListener(self))
        await self._consumer.start()
        self._running = True

        try:
            await self._fetch_loop()
        except asyncio.CancelledError:
            logger.info("Fetch loop cancelled, shutting down")
            raise
        finally:
            self._running = False

    async def stop(self) -> None:
        """Stop fetching, let every partition finish its in-flight envelope, close."""
        if self._consumer is None:
            logger.debug("Consumer not running or already stopped")
            return

        logger.info("Stopping partitioned consumer")
        self._running = False

        try:
            await self._stop_partitions(set(self._tasks) | set(self._queues))
            await self._consumer.stop()
            logger.info("Partitioned consumer stopped successfully")
        except Exception:
            logger.error("Error stopping partitioned consumer", exc_info=True)
            raise
        finally:
            self._consumer = None
            self._notify_assignment()

    async def commit(self, message: PipelineMessage) -> None:
        """Commit ``offset + 1`` for the message's partition.

        Raises:
            CommitError: The broker rejected the commit or the consumer is gone.
        """
        if self._consumer is None:
            raise CommitError(
                "Cannot commit: consumer not started",
                context={"topic": message.topic, "partition": message.partition, "offset": message.offset},
            )

        tp = TopicPartition(message.topic, message.partition)
        try:
            await self._consumer.commit({tp: message.offset + 1})
        except KafkaError as e:
            raise CommitError(
                f"Offset commit failed for {message.topic}:{message.partition}@{message.offset}",
                cause=e,
                context={"topic": message.topic, "partition": message.partition, "offset": message.offset},
            ) from e

        logger.debug(
            "Committed offset",
            extra={"topic": message.topic, "partition": message.partition, "offset": message.offset + 1},
        )

    # ------------------------------------------------------------------
    # Fetch loop
    # ------------------------------------------------------------------

    async def _fetch_loop(self) -> None:
        logger.info("Starting fetch loop", extra={"topics": [self.topic], "group_id": self.group_id})
        attempt = 0

        while self._running and self._consumer:
            try:
                data = await self._consumer.getmany(timeout_ms=1000)
            except asyncio.CancelledError:
                raise
            except ConsumerStoppedError:
                logger.info("Consumer stopped, leaving fetch loop")
                return
            except Exception as e:
                delay = FETCH_BACKOFF.get_delay(attempt)
                attempt += 1
                logger.warning(
                    "Fetch failed, backing off",
                    extra={
                        "attempt": attempt,
                        "delay_seconds": round(delay, 2),
                        "error_type": type(e).__name__,
                        "error_message": str(e)[:200],
                    },
                )
                await asyncio.sleep(delay)
                continue

            attempt = 0
            for tp, records in data.items():
                self._route(tp, records)

    def _route(self, tp: TopicPartition, records: list[ConsumerRecord]) -> None:
        queue = self._queues.get(tp)
        if queue is None:
            # Fetched before a revoke completed; the next owner gets these
            logger.debug(
                "Dropping records for unowned partition",
                extra={"topic": tp.topic, "partition": tp.partition, "count": len(records)},
            )
            return

        for record in records:
            queue.put_nowait(record)

        if queue.qsize() >= self.high_water and tp not in self._paused and self._consumer:
            self._consumer.pause(tp)
            self._paused.add(tp)
            logger.info(
                "Partition queue full, pausing fetch",
                extra={"topic": tp.topic, "partition": tp.partition, "queue_size": queue.qsize()},
            )

    def _maybe_resume(self, tp: TopicPartition, queue: asyncio.Queue) -> None:
        if tp in self._paused and queue.qsize() <= self.low_water and self._consumer:
            self._consumer.resume(tp)
            self._paused.discard(tp)
            logger.info(
                "Partition queue drained, resuming fetch",
                extra={"topic": tp.topic, "partition": tp.partition, "queue_size": queue.qsize()},
            )

    # ------------------------------------------------------------------
    # Partition tasks
    # ------------------------------------------------------------------

    def _spawn(self, tp: TopicPartition) -> asyncio.Task:
        task = asyncio.create_task(
            self._drain_partition(tp), name=f"partition-{tp.topic}-{tp.partition}"
        )
        task.add_done_callback(lambda t, tp=tp: self._on_task_done(tp, t))
        self._tasks[tp] = task
        return task

    async def _drain_partition(self, tp: TopicPartition) -> None:
        queue = self._queues[tp]
        while True:
            record = await queue.get()
            self._maybe_resume(tp, queue)

            future = asyncio.ensure_future(self._process_record(record))
            self._in_flight[tp] = future
            try:
                await asyncio.shield(future)
            except Exception:
                self._failed_offsets[tp] = record.offset
                raise
            finally:
                if future.done():
                    self._in_flight.pop(tp, None)

    async def _process_record(self, record: ConsumerRecord) -> None:
        with MessageLogContext(
            topic=record.topic,
            partition=record.partition,
            offset=record.offset,
            key=record.key.decode("utf-8", errors="replace") if record.key else None,
            consumer_group=self.group_id,
        ):
            await self.message_handler(from_consumer_record(record))

    def _on_task_done(self, tp: TopicPartition, task: asyncio.Task) -> None:
        if self._tasks.get(tp) is not task:
            return
        self._tasks.pop(tp, None)

        if task.cancelled():
            return

        error = task.exception()
        if error is None or not self._running or tp not in self._queues:
            return

        self._restarts += 1
        failed_offset = self._failed_offsets.pop(tp, None)
        logger.error(
            "Partition task died, restarting",
            extra={
                "topic": tp.topic,
                "partition": tp.partition,
                "offset": failed_offset,
                "restarts": self._restarts,
                "error_type": type(error).__name__,
                "error_message": str(error)[:200],
            },
            exc_info=(type(error), error, error.__traceback__),
        )

        # Records queued behind the failed one are refetched after the seek
        queue = self._queues[tp]
        while not queue.empty():
            queue.get_nowait()
        if self._consumer is not None:
            if failed_offset is not None:
                self._consumer.seek(tp, failed_offset)
            if tp in self._paused:
                self._consumer.resume(tp)
                self._paused.discard(tp)

        self._spawn(tp)

    async def _stop_partitions(self, partitions: set[TopicPartition]) -> None:
        tasks = [self._tasks.pop(tp) for tp in partitions if tp in self._tasks]
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

        in_flight = [self._in_flight.pop(tp) for tp in partitions if tp in self._in_flight]
        if in_flight:
            logger.info("Waiting for in-flight envelopes", extra={"count": len(in_flight)})
            await asyncio.gather(*in_flight, return_exceptions=True)

        for tp in partitions:
            queue = self._queues.pop(tp, None)
            self._paused.discard(tp)
            self._failed_offsets.pop(tp, None)
            if queue is not None and queue.qsize():
                logger.info(
                    "Dropping uncommitted queued records",
                    extra={"topic": tp.topic, "partition": tp.partition, "count": queue.qsize()},
                )

    # ------------------------------------------------------------------
    # Rebalance
    # ------------------------------------------------------------------

    async def _on_partitions_revoked(self, revoked: set[TopicPartition]) -> None:
        owned = revoked & set(self._queues)
        if owned:
            logger.info(
                "Partitions revoked",
                extra={"partitions": sorted(f"{tp.topic}:{tp.partition}" for tp in owned)},
            )
            await self._stop_partitions(owned)
        self._notify_assignment()

    async def _on_partitions_assigned(self, assigned: set[TopicPartition]) -> None:
        new = assigned - set(self._queues)
        for tp in new:
            self._queues[tp] = asyncio.Queue()
            self._spawn(tp)
        if new:
            logger.info(
                "Partitions assigned",
                extra={
                    "group_id": self.group_id,
                    "partition_count": len(self._queues),
                    "partitions": sorted(f"{tp.topic}:{tp.partition}" for tp in new),
                },
            )
        self._notify_assignment()

    def _notify_assignment(self) -> None:
        if self.on_assignment_change is not None:
            self.on_assignment_change(len(self._queues))

    @property
    def assigned_partitions(self) -> set[TopicPartition]:
        return set(self._queues)

    @property
    def is_running(self) -> bool:
        return self._running and self._consumer is not None


__all__ = [
    "PartitionedConsumer",
    "MessageHandler",
]
