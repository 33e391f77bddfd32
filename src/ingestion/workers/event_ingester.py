"""
Event Ingester Worker - consumes event envelopes and persists them.

Per envelope:
    Fetched -> Validating -> Dispatching -> Persisting -> Committed
    any failure before Committed -> DeadLettered -> Committed

Every failure before the commit is terminal for the envelope: it is pushed to
the dead-letter sink (best effort) and the offset is committed anyway, so a
poison message never blocks its partition. Only the commit itself can leave
an envelope uncommitted; it is then redelivered after a restart or rebalance.
"""

import logging
import time
from typing import Any

from config.config import IngestConfig
from core.errors.exceptions import CommitError, PipelineError, SinkError
from core.logging.context import set_log_context
from core.logging.periodic_logger import PeriodicStatsLogger
from core.logging.utilities import log_exception
from ingestion.common.consumer import PartitionedConsumer
from ingestion.common.health import HealthCheckServer
from ingestion.common.metrics import MetricsSink, NoOpMetrics
from ingestion.common.types import PipelineMessage
from ingestion.dlq.sink import RedisDeadLetterSink
from ingestion.handlers import Dispatcher, parse_envelope
from ingestion.handlers.utils import elapsed_ms
from ingestion.schemas.events import Envelope
from ingestion.storage.store import EntityStore

logger = logging.getLogger(__name__)


class EventIngestWorker:
    """
    Consumes the events topic and drives each envelope to a terminal outcome.

    The worker owns the shared store and sink pools; the consumer runs one
    task per assigned partition and every task calls ``handle_message``.
    Connecting the store and sink is the caller's job (failures there are
    fatal at startup), closing them happens in ``stop``.
    """

    WORKER_NAME = "event-ingester"

    def __init__(
        self,
        config: IngestConfig,
        store: EntityStore,
        sink: RedisDeadLetterSink,
        metrics: MetricsSink | None = None,
        health_server: HealthCheckServer | None = None,
        consumer: PartitionedConsumer | None = None,
        instance_id: str | None = None,
    ):
        self.config = config
        self.store = store
        self.sink = sink
        self.metrics = metrics or NoOpMetrics()
        self.health_server = health_server
        self.instance_id = instance_id
        self.dispatcher = Dispatcher(store, timestamp_policy=config.timestamp_policy)

        self.consumer = consumer or PartitionedConsumer(
            config=config,
            message_handler=self.handle_message,
            instance_id=instance_id,
            on_assignment_change=self._on_assignment_change,
        )
        self.worker_id = getattr(self.consumer, "worker_id", self.WORKER_NAME)

        self._records_succeeded = 0
        self._records_dead_lettered = 0
        self._sink_failures = 0
        self._commit_failures = 0
        self._stats_logger: PeriodicStatsLogger | None = None

        logger.info(
            "Initialized EventIngestWorker",
            extra={
                "worker_id": self.worker_id,
                "worker_name": self.WORKER_NAME,
                "instance_id": instance_id,
                "topic": config.topic,
                "consumer_group": config.group_id,
                "timestamp_policy": config.timestamp_policy,
                "event_types": self.dispatcher.event_types,
            },
        )

    async def start(self) -> None:
        """Consume until ``stop()`` is called."""
        logger.info("Starting EventIngestWorker")
        set_log_context(stage=self.WORKER_NAME, worker_id=self.worker_id, domain=self.config.domain)

        self._stats_logger = PeriodicStatsLogger(
            interval_seconds=self.config.stats_interval_seconds,
            get_stats=self._get_cycle_stats,
            stage=self.WORKER_NAME,
            worker_id=self.worker_id,
        )
        self._stats_logger.start()

        await self.consumer.start()

    async def stop(self) -> None:
        """Finish in-flight envelopes, close the consumer, then the pools."""
        logger.info("Stopping EventIngestWorker")

        if self._stats_logger:
            await self._stats_logger.stop()
            self._stats_logger = None

        try:
            await self.consumer.stop()
        finally:
            await self.store.close()
            await self.sink.close()

        logger.info(
            "EventIngestWorker stopped successfully",
            extra=self._get_cycle_stats(-1),
        )

    # ------------------------------------------------------------------
    # Per-envelope state machine
    # ------------------------------------------------------------------

    async def handle_message(self, message: PipelineMessage) -> None:
        """Drive one envelope to a terminal outcome, then commit it."""
        start_time = time.perf_counter()
        if self.health_server:
            self.health_server.record_heartbeat()

        envelope: Envelope | None = None
        try:
            envelope = parse_envelope(message.value)
            dispatched = self.dispatcher.dispatch(envelope)
            await dispatched.persist()
        except Exception as e:
            await self._dead_letter(message, envelope, e)
        else:
            self._records_succeeded += 1
            self.metrics.record_processed(envelope.type)
            logger.debug(
                "Persisted event",
                extra={
                    "event_id": envelope.event_id,
                    "event_type": envelope.type,
                    "handler_name": dispatched.handler.name,
                    "duration_ms": elapsed_ms(start_time),
                },
            )

        await self._commit(message)
        self.metrics.observe_processing_duration(time.perf_counter() - start_time)

    async def _dead_letter(
        self,
        message: PipelineMessage,
        envelope: Envelope | None,
        error: Exception,
    ) -> None:
        self._records_dead_lettered += 1
        self.metrics.record_failed(type(error).__name__)

        context = {
            "event_id": envelope.event_id if envelope else None,
            "event_type": envelope.type if envelope else None,
        }
        if isinstance(error, PipelineError):
            log_exception(
                logger,
                error,
                "Envelope failed, dead-lettering",
                level=logging.WARNING,
                include_traceback=False,
                **context,
            )
        else:
            # Not part of the error taxonomy: keep the traceback
            log_exception(logger, error, "Unexpected error handling envelope, dead-lettering", **context)

        try:
            written = await self.sink.push(
                payload=message.value,
                topic=message.topic,
                partition=message.partition,
                offset=message.offset,
                error=error,
                event_id=envelope.event_id if envelope else None,
            )
        except SinkError as e:
            self._sink_failures += 1
            self.metrics.record_dlq_push_failure()
            log_exception(
                logger,
                e,
                "Dead-letter push failed, committing anyway",
                include_traceback=False,
                **context,
            )
            return

        if written:
            self.metrics.record_dead_lettered()

    async def _commit(self, message: PipelineMessage) -> None:
        try:
            await self.consumer.commit(message)
        except CommitError as e:
            self._commit_failures += 1
            self.metrics.record_commit_failure()
            log_exception(
                logger,
                e,
                "Offset commit failed, envelope will be redelivered",
                level=logging.WARNING,
                include_traceback=False,
            )

    # ------------------------------------------------------------------
    # Health and stats
    # ------------------------------------------------------------------

    def _on_assignment_change(self, count: int) -> None:
        if self.health_server:
            self.health_server.set_partitions_assigned(count)

    def _get_cycle_stats(self, cycle_count: int) -> dict[str, Any]:
        return {
            "records_succeeded": self._records_succeeded,
            "records_dead_lettered": self._records_dead_lettered,
            "sink_failures": self._sink_failures,
            "commit_failures": self._commit_failures,
            "partitions_assigned": len(self.consumer.assigned_partitions),
        }

    @property
    def stats(self) -> dict[str, int]:
        return {
            "succeeded": self._records_succeeded,
            "dead_lettered": self._records_dead_lettered,
            "sink_failures": self._sink_failures,
            "commit_failures": self._commit_failures,
        }


__all__ = ["EventIngestWorker"]
