"""Event ingestion worker entrypoint. Use --help for usage."""

import argparse
import asyncio
import logging
import os
import sys
from pathlib import Path
from typing import Any

from dotenv import load_dotenv

from config.config import IngestConfig, load_config
from core.errors.exceptions import PersistenceError, SinkError
from core.logging.setup import setup_logging
from core.logging.utilities import log_startup_banner
from ingestion import __version__
from ingestion.common.health import HealthCheckServer
from ingestion.common.metrics import PrometheusMetrics, start_metrics_server
from ingestion.common.signals import setup_shutdown_signal_handlers
from ingestion.dlq.sink import RedisDeadLetterSink
from ingestion.storage.store import EntityStore
from ingestion.workers.event_ingester import EventIngestWorker

# Project root directory (where .env file is located)
# __main__.py is at src/ingestion/__main__.py, so root is 3 levels up
PROJECT_ROOT = Path(__file__).parent.parent.parent

# Placeholder logger until setup_logging() is called in main()
logger = logging.getLogger(__name__)


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Consume typed business events from Kafka and persist them",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Run with the default config (src/config/config.yaml)
  python -m ingestion

  # Fail events whose business timestamps don't parse
  python -m ingestion --timestamp-policy fail

  # Container deployment: logs to stdout only
  python -m ingestion --log-to-stdout --health-port 8080 --metrics-port 8081
        """,
    )
    parser.add_argument(
        "--config",
        type=Path,
        help="Path to config.yaml file (default: src/config/config.yaml)",
    )
    parser.add_argument(
        "--metrics-port",
        type=int,
        help="Prometheus metrics port (default: observability.metrics_port)",
    )
    parser.add_argument(
        "--health-port",
        type=int,
        help="Health check port, 0 for a dynamic port (default: observability.health_port)",
    )
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        default="INFO",
        help="Console log level (default: INFO)",
    )
    parser.add_argument(
        "--log-dir",
        help="Directory for log files (default: logging.log_dir)",
    )
    parser.add_argument(
        "--log-to-stdout",
        action="store_true",
        help="Send all log output to stdout only, skipping log files",
    )
    parser.add_argument(
        "--timestamp-policy",
        choices=["fallback", "fail"],
        help="Handling of unparseable business timestamps (default: processing.timestamp_policy)",
    )
    return parser.parse_args(argv)


def build_overrides(args: argparse.Namespace) -> dict[str, Any]:
    """Map command line flags onto the config file structure."""
    overrides: dict[str, Any] = {}
    observability: dict[str, Any] = {}
    if args.metrics_port is not None:
        observability["metrics_port"] = args.metrics_port
    if args.health_port is not None:
        observability["health_port"] = args.health_port
    if observability:
        overrides["observability"] = observability
    if args.log_dir:
        overrides["logging"] = {"log_dir": args.log_dir}
    if args.timestamp_policy:
        overrides["processing"] = {"timestamp_policy": args.timestamp_policy}
    return overrides


def _setup_logging(args: argparse.Namespace, config: IngestConfig) -> None:
    json_logs = os.getenv("JSON_LOGS", "true").lower() in ("true", "1", "yes")
    log_to_stdout = args.log_to_stdout or os.getenv("LOG_TO_STDOUT", "false").lower() in (
        "true",
        "1",
        "yes",
    )
    setup_logging(
        name="ingestion",
        stage=config.worker_name,
        domain=config.domain,
        log_dir=Path(config.log_dir),
        json_format=json_logs,
        console_level=getattr(logging, args.log_level),
        log_to_stdout=log_to_stdout,
    )


async def _close_quietly(store: EntityStore, sink: RedisDeadLetterSink) -> None:
    for close in (store.close, sink.close):
        try:
            await close()
        except Exception:
            logger.warning("Error closing connection during startup failure", exc_info=True)


async def run(config: IngestConfig) -> int:
    """Run the worker until a shutdown signal. Returns the process exit code."""
    health_server = HealthCheckServer(
        port=config.health_port,
        worker_name=config.worker_name,
    )
    await health_server.start()

    metrics = PrometheusMetrics()
    actual_port = start_metrics_server(config.metrics_port)
    if actual_port != config.metrics_port:
        logger.info(
            "Metrics server started on fallback port",
            extra={"actual_port": actual_port, "preferred_port": config.metrics_port},
        )
    else:
        logger.info("Metrics server started", extra={"port": actual_port})

    store = EntityStore.from_config(config, metrics=metrics)
    sink = RedisDeadLetterSink.from_config(config)
    try:
        await store.connect()
        await sink.connect()
    except (PersistenceError, SinkError) as e:
        logger.error("Fatal startup error", extra={"error": str(e)}, exc_info=True)
        health_server.set_error(f"Startup error: {e}")
        await _close_quietly(store, sink)
        await health_server.stop()
        return 1

    health_server.set_ready(store_connected=True, sink_connected=True)

    worker = EventIngestWorker(
        config,
        store,
        sink,
        metrics=metrics,
        health_server=health_server,
        instance_id=os.getenv("INSTANCE_ID"),
    )

    shutdown_event = asyncio.Event()

    def _force_cancel() -> None:
        for task in asyncio.all_tasks():
            task.cancel()

    setup_shutdown_signal_handlers(shutdown_event.set, _force_cancel)

    worker_task = asyncio.create_task(worker.start(), name=EventIngestWorker.WORKER_NAME)
    shutdown_wait = asyncio.create_task(shutdown_event.wait(), name="shutdown-wait")

    exit_code = 0
    try:
        await asyncio.wait({worker_task, shutdown_wait}, return_when=asyncio.FIRST_COMPLETED)

        if worker_task.done() and not worker_task.cancelled() and worker_task.exception():
            error = worker_task.exception()
            logger.error(
                "Worker failed",
                extra={"error": str(error)},
                exc_info=(type(error), error, error.__traceback__),
            )
            health_server.set_error(f"Fatal error: {error}")
            exit_code = 1
    finally:
        shutdown_wait.cancel()
        await worker.stop()
        if not worker_task.done():
            # stop() closed the consumer; the fetch loop exits on its own
            await asyncio.gather(worker_task, return_exceptions=True)
        await health_server.stop()

    return exit_code


def main(argv: list[str] | None = None) -> int:
    global logger

    load_dotenv(PROJECT_ROOT / ".env")
    args = parse_args(argv)

    try:
        config = load_config(config_path=args.config, overrides=build_overrides(args))
    except (FileNotFoundError, ValueError) as e:
        print(f"✗ Configuration error: {e}", file=sys.stderr)
        return 1

    _setup_logging(args, config)
    logger = logging.getLogger(__name__)

    log_startup_banner(
        logger,
        "Event Ingester",
        version=__version__,
        domain=config.domain,
        input_topic=config.topic,
        consumer_group=config.group_id,
        database=config.redacted_database_url(),
        dead_letter=f"{config.redis_url.split('@')[-1]} ({config.dlq_key_prefix}:{config.topic})",
        health_port=config.health_port,
        metrics_port=config.metrics_port,
    )

    try:
        return asyncio.run(run(config))
    except KeyboardInterrupt:
        logger.info("Keyboard interrupt received, shutting down...")
        return 130
    except asyncio.CancelledError:
        logger.warning("Tasks cancelled, shutting down...")
        return 130
    finally:
        logger.info("Ingestion shutdown complete")


if __name__ == "__main__":
    sys.exit(main())
