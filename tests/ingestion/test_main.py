"""Tests for the event-ingester entrypoint."""

import asyncio
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from config.config import IngestConfig
from core.errors.exceptions import PersistenceError
from ingestion import __main__ as entrypoint


class TestParseArgs:

    def test_defaults(self):
        args = entrypoint.parse_args([])

        assert args.config is None
        assert args.log_level == "INFO"
        assert args.log_to_stdout is False
        assert entrypoint.build_overrides(args) == {}

    def test_overrides_mapped_onto_config_sections(self):
        args = entrypoint.parse_args(
            [
                "--metrics-port", "9100",
                "--health-port", "0",
                "--log-dir", "/var/log/ingest",
                "--timestamp-policy", "fail",
            ]
        )

        assert entrypoint.build_overrides(args) == {
            "observability": {"metrics_port": 9100, "health_port": 0},
            "logging": {"log_dir": "/var/log/ingest"},
            "processing": {"timestamp_policy": "fail"},
        }

    def test_invalid_timestamp_policy_rejected(self):
        with pytest.raises(SystemExit):
            entrypoint.parse_args(["--timestamp-policy", "ignore"])


class TestMain:

    def test_missing_config_exits_1(self, tmp_path, capsys):
        code = entrypoint.main(["--config", str(tmp_path / "missing.yaml")])

        assert code == 1
        assert "Configuration error" in capsys.readouterr().err


class TestRun:

    @pytest.fixture
    def config(self):
        return IngestConfig(database_url="sqlite+aiosqlite:///:memory:", health_port=0, metrics_port=0)

    async def test_unreachable_store_sets_health_error_and_exits_1(self, config):
        health = MagicMock(start=AsyncMock(), stop=AsyncMock())
        store = MagicMock(connect=AsyncMock(side_effect=PersistenceError("Database unreachable")), close=AsyncMock())
        sink = MagicMock(connect=AsyncMock(), close=AsyncMock())

        with patch.object(entrypoint, "HealthCheckServer", return_value=health), patch.object(
            entrypoint, "PrometheusMetrics"
        ), patch.object(entrypoint, "start_metrics_server", return_value=0), patch.object(
            entrypoint.EntityStore, "from_config", return_value=store
        ), patch.object(
            entrypoint.RedisDeadLetterSink, "from_config", return_value=sink
        ), patch.object(
            entrypoint, "EventIngestWorker"
        ) as worker_cls:
            code = await entrypoint.run(config)

        assert code == 1
        assert "Database unreachable" in health.set_error.call_args.args[0]
        store.close.assert_awaited_once()
        sink.close.assert_awaited_once()
        health.stop.assert_awaited_once()
        worker_cls.assert_not_called()

    async def test_worker_failure_exits_1(self, config):
        health = MagicMock(start=AsyncMock(), stop=AsyncMock())
        store = MagicMock(connect=AsyncMock(), close=AsyncMock())
        sink = MagicMock(connect=AsyncMock(), close=AsyncMock())
        worker = MagicMock(start=AsyncMock(side_effect=RuntimeError("consumer crashed")), stop=AsyncMock())

        with patch.object(entrypoint, "HealthCheckServer", return_value=health), patch.object(
            entrypoint, "PrometheusMetrics"
        ), patch.object(entrypoint, "start_metrics_server", return_value=0), patch.object(
            entrypoint.EntityStore, "from_config", return_value=store
        ), patch.object(
            entrypoint.RedisDeadLetterSink, "from_config", return_value=sink
        ), patch.object(
            entrypoint, "EventIngestWorker", return_value=worker
        ), patch.object(
            entrypoint, "setup_shutdown_signal_handlers"
        ):
            code = await entrypoint.run(config)

        assert code == 1
        health.set_ready.assert_called_once_with(store_connected=True, sink_connected=True)
        assert "consumer crashed" in health.set_error.call_args.args[0]
        worker.stop.assert_awaited_once()

    async def test_shutdown_signal_stops_worker(self, config):
        health = MagicMock(start=AsyncMock(), stop=AsyncMock())
        store = MagicMock(connect=AsyncMock(), close=AsyncMock())
        sink = MagicMock(connect=AsyncMock(), close=AsyncMock())
        stopped = []

        async def consume_forever():
            while not stopped:
                await asyncio.sleep(0.005)

        async def stop():
            stopped.append(True)

        worker = MagicMock(start=consume_forever, stop=AsyncMock(side_effect=stop))

        def fake_signals(on_shutdown, on_force):
            # Deliver the shutdown signal right away
            on_shutdown()

        with patch.object(entrypoint, "HealthCheckServer", return_value=health), patch.object(
            entrypoint, "PrometheusMetrics"
        ), patch.object(entrypoint, "start_metrics_server", return_value=0), patch.object(
            entrypoint.EntityStore, "from_config", return_value=store
        ), patch.object(
            entrypoint.RedisDeadLetterSink, "from_config", return_value=sink
        ), patch.object(
            entrypoint, "EventIngestWorker", return_value=worker
        ), patch.object(
            entrypoint, "setup_shutdown_signal_handlers", side_effect=fake_signals
        ):
            code = await entrypoint.run(config)

        assert code == 0
        worker.stop.assert_awaited_once()
        health.set_error.assert_not_called()
        health.stop.assert_awaited_once()
