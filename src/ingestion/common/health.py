"""
Health check endpoints for the event ingester.

Provides Kubernetes-compatible health check endpoints:
- /health/live - Liveness probe (is the event loop responsive?)
- /health/ready - Readiness probe (store, sink and partitions all in place?)

Usage:
    from ingestion.common.health import HealthCheckServer

    health = HealthCheckServer(port=8080, worker_name="event-ingester")
    await health.start()

    health.set_ready(store_connected=True, sink_connected=True)
    health.set_partitions_assigned(3)

    await health.stop()

The server runs in its own thread with its own event loop so probes are
answered even while the worker's loop is busy.
"""

import asyncio
import logging
import threading
import time
from datetime import UTC, datetime

from aiohttp import web

logger = logging.getLogger(__name__)


class HealthCheckServer:
    """
    HTTP server for Kubernetes health check endpoints.

    Liveness Check:
        200 while the worker's heartbeat is fresh, 503 once it goes stale.

    Readiness Check:
        200 only when the store and the dead-letter sink are connected and
        at least one partition is assigned. 503 otherwise, with reasons.
        In error mode (fatal startup failure) returns 200 with status
        "error" so the deployment completes and the error stays visible.
    """

    def __init__(
        self,
        port: int | None = 8080,
        worker_name: str = "worker",
        enabled: bool = True,
        heartbeat_timeout_seconds: float = 60.0,
    ):
        """
        Args:
            port: HTTP port to listen on. 0 for dynamic assignment, None to disable.
            worker_name: Name of the worker for logging
            enabled: If False, start() and stop() become no-ops.
            heartbeat_timeout_seconds: Max seconds since last heartbeat before
                liveness returns 503. 0 disables heartbeat checking.
        """
        self.port = port
        self.worker_name = worker_name
        self._enabled = enabled and port is not None
        self._ready = False
        self._store_connected = False
        self._sink_connected = False
        self._assigned_partitions = 0
        self._started_at = datetime.now(UTC)
        self._actual_port: int | None = None
        self._error_message: str | None = None

        self._heartbeat_timeout_seconds = heartbeat_timeout_seconds
        self._last_heartbeat: float | None = None

        self._app: web.Application | None = None
        self._runner: web.AppRunner | None = None
        self._site: web.TCPSite | None = None

        self._thread: threading.Thread | None = None
        self._thread_loop: asyncio.AbstractEventLoop | None = None
        self._thread_ready = threading.Event()
        self._server_started = threading.Event()
        self._shutdown_event = threading.Event()
        self._state_lock = threading.Lock()

        if self._enabled:
            logger.info(
                f"Initialized HealthCheckServer for {worker_name}",
                extra={"port": port, "worker_name": worker_name},
            )
        else:
            logger.info(
                f"HealthCheckServer disabled for {worker_name}",
                extra={"worker_name": worker_name},
            )

    def _recompute_ready(self) -> None:
        # Caller holds _state_lock
        old_ready = self._ready
        self._ready = (
            self._error_message is None
            and self._store_connected
            and self._sink_connected
            and self._assigned_partitions > 0
        )
        if old_ready != self._ready:
            logger.info(
                f"Readiness status changed: {old_ready} -> {self._ready}",
                extra={
                    "worker_name": self.worker_name,
                    "store_connected": self._store_connected,
                    "sink_connected": self._sink_connected,
                    "assigned_partitions": self._assigned_partitions,
                },
            )

    def set_ready(self, store_connected: bool, sink_connected: bool) -> None:
        """Update dependency connectivity."""
        with self._state_lock:
            self._store_connected = store_connected
            self._sink_connected = sink_connected
            self._recompute_ready()

    def set_partitions_assigned(self, count: int) -> None:
        """Update the number of partitions currently owned by this worker."""
        with self._state_lock:
            self._assigned_partitions = count
            self._recompute_ready()

    def set_error(self, error_message: str) -> None:
        """
        Set an error state that prevents readiness.

        Used for fatal startup failures (store or sink unreachable).
        """
        with self._state_lock:
            self._error_message = error_message
            self._ready = False
            logger.error(
                f"Health check error state set: {error_message}",
                extra={"worker_name": self.worker_name, "error": error_message},
            )

    def clear_error(self) -> None:
        with self._state_lock:
            if self._error_message:
                logger.info(
                    "Health check error state cleared",
                    extra={"worker_name": self.worker_name},
                )
            self._error_message = None
            self._recompute_ready()

    @property
    def error_message(self) -> str | None:
        with self._state_lock:
            return self._error_message

    def record_heartbeat(self) -> None:
        """Record a heartbeat from the worker's event loop."""
        with self._state_lock:
            self._last_heartbeat = time.monotonic()

    async def handle_liveness(self, request: web.Request) -> web.Response:
        """Handle GET /health/live."""
        with self._state_lock:
            started_at = self._started_at
            last_hb = self._last_heartbeat
            hb_timeout = self._heartbeat_timeout_seconds

        uptime_seconds = (datetime.now(UTC) - started_at).total_seconds()

        if hb_timeout > 0 and last_hb is not None:
            staleness = time.monotonic() - last_hb
            if staleness > hb_timeout:
                logger.warning(
                    "Liveness check failed: event loop heartbeat stale",
                    extra={
                        "worker_name": self.worker_name,
                        "staleness_seconds": round(staleness, 1),
                        "timeout_seconds": hb_timeout,
                    },
                )
                return web.json_response(
                    {
                        "status": "unhealthy",
                        "reason": "event_loop_stale",
                        "worker": self.worker_name,
                        "heartbeat_staleness_seconds": round(staleness, 1),
                        "heartbeat_timeout_seconds": hb_timeout,
                        "uptime_seconds": int(uptime_seconds),
                        "timestamp": datetime.now(UTC).isoformat(),
                    },
                    status=503,
                )

        return web.json_response(
            {
                "status": "alive",
                "worker": self.worker_name,
                "uptime_seconds": int(uptime_seconds),
                "timestamp": datetime.now(UTC).isoformat(),
            },
            status=200,
        )

    async def handle_readiness(self, request: web.Request) -> web.Response:
        """Handle GET /health/ready."""
        with self._state_lock:
            error_message = self._error_message
            ready = self._ready
            checks = {
                "store_connected": self._store_connected,
                "sink_connected": self._sink_connected,
                "partitions_assigned": self._assigned_partitions,
            }

        if error_message:
            return web.json_response(
                {
                    "status": "error",
                    "worker": self.worker_name,
                    "error": error_message,
                    "reasons": ["startup_error"],
                    "timestamp": datetime.now(UTC).isoformat(),
                },
                status=200,
            )

        if ready:
            return web.json_response(
                {
                    "status": "ready",
                    "worker": self.worker_name,
                    "checks": checks,
                    "timestamp": datetime.now(UTC).isoformat(),
                },
                status=200,
            )

        reasons = []
        if not checks["store_connected"]:
            reasons.append("store_disconnected")
        if not checks["sink_connected"]:
            reasons.append("sink_disconnected")
        if not checks["partitions_assigned"]:
            reasons.append("no_partitions_assigned")

        return web.json_response(
            {
                "status": "not_ready",
                "worker": self.worker_name,
                "reasons": reasons,
                "checks": checks,
                "timestamp": datetime.now(UTC).isoformat(),
            },
            status=503,
        )

    def create_app(self) -> web.Application:
        """Create aiohttp application with health endpoints."""
        app = web.Application()
        app.router.add_get("/health/live", self.handle_liveness)
        app.router.add_get("/health/ready", self.handle_readiness)
        return app

    def _run_server_thread(self) -> None:
        try:
            loop = asyncio.new_event_loop()
            asyncio.set_event_loop(loop)
            self._thread_loop = loop
            self._thread_ready.set()
            loop.run_until_complete(self._start_server_async())
        except Exception as e:
            logger.error(
                f"Health server thread error: {e}",
                extra={"worker_name": self.worker_name},
                exc_info=True,
            )
        finally:
            if self._thread_loop:
                self._thread_loop.close()

    async def _start_server_async(self) -> None:
        try:
            if await self._try_start_on_port(self.port):
                pass
            elif self.port != 0 and await self._try_start_on_port(0):
                logger.warning(
                    f"Port {self.port} in use, falling back to dynamic port assignment",
                    extra={"worker_name": self.worker_name, "original_port": self.port},
                )
            else:
                logger.warning(
                    "Could not start health check server",
                    extra={"worker_name": self.worker_name},
                )
                # Unblock start() even on failure
                self._server_started.set()
                return

            logger.info(
                "Health check server started",
                extra={
                    "worker_name": self.worker_name,
                    "port": self._actual_port,
                    "liveness_endpoint": f"http://localhost:{self._actual_port}/health/live",
                    "readiness_endpoint": f"http://localhost:{self._actual_port}/health/ready",
                },
            )
            self._server_started.set()

            while not self._shutdown_event.is_set():
                await asyncio.sleep(0.5)

        finally:
            if self._runner:
                await self._runner.cleanup()

    async def _try_start_on_port(self, port: int) -> bool:
        """Returns True if bound, False if the port is in use."""
        try:
            self._app = self.create_app()
            self._runner = web.AppRunner(self._app)
            await self._runner.setup()
            self._site = web.TCPSite(self._runner, "0.0.0.0", port, reuse_address=True)
            await self._site.start()

            if self._site._server and self._site._server.sockets:
                self._actual_port = self._site._server.sockets[0].getsockname()[1]
            else:
                self._actual_port = port

            return True
        except OSError as e:
            # errno 98 (Linux) or 10048 (Windows)
            if e.errno in (98, 10048):
                if self._runner:
                    await self._runner.cleanup()
                    self._runner = None
                    self._site = None
                    self._app = None
                return False
            raise

    async def start(self) -> None:
        """
        Start the health check HTTP server in a dedicated thread.

        Falls back to a dynamic port if the configured one is taken. Startup
        failures are logged and the worker continues without health checks.
        """
        if not self._enabled:
            logger.debug(
                "Health check server is disabled, skipping start",
                extra={"worker_name": self.worker_name},
            )
            return

        if self._thread is not None and self._thread.is_alive():
            return

        try:
            self._thread = threading.Thread(
                target=self._run_server_thread,
                name=f"health-server-{self.worker_name}",
                daemon=True,
            )
            self._thread.start()

            if not self._thread_ready.wait(timeout=5.0):
                logger.error(
                    "Health server thread failed to start",
                    extra={"worker_name": self.worker_name},
                )
                self._enabled = False
                return

            if not self._server_started.wait(timeout=5.0):
                logger.error(
                    "Health server failed to start listening",
                    extra={"worker_name": self.worker_name},
                )
                self._enabled = False
                return

        except Exception as e:
            logger.error(
                f"Failed to start health check server: {e}",
                extra={"worker_name": self.worker_name, "port": self.port},
                exc_info=True,
            )
            logger.warning(
                "Continuing without health checks due to startup error",
                extra={"worker_name": self.worker_name},
            )
            self._enabled = False

    async def stop(self) -> None:
        if not self._enabled or not self._thread:
            return

        try:
            self._shutdown_event.set()
            self._thread.join(timeout=5.0)

            if self._thread.is_alive():
                logger.warning(
                    "Health server thread did not stop cleanly",
                    extra={"worker_name": self.worker_name},
                )
            else:
                logger.info(
                    "Health check server stopped",
                    extra={"worker_name": self.worker_name},
                )

            self._actual_port = None
            self._thread_ready.clear()
            self._server_started.clear()
            self._shutdown_event.clear()

        except Exception as e:
            logger.error(
                f"Error stopping health check server: {e}",
                extra={"worker_name": self.worker_name},
                exc_info=True,
            )

    @property
    def is_ready(self) -> bool:
        with self._state_lock:
            return self._ready

    @property
    def actual_port(self) -> int | None:
        return self._actual_port

    @property
    def is_enabled(self) -> bool:
        return self._enabled


__all__ = ["HealthCheckServer"]
