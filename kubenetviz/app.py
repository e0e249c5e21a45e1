"""Application bootstrap for kubenetviz.

Wires all components in dependency order and manages the asyncio lifecycle.
Startup order: config → logging → store → aggregator → detector → ingestor
              → notifications → background loops → REST

Shutdown is fully graceful: components are stopped in reverse startup order.
Each component's stop error is caught and logged independently so that a
single component failure does not prevent the rest from shutting down cleanly.
"""

from __future__ import annotations

import asyncio
import signal
from datetime import timedelta
from typing import TYPE_CHECKING

from kubenetviz.config import load_config, parse_duration
from kubenetviz.flows.aggregator import FlowAggregator
from kubenetviz.flows.ingest import FlowIngestor
from kubenetviz.graph.store import TopologyStore
from kubenetviz.models.config import KubeNetVizConfig
from kubenetviz.observability.logging import get_logger, setup_logging
from kubenetviz.scheduler import PeriodicTask
from kubenetviz.scout.detector import AnomalyDetector

if TYPE_CHECKING:
    import structlog

    from kubenetviz.notifications.manager import NotificationDispatcher

_SHUTDOWN_GRACE_SECONDS = 15


class _ComponentError(Exception):
    """Raised when a mandatory component fails to start."""

    def __init__(self, component: str, cause: Exception) -> None:
        super().__init__(f"Component '{component}' failed to start: {cause}")
        self.component = component
        self.cause = cause


class KubeNetVizApp:
    """Application root.  Owns every component and coordinates their lifecycle.

    ``stop()`` is safe to call on an app that was never started or has
    already stopped.

    Args:
        config: Optional pre-built configuration; loaded from the
                environment when omitted.
        serve_api: Set False to skip the REST server regardless of config
                (used by tests).
    """

    def __init__(self, config: KubeNetVizConfig | None = None, serve_api: bool = True) -> None:
        self.config: KubeNetVizConfig | None = config
        self._serve_api = serve_api

        self.store: TopologyStore | None = None
        self.aggregator: FlowAggregator | None = None
        self.detector: AnomalyDetector | None = None
        self.ingestor: FlowIngestor | None = None
        self.notifications: NotificationDispatcher | None = None
        self._rest_server: object | None = None

        self._periodic: list[PeriodicTask] = []
        self._background_tasks: list[asyncio.Task[None]] = []

        self._running = False
        self._log: structlog.stdlib.BoundLogger | None = None

    @property
    def running(self) -> bool:
        return self._running

    # ------------------------------------------------------------------
    # Startup
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Start all components in dependency order.

        Raises _ComponentError if a mandatory component cannot start.
        The caller (main()) turns this into a non-zero exit.
        """
        # --- 1. Configuration -------------------------------------------
        if self.config is None:
            self.config = load_config()

        # --- 2. Logging -------------------------------------------------
        setup_logging(self.config.log.level, cluster_id=self.config.cluster_id)
        self._log = get_logger("app")
        self._log.info("kubenetviz starting", version=_kubenetviz_version())

        # --- 3. Core: store, aggregator, detector -------------------------
        self._start_core()

        # --- 4. Flow ingestor -------------------------------------------
        self._start_ingestor()

        # --- 5. Notification dispatcher (optional) ----------------------
        self._start_notifications()

        # --- 6. Sweep and detection loops --------------------------------
        self._start_periodic()

        # --- 7. REST API (optional) -------------------------------------
        await self._start_rest()

        self._running = True
        self._log.info("kubenetviz started", port=self.config.api.port)

    # ------------------------------------------------------------------
    # Component startup helpers
    # ------------------------------------------------------------------

    def _start_core(self) -> None:
        assert self._log is not None
        assert self.config is not None
        flows = self.config.flows
        try:
            self.store = TopologyStore()
            self.aggregator = FlowAggregator(
                self.store,
                capacity=flows.buffer_capacity,
                window=timedelta(seconds=flows.aggregation_window_seconds),
                alpha=flows.rate_alpha,
            )
            self.detector = AnomalyDetector.from_config(self.aggregator, self.config.scout)
        except Exception as exc:
            raise _ComponentError("core", exc) from exc
        self._log.info(
            "core started",
            buffer_capacity=flows.buffer_capacity,
            window_seconds=flows.aggregation_window_seconds,
            rules=len(self.detector.rules),
        )

    def _start_ingestor(self) -> None:
        assert self._log is not None
        assert self.config is not None
        assert self.aggregator is not None
        try:
            self.ingestor = FlowIngestor(self.aggregator, maxsize=self.config.flows.ingest_queue_size)
            task = asyncio.create_task(self.ingestor.run(), name="flow-ingestor")
            self._background_tasks.append(task)
        except Exception as exc:
            raise _ComponentError("ingestor", exc) from exc

    def _start_notifications(self) -> None:
        """Build the dispatcher and subscribe it to the detector.

        Notifications are optional: a failure is logged and startup continues.
        """
        assert self._log is not None
        assert self.config is not None
        assert self.detector is not None
        try:
            from kubenetviz.notifications import build_notification_dispatcher

            cooldown = parse_duration(self.config.notifications.cooldown)
            self.notifications = build_notification_dispatcher(self.config.notifications, cooldown=cooldown)
            self.detector.subscribe(self.notifications)
            self._log.info("notifications started", channels=len(self.notifications.channels))
        except Exception as exc:
            self._log.warning("notifications unavailable", error=str(exc))
            self.notifications = None

    def _start_periodic(self) -> None:
        assert self.config is not None
        assert self.aggregator is not None
        assert self.detector is not None
        aggregator = self.aggregator
        detector = self.detector
        self._periodic = [
            PeriodicTask("flow-sweep", self.config.flows.sweep_interval_seconds, lambda: aggregator.sweep()),
            PeriodicTask("anomaly-detection", self.config.scout.tick_seconds, lambda: detector.detect_anomalies()),
        ]
        for periodic in self._periodic:
            periodic.start()

    async def _start_rest(self) -> None:
        """Start the uvicorn REST server.

        The REST surface is optional: a failure is logged and startup continues.
        """
        assert self._log is not None
        assert self.config is not None
        if not (self._serve_api and self.config.api.enabled):
            self._log.info("rest api disabled")
            return
        self._log.debug("starting rest api")
        try:
            import uvicorn

            from kubenetviz.api import build_app

            fastapi_app = build_app(
                store=self.store,
                aggregator=self.aggregator,
                detector=self.detector,
                config=self.config,
            )
            uv_config = uvicorn.Config(
                app=fastapi_app,
                host="0.0.0.0",
                port=self.config.api.port,
                log_config=None,  # structlog handles all logging
                access_log=False,
            )
            server = uvicorn.Server(uv_config)
            task = asyncio.create_task(server.serve(), name="rest-server")
            self._background_tasks.append(task)
            self._rest_server = server
            self._log.info("rest api started", port=self.config.api.port)
        except Exception as exc:
            self._log.warning("rest api unavailable", error=str(exc))

    def reset(self) -> None:
        """Clear topology, flow state and detector state together."""
        if self.aggregator is not None:
            self.aggregator.reset()
        elif self.store is not None:
            self.store.reset()
        if self.detector is not None:
            self.detector.reset()
        (self._log or get_logger("app")).info("kubenetviz state reset")

    # ------------------------------------------------------------------
    # Shutdown
    # ------------------------------------------------------------------

    async def stop(self) -> None:
        """Gracefully stop all components in reverse startup order."""
        if not self._running and self._log is None:
            return

        log = self._log or get_logger("app")
        log.info("kubenetviz shutting down")

        self._running = False

        if self._rest_server is not None:
            self._rest_server.should_exit = True  # type: ignore[attr-defined]

        for periodic in reversed(self._periodic):
            await self._stop_component(periodic.name, periodic)
        self._periodic.clear()

        if self.notifications is not None:
            try:
                await asyncio.wait_for(self.notifications.drain(), timeout=_SHUTDOWN_GRACE_SECONDS)
            except TimeoutError:
                log.warning("notification drain timed out", timeout=_SHUTDOWN_GRACE_SECONDS)

        # Queued flows are still folded in before the ingestor exits.
        await self._stop_component("ingestor", self.ingestor)

        if self._background_tasks:
            _done, pending = await asyncio.wait(self._background_tasks, timeout=_SHUTDOWN_GRACE_SECONDS)
            for task in pending:
                task.cancel()
            await asyncio.gather(*self._background_tasks, return_exceptions=True)
        self._background_tasks.clear()
        self._rest_server = None

        log.info("kubenetviz stopped")

    async def _stop_component(self, name: str, component: object | None) -> None:
        """Call stop() on a component if it has that method, catching all errors."""
        if component is None:
            return
        log = self._log or get_logger("app")
        stop_fn = getattr(component, "stop", None)
        if stop_fn is None:
            return
        try:
            result = stop_fn()
            if asyncio.iscoroutine(result):
                await asyncio.wait_for(result, timeout=_SHUTDOWN_GRACE_SECONDS)
        except TimeoutError:
            log.warning("component stop timed out", component=name, timeout=_SHUTDOWN_GRACE_SECONDS)
        except Exception as exc:
            log.error("component stop raised an error", component=name, error=str(exc))


def _kubenetviz_version() -> str:
    from kubenetviz import __version__

    return __version__


# ---------------------------------------------------------------------------
# Async entrypoint
# ---------------------------------------------------------------------------


async def main() -> None:
    """Create the app, register OS signals, run until shutdown is requested."""
    app = KubeNetVizApp()
    loop = asyncio.get_running_loop()

    shutdown_triggered = False

    def _request_shutdown() -> None:
        nonlocal shutdown_triggered
        if shutdown_triggered:
            return
        shutdown_triggered = True
        asyncio.create_task(app.stop(), name="shutdown")

    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, _request_shutdown)

    try:
        await app.start()
        while app.running:
            await asyncio.sleep(1)
    except _ComponentError as exc:
        log = get_logger("app")
        log.critical(
            "fatal startup error",
            component=exc.component,
            error=str(exc.cause),
        )
        await app.stop()
        raise SystemExit(1) from exc
    finally:
        if app.running:
            await app.stop()
