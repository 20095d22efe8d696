"""
Worker side-channel HTTP server.

  GET /health   → status, broker connectivity, queue counts, worker metrics
                  (503 when unhealthy, "degraded" above the failed-job threshold)
  GET /ready    → {"ready": true}
  GET /metrics  → Prometheus text exposition

Served by uvicorn on a daemon thread inside the worker process.
"""

from __future__ import annotations

import datetime as dt
import logging
import threading
from typing import Optional

import uvicorn
from fastapi import FastAPI, Response
from fastapi.responses import JSONResponse
from prometheus_client import CONTENT_TYPE_LATEST, CollectorRegistry, generate_latest
from prometheus_client.core import CounterMetricFamily, GaugeMetricFamily

from crosspost.queue.broker import JobQueue
from crosspost.queue.worker import WorkerMetrics

logger = logging.getLogger(__name__)


class WorkerCollector:
    """Reads worker counters and queue counts at scrape time."""

    def __init__(self, queue: JobQueue, metrics: WorkerMetrics) -> None:
        self.queue = queue
        self.metrics = metrics

    def collect(self):
        snapshot = self.metrics.snapshot()
        yield CounterMetricFamily(
            "worker_jobs_processed",
            "Total number of jobs processed",
            value=snapshot["jobsProcessed"],
        )
        yield CounterMetricFamily(
            "worker_jobs_failed",
            "Total number of jobs failed",
            value=snapshot["jobsFailed"],
        )
        counts = self.queue.counts()
        for state in ("waiting", "active", "failed", "completed", "delayed"):
            yield GaugeMetricFamily(
                f"worker_queue_{state}",
                f"Number of jobs {state}",
                value=counts.get(state, 0),
            )
        yield GaugeMetricFamily(
            "worker_uptime_seconds", "Worker uptime in seconds", value=self.metrics.uptime
        )


def health_report(
    queue: JobQueue, metrics: WorkerMetrics, degraded_threshold: int = 10
) -> dict:
    connected = queue.ping()
    link = "connected" if connected else "disconnected"
    report: dict = {
        "status": "healthy",
        "timestamp": dt.datetime.now(dt.timezone.utc).isoformat(),
        "uptime": metrics.uptime,
        # monitors read "redis"; "broker" carries the same value
        "redis": link,
        "broker": link,
        "queue": {"waiting": 0, "active": 0, "failed": 0, "delayed": 0},
        "worker": metrics.snapshot(),
    }
    if not connected:
        report["status"] = "unhealthy"
        return report

    counts = queue.counts()
    report["queue"] = {k: counts.get(k, 0) for k in report["queue"]}
    if counts.get("failed", 0) > degraded_threshold:
        report["status"] = "degraded"
    return report


def create_health_app(
    queue: JobQueue, metrics: WorkerMetrics, degraded_threshold: int = 10
) -> FastAPI:
    app = FastAPI(title="crosspost worker", docs_url=None, redoc_url=None, openapi_url=None)
    registry = CollectorRegistry()
    registry.register(WorkerCollector(queue, metrics))

    @app.get("/health")
    def health() -> JSONResponse:
        try:
            report = health_report(queue, metrics, degraded_threshold)
        except Exception as exc:
            logger.exception("Health check failed")
            return JSONResponse({"status": "unhealthy", "error": str(exc)}, status_code=503)
        code = 503 if report["status"] == "unhealthy" else 200
        return JSONResponse(report, status_code=code)

    @app.get("/ready")
    def ready() -> dict:
        return {"ready": True}

    @app.get("/metrics")
    def prometheus_metrics() -> Response:
        return Response(generate_latest(registry), media_type=CONTENT_TYPE_LATEST)

    return app


class HealthServer:
    """Runs the health app with uvicorn on a background thread."""

    def __init__(self, app: FastAPI, host: str = "0.0.0.0", port: int = 3001) -> None:
        self.host = host
        self.port = port
        config = uvicorn.Config(app, host=host, port=port, log_level="warning")
        self._server = uvicorn.Server(config)
        self._thread: Optional[threading.Thread] = None

    def start(self) -> None:
        self._thread = threading.Thread(
            target=self._server.run, name="health-server", daemon=True
        )
        self._thread.start()
        logger.info("Health server listening on %s:%d (/health, /ready, /metrics)", self.host, self.port)

    def stop(self, timeout: float = 5.0) -> None:
        self._server.should_exit = True
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None
