"""
Worker CLI commands.

  crosspost worker start [--concurrency N] [--rate-max N] [--rate-duration MS] [--no-health]
  crosspost worker drain [--max N]   — process every due job once, then exit
"""

from __future__ import annotations

import logging
import signal
from typing import Optional

import typer
from rich import print as rprint

from config.settings import settings
from crosspost.cli.common import open_pipeline
from crosspost.health.server import HealthServer, create_health_app

logger = logging.getLogger(__name__)

app = typer.Typer(help="Run the publish worker.")


@app.command()
def start(
    concurrency: Optional[int] = typer.Option(
        None, "--concurrency", "-c", min=1, help="Concurrent jobs (default: WORKER_CONCURRENCY)"
    ),
    rate_max: Optional[int] = typer.Option(
        None, "--rate-max", min=1, help="Job starts allowed per window"
    ),
    rate_duration: Optional[int] = typer.Option(
        None, "--rate-duration", min=1, help="Rate-limit window in milliseconds"
    ),
    no_health: bool = typer.Option(False, "--no-health", help="Do not start the health server"),
) -> None:
    """Start the worker and block until SIGINT/SIGTERM."""
    pipeline = open_pipeline()
    worker = pipeline.worker(
        concurrency=concurrency, rate_max=rate_max, rate_duration_ms=rate_duration
    )

    health: Optional[HealthServer] = None
    if not no_health:
        health = HealthServer(
            create_health_app(
                pipeline.queue, pipeline.metrics, settings.degraded_failed_threshold
            ),
            host=settings.health_host,
            port=settings.health_port,
        )
        health.start()

    def _shutdown(signum: int, _frame: object) -> None:
        logger.info("Received %s, shutting down gracefully", signal.Signals(signum).name)
        worker.stop()

    signal.signal(signal.SIGINT, _shutdown)
    signal.signal(signal.SIGTERM, _shutdown)

    rprint(
        f"[green]Worker running[/green] — concurrency {worker.concurrency}, "
        f"queue [bold]{pipeline.queue.name}[/bold]"
    )
    try:
        worker.run()
    finally:
        if health is not None:
            health.stop()
        pipeline.close()
    rprint("[dim]Worker stopped.[/dim]")


@app.command()
def drain(
    max_jobs: Optional[int] = typer.Option(None, "--max", min=1, help="Stop after N jobs"),
) -> None:
    """Process every job that is currently due, then exit."""
    with open_pipeline() as pipeline:
        handled = pipeline.worker().drain(max_jobs)
    rprint(f"[green]Processed {handled} job(s).[/green]")
