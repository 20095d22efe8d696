"""
Queue CLI commands.

  crosspost queue status                              — counts + first jobs per state
  crosspost queue clean [--state failed] [--grace S]  — delete old jobs
"""

from __future__ import annotations

import typer
from rich import print as rprint
from rich.console import Console
from rich.table import Table

from crosspost.cli.common import format_ts, open_pipeline
from crosspost.queue.models import JobState

console = Console()
app = typer.Typer(help="Inspect and clean the job queue.")

_STATE_COLOR = {
    "waiting": "yellow",
    "delayed": "cyan",
    "active": "blue",
    "completed": "green",
    "failed": "red",
}


@app.command()
def status(
    show: int = typer.Option(5, "--show", "-n", help="Jobs to list per state"),
) -> None:
    """Show job counts and the first failed / waiting / active jobs."""
    with open_pipeline() as pipeline:
        counts = pipeline.queue.counts()
        listings = {
            state: pipeline.queue.list_jobs(state, limit=show)
            for state in (JobState.FAILED, JobState.WAITING, JobState.ACTIVE, JobState.DELAYED)
        }
        queue_name = pipeline.queue.name

    table = Table(title=f"Queue: {queue_name}", show_lines=False)
    table.add_column("State")
    table.add_column("Jobs", justify="right")
    for state in JobState:
        color = _STATE_COLOR[state.value]
        table.add_row(f"[{color}]{state.value}[/{color}]", str(counts.get(state.value, 0)))
    console.print(table)

    for state, jobs in listings.items():
        if not jobs:
            continue
        detail = Table(title=f"{state.value} jobs", title_justify="left")
        detail.add_column("Job ID", style="dim")
        detail.add_column("Attempts", justify="right")
        detail.add_column("Due")
        detail.add_column("Reason", overflow="fold")
        for job in jobs:
            detail.add_row(
                job.id,
                f"{job.attempts_made}/{job.max_attempts}",
                format_ts(job.run_at),
                job.failed_reason or "",
            )
        console.print(detail)


@app.command()
def clean(
    state: JobState = typer.Option(JobState.FAILED, "--state", "-s", help="State to clean"),
    grace: float = typer.Option(0.0, "--grace", help="Keep jobs younger than this (seconds)"),
) -> None:
    """Delete jobs in a state that are older than the grace period."""
    if state is JobState.ACTIVE:
        rprint("[red]Active jobs cannot be cleaned.[/red]")
        raise typer.Exit(1)
    with open_pipeline() as pipeline:
        removed = pipeline.queue.clean(state, grace)
    rprint(f"[green]Removed {removed} {state.value} job(s).[/green]")
