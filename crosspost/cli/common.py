"""Helpers shared by the CLI command modules."""

from __future__ import annotations

import datetime as dt
from typing import Optional

import typer
from rich import print as rprint

from config.settings import settings
from crosspost.errors import ConfigurationError
from crosspost.runtime import Pipeline


def open_pipeline() -> Pipeline:
    """Open the pipeline or exit with the configuration problem."""
    try:
        return Pipeline.open(settings)
    except ConfigurationError as exc:
        rprint(f"[red]Configuration error:[/red] {exc}")
        raise typer.Exit(1) from exc


def format_dt(value: Optional[dt.datetime]) -> str:
    if value is None:
        return "—"
    return value.strftime("%d/%m/%Y %H:%M")


def format_ts(value: Optional[float]) -> str:
    if value is None:
        return "—"
    return format_dt(dt.datetime.fromtimestamp(value, tz=dt.timezone.utc))
