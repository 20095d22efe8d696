"""
Main CLI entry point.
Usage: crosspost [COMMAND]
"""

import logging

import typer
from rich.console import Console
from rich.logging import RichHandler

from config.settings import settings
from crosspost.cli.accounts import app as accounts_app
from crosspost.cli.posts import app as posts_app
from crosspost.cli.queue import app as queue_app
from crosspost.cli.worker import app as worker_app

app = typer.Typer(
    name="crosspost",
    help="📣 Publish one post to Twitter, Instagram, TikTok and LinkedIn",
    no_args_is_help=True,
    rich_markup_mode="rich",
    pretty_exceptions_show_locals=False,
)

console = Console()


@app.callback()
def main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging"),
) -> None:
    """Configure logging for every command."""
    logging.basicConfig(
        level="DEBUG" if verbose else settings.log_level.upper(),
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, rich_tracebacks=True, show_path=False)],
        force=True,
    )
    logging.getLogger("httpx").setLevel(logging.WARNING)


# Register sub-apps
app.add_typer(worker_app, name="worker", help="⚙️  Run the publish worker")
app.add_typer(queue_app, name="queue", help="📋 Inspect and clean the job queue")
app.add_typer(posts_app, name="posts", help="✍️  Submit and inspect posts")
app.add_typer(accounts_app, name="accounts", help="🔑 Manage connected accounts")


if __name__ == "__main__":
    app()
