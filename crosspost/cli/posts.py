"""
Post CLI commands.

  crosspost posts submit --user U --account A [--account B] --content … [--media URL] [--at ISO]
  crosspost posts show   <post-id>     — per-target detail with failure notices
  crosspost posts list   --user U      — most recent posts
"""

from __future__ import annotations

import mimetypes
from pathlib import Path
from typing import Optional

import typer
from rich import print as rprint
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from config.settings import settings
from crosspost.cli.common import format_dt, open_pipeline
from crosspost.content.models import InlineMedia, UrlMedia
from crosspost.errors import ValidationError, describe_failure

console = Console()
app = typer.Typer(help="Submit and inspect posts.")

_STATUS_EMOJI = {
    "scheduled": "⏳",
    "pending": "⏳",
    "publishing": "⚙️ ",
    "published": "✅",
    "failed": "❌",
}


@app.command()
def submit(
    user: str = typer.Option(..., "--user", "-u", help="Owning user id"),
    account: list[str] = typer.Option(..., "--account", "-a", help="Target account id (repeat)"),
    content: str = typer.Option("", "--content", "-c", help="Post text"),
    media: Optional[list[str]] = typer.Option(None, "--media", help="Public media URL (repeat)"),
    media_file: Optional[list[Path]] = typer.Option(
        None, "--media-file", exists=True, dir_okay=False, help="Local file sent inline (repeat)"
    ),
    at: Optional[str] = typer.Option(None, "--at", help="Schedule time, ISO 8601 (UTC if naive)"),
) -> None:
    """Submit a post to one or more accounts, now or at a scheduled time."""
    refs: list = [UrlMedia(url=u) for u in media or []]
    for path in media_file or []:
        mime = mimetypes.guess_type(path.name)[0] or "application/octet-stream"
        refs.append(InlineMedia.from_bytes(path.read_bytes(), mime))

    with open_pipeline() as pipeline:
        try:
            receipt = pipeline.composer().submit(user, account, content, refs, at)
        except ValidationError as exc:
            rprint(f"[red]Rejected:[/red] {exc}")
            raise typer.Exit(1) from exc

    when = format_dt(receipt.scheduled_for) if receipt.scheduled_for else "now"
    rprint(
        f"[green]✓ Post {receipt.post_id}[/green] → {receipt.target_count} account(s), "
        f"{receipt.media_count} media, publishing {when} "
        f"[dim]({receipt.status.value})[/dim]"
    )


@app.command()
def show(post_id: str = typer.Argument(..., help="Post id")) -> None:
    """Show a post and the outcome on every target account."""
    with open_pipeline() as pipeline:
        post = pipeline.store.get_post(post_id)
        if post is None:
            rprint(f"[red]Post not found:[/red] {post_id}")
            raise typer.Exit(1)
        targets = pipeline.store.list_targets(post_id)
        accounts = {a.id: a for a in pipeline.store.get_accounts([t.social_account_id for t in targets])}

    console.print(
        Panel(
            post.content or "[dim](no text)[/dim]",
            title=f"[bold]{post.id}[/bold]  {_STATUS_EMOJI.get(post.status.value, '')} {post.status.value}",
            subtitle=f"[dim]scheduled {format_dt(post.scheduled_for)} · {len(post.media_urls)} media URL(s)[/dim]",
            border_style="cyan",
            expand=False,
        )
    )

    table = Table(show_lines=True)
    table.add_column("Account")
    table.add_column("Status")
    table.add_column("Platform post")
    table.add_column("Detail", overflow="fold")
    for target in targets:
        acct = accounts.get(target.social_account_id)
        label = f"{acct.platform.value} @{acct.platform_username}" if acct else target.social_account_id
        detail = ""
        if target.error_message:
            notice = describe_failure(target.error_message, settings.rate_limit_cooldown_minutes)
            detail = f"[bold]{notice.title}[/bold]: {notice.detail}"
        elif target.published_at:
            detail = f"published {format_dt(target.published_at)}"
        table.add_row(
            label,
            f"{_STATUS_EMOJI.get(target.status.value, '')} {target.status.value}",
            target.platform_post_id or "—",
            detail,
        )
    console.print(table)


@app.command("list")
def list_posts(
    user: str = typer.Option(..., "--user", "-u", help="Owning user id"),
    limit: int = typer.Option(20, "--limit", "-n", min=1),
) -> None:
    """List a user's most recent posts."""
    with open_pipeline() as pipeline:
        posts = pipeline.store.list_posts(user, limit=limit)

    if not posts:
        rprint("[dim]No posts.[/dim]")
        return

    table = Table(title=f"Posts for {user}")
    table.add_column("ID", style="dim")
    table.add_column("Status")
    table.add_column("Scheduled")
    table.add_column("Content", overflow="ellipsis", max_width=50)
    for post in posts:
        table.add_row(
            post.id,
            f"{_STATUS_EMOJI.get(post.status.value, '')} {post.status.value}",
            format_dt(post.scheduled_for),
            post.content,
        )
    console.print(table)
