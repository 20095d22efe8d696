"""
Account CLI commands.

  crosspost accounts add --user U --platform twitter --platform-user-id … --access-token …
  crosspost accounts list [--user U]
  crosspost accounts deactivate <account-id>

``add`` stands in for the platform OAuth connect flows: it stores a token
set obtained elsewhere, encrypted with TOKEN_ENCRYPTION_KEY.
"""

from __future__ import annotations

import datetime as dt
from typing import Optional

import typer
from rich import print as rprint
from rich.console import Console
from rich.table import Table

from crosspost.cli.common import format_dt, open_pipeline
from crosspost.content.models import Platform, SocialAccount

console = Console()
app = typer.Typer(help="Manage connected social accounts.")


@app.command()
def add(
    user: str = typer.Option(..., "--user", "-u", help="Owning user id"),
    platform: Platform = typer.Option(..., "--platform", "-p"),
    platform_user_id: str = typer.Option(..., "--platform-user-id"),
    username: str = typer.Option(..., "--username"),
    access_token: str = typer.Option(..., "--access-token", prompt=True, hide_input=True),
    refresh_token: Optional[str] = typer.Option(None, "--refresh-token"),
    expires_in: Optional[int] = typer.Option(
        None, "--expires-in", help="Access token lifetime in seconds"
    ),
    oauth1_token: Optional[str] = typer.Option(None, "--oauth1-token", help="Twitter OAuth 1.0a token"),
    oauth1_secret: Optional[str] = typer.Option(None, "--oauth1-secret", help="Twitter OAuth 1.0a secret"),
) -> None:
    """Store an encrypted credential set for one platform identity."""
    with open_pipeline() as pipeline:
        cipher = pipeline.cipher
        expires_at = (
            dt.datetime.now(dt.timezone.utc) + dt.timedelta(seconds=expires_in)
            if expires_in
            else None
        )
        account = SocialAccount(
            user_id=user,
            platform=platform,
            platform_user_id=platform_user_id,
            platform_username=username,
            access_token=cipher.encrypt(access_token),
            refresh_token=cipher.encrypt(refresh_token) if refresh_token else None,
            token_expires_at=expires_at,
            oauth1_access_token=cipher.encrypt(oauth1_token) if oauth1_token else None,
            oauth1_access_token_secret=cipher.encrypt(oauth1_secret) if oauth1_secret else None,
        )
        pipeline.store.save_account(account)
    rprint(f"[green]✓ Account {account.id}[/green] ({platform.value} @{username})")


@app.command("list")
def list_accounts(
    user: Optional[str] = typer.Option(None, "--user", "-u", help="Filter by owner"),
) -> None:
    """List connected accounts."""
    with open_pipeline() as pipeline:
        accounts = pipeline.store.list_accounts(user)

    if not accounts:
        rprint("[dim]No accounts.[/dim]")
        return

    table = Table(title="Connected accounts")
    table.add_column("ID", style="dim")
    table.add_column("User")
    table.add_column("Platform")
    table.add_column("Username")
    table.add_column("Active")
    table.add_column("Token expires")
    for acct in accounts:
        table.add_row(
            acct.id,
            acct.user_id,
            acct.platform.value,
            f"@{acct.platform_username}",
            "✅" if acct.is_active else "❌",
            format_dt(acct.token_expires_at),
        )
    console.print(table)


@app.command()
def deactivate(account_id: str = typer.Argument(..., help="Account id")) -> None:
    """Stop publishing to an account until it is reconnected."""
    with open_pipeline() as pipeline:
        if pipeline.store.get_account(account_id) is None:
            rprint(f"[red]Account not found:[/red] {account_id}")
            raise typer.Exit(1)
        pipeline.store.deactivate_account(account_id)
    rprint(f"[yellow]Account {account_id} deactivated.[/yellow]")
