"""Authentication CLI commands."""

from datetime import datetime, timezone

import click
from rich.console import Console

from mivna.analytics import AnalyticsEvents
from mivna.cli.errors import handle_errors
from mivna.cli.runtime import run_with_client, success
from mivna.client import MivnaClient
from mivna.logging_config import get_logger

logger = get_logger(__name__)
console = Console()


@click.group(name="auth")
def auth_group():
    """Authentication and account commands."""
    pass


@auth_group.command()
@click.option("--no-browser", is_flag=True, help="Print the sign-in URL instead of opening a browser")
@click.pass_context
@handle_errors()
def login(ctx: click.Context, no_browser: bool):
    """Sign in with GitHub.

    Opens your browser for GitHub authorization. The session is stored
    locally in ~/.mivna/session.json.
    """
    async def _login(mivna: MivnaClient):
        session = await mivna.auth.sign_in_with_github(open_browser=not no_browser)
        await mivna.analytics.track_event(AnalyticsEvents.LOGIN)
        return session, mivna.auth.profile

    session, profile = run_with_client(ctx, _login, require_auth=False, bootstrap=False)

    console.print()
    success(f"Logged in as [bold]{session.user.display_name}[/]")
    if profile is not None:
        console.print(f"  Plan: {profile.subscription_tier.value.title()}")


@auth_group.command()
@click.pass_context
@handle_errors()
def logout(ctx: click.Context):
    """Sign out and clear the stored session."""
    async def _logout(mivna: MivnaClient):
        if mivna.auth.session is not None:
            await mivna.analytics.track_event(AnalyticsEvents.LOGOUT)
        await mivna.auth.sign_out()

    run_with_client(ctx, _logout, require_auth=False)
    success("Logged out successfully!")


@auth_group.command()
@click.pass_context
@handle_errors()
def whoami(ctx: click.Context):
    """Show the signed-in user and plan."""
    async def _whoami(mivna: MivnaClient):
        if mivna.auth.user is not None:
            await mivna.organizations.fetch_user_orgs()
        return mivna.auth.user, mivna.auth.profile, mivna.organizations

    user, profile, organizations = run_with_client(ctx, _whoami, require_auth=False)

    if user is None:
        console.print("[yellow]Not logged in[/]")
        console.print("Run [blue]mivna auth login[/] to authenticate")
        return

    console.print(f"[bold]User:[/] {user.display_name}")
    console.print(f"[bold]User ID:[/] {user.id}")
    if user.email:
        console.print(f"[bold]Email:[/] {user.email}")

    if organizations.current_org is not None:
        console.print(f"[bold]Organization:[/] {organizations.current_org.name} (@{organizations.current_org.slug})")
    else:
        console.print("[bold]Organization:[/] Personal")

    if profile is not None:
        console.print(f"[bold]Plan:[/] {profile.subscription_tier.value.title()}")


@auth_group.command()
@click.pass_context
@handle_errors()
def status(ctx: click.Context):
    """Show authentication status and token validity."""
    async def _status(mivna: MivnaClient):
        return mivna.auth.session, mivna.auth.timed_out

    session, timed_out = run_with_client(ctx, _status, require_auth=False)

    if session is None:
        console.print("[red]●[/] Not authenticated")
        if timed_out:
            console.print("  [dim]The session check timed out and the local session was cleared[/dim]")
        console.print()
        console.print("Run [blue]mivna auth login[/] to authenticate")
        return

    if session.is_expired():
        console.print("[red]●[/] Token expired")
        if session.refresh_token:
            console.print("  [dim]Refresh token available - will auto-refresh on next command[/dim]")
        else:
            console.print("  [dim]No refresh token - login required[/dim]")
    else:
        console.print("[green]●[/] Authenticated")
        remaining = session.expires_at - datetime.now(timezone.utc)
        hours = int(remaining.total_seconds() // 3600)
        minutes = int((remaining.total_seconds() % 3600) // 60)

        if hours > 0:
            console.print(f"  [dim]Token expires in {hours}h {minutes}m[/dim]")
        else:
            console.print(f"  [dim]Token expires in {minutes}m[/dim]")

    console.print()
    console.print(f"[bold]User:[/] {session.user.display_name}")
    if session.provider_token:
        console.print("[bold]GitHub:[/] connected")
    else:
        console.print("[bold]GitHub:[/] [yellow]token missing - log in again to list repositories[/]")
