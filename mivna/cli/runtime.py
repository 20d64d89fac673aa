"""Shared plumbing for commands: running async service calls and toasts."""

import asyncio
from typing import Awaitable, Callable, Optional, TypeVar

import click
from rich.console import Console

from mivna import observability
from mivna.auth import AuthEvent, Session
from mivna.cli.errors import CLIError
from mivna.client import MivnaClient
from mivna.config import MivnaConfig, validate_config
from mivna.logging_config import get_logger
from mivna.models import Repository

logger = get_logger(__name__)
console = Console()

T = TypeVar("T")


def success(message: str) -> None:
    console.print(f"[green]✓[/] {message}")


def warn(message: str) -> None:
    console.print(f"[yellow]⚠[/] {message}")


def get_config(ctx: click.Context) -> MivnaConfig:
    ctx.ensure_object(dict)
    config = ctx.obj.get("config")
    if config is None:
        config = MivnaConfig()
        ctx.obj["config"] = config
    return config


def _sync_sentry_user(event: AuthEvent, session: Optional[Session]) -> None:
    if session is not None:
        observability.set_user(session.user.id, session.user.user_metadata.user_name)
    elif event == AuthEvent.SIGNED_OUT:
        observability.clear_user()


def run_with_client(
    ctx: click.Context,
    fn: Callable[[MivnaClient], Awaitable[T]],
    *,
    require_auth: bool = True,
    bootstrap: bool = True,
) -> T:
    """Run ``fn`` against a fully wired client in a fresh event loop.

    The cached session is restored (and reconciled) first, and all HTTP
    clients are closed afterwards.

    Args:
        ctx: Click context holding the loaded config
        fn: Coroutine function taking the MivnaClient
        require_auth: Fail with NotAuthenticatedError when signed out
        bootstrap: Restore the cached session before calling ``fn``

    Returns:
        Whatever ``fn`` returns
    """
    config = get_config(ctx)
    for warning in validate_config(config):
        warn(warning)

    async def runner() -> T:
        async with MivnaClient(config) as mivna:
            mivna.auth.on_auth_state_change(_sync_sentry_user)
            if bootstrap:
                await mivna.auth.bootstrap()
                if mivna.auth.timed_out:
                    warn("Session check timed out; you have been signed out locally")
            if require_auth:
                mivna.auth.require_auth()
            return await fn(mivna)

    return asyncio.run(runner())


async def resolve_repo(mivna: MivnaClient, ref: str) -> Repository:
    """Find a connected repository by ID, ``owner/name`` or unique name."""
    repos = await mivna.repositories.fetch_connected_repos(mivna.auth.require_auth().user.id)
    lowered = ref.lower()

    for repo in repos:
        if repo.id == ref or repo.full_name.lower() == lowered:
            return repo

    matches = [repo for repo in repos if repo.repo_name.lower() == lowered]
    if len(matches) == 1:
        return matches[0]
    if len(matches) > 1:
        raise CLIError(
            message=f"'{ref}' matches {len(matches)} repositories",
            hint="Use the full owner/name form.",
        )
    raise CLIError(message=f"Repository '{ref}' is not connected", fix="mivna repos list")
