"""Repository, diagram and README commands."""

from pathlib import Path
from typing import Optional, Tuple

import click
from rich.console import Console
from rich.markdown import Markdown
from rich.panel import Panel
from rich.syntax import Syntax
from rich.table import Table

from mivna.analytics import AnalyticsEvents
from mivna.cli.errors import fail, handle_errors
from mivna.cli.runtime import resolve_repo, run_with_client, success
from mivna.client import MivnaClient
from mivna.diagrams import (
    DEFAULT_DIAGRAM_TYPE,
    DIAGRAM_TYPES,
    diagram_count_label,
    diagram_for,
    missing_diagram_types,
    primary_diagram_code,
)
from mivna.export import EXPORT_FORMATS, diagram_filename, download_text_file, export_diagram, readme_filename
from mivna.logging_config import get_logger
from mivna.models import DiagramType, RepoStatus
from mivna.repositories import (
    DIAGRAM_LIMIT,
    README_LIMIT,
    SORT_OPTIONS,
    STATUS_FILTERS,
    filter_and_sort_repos,
    usage_badge,
)

logger = get_logger(__name__)
console = Console()

DIAGRAM_TYPE_CHOICE = click.Choice([t.value for t in DiagramType], case_sensitive=False)

_STATUS_STYLES = {
    RepoStatus.READY: "green",
    RepoStatus.PROCESSING: "yellow",
    RepoStatus.PENDING: "dim",
    RepoStatus.ERROR: "red",
}

_BADGE_STYLES = {"danger": "red", "warning": "yellow", "": "green"}


# =============================================================================
# repos
# =============================================================================


@click.group(name="repos")
def repos_group():
    """Connected repository commands.

    \b
    COMMANDS:
      list       List connected repositories
      available  List GitHub repositories you can connect
      connect    Connect GitHub repositories
      delete     Disconnect a repository

    \b
    EXAMPLES:
      $ mivna repos list --status ready --sort name
      $ mivna repos connect octocat/hello-world
    """
    pass


@repos_group.command(name="list")
@click.option("--search", "-s", default="", help="Filter by repository name or owner")
@click.option("--status", type=click.Choice(STATUS_FILTERS), default="all", help="Filter by status")
@click.option("--sort", "sort_by", type=click.Choice(SORT_OPTIONS), default="date", help="Sort order")
@click.pass_context
@handle_errors()
def list_repos(ctx: click.Context, search: str, status: str, sort_by: str):
    """List connected repositories with their generation status."""
    async def _list(mivna: MivnaClient):
        user = mivna.auth.require_auth().user
        repos = await mivna.repositories.fetch_connected_repos(user.id)
        if search.strip():
            await mivna.analytics.track_event(AnalyticsEvents.SEARCH_REPOS, {"query_length": len(search.strip())})
        if status != "all":
            await mivna.analytics.track_event(AnalyticsEvents.FILTER_REPOS, {"status": status})
        return repos, mivna.auth.profile

    repos, profile = run_with_client(ctx, _list)

    if profile is not None:
        diagrams = usage_badge(profile.diagrams_generated, DIAGRAM_LIMIT)
        readmes = usage_badge(profile.readmes_generated, README_LIMIT)
        console.print(
            f"Diagrams: [{_BADGE_STYLES[diagrams.level]}]{diagrams}[/]   "
            f"READMEs: [{_BADGE_STYLES[readmes.level]}]{readmes}[/]"
        )
        console.print()

    if not repos:
        console.print("[yellow]No repositories connected yet.[/]")
        console.print("Connect one with [blue]mivna repos available[/] and [blue]mivna repos connect[/]")
        return

    shown = filter_and_sort_repos(repos, search, status, sort_by)
    if not shown:
        console.print("[yellow]No repositories match your current filters.[/] Try adjusting your search or filters.")
        return

    table = Table(title="Connected Repositories")
    table.add_column("Repository", style="cyan")
    table.add_column("Status")
    table.add_column("Diagrams")
    table.add_column("README")
    table.add_column("Connected", style="dim")

    for repo in shown:
        style = _STATUS_STYLES.get(repo.status, "white")
        table.add_row(
            repo.full_name,
            f"[{style}]{repo.status.value}[/{style}]",
            diagram_count_label(repo) or "-",
            "✓" if repo.readme_content else "-",
            repo.created_at.strftime("%Y-%m-%d"),
        )

    console.print(table)


@repos_group.command(name="available")
@click.pass_context
@handle_errors()
def available_repos(ctx: click.Context):
    """List your GitHub repositories that are not connected yet."""
    async def _available(mivna: MivnaClient):
        session = mivna.auth.require_auth()
        connected = await mivna.repositories.fetch_connected_repos(session.user.id)
        return await mivna.repositories.fetch_github_repos(session.provider_token, connected)

    repos = run_with_client(ctx, _available)

    if not repos:
        console.print("[yellow]All of your GitHub repositories are already connected.[/]")
        return

    table = Table(title="Available GitHub Repositories")
    table.add_column("Repository", style="cyan")
    table.add_column("Visibility")
    table.add_column("Description", style="dim")

    for repo in repos:
        table.add_row(repo.full_name, "private" if repo.private else "public", repo.description or "")

    console.print(table)
    console.print()
    console.print("[dim]Connect with: mivna repos connect <owner/name> [...][/]")


@repos_group.command(name="connect")
@click.argument("names", nargs=-1)
@click.option("--all", "connect_all", is_flag=True, help="Connect every available repository")
@click.pass_context
@handle_errors()
def connect_repos(ctx: click.Context, names: Tuple[str, ...], connect_all: bool):
    """Connect GitHub repositories by owner/name (or bare name)."""
    if not names and not connect_all:
        fail("No repositories given", hint="Pass one or more owner/name values, or --all.", fix="mivna repos available")

    async def _connect(mivna: MivnaClient):
        session = mivna.auth.require_auth()
        connected = await mivna.repositories.fetch_connected_repos(session.user.id)
        available = await mivna.repositories.fetch_github_repos(session.provider_token, connected)

        if connect_all:
            selected = available
        else:
            wanted = {name.lower() for name in names}
            selected = [
                repo for repo in available
                if repo.full_name.lower() in wanted or repo.name.lower() in wanted
            ]
            found = {repo.full_name.lower() for repo in selected} | {repo.name.lower() for repo in selected}
            missing = sorted(wanted - found)
            if missing:
                fail(
                    f"Not available to connect: {', '.join(missing)}",
                    hint="The repository may already be connected or not visible to your GitHub token.",
                    fix="mivna repos available",
                )

        count = await mivna.repositories.connect_repos(session.user.id, selected)
        if count:
            await mivna.analytics.track_event(AnalyticsEvents.CONNECT_REPO, {"count": count})
        return count

    count = run_with_client(ctx, _connect)
    if count == 0:
        console.print("[yellow]Nothing to connect.[/]")
        return
    success(f"Connected {count} repositor{'y' if count == 1 else 'ies'}")


@repos_group.command(name="delete")
@click.argument("repo_ref")
@click.option("--yes", "-y", is_flag=True, help="Skip confirmation")
@click.pass_context
@handle_errors()
def delete_repo(ctx: click.Context, repo_ref: str, yes: bool):
    """Disconnect a repository and delete its diagrams."""
    if not yes:
        click.confirm(f"Disconnect {repo_ref}? Its diagrams and README will be deleted", abort=True)

    async def _delete(mivna: MivnaClient):
        repo = await resolve_repo(mivna, repo_ref)
        await mivna.repositories.delete_repository(repo.id)
        await mivna.analytics.track_event(AnalyticsEvents.DELETE_REPO, {"repo": repo.repo_name})
        return repo

    repo = run_with_client(ctx, _delete)
    success(f"Repository {repo.full_name} disconnected successfully!")


# =============================================================================
# diagram
# =============================================================================


@click.group(name="diagram")
def diagram_group():
    """Architecture diagram commands.

    \b
    EXAMPLES:
      $ mivna diagram generate octocat/hello-world --type erd
      $ mivna diagram show hello-world
      $ mivna diagram export hello-world --format png
    """
    pass


@diagram_group.command(name="types")
def diagram_types():
    """List the diagram types that can be generated."""
    table = Table(title="Diagram Types")
    table.add_column("Type", style="cyan")
    table.add_column("Name")
    table.add_column("Shows", style="dim")

    for option in DIAGRAM_TYPES:
        marker = " (default)" if option.value == DEFAULT_DIAGRAM_TYPE else ""
        table.add_row(option.value.value, f"{option.label}{marker}", option.description)

    console.print(table)


@diagram_group.command(name="generate")
@click.argument("repo_ref")
@click.option("--type", "diagram_type", type=DIAGRAM_TYPE_CHOICE, default=DEFAULT_DIAGRAM_TYPE.value, help="Diagram type")
@click.pass_context
@handle_errors()
def generate_diagram(ctx: click.Context, repo_ref: str, diagram_type: str):
    """Generate a diagram for a connected repository."""
    async def _generate(mivna: MivnaClient):
        repo = await resolve_repo(mivna, repo_ref)
        console.print(f"[dim]Generating {diagram_type} diagram for {repo.full_name}...[/dim]")
        return await mivna.generation.generate_diagram(repo, diagram_type)

    repo = run_with_client(ctx, _generate)
    success("Diagram generated successfully!")
    console.print(f"  {diagram_count_label(repo)}")

    remaining = missing_diagram_types(repo)
    if remaining:
        console.print(f"  [dim]Not generated yet: {', '.join(t.value for t in remaining)}[/dim]")


@diagram_group.command(name="show")
@click.argument("repo_ref")
@click.option("--type", "diagram_type", type=DIAGRAM_TYPE_CHOICE, default=None, help="Diagram type (default: primary)")
@click.pass_context
@handle_errors()
def show_diagram(ctx: click.Context, repo_ref: str, diagram_type: Optional[str]):
    """Print a repository's Mermaid diagram source."""
    async def _show(mivna: MivnaClient):
        return await resolve_repo(mivna, repo_ref)

    repo = run_with_client(ctx, _show)
    code = _diagram_code(repo, diagram_type)

    console.print(Panel(Syntax(code, "text", word_wrap=True), title=repo.full_name, border_style="cyan"))
    if repo.last_scanned_at:
        console.print(f"[dim]Last updated: {repo.last_scanned_at:%Y-%m-%d %H:%M}[/dim]")


def _diagram_code(repo, diagram_type: Optional[str]) -> str:
    if diagram_type:
        diagram = diagram_for(repo, diagram_type)
        code = diagram.diagram_code if diagram else None
    else:
        code = primary_diagram_code(repo)

    if not code:
        fail(
            f"No {diagram_type or ''} diagram for {repo.full_name}".replace("  ", " "),
            fix=f"mivna diagram generate {repo.full_name}" + (f" --type {diagram_type}" if diagram_type else ""),
        )
    return code


@diagram_group.command(name="update")
@click.argument("repo_ref")
@click.pass_context
@handle_errors()
def update_diagram(ctx: click.Context, repo_ref: str):
    """Regenerate a repository's primary diagram from its latest code."""
    async def _update(mivna: MivnaClient):
        repo = await resolve_repo(mivna, repo_ref)
        return await mivna.generation.update_diagram(repo)

    run_with_client(ctx, _update)
    success("Diagram updated successfully!")


@diagram_group.command(name="explain")
@click.argument("repo_ref")
@click.argument("node_name")
@click.option("--type", "diagram_type", type=DIAGRAM_TYPE_CHOICE, default=None, help="Diagram containing the node")
@click.pass_context
@handle_errors()
def explain_node(ctx: click.Context, repo_ref: str, node_name: str, diagram_type: Optional[str]):
    """Explain what a node in the diagram does."""
    async def _explain(mivna: MivnaClient):
        repo = await resolve_repo(mivna, repo_ref)
        code = _diagram_code(repo, diagram_type)
        return await mivna.generation.explain_node(repo, node_name, code)

    explanation = run_with_client(ctx, _explain)
    console.print(Panel(Markdown(explanation), title=node_name, border_style="cyan"))


@diagram_group.command(name="export")
@click.argument("repo_ref")
@click.option("--format", "fmt", type=click.Choice(EXPORT_FORMATS), default="svg", help="Output format")
@click.option("--type", "diagram_type", type=DIAGRAM_TYPE_CHOICE, default=None, help="Diagram type (default: primary)")
@click.option("--output", "-o", type=click.Path(dir_okay=False, path_type=Path), default=None, help="Output file")
@click.pass_context
@handle_errors()
def export_diagram_cmd(ctx: click.Context, repo_ref: str, fmt: str, diagram_type: Optional[str], output: Optional[Path]):
    """Export a diagram as Mermaid source, SVG or PNG."""
    async def _export(mivna: MivnaClient):
        repo = await resolve_repo(mivna, repo_ref)
        code = _diagram_code(repo, diagram_type)
        target = output or Path(diagram_filename(repo.repo_name, fmt))
        path = await export_diagram(code, target, fmt)
        if fmt == "png":
            await mivna.analytics.track_event(AnalyticsEvents.EXPORT_PNG, {"repo": repo.repo_name})
        elif fmt == "svg":
            await mivna.analytics.track_event(AnalyticsEvents.EXPORT_SVG, {"repo": repo.repo_name})
        return path

    path = run_with_client(ctx, _export)
    success(f"Exported diagram to {path}")


# =============================================================================
# readme
# =============================================================================


@click.group(name="readme")
def readme_group():
    """README generation commands."""
    pass


@readme_group.command(name="generate")
@click.argument("repo_ref")
@click.pass_context
@handle_errors()
def generate_readme(ctx: click.Context, repo_ref: str):
    """Generate a README for a connected repository."""
    async def _generate(mivna: MivnaClient):
        repo = await resolve_repo(mivna, repo_ref)
        console.print(f"[dim]Generating README for {repo.full_name}...[/dim]")
        return await mivna.generation.generate_readme(repo)

    run_with_client(ctx, _generate)
    success("README generated successfully!")


@readme_group.command(name="show")
@click.argument("repo_ref")
@click.option("--raw", is_flag=True, help="Print markdown source instead of rendering it")
@click.pass_context
@handle_errors()
def show_readme(ctx: click.Context, repo_ref: str, raw: bool):
    """Show a repository's generated README."""
    async def _show(mivna: MivnaClient):
        return await resolve_repo(mivna, repo_ref)

    repo = run_with_client(ctx, _show)
    if not repo.readme_content:
        fail(f"No README generated for {repo.full_name} yet", fix=f"mivna readme generate {repo.full_name}")

    if raw:
        click.echo(repo.readme_content)
    else:
        console.print(Markdown(repo.readme_content))


@readme_group.command(name="update")
@click.argument("repo_ref")
@click.pass_context
@handle_errors()
def update_readme(ctx: click.Context, repo_ref: str):
    """Regenerate a README without counting it against your usage."""
    async def _update(mivna: MivnaClient):
        repo = await resolve_repo(mivna, repo_ref)
        return await mivna.generation.update_readme(repo)

    run_with_client(ctx, _update)
    success("README updated successfully!")


@readme_group.command(name="export")
@click.argument("repo_ref")
@click.option("--output", "-o", type=click.Path(dir_okay=False, path_type=Path), default=None, help="Output file")
@click.pass_context
@handle_errors()
def export_readme(ctx: click.Context, repo_ref: str, output: Optional[Path]):
    """Save a repository's README as <repo>-README.md."""
    async def _export(mivna: MivnaClient):
        repo = await resolve_repo(mivna, repo_ref)
        if not repo.readme_content:
            fail(f"No README generated for {repo.full_name} yet", fix=f"mivna readme generate {repo.full_name}")
        await mivna.analytics.track_event(AnalyticsEvents.COPY_README, {"repo": repo.repo_name})
        return download_text_file(repo.readme_content, output or Path(readme_filename(repo.repo_name)))

    path = run_with_client(ctx, _export)
    success(f"README saved to {path}")
