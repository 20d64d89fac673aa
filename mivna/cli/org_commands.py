"""Organization management CLI commands.

Lists, switches and manages the organizations (teams) you belong to. The
active organization is stored locally so that it persists between commands.
"""

from typing import Optional

import click
from rich.console import Console
from rich.table import Table

from mivna.cli.errors import fail, handle_errors
from mivna.cli.runtime import run_with_client, success
from mivna.client import MivnaClient
from mivna.logging_config import get_logger
from mivna.models import MemberRole, Organization, OrgMember
from mivna.organizations import member_actions, normalize_slug

logger = get_logger(__name__)
console = Console()

ASSIGNABLE_ROLES = click.Choice(
    [role.value for role in MemberRole if role != MemberRole.OWNER], case_sensitive=False
)

_ROLE_STYLES = {
    MemberRole.OWNER: "magenta",
    MemberRole.ADMIN: "cyan",
    MemberRole.MEMBER: "white",
    MemberRole.VIEWER: "dim",
}


async def _resolve_org(mivna: MivnaClient, ref: Optional[str]) -> Organization:
    await mivna.organizations.fetch_user_orgs()
    if ref is None:
        org = mivna.organizations.current_org
        if org is None:
            fail("No organization selected", hint="You are working in your personal context.", fix="mivna org switch <slug>")
        return org

    org = mivna.organizations.find_org(ref)
    if org is None:
        fail(f"Organization '{ref}' not found", hint="You are not a member of it.", fix="mivna org list")
    return org


async def _resolve_member(mivna: MivnaClient, org: Organization, ref: str) -> OrgMember:
    members = await mivna.organizations.get_members(org.id)
    lowered = ref.lower()
    for member in members:
        if ref in (member.id, member.user_id) or member.display_name.lower() == lowered:
            return member
    fail(f"'{ref}' is not a member of {org.name}", fix=f"mivna org members {org.slug}")


@click.group(name="org")
def org_group():
    """Organization management commands.

    \b
    COMMANDS:
      list     List your organizations
      current  Show the active organization
      switch   Switch to a different organization
      create   Create an organization
      update   Rename an organization or change its slug
      members  List an organization's members

    \b
    EXAMPLES:
      $ mivna org list
      $ mivna org switch acme
      $ mivna org switch personal
    """
    pass


@org_group.command(name="list")
@click.pass_context
@handle_errors()
def list_orgs(ctx: click.Context):
    """List all organizations you belong to."""
    async def _list(mivna: MivnaClient):
        orgs = await mivna.organizations.fetch_user_orgs()
        return orgs, mivna.organizations

    orgs, organizations = run_with_client(ctx, _list)

    if not orgs:
        console.print("[yellow]You are not a member of any organization.[/]")
        console.print("Create one with [blue]mivna org create <name>[/]")
        return

    current = organizations.current_org

    table = Table(title="Your Organizations")
    table.add_column("", style="green", width=3)
    table.add_column("Slug", style="cyan")
    table.add_column("Name")
    table.add_column("Role", style="magenta")

    for org in orgs:
        role = organizations.user_role(org.id)
        table.add_row(
            "●" if current and org.id == current.id else "",
            org.slug,
            org.name,
            role.value if role else "-",
        )

    console.print(table)
    console.print()
    console.print("[dim]● = active organization[/dim]")
    console.print("[dim]Switch with: mivna org switch <slug>[/dim]")


@org_group.command(name="current")
@click.pass_context
@handle_errors()
def current_org(ctx: click.Context):
    """Show the active organization."""
    async def _current(mivna: MivnaClient):
        await mivna.organizations.fetch_user_orgs()
        return mivna.organizations

    organizations = run_with_client(ctx, _current)
    org = organizations.current_org

    if org is None:
        console.print("[bold]Organization:[/] Personal")
        console.print("[dim]Switch with: mivna org switch <slug>[/dim]")
        return

    role = organizations.user_role(org.id)
    console.print(f"[bold]Organization:[/] {org.name}")
    console.print(f"[bold]Slug:[/] {org.slug}")
    console.print(f"[bold]ID:[/] {org.id}")
    if role is not None:
        console.print(f"[bold]Your role:[/] {role.value}")


@org_group.command(name="switch")
@click.argument("org_identifier")
@click.pass_context
@handle_errors()
def switch_org(ctx: click.Context, org_identifier: str):
    """Switch to a different organization.

    ORG_IDENTIFIER can be the organization slug or ID, or "personal" to go
    back to your personal context.
    """
    async def _switch(mivna: MivnaClient):
        if org_identifier.lower() == "personal":
            await mivna.organizations.fetch_user_orgs()
            mivna.organizations.set_current_org(None)
            return None
        org = await _resolve_org(mivna, org_identifier)
        mivna.organizations.set_current_org(org)
        return org

    org = run_with_client(ctx, _switch)
    if org is None:
        success("Switched to your personal context")
    else:
        success(f"Switched to [bold]{org.name}[/] ({org.slug})")


@org_group.command(name="create")
@click.argument("name")
@click.option("--slug", default=None, help="URL slug (derived from the name by default)")
@click.option("--switch/--no-switch", "switch_to", default=True, help="Make it the active organization")
@click.pass_context
@handle_errors()
def create_org(ctx: click.Context, name: str, slug: Optional[str], switch_to: bool):
    """Create an organization you own."""
    org_slug = normalize_slug(slug or name.strip().replace(" ", "-"))

    async def _create(mivna: MivnaClient):
        await mivna.organizations.fetch_user_orgs()
        org = await mivna.organizations.create_org(name, org_slug)
        if switch_to:
            mivna.organizations.set_current_org(org)
        return org

    org = run_with_client(ctx, _create)
    success(f"Created organization [bold]{org.name}[/] ({org.slug})")


@org_group.command(name="update")
@click.argument("org_identifier")
@click.option("--name", default=None, help="New display name")
@click.option("--slug", default=None, help="New URL slug")
@click.pass_context
@handle_errors()
def update_org(ctx: click.Context, org_identifier: str, name: Optional[str], slug: Optional[str]):
    """Rename an organization or change its slug."""
    updates = {}
    if name is not None:
        updates["name"] = name.strip()
    if slug is not None:
        updates["slug"] = slug
    if not updates:
        raise click.UsageError("Nothing to update: pass --name and/or --slug")

    async def _update(mivna: MivnaClient):
        org = await _resolve_org(mivna, org_identifier)
        return await mivna.organizations.update_org(org.id, updates) or org

    org = run_with_client(ctx, _update)
    success(f"Updated organization [bold]{org.name}[/] ({org.slug})")


@org_group.command(name="delete")
@click.argument("org_identifier")
@click.option("--yes", "-y", is_flag=True, help="Skip confirmation")
@click.pass_context
@handle_errors()
def delete_org(ctx: click.Context, org_identifier: str, yes: bool):
    """Delete an organization you own."""
    if not yes:
        click.confirm(f"Delete organization {org_identifier}? This cannot be undone", abort=True)

    async def _delete(mivna: MivnaClient):
        org = await _resolve_org(mivna, org_identifier)
        await mivna.organizations.delete_org(org.id)
        return org

    org = run_with_client(ctx, _delete)
    success(f"Deleted organization {org.name}")


@org_group.command(name="members")
@click.argument("org_identifier", required=False)
@click.pass_context
@handle_errors()
def list_members(ctx: click.Context, org_identifier: Optional[str]):
    """List members of an organization (the active one by default)."""
    async def _members(mivna: MivnaClient):
        org = await _resolve_org(mivna, org_identifier)
        members = await mivna.organizations.get_members(org.id)
        can_manage = mivna.organizations.can_manage_members(org.id)
        return org, members, can_manage, mivna.auth.user.id

    org, members, can_manage, user_id = run_with_client(ctx, _members)

    table = Table(title=f"{org.name} Members")
    table.add_column("Member", style="cyan")
    table.add_column("Role")
    table.add_column("Since", style="dim")
    table.add_column("User ID", style="dim")

    for member in members:
        actions = member_actions(member, user_id, can_manage)
        style = _ROLE_STYLES.get(member.role, "white")
        name = f"{member.display_name} (you)" if actions.is_you else member.display_name
        table.add_row(
            name,
            f"[{style}]{member.role.value}[/{style}]",
            f"{member.since:%Y-%m-%d}" if member.since else "-",
            member.user_id,
        )

    console.print(table)
    if can_manage:
        console.print()
        console.print("[dim]Manage with: mivna org invite | set-role | remove[/dim]")


@org_group.command(name="invite")
@click.argument("user_id")
@click.option("--org", "org_identifier", default=None, help="Organization slug or ID (default: active)")
@click.option("--role", type=ASSIGNABLE_ROLES, default=MemberRole.MEMBER.value, help="Role to grant")
@click.pass_context
@handle_errors()
def invite_member(ctx: click.Context, user_id: str, org_identifier: Optional[str], role: str):
    """Add a user to an organization by their user ID."""
    async def _invite(mivna: MivnaClient):
        org = await _resolve_org(mivna, org_identifier)
        if not mivna.organizations.can_manage_members(org.id):
            fail("Only organization owners and admins can invite members")
        await mivna.organizations.invite_member(org.id, user_id, MemberRole(role))
        return org

    org = run_with_client(ctx, _invite)
    success(f"Added {user_id} to {org.name} as {role}")


@org_group.command(name="set-role")
@click.argument("member")
@click.argument("role", type=ASSIGNABLE_ROLES)
@click.option("--org", "org_identifier", default=None, help="Organization slug or ID (default: active)")
@click.pass_context
@handle_errors()
def set_role(ctx: click.Context, member: str, role: str, org_identifier: Optional[str]):
    """Change a member's role. MEMBER is a username, user ID or member ID."""
    async def _set_role(mivna: MivnaClient):
        org = await _resolve_org(mivna, org_identifier)
        target = await _resolve_member(mivna, org, member)
        await mivna.organizations.update_member_role(target, MemberRole(role))
        return target

    target = run_with_client(ctx, _set_role)
    success(f"{target.display_name} is now {role}")


@org_group.command(name="remove")
@click.argument("member")
@click.option("--org", "org_identifier", default=None, help="Organization slug or ID (default: active)")
@click.option("--yes", "-y", is_flag=True, help="Skip confirmation")
@click.pass_context
@handle_errors()
def remove_member(ctx: click.Context, member: str, org_identifier: Optional[str], yes: bool):
    """Remove a member from an organization."""
    if not yes:
        click.confirm(f"Remove {member}?", abort=True)

    async def _remove(mivna: MivnaClient):
        org = await _resolve_org(mivna, org_identifier)
        target = await _resolve_member(mivna, org, member)
        await mivna.organizations.remove_member(target)
        return target, org

    target, org = run_with_client(ctx, _remove)
    success(f"Removed {target.display_name} from {org.name}")
