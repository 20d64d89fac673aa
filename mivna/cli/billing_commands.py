"""Usage, billing and pricing commands."""

import webbrowser
from datetime import datetime, timezone

import click
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from mivna.billing import PRICING_TIERS, format_date, get_pricing_tier
from mivna.cli.errors import handle_errors
from mivna.cli.runtime import run_with_client, success
from mivna.client import MivnaClient
from mivna.logging_config import get_logger
from mivna.models import PlanTier
from mivna.rate_limit import usage_style

logger = get_logger(__name__)
console = Console()

PLAN_CHOICE = click.Choice([tier.value for tier in PlanTier], case_sensitive=False)


def _open_url(url: str, open_browser: bool) -> None:
    if open_browser and webbrowser.open(url):
        console.print("[dim]Opened in your browser.[/dim]")
    else:
        console.print(f"Open this URL to continue:\n  [link={url}]{url}[/link]")


def _usage_cell(used: int, limit: int) -> str:
    style = usage_style(used, limit)
    return f"[{style}]{used} / {limit}[/{style}]"


@click.command(name="usage")
@click.pass_context
@handle_errors()
def usage(ctx: click.Context):
    """Show generation usage and hourly cooldowns."""
    async def _usage(mivna: MivnaClient):
        return await mivna.rate_limiter.fetch(mivna.auth.require_auth().user.id)

    state = run_with_client(ctx, _usage)
    now = datetime.now(timezone.utc)

    table = Table(title="Generation Usage")
    table.add_column("", style="bold")
    table.add_column("Total (beta)")
    table.add_column("This hour")
    table.add_column("Status")

    diagram_cooldown = state.diagram_cooldown_remaining(now)
    readme_cooldown = state.readme_cooldown_remaining(now)

    table.add_row(
        "Diagrams",
        _usage_cell(state.diagrams_total, state.diagrams_total_limit),
        _usage_cell(state.diagrams_this_hour, state.diagrams_hourly_limit),
        _availability(state.can_generate_diagram, diagram_cooldown),
    )
    table.add_row(
        "READMEs",
        _usage_cell(state.readmes_total, state.readmes_total_limit),
        _usage_cell(state.readmes_this_hour, state.readmes_hourly_limit),
        _availability(state.can_generate_readme, readme_cooldown),
    )

    console.print(table)


def _availability(allowed: bool, cooldown: str) -> str:
    if allowed:
        return "[green]available[/green]"
    if cooldown:
        return f"[yellow]cooldown {cooldown}[/yellow]"
    return "[red]limit reached[/red]"


# =============================================================================
# billing
# =============================================================================


@click.group(name="billing")
def billing_group():
    """Subscription and payment commands."""
    pass


@billing_group.command(name="show")
@click.pass_context
@handle_errors()
def show_billing(ctx: click.Context):
    """Show your plan, usage and recent payments."""
    async def _show(mivna: MivnaClient):
        return await mivna.billing.fetch_billing(mivna.auth.require_auth().user.id)

    info = run_with_client(ctx, _show)

    lines = [
        f"[bold]Plan:[/] {info.plan_name}",
        f"[bold]Status:[/] {info.plan_status}",
    ]
    if info.subscription and info.subscription.current_period_end:
        lines.append(f"[bold]Renews:[/] {format_date(info.subscription.current_period_end)}")
    lines.append("")
    lines.append(f"[bold]Diagrams generated:[/] {info.diagrams_usage}")
    lines.append(f"[bold]READMEs generated:[/] {info.readmes_usage}")

    console.print(Panel("\n".join(lines), title="Subscription", border_style="cyan"))

    if not info.payments:
        console.print("[dim]No payments yet.[/dim]")
    else:
        table = Table(title="Payment History")
        table.add_column("Date", style="dim")
        table.add_column("Description")
        table.add_column("Amount", justify="right")
        table.add_column("Status")

        for payment in info.payments:
            style = "green" if payment.status == "succeeded" else "yellow"
            table.add_row(
                format_date(payment.created_at),
                payment.description or "-",
                payment.formatted_amount,
                f"[{style}]{payment.status}[/{style}]",
            )
        console.print(table)

    if info.subscription is None:
        console.print()
        console.print("[dim]Upgrade with: mivna billing upgrade[/dim]")


@billing_group.command(name="portal")
@click.option("--no-browser", is_flag=True, help="Print the URL instead of opening it")
@click.pass_context
@handle_errors()
def billing_portal(ctx: click.Context, no_browser: bool):
    """Open the subscription management portal."""
    async def _portal(mivna: MivnaClient):
        return await mivna.billing.create_portal_session()

    url = run_with_client(ctx, _portal)
    _open_url(url, not no_browser)


@billing_group.command(name="upgrade")
@click.option("--no-browser", is_flag=True, help="Print the URL instead of opening it")
@click.pass_context
@handle_errors()
def billing_upgrade(ctx: click.Context, no_browser: bool):
    """Start a checkout for the Pro plan."""
    async def _upgrade(mivna: MivnaClient):
        return await mivna.billing.create_checkout_session(PlanTier.PRO)

    url = run_with_client(ctx, _upgrade)
    success("Checkout session created")
    _open_url(url, not no_browser)


# =============================================================================
# pricing
# =============================================================================


@click.group(name="pricing")
def pricing_group():
    """Plans and plan selection."""
    pass


@pricing_group.command(name="list")
def list_pricing():
    """Show the available plans."""
    table = Table(title="Plans", show_lines=True)
    table.add_column("Plan", style="cyan")
    table.add_column("Price")
    table.add_column("Features")

    for pricing in PRICING_TIERS:
        name = f"[bold]{pricing.name}[/bold] (popular)" if pricing.highlighted else pricing.name
        price = f"{pricing.price}/{pricing.period}" if pricing.period else pricing.price
        table.add_row(
            f"{name}\n[dim]{pricing.description}[/dim]",
            price,
            "\n".join(f"✓ {feature}" for feature in pricing.features),
        )

    console.print(table)
    console.print()
    console.print("[dim]Choose with: mivna pricing select <free|pro|enterprise>[/dim]")


@pricing_group.command(name="select")
@click.argument("tier", type=PLAN_CHOICE)
@click.option("--no-browser", is_flag=True, help="Print the URL instead of opening it")
@click.pass_context
@handle_errors()
def select_plan(ctx: click.Context, tier: str, no_browser: bool):
    """Choose a plan: sign up, upgrade or contact sales."""
    pricing = get_pricing_tier(tier)

    async def _select(mivna: MivnaClient):
        return await mivna.billing.select_plan(pricing.tier)

    url = run_with_client(ctx, _select, require_auth=False)
    console.print(f"[bold]{pricing.cta}[/bold]")
    _open_url(url, not no_browser)
