"""Command-line interface for Mivna."""

import json

import click
import yaml
from rich.console import Console
from rich.table import Table

from mivna import __version__
from mivna.config import ConfigError, MivnaConfig, load_config
from mivna.logging_config import configure_logging, get_logger
from mivna.observability import init_sentry

from .auth_commands import auth_group
from .billing_commands import billing_group, pricing_group, usage
from .org_commands import org_group
from .repo_commands import diagram_group, readme_group, repos_group

logger = get_logger(__name__)
console = Console()


@click.group()
@click.version_option(version=__version__)
@click.option(
    "--config",
    "-c",
    type=click.Path(exists=True),
    default=None,
    help="Path to config file (.mivnarc or mivna.toml)",
)
@click.option(
    "--log-level",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"], case_sensitive=False),
    default=None,
    help="Set logging level (overrides config file)",
)
@click.option(
    "--log-format",
    type=click.Choice(["json", "human"], case_sensitive=False),
    default=None,
    help="Log output format (overrides config file)",
)
@click.option(
    "--log-file",
    type=click.Path(),
    default=None,
    help="Write logs to file (overrides config file)",
)
@click.pass_context
def cli(ctx: click.Context, config: str | None, log_level: str | None, log_format: str | None, log_file: str | None) -> None:
    """Mivna - AI architecture diagrams and READMEs for your GitHub repositories

    Configuration priority (highest to lowest):
    1. Command-line options
    2. Environment variables (MIVNA_*)
    3. Config file (--config, .mivnarc, mivna.toml)
    4. Built-in defaults
    """
    try:
        loaded = load_config(config_file=config)
    except ConfigError as e:
        console.print(f"[yellow]⚠️  Config error: {e}[/yellow]")
        console.print("[dim]Using default configuration[/dim]\n")
        loaded = MivnaConfig()

    configure_logging(
        level=log_level or loaded.logging.level,
        json_output=((log_format or loaded.logging.format) == "json"),
        log_file=log_file or loaded.logging.file,
    )

    init_sentry(loaded.sentry)

    ctx.ensure_object(dict)
    ctx.obj["config"] = loaded


@cli.command()
@click.option(
    "--format",
    "-f",
    type=click.Choice(["yaml", "json", "table"], case_sensitive=False),
    default="table",
    help="Output format (default: table)",
)
@click.pass_context
def show_config(ctx: click.Context, format: str) -> None:
    """Display effective configuration from all sources.

    Secrets (the anon key and Sentry DSN) are masked.
    """
    config: MivnaConfig = ctx.obj["config"]
    data = config.to_dict()
    data["backend"]["anon_key"] = "***" if config.backend.anon_key else None
    data["sentry"]["dsn"] = "***" if config.sentry.dsn else None

    if format == "json":
        console.print(json.dumps(data, indent=2))
        return
    if format == "yaml":
        console.print(yaml.dump(data, default_flow_style=False, sort_keys=False))
        return

    for section, values in data.items():
        table = Table(title=f"{section.title()} Configuration")
        table.add_column("Setting", style="cyan")
        table.add_column("Value", style="green")
        for key, value in values.items():
            table.add_row(key, "[dim]not set[/dim]" if value in (None, "") else str(value))
        console.print(table)

    console.print(f"\n[bold]Session directory:[/bold] {config.session_dir}\n")


cli.add_command(auth_group)
cli.add_command(repos_group)
cli.add_command(diagram_group)
cli.add_command(readme_group)
cli.add_command(org_group)
cli.add_command(usage)
cli.add_command(billing_group)
cli.add_command(pricing_group)


def main() -> None:
    """Entry point for CLI."""
    cli()


if __name__ == "__main__":
    main()
