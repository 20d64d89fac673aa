"""CLI error handling with user-friendly messages.

Typed service exceptions map onto CLIError subclasses; anything else is
classified by the hosted-API error categories and, failing that, by message
patterns. Stack traces are hidden unless --log-level DEBUG is given.
"""

import functools
from dataclasses import dataclass
from typing import Callable, Optional, ParamSpec, TypeVar

import click
import httpx
from rich.console import Console
from rich.panel import Panel
from rich.text import Text

from mivna import observability
from mivna.auth import AuthenticationError, NotAuthenticatedError
from mivna.backend import BackendError
from mivna.billing import BillingError
from mivna.config import ConfigError as SettingsError
from mivna.errors import ApiError, ApiErrorType, get_user_friendly_error_message
from mivna.export import ExportError
from mivna.generation import GenerationInProgressError
from mivna.logging_config import get_logger
from mivna.organizations import OrgLimitError, OrgPermissionError
from mivna.rate_limit import RateLimitExceededError

logger = get_logger(__name__)
console = Console(stderr=True)

P = ParamSpec("P")
R = TypeVar("R")

ISSUES_URL = "https://github.com/mivna-app/mivna/issues"


@dataclass
class CLIError(Exception):
    """Base CLI error with user-friendly messaging."""

    message: str
    hint: Optional[str] = None
    fix: Optional[str] = None
    docs_url: Optional[str] = None
    show_traceback: bool = False

    def __str__(self) -> str:
        return self.message


@dataclass
class AuthError(CLIError):
    """Authentication/authorization errors."""

    message: str = "Authentication failed"
    hint: str = "Your session may be missing, expired or revoked."
    fix: str = "mivna auth login"


@dataclass
class NetworkError(CLIError):
    """Network connectivity errors."""

    message: str = "Network error"
    hint: str = "Could not reach the Mivna backend or GitHub."
    fix: str = "Check your internet connection and try again."


@dataclass
class ConfigError(CLIError):
    """Configuration errors."""

    message: str = "Configuration error"
    hint: str = "The backend URL and anon key must be set."
    fix: str = "export MIVNA_SUPABASE_URL=... MIVNA_SUPABASE_ANON_KEY=..."


@dataclass
class LimitError(CLIError):
    """Usage and plan limits."""

    message: str = "Limit reached"
    hint: str = "Your plan's generation or organization limit has been reached."
    fix: str = "mivna usage"


@dataclass
class PermissionDeniedError(CLIError):
    """Team role does not allow the action."""

    message: str = "Permission denied"
    hint: str = "Only organization owners and admins can manage members."
    fix: str = "mivna org members"


@dataclass
class ServiceError(CLIError):
    """Backend or Edge Function failures."""

    message: str = "Service error"
    hint: str = "The Mivna service could not complete the request."
    fix: str = "Wait a moment and try again."


@dataclass
class ExportFailedError(CLIError):
    """Local file export errors."""

    message: str = "Export failed"
    hint: str = "SVG and PNG export use the Mermaid CLI."
    fix: str = "npm install -g @mermaid-js/mermaid-cli"


# Error classification rules: (pattern, error_class, custom_message)
ERROR_PATTERNS: list[tuple[str, type[CLIError], Optional[str]]] = [
    # Auth errors
    ("not logged in", AuthError, None),
    ("jwt expired", AuthError, "Your session has expired. Please log in again."),
    ("invalid jwt", AuthError, "Your session is invalid. Please log in again."),
    ("refresh token", AuthError, None),

    # Network errors
    ("connection refused", NetworkError, "Could not connect to the server"),
    ("name resolution", NetworkError, "Could not resolve hostname"),
    ("ssl", NetworkError, "SSL/TLS error - check your network settings"),

    # Limits
    ("limit reached", LimitError, None),
    ("rate limit", LimitError, "Too many requests. Please wait a moment and try again."),

    # Export
    ("mmdc", ExportFailedError, None),
]

_CATEGORY_CLASSES: dict[ApiErrorType, type[CLIError]] = {
    ApiErrorType.AUTH: AuthError,
    ApiErrorType.NETWORK: NetworkError,
    ApiErrorType.TIMEOUT: NetworkError,
    ApiErrorType.RATE_LIMIT: LimitError,
    ApiErrorType.SERVER: ServiceError,
    ApiErrorType.CLIENT: ServiceError,
}


def _classify_typed(error: Exception) -> Optional[CLIError]:
    if isinstance(error, NotAuthenticatedError):
        return AuthError(message=str(error))
    if isinstance(error, AuthenticationError):
        return AuthError(message=f"Authentication failed: {error}")
    if isinstance(error, SettingsError):
        return ConfigError(message=str(error))
    if isinstance(error, RateLimitExceededError):
        return LimitError(message=str(error), fix="mivna usage")
    if isinstance(error, OrgLimitError):
        return LimitError(message=str(error), hint="Each plan can own a limited number of organizations.", fix="mivna pricing list")
    if isinstance(error, OrgPermissionError):
        return PermissionDeniedError(message=str(error))
    if isinstance(error, GenerationInProgressError):
        return CLIError(message=str(error), hint="Wait for the running generation to finish.")
    if isinstance(error, ExportError):
        return ExportFailedError(message=str(error))
    if isinstance(error, BillingError):
        return ServiceError(message=str(error), hint="The payment service could not be reached.")
    if isinstance(error, (ApiError, BackendError, httpx.HTTPError)):
        api_error = ApiError.from_error(error)
        error_class = _CATEGORY_CLASSES.get(api_error.type)
        if error_class is not None:
            message = api_error.message if isinstance(error, ApiError) else get_user_friendly_error_message(error)
            return error_class(message=message)
    return None


def _match_pattern(error: Exception) -> Optional[CLIError]:
    error_str = str(error).lower()
    error_type = type(error).__name__

    for pattern, error_class, custom_msg in ERROR_PATTERNS:
        if pattern in error_str or pattern in error_type.lower():
            msg = custom_msg or str(error)
            return error_class(message=msg)
    return None


def classify_error(error: Exception) -> CLIError:
    """Classify an exception into a user-friendly CLIError.

    Args:
        error: The original exception

    Returns:
        A CLIError with helpful messaging
    """
    if isinstance(error, CLIError):
        return error

    classified = _classify_typed(error) or _match_pattern(error)
    if classified is not None:
        return classified

    return CLIError(
        message=get_user_friendly_error_message(error),
        hint=str(error)[:300] or None,
        fix="Run with --log-level DEBUG for more details, or report this issue.",
        docs_url=ISSUES_URL,
    )


def should_report(error: Exception) -> bool:
    """Whether an error goes to Sentry: server failures and anything unclassified."""
    if isinstance(error, CLIError):
        return False
    if isinstance(error, (ApiError, BackendError, httpx.HTTPError)):
        return ApiError.from_error(error).type == ApiErrorType.SERVER
    return _classify_typed(error) is None and _match_pattern(error) is None


def format_error(error: CLIError) -> Panel:
    """Format a CLIError as a rich Panel."""
    content = Text()

    content.append(error.message, style="bold")
    content.append("\n")

    if error.hint:
        content.append("\n")
        content.append("💡 ", style="yellow")
        content.append(error.hint, style="dim")

    if error.fix:
        content.append("\n\n")
        content.append("Fix: ", style="green bold")
        content.append(error.fix, style="cyan")

    if error.docs_url:
        content.append("\n\n")
        content.append("📚 ", style="blue")
        content.append(error.docs_url, style="blue underline")

    return Panel(
        content,
        title="[red bold]Error[/red bold]",
        border_style="red",
        padding=(1, 2),
    )


def print_error(error: Exception, verbose: bool = False, exit_code: int = 1) -> None:
    """Print an error message and optionally exit.

    Args:
        error: The exception to print
        verbose: Show full traceback
        exit_code: Exit code (0 = don't exit)
    """
    cli_error = classify_error(error)

    logger.debug(f"CLI error: {error}", exc_info=True)
    if should_report(error):
        observability.capture_error(error)

    console.print()
    console.print(format_error(cli_error))

    if verbose or cli_error.show_traceback:
        console.print("\n[dim]Traceback (for debugging):[/dim]")
        console.print_exception(show_locals=False)

    if exit_code:
        raise click.exceptions.Exit(exit_code)


def _is_verbose(ctx: Optional[click.Context]) -> bool:
    while ctx is not None:
        if ctx.params.get("log_level") and str(ctx.params["log_level"]).upper() == "DEBUG":
            return True
        ctx = ctx.parent
    return False


def handle_errors(
    *,
    exit_on_error: bool = True,
    reraise: tuple[type[Exception], ...] = (),
) -> Callable[[Callable[P, R]], Callable[P, R]]:
    """Decorator for CLI commands that provides friendly error handling.

    Usage:
        @repos_group.command()
        @handle_errors()
        def list_repos():
            ...
    """
    def decorator(func: Callable[P, R]) -> Callable[P, R]:
        @functools.wraps(func)
        def wrapper(*args: P.args, **kwargs: P.kwargs) -> R:
            verbose = _is_verbose(click.get_current_context(silent=True))

            try:
                return func(*args, **kwargs)
            except reraise:
                raise
            except (click.Abort, click.exceptions.Exit, click.ClickException):
                raise
            except KeyboardInterrupt:
                console.print("\n[yellow]Interrupted[/yellow]")
                raise click.Abort()
            except Exception as e:
                print_error(e, verbose=verbose, exit_code=1 if exit_on_error else 0)
            return None  # type: ignore[return-value]

        return wrapper
    return decorator


def fail(
    message: str,
    *,
    hint: Optional[str] = None,
    fix: Optional[str] = None,
    docs_url: Optional[str] = None,
) -> None:
    """Raise a CLI error with the given message.

    Raises:
        CLIError: Always
    """
    raise CLIError(message=message, hint=hint, fix=fix, docs_url=docs_url)
