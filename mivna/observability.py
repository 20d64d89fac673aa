"""Error tracking and performance spans via Sentry.

Everything here is a no-op until ``init_sentry`` has been called with a DSN;
the sentry_sdk API functions silently do nothing without an active client.
"""

from typing import Any, Awaitable, Callable, Dict, Optional, TypeVar

import sentry_sdk
from sentry_sdk.integrations.httpx import HttpxIntegration
from sentry_sdk.integrations.logging import LoggingIntegration

from mivna import __version__
from mivna.config import SentryConfig
from mivna.logging_config import get_logger

logger = get_logger(__name__)

T = TypeVar("T")


def init_sentry(config: SentryConfig) -> bool:
    """Initialize the Sentry SDK if a DSN is configured.

    Returns:
        True if Sentry was initialized
    """
    if not config.dsn:
        logger.debug("Sentry DSN not configured, error tracking disabled")
        return False

    sentry_sdk.init(
        dsn=config.dsn,
        environment=config.environment,
        release=f"mivna@{__version__}",
        integrations=[
            HttpxIntegration(),
            LoggingIntegration(event_level=None),
        ],
        traces_sample_rate=config.traces_sample_rate,
        send_default_pii=False,
    )
    logger.info("Sentry SDK initialized", extra={"environment": config.environment})
    return True


def capture_error(error: BaseException, context: Optional[Dict[str, Any]] = None) -> None:
    """Report an exception, optionally with extra context."""
    with sentry_sdk.new_scope() as scope:
        if context:
            scope.set_context("additional", context)
        sentry_sdk.capture_exception(error)


def track_event(message: str, level: str = "info") -> None:
    """Record a custom message event."""
    sentry_sdk.capture_message(message, level=level)


def set_user(user_id: str, username: Optional[str] = None) -> None:
    sentry_sdk.set_user({"id": user_id, "username": username})


def clear_user() -> None:
    sentry_sdk.set_user(None)


async def track_api_call(
    name: str,
    fn: Callable[[], Awaitable[T]],
    attributes: Optional[Dict[str, Any]] = None,
) -> T:
    """Run ``fn`` inside an ``api.<name>`` span (op ``http.client``).

    The span status records whether the call succeeded; exceptions propagate.
    """
    with sentry_sdk.start_span(op="http.client", name=f"api.{name}") as span:
        span.set_data("api.name", name)
        for key, value in (attributes or {}).items():
            span.set_data(key, value)
        try:
            result = await fn()
        except Exception as e:
            span.set_status("internal_error")
            span.set_data("error.message", str(e))
            raise
        span.set_status("ok")
        return result
