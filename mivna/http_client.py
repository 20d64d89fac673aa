"""Shared HTTP clients and retry helpers.

Clients are created lazily and reused so repeated calls to the hosted
backend and to GitHub share connections:

    from mivna.http_client import get_async_client, get_github_async_client

    client = await get_async_client()
    await client.get(...)

Transient failures (network, timeout, 5xx) are retried with exponential
backoff and jitter:

    from mivna.http_client import with_retry

    repos = await with_retry(lambda: github.list_repos(token), max_retries=2)

For cleanup on shutdown:
    await close_clients()
"""

import asyncio
import math
import os
import random
import threading
from dataclasses import dataclass, field, replace
from typing import Any, Awaitable, Callable, Optional, TypeVar

import httpx

from mivna.errors import ApiError, ApiErrorType
from mivna.logging_config import get_logger

logger = get_logger(__name__)

T = TypeVar("T")

# Default connection pool limits
DEFAULT_MAX_CONNECTIONS = int(os.environ.get("MIVNA_HTTP_MAX_CONNECTIONS", "20"))
DEFAULT_MAX_KEEPALIVE = int(os.environ.get("MIVNA_HTTP_MAX_KEEPALIVE", "10"))

# Default timeouts (in seconds)
DEFAULT_CONNECT_TIMEOUT = 10.0
DEFAULT_REQUEST_TIMEOUT = 30.0

GITHUB_API_BASE = "https://api.github.com"


def create_timeout(request_timeout: float = DEFAULT_REQUEST_TIMEOUT) -> httpx.Timeout:
    """Create a timeout configuration; connecting is capped separately."""
    return httpx.Timeout(request_timeout, connect=min(DEFAULT_CONNECT_TIMEOUT, request_timeout))


def _create_limits() -> httpx.Limits:
    """Create default connection pool limits."""
    return httpx.Limits(
        max_connections=DEFAULT_MAX_CONNECTIONS,
        max_keepalive_connections=DEFAULT_MAX_KEEPALIVE,
        keepalive_expiry=30.0,
    )


# Shared client instances (lazily initialized)
_async_client: Optional[httpx.AsyncClient] = None
_github_async_client: Optional[httpx.AsyncClient] = None
# asyncio.Lock needs a running loop, so it is created on first use
_async_lock: Optional[asyncio.Lock] = None
_async_lock_init = threading.Lock()


def _get_async_lock() -> asyncio.Lock:
    """Get or create the async lock safely (double-checked)."""
    global _async_lock
    if _async_lock is not None:
        return _async_lock

    with _async_lock_init:
        if _async_lock is None:
            _async_lock = asyncio.Lock()
    return _async_lock


async def get_async_client() -> httpx.AsyncClient:
    """Get the shared async HTTP client used for the hosted backend.

    Returns:
        Shared httpx.AsyncClient instance
    """
    global _async_client
    if _async_client is not None and not _async_client.is_closed:
        return _async_client

    async with _get_async_lock():
        if _async_client is not None and not _async_client.is_closed:
            return _async_client

        _async_client = httpx.AsyncClient(
            timeout=create_timeout(),
            limits=_create_limits(),
            http2=True,
            follow_redirects=True,
        )
        logger.debug(
            f"Initialized shared async HTTP client "
            f"(max_connections={DEFAULT_MAX_CONNECTIONS})"
        )
        return _async_client


async def get_github_async_client() -> httpx.AsyncClient:
    """Get the shared async HTTP client for GitHub API calls.

    Kept separate from the backend pool so GitHub rate limiting and latency
    never hold up backend calls.

    Returns:
        Shared httpx.AsyncClient configured for the GitHub REST API
    """
    global _github_async_client
    if _github_async_client is not None and not _github_async_client.is_closed:
        return _github_async_client

    async with _get_async_lock():
        if _github_async_client is not None and not _github_async_client.is_closed:
            return _github_async_client

        _github_async_client = httpx.AsyncClient(
            base_url=GITHUB_API_BASE,
            timeout=create_timeout(),
            limits=httpx.Limits(
                max_connections=10,
                max_keepalive_connections=5,
                keepalive_expiry=60.0,
            ),
            http2=True,
            follow_redirects=True,
            headers={
                "Accept": "application/vnd.github.v3+json",
                "X-GitHub-Api-Version": "2022-11-28",
            },
        )
        logger.debug("Initialized shared GitHub async HTTP client")
        return _github_async_client


async def close_clients() -> None:
    """Close all shared HTTP clients.

    Called once at the end of every CLI invocation.
    """
    global _async_client, _github_async_client

    clients_closed = 0
    if _async_client is not None and not _async_client.is_closed:
        await _async_client.aclose()
        clients_closed += 1
    _async_client = None

    if _github_async_client is not None and not _github_async_client.is_closed:
        await _github_async_client.aclose()
        clients_closed += 1
    _github_async_client = None

    if clients_closed > 0:
        logger.debug(f"Closed {clients_closed} shared async HTTP client(s)")


def reset_clients() -> None:
    """Drop all shared client references (for testing).

    The lock is dropped too because it is bound to the event loop that
    created it.
    """
    global _async_client, _github_async_client, _async_lock
    _async_client = None
    _github_async_client = None
    _async_lock = None


# =============================================================================
# Retry with exponential backoff
# =============================================================================


def default_retry_on(error: BaseException, attempt: int) -> bool:
    """Decide whether a failed attempt should be retried.

    Network, server and timeout failures are retried. Auth and client
    failures never are. Anything else (including rate limiting) gets a
    single extra attempt.
    """
    error_type = ApiError.from_error(error).type

    if error_type in (ApiErrorType.NETWORK, ApiErrorType.SERVER, ApiErrorType.TIMEOUT):
        return True
    if error_type in (ApiErrorType.AUTH, ApiErrorType.CLIENT):
        return False
    return attempt < 2


@dataclass(frozen=True)
class RetryConfig:
    """Retry policy.

    Attributes:
        max_retries: Retries after the first attempt
        base_delay: Delay before the first retry, in seconds
        max_delay: Upper bound on the un-jittered delay, in seconds
        retry_on: Predicate ``(error, attempt) -> bool``
    """

    max_retries: int = 3
    base_delay: float = 1.0
    max_delay: float = 10.0
    retry_on: Callable[[BaseException, int], bool] = field(default=default_retry_on)


DEFAULT_RETRY_CONFIG = RetryConfig()


def calculate_backoff(attempt: int, config: RetryConfig = DEFAULT_RETRY_CONFIG) -> float:
    """Exponential backoff with jitter for the given (zero-based) attempt.

    The delay doubles per attempt up to ``max_delay``; jitter moves it by up
    to 12.5% either way. The result is floored to whole milliseconds.
    """
    exponential_delay = min(config.base_delay * (2 ** attempt), config.max_delay)
    jitter = exponential_delay * 0.25 * (random.random() - 0.5)
    return math.floor((exponential_delay + jitter) * 1000) / 1000


async def with_retry(
    fn: Callable[[], Awaitable[T]],
    config: Optional[RetryConfig] = None,
    **overrides: Any,
) -> T:
    """Run an async callable, retrying transient failures.

    Args:
        fn: Zero-argument coroutine function to call on every attempt
        config: Retry policy (defaults to DEFAULT_RETRY_CONFIG)
        **overrides: Per-call overrides of RetryConfig fields

    Returns:
        The value returned by the first successful attempt

    Raises:
        Exception: The last error, once retries are exhausted or the error
            is not retryable
    """
    final_config = replace(config or DEFAULT_RETRY_CONFIG, **overrides)

    for attempt in range(final_config.max_retries + 1):
        try:
            return await fn()
        except Exception as e:
            is_last_attempt = attempt == final_config.max_retries
            if is_last_attempt or not final_config.retry_on(e, attempt):
                raise

            delay = calculate_backoff(attempt, final_config)
            logger.warning(
                f"Retry attempt {attempt + 1}/{final_config.max_retries} "
                f"after {delay * 1000:.0f}ms: {e}"
            )
            await asyncio.sleep(delay)

    # range() always runs at least once and every path returns or raises
    raise AssertionError("unreachable")


async def fetch_with_retry(
    method: str,
    url: str,
    *,
    client: Optional[httpx.AsyncClient] = None,
    timeout: float = DEFAULT_REQUEST_TIMEOUT,
    retry: Optional[RetryConfig] = None,
    **kwargs: Any,
) -> httpx.Response:
    """Make an HTTP request with a hard per-attempt timeout and retries.

    Args:
        method: HTTP method
        url: Absolute URL, or a path relative to the client's base URL
        client: Client to use (defaults to the shared backend client)
        timeout: Seconds before an attempt is abandoned
        retry: Retry policy
        **kwargs: Passed to ``client.request``

    Returns:
        The successful (2xx/3xx) response

    Raises:
        ApiError: On a non-success status or when attempts time out
    """
    http = client or await get_async_client()

    async def attempt() -> httpx.Response:
        try:
            response = await asyncio.wait_for(http.request(method, url, **kwargs), timeout)
        except asyncio.TimeoutError:
            raise ApiError("Request timeout", ApiErrorType.TIMEOUT)

        if response.is_error:
            raise ApiError.from_status(
                f"HTTP {response.status_code}: {response.reason_phrase}",
                response.status_code,
            )
        return response

    return await with_retry(attempt, retry)
