"""Wires the services together for one configuration.

Example:
    >>> config = load_config()
    >>> async with MivnaClient(config) as mivna:
    ...     await mivna.auth.bootstrap()
    ...     repos = await mivna.repositories.fetch_connected_repos(mivna.auth.user.id)
"""

from typing import Optional

import httpx

from mivna.analytics import Analytics
from mivna.auth import AuthService, SessionStore
from mivna.backend import BackendClient
from mivna.billing import BillingService
from mivna.config import MivnaConfig
from mivna.generation import GenerationService
from mivna.github import GitHubClient
from mivna.http_client import RetryConfig, close_clients
from mivna.organizations import OrganizationService
from mivna.rate_limit import RateLimiter
from mivna.repositories import RepositoryService


class MivnaClient:
    """Service container sharing one backend client and auth state."""

    def __init__(
        self,
        config: MivnaConfig,
        http_client: Optional[httpx.AsyncClient] = None,
        github_client: Optional[httpx.AsyncClient] = None,
    ):
        """Create all services.

        Args:
            config: Loaded configuration
            http_client: Client for the backend and analytics (defaults to the shared pool)
            github_client: Client for GitHub (defaults to the shared GitHub pool)
        """
        self.config = config
        self.backend = BackendClient(
            config.backend.url,
            config.backend.anon_key,
            client=http_client,
            timeout=config.http.timeout,
        )
        self.analytics = Analytics(config.analytics, client=http_client)
        self.auth = AuthService(self.backend, SessionStore(config.session_dir), config.auth)
        self.rate_limiter = RateLimiter(self.backend)
        self.repositories = RepositoryService(
            self.backend,
            GitHubClient(
                github_client,
                retry=RetryConfig(
                    max_retries=min(2, config.http.max_retries),
                    base_delay=config.http.base_delay,
                    max_delay=config.http.max_delay,
                ),
                timeout=config.http.timeout,
            ),
        )
        self.generation = GenerationService(
            self.backend,
            self.auth,
            rate_limiter=self.rate_limiter,
            repositories=self.repositories,
            analytics=self.analytics,
        )
        self.organizations = OrganizationService(self.backend, self.auth, config.session_dir)
        self.billing = BillingService(self.backend, self.auth, app_url=config.analytics.app_url)

    async def aclose(self) -> None:
        await close_clients()

    async def __aenter__(self) -> "MivnaClient":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.aclose()
