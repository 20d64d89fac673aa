"""GitHub REST API access using the user's OAuth provider token."""

from typing import List, Optional

import httpx

from mivna.errors import ApiError
from mivna.http_client import (
    DEFAULT_REQUEST_TIMEOUT,
    RetryConfig,
    create_timeout,
    get_github_async_client,
    with_retry,
)
from mivna.logging_config import get_logger
from mivna.models import GitHubRepo

logger = get_logger(__name__)

REPOS_PER_PAGE = 100
DEFAULT_GITHUB_RETRY = RetryConfig(max_retries=2)


class GitHubClient:
    """Minimal GitHub client for listing the user's repositories."""

    def __init__(
        self,
        client: Optional[httpx.AsyncClient] = None,
        retry: Optional[RetryConfig] = None,
        timeout: float = DEFAULT_REQUEST_TIMEOUT,
    ):
        """Initialize the client.

        Args:
            client: HTTP client with the GitHub base URL (defaults to the shared pool)
            retry: Retry policy for transient failures (default: two retries)
            timeout: Per-request timeout in seconds
        """
        self._client = client
        self.retry = retry or DEFAULT_GITHUB_RETRY
        self.timeout = create_timeout(timeout)

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is not None:
            return self._client
        return await get_github_async_client()

    async def list_user_repos(self, token: str) -> List[GitHubRepo]:
        """List repositories the token's user can access, recently updated first.

        Only the first page of REPOS_PER_PAGE repositories is returned.

        Args:
            token: GitHub OAuth token

        Returns:
            List of GitHubRepo

        Raises:
            ApiError: If GitHub keeps failing or rejects the token
        """
        client = await self._get_client()

        async def attempt() -> httpx.Response:
            response = await client.get(
                "/user/repos",
                params={"per_page": REPOS_PER_PAGE, "sort": "updated"},
                headers={
                    "Authorization": f"Bearer {token}",
                    "Accept": "application/vnd.github.v3+json",
                },
                timeout=self.timeout,
            )
            if response.is_error:
                raise ApiError.from_status(
                    f"GitHub API error: {response.status_code}", response.status_code
                )
            return response

        response = await with_retry(attempt, self.retry)
        repos = [GitHubRepo.model_validate(item) for item in response.json()]
        logger.debug(f"Fetched {len(repos)} GitHub repositories")
        return repos
