"""Connected repository management (the dashboard's data layer)."""

from dataclasses import dataclass
from typing import Iterable, List, Optional, Sequence

from mivna.backend import BackendClient
from mivna.errors import ApiError, ApiErrorType
from mivna.github import GitHubClient
from mivna.logging_config import get_logger
from mivna.models import GitHubRepo, RepoStatus, Repository

logger = get_logger(__name__)

REPOSITORY_COLUMNS = "*, repository_diagrams(*)"

STATUS_FILTERS = ("all", "ready", "processing", "error")
SORT_OPTIONS = ("date", "name", "updated")

# Beta totals shown on the dashboard usage badges
DIAGRAM_LIMIT = 10
README_LIMIT = 10

MISSING_PROVIDER_TOKEN = "GitHub token not available. Please log in again."


class RepositoryService:
    """Reads and writes the ``repositories`` table for one user."""

    def __init__(self, backend: BackendClient, github: Optional[GitHubClient] = None):
        self.backend = backend
        self.github = github or GitHubClient()

    async def fetch_connected_repos(self, user_id: str) -> List[Repository]:
        """Fetch the user's connected repositories, newest first, with their diagrams."""
        rows = await (
            self.backend.table("repositories")
            .select(REPOSITORY_COLUMNS)
            .eq("user_id", user_id)
            .order("created_at", ascending=False)
            .execute()
        )
        return [Repository.model_validate(row) for row in rows or []]

    async def get_repository(self, repo_id: str) -> Repository:
        """Fetch one repository by ID.

        Raises:
            BackendError: With code PGRST116 if it does not exist
        """
        row = await (
            self.backend.table("repositories")
            .select(REPOSITORY_COLUMNS)
            .eq("id", repo_id)
            .single()
            .execute()
        )
        return Repository.model_validate(row)

    async def fetch_github_repos(
        self,
        provider_token: Optional[str],
        connected: Iterable[Repository] = (),
    ) -> List[GitHubRepo]:
        """List the user's GitHub repositories that are not connected yet.

        Args:
            provider_token: GitHub OAuth token from the session
            connected: Already connected repositories to exclude

        Raises:
            ApiError: If the token is missing or GitHub fails
        """
        if not provider_token:
            raise ApiError(MISSING_PROVIDER_TOKEN, ApiErrorType.AUTH)

        connected_ids = {repo.github_repo_id for repo in connected}
        repos = await self.github.list_user_repos(provider_token)
        return [repo for repo in repos if repo.id not in connected_ids]

    async def connect_repos(self, user_id: str, repos: Sequence[GitHubRepo]) -> int:
        """Connect GitHub repositories, one insert per repository.

        Returns:
            Number of repositories connected
        """
        for repo in repos:
            await self.backend.table("repositories").insert({
                "user_id": user_id,
                "github_repo_id": repo.id,
                "repo_name": repo.name,
                "repo_url": repo.html_url,
                "repo_owner": repo.owner.login,
                "status": RepoStatus.PENDING.value,
            }).execute()
            logger.info(f"Connected repository {repo.full_name}")
        return len(repos)

    async def delete_repository(self, repo_id: str) -> None:
        """Disconnect a repository (its diagrams cascade server-side)."""
        await self.backend.table("repositories").delete().eq("id", repo_id).execute()
        logger.info(f"Disconnected repository {repo_id}")

    async def set_status(self, repo_id: str, status: RepoStatus) -> None:
        await self.backend.table("repositories").update({"status": status.value}).eq("id", repo_id).execute()


def filter_and_sort_repos(
    repos: Iterable[Repository],
    query: str = "",
    status: str = "all",
    sort_by: str = "date",
) -> List[Repository]:
    """Apply the dashboard's search, status filter and sort order.

    Args:
        repos: Repositories to filter
        query: Case-insensitive substring matched against name or owner
        status: One of STATUS_FILTERS
        sort_by: "date" (newest created first), "name" (A-Z) or
            "updated" (most recently updated first)

    Returns:
        New filtered and sorted list
    """
    filtered = list(repos)

    needle = query.strip().lower()
    if needle:
        filtered = [
            repo for repo in filtered
            if needle in repo.repo_name.lower() or needle in repo.repo_owner.lower()
        ]

    if status != "all":
        filtered = [repo for repo in filtered if repo.status.value == status]

    if sort_by == "name":
        return sorted(filtered, key=lambda repo: repo.repo_name.lower())
    if sort_by == "updated":
        return sorted(filtered, key=lambda repo: repo.updated_at, reverse=True)
    return sorted(filtered, key=lambda repo: repo.created_at, reverse=True)


@dataclass(frozen=True)
class UsageBadge:
    """Usage counter as rendered on the dashboard."""

    used: int
    limit: int

    @property
    def level(self) -> str:
        """"danger" at the limit, "warning" within two of it, else ""."""
        if self.used >= self.limit:
            return "danger"
        if self.used >= self.limit - 2:
            return "warning"
        return ""

    @property
    def is_warning(self) -> bool:
        return self.level != ""

    def __str__(self) -> str:
        return f"{self.used}/{self.limit}"


def usage_badge(used: Optional[int], limit: int) -> UsageBadge:
    return UsageBadge(used or 0, limit)
