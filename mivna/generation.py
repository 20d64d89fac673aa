"""Diagram and README generation through the backend's Edge Functions.

The functions do the heavy lifting (fetching the repository with the
user's GitHub token and prompting the model); this module sends the
requests, keeps the repository row's status in step, and records usage.
"""

from datetime import datetime, timezone
from typing import Any, Dict, Optional, Set, Union

from mivna.analytics import Analytics, AnalyticsEvents
from mivna.auth import AuthenticationError, AuthService, Session
from mivna.backend import BackendClient, BackendError
from mivna.diagrams import DEFAULT_DIAGRAM_TYPE
from mivna.errors import ApiError, ApiErrorType
from mivna.logging_config import LogContext, get_logger
from mivna.models import DiagramType, Profile, RepoStatus, Repository
from mivna.observability import track_api_call
from mivna.rate_limit import RateLimiter
from mivna.repositories import MISSING_PROVIDER_TOKEN, RepositoryService

logger = get_logger(__name__)

GENERATE_DIAGRAM_FUNCTION = "generate-diagram"
GENERATE_README_FUNCTION = "generate-readme"
EXPLAIN_NODE_FUNCTION = "explain-node"


class GenerationInProgressError(Exception):
    """Raised when a repository already has a generation running."""

    pass


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _require_field(data: Any, key: str, function_name: str) -> Any:
    if not isinstance(data, dict) or key not in data:
        raise ApiError(f"Unexpected response from {function_name}: missing '{key}'")
    return data[key]


class GenerationService:
    """Runs generations for the signed-in user."""

    def __init__(
        self,
        backend: BackendClient,
        auth: AuthService,
        rate_limiter: Optional[RateLimiter] = None,
        repositories: Optional[RepositoryService] = None,
        analytics: Optional[Analytics] = None,
    ):
        self.backend = backend
        self.auth = auth
        self.rate_limiter = rate_limiter or RateLimiter(backend)
        self.repositories = repositories or RepositoryService(backend)
        self.analytics = analytics or Analytics()
        self._in_flight: Set[str] = set()

    def is_processing(self, repo_id: str) -> bool:
        return repo_id in self._in_flight

    async def _require_generation_context(self) -> tuple[Session, Profile]:
        session = self.auth.require_auth()
        if not session.provider_token:
            raise ApiError(MISSING_PROVIDER_TOKEN, ApiErrorType.AUTH)

        profile = self.auth.profile or await self.auth.refresh_profile()
        if profile is None:
            raise AuthenticationError("Profile not available. Please log in again.")
        return session, profile

    def _claim(self, repo: Repository) -> None:
        if repo.id in self._in_flight:
            raise GenerationInProgressError(
                f"A generation is already running for {repo.full_name}"
            )
        self._in_flight.add(repo.id)

    async def _invoke(self, function_name: str, session: Session, body: Dict[str, Any]) -> Any:
        return await track_api_call(
            function_name,
            lambda: self.backend.invoke(
                function_name,
                body,
                headers={"Authorization": f"Bearer {session.access_token}"},
            ),
            attributes={"repo": body.get("repoName", "")},
        )

    def _repo_body(self, repo: Repository, session: Session) -> Dict[str, Any]:
        return {
            "repoOwner": repo.repo_owner,
            "repoName": repo.repo_name,
            "githubToken": session.provider_token,
        }

    async def generate_diagram(
        self,
        repo: Repository,
        diagram_type: Union[DiagramType, str] = DEFAULT_DIAGRAM_TYPE,
    ) -> Repository:
        """Generate one diagram variant for a repository.

        The repository is marked ``processing`` while the function runs and
        ``error`` if it fails. The function stores the diagram itself.

        Args:
            repo: Repository to diagram
            diagram_type: Variant to generate

        Returns:
            The repository re-read with its diagrams

        Raises:
            NotAuthenticatedError: Without a session
            ApiError: Without a GitHub token, or on a malformed response
            RateLimitExceededError: When the user's limits forbid it
            GenerationInProgressError: When the repository is already processing
            BackendError: If the function or a table update fails
        """
        diagram_type = DiagramType(diagram_type)
        session, _ = await self._require_generation_context()

        await self.rate_limiter.fetch(session.user.id)
        self.rate_limiter.check_can_generate_diagram()

        self._claim(repo)
        try:
            with LogContext(repo=repo.full_name, diagram_type=diagram_type.value):
                try:
                    await self.repositories.set_status(repo.id, RepoStatus.PROCESSING)
                    await self._invoke(
                        GENERATE_DIAGRAM_FUNCTION,
                        session,
                        {**self._repo_body(repo, session), "diagramType": diagram_type.value},
                    )
                except Exception as e:
                    logger.error(f"Failed to generate diagram: {e}")
                    await self._mark_failed(repo)
                    raise

                logger.info("Diagram generated")
        finally:
            self._in_flight.discard(repo.id)

        await self.auth.refresh_profile()
        await self.analytics.track_event(
            AnalyticsEvents.GENERATE_DIAGRAM,
            {"repo": repo.repo_name, "type": diagram_type.value, "success": 1},
        )
        return await self.repositories.get_repository(repo.id)

    async def _mark_failed(self, repo: Repository) -> None:
        try:
            await self.repositories.set_status(repo.id, RepoStatus.ERROR)
        except BackendError as e:
            logger.warning(f"Could not mark {repo.full_name} as failed: {e}")

    async def generate_readme(self, repo: Repository) -> str:
        """Generate a README, store it and count it against the user's usage.

        Returns:
            The README markdown
        """
        session, profile = await self._require_generation_context()

        await self.rate_limiter.fetch(session.user.id)
        self.rate_limiter.check_can_generate_readme()

        self._claim(repo)
        try:
            with LogContext(repo=repo.full_name):
                data = await self._invoke(GENERATE_README_FUNCTION, session, self._repo_body(repo, session))
                readme = _require_field(data, "readmeContent", GENERATE_README_FUNCTION)

                await self._store_readme(repo, readme)
                await self.backend.table("profiles").update(
                    {"readmes_generated": profile.readmes_generated + 1}
                ).eq("id", session.user.id).execute()
                logger.info("README generated")
        finally:
            self._in_flight.discard(repo.id)

        await self.auth.refresh_profile()
        await self.analytics.track_event(
            AnalyticsEvents.GENERATE_README, {"repo": repo.repo_name, "success": 1}
        )
        return readme

    async def _store_readme(self, repo: Repository, readme: str) -> None:
        await self.backend.table("repositories").update({
            "readme_content": readme,
            "last_scanned_at": _now_iso(),
        }).eq("id", repo.id).execute()

    async def update_diagram(self, repo: Repository) -> str:
        """Regenerate the repository's primary diagram and store its code.

        Returns:
            The new Mermaid code
        """
        session, _ = await self._require_generation_context()

        self._claim(repo)
        try:
            data = await self._invoke(GENERATE_DIAGRAM_FUNCTION, session, self._repo_body(repo, session))
            code = _require_field(data, "diagramCode", GENERATE_DIAGRAM_FUNCTION)

            await self.backend.table("repositories").update({
                "diagram_code": code,
                "last_scanned_at": _now_iso(),
            }).eq("id", repo.id).execute()
        finally:
            self._in_flight.discard(repo.id)

        logger.info(f"Diagram updated for {repo.full_name}")
        await self.analytics.track_event(AnalyticsEvents.UPDATE_DIAGRAM, {"repo": repo.repo_name})
        return code

    async def update_readme(self, repo: Repository) -> str:
        """Regenerate and store the README without touching usage counters."""
        session, _ = await self._require_generation_context()

        self._claim(repo)
        try:
            data = await self._invoke(GENERATE_README_FUNCTION, session, self._repo_body(repo, session))
            readme = _require_field(data, "readmeContent", GENERATE_README_FUNCTION)
            await self._store_readme(repo, readme)
        finally:
            self._in_flight.discard(repo.id)

        logger.info(f"README updated for {repo.full_name}")
        await self.analytics.track_event(AnalyticsEvents.UPDATE_README, {"repo": repo.repo_name})
        return readme

    async def explain_node(
        self,
        repo: Repository,
        node_name: str,
        diagram_code: Optional[str] = None,
    ) -> str:
        """Ask for a plain-language explanation of one diagram node.

        Args:
            repo: Repository the diagram belongs to
            node_name: Label of the node to explain
            diagram_code: Diagram containing the node (default: the repository's)

        Returns:
            Explanation text
        """
        session = self.auth.require_auth()
        data = await self._invoke(
            EXPLAIN_NODE_FUNCTION,
            session,
            {
                "nodeName": node_name,
                "diagramCode": diagram_code if diagram_code is not None else repo.diagram_code,
                "repoName": repo.repo_name,
            },
        )
        await self.analytics.track_event(AnalyticsEvents.EXPLAIN_NODE, {"repo": repo.repo_name})
        return _require_field(data, "explanation", EXPLAIN_NODE_FUNCTION)
