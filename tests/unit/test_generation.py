"""Unit tests for diagram and README generation."""

import asyncio
from unittest.mock import AsyncMock

import httpx
import pytest

from mivna.analytics import Analytics, AnalyticsEvents
from mivna.auth import AuthenticationError, NotAuthenticatedError
from mivna.backend import BackendError
from mivna.errors import ApiError
from mivna.generation import GenerationInProgressError, GenerationService
from mivna.rate_limit import RateLimitExceededError
from mivna.repositories import MISSING_PROVIDER_TOKEN
from tests.factories import DiagramRowFactory, ProfileRowFactory, RepositoryFactory, RepositoryRowFactory, request_json


@pytest.fixture
def analytics():
    tracker = Analytics()
    tracker.track_event = AsyncMock(return_value=True)
    return tracker


@pytest.fixture
def service(backend, auth, analytics):
    return GenerationService(backend, auth, analytics=analytics)


@pytest.fixture
def routes(transport):
    """Default backend routes for a successful generation."""
    transport.add("GET", "/rest/v1/profiles", httpx.Response(200, json=ProfileRowFactory()))
    transport.add("PATCH", "/rest/v1/repositories", httpx.Response(204))
    transport.add("PATCH", "/rest/v1/profiles", httpx.Response(204))
    transport.add("GET", "/rest/v1/repositories", httpx.Response(200, json=RepositoryRowFactory(
        ready=True, repository_diagrams=[DiagramRowFactory(diagram_type="flowchart")],
    )))
    return transport


def _patches(transport, table):
    return [request_json(r) for r in transport.find("PATCH", f"/rest/v1/{table}")]


class TestGenerateDiagram:
    @pytest.mark.asyncio
    async def test_success(self, service, signed_in, routes, analytics):
        signed_in()
        routes.add("POST", "/functions/v1/generate-diagram", httpx.Response(200, json={"success": True}))

        repo = await service.generate_diagram(RepositoryFactory(), "erd")

        body = request_json(routes.find("POST", "/functions/v1/generate-diagram")[0])
        assert body == {
            "repoOwner": "octocat",
            "repoName": "hello-world",
            "githubToken": "gh-token",
            "diagramType": "erd",
        }
        assert routes.find("POST", "/functions/v1/generate-diagram")[0].headers["Authorization"] == "Bearer access-1"
        assert _patches(routes, "repositories") == [{"status": "processing"}]
        assert repo.status.value == "ready"
        assert not service.is_processing("repo-1")
        analytics.track_event.assert_awaited_once_with(
            AnalyticsEvents.GENERATE_DIAGRAM, {"repo": "hello-world", "type": "erd", "success": 1}
        )

    @pytest.mark.asyncio
    async def test_failure_marks_error_and_reraises(self, service, signed_in, routes, analytics):
        signed_in()
        routes.add("POST", "/functions/v1/generate-diagram", httpx.Response(500, json={"error": "Model failed"}))

        with pytest.raises(BackendError, match="Model failed"):
            await service.generate_diagram(RepositoryFactory())

        assert _patches(routes, "repositories") == [{"status": "processing"}, {"status": "error"}]
        assert not service.is_processing("repo-1")
        analytics.track_event.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_rate_limited(self, service, signed_in, transport):
        signed_in()
        transport.add("GET", "/rest/v1/profiles", httpx.Response(200, json=ProfileRowFactory(beta_limit_reached=True)))

        with pytest.raises(RateLimitExceededError):
            await service.generate_diagram(RepositoryFactory())

        assert transport.find("POST", "/functions/v1/generate-diagram") == []
        assert transport.find("PATCH", "/rest/v1/repositories") == []

    @pytest.mark.asyncio
    async def test_requires_provider_token(self, service, signed_in):
        signed_in(no_provider_token=True)
        with pytest.raises(ApiError, match=MISSING_PROVIDER_TOKEN):
            await service.generate_diagram(RepositoryFactory())

    @pytest.mark.asyncio
    async def test_requires_session(self, service):
        with pytest.raises(NotAuthenticatedError):
            await service.generate_diagram(RepositoryFactory())

    @pytest.mark.asyncio
    async def test_requires_profile(self, service, auth, signed_in, transport):
        signed_in()
        auth.state.profile = None
        transport.add("GET", "/rest/v1/profiles", httpx.Response(500, json={"message": "down"}))

        with pytest.raises(AuthenticationError, match="Profile not available"):
            await service.generate_diagram(RepositoryFactory())

    @pytest.mark.asyncio
    async def test_concurrent_generation_rejected(self, service, signed_in, routes):
        signed_in()
        release = asyncio.Event()

        async def slow_invoke(*args, **kwargs):
            await release.wait()
            return {"success": True}

        service.backend.invoke = slow_invoke
        first = asyncio.create_task(service.generate_diagram(RepositoryFactory()))
        while not service.is_processing("repo-1"):
            await asyncio.sleep(0)

        with pytest.raises(GenerationInProgressError):
            await service.generate_diagram(RepositoryFactory())

        release.set()
        await first
        assert not service.is_processing("repo-1")


class TestGenerateReadme:
    @pytest.mark.asyncio
    async def test_success_stores_and_counts(self, service, signed_in, routes, analytics):
        signed_in(profile=ProfileRowFactory(readmes_generated=2))
        routes.add("POST", "/functions/v1/generate-readme", httpx.Response(200, json={"readmeContent": "# Hello"}))

        readme = await service.generate_readme(RepositoryFactory())

        assert readme == "# Hello"
        stored = _patches(routes, "repositories")[0]
        assert stored["readme_content"] == "# Hello"
        assert "last_scanned_at" in stored
        assert _patches(routes, "profiles") == [{"readmes_generated": 3}]
        analytics.track_event.assert_awaited_once_with(
            AnalyticsEvents.GENERATE_README, {"repo": "hello-world", "success": 1}
        )

    @pytest.mark.asyncio
    async def test_malformed_response(self, service, signed_in, routes):
        signed_in()
        routes.add("POST", "/functions/v1/generate-readme", httpx.Response(200, json={"unexpected": True}))

        with pytest.raises(ApiError, match="missing 'readmeContent'"):
            await service.generate_readme(RepositoryFactory())

        assert _patches(routes, "profiles") == []
        assert not service.is_processing("repo-1")


class TestUpdates:
    @pytest.mark.asyncio
    async def test_update_diagram_stores_code(self, service, signed_in, routes):
        signed_in()
        routes.add("POST", "/functions/v1/generate-diagram", httpx.Response(200, json={"diagramCode": "graph TD"}))

        code = await service.update_diagram(RepositoryFactory())

        assert code == "graph TD"
        stored = _patches(routes, "repositories")[0]
        assert stored["diagram_code"] == "graph TD"
        assert "last_scanned_at" in stored

    @pytest.mark.asyncio
    async def test_update_readme_leaves_counters(self, service, signed_in, routes):
        signed_in()
        routes.add("POST", "/functions/v1/generate-readme", httpx.Response(200, json={"readmeContent": "# New"}))

        assert await service.update_readme(RepositoryFactory()) == "# New"
        assert _patches(routes, "profiles") == []


class TestExplainNode:
    @pytest.mark.asyncio
    async def test_explain_node(self, service, signed_in, transport, analytics):
        signed_in()
        transport.add("POST", "/functions/v1/explain-node", httpx.Response(200, json={"explanation": "Handles auth"}))

        text = await service.explain_node(RepositoryFactory(diagram_code="graph TD; Auth-->DB"), "Auth")

        assert text == "Handles auth"
        body = request_json(transport.requests[0])
        assert body == {"nodeName": "Auth", "diagramCode": "graph TD; Auth-->DB", "repoName": "hello-world"}
        analytics.track_event.assert_awaited_once_with(AnalyticsEvents.EXPLAIN_NODE, {"repo": "hello-world"})

    @pytest.mark.asyncio
    async def test_explicit_diagram_code(self, service, signed_in, transport):
        signed_in()
        transport.add("POST", "/functions/v1/explain-node", httpx.Response(200, json={"explanation": "x"}))

        await service.explain_node(RepositoryFactory(), "Node", diagram_code="erDiagram")

        assert request_json(transport.requests[0])["diagramCode"] == "erDiagram"
