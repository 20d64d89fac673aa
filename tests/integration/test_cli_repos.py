"""Integration tests for repository, diagram and README commands."""

import httpx
import pytest

from mivna.cli import cli
from tests.factories import (
    DiagramRowFactory,
    GitHubRepoJsonFactory,
    ProfileRowFactory,
    RepositoryRowFactory,
    request_json,
    rows_route,
)


@pytest.fixture
def connected(transport):
    """One connected repository with a flowchart and a README."""
    row = RepositoryRowFactory(
        ready=True,
        readme_content="# Hello World\n\nA tiny project.",
        repository_diagrams=[DiagramRowFactory(diagram_type="flowchart", diagram_code="flowchart TD; A-->B")],
    )
    transport.add("GET", "/rest/v1/repositories", rows_route(row))
    return row


class TestReposCommands:
    def test_list_requires_login(self, runner, transport):
        result = runner.invoke(cli, ["repos", "list"])

        assert result.exit_code == 1
        assert "Not logged in" in result.output

    def test_list(self, runner, logged_in, connected):
        result = runner.invoke(cli, ["repos", "list"])

        assert result.exit_code == 0
        assert "octocat/hello-world" in result.output
        assert "ready" in result.output
        assert "1/4 Diagrams" in result.output
        assert "Diagrams: 0/10" in result.output

    def test_list_no_matches(self, runner, logged_in, connected):
        result = runner.invoke(cli, ["repos", "list", "--status", "error"])

        assert result.exit_code == 0
        assert "No repositories match your current filters" in result.output

    def test_list_empty(self, runner, logged_in, transport):
        transport.add("GET", "/rest/v1/repositories", httpx.Response(200, json=[]))

        result = runner.invoke(cli, ["repos", "list"])

        assert result.exit_code == 0
        assert "No repositories connected yet" in result.output

    def test_available_excludes_connected(self, runner, logged_in, connected, transport):
        transport.add("GET", "/user/repos", httpx.Response(200, json=[
            GitHubRepoJsonFactory(id=101, name="hello-world"),
            GitHubRepoJsonFactory(id=202, name="spoon-knife"),
        ]))

        result = runner.invoke(cli, ["repos", "available"])

        assert result.exit_code == 0
        assert "octocat/spoon-knife" in result.output
        assert "octocat/hello-world" not in result.output

    def test_connect(self, runner, logged_in, connected, transport):
        transport.add("GET", "/user/repos", httpx.Response(200, json=[GitHubRepoJsonFactory(id=202, name="spoon-knife")]))
        transport.add("POST", "/rest/v1/repositories", httpx.Response(201))

        result = runner.invoke(cli, ["repos", "connect", "octocat/spoon-knife"])

        assert result.exit_code == 0
        assert "Connected 1 repository" in result.output
        body = request_json(transport.find("POST", "/rest/v1/repositories")[0])
        assert body["github_repo_id"] == 202
        assert body["status"] == "pending"

    def test_connect_unknown_repo(self, runner, logged_in, connected, transport):
        transport.add("GET", "/user/repos", httpx.Response(200, json=[]))

        result = runner.invoke(cli, ["repos", "connect", "nope"])

        assert result.exit_code == 1
        assert "Not available to connect: nope" in result.output
        assert transport.find("POST", "/rest/v1/repositories") == []

    def test_connect_needs_names(self, runner, logged_in):
        result = runner.invoke(cli, ["repos", "connect"])

        assert result.exit_code == 1
        assert "No repositories given" in result.output

    def test_delete(self, runner, logged_in, connected, transport):
        transport.add("DELETE", "/rest/v1/repositories", httpx.Response(204))

        result = runner.invoke(cli, ["repos", "delete", "hello-world", "--yes"])

        assert result.exit_code == 0
        assert "disconnected successfully" in result.output
        assert transport.find("DELETE", "/rest/v1/repositories")[0].url.params["id"] == "eq.repo-1"

    def test_unknown_repo_ref(self, runner, logged_in, connected):
        result = runner.invoke(cli, ["repos", "delete", "missing", "--yes"])

        assert result.exit_code == 1
        assert "is not connected" in result.output


class TestDiagramCommands:
    def test_types(self, runner, session_dir):
        result = runner.invoke(cli, ["diagram", "types"])

        assert result.exit_code == 0
        assert "Flowchart (default)" in result.output
        assert "component" in result.output

    def test_generate(self, runner, logged_in, connected, transport):
        transport.add("PATCH", "/rest/v1/repositories", httpx.Response(204))
        transport.add("POST", "/functions/v1/generate-diagram", httpx.Response(200, json={"success": True}))

        result = runner.invoke(cli, ["diagram", "generate", "octocat/hello-world", "--type", "erd"])

        assert result.exit_code == 0, result.output
        assert "Diagram generated successfully!" in result.output
        assert "1/4 Diagrams" in result.output
        body = request_json(transport.find("POST", "/functions/v1/generate-diagram")[0])
        assert body["diagramType"] == "erd"
        assert body["githubToken"] == "gh-token"

    def test_generate_blocked_by_beta_limit(self, runner, logged_in, connected, transport):
        transport.add("GET", "/rest/v1/profiles", httpx.Response(200, json=ProfileRowFactory(beta_limit_reached=True)))

        result = runner.invoke(cli, ["diagram", "generate", "hello-world"])

        assert result.exit_code == 1
        assert "beta diagram generations" in result.output
        assert transport.find("POST", "/functions/v1/generate-diagram") == []

    def test_generate_failure_marks_error(self, runner, logged_in, connected, transport):
        transport.add("PATCH", "/rest/v1/repositories", httpx.Response(204))
        transport.add("POST", "/functions/v1/generate-diagram", httpx.Response(500, json={"error": "boom"}))

        result = runner.invoke(cli, ["diagram", "generate", "hello-world"])

        assert result.exit_code == 1
        assert [request_json(r) for r in transport.find("PATCH", "/rest/v1/repositories")] == [
            {"status": "processing"},
            {"status": "error"},
        ]

    def test_show(self, runner, logged_in, connected):
        result = runner.invoke(cli, ["diagram", "show", "hello-world"])

        assert result.exit_code == 0
        assert "flowchart TD; A-->B" in result.output

    def test_show_missing_variant(self, runner, logged_in, connected):
        result = runner.invoke(cli, ["diagram", "show", "hello-world", "--type", "sequence"])

        assert result.exit_code == 1
        assert "No sequence diagram" in result.output

    def test_explain(self, runner, logged_in, connected, transport):
        transport.add("POST", "/functions/v1/explain-node", httpx.Response(200, json={"explanation": "Entry point"}))

        result = runner.invoke(cli, ["diagram", "explain", "hello-world", "A"])

        assert result.exit_code == 0
        assert "Entry point" in result.output
        body = request_json(transport.find("POST", "/functions/v1/explain-node")[0])
        assert body == {"nodeName": "A", "diagramCode": "flowchart TD; A-->B", "repoName": "hello-world"}

    def test_export_mermaid_source(self, runner, logged_in, connected, tmp_path):
        target = tmp_path / "out.mmd"

        result = runner.invoke(cli, ["diagram", "export", "hello-world", "--format", "mmd", "-o", str(target)])

        assert result.exit_code == 0
        assert target.read_text() == "flowchart TD; A-->B"


class TestReadmeCommands:
    def test_show_raw(self, runner, logged_in, connected):
        result = runner.invoke(cli, ["readme", "show", "hello-world", "--raw"])

        assert result.exit_code == 0
        assert "# Hello World" in result.output

    def test_show_missing(self, runner, logged_in, transport):
        transport.add("GET", "/rest/v1/repositories", rows_route(RepositoryRowFactory()))

        result = runner.invoke(cli, ["readme", "show", "hello-world"])

        assert result.exit_code == 1
        assert "No README generated" in result.output

    def test_generate_counts_usage(self, runner, logged_in, connected, transport):
        transport.add("POST", "/functions/v1/generate-readme", httpx.Response(200, json={"readmeContent": "# New"}))
        transport.add("PATCH", "/rest/v1/repositories", httpx.Response(204))
        transport.add("PATCH", "/rest/v1/profiles", httpx.Response(204))

        result = runner.invoke(cli, ["readme", "generate", "hello-world"])

        assert result.exit_code == 0
        assert "README generated successfully!" in result.output
        assert request_json(transport.find("PATCH", "/rest/v1/profiles")[0]) == {"readmes_generated": 1}

    def test_export_default_filename(self, runner, logged_in, connected, tmp_path):
        result = runner.invoke(cli, ["readme", "export", "hello-world"])

        assert result.exit_code == 0
        assert (tmp_path / "hello-world-README.md").read_text(encoding="utf-8").startswith("# Hello World")
