"""Fixtures for CLI integration tests.

Commands run through click's CliRunner against real services whose HTTP
traffic goes to a recording mock transport instead of the network.
"""

from unittest.mock import patch

import httpx
import pytest
from click.testing import CliRunner

from mivna.auth import Session, SessionStore
from mivna.client import MivnaClient
from tests.factories import ANON_KEY, BACKEND_URL, ProfileRowFactory, RecordingTransport, SessionFactory

_ISOLATED_ENV_VARS = (
    "MIVNA_SENTRY_DSN",
    "SENTRY_DSN",
    "MIVNA_PLAUSIBLE_DOMAIN",
    "MIVNA_LOG_LEVEL",
    "LOG_LEVEL",
    "MIVNA_LOG_FORMAT",
    "LOG_FORMAT",
    "MIVNA_LOG_FILE",
    "LOG_FILE",
    "VITE_SUPABASE_URL",
    "VITE_SUPABASE_ANON_KEY",
    "SUPABASE_URL",
    "SUPABASE_ANON_KEY",
)


@pytest.fixture
def runner():
    """Create a CLI runner."""
    return CliRunner()


@pytest.fixture
def session_dir(tmp_path, monkeypatch):
    """Point the CLI at a temporary home, session directory and backend."""
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("HOME", str(tmp_path))
    for name in _ISOLATED_ENV_VARS:
        monkeypatch.delenv(name, raising=False)

    directory = tmp_path / "session"
    monkeypatch.setenv("MIVNA_SUPABASE_URL", BACKEND_URL)
    monkeypatch.setenv("MIVNA_SUPABASE_ANON_KEY", ANON_KEY)
    monkeypatch.setenv("MIVNA_SESSION_DIR", str(directory))
    return directory


@pytest.fixture
def transport(session_dir):
    """Recording transport behind every client the CLI builds."""
    recording = RecordingTransport()

    def build(config):
        return MivnaClient(
            config,
            http_client=httpx.AsyncClient(transport=httpx.MockTransport(recording)),
            github_client=httpx.AsyncClient(
                base_url="https://api.github.com", transport=httpx.MockTransport(recording)
            ),
        )

    with patch("mivna.cli.runtime.MivnaClient", side_effect=build):
        yield recording


@pytest.fixture
def logged_in(session_dir, transport) -> Session:
    """A cached session the backend accepts, with a free-plan profile."""
    session = SessionFactory()
    SessionStore(session_dir).save(session)
    transport.add("GET", "/auth/v1/user", httpx.Response(200, json=session.user.model_dump(mode="json")))
    transport.add("GET", "/rest/v1/profiles", httpx.Response(200, json=ProfileRowFactory()))
    transport.add("GET", "/rest/v1/org_members", httpx.Response(200, json=[]))
    return session
