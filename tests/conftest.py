"""Global pytest configuration and fixtures.

This module provides shared fixtures and configuration for all tests.
"""

import logging
from typing import Any, Callable, Dict, Optional

import httpx
import pytest

from mivna.auth import AuthService, Session, SessionStore
from mivna.backend import BackendClient
from mivna.config import AuthConfig
from mivna.http_client import reset_clients
from mivna.logging_config import ROOT_LOGGER_NAME
from mivna.models import Profile
from tests.factories import ANON_KEY, BACKEND_URL, ProfileRowFactory, RecordingTransport, SessionFactory


def pytest_configure(config):
    """Configure pytest with custom markers."""
    config.addinivalue_line(
        "markers", "unit: Unit tests (fast, no external dependencies)"
    )
    config.addinivalue_line(
        "markers", "integration: Integration tests (CLI wired to mocked services)"
    )


@pytest.fixture(autouse=True)
def _reset_http_clients():
    """Drop shared HTTP clients between tests; each test runs its own loop."""
    reset_clients()
    yield
    reset_clients()


@pytest.fixture(autouse=True)
def _reset_logging():
    """Drop handlers bound to streams captured by an earlier test."""
    yield
    root = logging.getLogger(ROOT_LOGGER_NAME)
    for handler in list(root.handlers):
        root.removeHandler(handler)
        handler.close()
    root.propagate = True


@pytest.fixture
def transport() -> RecordingTransport:
    return RecordingTransport()


@pytest.fixture
def http_client(transport: RecordingTransport) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(transport))


@pytest.fixture
def backend(http_client: httpx.AsyncClient) -> BackendClient:
    return BackendClient(BACKEND_URL, ANON_KEY, client=http_client)


@pytest.fixture
def session_store(tmp_path) -> SessionStore:
    return SessionStore(tmp_path)


@pytest.fixture
def auth(backend: BackendClient, session_store: SessionStore) -> AuthService:
    return AuthService(backend, session_store, AuthConfig(bootstrap_timeout=1.0))


@pytest.fixture
def signed_in(auth: AuthService) -> Callable[..., Session]:
    """Put ``auth`` into a signed-in state without any network traffic."""

    def _sign_in(profile: Optional[Dict[str, Any]] = None, **session_kwargs: Any) -> Session:
        session = SessionFactory(**session_kwargs)
        auth._apply_session(session)
        auth.state.profile = Profile.model_validate(profile or ProfileRowFactory())
        auth.state.loading = False
        return session

    return _sign_in
