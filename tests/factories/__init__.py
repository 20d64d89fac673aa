"""Factory Boy factories for Mivna models and backend rows.

Usage:
    from tests.factories import RepositoryFactory, SessionFactory

    # Model instance
    repo = RepositoryFactory(ready=True)

    # Row as the backend returns it
    row = RepositoryRowFactory(repository_diagrams=[DiagramRowFactory(diagram_type="erd")])

    # Expired session
    session = SessionFactory(expired=True)
"""

from .auth import ProfileRowFactory, SessionFactory, UserFactory
from .http import ANON_KEY, BACKEND_URL, RecordingTransport, request_json, rows_route
from .repository import (
    DiagramRowFactory,
    GitHubRepoJsonFactory,
    RepositoryFactory,
    RepositoryRowFactory,
)

__all__ = [
    "ANON_KEY",
    "BACKEND_URL",
    "DiagramRowFactory",
    "GitHubRepoJsonFactory",
    "ProfileRowFactory",
    "RecordingTransport",
    "RepositoryFactory",
    "RepositoryRowFactory",
    "SessionFactory",
    "UserFactory",
    "request_json",
    "rows_route",
]
