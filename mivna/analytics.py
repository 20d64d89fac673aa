"""Privacy-friendly product analytics through the Plausible events API.

Tracking is disabled unless an analytics domain is configured. Analytics
must never break a command: delivery failures are logged and dropped.
"""

from typing import Dict, Optional, Union

import httpx

from mivna import __version__
from mivna.config import AnalyticsConfig
from mivna.http_client import get_async_client
from mivna.logging_config import get_logger

logger = get_logger(__name__)

PropValue = Union[str, int, float, bool]


class AnalyticsEvents:
    """Event names shared with the web dashboard."""

    # Repository actions
    CONNECT_REPO = "connect_repository"
    DELETE_REPO = "delete_repository"

    # Generation actions
    GENERATE_DIAGRAM = "generate_diagram"
    GENERATE_README = "generate_readme"
    UPDATE_DIAGRAM = "update_diagram"
    UPDATE_README = "update_readme"

    # Export actions
    EXPORT_PNG = "export_png"
    EXPORT_SVG = "export_svg"
    COPY_README = "copy_readme"

    # Interactions
    SEARCH_REPOS = "search_repositories"
    FILTER_REPOS = "filter_repositories"
    EXPLAIN_NODE = "explain_node"

    # Auth
    LOGIN = "login"
    LOGOUT = "logout"


class Analytics:
    """Sends events to Plausible."""

    def __init__(self, config: Optional[AnalyticsConfig] = None, client: Optional[httpx.AsyncClient] = None):
        self.config = config or AnalyticsConfig()
        self._client = client

    @property
    def enabled(self) -> bool:
        return bool(self.config.domain)

    async def track_event(
        self,
        name: str,
        props: Optional[Dict[str, PropValue]] = None,
        path: str = "/cli",
    ) -> bool:
        """Send a custom event.

        Args:
            name: Event name (see AnalyticsEvents)
            props: Event properties
            path: Page path the event is attributed to

        Returns:
            True if the event was accepted
        """
        if not self.enabled:
            return False

        payload = {
            "name": name,
            "url": f"{self.config.app_url.rstrip('/')}{path}",
            "domain": self.config.domain,
            "props": {key: str(value) for key, value in (props or {}).items()},
        }

        try:
            client = self._client or await get_async_client()
            response = await client.post(
                self.config.endpoint,
                json=payload,
                headers={"User-Agent": f"mivna-cli/{__version__}"},
            )
            response.raise_for_status()
        except httpx.HTTPError as e:
            logger.debug(f"Analytics event '{name}' not delivered: {e}")
            return False

        return True

    async def track_page_view(self, path: str) -> bool:
        return await self.track_event("pageview", {"path": path}, path=path)
