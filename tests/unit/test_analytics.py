"""Unit tests for product analytics."""

import httpx
import pytest

from mivna import __version__
from mivna.analytics import Analytics, AnalyticsEvents
from mivna.config import AnalyticsConfig
from tests.factories import request_json


def _analytics(handler, **config):
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return Analytics(AnalyticsConfig(**config), client=client)


@pytest.mark.asyncio
async def test_disabled_without_domain():
    calls = []
    analytics = _analytics(lambda request: calls.append(request) or httpx.Response(202))

    assert analytics.enabled is False
    assert await analytics.track_event(AnalyticsEvents.LOGIN) is False
    assert calls == []


@pytest.mark.asyncio
async def test_event_payload():
    seen = []

    def handler(request):
        seen.append(request)
        return httpx.Response(202)

    analytics = _analytics(handler, domain="mivna.app", app_url="https://mivna.app/")

    assert await analytics.track_event(AnalyticsEvents.GENERATE_DIAGRAM, {"repo": "x", "success": 1})

    request = seen[0]
    assert str(request.url) == "https://plausible.io/api/event"
    assert request.headers["User-Agent"] == f"mivna-cli/{__version__}"
    assert request_json(request) == {
        "name": "generate_diagram",
        "url": "https://mivna.app/cli",
        "domain": "mivna.app",
        "props": {"repo": "x", "success": "1"},
    }


@pytest.mark.asyncio
async def test_page_view():
    seen = []
    analytics = _analytics(lambda request: seen.append(request) or httpx.Response(202), domain="mivna.app")

    await analytics.track_page_view("/dashboard")

    body = request_json(seen[0])
    assert body["name"] == "pageview"
    assert body["url"] == "https://mivna.app/dashboard"


@pytest.mark.asyncio
async def test_delivery_failure_is_swallowed():
    analytics = _analytics(lambda request: httpx.Response(500), domain="mivna.app")
    assert await analytics.track_event(AnalyticsEvents.LOGOUT) is False


@pytest.mark.asyncio
async def test_connection_error_is_swallowed():
    def handler(request):
        raise httpx.ConnectError("offline", request=request)

    analytics = _analytics(handler, domain="mivna.app")
    assert await analytics.track_event(AnalyticsEvents.LOGOUT) is False
