"""Unit tests for Sentry wiring."""

from unittest.mock import MagicMock, patch

import pytest

from mivna import __version__
from mivna.config import SentryConfig
from mivna.observability import capture_error, init_sentry, track_api_call


class TestInitSentry:
    def test_noop_without_dsn(self):
        with patch("mivna.observability.sentry_sdk.init") as init:
            assert init_sentry(SentryConfig()) is False
        init.assert_not_called()

    def test_initializes_with_release(self):
        with patch("mivna.observability.sentry_sdk.init") as init:
            assert init_sentry(SentryConfig(dsn="https://key@sentry.example/1", environment="production"))

        kwargs = init.call_args.kwargs
        assert kwargs["dsn"] == "https://key@sentry.example/1"
        assert kwargs["environment"] == "production"
        assert kwargs["release"] == f"mivna@{__version__}"
        assert kwargs["send_default_pii"] is False


def test_capture_error_attaches_context():
    scope = MagicMock()
    with patch("mivna.observability.sentry_sdk.new_scope") as new_scope, \
            patch("mivna.observability.sentry_sdk.capture_exception") as capture:
        new_scope.return_value.__enter__.return_value = scope
        error = RuntimeError("boom")
        capture_error(error, {"repo": "x"})

    scope.set_context.assert_called_once_with("additional", {"repo": "x"})
    capture.assert_called_once_with(error)


class TestTrackApiCall:
    @pytest.mark.asyncio
    async def test_success_marks_span_ok(self):
        span = MagicMock()

        async def call():
            return {"ok": True}

        with patch("mivna.observability.sentry_sdk.start_span") as start_span:
            start_span.return_value.__enter__.return_value = span
            result = await track_api_call("generate-readme", call, {"repo": "x"})

        assert result == {"ok": True}
        start_span.assert_called_once_with(op="http.client", name="api.generate-readme")
        span.set_data.assert_any_call("repo", "x")
        span.set_status.assert_called_once_with("ok")

    @pytest.mark.asyncio
    async def test_failure_marks_span_and_reraises(self):
        span = MagicMock()

        async def call():
            raise ValueError("bad gateway")

        with patch("mivna.observability.sentry_sdk.start_span") as start_span:
            start_span.return_value.__enter__.return_value = span
            with pytest.raises(ValueError):
                await track_api_call("explain-node", call)

        span.set_status.assert_called_once_with("internal_error")
        span.set_data.assert_any_call("error.message", "bad gateway")
