"""Unit tests for CLI error classification and display."""

from unittest.mock import patch

import click
import httpx
import pytest
from click.testing import CliRunner
from rich.console import Console

from mivna.auth import AuthenticationError, NotAuthenticatedError
from mivna.backend import BackendError
from mivna.billing import BillingError
from mivna.cli.errors import (
    AuthError,
    CLIError,
    ConfigError,
    ExportFailedError,
    LimitError,
    NetworkError,
    PermissionDeniedError,
    ServiceError,
    classify_error,
    fail,
    format_error,
    handle_errors,
    should_report,
)
from mivna.config import ConfigError as SettingsError
from mivna.errors import ApiError, ApiErrorType
from mivna.export import ExportError
from mivna.generation import GenerationInProgressError
from mivna.models import PlanTier
from mivna.organizations import OrgLimitError, OrgPermissionError
from mivna.rate_limit import RateLimitExceededError


class TestClassifyError:
    @pytest.mark.parametrize("error,expected", [
        (NotAuthenticatedError(), AuthError),
        (AuthenticationError("bad code"), AuthError),
        (SettingsError("Missing required environment variables: MIVNA_SUPABASE_URL"), ConfigError),
        (RateLimitExceededError("Hourly diagram limit reached."), LimitError),
        (OrgLimitError(1, PlanTier.FREE), LimitError),
        (OrgPermissionError("Cannot remove the owner"), PermissionDeniedError),
        (ExportError("Mermaid CLI not found"), ExportFailedError),
        (BillingError("Failed to create checkout session"), ServiceError),
    ])
    def test_typed_errors(self, error, expected):
        assert type(classify_error(error)) is expected

    def test_cli_error_passes_through(self):
        error = CLIError("custom")
        assert classify_error(error) is error

    def test_generation_in_progress(self):
        result = classify_error(GenerationInProgressError("busy"))
        assert result.message == "busy"
        assert "running generation" in result.hint

    def test_backend_auth_failure(self):
        result = classify_error(BackendError("JWT expired", status_code=401))
        assert isinstance(result, AuthError)
        assert result.message == "Your session has expired. Please log in again."

    def test_backend_server_failure(self):
        assert isinstance(classify_error(BackendError("boom", status_code=502)), ServiceError)

    def test_api_error_keeps_message(self):
        result = classify_error(ApiError("GitHub API error: 503", ApiErrorType.SERVER, 503))
        assert isinstance(result, ServiceError)
        assert result.message == "GitHub API error: 503"

    def test_transport_error_is_network(self):
        request = httpx.Request("GET", "https://example.test")
        result = classify_error(httpx.ConnectError("connection refused", request=request))
        assert isinstance(result, NetworkError)

    def test_pattern_fallback(self):
        result = classify_error(RuntimeError("SSL handshake failed"))
        assert isinstance(result, NetworkError)
        assert "SSL/TLS" in result.message

    def test_unknown_error(self):
        result = classify_error(RuntimeError("weird"))
        assert type(result) is CLIError
        assert result.message == "Something went wrong. Please try again."
        assert result.hint == "weird"
        assert result.docs_url


def test_format_error_renders_all_parts():
    console = Console(record=True, width=100)
    console.print(format_error(CLIError("Broken", hint="Because", fix="mivna auth login", docs_url="https://docs")))
    text = console.export_text()

    assert "Broken" in text
    assert "Because" in text
    assert "Fix: mivna auth login" in text
    assert "https://docs" in text


def test_fail_raises_cli_error():
    with pytest.raises(CLIError) as exc_info:
        fail("nope", fix="try this")
    assert exc_info.value.fix == "try this"


class TestHandleErrors:
    def _command(self, error):
        @click.command()
        @handle_errors()
        def boom():
            raise error

        return boom

    def test_exit_code_and_message(self):
        result = CliRunner().invoke(self._command(NotAuthenticatedError()))

        assert result.exit_code == 1
        assert "Not logged in" in result.output

    def test_click_exceptions_pass_through(self):
        result = CliRunner().invoke(self._command(click.UsageError("bad usage")))

        assert result.exit_code == 2
        assert "bad usage" in result.output

    def test_no_exit_when_disabled(self):
        @click.command()
        @handle_errors(exit_on_error=False)
        def soft():
            raise RuntimeError("soft failure")

        result = CliRunner().invoke(soft)
        assert result.exit_code == 0

    def test_reraise(self):
        @click.command()
        @handle_errors(reraise=(KeyError,))
        def strict():
            raise KeyError("x")

        result = CliRunner().invoke(strict)
        assert isinstance(result.exception, KeyError)


class TestReporting:
    @pytest.mark.parametrize("error,expected", [
        (RuntimeError("weird"), True),
        (BackendError("boom", status_code=502), True),
        (ApiError("GitHub API error: 503", ApiErrorType.SERVER, 503), True),
        (BackendError("JWT expired", status_code=401), False),
        (NotAuthenticatedError(), False),
        (RateLimitExceededError("Hourly diagram limit reached."), False),
        (RuntimeError("SSL handshake failed"), False),
        (CLIError("custom"), False),
    ])
    def test_should_report(self, error, expected):
        assert should_report(error) is expected

    def _command(self, error):
        @click.command()
        @handle_errors()
        def boom():
            raise error

        return boom

    def test_unexpected_error_is_captured(self):
        error = RuntimeError("weird")
        with patch("mivna.observability.sentry_sdk.capture_exception") as capture:
            result = CliRunner().invoke(self._command(error))

        assert result.exit_code == 1
        capture.assert_called_once_with(error)

    def test_expected_error_is_not_captured(self):
        with patch("mivna.observability.sentry_sdk.capture_exception") as capture:
            result = CliRunner().invoke(self._command(NotAuthenticatedError()))

        assert result.exit_code == 1
        capture.assert_not_called()
