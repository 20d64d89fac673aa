"""Error classification for calls against the hosted backend and GitHub.

Every failure is sorted into a broad category which decides two things:
whether the retry helper may try again, and which sentence the user sees.
"""

import enum
import re
from typing import Optional

import httpx


class ApiErrorType(str, enum.Enum):
    """Broad failure categories."""

    NETWORK = "NETWORK"
    AUTH = "AUTH"
    RATE_LIMIT = "RATE_LIMIT"
    SERVER = "SERVER"
    CLIENT = "CLIENT"
    TIMEOUT = "TIMEOUT"
    UNKNOWN = "UNKNOWN"


RETRYABLE_TYPES = frozenset({ApiErrorType.NETWORK, ApiErrorType.SERVER, ApiErrorType.TIMEOUT})

USER_MESSAGES = {
    ApiErrorType.NETWORK: "Unable to connect. Please check your internet connection and try again.",
    ApiErrorType.AUTH: "Your session has expired. Please log in again.",
    ApiErrorType.RATE_LIMIT: "Too many requests. Please wait a moment and try again.",
    ApiErrorType.SERVER: "Server error. Our team has been notified. Please try again later.",
    ApiErrorType.TIMEOUT: "Request timed out. Please try again.",
    ApiErrorType.CLIENT: "Invalid request. Please refresh and try again.",
    ApiErrorType.UNKNOWN: "Something went wrong. Please try again.",
}

_STATUS_RE = re.compile(r"\d{3}")


class ApiError(Exception):
    """A categorised API failure."""

    def __init__(
        self,
        message: str,
        error_type: ApiErrorType = ApiErrorType.UNKNOWN,
        status_code: Optional[int] = None,
    ):
        super().__init__(message)
        self.message = message
        self.type = error_type
        self.status_code = status_code

    @property
    def is_retryable(self) -> bool:
        return self.type in RETRYABLE_TYPES

    def __repr__(self) -> str:
        return f"ApiError({self.message!r}, {self.type.value}, status_code={self.status_code})"

    @classmethod
    def from_status(cls, message: str, status_code: int) -> "ApiError":
        """Categorise by HTTP status code."""
        if status_code in (401, 403):
            return cls(message, ApiErrorType.AUTH, status_code)
        if status_code == 429:
            return cls(message, ApiErrorType.RATE_LIMIT, status_code)
        if status_code >= 500:
            return cls(message, ApiErrorType.SERVER, status_code)
        if status_code >= 400:
            return cls(message, ApiErrorType.CLIENT, status_code)
        return cls(message, ApiErrorType.UNKNOWN, status_code)

    @classmethod
    def from_error(cls, error: BaseException) -> "ApiError":
        """Categorise an arbitrary exception.

        httpx exceptions and anything carrying a ``status_code`` attribute are
        classified structurally. Everything else is classified from its
        message text, checking network, auth, rate limit, server, client and
        timeout markers in that order.

        Args:
            error: The exception to classify

        Returns:
            An ApiError (the same object if ``error`` already is one)
        """
        if isinstance(error, cls):
            return error

        message = str(error) or type(error).__name__

        if isinstance(error, httpx.TimeoutException):
            return cls(message, ApiErrorType.TIMEOUT)
        if isinstance(error, httpx.TransportError):
            return cls(message, ApiErrorType.NETWORK)
        if isinstance(error, httpx.HTTPStatusError):
            return cls.from_status(message, error.response.status_code)

        status_code = getattr(error, "status_code", None)
        if isinstance(status_code, int) and status_code >= 400:
            return cls.from_status(message, status_code)

        return cls._from_message(message)

    @classmethod
    def _from_message(cls, message: str) -> "ApiError":
        lowered = message.lower()

        if "fetch" in message or "network" in lowered or "ECONNREFUSED" in message:
            return cls(message, ApiErrorType.NETWORK)
        if "401" in message or "Unauthorized" in message:
            return cls(message, ApiErrorType.AUTH, 401)
        if "403" in message or "Forbidden" in message:
            return cls(message, ApiErrorType.AUTH, 403)
        if "429" in message or "rate limit" in lowered:
            return cls(message, ApiErrorType.RATE_LIMIT, 429)
        if any(code in message for code in ("500", "502", "503", "504")):
            return cls(message, ApiErrorType.SERVER, _first_status(message, 500))
        if "400" in message or "404" in message:
            return cls(message, ApiErrorType.CLIENT, _first_status(message, 400))
        if "timeout" in lowered or "AbortError" in message:
            return cls(message, ApiErrorType.TIMEOUT)

        return cls(message, ApiErrorType.UNKNOWN)


def _first_status(message: str, default: int) -> int:
    match = _STATUS_RE.search(message)
    return int(match.group(0)) if match else default


def get_user_friendly_error_message(error: BaseException) -> str:
    """Map any exception to the sentence shown to the user."""
    return USER_MESSAGES[ApiError.from_error(error).type]


def is_retryable_error(error: BaseException) -> bool:
    """Check whether an error belongs to a retryable category."""
    return ApiError.from_error(error).is_retryable
