"""Session handling: GitHub sign-in, local session cache, bootstrap.

The signed-in session is cached in ~/.mivna/session.json (mode 0600) so each
command does not need a fresh browser round trip. On start-up the cached
session is published immediately and then reconciled against the server
under a hard timeout, so a stale or revoked token can never leave a command
hanging.
"""

import asyncio
import base64
import hashlib
import json
import secrets
import webbrowser
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from http.server import BaseHTTPRequestHandler, HTTPServer
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple
from urllib.parse import parse_qs, urlparse

import httpx
from rich.console import Console

from mivna.backend import BackendClient, BackendError
from mivna.config import AuthConfig
from mivna.logging_config import get_logger
from mivna.models import Profile, User

logger = get_logger(__name__)
console = Console()

SESSION_FILE_NAME = "session.json"

# Tokens this close to expiry are treated as expired
EXPIRY_BUFFER = timedelta(seconds=60)


class AuthenticationError(Exception):
    """Exception raised for authentication failures."""

    pass


class NotAuthenticatedError(AuthenticationError):
    """Raised when a command needs a session and there is none."""

    def __init__(self, message: str = "Not logged in. Run 'mivna auth login' first."):
        super().__init__(message)


class AuthEvent(str, Enum):
    """Auth state change events."""

    INITIAL_SESSION = "INITIAL_SESSION"
    SIGNED_IN = "SIGNED_IN"
    TOKEN_REFRESHED = "TOKEN_REFRESHED"
    SIGNED_OUT = "SIGNED_OUT"
    USER_UPDATED = "USER_UPDATED"


@dataclass
class Session:
    """A signed-in session.

    ``provider_token`` is the GitHub OAuth token; the backend only returns
    it on the initial code exchange, so refreshes carry it forward.
    """

    access_token: str
    refresh_token: Optional[str]
    expires_at: datetime
    user: User
    provider_token: Optional[str] = None

    def is_expired(self) -> bool:
        """Check if the access token is expired or expiring within 60s."""
        return datetime.now(timezone.utc) >= (self.expires_at - EXPIRY_BUFFER)

    def to_dict(self) -> dict:
        """Serialize to JSON-compatible dict."""
        return {
            "access_token": self.access_token,
            "refresh_token": self.refresh_token,
            "expires_at": self.expires_at.isoformat(),
            "user": self.user.model_dump(mode="json"),
            "provider_token": self.provider_token,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Session":
        """Deserialize from dict."""
        expires_at = data["expires_at"]
        if isinstance(expires_at, str):
            expires_at = datetime.fromisoformat(expires_at)
        if expires_at.tzinfo is None:
            expires_at = expires_at.replace(tzinfo=timezone.utc)

        return cls(
            access_token=data["access_token"],
            refresh_token=data.get("refresh_token"),
            expires_at=expires_at,
            user=User.model_validate(data["user"]),
            provider_token=data.get("provider_token"),
        )

    @classmethod
    def from_token_response(
        cls,
        data: Dict[str, Any],
        previous: Optional["Session"] = None,
    ) -> "Session":
        """Build a session from an auth token endpoint response.

        Args:
            data: Token response (``expires_at`` epoch seconds or ``expires_in``)
            previous: Session being refreshed, used for fields the response omits

        Returns:
            New Session
        """
        if data.get("expires_at"):
            expires_at = datetime.fromtimestamp(int(data["expires_at"]), tz=timezone.utc)
        else:
            expires_in = int(data.get("expires_in") or 3600)
            expires_at = datetime.now(timezone.utc) + timedelta(seconds=expires_in)

        if data.get("user"):
            user = User.model_validate(data["user"])
        elif previous is not None:
            user = previous.user
        else:
            raise AuthenticationError("Token response did not include a user")

        return cls(
            access_token=data["access_token"],
            refresh_token=data.get("refresh_token") or (previous.refresh_token if previous else None),
            expires_at=expires_at,
            user=user,
            provider_token=data.get("provider_token") or (previous.provider_token if previous else None),
        )


class SessionStore:
    """Local session cache (``<session_dir>/session.json``)."""

    def __init__(self, directory: Path):
        self.directory = Path(directory)
        self.path = self.directory / SESSION_FILE_NAME

    def load(self) -> Optional[Session]:
        """Load the cached session.

        Returns:
            Session if the file exists and is valid, None otherwise
        """
        if not self.path.exists():
            return None
        try:
            data = json.loads(self.path.read_text())
            return Session.from_dict(data)
        except (json.JSONDecodeError, KeyError, ValueError, TypeError) as e:
            logger.warning(f"Failed to load cached session: {e}")
            return None

    def save(self, session: Session) -> None:
        """Save the session to disk with owner-only permissions."""
        self.directory.mkdir(parents=True, exist_ok=True)
        self.path.write_text(json.dumps(session.to_dict(), indent=2))
        self.path.chmod(0o600)
        logger.debug(f"Session saved to {self.path}")

    def clear(self) -> None:
        if self.path.exists():
            self.path.unlink()
            logger.debug("Cached session cleared")


# =============================================================================
# OAuth callback server
# =============================================================================


@dataclass
class OAuthCallbackResult:
    """Result from OAuth callback."""

    code: Optional[str] = None
    error: Optional[str] = None


class OAuthCallbackHandler(BaseHTTPRequestHandler):
    """HTTP handler for the OAuth redirect back to localhost."""

    def log_message(self, format: str, *args) -> None:
        """Suppress HTTP server logs."""
        pass

    def do_GET(self) -> None:
        parsed = urlparse(self.path)

        if parsed.path != self.server.callback_path:  # type: ignore
            self.send_error(404, "Not Found")
            return

        params = parse_qs(parsed.query)

        if "error" in params:
            error = params["error"][0]
            error_desc = params.get("error_description", ["Unknown error"])[0]
            self.server.callback_result = OAuthCallbackResult(error=f"{error}: {error_desc}")  # type: ignore
            self._send_response("Sign-in failed. You can close this window.", error=True)
            return

        code = params.get("code", [None])[0]
        if not code:
            self.server.callback_result = OAuthCallbackResult(  # type: ignore
                error="No authorization code received"
            )
            self._send_response("Sign-in failed: no code received.", error=True)
            return

        self.server.callback_result = OAuthCallbackResult(code=code)  # type: ignore
        self._send_response("Signed in to Mivna. You can close this window.")

    def _send_response(self, message: str, error: bool = False) -> None:
        color = "#dc2626" if error else "#16a34a"
        html = (
            "<!DOCTYPE html><html><head><title>Mivna - Sign in</title></head>"
            "<body style=\"font-family: sans-serif; display: flex; justify-content: center; "
            "align-items: center; height: 100vh; margin: 0;\">"
            f"<p style=\"color: {color}; font-weight: 600;\">{message}</p>"
            "</body></html>"
        ).encode()

        self.send_response(200)
        self.send_header("Content-Type", "text/html")
        self.send_header("Content-Length", str(len(html)))
        self.end_headers()
        self.wfile.write(html)


def generate_pkce_pair() -> Tuple[str, str]:
    """Create a PKCE ``(code_verifier, code_challenge)`` pair (S256)."""
    verifier = secrets.token_urlsafe(64)
    digest = hashlib.sha256(verifier.encode("ascii")).digest()
    challenge = base64.urlsafe_b64encode(digest).rstrip(b"=").decode("ascii")
    return verifier, challenge


def _wait_for_callback(port: int, path: str, timeout: float) -> OAuthCallbackResult:
    server = HTTPServer(("localhost", port), OAuthCallbackHandler)
    server.callback_result = OAuthCallbackResult(error="Timed out waiting for sign-in")  # type: ignore
    server.callback_path = path  # type: ignore
    server.timeout = timeout
    try:
        server.handle_request()
    finally:
        server.server_close()
    return server.callback_result  # type: ignore


# =============================================================================
# Auth state
# =============================================================================


AuthListener = Callable[[AuthEvent, Optional[Session]], None]


@dataclass
class AuthState:
    """Current auth state as seen by commands."""

    user: Optional[User] = None
    profile: Optional[Profile] = None
    session: Optional[Session] = None
    loading: bool = True
    timed_out: bool = False


class AuthService:
    """Owns the current session and profile and publishes changes.

    Example:
        >>> auth = AuthService(backend, SessionStore(config.session_dir))
        >>> await auth.bootstrap()
        >>> session = auth.require_auth()
    """

    def __init__(
        self,
        backend: BackendClient,
        store: SessionStore,
        config: Optional[AuthConfig] = None,
    ):
        self.backend = backend
        self.store = store
        self.config = config or AuthConfig()
        self.state = AuthState()
        self._listeners: List[AuthListener] = []

    # -- state accessors ---------------------------------------------------

    @property
    def user(self) -> Optional[User]:
        return self.state.user

    @property
    def profile(self) -> Optional[Profile]:
        return self.state.profile

    @property
    def session(self) -> Optional[Session]:
        return self.state.session

    @property
    def loading(self) -> bool:
        return self.state.loading

    @property
    def timed_out(self) -> bool:
        return self.state.timed_out

    def on_auth_state_change(self, callback: AuthListener) -> Callable[[], None]:
        """Subscribe to auth events.

        Returns:
            A callable that removes the subscription
        """
        self._listeners.append(callback)

        def unsubscribe() -> None:
            if callback in self._listeners:
                self._listeners.remove(callback)

        return unsubscribe

    def _emit(self, event: AuthEvent) -> None:
        logger.debug(f"Auth event {event.value}")
        for listener in list(self._listeners):
            listener(event, self.state.session)

    def _apply_session(self, session: Optional[Session]) -> None:
        self.state.session = session
        self.state.user = session.user if session else None
        if session is None:
            self.state.profile = None
        self.backend.set_access_token(session.access_token if session else None)

    def _drop_session(self) -> None:
        self.store.clear()
        self._apply_session(None)

    # -- bootstrap -----------------------------------------------------------

    async def bootstrap(self, timeout: Optional[float] = None) -> Optional[Session]:
        """Restore the cached session and reconcile it with the server.

        The cached session is published straight away. Reconciliation
        (refresh when expired, otherwise server-side validation, then the
        profile fetch) runs under a hard timeout:

        - timeout: the local cache is cleared and ``timed_out`` is set
        - auth rejected: the local cache is cleared
        - network failure: the cached session is kept unverified

        Args:
            timeout: Seconds to allow for reconciliation (default from config)

        Returns:
            The session after reconciliation, or None when signed out
        """
        timeout = self.config.bootstrap_timeout if timeout is None else timeout
        self.state.loading = True
        self.state.timed_out = False

        cached = self.store.load()
        self._apply_session(cached)
        self._emit(AuthEvent.INITIAL_SESSION)

        if cached is None:
            self.state.loading = False
            return None

        try:
            await asyncio.wait_for(self._reconcile(cached), timeout)
        except asyncio.TimeoutError:
            logger.warning(f"Session check timed out after {timeout}s, signing out locally")
            self._drop_session()
            self.state.timed_out = True
            self._emit(AuthEvent.SIGNED_OUT)
        except AuthenticationError as e:
            logger.info(f"Cached session rejected: {e}")
            self._drop_session()
            self._emit(AuthEvent.SIGNED_OUT)
        except (httpx.HTTPError, BackendError) as e:
            logger.warning(f"Could not verify cached session, using it unverified: {e}")
        finally:
            self.state.loading = False

        return self.state.session

    async def _reconcile(self, session: Session) -> None:
        if session.is_expired():
            await self.refresh_session()
        else:
            try:
                data = await self.backend.get_user(session.access_token)
            except BackendError as e:
                if e.status_code in (401, 403):
                    raise AuthenticationError(f"Session is no longer valid: {e.message}")
                raise
            user = User.model_validate(data)
            if user != session.user:
                session.user = user
                self.state.user = user
                self.store.save(session)
                self._emit(AuthEvent.USER_UPDATED)

        await self.fetch_profile(self.state.session.user.id)

    # -- sign in / out -----------------------------------------------------

    async def sign_in_with_github(self, open_browser: bool = True) -> Session:
        """Sign in with GitHub through the backend's OAuth flow.

        1. Start a local callback server
        2. Open the browser at the authorize URL (PKCE)
        3. Receive the authorization code
        4. Exchange it for a session and cache it

        Returns:
            The new Session

        Raises:
            AuthenticationError: If sign-in fails
        """
        verifier, challenge = generate_pkce_pair()
        redirect_to = f"http://localhost:{self.config.callback_port}{self.config.callback_path}"
        auth_url = self.backend.authorize_url(
            "github", redirect_to, self.config.scopes, challenge
        )

        waiter = asyncio.create_task(asyncio.to_thread(
            _wait_for_callback,
            self.config.callback_port,
            self.config.callback_path,
            self.config.oauth_timeout,
        ))

        if open_browser:
            console.print("[dim]Opening browser for GitHub sign-in...[/dim]")
            webbrowser.open(auth_url)
        console.print(
            f"[dim]Waiting for sign-in (timeout: {self.config.oauth_timeout:.0f}s)...[/dim]"
        )
        console.print("[dim]If the browser didn't open, visit:[/dim]")
        console.print(f"[blue]{auth_url}[/blue]")

        try:
            result = await waiter
        except OSError as e:
            logger.error(f"Error running OAuth callback server: {e}")
            raise AuthenticationError(f"Error during sign-in: {e}")

        if result.error:
            raise AuthenticationError(result.error)

        try:
            data = await self.backend.exchange_code_for_session(result.code, verifier)
        except BackendError as e:
            raise AuthenticationError(f"Failed to exchange code for session: {e.message}")
        except httpx.HTTPError as e:
            raise AuthenticationError(f"Failed to connect to the backend: {e}")

        session = Session.from_token_response(data)
        self.store.save(session)
        self._apply_session(session)
        self.state.timed_out = False
        self._emit(AuthEvent.SIGNED_IN)

        await self.fetch_profile(session.user.id)

        logger.info(f"Signed in as {session.user.display_name}")
        return session

    async def sign_out(self) -> None:
        """Sign out on the server (best effort) and always clear local state."""
        session = self.state.session
        if session is not None:
            try:
                await self.backend.sign_out(session.access_token)
            except (BackendError, httpx.HTTPError) as e:
                logger.warning(f"Server sign-out failed, clearing local session anyway: {e}")

        self._drop_session()
        self._emit(AuthEvent.SIGNED_OUT)
        logger.info("Signed out")

    async def refresh_session(self) -> Session:
        """Refresh the access token using the refresh token.

        Raises:
            AuthenticationError: If there is nothing to refresh or it fails
        """
        current = self.state.session
        if current is None or not current.refresh_token:
            raise AuthenticationError("No refresh token available")

        try:
            data = await self.backend.refresh_session(current.refresh_token)
        except BackendError as e:
            if e.status_code is not None and e.status_code < 500:
                raise AuthenticationError(f"Failed to refresh session: {e.message}")
            raise

        session = Session.from_token_response(data, previous=current)
        self.store.save(session)
        self._apply_session(session)
        self._emit(AuthEvent.TOKEN_REFRESHED)
        logger.debug("Session refreshed")
        return session

    def require_auth(self) -> Session:
        """Return the current session or raise NotAuthenticatedError."""
        if self.state.session is None:
            raise NotAuthenticatedError()
        return self.state.session

    # -- profile -----------------------------------------------------------

    async def fetch_profile(self, user_id: str) -> Optional[Profile]:
        """Load the user's profile row, creating it on first sign-in.

        Failures other than a missing row are logged and leave the profile
        unset.

        Args:
            user_id: Profile / user ID

        Returns:
            The Profile, or None if it could not be loaded
        """
        try:
            row = await (
                self.backend.table("profiles").select("*").eq("id", user_id).single().execute()
            )
        except BackendError as e:
            if not e.is_not_found:
                logger.error(f"Error fetching profile: {e}")
                return None
            try:
                row = await self._create_profile(user_id)
            except (BackendError, httpx.HTTPError) as create_error:
                logger.error(f"Error creating profile: {create_error}")
                return None
        except httpx.HTTPError as e:
            logger.error(f"Error fetching profile: {e}")
            return None

        profile = Profile.model_validate(row) if row else None
        self.state.profile = profile
        return profile

    async def _create_profile(self, user_id: str) -> Optional[Dict[str, Any]]:
        user = self.state.user
        if user is None or user.id != user_id:
            user = User.model_validate(await self.backend.get_user(self.backend.access_token))

        new_profile = {
            "id": user_id,
            "github_username": user.user_metadata.user_name,
            "avatar_url": user.user_metadata.avatar_url,
            "diagrams_generated": 0,
            "readmes_generated": 0,
        }
        logger.info(f"Creating profile for {user.display_name}")
        return await self.backend.table("profiles").insert(new_profile).select().single().execute()

    async def refresh_profile(self) -> Optional[Profile]:
        """Re-read the current user's profile (e.g. after a generation)."""
        if self.state.user is None:
            return None
        return await self.fetch_profile(self.state.user.id)
