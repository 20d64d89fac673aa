"""Client for the hosted backend-as-a-service (Supabase).

Three surfaces are used, all over plain HTTPS + JSON:

- ``/auth/v1``       GitHub OAuth (PKCE), token refresh, user lookup, logout
- ``/rest/v1/<tbl>`` PostgREST table access (select / insert / update / delete)
- ``/functions/v1``  named Edge Function invocation

Every request carries the project's anon key in the ``apikey`` header and a
bearer token: the signed-in user's access token when there is one, otherwise
the anon key itself. Row-level security on the server decides what the
token may see.

Usage:
    backend = BackendClient(url, anon_key)
    backend.set_access_token(session.access_token)

    repos = await (
        backend.table("repositories")
        .select("*, repository_diagrams(*)")
        .eq("user_id", user_id)
        .order("created_at", ascending=False)
        .execute()
    )
    data = await backend.invoke("generate-readme", {"repoOwner": "...", ...})
"""

from typing import Any, Dict, List, Optional, Tuple
from urllib.parse import urlencode

import httpx

from mivna.http_client import DEFAULT_REQUEST_TIMEOUT, create_timeout, get_async_client
from mivna.logging_config import get_logger

logger = get_logger(__name__)

# PostgREST error code for ``.single()`` matching zero rows
NO_ROWS_CODE = "PGRST116"


class BackendError(Exception):
    """A non-success response from the hosted backend.

    Attributes:
        message: Human-readable message from the server
        status_code: HTTP status code
        code: Backend error code (e.g. PGRST116), when provided
        details: Extra detail text, when provided
        hint: Server hint, when provided
    """

    def __init__(
        self,
        message: str,
        *,
        status_code: Optional[int] = None,
        code: Optional[str] = None,
        details: Optional[str] = None,
        hint: Optional[str] = None,
    ):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.code = code
        self.details = details
        self.hint = hint

    def __str__(self) -> str:
        if self.status_code:
            return f"{self.message} ({self.status_code})"
        return self.message

    @property
    def is_not_found(self) -> bool:
        return self.code == NO_ROWS_CODE

    @classmethod
    def from_response(cls, response: httpx.Response) -> "BackendError":
        """Build an error from a PostgREST, GoTrue or Edge Function response."""
        try:
            body = response.json()
        except ValueError:
            body = None

        if isinstance(body, dict):
            message = (
                body.get("message")
                or body.get("msg")
                or body.get("error_description")
                or body.get("error")
                or response.reason_phrase
            )
            code = body.get("code") or body.get("error_code")
            return cls(
                str(message),
                status_code=response.status_code,
                code=str(code) if code is not None else None,
                details=body.get("details"),
                hint=body.get("hint"),
            )

        text = response.text.strip() or response.reason_phrase or "Request failed"
        return cls(text, status_code=response.status_code)


class QueryBuilder:
    """PostgREST request builder for a single table.

    Methods return ``self`` so calls chain; nothing is sent until
    :meth:`execute` is awaited.
    """

    def __init__(self, backend: "BackendClient", table: str):
        self._backend = backend
        self._table = table
        self._method = "GET"
        self._columns: Optional[str] = None
        self._filters: List[Tuple[str, str]] = []
        self._order: List[str] = []
        self._limit: Optional[int] = None
        self._single = False
        self._body: Any = None

    def select(self, columns: str = "*") -> "QueryBuilder":
        """Choose returned columns; after a mutation, return the written rows."""
        self._columns = " ".join(columns.split())
        return self

    def eq(self, column: str, value: Any) -> "QueryBuilder":
        self._filters.append((column, f"eq.{_format_value(value)}"))
        return self

    def order(self, column: str, ascending: bool = True) -> "QueryBuilder":
        self._order.append(f"{column}.{'asc' if ascending else 'desc'}")
        return self

    def limit(self, count: int) -> "QueryBuilder":
        self._limit = count
        return self

    def single(self) -> "QueryBuilder":
        """Expect exactly one row; zero rows raises BackendError(PGRST116)."""
        self._single = True
        return self

    def insert(self, values: Any) -> "QueryBuilder":
        self._method = "POST"
        self._body = values
        return self

    def update(self, values: Dict[str, Any]) -> "QueryBuilder":
        self._method = "PATCH"
        self._body = values
        return self

    def delete(self) -> "QueryBuilder":
        self._method = "DELETE"
        return self

    def build_params(self) -> List[Tuple[str, str]]:
        """Query string parameters for the request."""
        params: List[Tuple[str, str]] = []
        if self._columns is not None:
            params.append(("select", self._columns))
        params.extend(self._filters)
        if self._order:
            params.append(("order", ",".join(self._order)))
        if self._limit is not None:
            params.append(("limit", str(self._limit)))
        return params

    def build_headers(self) -> Dict[str, str]:
        headers: Dict[str, str] = {}
        if self._single:
            headers["Accept"] = "application/vnd.pgrst.object+json"
        if self._method != "GET":
            returning = "representation" if self._columns is not None else "minimal"
            headers["Prefer"] = f"return={returning}"
        return headers

    async def execute(self) -> Any:
        """Send the request.

        Returns:
            A list of rows, a single row for ``single()``, or None for
            mutations that did not ask for rows back

        Raises:
            BackendError: If the backend rejects the request
        """
        if self._method != "GET" and not self._filters and self._method != "POST":
            # PostgREST refuses unfiltered UPDATE/DELETE; fail before sending
            raise BackendError(f"Refusing unfiltered {self._method} on {self._table}")

        response = await self._backend.request(
            self._method,
            f"/rest/v1/{self._table}",
            params=self.build_params(),
            json=self._body,
            headers=self.build_headers(),
        )

        if response.status_code == 204 or not response.content:
            return None
        return response.json()


def _format_value(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if value is None:
        return "null"
    return str(value)


class BackendClient:
    """Thin async client over the hosted backend's HTTP APIs."""

    def __init__(
        self,
        url: str,
        anon_key: str,
        client: Optional[httpx.AsyncClient] = None,
        timeout: float = DEFAULT_REQUEST_TIMEOUT,
    ):
        """Initialize the backend client.

        Args:
            url: Project URL (e.g. https://abcd.supabase.co)
            anon_key: Public anon key for the project
            client: HTTP client to use (defaults to the shared pool)
            timeout: Per-request timeout in seconds
        """
        self.url = url.rstrip("/")
        self.anon_key = anon_key
        self.timeout = create_timeout(timeout)
        self._client = client
        self._access_token: Optional[str] = None

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is not None:
            return self._client
        return await get_async_client()

    def set_access_token(self, access_token: Optional[str]) -> None:
        """Use the given user token for subsequent requests (None for anon)."""
        self._access_token = access_token

    @property
    def access_token(self) -> Optional[str]:
        return self._access_token

    def _headers(self, access_token: Optional[str] = None) -> Dict[str, str]:
        token = access_token or self._access_token or self.anon_key
        return {
            "apikey": self.anon_key,
            "Authorization": f"Bearer {token}",
        }

    async def request(
        self,
        method: str,
        path: str,
        *,
        params: Any = None,
        json: Any = None,
        headers: Optional[Dict[str, str]] = None,
        access_token: Optional[str] = None,
    ) -> httpx.Response:
        """Send a request to the backend.

        Raises:
            BackendError: On any non-success status
        """
        client = await self._get_client()
        merged_headers = {**self._headers(access_token), **(headers or {})}

        response = await client.request(
            method,
            f"{self.url}{path}",
            params=params,
            json=json,
            headers=merged_headers,
            timeout=self.timeout,
        )

        if response.is_error:
            error = BackendError.from_response(response)
            logger.debug(
                f"Backend {method} {path} failed: {error}",
                extra={"status_code": response.status_code, "code": error.code},
            )
            raise error

        return response

    def table(self, name: str) -> QueryBuilder:
        """Start a query against a table."""
        return QueryBuilder(self, name)

    async def invoke(
        self,
        function_name: str,
        body: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> Any:
        """Invoke a named Edge Function.

        Args:
            function_name: Function name (e.g. "generate-diagram")
            body: JSON payload (None sends an empty request body)
            headers: Extra headers (an explicit Authorization wins)

        Returns:
            Decoded JSON response, response text, or None when empty

        Raises:
            BackendError: If the function returns a non-success status
        """
        logger.debug(f"Invoking edge function {function_name}")
        response = await self.request(
            "POST",
            f"/functions/v1/{function_name}",
            json=body,
            headers=headers,
        )
        if not response.content:
            return None
        if response.headers.get("content-type", "").startswith("application/json"):
            return response.json()
        return response.text

    # ------------------------------------------------------------------
    # Auth (/auth/v1)
    # ------------------------------------------------------------------

    def authorize_url(
        self,
        provider: str,
        redirect_to: str,
        scopes: str,
        code_challenge: str,
    ) -> str:
        """URL that starts the OAuth flow in the user's browser (PKCE)."""
        query = urlencode({
            "provider": provider,
            "redirect_to": redirect_to,
            "scopes": scopes,
            "code_challenge": code_challenge,
            "code_challenge_method": "s256",
        })
        return f"{self.url}/auth/v1/authorize?{query}"

    async def exchange_code_for_session(self, auth_code: str, code_verifier: str) -> Dict[str, Any]:
        """Exchange an OAuth authorization code for a session."""
        response = await self.request(
            "POST",
            "/auth/v1/token",
            params={"grant_type": "pkce"},
            json={"auth_code": auth_code, "code_verifier": code_verifier},
            access_token=self.anon_key,
        )
        return response.json()

    async def refresh_session(self, refresh_token: str) -> Dict[str, Any]:
        """Trade a refresh token for a new session."""
        response = await self.request(
            "POST",
            "/auth/v1/token",
            params={"grant_type": "refresh_token"},
            json={"refresh_token": refresh_token},
            access_token=self.anon_key,
        )
        return response.json()

    async def get_user(self, access_token: str) -> Dict[str, Any]:
        """Validate an access token server-side and return its user."""
        response = await self.request("GET", "/auth/v1/user", access_token=access_token)
        return response.json()

    async def sign_out(self, access_token: str) -> None:
        """Revoke the session server-side."""
        await self.request("POST", "/auth/v1/logout", access_token=access_token)

    async def aclose(self) -> None:
        """Close an injected client; the shared pool is closed elsewhere."""
        if self._client is not None and not self._client.is_closed:
            await self._client.aclose()
