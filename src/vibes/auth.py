"""OAuth (PKCE) authorization and token lifecycle for the Spotify accounts service."""

from __future__ import annotations

import asyncio
import base64
from dataclasses import dataclass
import enum
import hashlib
import logging
import secrets
import time
from typing import Any, Awaitable, Callable, Optional, Union
from urllib.parse import parse_qs, urlencode, urlsplit

import httpx

from vibes.backoff import RetryPolicy, Sleep, default_sleep, parse_retry_after
from vibes.config import ClientCredentials
from vibes.credential_store import CredentialStore
from vibes.errors import (
    ApiError,
    AuthorizationInvalid,
    ConfigError,
    RateLimited,
    TransientNetworkError,
    VibesError,
)
from vibes.models import Credential

logger = logging.getLogger(__name__)

AUTHORIZE_URL = "https://accounts.spotify.com/authorize"
TOKEN_URL = "https://accounts.spotify.com/api/token"

SCOPES = (
    "user-read-playback-state",
    "user-modify-playback-state",
    "user-read-currently-playing",
    "user-library-read",
    "user-library-modify",
    "playlist-read-private",
    "playlist-read-collaborative",
    "user-read-private",
)

_SUCCESS_PAGE = """<!DOCTYPE html>
<html><head><title>vibes</title><style>
body { background: #0d0d0d; color: #00f5ff; font-family: monospace;
       display: flex; align-items: center; justify-content: center;
       height: 100vh; margin: 0; }
.card { text-align: center; border: 1px solid #9b5de5; padding: 40px;
        border-radius: 12px; }
h1 { color: #9b5de5; }
</style></head><body><div class="card"><h1>vibes</h1>
<p>{message}</p></div></body></html>"""


class AuthState(enum.Enum):
    UNAUTHENTICATED = "unauthenticated"
    AUTHORIZING = "authorizing"
    AUTHENTICATED = "authenticated"
    REFRESHING = "refreshing"


@dataclass(frozen=True)
class CallbackResult:
    code: str
    state: str


def generate_code_verifier() -> str:
    """Return a random PKCE code verifier (43+ url-safe characters)."""
    return base64.urlsafe_b64encode(secrets.token_bytes(64)).decode("ascii").rstrip("=")


def generate_code_challenge(verifier: str) -> str:
    """Return the S256 challenge for a verifier."""
    digest = hashlib.sha256(verifier.encode("ascii")).digest()
    return base64.urlsafe_b64encode(digest).decode("ascii").rstrip("=")


def build_authorize_url(
    client_id: str,
    redirect_uri: str,
    *,
    code_challenge: str,
    state: str,
    scopes: tuple[str, ...] = SCOPES,
) -> str:
    params = {
        "client_id": client_id,
        "response_type": "code",
        "redirect_uri": redirect_uri,
        "code_challenge_method": "S256",
        "code_challenge": code_challenge,
        "state": state,
        "scope": " ".join(scopes),
    }
    return f"{AUTHORIZE_URL}?{urlencode(params)}"


CallbackOutcome = Union[CallbackResult, VibesError, None]


def parse_callback_request(
    request_line: str, expected_path: str
) -> tuple[int, str, CallbackOutcome]:
    """Interpret the request line of a redirect hitting the local listener.

    Returns the HTTP status, the page message and the outcome. Requests for
    other paths (a browser asking for ``/favicon.ico``) yield no outcome.
    """
    parts = request_line.split()
    if len(parts) < 2 or parts[0].upper() != "GET":
        return 400, "Bad request", None
    target = urlsplit(parts[1])
    if target.path != expected_path:
        return 404, "Not found", None
    params = parse_qs(target.query)
    error = params.get("error", [""])[0]
    if error:
        return (
            200,
            "Authorization was declined. You can close this tab.",
            AuthorizationInvalid(f"Spotify denied authorization: {error}"),
        )
    code = params.get("code", [""])[0]
    if not code:
        return 400, "No authorization code received.", AuthorizationInvalid(
            "No code in redirect"
        )
    state = params.get("state", [""])[0]
    return (
        200,
        "Authentication successful! Return to your terminal.",
        CallbackResult(code=code, state=state),
    )


def _http_response(status: int, message: str) -> bytes:
    reason = {200: "OK", 400: "Bad Request", 404: "Not Found"}.get(status, "OK")
    body = _SUCCESS_PAGE.replace("{message}", message).encode("utf-8")
    head = (
        f"HTTP/1.1 {status} {reason}\r\n"
        "Content-Type: text/html; charset=utf-8\r\n"
        f"Content-Length: {len(body)}\r\n"
        "Connection: close\r\n\r\n"
    )
    return head.encode("ascii") + body


async def wait_for_callback(
    redirect_uri: str, *, timeout: float = 300.0
) -> CallbackResult:
    """Listen on the redirect URI until Spotify sends the browser back."""
    parts = urlsplit(redirect_uri)
    host = parts.hostname or "127.0.0.1"
    port = parts.port or 80
    expected_path = parts.path or "/"
    loop = asyncio.get_running_loop()
    result: asyncio.Future[CallbackResult] = loop.create_future()

    async def handle(
        reader: asyncio.StreamReader, writer: asyncio.StreamWriter
    ) -> None:
        try:
            request_line = (await reader.readline()).decode("latin-1")
            while True:
                header = await reader.readline()
                if not header or header in (b"\r\n", b"\n"):
                    break
            status, message, outcome = parse_callback_request(
                request_line, expected_path
            )
            writer.write(_http_response(status, message))
            await writer.drain()
        except ConnectionError:
            logger.debug("Redirect connection dropped", exc_info=True)
            return
        finally:
            writer.close()
        if outcome is None or result.done():
            return
        if isinstance(outcome, CallbackResult):
            result.set_result(outcome)
        else:
            result.set_exception(outcome)

    try:
        server = await asyncio.start_server(handle, host, port)
    except OSError as exc:
        raise ConfigError(
            f"Cannot listen for the login redirect on {host}:{port}: {exc}"
        ) from exc
    logger.info("Waiting for Spotify auth redirect on %s", redirect_uri)
    async with server:
        try:
            return await asyncio.wait_for(result, timeout)
        except asyncio.TimeoutError as exc:
            raise AuthorizationInvalid(
                "Timed out waiting for the Spotify login redirect"
            ) from exc


class TokenClient:
    """Talks to the accounts service token endpoint."""

    def __init__(
        self,
        client: httpx.AsyncClient,
        credentials: ClientCredentials,
        *,
        token_url: str = TOKEN_URL,
    ) -> None:
        self._client = client
        self._credentials = credentials
        self._token_url = token_url

    async def exchange_code(self, code: str, verifier: str) -> dict[str, Any]:
        return await self._post(
            {
                "grant_type": "authorization_code",
                "code": code,
                "redirect_uri": self._credentials.redirect_uri,
                "client_id": self._credentials.client_id,
                "code_verifier": verifier,
            }
        )

    async def refresh(self, refresh_token: str) -> dict[str, Any]:
        return await self._post(
            {
                "grant_type": "refresh_token",
                "refresh_token": refresh_token,
                "client_id": self._credentials.client_id,
            }
        )

    async def _post(self, data: dict[str, str]) -> dict[str, Any]:
        auth = None
        if self._credentials.client_secret:
            auth = httpx.BasicAuth(
                self._credentials.client_id, self._credentials.client_secret
            )
        try:
            response = await self._client.post(self._token_url, data=data, auth=auth)
        except httpx.TransportError as exc:
            raise TransientNetworkError(f"Token request failed: {exc}") from exc
        _raise_for_token_error(response)
        try:
            payload = response.json()
        except ValueError as exc:
            raise TransientNetworkError("Token endpoint returned invalid JSON") from exc
        if not isinstance(payload, dict):
            raise TransientNetworkError("Token endpoint returned an unexpected body")
        return payload


def _raise_for_token_error(response: httpx.Response) -> None:
    status = response.status_code
    if status < 400:
        return
    if status == 429:
        raise RateLimited(parse_retry_after(response.headers.get("Retry-After")))
    if status >= 500:
        raise TransientNetworkError(f"Accounts service returned {status}")
    try:
        body = response.json()
    except ValueError:
        body = {}
    error = body.get("error") if isinstance(body, dict) else None
    description = body.get("error_description") if isinstance(body, dict) else None
    if status in (400, 401, 403):
        raise AuthorizationInvalid(
            f"Token request rejected: {description or error or status}"
        )
    raise ApiError(status, str(description or error or ""), reason=error, body=body)


class TokenLifecycleManager:
    """Guarantees a usable access token, refreshing before it expires."""

    def __init__(
        self,
        store: CredentialStore,
        tokens: TokenClient,
        credentials: ClientCredentials,
        *,
        open_url: Callable[[str], None],
        wait_for_code: Optional[Callable[[str], Awaitable[CallbackResult]]] = None,
        margin_seconds: float = 60.0,
        policy: RetryPolicy = RetryPolicy(),
        sleep: Sleep = default_sleep,
        clock: Callable[[], float] = time.time,
        on_state_change: Optional[Callable[[AuthState], None]] = None,
    ) -> None:
        self._store = store
        self._tokens = tokens
        self._credentials = credentials
        self._open_url = open_url
        self._wait_for_code = wait_for_code or wait_for_callback
        self._margin = margin_seconds
        self._policy = policy
        self._sleep = sleep
        self._clock = clock
        self._on_state_change = on_state_change
        self._lock = asyncio.Lock()
        self._credential: Optional[Credential] = None
        self._state = AuthState.UNAUTHENTICATED
        self.authorize_url: Optional[str] = None

    @property
    def state(self) -> AuthState:
        return self._state

    @property
    def credential(self) -> Optional[Credential]:
        return self._credential

    async def acquire(self) -> Credential:
        """Return a valid credential, running the browser flow only if needed."""
        if self._credential is None:
            cached = self._store.get()
            if cached is not None:
                logger.info("Loaded cached credential")
                self._credential = cached
                self._set_state(AuthState.AUTHENTICATED)
        if self._credential is not None:
            return await self.ensure_fresh(self._credential)
        async with self._lock:
            if self._credential is not None:
                return self._credential
            return await self._authorize_locked()

    async def ensure_fresh(self, credential: Optional[Credential] = None) -> Credential:
        """Return ``credential`` untouched unless it is inside the safety margin."""
        current = credential or self._credential
        if current is None:
            return await self.acquire()
        if not current.needs_refresh(self._clock(), self._margin):
            return current
        async with self._lock:
            latest = self._credential if self._credential is not None else current
            if not latest.needs_refresh(self._clock(), self._margin):
                return latest
            return await self._refresh_locked(latest)

    async def force_refresh(self, rejected_token: Optional[str] = None) -> Credential:
        """Refresh after the API rejected ``rejected_token``.

        Concurrent callers holding the same rejected token share one refresh.
        """
        async with self._lock:
            latest = self._credential
            if latest is None:
                return await self._authorize_locked()
            if rejected_token is not None and latest.access_token != rejected_token:
                return latest
            return await self._refresh_locked(latest)

    def invalidate(self) -> None:
        """Forget the cached credential; the next acquire() logs in again."""
        self._credential = None
        self._store.delete()
        self._set_state(AuthState.UNAUTHENTICATED)

    async def _refresh_locked(self, credential: Credential) -> Credential:
        self._set_state(AuthState.REFRESHING)
        try:
            return await self._refresh_with_retries(credential)
        finally:
            # Any failure that did not discard the credential leaves it usable.
            if self._state is AuthState.REFRESHING:
                self._set_state(AuthState.AUTHENTICATED)

    async def _refresh_with_retries(self, credential: Credential) -> Credential:
        last_error: Optional[VibesError] = None
        for attempt in range(self._policy.max_attempts):
            try:
                payload = await self._tokens.refresh(credential.refresh_token)
            except AuthorizationInvalid:
                logger.warning("Refresh token rejected; starting a new login")
                self.invalidate()
                return await self._authorize_locked()
            except (TransientNetworkError, RateLimited) as exc:
                last_error = exc
                if attempt + 1 >= self._policy.max_attempts:
                    break
                delay = self._policy.delay(attempt)
                if isinstance(exc, RateLimited) and exc.retry_after is not None:
                    delay = exc.retry_after
                logger.warning(
                    "Token refresh failed (%s), retrying in %.1fs", exc, delay
                )
                await self._sleep(delay)
                continue
            refreshed = Credential.from_token_response(
                payload, now=self._clock(), previous=credential
            )
            self._credential = refreshed
            self._store.set(refreshed)
            self._set_state(AuthState.AUTHENTICATED)
            logger.info("Access token refreshed")
            return refreshed
        raise TransientNetworkError("Token refresh failed") from last_error

    async def _authorize_locked(self) -> Credential:
        verifier = generate_code_verifier()
        state = secrets.token_urlsafe(16)
        url = build_authorize_url(
            self._credentials.client_id,
            self._credentials.redirect_uri,
            code_challenge=generate_code_challenge(verifier),
            state=state,
        )
        self.authorize_url = url
        self._set_state(AuthState.AUTHORIZING)
        try:
            self._open_url(url)
            result = await self._wait_for_code(self._credentials.redirect_uri)
            if result.state != state:
                raise AuthorizationInvalid("Login redirect carried an unexpected state")
            payload = await self._tokens.exchange_code(result.code, verifier)
        except VibesError:
            self._set_state(AuthState.UNAUTHENTICATED)
            raise
        finally:
            self.authorize_url = None
        credential = Credential.from_token_response(payload, now=self._clock())
        self._credential = credential
        self._store.set(credential)
        self._set_state(AuthState.AUTHENTICATED)
        logger.info("Authorized with scopes: %s", " ".join(sorted(credential.scopes)))
        return credential

    def _set_state(self, state: AuthState) -> None:
        if state is self._state:
            return
        logger.info("Auth state %s -> %s", self._state.value, state.value)
        self._state = state
        if self._on_state_change is not None:
            self._on_state_change(state)
