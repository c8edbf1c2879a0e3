"""Retrying request layer over the Spotify Web API."""

from __future__ import annotations

from dataclasses import dataclass
import logging
from typing import Any, Mapping, Optional, Protocol

import httpx

from vibes.backoff import RetryPolicy, Sleep, default_sleep, parse_retry_after
from vibes.errors import (
    ApiError,
    AuthorizationExpired,
    AuthorizationInvalid,
    NoActiveDevice,
    RateLimited,
    TransientNetworkError,
)
from vibes.models import Credential

logger = logging.getLogger(__name__)

API_BASE_URL = "https://api.spotify.com/v1"


class TokenProvider(Protocol):
    async def ensure_fresh(
        self, credential: Optional[Credential] = None
    ) -> Credential: ...

    async def force_refresh(
        self, rejected_token: Optional[str] = None
    ) -> Credential: ...


@dataclass(frozen=True)
class ApiRequest:
    method: str
    path: str
    params: Optional[Mapping[str, Any]] = None
    json: Any = None

    def describe(self) -> str:
        return f"{self.method} {self.path}"


@dataclass(frozen=True)
class ApiResponse:
    status: int
    data: Any = None


class RemoteApiGateway:
    """Every API call goes through here: token freshness, retries, error mapping.

    Network errors and timeouts back off exponentially. A 429 waits exactly
    the server's ``Retry-After`` and does not grow the backoff. A 401 gets one
    forced token refresh. Everything else is raised to the caller as is.
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        tokens: TokenProvider,
        *,
        base_url: str = API_BASE_URL,
        policy: RetryPolicy = RetryPolicy(),
        sleep: Sleep = default_sleep,
    ) -> None:
        self._client = client
        self._tokens = tokens
        self._base_url = base_url.rstrip("/")
        self._policy = policy
        self._sleep = sleep

    async def call(self, request: ApiRequest) -> ApiResponse:
        credential = await self._tokens.ensure_fresh()
        refreshed = False
        backoff_index = 0
        attempt = 0
        while True:
            attempt += 1
            try:
                response = await self._send(request, credential.access_token)
            except httpx.TransportError as exc:
                if attempt >= self._policy.max_attempts:
                    raise TransientNetworkError(
                        f"{request.describe()} failed after {attempt} attempts: {exc}"
                    ) from exc
                delay = self._policy.delay(backoff_index)
                backoff_index += 1
                logger.warning(
                    "%s network error (%s), retry %s in %.2fs",
                    request.describe(),
                    type(exc).__name__,
                    attempt,
                    delay,
                )
                await self._sleep(delay)
                continue

            status = response.status_code
            logger.debug("%s -> %s", request.describe(), status)
            if status == 429:
                retry_after = parse_retry_after(response.headers.get("Retry-After"))
                if attempt >= self._policy.max_attempts:
                    raise RateLimited(retry_after)
                if retry_after is None:
                    delay = self._policy.delay(backoff_index)
                    backoff_index += 1
                else:
                    delay = retry_after
                logger.warning(
                    "%s rate limited, waiting %.2fs", request.describe(), delay
                )
                await self._sleep(delay)
                continue
            if status >= 400:
                error = _error_from_response(response)
                if not isinstance(error, AuthorizationExpired):
                    raise error
                if refreshed:
                    raise AuthorizationInvalid(
                        "Spotify rejected the access token after a refresh"
                    ) from error
                refreshed = True
                attempt -= 1
                logger.info(
                    "%s unauthorized, forcing token refresh", request.describe()
                )
                credential = await self._tokens.force_refresh(credential.access_token)
                continue
            return ApiResponse(status=status, data=_decode_body(response))

    async def _send(self, request: ApiRequest, access_token: str) -> httpx.Response:
        params = None
        if request.params:
            params = {k: v for k, v in request.params.items() if v is not None}
        return await self._client.request(
            request.method,
            f"{self._base_url}/{request.path.lstrip('/')}",
            params=params,
            json=request.json,
            headers={"Authorization": f"Bearer {access_token}"},
        )


def _decode_body(response: httpx.Response) -> Any:
    if response.status_code == 204 or not response.content:
        return None
    try:
        return response.json()
    except ValueError:
        return None


def _error_from_response(response: httpx.Response) -> Exception:
    status = response.status_code
    body = _decode_body(response)
    message = ""
    reason = None
    if isinstance(body, dict):
        error = body.get("error")
        if isinstance(error, dict):
            message = str(error.get("message") or "")
            reason = error.get("reason")
        elif isinstance(error, str):
            message = str(body.get("error_description") or error)
    if status == 401:
        return AuthorizationExpired(message or "Access token rejected")
    if status == 404 and (
        reason == "NO_ACTIVE_DEVICE" or "no active device" in message.lower()
    ):
        return NoActiveDevice(message or "No active device")
    return ApiError(status, message, reason=reason, body=body)
