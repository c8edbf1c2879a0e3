"""Tests for retrying, token refresh and error mapping in the gateway."""

from __future__ import annotations

import asyncio
from typing import Callable, Optional

import httpx
import pytest

from vibes.backoff import RetryPolicy, parse_retry_after
from vibes.errors import (
    ApiError,
    AuthorizationExpired,
    AuthorizationInvalid,
    NoActiveDevice,
    RateLimited,
    TransientNetworkError,
)
from vibes.gateway import ApiRequest, ApiResponse, RemoteApiGateway
from vibes.models import Credential

Handler = Callable[[httpx.Request], httpx.Response]


class FakeTokens:
    def __init__(self) -> None:
        self.credential = Credential("token-1", "refresh", expires_at=1e12)
        self.ensure_calls = 0
        self.forced: list[Optional[str]] = []

    async def ensure_fresh(self, credential: Optional[Credential] = None) -> Credential:
        self.ensure_calls += 1
        return self.credential

    async def force_refresh(self, rejected_token: Optional[str] = None) -> Credential:
        self.forced.append(rejected_token)
        self.credential = Credential(
            f"token-{len(self.forced) + 1}", "refresh", expires_at=1e12
        )
        return self.credential


def _scripted(*steps) -> tuple[Handler, list[httpx.Request]]:
    """Handler replying with ``steps`` in order; exceptions are raised."""
    seen: list[httpx.Request] = []
    remaining = list(steps)

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        step = remaining.pop(0)
        if isinstance(step, type) and issubclass(step, Exception):
            raise step("scripted failure", request=request)
        return step

    return handler, seen


def _call(
    handler: Handler,
    request: ApiRequest = ApiRequest("GET", "me/player"),
    *,
    policy: RetryPolicy = RetryPolicy(),
    tokens: Optional[FakeTokens] = None,
    sleeps: Optional[list[float]] = None,
) -> ApiResponse:
    tokens = tokens or FakeTokens()
    recorded = sleeps if sleeps is not None else []

    async def fake_sleep(seconds: float) -> None:
        recorded.append(seconds)

    async def scenario() -> ApiResponse:
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http:
            gateway = RemoteApiGateway(
                http,
                tokens,
                base_url="https://api.test/v1",
                policy=policy,
                sleep=fake_sleep,
            )
            return await gateway.call(request)

    return asyncio.run(scenario())


def test_success_returns_json_and_sends_bearer() -> None:
    handler, seen = _scripted(httpx.Response(200, json={"is_playing": True}))
    tokens = FakeTokens()
    response = _call(handler, tokens=tokens)
    assert response == ApiResponse(status=200, data={"is_playing": True})
    assert seen[0].headers["Authorization"] == "Bearer token-1"
    assert str(seen[0].url) == "https://api.test/v1/me/player"
    assert tokens.ensure_calls == 1


def test_no_content_returns_none() -> None:
    handler, _ = _scripted(httpx.Response(204))
    response = _call(handler, ApiRequest("PUT", "me/player/pause"))
    assert response.status == 204
    assert response.data is None


def test_none_params_are_dropped() -> None:
    handler, seen = _scripted(httpx.Response(204))
    _call(
        handler,
        ApiRequest("PUT", "me/player/pause", params={"device_id": None, "x": 1}),
    )
    assert dict(seen[0].url.params) == {"x": "1"}


def test_network_errors_back_off_exponentially() -> None:
    handler, seen = _scripted(
        httpx.ConnectError, httpx.ReadTimeout, httpx.Response(200, json={})
    )
    sleeps: list[float] = []
    _call(handler, sleeps=sleeps)
    assert sleeps == [0.5, 1.0]
    assert len(seen) == 3


def test_network_errors_exhaust_attempts() -> None:
    handler, seen = _scripted(*([httpx.ConnectError] * 4))
    sleeps: list[float] = []
    with pytest.raises(TransientNetworkError):
        _call(handler, sleeps=sleeps)
    assert len(seen) == 4
    assert sleeps == [0.5, 1.0, 2.0]


def test_rate_limit_waits_exactly_retry_after() -> None:
    handler, _ = _scripted(
        httpx.Response(429, headers={"Retry-After": "3"}),
        httpx.ConnectError,
        httpx.Response(200, json={}),
    )
    sleeps: list[float] = []
    _call(handler, sleeps=sleeps)
    # The rate limit wait does not advance the exponential backoff.
    assert sleeps == [3.0, 0.5]


def test_rate_limit_without_header_uses_backoff() -> None:
    handler, _ = _scripted(httpx.Response(429), httpx.Response(204))
    sleeps: list[float] = []
    _call(handler, sleeps=sleeps)
    assert sleeps == [0.5]


def test_rate_limit_exhausted_raises_rate_limited() -> None:
    handler, _ = _scripted(
        *[httpx.Response(429, headers={"Retry-After": "2"}) for _ in range(2)]
    )
    with pytest.raises(RateLimited) as excinfo:
        _call(handler, policy=RetryPolicy(max_attempts=2))
    assert excinfo.value.retry_after == 2.0


def test_unauthorized_forces_one_refresh() -> None:
    handler, seen = _scripted(httpx.Response(401), httpx.Response(200, json={}))
    tokens = FakeTokens()
    _call(handler, tokens=tokens)
    assert tokens.forced == ["token-1"]
    assert seen[1].headers["Authorization"] == "Bearer token-2"


def test_second_unauthorized_is_fatal() -> None:
    handler, seen = _scripted(httpx.Response(401), httpx.Response(401))
    tokens = FakeTokens()
    with pytest.raises(AuthorizationInvalid) as excinfo:
        _call(handler, tokens=tokens)
    assert len(tokens.forced) == 1
    assert len(seen) == 2
    assert isinstance(excinfo.value.__cause__, AuthorizationExpired)
    assert excinfo.value.user_message().startswith("Please re-authenticate")


def test_authorization_errors_ask_for_a_new_login() -> None:
    assert AuthorizationInvalid().user_message() == "Please re-authenticate"
    expired = AuthorizationExpired("token revoked")
    assert expired.user_message() == "Please re-authenticate: token revoked"


def test_no_active_device_is_recognized() -> None:
    body = {
        "error": {
            "status": 404,
            "message": "Player command failed: No active device found",
            "reason": "NO_ACTIVE_DEVICE",
        }
    }
    handler, _ = _scripted(httpx.Response(404, json=body))
    with pytest.raises(NoActiveDevice):
        _call(handler, ApiRequest("PUT", "me/player/play"))


@pytest.mark.parametrize("status", [403, 404, 500, 502])
def test_other_errors_are_raised_without_retry(status: int) -> None:
    body = {"error": {"status": status, "message": "nope", "reason": "X"}}
    handler, seen = _scripted(httpx.Response(status, json=body))
    sleeps: list[float] = []
    with pytest.raises(ApiError) as excinfo:
        _call(handler, sleeps=sleeps)
    assert excinfo.value.status == status
    assert excinfo.value.reason == "X"
    assert str(excinfo.value) == "nope"
    assert len(seen) == 1
    assert sleeps == []


def test_premium_required_message() -> None:
    error = ApiError(403, "Premium", reason="PREMIUM_REQUIRED")
    assert "Premium is required" in error.user_message()


@pytest.mark.parametrize(
    ("raw", "expected"),
    [(None, None), ("4", 4.0), (" 2.5 ", 2.5), ("soon", None), ("-1", None)],
)
def test_parse_retry_after(raw: Optional[str], expected: Optional[float]) -> None:
    assert parse_retry_after(raw) == expected


def test_retry_policy_caps_delay() -> None:
    policy = RetryPolicy(base=0.5, ceiling=3.0)
    assert [policy.delay(i) for i in range(5)] == [0.5, 1.0, 2.0, 3.0, 3.0]
