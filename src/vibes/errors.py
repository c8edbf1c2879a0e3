"""Error taxonomy shared by the API, auth and playback layers."""

from __future__ import annotations

from typing import Any, Optional


class VibesError(Exception):
    """Base class for every failure the engine reports upward."""

    #: Short text suitable for the status line.
    notice = "Something went wrong"

    def user_message(self) -> str:
        detail = str(self)
        return detail if detail else self.notice


class ConfigError(VibesError):
    notice = "Configuration error"


class TransientNetworkError(VibesError):
    """Network failure or timeout that survived the retry budget."""

    notice = "Network problem, try again"


class RateLimited(VibesError):
    """The remote asked us to slow down."""

    notice = "Rate limited by Spotify"

    def __init__(self, retry_after: Optional[float], message: str = "") -> None:
        super().__init__(message or f"Rate limited, retry after {retry_after}s")
        self.retry_after = retry_after


class AuthorizationError(VibesError):
    notice = "Please re-authenticate"

    def user_message(self) -> str:
        detail = str(self)
        return f"{self.notice}: {detail}" if detail else self.notice


class AuthorizationExpired(AuthorizationError):
    """The access token was rejected; a refresh may fix it."""


class AuthorizationInvalid(AuthorizationError):
    """The credential cannot be recovered without a new login."""


class NoActiveDevice(VibesError):
    """Spotify has no device to play on; the user must open a client."""

    notice = (
        "No active Spotify device. Open Spotify on your phone, desktop or web "
        "player first."
    )

    def user_message(self) -> str:
        return self.notice


class RemoteStateConflict(VibesError):
    """A command succeeded but a later poll disagrees with its effect."""

    notice = "Spotify reported a different state"


class ApiError(VibesError):
    """Any other HTTP error, surfaced untouched for the caller to interpret."""

    def __init__(
        self,
        status: int,
        message: str = "",
        *,
        reason: Optional[str] = None,
        body: Any = None,
    ) -> None:
        super().__init__(message or "request failed")
        self.status = status
        self.reason = reason
        self.body = body

    def user_message(self) -> str:
        if self.reason == "PREMIUM_REQUIRED":
            return "Spotify Premium is required for playback control"
        return f"Spotify error {self.status}: {super().user_message()}"
