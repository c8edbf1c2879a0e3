"""Value records parsed from Spotify Web API payloads."""

from __future__ import annotations

from dataclasses import dataclass, field
import json
from typing import Any, Generic, Mapping, Optional, TypeVar

T = TypeVar("T")


@dataclass(frozen=True)
class Track:
    """A playable track."""

    id: str
    uri: str
    name: str
    artists: tuple[str, ...] = ()
    album: str = ""
    duration_ms: int = 0

    @property
    def artist_line(self) -> str:
        return ", ".join(self.artists)

    @classmethod
    def from_api(cls, raw: Any) -> Optional["Track"]:
        """Parse a track object; returns None for local files and episodes."""
        if not isinstance(raw, Mapping):
            return None
        if raw.get("type", "track") != "track":
            return None
        track_id = raw.get("id")
        if not isinstance(track_id, str) or not track_id:
            return None
        uri = raw.get("uri")
        if not isinstance(uri, str) or not uri:
            uri = f"spotify:track:{track_id}"
        artists = tuple(
            str(artist.get("name", ""))
            for artist in raw.get("artists") or []
            if isinstance(artist, Mapping)
        )
        album = raw.get("album")
        album_name = album.get("name", "") if isinstance(album, Mapping) else ""
        duration = raw.get("duration_ms")
        return cls(
            id=track_id,
            uri=uri,
            name=str(raw.get("name") or ""),
            artists=artists,
            album=str(album_name or ""),
            duration_ms=duration if isinstance(duration, int) else 0,
        )


@dataclass(frozen=True)
class Playlist:
    id: str
    name: str
    owner: str = ""
    track_count: int = 0

    @classmethod
    def from_api(cls, raw: Any) -> Optional["Playlist"]:
        if not isinstance(raw, Mapping) or not raw.get("id"):
            return None
        owner = raw.get("owner")
        tracks = raw.get("tracks")
        total = tracks.get("total") if isinstance(tracks, Mapping) else None
        return cls(
            id=str(raw["id"]),
            name=str(raw.get("name") or ""),
            owner=str(owner.get("display_name") or "")
            if isinstance(owner, Mapping)
            else "",
            track_count=total if isinstance(total, int) else 0,
        )


@dataclass(frozen=True)
class LikedEntry:
    """A saved ("liked") track and when it was saved."""

    track: Track
    added_at: str = ""

    @classmethod
    def from_api(cls, raw: Any) -> Optional["LikedEntry"]:
        if not isinstance(raw, Mapping):
            return None
        track = Track.from_api(raw.get("track"))
        if track is None:
            return None
        return cls(track=track, added_at=str(raw.get("added_at") or ""))


@dataclass(frozen=True)
class Device:
    id: str
    name: str
    type: str = ""
    is_active: bool = False
    is_restricted: bool = False
    volume_percent: Optional[int] = None

    @classmethod
    def from_api(cls, raw: Any) -> Optional["Device"]:
        if not isinstance(raw, Mapping) or not raw.get("id"):
            return None
        volume = raw.get("volume_percent")
        return cls(
            id=str(raw["id"]),
            name=str(raw.get("name") or ""),
            type=str(raw.get("type") or ""),
            is_active=bool(raw.get("is_active", False)),
            is_restricted=bool(raw.get("is_restricted", False)),
            volume_percent=(
                max(0, min(100, volume)) if isinstance(volume, int) else None
            ),
        )


@dataclass(frozen=True)
class PlaybackSnapshot:
    """The remote server's last reported truth, replaced wholesale per poll."""

    track: Optional[Track] = None
    position_ms: int = 0
    is_playing: bool = False
    volume: Optional[int] = None
    device: Optional[Device] = None
    context_uri: Optional[str] = None
    is_liked: Optional[bool] = None
    shuffle: bool = False
    repeat: str = "off"

    @property
    def duration_ms(self) -> int:
        return self.track.duration_ms if self.track else 0

    @classmethod
    def from_api(cls, raw: Any) -> "PlaybackSnapshot":
        """Parse GET /me/player. A missing payload means nothing is playing."""
        if not isinstance(raw, Mapping):
            return cls()
        device = Device.from_api(raw.get("device"))
        context = raw.get("context")
        progress = raw.get("progress_ms")
        repeat = raw.get("repeat_state")
        return cls(
            track=Track.from_api(raw.get("item")),
            position_ms=progress if isinstance(progress, int) else 0,
            is_playing=bool(raw.get("is_playing", False)),
            volume=device.volume_percent if device else None,
            device=device,
            context_uri=context.get("uri") if isinstance(context, Mapping) else None,
            shuffle=bool(raw.get("shuffle_state", False)),
            repeat=repeat if isinstance(repeat, str) else "off",
        )


@dataclass(frozen=True)
class Credential:
    """OAuth token pair with an absolute expiry (epoch seconds)."""

    access_token: str
    refresh_token: str
    expires_at: float
    scopes: frozenset[str] = field(default_factory=frozenset)

    def needs_refresh(self, now: float, margin: float) -> bool:
        """True once the token is inside the safety margin of its expiry."""
        return self.expires_at - margin <= now

    @classmethod
    def from_token_response(
        cls,
        payload: Mapping[str, Any],
        *,
        now: float,
        previous: Optional["Credential"] = None,
    ) -> "Credential":
        """Build a credential from an accounts-service token response.

        Spotify omits ``refresh_token`` when it did not rotate it, in which
        case the previous one stays valid.
        """
        access = payload.get("access_token")
        if not isinstance(access, str) or not access:
            raise ValueError("token response has no access_token")
        refresh = payload.get("refresh_token")
        if not isinstance(refresh, str) or not refresh:
            refresh = previous.refresh_token if previous else ""
        expires_in = payload.get("expires_in", 3600)
        if not isinstance(expires_in, (int, float)):
            expires_in = 3600
        scope = payload.get("scope")
        if isinstance(scope, str):
            scopes = frozenset(scope.split())
        else:
            scopes = previous.scopes if previous else frozenset()
        return cls(
            access_token=access,
            refresh_token=refresh,
            expires_at=now + float(expires_in),
            scopes=scopes,
        )

    def to_json(self) -> str:
        return json.dumps(
            {
                "access_token": self.access_token,
                "refresh_token": self.refresh_token,
                "expires_at": self.expires_at,
                "scopes": sorted(self.scopes),
            }
        )

    @classmethod
    def from_json(cls, text: str) -> "Credential":
        raw = json.loads(text)
        if not isinstance(raw, dict):
            raise ValueError("credential record is not an object")
        access = raw.get("access_token")
        refresh = raw.get("refresh_token")
        expires_at = raw.get("expires_at")
        if not isinstance(access, str) or not isinstance(refresh, str):
            raise ValueError("credential record is missing tokens")
        if not isinstance(expires_at, (int, float)):
            raise ValueError("credential record is missing expires_at")
        scopes = raw.get("scopes") or []
        return cls(
            access_token=access,
            refresh_token=refresh,
            expires_at=float(expires_at),
            scopes=frozenset(str(s) for s in scopes),
        )


@dataclass(frozen=True)
class Page(Generic[T]):
    """One page of a paginated listing.

    ``total`` counts raw items on the server, including ones that were
    skipped while parsing (local files, removed tracks). ``offsets`` holds
    the raw server position of each kept item when some were skipped.
    """

    items: list[T]
    offset: int = 0
    limit: int = 0
    total: int = 0
    offsets: tuple[int, ...] = ()

    @property
    def next_offset(self) -> Optional[int]:
        following = self.offset + self.limit
        return following if self.limit and following < self.total else None

    def positions(self) -> tuple[int, ...]:
        """Server offset of every item in ``items``."""
        if self.offsets:
            return self.offsets
        return tuple(range(self.offset, self.offset + len(self.items)))

    @classmethod
    def empty(cls, offset: int = 0) -> "Page[T]":
        return cls(items=[], offset=offset, limit=0, total=0)


def paging_total(block: Any, offset: int, count: int) -> int:
    total = block.get("total") if isinstance(block, Mapping) else None
    return total if isinstance(total, int) else offset + count
