"""Typed Spotify Web API calls built on the gateway."""

from __future__ import annotations

import logging
from typing import Any, Optional, Sequence

from vibes.errors import NoActiveDevice
from vibes.gateway import ApiRequest, RemoteApiGateway
from vibes.models import (
    Device,
    LikedEntry,
    Page,
    PlaybackSnapshot,
    Playlist,
    Track,
    paging_total,
)

logger = logging.getLogger(__name__)

MAX_PLAY_URIS = 50
MAX_IDS_PER_CALL = 50
LIKED_PAGE_LIMIT = 50


class SpotifyApi:
    """Playback, queue and library endpoints.

    Methods take an optional ``device_id``. When omitted, playback commands
    target whatever device Spotify considers current.
    """

    def __init__(self, gateway: RemoteApiGateway) -> None:
        self._gateway = gateway

    async def _get(self, path: str, **params: Any) -> Any:
        response = await self._gateway.call(ApiRequest("GET", path, params=params))
        return response.data

    async def _send(
        self,
        method: str,
        path: str,
        *,
        params: Optional[dict[str, Any]] = None,
        json: Any = None,
    ) -> None:
        await self._gateway.call(ApiRequest(method, path, params=params, json=json))

    # Playback -------------------------------------------------------------

    async def current_playback(self) -> PlaybackSnapshot:
        return PlaybackSnapshot.from_api(await self._get("me/player"))

    async def devices(self) -> list[Device]:
        data = await self._get("me/player/devices")
        raw = data.get("devices") if isinstance(data, dict) else None
        devices = [Device.from_api(item) for item in raw or []]
        return [device for device in devices if device is not None]

    async def resolve_device(self) -> Device:
        """Pick the active device, else the first one that accepts commands."""
        devices = await self.devices()
        for device in devices:
            if device.is_active:
                return device
        for device in devices:
            if not device.is_restricted:
                logger.info("No active device, using %s (%s)", device.name, device.id)
                return device
        raise NoActiveDevice()

    async def play(
        self, uris: Sequence[str], *, device_id: Optional[str] = None
    ) -> None:
        await self._send(
            "PUT",
            "me/player/play",
            params={"device_id": device_id},
            json={"uris": list(uris)[:MAX_PLAY_URIS]},
        )

    async def resume(self, *, device_id: Optional[str] = None) -> None:
        await self._send("PUT", "me/player/play", params={"device_id": device_id})

    async def pause(self, *, device_id: Optional[str] = None) -> None:
        await self._send("PUT", "me/player/pause", params={"device_id": device_id})

    async def next(self, *, device_id: Optional[str] = None) -> None:
        await self._send("POST", "me/player/next", params={"device_id": device_id})

    async def previous(self, *, device_id: Optional[str] = None) -> None:
        await self._send(
            "POST", "me/player/previous", params={"device_id": device_id}
        )

    async def seek(self, position_ms: int, *, device_id: Optional[str] = None) -> None:
        await self._send(
            "PUT",
            "me/player/seek",
            params={"position_ms": max(0, int(position_ms)), "device_id": device_id},
        )

    async def set_volume(
        self, percent: int, *, device_id: Optional[str] = None
    ) -> None:
        await self._send(
            "PUT",
            "me/player/volume",
            params={
                "volume_percent": max(0, min(100, int(percent))),
                "device_id": device_id,
            },
        )

    # Queue ----------------------------------------------------------------

    async def add_to_queue(self, uri: str, *, device_id: Optional[str] = None) -> None:
        await self._send(
            "POST", "me/player/queue", params={"uri": uri, "device_id": device_id}
        )

    async def get_queue(self) -> list[Track]:
        """Tracks Spotify will play after the current one."""
        data = await self._get("me/player/queue")
        raw = data.get("queue") if isinstance(data, dict) else None
        tracks = [Track.from_api(item) for item in raw or []]
        return [track for track in tracks if track is not None]

    # Library --------------------------------------------------------------

    async def saved_tracks(
        self, *, limit: int = LIKED_PAGE_LIMIT, offset: int = 0
    ) -> Page[LikedEntry]:
        limit = max(1, min(LIKED_PAGE_LIMIT, limit))
        data = await self._get("me/tracks", limit=limit, offset=offset)
        items = data.get("items") if isinstance(data, dict) else None
        entries: list[LikedEntry] = []
        positions: list[int] = []
        for index, item in enumerate(items or []):
            entry = LikedEntry.from_api(item)
            if entry is not None:
                entries.append(entry)
                positions.append(offset + index)
        return Page(
            items=entries,
            offset=offset,
            limit=limit,
            total=paging_total(data, offset, len(items or [])),
            offsets=tuple(positions),
        )

    async def tracks_contains(self, track_ids: Sequence[str]) -> list[bool]:
        ids = list(track_ids)[:MAX_IDS_PER_CALL]
        if not ids:
            return []
        data = await self._get("me/tracks/contains", ids=",".join(ids))
        if not isinstance(data, list):
            return [False] * len(ids)
        return [bool(value) for value in data]

    async def save_tracks(self, track_ids: Sequence[str]) -> None:
        ids = list(track_ids)[:MAX_IDS_PER_CALL]
        if ids:
            await self._send("PUT", "me/tracks", json={"ids": ids})

    async def remove_tracks(self, track_ids: Sequence[str]) -> None:
        ids = list(track_ids)[:MAX_IDS_PER_CALL]
        if ids:
            await self._send("DELETE", "me/tracks", json={"ids": ids})

    async def user_playlists(
        self, *, limit: int = 50, offset: int = 0
    ) -> Page[Playlist]:
        data = await self._get("me/playlists", limit=limit, offset=offset)
        items = data.get("items") if isinstance(data, dict) else None
        playlists = [Playlist.from_api(item) for item in items or []]
        return Page(
            items=[playlist for playlist in playlists if playlist is not None],
            offset=offset,
            limit=limit,
            total=paging_total(data, offset, len(items or [])),
        )

    async def playlist_tracks(
        self, playlist_id: str, *, limit: int = 50, offset: int = 0
    ) -> Page[Track]:
        """One page of a playlist. Local files and removed tracks are skipped."""
        data = await self._get(
            f"playlists/{playlist_id}/tracks", limit=limit, offset=offset
        )
        items = data.get("items") if isinstance(data, dict) else None
        tracks: list[Track] = []
        positions: list[int] = []
        for index, item in enumerate(items or []):
            if not isinstance(item, dict) or item.get("is_local"):
                continue
            track = Track.from_api(item.get("track"))
            if track is not None:
                tracks.append(track)
                positions.append(offset + index)
        return Page(
            items=tracks,
            offset=offset,
            limit=limit,
            total=paging_total(data, offset, len(items or [])),
            offsets=tuple(positions),
        )

    async def search_tracks(
        self, query: str, *, limit: int = 20, offset: int = 0
    ) -> Page[Track]:
        query = query.strip()
        if not query:
            return Page.empty(offset)
        data = await self._get(
            "search", q=query, type="track", limit=limit, offset=offset
        )
        block = data.get("tracks") if isinstance(data, dict) else None
        items = block.get("items") if isinstance(block, dict) else None
        parsed = [Track.from_api(item) for item in items or []]
        kept = [(offset + i, t) for i, t in enumerate(parsed) if t is not None]
        return Page(
            items=[track for _, track in kept],
            offset=offset,
            limit=limit,
            total=paging_total(block, offset, len(items or [])),
            offsets=tuple(position for position, _ in kept),
        )
