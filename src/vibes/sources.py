"""Ordered track lists that playback can continue through."""

from __future__ import annotations

from typing import Optional, Protocol

from vibes.models import Page, Track
from vibes.spotify_api import SpotifyApi

LIKED_BROWSE_LIMIT = 200


class TrackSource(Protocol):
    """An ordered, pageable list of tracks (search results, a playlist...)."""

    @property
    def key(self) -> str: ...

    @property
    def label(self) -> str: ...

    async def fetch(self, offset: int, limit: int) -> Page[Track]: ...


class SearchSource:
    def __init__(self, api: SpotifyApi, query: str, *, page_limit: int = 50) -> None:
        self._api = api
        self.query = query.strip()
        self._page_limit = page_limit

    @property
    def key(self) -> str:
        return f"search:{self.query.lower()}"

    @property
    def label(self) -> str:
        return f"Search: {self.query}"

    async def fetch(self, offset: int, limit: int) -> Page[Track]:
        return await self._api.search_tracks(
            self.query, limit=max(1, min(self._page_limit, limit)), offset=offset
        )


class PlaylistSource:
    def __init__(
        self,
        api: SpotifyApi,
        playlist_id: str,
        *,
        name: str = "",
        page_limit: int = 100,
    ) -> None:
        self._api = api
        self.playlist_id = playlist_id
        self.name = name or playlist_id
        self._page_limit = page_limit

    @property
    def key(self) -> str:
        return f"playlist:{self.playlist_id}"

    @property
    def label(self) -> str:
        return f"Playlist: {self.name}"

    async def fetch(self, offset: int, limit: int) -> Page[Track]:
        return await self._api.playlist_tracks(
            self.playlist_id,
            limit=max(1, min(self._page_limit, limit)),
            offset=offset,
        )


class LikedSource:
    """Saved tracks, newest first, capped at ``max_items``."""

    def __init__(self, api: SpotifyApi, *, max_items: int = LIKED_BROWSE_LIMIT) -> None:
        self._api = api
        self._max_items = max_items

    @property
    def key(self) -> str:
        return "liked"

    @property
    def label(self) -> str:
        return "Liked Songs"

    async def fetch(self, offset: int, limit: int) -> Page[Track]:
        remaining = self._max_items - offset
        if remaining <= 0:
            return Page.empty(offset)
        page = await self._api.saved_tracks(limit=min(limit, remaining), offset=offset)
        return Page(
            items=[entry.track for entry in page.items],
            offset=page.offset,
            limit=page.limit,
            total=min(page.total, self._max_items),
            offsets=page.offsets,
        )


async def load_entries(
    source: TrackSource, *, page_size: int = 50, limit: Optional[int] = None
) -> list[tuple[int, Track]]:
    """Walk every page of ``source``, pairing each track with its offset.

    Offsets are server positions, so they stay valid for ``source.fetch``
    even when the listing skipped unplayable items.
    """
    entries: list[tuple[int, Track]] = []
    offset: Optional[int] = 0
    while offset is not None:
        if limit is not None and len(entries) >= limit:
            break
        page = await source.fetch(offset, page_size)
        entries.extend(zip(page.positions(), page.items))
        offset = page.next_offset
    return entries if limit is None else entries[:limit]
