"""Tests for pageable track sources."""

from __future__ import annotations

import asyncio

from vibes.models import LikedEntry, Page, Track
from vibes.sources import LikedSource, PlaylistSource, SearchSource, load_entries


def _track(index: int) -> Track:
    return Track(id=f"t{index}", uri=f"spotify:track:t{index}", name=f"Song {index}")


class FakeLibrary:
    def __init__(self, total: int) -> None:
        self.total = total
        self.calls: list[tuple[str, int, int]] = []

    def _page(self, offset: int, limit: int) -> Page[Track]:
        items = [_track(i) for i in range(offset, min(offset + limit, self.total))]
        return Page(items=items, offset=offset, limit=limit, total=self.total)

    async def search_tracks(self, query: str, *, limit: int, offset: int):
        self.calls.append(("search", offset, limit))
        return self._page(offset, limit)

    async def playlist_tracks(self, playlist_id: str, *, limit: int, offset: int):
        self.calls.append((playlist_id, offset, limit))
        return self._page(offset, limit)

    async def saved_tracks(self, *, limit: int, offset: int):
        self.calls.append(("liked", offset, limit))
        page = self._page(offset, limit)
        return Page(
            items=[LikedEntry(track) for track in page.items],
            offset=page.offset,
            limit=page.limit,
            total=page.total,
        )


def test_source_keys_and_labels() -> None:
    library = FakeLibrary(0)
    search = SearchSource(library, "  Daft Punk ")  # type: ignore[arg-type]
    playlist = PlaylistSource(library, "p1", name="Mix")  # type: ignore[arg-type]
    liked = LikedSource(library)  # type: ignore[arg-type]
    assert search.key == "search:daft punk"
    assert search.label == "Search: Daft Punk"
    assert playlist.key == "playlist:p1"
    assert playlist.label == "Playlist: Mix"
    assert liked.key == "liked"
    assert liked.label == "Liked Songs"


def test_search_source_caps_page_size() -> None:
    library = FakeLibrary(100)
    source = SearchSource(library, "x", page_limit=10)  # type: ignore[arg-type]
    page = asyncio.run(source.fetch(20, 50))
    assert library.calls == [("search", 20, 10)]
    assert [track.id for track in page.items][:2] == ["t20", "t21"]


def test_liked_source_stops_at_cap() -> None:
    library = FakeLibrary(500)
    source = LikedSource(library, max_items=30)  # type: ignore[arg-type]
    page = asyncio.run(source.fetch(20, 50))
    assert library.calls == [("liked", 20, 10)]
    assert page.total == 30
    assert page.next_offset is None
    assert asyncio.run(source.fetch(30, 50)).items == []


def test_load_entries_walks_pages() -> None:
    library = FakeLibrary(7)
    source = PlaylistSource(library, "p1")  # type: ignore[arg-type]
    entries = asyncio.run(load_entries(source, page_size=3))
    assert [(offset, track.id) for offset, track in entries] == [
        (i, f"t{i}") for i in range(7)
    ]
    assert [offset for _, offset, _ in library.calls] == [0, 3, 6]


def test_load_entries_respects_limit() -> None:
    library = FakeLibrary(100)
    source = PlaylistSource(library, "p1")  # type: ignore[arg-type]
    entries = asyncio.run(load_entries(source, page_size=4, limit=6))
    assert len(entries) == 6
    assert len(library.calls) == 2


def test_load_entries_keeps_server_offsets_past_skipped_items() -> None:
    # Raw playlist: [local, t1, t2, removed, t4]; only playable tracks listed.
    kept = {1: _track(1), 2: _track(2), 4: _track(4)}

    class GappyLibrary(FakeLibrary):
        async def playlist_tracks(self, playlist_id: str, *, limit: int, offset: int):
            window = [i for i in range(offset, min(offset + limit, 5)) if i in kept]
            return Page(
                items=[kept[i] for i in window],
                offset=offset,
                limit=limit,
                total=5,
                offsets=tuple(window),
            )

    source = PlaylistSource(GappyLibrary(5), "p1")  # type: ignore[arg-type]
    entries = asyncio.run(load_entries(source, page_size=2))
    assert [(offset, track.id) for offset, track in entries] == [
        (1, "t1"),
        (2, "t2"),
        (4, "t4"),
    ]


def test_liked_source_passes_offsets_through() -> None:
    class Library(FakeLibrary):
        async def saved_tracks(self, *, limit: int, offset: int):
            return Page(
                items=[LikedEntry(_track(3))],
                offset=offset,
                limit=limit,
                total=4,
                offsets=(3,),
            )

    page = asyncio.run(LikedSource(Library(4)).fetch(0, 4))  # type: ignore[arg-type]
    assert page.positions() == (3,)
