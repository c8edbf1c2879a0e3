"""Tests for API payload parsing."""

from __future__ import annotations

import pytest

from vibes.models import (
    Credential,
    Device,
    LikedEntry,
    Page,
    PlaybackSnapshot,
    Playlist,
    Track,
    paging_total,
)


def _raw_track(track_id: str = "t1", **extra) -> dict:
    raw = {
        "id": track_id,
        "uri": f"spotify:track:{track_id}",
        "name": "Song",
        "type": "track",
        "duration_ms": 200_000,
        "artists": [{"name": "A"}, {"name": "B"}],
        "album": {"name": "Album"},
    }
    raw.update(extra)
    return raw


def test_track_from_api() -> None:
    track = Track.from_api(_raw_track())
    assert track == Track(
        id="t1",
        uri="spotify:track:t1",
        name="Song",
        artists=("A", "B"),
        album="Album",
        duration_ms=200_000,
    )
    assert track.artist_line == "A, B"


def test_track_from_api_rejects_episodes_and_local_files() -> None:
    assert Track.from_api(_raw_track(type="episode")) is None
    assert Track.from_api(_raw_track(id=None)) is None
    assert Track.from_api(None) is None


def test_track_from_api_fills_missing_uri() -> None:
    track = Track.from_api(_raw_track(uri=None, duration_ms="long"))
    assert track is not None
    assert track.uri == "spotify:track:t1"
    assert track.duration_ms == 0


def test_playlist_and_liked_entry_from_api() -> None:
    playlist = Playlist.from_api(
        {
            "id": "p1",
            "name": "Mix",
            "owner": {"display_name": "me"},
            "tracks": {"total": 12},
        }
    )
    assert playlist == Playlist(id="p1", name="Mix", owner="me", track_count=12)
    entry = LikedEntry.from_api({"added_at": "2024-01-01", "track": _raw_track()})
    assert entry is not None
    assert entry.track.id == "t1"
    assert LikedEntry.from_api({"track": None}) is None


def test_device_volume_is_clamped() -> None:
    device = Device.from_api({"id": "d", "name": "Desk", "volume_percent": 140})
    assert device is not None
    assert device.volume_percent == 100
    assert Device.from_api({"name": "no id"}) is None


def test_snapshot_from_api() -> None:
    snapshot = PlaybackSnapshot.from_api(
        {
            "item": _raw_track(),
            "progress_ms": 1500,
            "is_playing": True,
            "device": {
                "id": "d",
                "name": "Desk",
                "is_active": True,
                "volume_percent": 40,
            },
            "context": {"uri": "spotify:playlist:p1"},
            "shuffle_state": True,
            "repeat_state": "context",
        }
    )
    assert snapshot.track is not None
    assert snapshot.position_ms == 1500
    assert snapshot.is_playing is True
    assert snapshot.volume == 40
    assert snapshot.context_uri == "spotify:playlist:p1"
    assert snapshot.duration_ms == 200_000
    assert snapshot.is_liked is None
    assert snapshot.repeat == "context"


def test_snapshot_from_empty_payload() -> None:
    assert PlaybackSnapshot.from_api(None) == PlaybackSnapshot()


def test_credential_from_token_response_keeps_previous_refresh_token() -> None:
    first = Credential.from_token_response(
        {
            "access_token": "a1",
            "refresh_token": "r1",
            "expires_in": 3600,
            "scope": "user-library-read user-read-private",
        },
        now=1000.0,
    )
    assert first.expires_at == 4600.0
    assert first.scopes == frozenset({"user-library-read", "user-read-private"})
    second = Credential.from_token_response(
        {"access_token": "a2", "expires_in": 3600}, now=2000.0, previous=first
    )
    assert second.refresh_token == "r1"
    assert second.scopes == first.scopes


def test_credential_from_token_response_requires_access_token() -> None:
    with pytest.raises(ValueError):
        Credential.from_token_response({"refresh_token": "r"}, now=0.0)


def test_credential_needs_refresh_inside_margin() -> None:
    credential = Credential("a", "r", expires_at=1000.0)
    assert not credential.needs_refresh(now=900.0, margin=60.0)
    assert credential.needs_refresh(now=940.0, margin=60.0)


def test_credential_json_round_trip_and_rejects_garbage() -> None:
    credential = Credential("a", "r", 12.5, frozenset({"x"}))
    assert Credential.from_json(credential.to_json()) == credential
    with pytest.raises(ValueError):
        Credential.from_json("[]")
    with pytest.raises(ValueError):
        Credential.from_json('{"access_token": "a", "refresh_token": "r"}')


def test_page_next_offset() -> None:
    assert Page(items=[1, 2], offset=0, limit=2, total=5).next_offset == 2
    assert Page(items=[5], offset=4, limit=2, total=5).next_offset is None
    assert Page.empty(10).next_offset is None
    assert paging_total({"total": 7}, 0, 2) == 7
    assert paging_total(None, 20, 3) == 23


def test_page_positions_default_to_contiguous_offsets() -> None:
    assert Page(items=["a", "b"], offset=4, limit=2, total=9).positions() == (4, 5)
    gappy = Page(items=["a", "b"], offset=4, limit=3, total=9, offsets=(4, 6))
    assert gappy.positions() == (4, 6)
