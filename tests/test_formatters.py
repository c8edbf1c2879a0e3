from __future__ import annotations

import pytest

from vibes.models import Track
from vibes.playback_state import TRACK, LocalPlaybackBelief
from vibes.ui import formatters

SONG = Track(id="a", uri="spotify:track:a", name="Around", artists=("Daft Punk",))


@pytest.mark.parametrize(
    ("value", "expected"),
    [(None, "-:--"), (0, "0:00"), (61_000, "1:01"), (3_725_000, "1:02:05")],
)
def test_format_time_ms(value, expected: str) -> None:
    assert formatters.format_time_ms(value) == expected


def test_format_progress_clamps_position() -> None:
    assert formatters.format_progress(5_000, 0) == "-:-- / -:--"
    assert formatters.format_progress(500_000, 180_000) == "3:00 / 3:00"
    assert formatters.format_progress(-10, 180_000) == "0:00 / 3:00"


def test_progress_ratio() -> None:
    assert formatters.progress_ratio(50, 100) == 0.5
    assert formatters.progress_ratio(500, 100) == 1.0
    assert formatters.progress_ratio(5, 0) == 0.0


def test_render_progress_bar() -> None:
    assert formatters.render_progress_bar(0, 0.5) == ""
    assert formatters.render_progress_bar(2, 0.7) == "=="
    assert formatters.render_progress_bar(2, 0.2) == "--"
    assert formatters.render_progress_bar(12, 0.5) == "[=====-----]"


def test_ellipsize() -> None:
    assert formatters.ellipsize("abc", 0) == ""
    assert formatters.ellipsize("abc", 3) == "abc"
    assert formatters.ellipsize("abcdef", 3) == "..."
    assert formatters.ellipsize("abcdefgh", 6) == "abc..."


def test_ticker_window_scrolls_long_text() -> None:
    assert formatters.ticker_window("short", 10, 4) == "short"
    assert formatters.ticker_window("abcdefgh", 4, 0) == "abcd"
    assert formatters.ticker_window("abcdefgh", 4, 6) == "gh  "
    # Wraps around after the gap.
    assert formatters.ticker_window("abcdefgh", 4, 11) == "abcd"


def test_playback_state_label() -> None:
    assert formatters.playback_state_label(LocalPlaybackBelief()) == "IDLE"
    loading = LocalPlaybackBelief(pending=frozenset({TRACK}))
    assert formatters.playback_state_label(loading) == "LOADING"
    playing = LocalPlaybackBelief(track=SONG, is_playing=True)
    assert formatters.playback_state_label(playing) == "PLAYING"
    paused = LocalPlaybackBelief(track=SONG)
    assert formatters.playback_state_label(paused) == "PAUSED"


def test_volume_and_track_labels() -> None:
    assert formatters.volume_label(None) == "--%"
    assert formatters.volume_label(40) == "40%"
    assert formatters.track_line(None) == "Nothing playing"
    assert formatters.track_line(SONG) == "Around - Daft Punk"
    bare = Track(id="b", uri="spotify:track:b", name="Untitled")
    assert formatters.track_line(bare) == "Untitled"
