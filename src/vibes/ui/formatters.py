from __future__ import annotations

from typing import Optional

from vibes.models import Track
from vibes.playback_state import TRACK, LocalPlaybackBelief

TICKER_GAP = "   "


def format_time_ms(value: Optional[int]) -> str:
    """Render milliseconds as ``m:ss`` (``h:mm:ss`` past an hour)."""
    if value is None:
        return "-:--"
    total_seconds = max(0, int(value) // 1000)
    minutes, seconds = divmod(total_seconds, 60)
    hours, minutes = divmod(minutes, 60)
    if hours:
        return f"{hours}:{minutes:02d}:{seconds:02d}"
    return f"{minutes}:{seconds:02d}"


def progress_ratio(position_ms: int, duration_ms: int) -> float:
    if duration_ms <= 0:
        return 0.0
    return max(0.0, min(1.0, position_ms / float(duration_ms)))


def format_progress(position_ms: int, duration_ms: int) -> str:
    if duration_ms <= 0:
        return "-:-- / -:--"
    position_ms = max(0, min(position_ms, duration_ms))
    return f"{format_time_ms(position_ms)} / {format_time_ms(duration_ms)}"


def render_progress_bar(width: int, ratio: float) -> str:
    if width <= 0:
        return ""
    if width < 3:
        return "=" * width if ratio >= 0.5 else "-" * width
    inner = width - 2
    filled = int(max(0.0, min(1.0, ratio)) * inner)
    return "[" + "=" * filled + "-" * (inner - filled) + "]"


def ellipsize(text: str, max_len: int) -> str:
    if max_len <= 0:
        return ""
    if len(text) <= max_len:
        return text
    if max_len <= 3:
        return "." * max_len
    return text[: max_len - 3] + "..."


def ticker_window(text: str, width: int, offset: int) -> str:
    """Scroll ``text`` through a ``width`` wide window when it does not fit."""
    if width <= 0:
        return ""
    if len(text) <= width:
        return text
    padded = text + TICKER_GAP
    start = offset % len(padded)
    rotated = padded[start:] + padded[:start]
    return rotated[:width]


def playback_state_label(belief: LocalPlaybackBelief) -> str:
    if belief.track is None:
        return "LOADING" if belief.is_pending(TRACK) else "IDLE"
    return "PLAYING" if belief.is_playing else "PAUSED"


def volume_label(volume: Optional[int]) -> str:
    return "--%" if volume is None else f"{volume:d}%"


def track_line(track: Optional[Track]) -> str:
    if track is None:
        return "Nothing playing"
    if not track.artists:
        return track.name
    return f"{track.name} - {track.artist_line}"
