"""vibes: a terminal remote for Spotify playback."""

__version__ = "0.3.0"
