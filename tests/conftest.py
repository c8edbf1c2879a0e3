"""Pytest configuration for vibes."""

from __future__ import annotations

from pathlib import Path

import pytest

from vibes import config


@pytest.fixture(autouse=True)
def isolated_env(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    """Keep tests away from the real config dir and Spotify credentials."""
    for name in (
        "SPOTIFY_CLIENT_ID",
        "SPOTIFY_CLIENT_SECRET",
        "SPOTIFY_REDIRECT_URI",
        "VIBES_LOG_LEVEL",
    ):
        monkeypatch.delenv(name, raising=False)
    config_dir = tmp_path / "config"
    config_dir.mkdir()
    monkeypatch.setattr(config, "get_config_dir", lambda app_name="vibes": config_dir)
