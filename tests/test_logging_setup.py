from __future__ import annotations

import logging
from pathlib import Path
from typing import Iterator

import pytest

from vibes import logging_setup


@pytest.fixture
def clean_root() -> Iterator[logging.Logger]:
    """Hand out the root logger with no handlers and restore it afterwards."""
    root = logging.getLogger()
    saved_handlers, saved_level = list(root.handlers), root.level
    root.handlers.clear()
    try:
        yield root
    finally:
        for handler in root.handlers:
            handler.close()
        root.handlers = saved_handlers
        root.setLevel(saved_level)


def _log_into(monkeypatch, directory: Path) -> None:
    monkeypatch.setattr(logging_setup, "_default_log_dir", lambda: directory)


def test_log_dir_on_windows_lives_under_local_appdata(
    monkeypatch, tmp_path: Path
) -> None:
    monkeypatch.setenv("LOCALAPPDATA", str(tmp_path))
    assert logging_setup._default_log_dir() == tmp_path / "vibes" / "logs"


def test_log_dir_prefers_xdg_state_home(monkeypatch, tmp_path: Path) -> None:
    monkeypatch.delenv("LOCALAPPDATA", raising=False)
    monkeypatch.setenv("XDG_STATE_HOME", str(tmp_path))
    assert logging_setup._default_log_dir() == tmp_path / "vibes"


def test_log_dir_without_env_uses_dot_dir(monkeypatch, tmp_path: Path) -> None:
    monkeypatch.delenv("LOCALAPPDATA", raising=False)
    monkeypatch.delenv("XDG_STATE_HOME", raising=False)
    monkeypatch.setattr(logging_setup.Path, "home", lambda: tmp_path)
    assert logging_setup._default_log_dir() == tmp_path / ".vibes" / "logs"


def test_init_logging_returns_log_file(monkeypatch, tmp_path: Path, clean_root):
    _log_into(monkeypatch, tmp_path / "logs")
    log_path = logging_setup.init_logging()
    assert log_path == tmp_path / "logs" / "vibes.log"
    assert clean_root.handlers


def test_unknown_level_name_means_info(monkeypatch, tmp_path: Path, clean_root):
    monkeypatch.setenv("VIBES_LOG_LEVEL", "loud")
    _log_into(monkeypatch, tmp_path)
    logging_setup.init_logging()
    assert clean_root.level == logging.INFO


def test_debug_level_keeps_httpx_quiet(monkeypatch, tmp_path: Path, clean_root):
    monkeypatch.setenv("VIBES_LOG_LEVEL", "DEBUG")
    _log_into(monkeypatch, tmp_path)
    logging_setup.init_logging()
    assert clean_root.level == logging.DEBUG
    assert logging.getLogger("httpx").level == logging.WARNING


def test_console_level_leaves_file_handler_alone(tmp_path: Path, clean_root) -> None:
    console = logging.StreamHandler()
    log_file = logging.FileHandler(tmp_path / "vibes.log")
    for handler in (console, log_file):
        handler.setLevel(logging.DEBUG)
        clean_root.addHandler(handler)
    logging_setup.set_console_level(logging.WARNING)
    assert console.level == logging.WARNING
    assert log_file.level == logging.DEBUG
