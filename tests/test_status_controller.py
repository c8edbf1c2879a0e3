from __future__ import annotations

from types import SimpleNamespace

import pytest

from vibes.ui.status_controller import StatusController


class Clock:
    def __init__(self, start: float = 0.0) -> None:
        self.value = start

    def __call__(self) -> float:
        return self.value


def _focus(*ids: str) -> SimpleNamespace:
    """Build a focus chain; the first id is the focused widget."""
    node = None
    for widget_id in reversed(ids):
        node = SimpleNamespace(id=widget_id, parent=node)
    assert node is not None
    return node


@pytest.mark.parametrize(
    ("level", "expires"), [("info", 13.0), ("warn", 16.0), ("error", 18.0)]
)
def test_each_level_has_its_own_default_timeout(level: str, expires: float) -> None:
    status = StatusController(now=Clock(10.0))
    status.show_message("Heads up", level=level)
    assert status._message is not None
    assert status._message.until == expires


def test_zero_timeout_keeps_message_until_cleared() -> None:
    clock = Clock()
    status = StatusController(now=clock)
    status.show_message("Log in to Spotify", timeout=0)
    clock.value = 10_000.0
    assert status.render_line(80).plain == "Log in to Spotify"
    status.clear_message()
    assert status._message is None
    assert "q: quit" in status.render_line(80).plain


def test_warnings_and_errors_are_coloured() -> None:
    status = StatusController(now=Clock())
    status.show_message("No active device", level="warn", timeout=5.0)
    assert status.render_line(40).style == "#ffcc66"
    status.show_message("Spotify error 403", level="error", timeout=5.0)
    assert status.render_line(40).style == "#ff5f52"


def test_expired_notice_gives_way_to_hint() -> None:
    clock = Clock()
    status = StatusController(now=clock)
    status.show_message("Queued: A", timeout=1.0)
    assert status.render_line(80).plain == "Queued: A"
    clock.value = 1.5
    assert status.render_line(80).plain.startswith("Space: play/pause")
    assert status._message is None


def test_long_notices_are_ellipsized() -> None:
    status = StatusController(now=Clock())
    status.show_message("x" * 50, timeout=5.0)
    assert status.render_line(10).plain == "xxxxxxx..."


def test_hint_follows_focus_chain() -> None:
    status = StatusController(now=Clock())
    in_results = status.render_line(80, focused=_focus("cell", "results_panel"))
    assert "a: queue" in in_results.plain
    in_search = status.render_line(80, focused=_focus("search_input"))
    assert in_search.plain.startswith("Enter: search")
    assert "q: quit" in status.render_line(80, focused=_focus("now_playing")).plain


def test_explicit_context_beats_focus() -> None:
    status = StatusController(now=Clock())
    status.set_context("search")
    line = status.render_line(80, focused=_focus("results_table"))
    assert line.plain.startswith("Enter: search")
    status.set_context("nonsense")
    assert "q: quit" in status.render_line(80).plain
