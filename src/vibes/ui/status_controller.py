"""Status line state for the TUI."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Optional

from rich.text import Text

from vibes.ui.formatters import ellipsize

LEVEL_STYLES = {"warn": "#ffcc66", "error": "#ff5f52"}
DEFAULT_TIMEOUTS = {"info": 3.0, "warn": 6.0, "error": 8.0}

HINTS = {
    "search": "Enter: search  Esc: back to results",
    "results": "Enter: play  a: queue  l: like  ↑↓: navigate",
    "general": "Space: play/pause  n/p: next/prev  s: search  q: quit",
}
# Widget ids that select a hint; checked from the focused widget upwards.
FOCUS_CONTEXTS = {
    "search_input": "search",
    "results_table": "results",
    "results_panel": "results",
}


@dataclass(frozen=True)
class StatusMessage:
    text: str
    level: str
    until: Optional[float]

    def live(self, now: float) -> bool:
        return self.until is None or now < self.until


class StatusController:
    """Transient notices with a fallback key hint per focused area."""

    def __init__(self, now: Callable[[], float]) -> None:
        self._now = now
        self._message: Optional[StatusMessage] = None
        self._context: Optional[str] = None

    def show_message(
        self,
        text: str,
        *,
        level: str = "info",
        timeout: Optional[float] = None,
    ) -> None:
        """Show ``text`` until ``timeout`` seconds pass; ``0`` keeps it."""
        seconds = DEFAULT_TIMEOUTS.get(level, 3.0) if timeout is None else timeout
        until = None if seconds == 0 else self._now() + max(0.0, seconds)
        self._message = StatusMessage(text, level, until)

    def clear_message(self) -> None:
        self._message = None

    def set_context(self, name: Optional[str]) -> None:
        self._context = name

    def render_line(self, width: int, *, focused: object | None = None) -> Text:
        message = self._message
        if message is not None and not message.live(self._now()):
            message = self._message = None
        if message is None:
            context = self._context or _context_for(focused)
            return Text(ellipsize(HINTS.get(context, HINTS["general"]), width))
        return Text(
            ellipsize(message.text, width), style=LEVEL_STYLES.get(message.level, "")
        )


def _context_for(node: object | None) -> str:
    while node is not None:
        context = FOCUS_CONTEXTS.get(getattr(node, "id", None) or "")
        if context:
            return context
        node = getattr(node, "parent", None)
    return "general"
