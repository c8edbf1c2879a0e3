"""Textual front end for vibes."""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Callable, Optional

try:
    from textual.app import App, ComposeResult
    from textual.binding import Binding
    from textual.containers import Container, Vertical
    from textual.css.query import NoMatches
    from textual.widgets import DataTable, Header, Input, Static
    from rich.text import Text
except Exception as exc:  # pragma: no cover - depends on environment
    raise RuntimeError(
        "Textual is required for the TUI. Install the 'textual' dependency."
    ) from exc

from vibes.auth import AuthState
from vibes.commands import (
    Command,
    Enqueue,
    Next,
    Pause,
    Play,
    Previous,
    Resume,
    Seek,
    SetVolume,
    ToggleLike,
)
from vibes.config import AppConfig, ClientCredentials
from vibes.dispatcher import Notice
from vibes.errors import VibesError
from vibes.logging_setup import set_console_level
from vibes.models import Playlist, Track
from vibes.playback_state import LocalPlaybackBelief
from vibes.session import Session, build_session
from vibes.sources import (
    LIKED_BROWSE_LIMIT,
    LikedSource,
    PlaylistSource,
    SearchSource,
    TrackSource,
    load_entries,
)
from vibes.ui.formatters import (
    ellipsize,
    format_progress,
    format_time_ms,
    playback_state_label,
    progress_ratio,
    render_progress_bar,
    ticker_window,
    track_line,
    volume_label,
)
from vibes.ui.status_controller import StatusController

logger = logging.getLogger(__name__)

SEARCH_LIMIT = 50
PLAYLIST_LIMIT = 100

VIEW_SEARCH = "search"
VIEW_LIKED = "liked"
VIEW_PLAYLISTS = "playlists"
VIEW_PLAYLIST = "playlist"

VIEW_TITLES = {
    VIEW_SEARCH: "Search",
    VIEW_LIKED: "Liked Songs",
    VIEW_PLAYLISTS: "Playlists",
    VIEW_PLAYLIST: "Playlist",
}


class StatusBar(Static):
    """Status bar widget."""

    def __init__(self, controller: StatusController, **kwargs: Any) -> None:
        super().__init__(**kwargs)
        self._controller = controller

    def render(self) -> Text:
        width = max(1, self.size.width)
        focused = getattr(self.app, "focused", None)
        return self._controller.render_line(width, focused=focused)


class VibesApp(App):
    """Spotify remote: now playing on top, a browsable track list below."""

    TITLE = "vibes"
    CSS = """
    #now_panel {
        height: 6;
        border: round $accent;
        padding: 0 1;
    }
    #results_panel {
        border: round $primary;
    }
    #search_input {
        display: none;
    }
    #search_input.visible {
        display: block;
    }
    #status_bar {
        height: 1;
        padding: 0 1;
    }
    """

    BINDINGS = [
        Binding("space", "toggle_playback", "Play/Pause"),
        Binding("n", "next_track", "Next"),
        Binding("p", "previous_track", "Previous"),
        Binding("f", "seek_forward", "Seek +10s"),
        Binding("r", "seek_back", "Seek -10s"),
        Binding("+", "volume_up", "Volume +"),
        Binding("=", "volume_up", "Volume +", show=False),
        Binding("-", "volume_down", "Volume -"),
        Binding("l", "toggle_like", "Like"),
        Binding("a", "enqueue_selected", "Queue"),
        Binding("s", "open_search", "Search"),
        Binding("1", "show_search", "Results"),
        Binding("2", "show_liked", "Liked"),
        Binding("3", "show_playlists", "Playlists"),
        Binding("escape", "back", "Back"),
        Binding("q", "quit_app", "Quit"),
    ]

    def __init__(
        self,
        *,
        config: AppConfig,
        credentials: ClientCredentials,
        open_url: Callable[[str], None],
        reauth: bool = False,
        now: Callable[[], float] = time.monotonic,
        session_factory: Callable[..., Session] = build_session,
    ) -> None:
        super().__init__()
        self.config = config
        self._credentials = credentials
        self._open_url = open_url
        self._reauth = reauth
        self._now = now
        self._session_factory = session_factory
        self._session: Optional[Session] = None
        self._status = StatusController(now=now)
        self._belief = LocalPlaybackBelief()
        self._view = VIEW_LIKED
        self._tracks: list[Track] = []
        self._offsets: list[int] = []
        self._playlists: list[Playlist] = []
        self._source: Optional[TrackSource] = None
        self._search_tracks: list[Track] = []
        self._search_offsets: list[int] = []
        self._search_source: Optional[SearchSource] = None
        self._ticker_offset = 0

    def compose(self) -> ComposeResult:
        yield Header(show_clock=False)
        with Container(id="root"):
            with Vertical(id="now_panel"):
                yield Static("Connecting to Spotify...", id="now_title", markup=False)
                yield Static("", id="now_meta", markup=False)
                yield Static("", id="now_progress", markup=False)
                yield Static("", id="now_state", markup=False)
            with Vertical(id="results_panel"):
                yield Input(placeholder="Search tracks", id="search_input")
                yield DataTable(id="results_table", cursor_type="row")
            yield StatusBar(self._status, id="status_bar")

    # --- Lifecycle ---
    def on_mount(self) -> None:
        self._install_asyncio_exception_handler()
        self._results_panel().border_title = VIEW_TITLES[self._view]
        self.set_interval(self.config.tick_interval, self._refresh_now_playing)
        self.set_interval(0.4, self._advance_ticker)
        self.set_interval(0.5, self._refresh_status)
        self.set_focus(self.query_one("#results_table", DataTable))
        self.run_worker(self._connect(), exclusive=True, group="connect")
        logger.info("TUI mounted")

    async def on_unmount(self) -> None:
        if self._session is not None:
            await self._session.close()
            self._session = None
        logger.info("TUI shutdown")

    def _install_asyncio_exception_handler(self) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return

        def handler(_loop: asyncio.AbstractEventLoop, context: dict) -> None:
            exc = context.get("exception")
            if exc:
                logger.exception("Asyncio exception", exc_info=exc)
            else:
                logger.error("Asyncio error: %s", context.get("message"))

        loop.set_exception_handler(handler)

    async def _connect(self) -> None:
        session = self._session_factory(
            self.config,
            self._credentials,
            open_url=self._open_url,
            on_auth_state=self._on_auth_state,
            reauth=self._reauth,
        )
        self._session = session
        try:
            await session.tokens.acquire()
        except VibesError as exc:
            logger.warning("Authorization failed: %s", exc)
            self._set_message(exc.user_message(), level="error", timeout=0)
            return
        session.dispatcher.subscribe(self._on_belief)
        session.dispatcher.subscribe_notices(self._on_notice)
        session.dispatcher.start()
        self._set_message("Connected to Spotify")
        await self._load_view(VIEW_LIKED)

    def _on_auth_state(self, state: AuthState) -> None:
        if state is AuthState.AUTHORIZING and self._session is not None:
            url = self._session.tokens.authorize_url or ""
            self._set_message("Log in to Spotify in your browser", timeout=0)
            self.query_one("#now_title", Static).update("Waiting for Spotify login")
            self.query_one("#now_meta", Static).update(url)
        elif state is AuthState.AUTHENTICATED:
            self._status.clear_message()

    # --- Engine callbacks ---
    def _on_belief(self, belief: LocalPlaybackBelief) -> None:
        if self._belief.track != belief.track:
            self._ticker_offset = 0
        self._belief = belief
        self._refresh_now_playing()

    def _on_notice(self, notice: Notice) -> None:
        self._set_message(notice.text, level=notice.level)

    def _set_message(
        self,
        text: str,
        *,
        level: str = "info",
        timeout: Optional[float] = None,
    ) -> None:
        self._status.show_message(text, level=level, timeout=timeout)
        self._refresh_status()

    def _submit(self, command: Command) -> None:
        if self._session is None or not self._session.dispatcher.running:
            self._set_message("Not connected to Spotify yet", level="warn")
            return
        self._session.dispatcher.submit(command)

    # --- Rendering ---
    def _results_panel(self) -> Vertical:
        return self.query_one("#results_panel", Vertical)

    def _refresh_status(self) -> None:
        try:
            bar = self.query_one("#status_bar", StatusBar)
        except NoMatches:
            return
        bar.refresh()

    def _advance_ticker(self) -> None:
        self._ticker_offset += 1

    def _refresh_now_playing(self) -> None:
        if self._session is None or not self._session.dispatcher.running:
            return
        belief = self._belief
        panel = self.query_one("#now_panel", Vertical)
        width = max(10, panel.size.width - 2)
        title = track_line(belief.track)
        self.query_one("#now_title", Static).update(
            ticker_window(title, width, self._ticker_offset)
        )
        meta = ""
        if belief.track is not None:
            meta = belief.track.album
        if belief.device is not None:
            meta = f"{meta}  on {belief.device.name}" if meta else belief.device.name
        self.query_one("#now_meta", Static).update(ellipsize(meta, width))
        times = format_progress(belief.position_ms, belief.duration_ms)
        bar_width = max(0, width - len(times) - 1)
        ratio = progress_ratio(belief.position_ms, belief.duration_ms)
        self.query_one("#now_progress", Static).update(
            f"{render_progress_bar(bar_width, ratio)} {times}"
        )
        liked = "♥" if belief.is_liked else " "
        state = (
            f"[ {playback_state_label(belief):<7} ]  "
            f"VOL {volume_label(belief.volume)}  {liked}"
        )
        self.query_one("#now_state", Static).update(state)

    def _fill_tracks(self, tracks: list[Track]) -> None:
        table = self.query_one("#results_table", DataTable)
        table.clear(columns=True)
        table.add_columns("#", "Title", "Artist", "Album", "Time")
        for index, track in enumerate(tracks):
            table.add_row(
                str(index + 1),
                ellipsize(track.name, 40),
                ellipsize(track.artist_line, 30),
                ellipsize(track.album, 30),
                format_time_ms(track.duration_ms),
                key=str(index),
            )

    def _fill_playlists(self, playlists: list[Playlist]) -> None:
        table = self.query_one("#results_table", DataTable)
        table.clear(columns=True)
        table.add_columns("Name", "Owner", "Tracks")
        for index, playlist in enumerate(playlists):
            table.add_row(
                ellipsize(playlist.name, 50),
                ellipsize(playlist.owner, 30),
                str(playlist.track_count),
                key=str(index),
            )

    # --- Library views ---
    async def _load_view(
        self, view: str, *, playlist: Optional[Playlist] = None
    ) -> None:
        if self._session is None:
            return
        api = self._session.api
        try:
            if view == VIEW_PLAYLISTS:
                page = await api.user_playlists(limit=50)
                self._playlists = page.items
                self._fill_playlists(self._playlists)
                self._view = view
                self._results_panel().border_title = VIEW_TITLES[view]
                return
            source: TrackSource
            limit: int
            if view == VIEW_LIKED:
                source, limit = LikedSource(api), LIKED_BROWSE_LIMIT
            elif view == VIEW_PLAYLIST and playlist is not None:
                source = PlaylistSource(api, playlist.id, name=playlist.name)
                limit = PLAYLIST_LIMIT
            else:
                return
            entries = await load_entries(source, limit=limit)
        except VibesError as exc:
            self._set_message(exc.user_message(), level="error")
            return
        except Exception:
            logger.exception("Loading %s failed", view)
            self._set_message(f"Could not load {VIEW_TITLES[view]}", level="error")
            return
        self._show_tracks(
            view,
            source,
            [track for _, track in entries],
            [offset for offset, _ in entries],
        )

    async def _run_search(self, query: str) -> None:
        if self._session is None:
            return
        source = SearchSource(self._session.api, query)
        try:
            page = await source.fetch(0, SEARCH_LIMIT)
        except VibesError as exc:
            self._set_message(exc.user_message(), level="error")
            return
        except Exception:
            logger.exception("Search failed")
            self._set_message("Search failed", level="error")
            return
        self._search_source = source
        self._search_tracks = page.items
        self._search_offsets = list(page.positions())
        self._show_tracks(VIEW_SEARCH, source, page.items, self._search_offsets)
        if not page.items:
            self._set_message(f"No results for {query!r}", level="warn")

    def _show_tracks(
        self,
        view: str,
        source: TrackSource,
        tracks: list[Track],
        offsets: list[int],
    ) -> None:
        self._view = view
        self._source = source
        self._tracks = tracks
        self._offsets = offsets
        self._fill_tracks(tracks)
        self._results_panel().border_title = f"{source.label} ({len(tracks)})"
        self.set_focus(self.query_one("#results_table", DataTable))

    def _selected_index(self) -> Optional[int]:
        table = self.query_one("#results_table", DataTable)
        if table.row_count == 0:
            return None
        return table.cursor_row

    def _selected_track(self) -> Optional[Track]:
        if self._view == VIEW_PLAYLISTS:
            return None
        index = self._selected_index()
        if index is None or not 0 <= index < len(self._tracks):
            return None
        return self._tracks[index]

    def _play_index(self, index: int) -> None:
        if not 0 <= index < len(self._tracks):
            return
        track = self._tracks[index]
        self._submit(
            Play(
                track,
                source=self._source,
                index=self._offsets[index],
                loaded=tuple(self._tracks),
                offsets=tuple(self._offsets),
            )
        )

    # --- Events ---
    def on_data_table_row_selected(self, event: DataTable.RowSelected) -> None:
        index = event.cursor_row
        if self._view == VIEW_PLAYLISTS:
            if 0 <= index < len(self._playlists):
                playlist = self._playlists[index]
                self.run_worker(
                    self._load_view(VIEW_PLAYLIST, playlist=playlist),
                    exclusive=True,
                    group="library",
                )
            return
        self._play_index(index)

    def on_input_submitted(self, event: Input.Submitted) -> None:
        query = event.value.strip()
        if not query:
            return
        self.run_worker(self._run_search(query), exclusive=True, group="library")

    # --- Actions ---
    def action_toggle_playback(self) -> None:
        if self._belief.track is None:
            index = self._selected_index()
            if index is not None and self._view != VIEW_PLAYLISTS:
                self._play_index(index)
            return
        self._submit(Pause() if self._belief.is_playing else Resume())

    def action_next_track(self) -> None:
        self._submit(Next())

    def action_previous_track(self) -> None:
        self._submit(Previous())

    def action_seek_forward(self) -> None:
        self._submit(Seek(self.config.seek_step_ms))

    def action_seek_back(self) -> None:
        self._submit(Seek(-self.config.seek_step_ms))

    def _volume_base(self) -> int:
        if self._belief.volume is None:
            return self.config.volume
        return self._belief.volume

    def action_volume_up(self) -> None:
        self._submit(SetVolume(self._volume_base() + self.config.volume_step))

    def action_volume_down(self) -> None:
        self._submit(SetVolume(self._volume_base() - self.config.volume_step))

    def action_toggle_like(self) -> None:
        track = self._belief.track or self._selected_track()
        if track is None:
            self._set_message("Nothing to like", level="warn")
            return
        self._submit(ToggleLike(track))

    def action_enqueue_selected(self) -> None:
        track = self._selected_track()
        if track is None:
            return
        self._submit(Enqueue(track))

    def action_open_search(self) -> None:
        search = self.query_one("#search_input", Input)
        search.add_class("visible")
        self.set_focus(search)

    def action_show_search(self) -> None:
        if self._search_source is None:
            self.action_open_search()
            return
        self._show_tracks(
            VIEW_SEARCH,
            self._search_source,
            self._search_tracks,
            self._search_offsets,
        )

    def action_show_liked(self) -> None:
        self.run_worker(self._load_view(VIEW_LIKED), exclusive=True, group="library")

    def action_show_playlists(self) -> None:
        self.run_worker(
            self._load_view(VIEW_PLAYLISTS), exclusive=True, group="library"
        )

    def action_back(self) -> None:
        search = self.query_one("#search_input", Input)
        if search.has_class("visible"):
            search.remove_class("visible")
            self.set_focus(self.query_one("#results_table", DataTable))
            return
        if self._view == VIEW_PLAYLIST:
            self.action_show_playlists()

    def action_quit_app(self) -> None:
        logger.info("Quit requested")
        self.exit()


def run_tui(
    config: AppConfig,
    credentials: ClientCredentials,
    *,
    open_url: Callable[[str], None],
    reauth: bool = False,
) -> int:
    """Start the Textual app; returns the process exit code."""
    logger.info("TUI start")
    try:
        set_console_level(logging.WARNING)
    except Exception:
        logger.exception("Failed to set console log level for TUI")
    app = VibesApp(
        config=config, credentials=credentials, open_url=open_url, reauth=reauth
    )
    app.run()
    logger.info("TUI exit")
    return 0
