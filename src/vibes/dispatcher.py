"""The single control loop that owns playback state."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, replace
import logging
import time
from typing import Any, Awaitable, Callable, Coroutine, Optional, Union

from typing_extensions import TypeAlias

from vibes.commands import (
    Command,
    CommandOutcome,
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
from vibes.errors import AuthorizationError, VibesError
from vibes.models import Device, PlaybackSnapshot
from vibes.playback_state import (
    IS_LIKED,
    IS_PLAYING,
    POSITION,
    TRACK,
    VOLUME,
    BeliefListener,
    LocalPlaybackBelief,
    PlaybackStateMachine,
)
from vibes.queue_prefetcher import PrefetchRequest, PrefetchResult, QueuePrefetcher
from vibes.spotify_api import SpotifyApi

logger = logging.getLogger(__name__)

MAX_POLLS_IN_FLIGHT = 3


@dataclass(frozen=True)
class Notice:
    """Short user-facing message; ``level`` is info, warn or error."""

    text: str
    level: str = "info"


NoticeListener: TypeAlias = Callable[[Notice], None]


@dataclass(frozen=True)
class _UserCommand:
    command: Command
    future: "asyncio.Future[CommandOutcome]"


@dataclass(frozen=True)
class _PollTick:
    pass


@dataclass(frozen=True)
class _PositionTick:
    pass


@dataclass(frozen=True)
class _PollCompleted:
    seq: int
    snapshot: Optional[PlaybackSnapshot]
    error: Optional[Exception] = None


@dataclass(frozen=True)
class _CommandCompleted:
    command: Command
    generation: Optional[int]
    fields: tuple[str, ...]
    future: "asyncio.Future[CommandOutcome]"
    result: Any = None
    error: Optional[Exception] = None
    prefetch: Optional[PrefetchRequest] = None


@dataclass(frozen=True)
class _PrefetchCompleted:
    result: PrefetchResult


@dataclass(frozen=True)
class _QueueChecked:
    remote_next_id: Optional[str]
    error: Optional[Exception] = None


@dataclass(frozen=True)
class _Stop:
    pass


Message: TypeAlias = Union[
    _UserCommand,
    _PollTick,
    _PositionTick,
    _PollCompleted,
    _CommandCompleted,
    _PrefetchCompleted,
    _QueueChecked,
    _Stop,
]


class EventDispatcher:
    """Applies user commands, poll results and call completions in order.

    Handlers never await. Network work runs in separate tasks whose results
    come back through the inbox, so the state machine and prefetcher are
    only ever touched from this loop.
    """

    def __init__(
        self,
        api: SpotifyApi,
        machine: PlaybackStateMachine,
        prefetcher: QueuePrefetcher,
        *,
        poll_interval: float = 2.0,
        tick_interval: float = 0.25,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._api = api
        self._machine = machine
        self._prefetcher = prefetcher
        self._poll_interval = poll_interval
        self._tick_interval = tick_interval
        self._clock = clock
        self._inbox: asyncio.Queue[Message] = asyncio.Queue()
        self._tasks: set[asyncio.Task[None]] = set()
        self._timers: list[asyncio.Task[None]] = []
        self._loop_task: Optional[asyncio.Task[None]] = None
        self._notice_listeners: list[NoticeListener] = []
        self._poll_seq = 0
        self._applied_poll = 0
        self._polls_in_flight = 0
        self._remote_track_id: Optional[str] = None
        self._liked_for: Optional[str] = None
        self._last_poll_error: Optional[str] = None
        self._last_tick = clock()

    @property
    def belief(self) -> LocalPlaybackBelief:
        return self._machine.belief

    @property
    def running(self) -> bool:
        return self._loop_task is not None and not self._loop_task.done()

    def subscribe(self, listener: BeliefListener) -> Callable[[], None]:
        return self._machine.subscribe(listener)

    def subscribe_notices(self, listener: NoticeListener) -> Callable[[], None]:
        self._notice_listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._notice_listeners:
                self._notice_listeners.remove(listener)

        return _unsubscribe

    def start(self, *, timers: bool = True) -> None:
        """Start the loop (and the poll/position timers) on the running loop."""
        if self.running:
            return
        self._last_tick = self._clock()
        self._loop_task = asyncio.create_task(self.run(), name="vibes-dispatcher")
        if timers:
            self._timers = [
                asyncio.create_task(
                    self._every(self._poll_interval, _PollTick),
                    name="vibes-poll-timer",
                ),
                asyncio.create_task(
                    self._every(self._tick_interval, _PositionTick),
                    name="vibes-tick-timer",
                ),
            ]
        self.request_poll()

    async def stop(self, *, grace: float = 2.0) -> None:
        for timer in self._timers:
            timer.cancel()
        self._timers = []
        if self._loop_task is not None:
            self._inbox.put_nowait(_Stop())
            await self._loop_task
            self._loop_task = None
        if self._tasks:
            _, pending = await asyncio.wait(set(self._tasks), timeout=grace)
            for task in pending:
                task.cancel()

    def submit(self, command: Command) -> "asyncio.Future[CommandOutcome]":
        """Queue a command. The future resolves once its remote call finishes."""
        future: asyncio.Future[CommandOutcome] = (
            asyncio.get_running_loop().create_future()
        )
        self._inbox.put_nowait(_UserCommand(command, future))
        return future

    def request_poll(self) -> None:
        self._inbox.put_nowait(_PollTick())

    def tick(self) -> None:
        self._inbox.put_nowait(_PositionTick())

    async def drain(self) -> None:
        """Wait until every queued message has been applied."""
        await self._inbox.join()

    async def settle(self) -> None:
        """Wait until every message is applied and no network task is running."""
        while True:
            if self._tasks:
                await asyncio.gather(*list(self._tasks), return_exceptions=True)
            await self._inbox.join()
            if not self._tasks and self._inbox.empty():
                return

    async def run(self) -> None:
        logger.info("Dispatcher loop started")
        while True:
            message = await self._inbox.get()
            try:
                if isinstance(message, _Stop):
                    break
                self._handle(message)
            except Exception as exc:
                logger.exception(
                    "Dispatcher failed handling %s", type(message).__name__
                )
                self._notify(f"Internal error: {exc}", "error")
                if isinstance(message, _UserCommand) and not message.future.done():
                    message.future.set_result(CommandOutcome(message.command, exc))
            finally:
                self._inbox.task_done()
        logger.info("Dispatcher loop stopped")

    def _handle(self, message: Message) -> None:
        if isinstance(message, _UserCommand):
            self._on_user_command(message)
        elif isinstance(message, _PollTick):
            self._on_poll_tick()
        elif isinstance(message, _PositionTick):
            self._on_position_tick()
        elif isinstance(message, _PollCompleted):
            self._on_poll_completed(message)
        elif isinstance(message, _CommandCompleted):
            self._on_command_completed(message)
        elif isinstance(message, _PrefetchCompleted):
            self._on_prefetch_completed(message)
        elif isinstance(message, _QueueChecked):
            self._on_queue_checked(message)

    # Timers ---------------------------------------------------------------

    async def _every(self, interval: float, factory: Callable[[], Message]) -> None:
        while True:
            await asyncio.sleep(interval)
            self._inbox.put_nowait(factory())

    def _on_position_tick(self) -> None:
        now = self._clock()
        elapsed_ms = int((now - self._last_tick) * 1000)
        self._last_tick = now
        self._machine.advance(elapsed_ms)

    # Polling --------------------------------------------------------------

    def _on_poll_tick(self) -> None:
        if self._polls_in_flight >= MAX_POLLS_IN_FLIGHT:
            logger.debug("Skipping poll, %s in flight", self._polls_in_flight)
            return
        self._poll_seq += 1
        seq = self._poll_seq
        self._machine.mark_poll_issued(seq)
        self._polls_in_flight += 1
        self._spawn(self._poll(seq), f"poll-{seq}")

    async def _poll(self, seq: int) -> None:
        try:
            snapshot = await self._api.current_playback()
            track = snapshot.track
            if track is not None and track.id != self._liked_for:
                liked = await self._api.tracks_contains([track.id])
                if liked:
                    snapshot = _with_liked(snapshot, liked[0])
        except Exception as exc:
            self._inbox.put_nowait(_PollCompleted(seq, None, exc))
            return
        self._inbox.put_nowait(_PollCompleted(seq, snapshot))

    def _on_poll_completed(self, message: _PollCompleted) -> None:
        self._polls_in_flight = max(0, self._polls_in_flight - 1)
        if message.error is not None or message.snapshot is None:
            self._report_poll_error(message.error)
            return
        if message.seq <= self._applied_poll:
            logger.debug(
                "Discarding poll %s, already applied %s",
                message.seq,
                self._applied_poll,
            )
            return
        self._applied_poll = message.seq
        if self._last_poll_error is not None:
            self._last_poll_error = None
            self._notify("Connected to Spotify", "info")
        snapshot = message.snapshot
        self._machine.reconcile(snapshot, message.seq)
        track = snapshot.track
        if track is not None and snapshot.is_liked is not None:
            self._liked_for = track.id
        track_id = track.id if track is not None else None
        if track_id == self._remote_track_id:
            return
        self._remote_track_id = track_id
        if track_id is None:
            return
        logger.info("Now playing %s (%s)", track.name, track_id)
        self._start_prefetch(self._prefetcher.on_track_started(track_id))
        self._check_queue()

    def _report_poll_error(self, error: Optional[Exception]) -> None:
        text = _describe(error) if error is not None else "Empty poll result"
        if isinstance(error, VibesError):
            logger.warning("Poll failed: %s", error)
        else:
            logger.error("Poll failed", exc_info=error)
        if text != self._last_poll_error:
            self._last_poll_error = text
            level = "error" if isinstance(error, AuthorizationError) else "warn"
            self._notify(text, level)

    # Queue ----------------------------------------------------------------

    def _start_prefetch(self, request: Optional[PrefetchRequest]) -> None:
        if request is None:
            return
        self._spawn(self._prefetch(request), f"prefetch-{request.epoch}")

    async def _prefetch(self, request: PrefetchRequest) -> None:
        result = await self._prefetcher.run(request)
        self._inbox.put_nowait(_PrefetchCompleted(result))

    def _on_prefetch_completed(self, message: _PrefetchCompleted) -> None:
        result = message.result
        if not self._prefetcher.complete(result):
            return
        if result.error is not None:
            self._notify(f"Queue refill failed: {_describe(result.error)}", "warn")

    def _check_queue(self) -> None:
        if self._prefetcher.source is None or self._prefetcher.fetch_outstanding:
            return
        if self._prefetcher.depth == 0:
            return
        self._spawn(self._queue_check(), "queue-check")

    async def _queue_check(self) -> None:
        try:
            upcoming = await self._api.get_queue()
        except Exception as exc:
            self._inbox.put_nowait(_QueueChecked(None, exc))
            return
        remote_next = upcoming[0].id if upcoming else None
        self._inbox.put_nowait(_QueueChecked(remote_next))

    def _on_queue_checked(self, message: _QueueChecked) -> None:
        if message.error is not None:
            logger.warning("Queue check failed: %s", message.error)
            return
        if self._prefetcher.fetch_outstanding:
            return
        self._start_prefetch(self._prefetcher.verify_head(message.remote_next_id))

    # Commands -------------------------------------------------------------

    def _on_user_command(self, message: _UserCommand) -> None:
        command = message.command
        belief = self._machine.belief
        changes: dict[str, Any] = {}
        prefetch: Optional[PrefetchRequest] = None
        operation: Callable[[], Awaitable[Any]]

        if isinstance(command, Play):
            changes = {TRACK: command.track, POSITION: 0, IS_PLAYING: True}
            if command.source is not None:
                prefetch = self._prefetcher.start(
                    command.source,
                    command.track,
                    command.index,
                    command.loaded,
                    command.offsets,
                )
            else:
                self._prefetcher.invalidate()
            operation = self._play_operation(command, self._machine.device)
        elif isinstance(command, Pause):
            changes = {IS_PLAYING: False}
            operation = self._api.pause
        elif isinstance(command, Resume):
            changes = {IS_PLAYING: True}
            operation = self._api.resume
        elif isinstance(command, Next):
            changes = {POSITION: 0}
            upcoming = self._prefetcher.peek()
            if upcoming is not None:
                changes[TRACK] = upcoming
            operation = self._api.next
        elif isinstance(command, Previous):
            changes = {POSITION: 0}
            operation = self._api.previous
        elif isinstance(command, Seek):
            target = max(0, belief.position_ms + command.delta_ms)
            if belief.duration_ms:
                target = min(target, belief.duration_ms)
            changes = {POSITION: target}
            operation = _bind(self._api.seek, target)
        elif isinstance(command, SetVolume):
            level = max(0, min(100, command.level))
            changes = {VOLUME: level}
            operation = _bind(self._api.set_volume, level)
        elif isinstance(command, Enqueue):
            operation = _bind(self._api.add_to_queue, command.track.uri)
        elif isinstance(command, ToggleLike):
            known: Optional[bool] = None
            if belief.track is not None and belief.track.id == command.track.id:
                known = belief.is_liked
            if known is not None:
                changes = {IS_LIKED: not known}
            operation = self._toggle_like_operation(command, known)
        else:
            raise TypeError(f"unknown command {command!r}")

        generation = self._machine.begin(changes) if changes else None
        self._spawn(
            self._execute(message, operation, generation, tuple(changes), prefetch),
            f"command-{type(command).__name__}",
        )

    def _play_operation(
        self, command: Play, known: Optional[Device]
    ) -> Callable[[], Awaitable[None]]:
        async def operation() -> None:
            device = known
            if device is None or not device.is_active:
                device = await self._api.resolve_device()
            await self._api.play([command.track.uri], device_id=device.id)

        return operation

    def _toggle_like_operation(
        self, command: ToggleLike, known: Optional[bool]
    ) -> Callable[[], Awaitable[bool]]:
        async def operation() -> bool:
            liked = known
            if liked is None:
                contains = await self._api.tracks_contains([command.track.id])
                liked = bool(contains and contains[0])
            if liked:
                await self._api.remove_tracks([command.track.id])
            else:
                await self._api.save_tracks([command.track.id])
            return not liked

        return operation

    async def _execute(
        self,
        message: _UserCommand,
        operation: Callable[[], Awaitable[Any]],
        generation: Optional[int],
        fields: tuple[str, ...],
        prefetch: Optional[PrefetchRequest],
    ) -> None:
        result: Any = None
        error: Optional[Exception] = None
        try:
            result = await operation()
        except VibesError as exc:
            error = exc
        except Exception as exc:
            logger.exception("%s failed", type(message.command).__name__)
            error = exc
        self._inbox.put_nowait(
            _CommandCompleted(
                command=message.command,
                generation=generation,
                fields=fields,
                future=message.future,
                result=result,
                error=error,
                prefetch=prefetch,
            )
        )

    def _on_command_completed(self, message: _CommandCompleted) -> None:
        command = message.command
        try:
            if message.error is not None:
                self._command_failed(message)
                return
            if message.generation is not None:
                self._machine.succeeded(message.generation, message.fields)
            if isinstance(command, Play) and message.prefetch is not None:
                if self._prefetcher.is_current(message.prefetch):
                    self._start_prefetch(message.prefetch)
            elif isinstance(command, Enqueue):
                self._prefetcher.enqueue(command.track)
                self._notify(f"Queued: {command.track.name}", "info")
            elif isinstance(command, ToggleLike):
                liked = bool(message.result)
                if self._liked_for == command.track.id:
                    # Re-check on the next poll so the optimistic value confirms.
                    self._liked_for = None
                text = "Added to" if liked else "Removed from"
                self._notify(f"{text} Liked Songs: {command.track.name}", "info")
            self.request_poll()
        finally:
            if not message.future.done():
                message.future.set_result(CommandOutcome(command, message.error))

    def _command_failed(self, message: _CommandCompleted) -> None:
        error = message.error
        logger.warning("%s failed: %s", type(message.command).__name__, error)
        if message.generation is not None:
            self._machine.failed(message.generation, message.fields)
        if message.prefetch is not None and self._prefetcher.is_current(
            message.prefetch
        ):
            self._prefetcher.invalidate()
        self._notify(_describe(error), "error")

    # Helpers --------------------------------------------------------------

    def _spawn(self, coro: Coroutine[Any, Any, None], name: str) -> None:
        task = asyncio.create_task(coro, name=f"vibes-{name}")
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    def _notify(self, text: str, level: str) -> None:
        notice = Notice(text, level)
        for listener in list(self._notice_listeners):
            try:
                listener(notice)
            except Exception:
                logger.exception("Notice listener failed")


def _bind(
    func: Callable[..., Awaitable[Any]], *args: Any
) -> Callable[[], Awaitable[Any]]:
    def call() -> Awaitable[Any]:
        return func(*args)

    return call


def _with_liked(snapshot: PlaybackSnapshot, liked: bool) -> PlaybackSnapshot:
    return replace(snapshot, is_liked=liked)


def _describe(error: Optional[BaseException]) -> str:
    if error is None:
        return ""
    if isinstance(error, VibesError):
        return error.user_message()
    return str(error) or type(error).__name__
