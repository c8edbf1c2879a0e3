"""Local belief about playback, merged from optimistic commands and polls."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
import logging
from typing import Any, Callable, Iterable, Mapping, Optional, Union

from typing_extensions import TypeAlias

from vibes.errors import RemoteStateConflict
from vibes.models import Device, PlaybackSnapshot, Track

logger = logging.getLogger(__name__)

TRACK = "track"
IS_PLAYING = "is_playing"
POSITION = "position"
VOLUME = "volume"
IS_LIKED = "is_liked"
FIELDS = (TRACK, IS_PLAYING, POSITION, VOLUME, IS_LIKED)

# Polls sample position some time after the command landed.
POSITION_TOLERANCE_MS = 3_000


@dataclass(frozen=True)
class Confirmed:
    value: Any


@dataclass(frozen=True)
class OptimisticPending:
    """A locally applied value awaiting confirmation by a poll.

    ``confirmed`` is the value to fall back to if the command fails.
    ``resolved_after_poll`` is set once the command succeeded: only polls
    issued after that sequence number can have observed its effect.
    """

    value: Any
    generation: int
    confirmed: Any
    resolved_after_poll: Optional[int] = None


FieldState: TypeAlias = Union[Confirmed, OptimisticPending]


@dataclass(frozen=True)
class LocalPlaybackBelief:
    """What the interface should render right now."""

    track: Optional[Track] = None
    position_ms: int = 0
    duration_ms: int = 0
    is_playing: bool = False
    volume: Optional[int] = None
    is_liked: Optional[bool] = None
    device: Optional[Device] = None
    context_uri: Optional[str] = None
    generation: int = 0
    pending: frozenset[str] = field(default_factory=frozenset)

    def is_pending(self, name: str) -> bool:
        return name in self.pending


BeliefListener: TypeAlias = Callable[[LocalPlaybackBelief], None]


class PlaybackStateMachine:
    """Single writer of LocalPlaybackBelief.

    Not thread safe; the dispatcher loop is the only caller.
    """

    def __init__(self) -> None:
        self._fields: dict[str, FieldState] = {
            TRACK: Confirmed(None),
            IS_PLAYING: Confirmed(False),
            POSITION: Confirmed(0),
            VOLUME: Confirmed(None),
            IS_LIKED: Confirmed(None),
        }
        self._device: Optional[Device] = None
        self._context_uri: Optional[str] = None
        self._generation = 0
        self._last_issued_poll = 0
        self._listeners: list[BeliefListener] = []
        self._belief = self._render()

    @property
    def belief(self) -> LocalPlaybackBelief:
        return self._belief

    @property
    def device(self) -> Optional[Device]:
        return self._device

    def field_state(self, name: str) -> FieldState:
        return self._fields[name]

    def subscribe(self, listener: BeliefListener) -> Callable[[], None]:
        """Register for belief changes; returns an unsubscribe function."""
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def mark_poll_issued(self, seq: int) -> None:
        self._last_issued_poll = max(self._last_issued_poll, seq)

    def begin(self, changes: Mapping[str, Any]) -> int:
        """Apply optimistic values and return the generation that owns them."""
        unknown = set(changes) - set(FIELDS)
        if unknown:
            raise KeyError(f"unknown playback fields: {sorted(unknown)}")
        self._generation += 1
        generation = self._generation
        for name, value in changes.items():
            current = self._fields[name]
            baseline = (
                current.confirmed
                if isinstance(current, OptimisticPending)
                else current.value
            )
            self._fields[name] = OptimisticPending(
                value=value, generation=generation, confirmed=baseline
            )
        self._publish()
        return generation

    def succeeded(self, generation: int, fields: Iterable[str]) -> None:
        """The command's remote call returned; wait for a poll to confirm it."""
        for name in fields:
            state = self._fields[name]
            if isinstance(state, OptimisticPending) and state.generation == generation:
                self._fields[name] = replace(
                    state, resolved_after_poll=self._last_issued_poll
                )

    def failed(self, generation: int, fields: Iterable[str]) -> None:
        """Revert fields still owned by ``generation`` to their confirmed value."""
        for name in fields:
            state = self._fields[name]
            if isinstance(state, OptimisticPending) and state.generation == generation:
                self._fields[name] = Confirmed(state.confirmed)
        self._publish()

    def reconcile(self, snapshot: PlaybackSnapshot, poll_seq: int) -> list[str]:
        """Merge a poll result. Returns fields where the remote overrode a
        command that had already succeeded."""
        self._device = snapshot.device
        self._context_uri = snapshot.context_uri
        remote = {
            TRACK: snapshot.track,
            IS_PLAYING: snapshot.is_playing,
            POSITION: snapshot.position_ms,
            VOLUME: snapshot.volume,
            IS_LIKED: snapshot.is_liked,
        }
        conflicts: list[str] = []
        for name in FIELDS:
            value = remote[name]
            if value is None and name in (VOLUME, IS_LIKED):
                continue
            state = self._fields[name]
            if isinstance(state, Confirmed):
                self._fields[name] = Confirmed(value)
                continue
            if _matches(name, state.value, value):
                self._fields[name] = Confirmed(value)
                continue
            resolved = state.resolved_after_poll
            if resolved is None or poll_seq <= resolved:
                # The command is in flight or this poll predates its effect.
                continue
            self._fields[name] = Confirmed(value)
            if name == TRACK and state.value is None:
                continue
            conflicts.append(name)
        if conflicts:
            conflict = RemoteStateConflict(
                f"poll {poll_seq} overrode {', '.join(conflicts)}"
            )
            logger.warning("%s", conflict)
        self._publish()
        return conflicts

    def advance(self, elapsed_ms: int) -> None:
        """Move the displayed position forward while playing."""
        if elapsed_ms <= 0 or not self._fields[IS_PLAYING].value:
            return
        state = self._fields[POSITION]
        duration = self._duration()
        position = int(state.value or 0) + int(elapsed_ms)
        if duration:
            position = min(position, duration)
        if position == state.value:
            return
        if isinstance(state, OptimisticPending):
            self._fields[POSITION] = replace(state, value=position)
        else:
            self._fields[POSITION] = Confirmed(position)
        self._publish()

    def _duration(self) -> int:
        track = self._fields[TRACK].value
        return track.duration_ms if isinstance(track, Track) else 0

    def _render(self) -> LocalPlaybackBelief:
        pending = frozenset(
            name
            for name, state in self._fields.items()
            if isinstance(state, OptimisticPending)
        )
        return LocalPlaybackBelief(
            track=self._fields[TRACK].value,
            position_ms=int(self._fields[POSITION].value or 0),
            duration_ms=self._duration(),
            is_playing=bool(self._fields[IS_PLAYING].value),
            volume=self._fields[VOLUME].value,
            is_liked=self._fields[IS_LIKED].value,
            device=self._device,
            context_uri=self._context_uri,
            generation=self._generation,
            pending=pending,
        )

    def _publish(self) -> None:
        belief = self._render()
        if belief == self._belief:
            return
        self._belief = belief
        for listener in list(self._listeners):
            try:
                listener(belief)
            except Exception:
                logger.exception("Belief listener failed")


def _matches(name: str, local: Any, remote: Any) -> bool:
    if name == TRACK:
        if local is None or remote is None:
            return local is remote
        return bool(local.id == remote.id)
    if name == POSITION:
        return abs(int(local or 0) - int(remote or 0)) <= POSITION_TOLERANCE_MS
    return bool(local == remote)
