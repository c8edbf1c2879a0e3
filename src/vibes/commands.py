"""The closed set of commands the interface can submit."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional, Sequence, Union

from typing_extensions import TypeAlias

from vibes.errors import VibesError
from vibes.models import Track
from vibes.sources import TrackSource


@dataclass(frozen=True)
class Play:
    """Start ``track`` and continue through ``source`` after it.

    ``index`` is the track's server offset within ``source``. ``loaded`` is
    what the user was browsing, with ``offsets`` giving each entry's server
    offset; when omitted the listing is taken to start at offset 0 with no
    gaps.
    """

    track: Track
    source: Optional[TrackSource] = None
    index: int = 0
    loaded: Sequence[Track] = field(default=(), compare=False)
    offsets: Sequence[int] = field(default=(), compare=False)


@dataclass(frozen=True)
class Pause:
    pass


@dataclass(frozen=True)
class Resume:
    pass


@dataclass(frozen=True)
class Next:
    pass


@dataclass(frozen=True)
class Previous:
    pass


@dataclass(frozen=True)
class Seek:
    """Relative seek; negative moves backwards."""

    delta_ms: int


@dataclass(frozen=True)
class SetVolume:
    level: int


@dataclass(frozen=True)
class Enqueue:
    track: Track


@dataclass(frozen=True)
class ToggleLike:
    track: Track


Command: TypeAlias = Union[
    Play, Pause, Resume, Next, Previous, Seek, SetVolume, Enqueue, ToggleLike
]


@dataclass(frozen=True)
class CommandOutcome:
    command: Command
    error: Optional[Exception] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def describe(self) -> str:
        if self.error is None:
            return f"{type(self.command).__name__} ok"
        if isinstance(self.error, VibesError):
            return self.error.user_message()
        return str(self.error) or type(self.error).__name__
